import pytest

from catalog import titles


def test_de_mash_splits_run_together_title_on_xbox():
    assert titles.clean_title_for_platform('TigerWoodsPGATOUR07', 'xbox') == 'Tiger Woods PGA Tour 07'


def test_de_mash_keeps_two_k_tokens_together():
    assert titles.de_mash_title('NBA 2K19') == 'NBA 2K19'
    assert titles.de_mash_title('NBA2K9') == 'NBA 2K9'


def test_strip_trademarks_removes_glyphs():
    assert titles.strip_trademarks('Diablo® IV™') == 'Diablo IV'
    assert titles.strip_trademarks(None) == ''


def test_normalize_separators():
    assert titles.normalize_separators('Ori • Blind & Forest – Definitive') == (
        'Ori Blind and Forest - Definitive'
    )


@pytest.mark.parametrize(
    'raw, expected',
    [
        ('Grand Theft Auto V (PS4)', 'Grand Theft Auto V'),
        ('Tomb Raider Definitive Edition', 'Tomb Raider'),
        ('Mario Kart™ 8 starring Luigi', 'Mario Kart 8'),
        ('Ultimate Marvel vs. Capcom 3', 'Ultimate Marvel vs. Capcom 3'),
        ('Final Fantasy III', 'Final Fantasy 3'),
    ],
)
def test_clean_title_for_search(raw, expected):
    assert titles.clean_title_for_search(raw) == expected


@pytest.mark.parametrize(
    'raw',
    [
        'TigerWoodsPGATOUR07',
        'Grand Theft Auto V (PS4)',
        'Tomb Raider Definitive Edition',
        'Ultimate Marvel vs. Capcom 3',
        'NBA2K9',
        'Diablo® IV',
    ],
)
def test_clean_title_for_search_is_idempotent(raw):
    once = titles.clean_title_for_search(raw)
    assert titles.clean_title_for_search(once) == once


def test_clean_title_for_search_handles_empty_input():
    assert titles.clean_title_for_search('') == ''
    assert titles.clean_title_for_search(None) == ''
    assert titles.clean_title_for_platform('   ', 'xbox') == ''


def test_canonical_title_key_is_conservative():
    assert titles.canonical_title_key('Tom Clancy’s  Rainbow Six® Siege') == (
        "Tom Clancy's Rainbow Six Siege"
    )
    assert titles.canonical_title_key('PORTAL 2') == 'PORTAL 2'
    assert titles.canonical_title_key('PORTAL 2') != titles.canonical_title_key('Portal 2')


def test_library_title_key_groups_editions():
    assert titles.library_title_key('Diablo® IV') == 'diablo iv'
    assert titles.library_title_key('Diablo IV Deluxe Edition') == 'diablo iv'
    assert titles.library_title_key('Diablo® IV: Deluxe Edition') == 'diablo iv'


def test_slugify_for_igdb():
    assert titles.slugify_for_igdb('Ratchet & Clank: Rift Apart') == 'ratchet-and-clank-rift-apart'
    assert titles.slugify_for_igdb('') == ''


def test_expand_abbreviations_for_search():
    assert titles.expand_abbreviations_for_search("TC's Splinter Cell") == "Tom Clancy's Splinter Cell"
    assert titles.expand_abbreviations_for_search('GTA V') == 'Grand Theft Auto V'


def test_is_likely_non_game():
    assert titles.is_likely_non_game('Netflix', 'xbox') is True
    assert titles.is_likely_non_game('Portal 2 Demo') is True
    assert titles.is_likely_non_game('Halo Infinite', 'xbox') is False
    assert titles.is_likely_non_game('') is False


@pytest.mark.parametrize(
    'title, year',
    [
        ('Tiger Woods PGA Tour 07', 2007),
        ('FIFA 2004', 2004),
        ('NBA 2K9', 2009),
        ('Madden NFL 99', 1999),
        ('Portal', None),
    ],
)
def test_extract_year_from_title(title, year):
    assert titles.extract_year_from_title(title) == year


def test_tokenize_drops_duplicates_and_punctuation():
    assert titles.tokenize('Tiger Woods: PGA Tour 07 - PGA') == ['tiger', 'woods', 'pga', 'tour', '07']


@pytest.mark.parametrize(
    'raw, label',
    [
        ('PlayStation 5', 'PS5'),
        ('ps4', 'PS4'),
        ('Xbox Series X', 'Xbox Series X|S'),
        ('Steam', 'PC'),
        ('Nintendo Switch', 'Nintendo Switch'),
        ('', None),
    ],
)
def test_normalize_platform_label(raw, label):
    assert titles.normalize_platform_label(raw) == label
