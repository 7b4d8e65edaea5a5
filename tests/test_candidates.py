from catalog.candidates import build_query_candidates
from catalog.titles import clean_title_for_platform


def test_blank_titles_have_no_candidates():
    assert build_query_candidates('') == []
    assert build_query_candidates(None) == []
    assert build_query_candidates('   ', 'psn') == []


def test_mashed_xbox_title_yields_official_spelling_first():
    candidates = build_query_candidates('TigerWoodsPGATOUR07', 'xbox')

    assert candidates[0] == 'Tiger Woods PGA Tour 07'


def test_brand_prefix_and_casing_variants_follow_the_cleaned_title():
    candidates = build_query_candidates('EA SPORTS FIFA 23 PS5', 'psn')

    assert candidates == ['EA SPORTS FIFA 23', 'FIFA 23', 'Fifa 23']


def test_edition_words_are_expanded():
    assert build_query_candidates('Halo: GOTY Edition') == ['Halo: GOTY', 'Halo: Game of the Year']


def test_candidates_are_unique_and_start_with_cleaned_title():
    raw = 'Diablo® IV (PS5)'
    candidates = build_query_candidates(raw, 'psn')

    assert candidates[0] == clean_title_for_platform(raw, 'psn')
    assert len(candidates) == len(set(candidates))
    assert all(candidate.strip() for candidate in candidates)
