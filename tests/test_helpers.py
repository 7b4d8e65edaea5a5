from datetime import datetime, timedelta, timezone

import pytest

from helpers import (
    clean_text,
    coerce_int,
    encode_name_list,
    has_text_value,
    isoformat_utc,
    name_list,
    release_year_from_timestamp,
)


@pytest.mark.parametrize('value', [None, '', '   ', float('nan'), 'nan', 'NaN'])
def test_has_text_value_rejects_missing_spellings(value):
    assert has_text_value(value) is False


def test_clean_text_strips_and_stringifies():
    assert clean_text('  Portal 2 ') == 'Portal 2'
    assert clean_text(72) == '72'
    assert clean_text(float('nan')) == ''


@pytest.mark.parametrize(
    'value, expected',
    [(5, 5), (5.0, 5), ('5', 5), ('5.0', 5), (5.5, None), ('five', None), (True, None), ('', None)],
)
def test_coerce_int(value, expected):
    assert coerce_int(value) == expected


def test_name_list_flattens_igdb_shapes():
    assert name_list('Action, RPG ,') == ['Action', 'RPG']
    assert name_list([{'name': 'Shooter'}, {'id': 3}, ' Puzzle ']) == ['Shooter', 'Puzzle']
    assert name_list(None) == []


def test_encode_name_list_dedupes_case_insensitively():
    assert encode_name_list(['Valve', 'valve', ' Nintendo ']) == '["Valve", "Nintendo"]'
    assert encode_name_list([]) is None


def test_release_year_from_timestamp():
    assert release_year_from_timestamp(1303171200) == 2011
    assert release_year_from_timestamp(0) is None
    assert release_year_from_timestamp('soon') is None


def test_isoformat_utc_assumes_naive_values_are_utc():
    naive = datetime(2024, 1, 2, 3, 4, 5)
    shifted = datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))

    assert isoformat_utc(naive) == '2024-01-02T03:04:05+00:00'
    assert isoformat_utc(shifted) == '2024-01-02T03:04:05+00:00'
