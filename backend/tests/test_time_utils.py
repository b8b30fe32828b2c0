from datetime import date, datetime

import pytest

from marketplace.time_utils import add_business_days, end_of_day, parse_iso_datetime, to_utc_z


class TestParseIsoDatetime:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank(self, value):
        assert parse_iso_datetime(value) is None

    def test_zulu_and_offsets_normalize_to_naive_utc(self):
        assert parse_iso_datetime("2026-03-05T10:00:00Z") == datetime(2026, 3, 5, 10, 0)
        assert parse_iso_datetime("2026-03-05T21:00:00+11:00") == datetime(2026, 3, 5, 10, 0)

    def test_naive_is_utc(self):
        assert parse_iso_datetime("2026-03-05T10:00") == datetime(2026, 3, 5, 10, 0)

    def test_garbage(self):
        with pytest.raises(ValueError):
            parse_iso_datetime("next tuesday")


def test_to_utc_z_drops_microseconds():
    assert to_utc_z(datetime(2026, 3, 5, 10, 0, 0, 123456)) == "2026-03-05T10:00:00Z"
    assert to_utc_z(None) is None


@pytest.mark.parametrize("start, days, expected", [
    (date(2026, 3, 2), 5, date(2026, 3, 9)),    # Monday
    (date(2026, 3, 6), 1, date(2026, 3, 9)),    # Friday
    (date(2026, 3, 7), 1, date(2026, 3, 9)),    # Saturday
    (date(2026, 3, 5), 0, date(2026, 3, 5)),
])
def test_add_business_days(start, days, expected):
    assert add_business_days(start, days) == expected


def test_end_of_day():
    assert end_of_day(date(2026, 3, 9)) == datetime(2026, 3, 9, 23, 59, 59, 999999)
