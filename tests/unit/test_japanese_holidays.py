"""
Unit tests for JapaneseHolidays class.
"""

import pytest
import json
from unittest.mock import patch
from datetime import date

import requests

from holidays_jp.config import Config
from holidays_jp.error_handler import DateParseError, FetchError, InvalidRangeError
from holidays_jp.holiday_table import Holiday
from holidays_jp.japanese_holidays import JapaneseHolidays


class TestJapaneseHolidays:
    """Test cases for JapaneseHolidays class."""

    def test_lazy_loading_defers_fetch(self, mock_session):
        holidays = JapaneseHolidays()
        mock_session.request.assert_not_called()

        assert holidays.is_holiday(date(2022, 1, 1))
        mock_session.request.assert_called_once()

    def test_eager_loading(self, mock_session, cache_file):
        JapaneseHolidays(lazy_loading=False)
        assert cache_file.exists()

    def test_check_with_text(self, mock_session):
        holidays = JapaneseHolidays()

        assert holidays.check("2022/01/01") == (date(2022, 1, 1), "元日")
        assert holidays.check("2022年1月2日") == (date(2022, 1, 2), None)
        assert holidays.check("02.01.2023", "%d.%m.%Y") == (date(2023, 1, 2), "休日")

    def test_check_invalid_date(self, mock_session):
        with pytest.raises(DateParseError):
            JapaneseHolidays().check("2023-02-30")
        mock_session.request.assert_not_called()

    def test_lookup_helpers(self, mock_session):
        holidays = JapaneseHolidays()

        assert holidays.get_holiday_name("20230109") == "成人の日"
        assert holidays.get_holiday(date(2023, 1, 9)) == Holiday(date(2023, 1, 9), "成人の日")
        assert holidays.is_holiday("2023-01-10") is False

    def test_get_holidays_in_range(self, mock_session):
        holidays = JapaneseHolidays()

        assert holidays.get_holidays_in_range("2023-01-01", "2023-01-31") == [
            (date(2023, 1, 1), "元日"),
            (date(2023, 1, 2), "休日"),
            (date(2023, 1, 9), "成人の日"),
        ]

    def test_get_holidays_in_range_inverted(self, mock_session):
        with pytest.raises(InvalidRangeError):
            JapaneseHolidays().get_holidays_in_range("2023-12-31", "2023-01-01")

    def test_get_holidays_by_year(self, mock_session):
        assert len(JapaneseHolidays().get_holidays_by_year(2022)) == 4

    def test_get_next_holiday(self, mock_session):
        holidays = JapaneseHolidays()

        assert holidays.get_next_holiday("2023/01/03") == (date(2023, 1, 9), "成人の日")
        with patch('holidays_jp.japanese_holidays.today_in_japan', return_value=date(2023, 5, 4)):
            assert holidays.get_next_holiday() == (date(2023, 5, 5), "こどもの日")

    def test_get_stats(self, mock_session):
        assert JapaneseHolidays().get_stats() == {
            'total': 14, 'years': 2, 'min_year': 2022, 'max_year': 2023
        }

    def test_first_load_failure_recorded_once(self, mock_session, temp_dir):
        mock_session.request.side_effect = requests.exceptions.ConnectionError("unreachable")

        with pytest.raises(FetchError):
            JapaneseHolidays(lazy_loading=False)

        error_log = temp_dir / '.holidays-jp' / 'logs' / 'errors.jsonl'
        entries = [json.loads(line) for line in error_log.read_text(encoding='utf-8').splitlines()]
        assert [entry['operation'] for entry in entries] == ["refresh_holidays"]

    def test_uses_existing_cache_without_network(self, mock_session, write_cache):
        write_cache(age_hours=1, etag_check_age_hours=1)

        holidays = JapaneseHolidays()

        assert holidays.get_stats()['total'] == 6
        mock_session.request.assert_not_called()


class TestUpdate:
    """Test cases for forced refresh."""

    def test_update_replaces_table(self, mock_session, write_cache):
        write_cache(age_hours=1, etag_check_age_hours=1)
        holidays = JapaneseHolidays()
        assert holidays.get_stats()['total'] == 6

        stats = holidays.update()

        assert stats['total'] == 14
        assert holidays.get_stats()['total'] == 14

    def test_update_failure_keeps_table_and_cache(self, mock_session, write_cache):
        cache_path = write_cache(age_hours=1, etag_check_age_hours=1)
        before = cache_path.read_bytes()
        holidays = JapaneseHolidays()
        assert holidays.get_stats()['total'] == 6

        mock_session.request.side_effect = requests.exceptions.ConnectionError("unreachable")
        with pytest.raises(FetchError):
            holidays.update()

        assert holidays.get_stats()['total'] == 6
        assert cache_path.read_bytes() == before

    def test_update_ignores_never_refresh(self, mock_session, write_cache):
        write_cache(age_hours=1)
        config = Config()
        config.set('cache.strategy', 'never_refresh')

        stats = JapaneseHolidays(config).update()

        assert stats['total'] == 14
        mock_session.request.assert_called_once()
