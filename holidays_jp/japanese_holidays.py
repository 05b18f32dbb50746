"""Japanese holidays management module.

日本祝日データの取得・管理
- 内閣府公式CSVをキャッシュ経由で読み込み
- 日付文字列・date オブジェクトによる祝日判定
- 期間指定での祝日一覧
- 強制更新（失敗時は既存データを維持）
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Tuple, Union

from .cache import HolidayCache
from .config import Config
from .date_parser import parse_date, today_in_japan
from .error_handler import ErrorCategory, with_error_handling
from .holiday_table import Holiday, HolidayTable
from .logging_config import log_performance

DateInput = Union[str, date]


class JapaneseHolidays:
    """Japanese holidays lookup backed by the cached Cabinet Office table."""

    def __init__(self, config: Optional[Config] = None, lazy_loading: bool = True,
                 cache: Optional[HolidayCache] = None):
        """Initialize Japanese holidays manager.

        Args:
            config: Application configuration (default: Config())
            lazy_loading: Defer loading until the first lookup
            cache: Cache instance to use instead of one built from config
        """
        self.config = config or Config()
        self.cache = cache or HolidayCache(self.config)
        self.logger = logging.getLogger(__name__)

        self._table: Optional[HolidayTable] = None
        if not lazy_loading:
            self.initialize()

    @with_error_handling(operation_name="load_holidays", category=ErrorCategory.DATA)
    @log_performance("japanese_holidays_load")
    def initialize(self) -> HolidayTable:
        """キャッシュ方針に従って祝日テーブルを読み込む."""
        table = self.cache.get_holidays()
        self._table = table
        self.logger.info(f"祝日データ読み込み完了: {len(table)} 件")
        return table

    @property
    def table(self) -> HolidayTable:
        if self._table is None:
            self.initialize()
        return self._table

    def update(self) -> Dict[str, int]:
        """Force refresh holiday data from Cabinet Office.

        Returns:
            Statistics of the refreshed table

        Raises:
            FetchError: 取得失敗時（キャッシュ・メモリ上のデータは変更されない）
        """
        table = self.cache.refresh()
        self._table = table
        return table.get_stats()

    def check(self, value: DateInput,
              date_format: Optional[str] = None) -> Tuple[date, Optional[str]]:
        """日付を解析して祝日名を返す.

        Returns:
            (解析後の日付, 祝日名 または None)

        Raises:
            DateParseError: 日付文字列を解析できない場合
        """
        check_date = parse_date(value, date_format)
        return check_date, self.table.lookup(check_date)

    def is_holiday(self, check_date: DateInput) -> bool:
        """Check if a date is a Japanese holiday.

        Args:
            check_date: Date or date string to check

        Returns:
            True if the date is a holiday
        """
        return self.table.is_holiday(parse_date(check_date))

    def get_holiday_name(self, check_date: DateInput) -> Optional[str]:
        return self.table.get_holiday_name(parse_date(check_date))

    def get_holiday(self, check_date: DateInput) -> Optional[Holiday]:
        return self.table.get_holiday(parse_date(check_date))

    def get_holidays_in_range(self, start_date: DateInput,
                              end_date: DateInput) -> List[Tuple[date, str]]:
        """Get all holidays in a date range.

        Args:
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            List of (date, holiday_name) tuples

        Raises:
            DateParseError: 日付文字列を解析できない場合
            InvalidRangeError: start_date が end_date より後の場合
        """
        return self.table.get_holidays_in_range(parse_date(start_date), parse_date(end_date))

    def get_holidays_by_year(self, year: int) -> List[Tuple[date, str]]:
        return self.table.get_holidays_by_year(year)

    def get_next_holiday(self, from_date: Optional[DateInput] = None) -> Optional[Tuple[date, str]]:
        """Get the next holiday after a given date (default: today in Japan)."""
        start = parse_date(from_date) if from_date is not None else today_in_japan()
        return self.table.get_next_holiday(start)

    def get_stats(self) -> Dict[str, int]:
        return self.table.get_stats()

    def close(self):
        self.cache.close()
