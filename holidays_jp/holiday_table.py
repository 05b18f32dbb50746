"""In-memory Japanese holiday table.

祝日テーブル
- 日付 → 祝日名の辞書による O(1) 判定
- 期間指定での一覧取得（日付昇順）
"""

from bisect import bisect_left, bisect_right
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from .error_handler import InvalidRangeError


@dataclass(frozen=True)
class Holiday:
    """祝日レコード（読み込み後は不変）"""
    date: date
    name: str

    def to_dict(self) -> Dict[str, str]:
        return {'date': self.date.isoformat(), 'name': self.name}


class HolidayTable:
    """Mapping from calendar date to holiday.

    Instances are treated as immutable snapshots: a refresh builds a new
    table and swaps it in rather than mutating the existing one.
    """

    def __init__(self, holidays: Optional[Mapping[date, Holiday]] = None):
        self._holidays: Dict[date, Holiday] = dict(holidays or {})
        self._sorted_dates: List[date] = sorted(self._holidays)

    @classmethod
    def from_mapping(cls, mapping: Mapping[Union[str, date], str]) -> 'HolidayTable':
        """Build a table from ``{date or ISO string: name}``.

        Raises:
            ValueError: If a key is not an ISO date or a name is not a non-empty string
        """
        holidays: Dict[date, Holiday] = {}
        for key, name in mapping.items():
            if isinstance(key, datetime):
                holiday_date = key.date()
            elif isinstance(key, date):
                holiday_date = key
            else:
                holiday_date = date.fromisoformat(str(key))
            if not isinstance(name, str) or not name.strip():
                raise ValueError(f"Invalid holiday name for {holiday_date}: {name!r}")
            holidays[holiday_date] = Holiday(date=holiday_date, name=name)
        return cls(holidays)

    def __len__(self) -> int:
        return len(self._holidays)

    def __contains__(self, check_date: object) -> bool:
        return check_date in self._holidays

    def __iter__(self) -> Iterator[Holiday]:
        for holiday_date in self._sorted_dates:
            yield self._holidays[holiday_date]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HolidayTable):
            return NotImplemented
        return self._holidays == other._holidays

    def __repr__(self) -> str:
        return f"HolidayTable({len(self)} holidays)"

    def items(self) -> List[Tuple[date, str]]:
        """All (date, name) pairs in ascending date order."""
        return [(d, self._holidays[d].name) for d in self._sorted_dates]

    def to_mapping(self) -> Dict[str, str]:
        """``{ISO date: name}`` sorted by date, for serialization."""
        return {d.isoformat(): self._holidays[d].name for d in self._sorted_dates}

    def lookup(self, check_date: date) -> Optional[str]:
        """Return the holiday name for a date, or None."""
        holiday = self._holidays.get(check_date)
        return holiday.name if holiday else None

    def is_holiday(self, check_date: date) -> bool:
        """Check if a date is a Japanese holiday."""
        return check_date in self._holidays

    def get_holiday_name(self, check_date: date) -> Optional[str]:
        """Get holiday name for a date.

        Args:
            check_date: Date to check

        Returns:
            Holiday name if it's a holiday, None otherwise
        """
        return self.lookup(check_date)

    def get_holiday(self, check_date: date) -> Optional[Holiday]:
        return self._holidays.get(check_date)

    def get_holidays_in_range(self, start_date: date, end_date: date) -> List[Tuple[date, str]]:
        """Get all holidays in a date range.

        Args:
            start_date: Start date (inclusive)
            end_date: End date (inclusive)

        Returns:
            List of (date, holiday_name) tuples in ascending date order

        Raises:
            InvalidRangeError: If start_date is after end_date
        """
        if start_date > end_date:
            raise InvalidRangeError(start_date, end_date)

        lo = bisect_left(self._sorted_dates, start_date)
        hi = bisect_right(self._sorted_dates, end_date)
        return [(d, self._holidays[d].name) for d in self._sorted_dates[lo:hi]]

    def get_holidays_by_year(self, year: int) -> List[Tuple[date, str]]:
        """Get all holidays for a specific year."""
        return self.get_holidays_in_range(date(year, 1, 1), date(year, 12, 31))

    def get_next_holiday(self, from_date: date) -> Optional[Tuple[date, str]]:
        """Get the first holiday strictly after ``from_date``."""
        index = bisect_right(self._sorted_dates, from_date)
        if index >= len(self._sorted_dates):
            return None
        next_date = self._sorted_dates[index]
        return next_date, self._holidays[next_date].name

    def get_stats(self) -> Dict[str, int]:
        """Get statistics about loaded holidays.

        Returns:
            Dictionary with statistics
        """
        if not self._holidays:
            return {'total': 0, 'years': 0, 'min_year': 0, 'max_year': 0}

        years = set(holiday_date.year for holiday_date in self._holidays)

        return {
            'total': len(self._holidays),
            'years': len(years),
            'min_year': min(years),
            'max_year': max(years)
        }
