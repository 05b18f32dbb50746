"""Date text parsing.

日付文字列の形式判定と解析
- 複数の表記形式を固定の優先順位で試行
- 形式ごとに正規表現で全体一致を確認してから strptime で解析
- NN/NN/YYYY は月/日を優先し、月として不正な場合のみ日/月として解釈
"""

import re
from datetime import date, datetime
from typing import List, NamedTuple, Optional, Union

import pytz

from .error_handler import DateParseError


JAPAN_TIMEZONE = 'Asia/Tokyo'
MAX_DATE_STRING_LENGTH = 20


class DateFormat(NamedTuple):
    """対応する日付表記"""
    style: str
    pattern: re.Pattern
    strptime_format: str
    example: str


# 優先順位順
SUPPORTED_DATE_FORMATS: List[DateFormat] = [
    DateFormat('compact', re.compile(r'^\d{8}$'), '%Y%m%d', '20230101'),
    DateFormat('iso', re.compile(r'^\d{4}-\d{1,2}-\d{1,2}$'), '%Y-%m-%d', '2023-01-01'),
    DateFormat('slash', re.compile(r'^\d{4}/\d{1,2}/\d{1,2}$'), '%Y/%m/%d', '2023/01/01'),
    DateFormat('japanese', re.compile(r'^\d{4}年\d{1,2}月\d{1,2}日$'), '%Y年%m月%d日', '2023年1月1日'),
    DateFormat('dot', re.compile(r'^\d{4}\.\d{1,2}\.\d{1,2}$'), '%Y.%m.%d', '2023.01.01'),
    DateFormat('us', re.compile(r'^\d{1,2}/\d{1,2}/\d{4}$'), '%m/%d/%Y', '01/31/2023'),
    DateFormat('eu', re.compile(r'^\d{1,2}/\d{1,2}/\d{4}$'), '%d/%m/%Y', '31/01/2023'),
    DateFormat('us_dash', re.compile(r'^\d{1,2}-\d{1,2}-\d{4}$'), '%m-%d-%Y', '01-31-2023'),
]

_FORMATS_BY_STYLE = {fmt.style: fmt for fmt in SUPPORTED_DATE_FORMATS}


def supported_format_descriptions() -> List[str]:
    """Human readable list of accepted formats, in priority order."""
    return [f"{fmt.strptime_format} ({fmt.example})" for fmt in SUPPORTED_DATE_FORMATS]


def parse_date(value: Union[str, date, datetime],
               date_format: Optional[str] = None) -> date:
    """日付文字列を date に変換する.

    Args:
        value: 日付文字列、または date/datetime オブジェクト
        date_format: strptime 形式。指定時はこの形式のみを試行する

    Returns:
        解析結果の date

    Raises:
        DateParseError: どの形式にも一致しない、または暦上存在しない日付
    """
    if isinstance(value, datetime):
        return value.date()

    if isinstance(value, date):
        return value

    formats = supported_format_descriptions()

    if not isinstance(value, str):
        raise DateParseError(value, formats, reason=f"unsupported type {type(value).__name__}")

    text = value.strip()
    if not text:
        raise DateParseError(value, formats, reason="empty input")

    if len(text) > MAX_DATE_STRING_LENGTH:
        raise DateParseError(value, formats,
                             reason=f"too long: {len(text)} > {MAX_DATE_STRING_LENGTH}")

    if date_format:
        try:
            return datetime.strptime(text, date_format).date()
        except ValueError as e:
            raise DateParseError(value, [date_format], reason=str(e))

    shape_matched = False
    for fmt in SUPPORTED_DATE_FORMATS:
        if not fmt.pattern.match(text):
            continue
        shape_matched = True
        try:
            return datetime.strptime(text, fmt.strptime_format).date()
        except ValueError:
            continue

    if shape_matched:
        raise DateParseError(value, formats, reason="not a valid calendar date")
    raise DateParseError(value, formats, reason="unrecognized format")


def format_date(value: date, style: str = 'iso') -> str:
    """date を指定スタイルの文字列に変換する.

    Args:
        value: 変換対象
        style: SUPPORTED_DATE_FORMATS の style 名

    Raises:
        ValueError: 未知のスタイル
    """
    if style == 'japanese':
        return f"{value.year}年{value.month}月{value.day}日"

    try:
        fmt = _FORMATS_BY_STYLE[style]
    except KeyError:
        raise ValueError(f"Unknown date style: {style}")
    return value.strftime(fmt.strptime_format)


def today_in_japan() -> date:
    """日本時間での今日の日付"""
    return datetime.now(pytz.timezone(JAPAN_TIMEZONE)).date()
