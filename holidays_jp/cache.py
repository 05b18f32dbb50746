"""Holiday data cache and refresh policy.

祝日データのキャッシュ管理
- 内閣府公式CSVの取得（タイムアウト・リトライ付き）
- 文字エンコーディング検出とUTF-8変換
- 更新戦略（時間ベース / ETagベース / ハイブリッド / 強制 / 更新なし）
- キャッシュファイルのアトミックな置き換え（一時ファイル → rename）

更新に失敗した場合、既存のキャッシュファイルとメモリ上のテーブルは変更されない。
"""

import csv
import io
import json
import logging
from dataclasses import dataclass
from datetime import datetime, date, timezone
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Tuple

import chardet
import requests

from .config import CacheStrategy, Config, resolve_cache_path
from .error_handler import (
    CacheCorruptError, ConfigurationError, DataIntegrityError, EncodingError,
    ErrorCategory, FetchError, FileSystemError, ValidationError, handle_error,
    with_error_handling
)
from .holiday_table import Holiday, HolidayTable
from .logging_config import log_performance
from .security import NetworkSecurityManager, SecureFileHandler

logger = logging.getLogger(__name__)

# 祝日法制定年
MIN_HOLIDAY_YEAR = 1948

CSV_DATE_FORMATS = ('%Y/%m/%d', '%Y-%m-%d')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any, required: bool = False) -> Optional[datetime]:
    if value is None and not required:
        return None
    if not isinstance(value, str):
        raise ValueError(f"タイムスタンプが不正です: {value!r}")
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class CacheMetadata:
    """キャッシュのメタデータ"""
    last_updated: datetime
    etag: Optional[str] = None
    last_etag_check: Optional[datetime] = None
    source_url: str = ""
    strategy: str = CacheStrategy.HYBRID.value
    max_age_hours: int = 168

    def to_dict(self) -> Dict[str, Any]:
        return {
            'last_updated': self.last_updated.isoformat(),
            'etag': self.etag,
            'last_etag_check': self.last_etag_check.isoformat() if self.last_etag_check else None,
            'source_url': self.source_url,
            'strategy': self.strategy,
            'max_age_hours': self.max_age_hours,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CacheMetadata':
        """Raises TypeError/ValueError on malformed input."""
        etag = data.get('etag')
        if etag is not None and not isinstance(etag, str):
            raise ValueError(f"ETagが不正です: {etag!r}")
        return cls(
            last_updated=_parse_timestamp(data.get('last_updated'), required=True),
            etag=etag,
            last_etag_check=_parse_timestamp(data.get('last_etag_check')),
            source_url=data.get('source_url', ''),
            strategy=data.get('strategy', CacheStrategy.HYBRID.value),
            max_age_hours=int(data.get('max_age_hours', 168)),
        )


class FetchResult(NamedTuple):
    """HTTP取得結果"""
    content: Optional[bytes]
    etag: Optional[str]
    status_code: int

    @property
    def not_modified(self) -> bool:
        return self.status_code == 304


class RefreshDecision(NamedTuple):
    """更新要否の判定結果"""
    refresh: bool
    reason: str
    prefetched: Optional[FetchResult] = None
    etag_checked: bool = False


class HolidayCache:
    """Cached holiday table with a configurable staleness policy."""

    def __init__(self, config: Config, session: Optional[requests.Session] = None):
        """
        Args:
            config: Application configuration
            session: HTTP session (default: NetworkSecurityManager session)
        """
        self.config = config
        self.source_url = config.source_url
        self.strategy = config.cache_strategy

        cache_config = config.get_cache_config()
        self.max_age_hours = cache_config.get('max_age_hours', 168)
        self.etag_check_interval_hours = cache_config.get('etag_check_interval_hours', 24)
        self.force_refresh_on_startup = bool(cache_config.get('force_refresh_on_startup', False))

        http_config = config.get_http_config()
        self.timeout = http_config.get('timeout', 30)
        self.etag_timeout = http_config.get('etag_timeout', 10)
        self.max_retries = http_config.get('max_retries', 3)
        self.require_https = not http_config.get('allow_insecure', False)

        self._session = session
        self._cache_path: Optional[Path] = None

    @property
    def cache_path(self) -> Path:
        if self._cache_path is None:
            try:
                self._cache_path = resolve_cache_path(self.config)
            except ValidationError as e:
                raise ConfigurationError(
                    f"Invalid cache file path: {e}",
                    config_key='holiday_data.cache_file',
                    cause=e
                )
        return self._cache_path

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = NetworkSecurityManager.create_secure_session(
                max_retries=self.max_retries
            )
        return self._session

    def close(self):
        if self._session is not None:
            self._session.close()
            self._session = None

    def exists(self) -> bool:
        return self.cache_path.exists()

    # ------------------------------------------------------------------
    # キャッシュファイル I/O
    # ------------------------------------------------------------------

    def load(self) -> Tuple[CacheMetadata, HolidayTable]:
        """キャッシュファイルの読み込み.

        Returns:
            (metadata, table)

        Raises:
            CacheCorruptError: 読み込み・解析に失敗した場合
        """
        path = self.cache_path
        try:
            content = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise CacheCorruptError(f"キャッシュファイルを読み込めません: {e}",
                                    cache_file=str(path), cause=e)

        try:
            data = json.loads(content)
            metadata = CacheMetadata.from_dict(data['metadata'])
            table = HolidayTable.from_mapping(data['holidays'])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise CacheCorruptError(f"キャッシュファイルが破損しています: {e}",
                                    cache_file=str(path), cause=e)

        logger.info(f"キャッシュから読み込み完了: {len(table)} 件")
        return metadata, table

    def save(self, metadata: CacheMetadata, table: HolidayTable) -> None:
        """キャッシュファイルのアトミック保存.

        Raises:
            FileSystemError: 書き込みに失敗した場合（既存ファイルは変更されない）
        """
        payload = {
            'metadata': metadata.to_dict(),
            'holidays': table.to_mapping(),
        }
        content = json.dumps(payload, ensure_ascii=False, indent=2)
        SecureFileHandler.write_secure_file(self.cache_path, content)
        logger.info(f"キャッシュ保存完了: {self.cache_path} ({len(table)} 件)")

    # ------------------------------------------------------------------
    # 更新戦略
    # ------------------------------------------------------------------

    def get_cache_age_hours(self, metadata: CacheMetadata) -> float:
        return (_utcnow() - metadata.last_updated).total_seconds() / 3600

    def should_refresh(self, metadata: CacheMetadata) -> bool:
        """Whether the cached table must be refreshed under the configured strategy."""
        return self._evaluate(metadata).refresh

    def _evaluate(self, metadata: CacheMetadata) -> RefreshDecision:
        if self.strategy is CacheStrategy.ALWAYS_REFRESH:
            return RefreshDecision(True, "always_refresh")
        if self.strategy is CacheStrategy.NEVER_REFRESH:
            return RefreshDecision(False, "never_refresh")
        if self.strategy is CacheStrategy.TIME_BASED:
            return self._evaluate_time_based(metadata)
        if self.strategy is CacheStrategy.ETAG_BASED:
            return self._evaluate_etag_based(metadata)
        return self._evaluate_hybrid(metadata)

    def _evaluate_time_based(self, metadata: CacheMetadata) -> RefreshDecision:
        age_hours = self.get_cache_age_hours(metadata)
        if age_hours > self.max_age_hours:
            logger.info(f"キャッシュが期限切れです（{age_hours:.1f}時間経過）")
            return RefreshDecision(True, "expired")
        logger.info("キャッシュは有効期限内です")
        return RefreshDecision(False, "fresh")

    def _evaluate_etag_based(self, metadata: CacheMetadata) -> RefreshDecision:
        if not metadata.etag:
            return self._evaluate_time_based(metadata)

        try:
            result = self.fetch(etag=metadata.etag, timeout=self.etag_timeout)
        except FetchError as e:
            logger.warning(f"ETag確認に失敗したため時間ベースで判定します: {e}")
            return self._evaluate_time_based(metadata)

        metadata.last_etag_check = _utcnow()

        if result.not_modified or (result.etag and result.etag == metadata.etag):
            logger.info("ETag一致: 祝日データに変更はありません")
            return RefreshDecision(False, "etag_unchanged", etag_checked=True)

        logger.info(f"ETag不一致: {metadata.etag} → {result.etag}")
        return RefreshDecision(True, "etag_changed", prefetched=result, etag_checked=True)

    def _evaluate_hybrid(self, metadata: CacheMetadata) -> RefreshDecision:
        age_hours = self.get_cache_age_hours(metadata)
        if age_hours > self.max_age_hours:
            logger.info(f"キャッシュが期限切れです（{age_hours:.1f}時間経過）")
            return RefreshDecision(True, "expired")

        if metadata.last_etag_check is not None:
            hours_since_check = (_utcnow() - metadata.last_etag_check).total_seconds() / 3600
            if hours_since_check <= self.etag_check_interval_hours:
                return RefreshDecision(False, "fresh")

        return self._evaluate_etag_based(metadata)

    # ------------------------------------------------------------------
    # 取得・解析
    # ------------------------------------------------------------------

    def fetch(self, etag: Optional[str] = None, timeout: Optional[float] = None) -> FetchResult:
        """内閣府公式CSVの取得.

        Args:
            etag: 指定時は If-None-Match による条件付きリクエスト
            timeout: 秒（既定: http.timeout）

        Returns:
            FetchResult（304 の場合 content は None）

        Raises:
            FetchError: ネットワークエラー、または 2xx/304 以外の応答
        """
        timeout = timeout or self.timeout
        headers = {'If-None-Match': etag} if etag else {}

        logger.info(f"内閣府公式CSVから祝日データを取得中... ({self.source_url})")
        try:
            response = NetworkSecurityManager.secure_request(
                self.source_url,
                method='GET',
                session=self.session,
                require_https=self.require_https,
                headers=headers,
                timeout=timeout
            )
        except ValidationError as e:
            raise FetchError(f"取得元URLが不正です: {e}", url=self.source_url,
                             timeout=timeout, cause=e)
        except requests.exceptions.RequestException as e:
            raise FetchError(f"内閣府公式データの取得に失敗: {e}", url=self.source_url,
                             timeout=timeout, cause=e)

        if response.status_code == 304:
            return FetchResult(None, response.headers.get('ETag', etag), 304)

        if not 200 <= response.status_code < 300:
            raise FetchError(
                f"内閣府公式データの取得に失敗: HTTP {response.status_code} {response.reason}",
                url=self.source_url,
                timeout=timeout,
                status_code=response.status_code
            )

        return FetchResult(response.content, response.headers.get('ETag'), response.status_code)

    def detect_encoding(self, raw_data: bytes) -> str:
        """エンコーディング自動検出.

        UTF-8 を最初に試す。Shift_JIS の日本語バイト列が UTF-8 として
        正しく復号できることはほぼない。

        Raises:
            EncodingError: エンコーディング検出失敗
        """
        if raw_data.startswith(b'\xef\xbb\xbf'):
            return 'utf-8-sig'

        for encoding in ('utf-8', 'cp932', 'shift_jis'):
            try:
                raw_data.decode(encoding)
                logger.debug(f"エンコーディング検出: {encoding}")
                return encoding
            except UnicodeDecodeError:
                continue

        detected = chardet.detect(raw_data)
        if detected['encoding'] and detected['confidence'] > 0.8:
            logger.info(f"chardetによる検出: {detected['encoding']} (信頼度: {detected['confidence']})")
            return detected['encoding']

        raise EncodingError("文字エンコーディングの検出に失敗")

    def convert_to_utf8(self, raw_data: bytes, source_encoding: str) -> str:
        try:
            return raw_data.decode(source_encoding)
        except (UnicodeDecodeError, LookupError) as e:
            raise EncodingError(f"UTF-8変換に失敗 ({source_encoding}): {e}",
                                encoding=source_encoding, cause=e)

    def decode(self, raw_data: bytes) -> str:
        """取得データをテキストに変換する."""
        return self.convert_to_utf8(raw_data, self.detect_encoding(raw_data))

    def parse_csv(self, content: str) -> HolidayTable:
        """CSV内容の解析.

        先頭行はヘッダーとして読み飛ばす。日付を解析できない行は警告して
        スキップする。

        Raises:
            DataIntegrityError: 有効な行がない、同一日付に異なる祝日名、1948年より前の日付
        """
        holidays: Dict[date, Holiday] = {}
        reader = csv.reader(io.StringIO(content))

        for line_number, row in enumerate(reader, start=1):
            if line_number == 1:  # Skip header
                continue
            if len(row) < 2 or not row[0].strip():
                continue

            date_text = row[0].strip()
            holiday_name = row[1].strip()
            holiday_date = self._parse_csv_date(date_text)
            if holiday_date is None:
                logger.warning(f"行 {line_number} の解析をスキップ: {date_text}")
                continue

            if not holiday_name:
                raise DataIntegrityError(f"祝日名が空です: 行 {line_number}",
                                         data_source=self.source_url)

            if holiday_date.year < MIN_HOLIDAY_YEAR:
                raise DataIntegrityError(f"不正な年度: {holiday_date.year}",
                                         data_source=self.source_url)

            existing = holidays.get(holiday_date)
            if existing is not None and existing.name != holiday_name:
                raise DataIntegrityError(
                    f"日付 {holiday_date} に異なる祝日名: {existing.name} / {holiday_name}",
                    data_source=self.source_url
                )

            holidays[holiday_date] = Holiday(date=holiday_date, name=holiday_name)

        if not holidays:
            raise DataIntegrityError("祝日データが空です", data_source=self.source_url)

        logger.info(f"CSV解析完了: {len(holidays)} 件")
        return HolidayTable(holidays)

    @staticmethod
    def _parse_csv_date(text: str) -> Optional[date]:
        for date_format in CSV_DATE_FORMATS:
            try:
                return datetime.strptime(text, date_format).date()
            except ValueError:
                continue
        return None

    # ------------------------------------------------------------------
    # 更新
    # ------------------------------------------------------------------

    @with_error_handling(operation_name="refresh_holidays", category=ErrorCategory.DATA)
    @log_performance("refresh_holidays")
    def refresh(self, prefetched: Optional[FetchResult] = None) -> HolidayTable:
        """祝日データを再取得してキャッシュを置き換える.

        取得・解析・保存がすべて成功した場合のみ新しいテーブルを返す。

        Raises:
            FetchError: 取得失敗（キャッシュは変更されない）
            FileSystemError: キャッシュの保存に失敗
            EncodingError, DataIntegrityError: 取得データが不正
        """
        result = prefetched if prefetched is not None and prefetched.content is not None \
            else self.fetch()

        table = self.parse_csv(self.decode(result.content))

        now = _utcnow()
        metadata = CacheMetadata(
            last_updated=now,
            etag=result.etag,
            last_etag_check=now,
            source_url=self.source_url,
            strategy=self.strategy.value,
            max_age_hours=self.max_age_hours,
        )
        self.save(metadata, table)

        logger.info(f"祝日データ取得完了: {len(table)} 件")
        return table

    def get_holidays(self) -> HolidayTable:
        """起動時の祝日テーブル取得.

        - キャッシュなし / 起動時強制更新: 取得（失敗時は FetchError）
        - キャッシュ破損: 取得を試み、失敗時は空テーブル
        - 期限切れ等: 取得を試み、取得・保存の失敗時は古いキャッシュを継続使用
        """
        if self.force_refresh_on_startup or not self.exists():
            return self.refresh()

        try:
            metadata, table = self.load()
        except CacheCorruptError as e:
            handle_error(e, {"operation": "load_cache"})
            try:
                return self.refresh()
            except (FetchError, FileSystemError):
                logger.warning("祝日データを取得できないため空のテーブルを使用します")
                return HolidayTable()

        decision = self._evaluate(metadata)

        if decision.refresh:
            try:
                return self.refresh(prefetched=decision.prefetched)
            except (FetchError, FileSystemError):
                logger.warning("祝日データの更新に失敗したためキャッシュを継続使用します")
                return table

        if decision.etag_checked:
            try:
                self.save(metadata, table)
            except FileSystemError as e:
                logger.warning(f"ETag確認日時の保存に失敗: {e}")

        return table
