"""Error handling framework module.

祝日判定ツールのエラーハンドリング
- エラー種別ごとのカスタム例外クラス
- 重要度に応じたログ出力とエラー履歴
- ユーザーフレンドリーなエラーメッセージ
"""

import logging
import traceback
import sys
from typing import Dict, Any, Optional, List, Union
from enum import Enum
from dataclasses import dataclass
from datetime import datetime
import functools
import json
import os
from pathlib import Path


class ErrorSeverity(Enum):
    """エラー重要度レベル"""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


class ErrorCategory(Enum):
    """エラーカテゴリ"""
    NETWORK = "network"
    DATA = "data"
    FILE_SYSTEM = "file_system"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    ENCODING = "encoding"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """エラーコンテキスト情報"""
    timestamp: datetime
    severity: ErrorSeverity
    category: ErrorCategory
    operation: str
    user_message: str
    technical_message: str
    recovery_suggestions: List[str]
    context_data: Dict[str, Any]
    stack_trace: Optional[str] = None


class BaseApplicationError(Exception):
    """アプリケーション基底例外クラス"""

    def __init__(
        self,
        message: str,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        operation: str = "",
        recovery_suggestions: Optional[List[str]] = None,
        context_data: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.severity = severity
        self.category = category
        self.operation = operation
        self.recovery_suggestions = recovery_suggestions or []
        self.context_data = context_data or {}
        self.cause = cause
        self.timestamp = datetime.now()
        self.handled = False

    def get_user_message(self) -> str:
        """ユーザーフレンドリーなエラーメッセージを取得"""
        return str(self)

    def get_technical_message(self) -> str:
        """技術的な詳細メッセージを取得"""
        technical_msg = f"{self.__class__.__name__}: {str(self)}"
        if self.cause:
            technical_msg += f" (Caused by: {type(self.cause).__name__}: {str(self.cause)})"
        return technical_msg

    def to_error_context(self) -> ErrorContext:
        """ErrorContextオブジェクトに変換"""
        return ErrorContext(
            timestamp=self.timestamp,
            severity=self.severity,
            category=self.category,
            operation=self.operation,
            user_message=self.get_user_message(),
            technical_message=self.get_technical_message(),
            recovery_suggestions=self.recovery_suggestions,
            context_data=self.context_data,
            stack_trace=traceback.format_exc() if sys.exc_info()[0] else None
        )


# 入力検証関連エラー
class ValidationError(BaseApplicationError):
    """入力検証エラー"""

    def __init__(self, message: str, field: str = "", value: Any = None, **kwargs):
        kwargs.setdefault("recovery_suggestions", [
            "入力値を確認してください",
            "正しい形式で入力してください"
        ])
        kwargs.setdefault("context_data", {"field": field, "value": value})
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )


class DateParseError(ValidationError):
    """日付文字列の解析エラー

    どの形式にも一致しない場合、または暦上存在しない日付の場合に送出される。
    """

    def __init__(self, value: Any, supported_formats: Optional[List[str]] = None,
                 reason: str = "", **kwargs):
        self.value = value
        self.supported_formats = list(supported_formats or [])
        message = f"Invalid date: '{value}'"
        if reason:
            message += f" ({reason})"
        super().__init__(
            message,
            field="date",
            value=value,
            recovery_suggestions=[
                "Supported formats: " + ", ".join(self.supported_formats)
                if self.supported_formats else "日付の形式を確認してください",
                "Examples: 2023-01-01, 2023/01/01, 2023年1月1日, 20230101"
            ],
            context_data={"value": value, "supported_formats": self.supported_formats},
            **kwargs
        )


class InvalidRangeError(ValidationError):
    """日付範囲の指定エラー（開始日が終了日より後）"""

    def __init__(self, start: Any, end: Any, **kwargs):
        self.start = start
        self.end = end
        super().__init__(
            f"Start date must be before or equal to end date: {start} > {end}",
            field="range",
            value=(str(start), str(end)),
            recovery_suggestions=[
                "開始日と終了日を入れ替えてください",
                "Example: list --start 2023-01-01 --end 2023-12-31"
            ],
            context_data={"start": str(start), "end": str(end)},
            **kwargs
        )


# ネットワーク関連エラー
class NetworkError(BaseApplicationError):
    """ネットワーク接続エラー"""

    def __init__(self, message: str, url: str = "", timeout: float = 0, **kwargs):
        kwargs.setdefault("recovery_suggestions", [
            "インターネット接続を確認してください",
            "プロキシ設定を確認してください",
            "しばらく時間をおいて再試行してください"
        ])
        kwargs.setdefault("context_data", {"url": url, "timeout": timeout})
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.NETWORK,
            **kwargs
        )
        self.url = url
        self.timeout = timeout


class FetchError(NetworkError):
    """祝日CSVの取得失敗"""

    def __init__(self, message: str, url: str = "", timeout: float = 0,
                 status_code: Optional[int] = None, **kwargs):
        super().__init__(
            message,
            url=url,
            timeout=timeout,
            context_data={"url": url, "timeout": timeout, "status_code": status_code},
            **kwargs
        )
        self.status_code = status_code


# データ関連エラー
class DataError(BaseApplicationError):
    """データ関連エラー"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(
            message,
            category=ErrorCategory.DATA,
            **kwargs
        )


class DataIntegrityError(DataError):
    """データ整合性エラー"""

    def __init__(self, message: str, data_source: str = "", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            recovery_suggestions=[
                "データソースの整合性を確認してください",
                "データを再取得してください"
            ],
            context_data={"data_source": data_source},
            **kwargs
        )


# ファイルシステム関連エラー
class FileSystemError(BaseApplicationError):
    """ファイル書き込みエラー"""

    def __init__(self, message: str, file_path: str = "", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.FILE_SYSTEM,
            recovery_suggestions=[
                "ファイル権限を確認してください",
                "ディスク容量を確認してください"
            ],
            context_data={"file_path": file_path},
            **kwargs
        )
        self.file_path = file_path


class CacheCorruptError(BaseApplicationError):
    """キャッシュファイルの読み込み・解析エラー"""

    def __init__(self, message: str, cache_file: str = "", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.FILE_SYSTEM,
            recovery_suggestions=[
                "'update' コマンドでキャッシュを再作成してください",
                f"キャッシュファイルを削除してください: {cache_file}"
            ],
            context_data={"cache_file": cache_file},
            **kwargs
        )
        self.cache_file = cache_file


# エンコーディング関連エラー
class EncodingError(BaseApplicationError):
    """文字エンコーディングエラー"""

    def __init__(self, message: str, encoding: str = "", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.ENCODING,
            recovery_suggestions=[
                "データソースの文字エンコーディングを確認してください"
            ],
            context_data={"encoding": encoding},
            **kwargs
        )


# 設定関連エラー
class ConfigurationError(BaseApplicationError):
    """設定エラー"""

    def __init__(self, message: str, config_key: str = "", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            recovery_suggestions=[
                "設定ファイルを確認してください",
                "環境変数を確認してください",
                "デフォルト設定を使用してください"
            ],
            context_data={"config_key": config_key},
            **kwargs
        )


class ErrorHandler:
    """統合エラーハンドラー"""

    def __init__(self, log_file: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.error_history: List[ErrorContext] = []
        self.log_file = log_file

    def handle_error(
        self,
        error: Union[BaseApplicationError, Exception],
        context: Optional[Dict[str, Any]] = None
    ) -> ErrorContext:
        """エラーを処理

        Args:
            error: 処理するエラー
            context: 呼び出し側の追加コンテキスト

        Returns:
            ErrorContext: エラーコンテキスト情報
        """
        if not isinstance(error, BaseApplicationError):
            error = self._convert_to_application_error(error)

        error_context = error.to_error_context()
        if context:
            error_context.context_data.update(context)

        error.handled = True
        self.error_history.append(error_context)
        self._log_error(error_context)

        return error_context

    def _convert_to_application_error(self, error: Exception) -> BaseApplicationError:
        """標準例外をBaseApplicationErrorに変換"""
        if isinstance(error, (ConnectionError, TimeoutError)):
            return NetworkError(str(error), cause=error)
        elif isinstance(error, UnicodeDecodeError):
            return EncodingError(str(error), encoding=error.encoding, cause=error)
        elif isinstance(error, (OSError, json.JSONDecodeError)):
            return CacheCorruptError(str(error), cause=error)
        else:
            return BaseApplicationError(
                str(error),
                severity=ErrorSeverity.MEDIUM,
                category=ErrorCategory.UNKNOWN,
                cause=error
            )

    def _log_error(self, error_context: ErrorContext):
        """エラーをログ出力"""
        log_level = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.HIGH: logging.ERROR,
            ErrorSeverity.MEDIUM: logging.WARNING,
            ErrorSeverity.LOW: logging.INFO,
            ErrorSeverity.INFO: logging.INFO
        }.get(error_context.severity, logging.ERROR)

        log_message = f"[{error_context.category.value.upper()}] {error_context.user_message}"

        self.logger.log(log_level, log_message, extra={
            'error_context': error_context,
            'technical_message': error_context.technical_message,
            'recovery_suggestions': error_context.recovery_suggestions
        })

        if self.log_file:
            self._write_error_to_file(error_context)

    def _write_error_to_file(self, error_context: ErrorContext):
        """エラーをJSON Lines形式でファイルに出力"""
        try:
            log_entry = {
                'timestamp': error_context.timestamp.isoformat(),
                'severity': error_context.severity.value,
                'category': error_context.category.value,
                'operation': error_context.operation,
                'user_message': error_context.user_message,
                'technical_message': error_context.technical_message,
                'recovery_suggestions': error_context.recovery_suggestions,
                'context_data': error_context.context_data,
                'stack_trace': error_context.stack_trace
            }

            os.makedirs(os.path.dirname(self.log_file), exist_ok=True)

            with open(self.log_file, 'a', encoding='utf-8') as f:
                f.write(json.dumps(log_entry, ensure_ascii=False, default=str) + '\n')

        except OSError as e:
            self.logger.error(f"Failed to write error to file: {e}")

    def get_error_statistics(self) -> Dict[str, Any]:
        """エラー統計を取得"""
        if not self.error_history:
            return {'total_errors': 0}

        category_counts: Dict[str, int] = {}
        severity_counts: Dict[str, int] = {}

        for error_context in self.error_history:
            category = error_context.category.value
            severity = error_context.severity.value

            category_counts[category] = category_counts.get(category, 0) + 1
            severity_counts[severity] = severity_counts.get(severity, 0) + 1

        return {
            'total_errors': len(self.error_history),
            'category_distribution': category_counts,
            'severity_distribution': severity_counts,
            'recent_errors': [
                {
                    'timestamp': ec.timestamp.isoformat(),
                    'category': ec.category.value,
                    'severity': ec.severity.value,
                    'message': ec.user_message
                }
                for ec in self.error_history[-10:]  # 最新10件
            ]
        }

    def clear_error_history(self):
        """エラー履歴をクリア"""
        self.error_history.clear()


# グローバルエラーハンドラーインスタンス
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """グローバルエラーハンドラーを取得"""
    global _global_error_handler
    if _global_error_handler is None:
        log_dir = Path.home() / '.holidays-jp' / 'logs'
        log_file = log_dir / 'errors.jsonl'
        _global_error_handler = ErrorHandler(str(log_file))
    return _global_error_handler


def reset_error_handler():
    """グローバルエラーハンドラーを破棄（HOME変更後の再生成用）"""
    global _global_error_handler
    _global_error_handler = None


def handle_error(
    error: Union[BaseApplicationError, Exception],
    context: Optional[Dict[str, Any]] = None
) -> ErrorContext:
    """グローバルエラーハンドラーでエラーを処理"""
    return get_error_handler().handle_error(error, context)


def with_error_handling(
    operation_name: str = "",
    category: ErrorCategory = ErrorCategory.UNKNOWN
):
    """エラーハンドリングデコレータ

    BaseApplicationErrorはoperationを補完して記録・再送出し（記録済みなら再送出のみ）、
    それ以外の例外は指定カテゴリのBaseApplicationErrorに包んで送出する。
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except BaseApplicationError as e:
                if e.handled:
                    raise
                if not e.operation:
                    e.operation = operation_name or func.__name__
                handle_error(e)
                raise
            except Exception as e:
                app_error = BaseApplicationError(
                    str(e),
                    category=category,
                    operation=operation_name or func.__name__,
                    cause=e
                )
                handle_error(app_error)
                raise app_error from e
        return wrapper
    return decorator
