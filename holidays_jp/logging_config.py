"""Logging and monitoring configuration module.

ログとモニタリング
- stderr へのコンソール出力（stdout はコマンド結果専用）
- ``--log-dir`` 指定時のローテーション付きファイル出力
- psutil による操作単位のパフォーマンス計測
"""

import functools
import json
import logging
import logging.handlers
import sys
import threading
import time
import traceback
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import psutil

PACKAGE_LOGGER = 'holidays_jp'

APPLICATION_LOG = 'application.log'
PERFORMANCE_LOG = 'performance.log'


class LogLevel(Enum):
    """ログレベル"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


class LogFormat(Enum):
    """ログフォーマット"""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"
    STRUCTURED = "structured"


@dataclass
class PerformanceMetric:
    """1回の操作の計測結果"""
    operation: str
    started_at: float
    duration: float
    memory_delta_mb: float
    cpu_percent: float
    success: bool
    error_message: Optional[str] = None


class StructuredFormatter(logging.Formatter):
    """Formats records as a single line or as JSON.

    ``extra=`` attributes listed in EXTRA_FIELDS are carried into the JSON
    forms; error_handler and PerformanceMonitor attach them.
    """

    EXTRA_FIELDS = ('operation', 'technical_message', 'recovery_suggestions',
                    'performance_metric')

    def __init__(self, format_type: LogFormat = LogFormat.SIMPLE):
        super().__init__()
        self.format_type = format_type

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).isoformat()
        message = record.getMessage()

        if self.format_type is LogFormat.SIMPLE:
            return f"{timestamp} [{record.levelname}] {message}"
        if self.format_type is LogFormat.DETAILED:
            return (f"{timestamp} [{record.levelname}] "
                    f"{record.name}:{record.funcName}:{record.lineno} - {message}")

        payload: Dict[str, Any] = {
            'timestamp': timestamp,
            'level': record.levelname,
            'logger': record.name,
            'message': message,
            'function': record.funcName,
            'line': record.lineno,
        }
        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                payload[field] = getattr(record, field)
        if record.exc_info and record.exc_info[0] is not None:
            payload['exception'] = ''.join(traceback.format_exception(*record.exc_info))

        indent = 2 if self.format_type is LogFormat.STRUCTURED else None
        return json.dumps(payload, ensure_ascii=False, default=str, indent=indent)


class PerformanceMonitor:
    """Collects timing, RSS and CPU figures per operation."""

    def __init__(self):
        self._metrics: List[PerformanceMetric] = []
        self._lock = threading.Lock()
        self._process = psutil.Process()
        self.logger = logging.getLogger(__name__)

    def _rss_mb(self) -> float:
        return self._process.memory_info().rss / (1024 * 1024)

    @contextmanager
    def monitor_operation(self, operation_name: str):
        """操作を計測し、終了時に INFO（失敗時 WARNING）でログ出力する"""
        started_at = time.time()
        rss_before = self._rss_mb()
        self._process.cpu_percent()
        error_message = None

        try:
            yield
        except Exception as e:
            error_message = str(e)
            raise
        finally:
            metric = PerformanceMetric(
                operation=operation_name,
                started_at=started_at,
                duration=time.time() - started_at,
                memory_delta_mb=self._rss_mb() - rss_before,
                cpu_percent=self._process.cpu_percent(),
                success=error_message is None,
                error_message=error_message,
            )
            with self._lock:
                self._metrics.append(metric)

            self.logger.log(
                logging.INFO if metric.success else logging.WARNING,
                f"Operation '{operation_name}' took {metric.duration:.3f}s "
                f"(memory {metric.memory_delta_mb:+.2f}MB, CPU {metric.cpu_percent:.1f}%)",
                extra={'operation': operation_name, 'performance_metric': asdict(metric)}
            )

    def summarize(self) -> Dict[str, Dict[str, Any]]:
        """操作名ごとの件数・成否・所要時間"""
        with self._lock:
            metrics = list(self._metrics)

        grouped: Dict[str, List[PerformanceMetric]] = defaultdict(list)
        for metric in metrics:
            grouped[metric.operation].append(metric)

        summary = {}
        for operation, items in grouped.items():
            durations = [m.duration for m in items]
            succeeded = sum(1 for m in items if m.success)
            summary[operation] = {
                'count': len(items),
                'success_count': succeeded,
                'error_count': len(items) - succeeded,
                'total_seconds': sum(durations),
                'max_seconds': max(durations),
            }
        return summary

    def reset(self):
        with self._lock:
            self._metrics.clear()


class LoggingManager:
    """ログ出力先の管理

    configure_root=True（CLI）はルートロガーを引き受けて stderr と、
    log_dir 指定時はローテーションファイルへ出力する。False（ライブラリ利用）は
    ハンドラーを追加せず、ホストアプリケーションの設定に任せる。
    """

    def __init__(self,
                 log_level: LogLevel = LogLevel.WARNING,
                 log_format: LogFormat = LogFormat.SIMPLE,
                 log_dir: Optional[str] = None,
                 enable_performance_monitoring: bool = False,
                 configure_root: bool = True,
                 max_log_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5):
        self.log_level = log_level
        self.log_format = log_format
        self.log_dir = Path(log_dir).expanduser() if log_dir else None
        self.configure_root = configure_root
        self.max_log_size = max_log_size
        self.backup_count = backup_count

        self.performance_monitor = PerformanceMonitor() if enable_performance_monitoring else None
        self.logger = logging.getLogger() if configure_root else logging.getLogger(PACKAGE_LOGGER)
        # set_debug_mode が追従するハンドラー（performance.log は INFO 固定）
        self._level_handlers: List[logging.Handler] = []
        self._owned_handlers: List[logging.Handler] = []

        if configure_root:
            self._install_handlers()

    def _install_handlers(self):
        for handler in self.logger.handlers[:]:
            self.logger.removeHandler(handler)
        self.logger.setLevel(self.log_level.value)

        formatter = StructuredFormatter(self.log_format)

        console = logging.StreamHandler(sys.stderr)
        self._add_handler(console, formatter, follows_level=True)

        if self.log_dir is None:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._add_handler(self._rotating_handler(APPLICATION_LOG), formatter,
                          follows_level=True)

        if self.performance_monitor:
            # 計測ログはコンソールのレベルに関係なく performance.log へ届ける
            logging.getLogger(__name__).setLevel(logging.INFO)
            perf = self._rotating_handler(PERFORMANCE_LOG)
            perf.setLevel(logging.INFO)
            perf.addFilter(lambda record: hasattr(record, 'performance_metric'))
            self._add_handler(perf, StructuredFormatter(LogFormat.JSON), follows_level=False)

    def _rotating_handler(self, filename: str) -> logging.Handler:
        return logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_log_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )

    def _add_handler(self, handler: logging.Handler, formatter: logging.Formatter,
                     follows_level: bool):
        handler.setFormatter(formatter)
        if follows_level:
            handler.setLevel(self.log_level.value)
            self._level_handlers.append(handler)
        self._owned_handlers.append(handler)
        self.logger.addHandler(handler)

    def set_debug_mode(self, enabled: bool):
        """デバッグモードを設定"""
        self.log_level = LogLevel.DEBUG if enabled else LogLevel.WARNING
        self.logger.setLevel(self.log_level.value)
        for handler in self._level_handlers:
            handler.setLevel(self.log_level.value)
        self.logger.debug(f"Debug mode {'enabled' if enabled else 'disabled'}")

    def monitor_operation(self, operation_name: str):
        if self.performance_monitor:
            return self.performance_monitor.monitor_operation(operation_name)
        return _unmonitored()

    def cleanup(self):
        """計測サマリーを出力してハンドラーをフラッシュ"""
        if self.performance_monitor:
            for operation, stats in self.performance_monitor.summarize().items():
                logging.getLogger(__name__).info(
                    f"Performance summary '{operation}': {stats['count']} run(s), "
                    f"{stats['error_count']} failed, {stats['total_seconds']:.3f}s total",
                    extra={'operation': operation, 'performance_metric': stats}
                )
            self.performance_monitor.reset()

        for handler in self._owned_handlers:
            handler.flush()

    def close(self):
        """このマネージャーが追加したハンドラーを取り外して閉じる"""
        for handler in self._owned_handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self._owned_handlers.clear()
        self._level_handlers.clear()
        logging.getLogger(__name__).setLevel(logging.NOTSET)


@contextmanager
def _unmonitored():
    yield


def log_performance(operation_name: Optional[str] = None):
    """パフォーマンス監視デコレータ（--enable-monitoring 時のみ計測）"""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            name = operation_name or f"{func.__module__}.{func.__name__}"
            with get_logging_manager().monitor_operation(name):
                return func(*args, **kwargs)
        return wrapper
    return decorator


_global_logging_manager: Optional[LoggingManager] = None


def get_logging_manager() -> LoggingManager:
    """Current manager; a root-neutral one until setup_logging runs."""
    global _global_logging_manager
    if _global_logging_manager is None:
        _global_logging_manager = LoggingManager(configure_root=False)
    return _global_logging_manager


def setup_logging(
    log_level: LogLevel = LogLevel.WARNING,
    log_format: LogFormat = LogFormat.SIMPLE,
    log_dir: Optional[str] = None,
    enable_performance_monitoring: bool = False,
    debug_mode: bool = False
) -> LoggingManager:
    """CLI 用にルートロガーを設定する"""
    global _global_logging_manager

    if _global_logging_manager is not None:
        _global_logging_manager.close()

    _global_logging_manager = LoggingManager(
        log_level=LogLevel.DEBUG if debug_mode else log_level,
        log_format=log_format,
        log_dir=log_dir,
        enable_performance_monitoring=enable_performance_monitoring,
    )
    return _global_logging_manager


def set_debug_mode(enabled: bool):
    get_logging_manager().set_debug_mode(enabled)


def cleanup_logging():
    """計測サマリーを出力し、ハンドラーを閉じてマネージャーを破棄する"""
    global _global_logging_manager
    if _global_logging_manager:
        _global_logging_manager.cleanup()
        _global_logging_manager.close()
        _global_logging_manager = None
