"""
Pytest configuration and shared fixtures for the test suite.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch
import json

from requests.structures import CaseInsensitiveDict

from holidays_jp.error_handler import reset_error_handler
from holidays_jp.logging_config import cleanup_logging

# Test data constants (Cabinet Office CSV layout)
TEST_HOLIDAYS_CSV = """国民の祝日・休日月日,国民の祝日・休日名称
2022/1/1,元日
2022/1/10,成人の日
2022/2/11,建国記念の日
2022/2/23,天皇誕生日
2023/1/1,元日
2023/1/2,休日
2023/1/9,成人の日
2023/2/11,建国記念の日
2023/2/23,天皇誕生日
2023/3/21,春分の日
2023/5/3,憲法記念日
2023/5/4,みどりの日
2023/5/5,こどもの日
2023/11/3,文化の日
"""

TEST_HOLIDAYS = {
    "2022-01-01": "元日",
    "2022-01-10": "成人の日",
    "2023-01-01": "元日",
    "2023-01-02": "休日",
    "2023-01-09": "成人の日",
    "2023-02-11": "建国記念の日",
}

TEST_ETAG = '"5f3a-1c2b"'


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path).resolve()
    shutil.rmtree(temp_path)


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch, temp_dir):
    """Setup test environment with temporary directories."""
    # Mock home directory to use temp directory
    monkeypatch.setenv("HOME", str(temp_dir))

    # Ensure clean environment
    for name in ("HOLIDAYS_JP_SOURCE_URL", "HOLIDAYS_JP_CACHE_FILE",
                 "HOLIDAYS_JP_CACHE_STRATEGY", "HOLIDAYS_JP_MAX_AGE_HOURS"):
        monkeypatch.delenv(name, raising=False)

    reset_error_handler()
    yield temp_dir
    cleanup_logging()
    reset_error_handler()


@pytest.fixture
def cache_file(temp_dir):
    """Default cache file location under the temporary HOME."""
    return temp_dir / ".holidays-jp" / "cache" / "holidays.json"


@pytest.fixture
def sample_csv_bytes():
    """Official CSV as served by the Cabinet Office (Shift_JIS)."""
    return TEST_HOLIDAYS_CSV.encode('shift_jis')


@pytest.fixture
def make_response():
    """Factory for mocked ``requests.Response`` objects."""
    def _make_response(status_code=200, content=b"", etag=None, reason="OK"):
        response = Mock()
        response.status_code = status_code
        response.content = content
        response.reason = reason
        response.headers = CaseInsensitiveDict({'ETag': etag} if etag else {})
        return response
    return _make_response


@pytest.fixture
def mock_session(make_response, sample_csv_bytes):
    """Mock HTTP session serving the sample CSV.

    Patches the session factory so every HolidayCache created in the test
    talks to this mock instead of the network.
    """
    session = Mock()
    session.request.return_value = make_response(200, sample_csv_bytes, etag=TEST_ETAG)
    with patch('holidays_jp.cache.NetworkSecurityManager.create_secure_session',
               return_value=session):
        yield session


@pytest.fixture
def write_cache(cache_file):
    """Factory writing a cache file with the given metadata age."""
    def _write_cache(holidays=None, age_hours=1.0, etag=TEST_ETAG,
                     etag_check_age_hours=None, strategy="hybrid"):
        now = datetime.now(timezone.utc)
        last_etag_check = None
        if etag_check_age_hours is not None:
            last_etag_check = (now - timedelta(hours=etag_check_age_hours)).isoformat()

        payload = {
            "metadata": {
                "last_updated": (now - timedelta(hours=age_hours)).isoformat(),
                "etag": etag,
                "last_etag_check": last_etag_check,
                "source_url": "https://www8.cao.go.jp/chosei/shukujitsu/syukujitsu.csv",
                "strategy": strategy,
                "max_age_hours": 168,
            },
            "holidays": TEST_HOLIDAYS if holidays is None else holidays,
        }
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        cache_file.write_text(json.dumps(payload, ensure_ascii=False), encoding='utf-8')
        return cache_file
    return _write_cache
