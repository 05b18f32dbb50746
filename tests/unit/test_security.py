"""
Unit tests for Security module.

- 入力検証（ファイルパス・URL）
- アトミックなファイル書き込み
- HTTPセッション設定
"""

import pytest
from unittest.mock import patch, MagicMock
from pathlib import Path

from holidays_jp.security import (
    InputValidator,
    SecureFileHandler,
    NetworkSecurityManager,
    validate_file_path_input,
    validate_url_input
)
from holidays_jp.error_handler import ErrorCategory, FileSystemError, ValidationError


class TestInputValidator:
    """Test cases for InputValidator class."""

    def test_validate_file_path_under_home(self, temp_dir):
        """Paths under HOME are accepted and parents are created."""
        target = temp_dir / "nested" / "dir" / "holidays.json"
        result = InputValidator.validate_file_path(target)

        assert result == target
        assert target.parent.exists()

    def test_validate_file_path_expands_user(self, temp_dir):
        result = validate_file_path_input("~/cache/holidays.json")
        assert result == temp_dir / "cache" / "holidays.json"

    def test_validate_file_path_with_invalid_type(self):
        """Test file path validation with invalid type."""
        with pytest.raises(ValidationError, match="File path must be string or Path"):
            InputValidator.validate_file_path(123)

    def test_validate_file_path_with_too_long_path(self):
        """Test file path validation with excessively long path."""
        long_path = 'x' * 300  # Exceeds MAX_FILE_PATH_LENGTH
        with pytest.raises(ValidationError, match="File path too long"):
            InputValidator.validate_file_path(long_path)

    def test_validate_file_path_with_null_bytes(self):
        """Test file path validation with null bytes."""
        with pytest.raises(ValidationError, match="null bytes"):
            InputValidator.validate_file_path("test\x00file.txt")

    def test_validate_file_path_outside_allowed_directories(self):
        """Test file path validation outside allowed directories."""
        with pytest.raises(ValidationError, match="outside allowed directories"):
            InputValidator.validate_file_path("/etc/passwd")

    def test_validate_file_path_traversal(self, temp_dir):
        with pytest.raises(ValidationError, match="outside allowed directories"):
            InputValidator.validate_file_path(str(temp_dir) + "/../../../etc/passwd")

    def test_validate_file_path_nonexistent_required(self, temp_dir):
        """Test file path validation when file must exist but doesn't."""
        with pytest.raises(ValidationError, match="File does not exist"):
            InputValidator.validate_file_path(temp_dir / "missing.json", require_exists=True)

    def test_validate_url_with_valid_urls(self):
        """Test URL validation with valid URLs."""
        valid_urls = [
            'https://www8.cao.go.jp/chosei/shukujitsu/syukujitsu.csv',
            'https://example.com/holidays.csv?year=2023',
        ]

        for url in valid_urls:
            assert InputValidator.validate_url(url) == url

    def test_validate_url_with_empty_url(self):
        """Test URL validation with empty URL."""
        with pytest.raises(ValidationError, match="URL cannot be empty"):
            InputValidator.validate_url("")

    def test_validate_url_with_non_https_when_required(self):
        """Test URL validation with non-HTTPS when HTTPS is required."""
        with pytest.raises(ValidationError, match="HTTPS required"):
            InputValidator.validate_url("http://example.com", require_https=True)

    def test_validate_url_http_allowed(self):
        assert validate_url_input("http://localhost:8000/x.csv", require_https=False)

    def test_validate_url_with_invalid_scheme(self):
        """Test URL validation with invalid scheme."""
        with pytest.raises(ValidationError, match="Invalid URL scheme"):
            InputValidator.validate_url("ftp://example.com/holidays.csv")

    def test_validate_url_with_suspicious_characters(self):
        """Test URL validation with suspicious characters."""
        suspicious_urls = [
            'https://example.com<script>',
            'https://example.com"onclick="alert(1)"',
            'https://example.com/a b.csv',
        ]

        for url in suspicious_urls:
            with pytest.raises(ValidationError, match="suspicious characters"):
                InputValidator.validate_url(url)

    def test_validate_url_without_hostname(self):
        """Test URL validation without hostname."""
        with pytest.raises(ValidationError, match="URL missing hostname"):
            InputValidator.validate_url("https://")


class TestSecureFileHandler:
    """Test cases for SecureFileHandler class."""

    def test_write_secure_file_atomic_operation(self, temp_dir):
        """Test that writing secure file is atomic."""
        test_file = temp_dir / 'cache' / 'holidays.json'
        test_file.parent.mkdir()
        test_file.write_text('old content', encoding='utf-8')

        result = SecureFileHandler.write_secure_file(test_file, '新しい内容')

        assert result == test_file
        assert test_file.read_text(encoding='utf-8') == '新しい内容'
        assert list(test_file.parent.glob('*.tmp')) == []

    def test_write_secure_file_permissions(self, temp_dir):
        test_file = temp_dir / 'config.json'
        SecureFileHandler.write_secure_file(test_file, '{}',
                                            permissions=SecureFileHandler.SECURE_FILE_PERMISSIONS)
        assert test_file.stat().st_mode & 0o777 == 0o600

    def test_failed_write_keeps_original(self, temp_dir):
        test_file = temp_dir / 'holidays.json'
        test_file.write_text('original', encoding='utf-8')

        with patch.object(Path, 'replace', side_effect=OSError("disk full")):
            with pytest.raises(FileSystemError, match="Cannot write secure file") as exc_info:
                SecureFileHandler.write_secure_file(test_file, 'replacement')

        assert exc_info.value.category == ErrorCategory.FILE_SYSTEM
        assert exc_info.value.file_path == str(test_file)

        assert test_file.read_text(encoding='utf-8') == 'original'
        assert list(temp_dir.glob('*.tmp')) == []

    def test_read_secure_file_success(self, temp_dir):
        test_file = temp_dir / 'config.json'
        test_file.write_text('{"cache": {}}', encoding='utf-8')
        assert SecureFileHandler.read_secure_file(test_file) == '{"cache": {}}'

    def test_read_secure_file_nonexistent(self, temp_dir):
        with pytest.raises(ValidationError, match="File does not exist"):
            SecureFileHandler.read_secure_file(temp_dir / "missing.json")


class TestNetworkSecurityManager:
    """Test cases for NetworkSecurityManager class."""

    def test_create_secure_session(self):
        """Test creating secure HTTP session."""
        session = NetworkSecurityManager.create_secure_session(max_retries=2)
        try:
            assert session.verify is True
            assert session.headers['User-Agent'] == NetworkSecurityManager.USER_AGENT
            retries = session.get_adapter('https://example.com').max_retries
            assert retries.total == 2
            assert 503 in retries.status_forcelist
        finally:
            session.close()

    @patch('holidays_jp.security.NetworkSecurityManager.create_secure_session')
    def test_secure_request_success(self, mock_create_session):
        """Test successful secure HTTP request."""
        mock_session = MagicMock()
        mock_response = MagicMock()
        mock_response.status_code = 200
        mock_session.request.return_value = mock_response
        mock_create_session.return_value = mock_session

        result = NetworkSecurityManager.secure_request('https://example.com/holidays.csv')

        assert result == mock_response
        mock_session.request.assert_called_once_with(
            'GET', 'https://example.com/holidays.csv', timeout=30
        )
        mock_session.close.assert_called_once()

    def test_secure_request_with_caller_session(self):
        """Caller-owned sessions are not closed and non-2xx responses pass through."""
        mock_session = MagicMock()
        mock_session.request.return_value.status_code = 304

        response = NetworkSecurityManager.secure_request(
            'https://example.com/holidays.csv', session=mock_session,
            headers={'If-None-Match': '"abc"'}, timeout=10
        )

        assert response.status_code == 304
        mock_session.close.assert_not_called()

    def test_secure_request_rejects_http(self):
        with pytest.raises(ValidationError, match="HTTPS required"):
            NetworkSecurityManager.secure_request('http://example.com/holidays.csv')
