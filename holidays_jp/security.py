"""
Security module for input validation and safe I/O.

This module provides validation for URLs and file paths, a hardened HTTP
session for fetching the holiday source, and atomic file writes so that
readers never observe a half-written cache or config file.
"""

import os
import tempfile
from pathlib import Path
from typing import Union, Optional
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from . import __version__
from .error_handler import FileSystemError, ValidationError


class InputValidator:
    """
    Input validation and sanitization class.

    Provides methods for validating file paths and URLs supplied through
    configuration files, environment variables and the command line.
    """

    MAX_FILE_PATH_LENGTH = 260  # Windows MAX_PATH limit
    MAX_URL_LENGTH = 2048

    @classmethod
    def validate_file_path(cls, file_path: Union[str, Path],
                           allow_create: bool = True,
                           require_exists: bool = False) -> Path:
        """
        Validate file path and protect against path traversal attacks.

        Args:
            file_path: File path to validate (``~`` is expanded)
            allow_create: Whether to create missing parent directories
            require_exists: Whether the file must already exist

        Returns:
            Path: Validated and resolved file path

        Raises:
            ValidationError: If file path is invalid or unsafe
        """
        if not isinstance(file_path, (str, Path)):
            raise ValidationError(f"File path must be string or Path, got: {type(file_path)}")

        path_str = str(file_path)

        if len(path_str) > cls.MAX_FILE_PATH_LENGTH:
            raise ValidationError(f"File path too long: {len(path_str)} > {cls.MAX_FILE_PATH_LENGTH}")

        if '\x00' in path_str:
            raise ValidationError("File path contains null bytes")

        try:
            resolved_path = Path(path_str).expanduser().resolve()
        except (OSError, RuntimeError, ValueError) as e:
            raise ValidationError(f"Cannot resolve file path: {e}")

        # Allow paths within current working directory or user home directory
        allowed_roots = [Path.cwd().resolve(), Path.home().resolve()]

        is_allowed = False
        for allowed_root in allowed_roots:
            try:
                resolved_path.relative_to(allowed_root)
                is_allowed = True
                break
            except ValueError:
                continue

        if not is_allowed:
            raise ValidationError(f"File path outside allowed directories: {resolved_path}")

        if require_exists and not resolved_path.exists():
            raise ValidationError(f"File does not exist: {resolved_path}")

        if allow_create and not resolved_path.parent.exists():
            try:
                resolved_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValidationError(f"Cannot create parent directory: {e}")

        if resolved_path.exists() and not os.access(resolved_path, os.R_OK):
            raise ValidationError(f"File not readable: {resolved_path}")

        return resolved_path

    @classmethod
    def validate_url(cls, url: str, require_https: bool = True) -> str:
        """
        Validate URL and enforce security requirements.

        Args:
            url: URL to validate
            require_https: Whether to require HTTPS protocol

        Returns:
            str: Validated URL

        Raises:
            ValidationError: If URL is invalid or insecure
        """
        if not isinstance(url, str):
            raise ValidationError(f"URL must be string, got: {type(url)}")

        url = url.strip()
        if not url:
            raise ValidationError("URL cannot be empty")

        if len(url) > cls.MAX_URL_LENGTH:
            raise ValidationError(f"URL too long: {len(url)} > {cls.MAX_URL_LENGTH}")

        try:
            parsed = urlparse(url)
        except ValueError as e:
            raise ValidationError(f"Invalid URL format: {e}")

        if parsed.scheme not in ['http', 'https']:
            raise ValidationError(f"Invalid URL scheme: {parsed.scheme}")

        if require_https and parsed.scheme != 'https':
            raise ValidationError(f"HTTPS required, got: {parsed.scheme}")

        suspicious_chars = ['<', '>', '"', "'", '`', ' ']
        if any(char in url for char in suspicious_chars):
            raise ValidationError(f"URL contains suspicious characters: {url}")

        if not parsed.netloc:
            raise ValidationError("URL missing hostname")

        return url


class SecureFileHandler:
    """
    Secure file operations with proper permissions and atomic replacement.
    """

    SECURE_FILE_PERMISSIONS = 0o600  # rw-------
    READABLE_FILE_PERMISSIONS = 0o644  # rw-r--r--

    @classmethod
    def read_secure_file(cls, file_path: Union[str, Path]) -> str:
        """
        Read a UTF-8 text file after path validation.

        Raises:
            ValidationError: If the path is unsafe or the file cannot be read
        """
        validated_path = InputValidator.validate_file_path(file_path, allow_create=False,
                                                           require_exists=True)
        try:
            return validated_path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise ValidationError(f"Cannot read file: {e}")

    @classmethod
    def write_secure_file(cls, file_path: Union[str, Path], content: str,
                          permissions: int = READABLE_FILE_PERMISSIONS) -> Path:
        """
        Write a file atomically.

        The content goes to a temporary file in the destination directory
        which is then renamed over the target, so the target is either the
        old complete file or the new complete file.

        Args:
            file_path: Path to write
            content: File content
            permissions: File permissions

        Returns:
            Path: The resolved destination path

        Raises:
            ValidationError: If the path is unsafe
            FileSystemError: If the write fails (the target is left untouched)
        """
        validated_path = InputValidator.validate_file_path(file_path, allow_create=True)

        fd, temp_name = tempfile.mkstemp(
            prefix=f".{validated_path.name}.",
            suffix='.tmp',
            dir=str(validated_path.parent)
        )
        temp_path = Path(temp_name)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8', newline='') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            temp_path.chmod(permissions)
            temp_path.replace(validated_path)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise FileSystemError(f"Cannot write secure file: {e}", file_path=str(validated_path),
                                  cause=e)

        return validated_path


def validate_file_path_input(file_path: Union[str, Path], **kwargs) -> Path:
    """Convenience function for file path validation."""
    return InputValidator.validate_file_path(file_path, **kwargs)


def validate_url_input(url: str, require_https: bool = True) -> str:
    """Convenience function for URL validation."""
    return InputValidator.validate_url(url, require_https)


class NetworkSecurityManager:
    """
    Network security manager for HTTPS connections with bounded retries.
    """

    USER_AGENT = f'holidays-jp/{__version__}'

    @staticmethod
    def create_secure_session(max_retries: int = 3,
                              backoff_factor: float = 1.0) -> requests.Session:
        """
        Create an HTTP session with SSL verification and retry policy.

        Args:
            max_retries: Total retry attempts for idempotent requests
            backoff_factor: urllib3 exponential backoff factor

        Returns:
            requests.Session: Configured session
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        session.headers.update({
            'User-Agent': NetworkSecurityManager.USER_AGENT,
            'Accept': 'text/csv,text/plain,*/*',
            'Accept-Encoding': 'gzip, deflate',
        })

        session.verify = True

        return session

    @staticmethod
    def secure_request(url: str, method: str = 'GET',
                       session: Optional[requests.Session] = None,
                       require_https: bool = True,
                       **kwargs) -> requests.Response:
        """
        Make an HTTP request after URL validation.

        Non-2xx responses are returned to the caller unchanged so that
        conditional requests can inspect ``304 Not Modified``.

        Raises:
            ValidationError: If the URL fails validation
            requests.RequestException: If the request itself fails
        """
        validated_url = InputValidator.validate_url(url, require_https=require_https)

        owns_session = session is None
        if owns_session:
            session = NetworkSecurityManager.create_secure_session()

        try:
            kwargs.setdefault('timeout', 30)
            return session.request(method, validated_url, **kwargs)
        finally:
            if owns_session:
                session.close()
