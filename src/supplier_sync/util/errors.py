from __future__ import annotations

from typing import Optional


class SupplierSyncError(Exception):
    """Base class for supplier sync failures raised to callers."""


class ConfigurationError(SupplierSyncError):
    """Missing host, credentials or other settings; raised before any I/O."""


class AuthenticationError(SupplierSyncError):
    """The supplier rejected the configured credentials."""


class RequestTimeoutError(SupplierSyncError):
    def __init__(self, message: str, *, timeout_seconds: float) -> None:
        super().__init__(message)
        self.timeout_seconds = timeout_seconds


class ApiRequestError(SupplierSyncError):
    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FtpDownloadError(SupplierSyncError):
    def __init__(self, message: str, *, remote_path: str, attempts: int) -> None:
        super().__init__(message)
        self.remote_path = remote_path
        self.attempts = attempts
