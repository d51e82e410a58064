from __future__ import annotations

import fnmatch
import ftplib
import io
import re
import time
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel

from supplier_sync.engine.parsing.locale import decode_bytes
from supplier_sync.util.errors import FtpDownloadError
from supplier_sync.util.logging import get_logger, log_event
from supplier_sync.util.metrics import CloudWatchMetrics

DEFAULT_FTP_PORT = 21
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_RETRIES = 2
CONNECTION_TEST_TIMEOUT_SECONDS = 10.0
MAX_BACKOFF_SECONDS = 10.0


class FtpCredentials(BaseModel):
    host: str
    port: int = DEFAULT_FTP_PORT
    username: str
    password: str
    secure: bool = False
    passive: bool = True


class FtpDownloadOptions(BaseModel):
    remote_directory: str
    file_pattern: Optional[str] = None
    encoding: str = "utf-8"
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES


class FtpFileInfo(BaseModel):
    name: str
    size: int = 0
    modified_at: Optional[datetime] = None
    is_directory: bool = False


class FtpDownloadResult(BaseModel):
    file_name: str
    data: bytes
    content: str
    size_bytes: int
    downloaded_at: datetime
    encoding: str


class FtpConnectionResult(BaseModel):
    success: bool
    error: Optional[str] = None


FtpFactory = Callable[[FtpCredentials], ftplib.FTP]


def default_ftp_factory(credentials: FtpCredentials) -> ftplib.FTP:
    if credentials.secure:
        return ftplib.FTP_TLS()
    return ftplib.FTP()


def glob_to_regex(pattern: str) -> "re.Pattern[str]":
    return re.compile(fnmatch.translate(pattern), re.IGNORECASE)


def backoff_seconds(attempt: int) -> float:
    """Delay before retry ``attempt`` (1-based): 1s, 2s, 4s... capped at 10s."""
    return min(float(2 ** (attempt - 1)), MAX_BACKOFF_SECONDS)


def join_remote_path(directory: str, name: str) -> str:
    return re.sub(r"/{2,}", "/", f"{directory}/{name}")


def _parse_ftp_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    except ValueError:
        return None


class FtpCatalogClient:
    """Lists and downloads supplier catalog files.

    Every operation opens its own connection and closes it when done, so a
    retry never inherits a half-open session from the failed attempt.
    """

    def __init__(
        self,
        credentials: FtpCredentials,
        *,
        ftp_factory: FtpFactory = default_ftp_factory,
        sleep: Callable[[float], None] = time.sleep,
        metrics: Optional[CloudWatchMetrics] = None,
        supplier_code: str = "",
    ) -> None:
        self.credentials = credentials
        self.ftp_factory = ftp_factory
        self.sleep = sleep
        self.metrics = metrics
        self.supplier_code = supplier_code
        self.logger = get_logger(self.__class__.__name__)

    def _connect(self, timeout_seconds: float) -> ftplib.FTP:
        ftp = self.ftp_factory(self.credentials)
        try:
            ftp.connect(self.credentials.host, self.credentials.port, timeout=timeout_seconds)
            ftp.login(self.credentials.username, self.credentials.password)
            if isinstance(ftp, ftplib.FTP_TLS):
                ftp.prot_p()
            ftp.set_pasv(self.credentials.passive)
        except ftplib.all_errors:
            # QUIT needs an open control connection, which a failed connect never made.
            ftp.close()
            raise
        return ftp

    @staticmethod
    def _close(ftp: ftplib.FTP) -> None:
        try:
            ftp.quit()
        except (*ftplib.all_errors, AttributeError):
            ftp.close()

    def list_files(self, options: FtpDownloadOptions) -> List[FtpFileInfo]:
        ftp = self._connect(options.timeout_seconds)
        try:
            entries = self._list_directory(ftp, options.remote_directory)
        finally:
            self._close(ftp)

        files = [entry for entry in entries if not entry.is_directory]
        if options.file_pattern:
            pattern = glob_to_regex(options.file_pattern)
            files = [entry for entry in files if pattern.match(entry.name)]
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(files, key=lambda entry: entry.modified_at or epoch, reverse=True)

    def _list_directory(self, ftp: ftplib.FTP, directory: str) -> List[FtpFileInfo]:
        try:
            return [
                FtpFileInfo(
                    name=name,
                    size=int(facts.get("size", 0) or 0),
                    modified_at=_parse_ftp_timestamp(facts.get("modify")),
                    is_directory=facts.get("type") in {"dir", "cdir", "pdir"},
                )
                for name, facts in ftp.mlsd(directory, facts=["type", "size", "modify"])
                if name not in {".", ".."}
            ]
        except ftplib.error_perm:
            # Server without MLSD support.
            return self._list_directory_legacy(ftp, directory)

    def _list_directory_legacy(self, ftp: ftplib.FTP, directory: str) -> List[FtpFileInfo]:
        entries: List[FtpFileInfo] = []
        for listed in ftp.nlst(directory):
            name = listed.rsplit("/", 1)[-1]
            if name in {".", ".."}:
                continue
            path = join_remote_path(directory, name)
            try:
                size = ftp.size(path) or 0
            except ftplib.error_perm:
                entries.append(FtpFileInfo(name=name, is_directory=True))
                continue
            try:
                modified = _parse_ftp_timestamp(ftp.sendcmd(f"MDTM {path}").split()[-1])
            except ftplib.error_perm:
                modified = None
            entries.append(FtpFileInfo(name=name, size=size, modified_at=modified))
        return entries

    def download_file(self, remote_path: str, options: FtpDownloadOptions) -> FtpDownloadResult:
        last_error: Optional[BaseException] = None
        attempts = options.max_retries + 1
        for attempt in range(attempts):
            if attempt > 0:
                delay = backoff_seconds(attempt)
                log_event(
                    self.logger,
                    "ftp_download_retry",
                    host=self.credentials.host,
                    remote_path=remote_path,
                    attempt=attempt,
                    max_retries=options.max_retries,
                    delay_seconds=delay,
                )
                if self.metrics:
                    self.metrics.record_ftp_retry(supplier_code=self.supplier_code)
                self.sleep(delay)
            try:
                data = self._retrieve(remote_path, options.timeout_seconds)
            except ftplib.all_errors as exc:
                last_error = exc
                log_event(
                    self.logger,
                    "ftp_download_attempt_failed",
                    host=self.credentials.host,
                    remote_path=remote_path,
                    attempt=attempt + 1,
                    error=str(exc),
                )
                continue
            return FtpDownloadResult(
                file_name=remote_path.rsplit("/", 1)[-1] or remote_path,
                data=data,
                content=decode_bytes(data, options.encoding),
                size_bytes=len(data),
                downloaded_at=datetime.now(timezone.utc),
                encoding=options.encoding,
            )
        raise FtpDownloadError(
            f"download of {remote_path} failed after {attempts} attempts: {last_error}",
            remote_path=remote_path,
            attempts=attempts,
        ) from last_error

    def _retrieve(self, remote_path: str, timeout_seconds: float) -> bytes:
        ftp = self._connect(timeout_seconds)
        try:
            buffer = io.BytesIO()
            ftp.retrbinary(f"RETR {remote_path}", buffer.write)
            return buffer.getvalue()
        finally:
            self._close(ftp)

    def download_latest(self, options: FtpDownloadOptions) -> Optional[FtpDownloadResult]:
        files = self.list_files(options)
        if not files:
            log_event(
                self.logger,
                "ftp_no_matching_files",
                host=self.credentials.host,
                directory=options.remote_directory,
                pattern=options.file_pattern,
            )
            return None
        latest = files[0]
        log_event(
            self.logger,
            "ftp_download_latest",
            host=self.credentials.host,
            file_name=latest.name,
            size=latest.size,
            modified_at=latest.modified_at,
        )
        return self.download_file(join_remote_path(options.remote_directory, latest.name), options)

    def test_connection(self) -> FtpConnectionResult:
        try:
            ftp = self._connect(CONNECTION_TEST_TIMEOUT_SECONDS)
        except ftplib.all_errors as exc:
            return FtpConnectionResult(success=False, error=str(exc))
        self._close(ftp)
        return FtpConnectionResult(success=True)
