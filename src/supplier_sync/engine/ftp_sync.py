from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel

from supplier_sync.adapters.ftp.client import (
    DEFAULT_FTP_PORT,
    FtpCatalogClient,
    FtpConnectionResult,
    FtpCredentials,
    FtpDownloadOptions,
)
from supplier_sync.engine.canonical.models import ParsedRow
from supplier_sync.engine.sync_engine import SyncEngine
from supplier_sync.persistence.credentials import SupplierCredentials
from supplier_sync.util.errors import ConfigurationError
from supplier_sync.util.logging import get_logger, log_event

logger = get_logger(__name__)

FTP_DOWNLOAD_DEFAULTS: Dict[str, FtpDownloadOptions] = {
    "AO": FtpDownloadOptions(
        remote_directory="/prislister",
        file_pattern="prisliste*.csv",
        encoding="latin-1",
        timeout_seconds=30,
        max_retries=2,
    ),
    "LM": FtpDownloadOptions(
        remote_directory="/export",
        file_pattern="produkter*.csv",
        encoding="utf-8",
        timeout_seconds=30,
        max_retries=2,
    ),
}


class FtpSyncResult(BaseModel):
    rows: List[ParsedRow]
    file_name: str
    file_size_bytes: int
    downloaded_at: datetime
    download_duration_ms: int
    parse_duration_ms: int


def get_download_options(
    supplier_code: str,
    overrides: Optional[Mapping[str, object]] = None,
) -> FtpDownloadOptions:
    defaults = FTP_DOWNLOAD_DEFAULTS.get(supplier_code.upper(), FTP_DOWNLOAD_DEFAULTS["AO"])
    if not overrides:
        return defaults
    update = {key: value for key, value in overrides.items() if value is not None}
    return FtpDownloadOptions.model_validate({**defaults.model_dump(), **update})


def build_ftp_credentials(
    credentials: Union[SupplierCredentials, Mapping[str, object]],
    supplier_code: str,
) -> FtpCredentials:
    """Map a generic credential record onto FTP fields.

    ``api_endpoint`` holds ``host[:port]``; the port defaults to 21.
    """
    if not isinstance(credentials, SupplierCredentials):
        credentials = SupplierCredentials.model_validate(dict(credentials))

    host = (credentials.api_endpoint or "").strip()
    port = DEFAULT_FTP_PORT
    if ":" in host:
        host, _, raw_port = host.partition(":")
        if raw_port.strip().isdigit():
            port = int(raw_port)
    if not host:
        raise ConfigurationError(f"no FTP host configured for supplier {supplier_code}")
    if not credentials.username or not credentials.password:
        raise ConfigurationError(f"missing FTP username/password for supplier {supplier_code}")
    return FtpCredentials(
        host=host,
        port=port,
        username=credentials.username,
        password=credentials.password,
    )


def execute_ftp_sync(
    credentials: FtpCredentials,
    supplier_code: str,
    *,
    sync_engine: SyncEngine,
    overrides: Optional[Mapping[str, object]] = None,
    import_overrides: Optional[Mapping[str, object]] = None,
    client: Optional[FtpCatalogClient] = None,
    clock: Callable[[], float] = time.monotonic,
) -> Optional[FtpSyncResult]:
    """Download the newest matching catalog and parse it with the supplier's adapter.

    ``overrides`` adjust the download options and ``import_overrides`` the
    parse; an encoding in ``import_overrides`` wins over the download encoding.
    Returns ``None`` when the remote directory holds no matching file.
    """
    code = supplier_code.upper()
    options = get_download_options(code, overrides)
    client = client or FtpCatalogClient(credentials, supplier_code=code)
    log_event(
        logger,
        "ftp_sync_started",
        supplier_code=code,
        host=credentials.host,
        directory=options.remote_directory,
        pattern=options.file_pattern,
    )

    download_started = clock()
    download = client.download_latest(options)
    download_ms = int((clock() - download_started) * 1000)
    if download is None:
        log_event(logger, "ftp_sync_no_file", supplier_code=code, pattern=options.file_pattern)
        return None

    parse_started = clock()
    parse_overrides = {"encoding": options.encoding, **(import_overrides or {})}
    rows = sync_engine.process_file(download.data, code, parse_overrides)
    parse_ms = int((clock() - parse_started) * 1000)
    log_event(
        logger,
        "ftp_sync_parsed",
        supplier_code=code,
        file_name=download.file_name,
        size_bytes=download.size_bytes,
        rows=len(rows),
        download_ms=download_ms,
        parse_ms=parse_ms,
    )
    return FtpSyncResult(
        rows=rows,
        file_name=download.file_name,
        file_size_bytes=download.size_bytes,
        downloaded_at=download.downloaded_at,
        download_duration_ms=download_ms,
        parse_duration_ms=parse_ms,
    )


def test_ftp_connection(
    credentials: FtpCredentials,
    *,
    client: Optional[FtpCatalogClient] = None,
) -> FtpConnectionResult:
    return (client or FtpCatalogClient(credentials)).test_connection()
