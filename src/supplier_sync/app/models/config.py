from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from supplier_sync.adapters.ftp.client import FtpDownloadOptions
from supplier_sync.adapters.supplier_api.models import ApiClientSettings


class StorageConfig(BaseModel):
    bucket: str
    prefix: str
    file_pattern: Optional[str] = None


class SupplierConfig(BaseModel):
    supplier_id: str
    code: str
    import_overrides: Dict[str, Any] = Field(default_factory=dict)
    ftp: Optional[FtpDownloadOptions] = None
    api: Optional[ApiClientSettings] = None
    storage: Optional[StorageConfig] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, value: str) -> str:
        return value.strip().upper()


class SyncConfig(BaseModel):
    schema_version: int = 1
    ao_empty_sku_threshold: float = 0.5
    suppliers: List[SupplierConfig] = Field(default_factory=list)

    def supplier(self, supplier_id: str) -> Optional[SupplierConfig]:
        return next((entry for entry in self.suppliers if entry.supplier_id == supplier_id), None)
