from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel

CredentialType = Literal["api", "ftp"]
CredentialTestStatus = Literal["success", "failed", "timeout", "invalid_credentials"]


class SupplierCredentials(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[str] = None
    customer_number: Optional[str] = None
    api_endpoint: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


@dataclass
class CredentialTestRecord:
    supplier_id: str
    status: CredentialTestStatus
    message: Optional[str]
    tested_at: datetime


class CredentialStore(ABC):
    """Source of already-decrypted supplier credentials."""

    @abstractmethod
    def load_decrypted_credentials(
        self,
        supplier_id: str,
        credential_type: CredentialType,
    ) -> Optional[SupplierCredentials]:
        """Return the active credentials, or ``None`` when none are usable."""

    @abstractmethod
    def record_test_result(
        self,
        supplier_id: str,
        status: CredentialTestStatus,
        message: Optional[str] = None,
    ) -> None:
        """Persist the outcome of a connection test."""


class InMemoryCredentialStore(CredentialStore):
    def __init__(self) -> None:
        self._credentials: Dict[Tuple[str, str], SupplierCredentials] = {}
        self.test_results: List[CredentialTestRecord] = []

    def put(
        self,
        supplier_id: str,
        credential_type: CredentialType,
        credentials: SupplierCredentials,
    ) -> None:
        self._credentials[(supplier_id, credential_type)] = credentials

    def load_decrypted_credentials(
        self,
        supplier_id: str,
        credential_type: CredentialType,
    ) -> Optional[SupplierCredentials]:
        return self._credentials.get((supplier_id, credential_type))

    def record_test_result(
        self,
        supplier_id: str,
        status: CredentialTestStatus,
        message: Optional[str] = None,
    ) -> None:
        self.test_results.append(
            CredentialTestRecord(
                supplier_id=supplier_id,
                status=status,
                message=message,
                tested_at=datetime.now(timezone.utc),
            )
        )
