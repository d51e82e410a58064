from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from supplier_sync.persistence.credentials import (
    CredentialStore,
    CredentialTestStatus,
    CredentialType,
    SupplierCredentials,
)
from supplier_sync.util.logging import get_logger, log_event

CREDENTIAL_FIELDS = tuple(SupplierCredentials.model_fields)


class DynamoCredentialStore(CredentialStore):
    """Credentials table keyed by ``supplier_id`` + ``credential_type``.

    Values are stored decrypted by the upstream key-management step; only
    items with ``is_active`` set are returned.
    """

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)
        self.logger = get_logger(self.__class__.__name__)

    def put(
        self,
        supplier_id: str,
        credential_type: CredentialType,
        credentials: SupplierCredentials,
        *,
        is_active: bool = True,
    ) -> None:
        item = {
            "supplier_id": supplier_id,
            "credential_type": credential_type,
            "is_active": is_active,
        }
        item.update(credentials.model_dump(exclude_none=True))
        self.table.put_item(Item=item)

    def load_decrypted_credentials(
        self,
        supplier_id: str,
        credential_type: CredentialType,
    ) -> Optional[SupplierCredentials]:
        try:
            response = self.table.get_item(
                Key={"supplier_id": supplier_id, "credential_type": credential_type}
            )
        except (BotoCoreError, ClientError) as exc:
            log_event(
                self.logger,
                "credentials_load_failed",
                supplier_id=supplier_id,
                credential_type=credential_type,
                error=str(exc),
            )
            return None
        item = response.get("Item")
        if not item or not item.get("is_active"):
            return None
        return SupplierCredentials(**{field: item.get(field) for field in CREDENTIAL_FIELDS})

    def record_test_result(
        self,
        supplier_id: str,
        status: CredentialTestStatus,
        message: Optional[str] = None,
        *,
        credential_type: CredentialType = "api",
    ) -> None:
        self.table.update_item(
            Key={"supplier_id": supplier_id, "credential_type": credential_type},
            UpdateExpression=(
                "SET last_test_status = :status, last_test_message = :message, "
                "last_tested_at = :tested_at"
            ),
            ExpressionAttributeValues={
                ":status": status,
                ":message": message or "",
                ":tested_at": datetime.now(timezone.utc).isoformat(),
            },
        )
