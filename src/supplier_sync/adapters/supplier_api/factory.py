from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Mapping, Optional, Tuple, Type

import requests

from supplier_sync.adapters.supplier_api.ao import AO_BASE_URL, AOApiClient
from supplier_sync.adapters.supplier_api.base import SupplierApiClient
from supplier_sync.adapters.supplier_api.lm import LM_BASE_URL, LMApiClient
from supplier_sync.adapters.supplier_api.models import ApiClientSettings
from supplier_sync.persistence.credentials import CredentialStore
from supplier_sync.persistence.price_cache import PriceCache
from supplier_sync.util.metrics import CloudWatchMetrics

CLIENT_TYPES: Dict[str, Tuple[Type[SupplierApiClient], str]] = {
    "AO": (AOApiClient, AO_BASE_URL),
    "LM": (LMApiClient, LM_BASE_URL),
}
CODE_ALIASES = {"LEMVIGH": "LM"}


def canonical_code(supplier_code: str) -> str:
    code = supplier_code.strip().upper()
    return CODE_ALIASES.get(code, code)


class SupplierApiClientFactory:
    """Builds and caches one API client per (supplier id, supplier code).

    Reusing the instance keeps loaded credentials, the session and the tracked
    rate-limit window across calls for the same supplier.
    """

    def __init__(
        self,
        *,
        credential_store: CredentialStore,
        price_cache: PriceCache,
        settings: Optional[Mapping[str, ApiClientSettings]] = None,
        session_factory: Callable[[], requests.Session] = requests.Session,
        sleep: Callable[[float], None] = time.sleep,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.credential_store = credential_store
        self.price_cache = price_cache
        self.settings = {canonical_code(code): value for code, value in (settings or {}).items()}
        self.session_factory = session_factory
        self.sleep = sleep
        self.metrics = metrics
        self._clients: Dict[Tuple[str, str], SupplierApiClient] = {}
        self._lock = threading.Lock()

    def get_client(self, supplier_id: str, supplier_code: str) -> Optional[SupplierApiClient]:
        code = canonical_code(supplier_code)
        client_type = CLIENT_TYPES.get(code)
        if client_type is None:
            return None
        key = (supplier_id, code)
        with self._lock:
            client = self._clients.get(key)
            if client is not None:
                return client
            cls, base_url = client_type
            client = cls(
                supplier_id,
                self.settings.get(code) or ApiClientSettings(base_url=base_url),
                credential_store=self.credential_store,
                price_cache=self.price_cache,
                session=self.session_factory(),
                sleep=self.sleep,
                metrics=self.metrics,
            )
            client.load_credentials()
            self._clients[key] = client
            return client

    def clear(self) -> None:
        with self._lock:
            self._clients.clear()
