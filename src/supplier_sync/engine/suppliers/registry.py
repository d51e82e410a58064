from __future__ import annotations

from typing import Callable, Dict, List, Optional

from supplier_sync.engine.canonical.models import SupplierAdapterInfo
from supplier_sync.engine.suppliers.ao import AOAdapter
from supplier_sync.engine.suppliers.base import SupplierAdapter
from supplier_sync.engine.suppliers.lm import LMAdapter

AdapterFactory = Callable[[], SupplierAdapter]


class AdapterRegistry:
    """Supplier code -> adapter factory. Codes are matched case-insensitively."""

    def __init__(self) -> None:
        self._factories: Dict[str, AdapterFactory] = {}

    def register(self, code: str, factory: AdapterFactory) -> None:
        self._factories[code.upper()] = factory

    def get(self, code: str) -> Optional[SupplierAdapter]:
        factory = self._factories.get(code.upper())
        return factory() if factory else None

    def has(self, code: str) -> bool:
        return code.upper() in self._factories

    def get_all(self) -> List[SupplierAdapter]:
        return [factory() for factory in self._factories.values()]

    def get_all_info(self) -> List[SupplierAdapterInfo]:
        return [adapter.info for adapter in self.get_all()]

    def codes(self) -> List[str]:
        return list(self._factories)


def build_default_registry(*, ao_empty_sku_threshold: float = 0.5) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register("AO", lambda: AOAdapter(empty_sku_threshold=ao_empty_sku_threshold))
    registry.register("LM", LMAdapter)
    return registry
