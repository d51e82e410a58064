from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel

from supplier_sync.adapters.supplier_api.models import DEFAULT_API_UNIT, DEFAULT_CURRENCY, ProductPrice

CacheSource = Literal["api", "import"]
DEFAULT_SEARCH_LIMIT = 50


def cache_product_id(supplier_id: str, sku: str) -> str:
    return f"{supplier_id}#{sku}"


class CachedPrice(BaseModel):
    product_id: str
    supplier_id: str
    sku: str
    name: str
    cost_price: Decimal
    list_price: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    unit: str = DEFAULT_API_UNIT
    is_available: bool = True
    stock_quantity: Optional[int] = None
    lead_time_days: Optional[int] = None
    source: CacheSource = "api"
    cached_at: datetime
    expires_at: datetime
    is_stale: bool = False

    @classmethod
    def from_price(
        cls,
        supplier_id: str,
        price: ProductPrice,
        *,
        ttl_seconds: int,
        source: CacheSource = "api",
        now: Optional[datetime] = None,
    ) -> "CachedPrice":
        cached_at = now or datetime.now(timezone.utc)
        return cls(
            product_id=cache_product_id(supplier_id, price.sku),
            supplier_id=supplier_id,
            sku=price.sku,
            name=price.name,
            cost_price=price.cost_price,
            list_price=price.list_price,
            currency=price.currency,
            unit=price.unit,
            is_available=price.is_available,
            stock_quantity=price.stock_quantity,
            lead_time_days=price.lead_time_days,
            source=source,
            cached_at=cached_at,
            expires_at=cached_at + timedelta(seconds=ttl_seconds),
        )

    def stale(self, now: Optional[datetime] = None) -> bool:
        return self.is_stale or (now or datetime.now(timezone.utc)) >= self.expires_at

    def to_product_price(self) -> ProductPrice:
        """Answer a lookup from this entry, flagged as cached and possibly stale."""
        return ProductPrice(
            sku=self.sku,
            name=self.name,
            cost_price=self.cost_price,
            list_price=self.list_price,
            currency=self.currency,
            unit=self.unit,
            is_available=self.is_available,
            stock_quantity=self.stock_quantity,
            lead_time_days=self.lead_time_days,
            source="cache",
            is_stale=self.stale(),
            cached_at=self.cached_at,
        )


def matches_search(entry: CachedPrice, query: Optional[str], sku: Optional[str]) -> bool:
    if sku and entry.sku != sku:
        return False
    if query:
        needle = query.lower()
        return needle in entry.sku.lower() or needle in entry.name.lower()
    return True


class PriceCache(ABC):
    """Last known good supplier prices, written on every successful live fetch."""

    @abstractmethod
    def upsert(self, entries: Iterable[CachedPrice]) -> None:
        ...

    @abstractmethod
    def get(self, supplier_id: str, sku: str) -> Optional[CachedPrice]:
        ...

    @abstractmethod
    def get_many(self, supplier_id: str, skus: Iterable[str]) -> Dict[str, CachedPrice]:
        ...

    @abstractmethod
    def search(
        self,
        supplier_id: str,
        *,
        query: Optional[str] = None,
        sku: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[CachedPrice]:
        ...

    @abstractmethod
    def mark_stale(self, supplier_id: str, skus: Iterable[str]) -> None:
        ...


class InMemoryPriceCache(PriceCache):
    def __init__(self) -> None:
        self._entries: Dict[str, CachedPrice] = {}

    def upsert(self, entries: Iterable[CachedPrice]) -> None:
        for entry in entries:
            self._entries[entry.product_id] = entry

    def get(self, supplier_id: str, sku: str) -> Optional[CachedPrice]:
        return self._entries.get(cache_product_id(supplier_id, sku))

    def get_many(self, supplier_id: str, skus: Iterable[str]) -> Dict[str, CachedPrice]:
        found: Dict[str, CachedPrice] = {}
        for sku in skus:
            entry = self.get(supplier_id, sku)
            if entry:
                found[sku] = entry
        return found

    def search(
        self,
        supplier_id: str,
        *,
        query: Optional[str] = None,
        sku: Optional[str] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[CachedPrice]:
        matches = [
            entry
            for entry in self._entries.values()
            if entry.supplier_id == supplier_id and matches_search(entry, query, sku)
        ]
        matches.sort(key=lambda entry: entry.sku)
        return matches[:limit]

    def mark_stale(self, supplier_id: str, skus: Iterable[str]) -> None:
        for sku in skus:
            key = cache_product_id(supplier_id, sku)
            entry = self._entries.get(key)
            if entry:
                self._entries[key] = entry.model_copy(update={"is_stale": True})
