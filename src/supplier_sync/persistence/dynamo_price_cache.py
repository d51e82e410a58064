from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from supplier_sync.persistence.price_cache import (
    DEFAULT_SEARCH_LIMIT,
    CachedPrice,
    PriceCache,
    cache_product_id,
    matches_search,
)
from supplier_sync.util.logging import get_logger, log_event


def _to_item(entry: CachedPrice) -> Dict[str, Any]:
    item = entry.model_dump(exclude_none=True)
    item["cached_at"] = entry.cached_at.isoformat()
    item["expires_at"] = entry.expires_at.isoformat()
    return item


def _from_item(item: Dict[str, Any]) -> CachedPrice:
    data = dict(item)
    for field in ("stock_quantity", "lead_time_days"):
        if data.get(field) is not None:
            data[field] = int(data[field])
    data["cached_at"] = datetime.fromisoformat(data["cached_at"])
    data["expires_at"] = datetime.fromisoformat(data["expires_at"])
    return CachedPrice.model_validate(data)


class DynamoPriceCache(PriceCache):
    """Price cache table keyed by ``product_id`` (``<supplier_id>#<sku>``).

    Cache writes never fail the caller: errors are logged and dropped, and
    failed reads behave like a cache miss.
    """

    def __init__(self, table_name: str) -> None:
        self.table = boto3.resource("dynamodb").Table(table_name)
        self.logger = get_logger(self.__class__.__name__)

    def upsert(self, entries: Iterable[CachedPrice]) -> None:
        try:
            with self.table.batch_writer(overwrite_by_pkeys=["product_id"]) as batch:
                for entry in entries:
                    batch.put_item(Item=_to_item(entry))
        except (BotoCoreError, ClientError) as exc:
            log_event(self.logger, "price_cache_write_failed", error=str(exc))

    def get(self, supplier_id: str, sku: str) -> Optional[CachedPrice]:
        try:
            response = self.table.get_item(Key={"product_id": cache_product_id(supplier_id, sku)})
        except (BotoCoreError, ClientError) as exc:
            log_event(self.logger, "price_cache_read_failed", supplier_id=supplier_id, error=str(exc))
            return None
        item = response.get("Item")
        if not item:
            return None
        return _from_item(item)

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
        if sku:
            entry = self.get(supplier_id, sku)
            return [entry] if entry else []
        items: List[Dict[str, Any]] = []
        scan_kwargs: Dict[str, Any] = {"FilterExpression": Attr("supplier_id").eq(supplier_id)}
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                items.extend(response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (BotoCoreError, ClientError) as exc:
            log_event(self.logger, "price_cache_read_failed", supplier_id=supplier_id, error=str(exc))
            return []
        entries = [_from_item(item) for item in items]
        matches = sorted(
            (entry for entry in entries if matches_search(entry, query, None)),
            key=lambda entry: entry.sku,
        )
        return matches[:limit]

    def mark_stale(self, supplier_id: str, skus: Iterable[str]) -> None:
        for sku in skus:
            try:
                self.table.update_item(
                    Key={"product_id": cache_product_id(supplier_id, sku)},
                    UpdateExpression="SET is_stale = :stale",
                    ConditionExpression=Attr("product_id").exists(),
                    ExpressionAttributeValues={":stale": True},
                )
            except ClientError as exc:
                if exc.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                    log_event(self.logger, "price_cache_write_failed", supplier_id=supplier_id, error=str(exc))
            except BotoCoreError as exc:
                log_event(self.logger, "price_cache_write_failed", supplier_id=supplier_id, error=str(exc))
