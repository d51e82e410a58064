from __future__ import annotations

import base64
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import quote

import requests

from supplier_sync.adapters.supplier_api.base import SupplierApiClient, to_decimal
from supplier_sync.adapters.supplier_api.models import (
    DEFAULT_API_UNIT,
    DEFAULT_CURRENCY,
    ProductPrice,
    ProductSearchParams,
    ProductSearchResult,
)
from supplier_sync.util.errors import (
    ApiRequestError,
    AuthenticationError,
    RequestTimeoutError,
    SupplierSyncError,
)
from supplier_sync.util.logging import log_event

LM_BASE_URL = "https://api.lfrm.dk/v1"
ACCOUNT_PATH = "/account"
SEARCH_PATH = "/products/search"
PRICE_PATH = "/products/{sku}/price"
DEFAULT_PAGE_SIZE = 50


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _is_not_found(error: Optional[BaseException]) -> bool:
    return isinstance(error, ApiRequestError) and error.status_code == 404


class LMApiClient(SupplierApiClient):
    """Lemvigh-Müller REST API with Basic auth; credentials are validated with a GET on /account."""

    supplier_code = "LM"
    supplier_name = "Lemvigh-Müller"

    def auth_headers(self) -> Dict[str, str]:
        if not self.has_required_credentials():
            return {}
        raw = f"{self.credentials.username}:{self.credentials.password}".encode("utf-8")
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}

    def authenticate(self) -> bool:
        self.last_auth_error = None
        self.last_auth_timed_out = False
        if not self.has_required_credentials():
            self.last_auth_error = "missing username or password"
            return False
        try:
            self._request("GET", ACCOUNT_PATH, reauthenticate=False)
        except AuthenticationError as exc:
            self.last_auth_error = str(exc)
            log_event(self.logger, "supplier_auth_failed", supplier_code=self.supplier_code, error=str(exc))
            return False
        except RequestTimeoutError as exc:
            self.last_auth_timed_out = True
            self.last_auth_error = f"timeout, {self.supplier_name} did not answer within {exc.timeout_seconds}s"
            log_event(self.logger, "supplier_auth_failed", supplier_code=self.supplier_code, error=str(exc))
            return False
        except (SupplierSyncError, requests.RequestException) as exc:
            self.last_auth_error = f"unexpected error: {exc}"
            log_event(self.logger, "supplier_auth_failed", supplier_code=self.supplier_code, error=str(exc))
            return False
        self._issue_token("basic")
        return True

    @staticmethod
    def _to_product_price(item: Mapping[str, Any]) -> ProductPrice:
        return ProductPrice(
            sku=str(item.get("sku", "")),
            name=item.get("name") or "",
            cost_price=to_decimal(item.get("net_price")) or Decimal("0"),
            list_price=to_decimal(item.get("list_price")),
            currency=item.get("currency") or DEFAULT_CURRENCY,
            unit=item.get("unit") or DEFAULT_API_UNIT,
            is_available=bool(item.get("in_stock", True)),
            stock_quantity=_optional_int(item.get("stock_quantity")),
            lead_time_days=_optional_int(item.get("lead_time_days")),
            image_url=item.get("image_url") or None,
        )

    def search_products(self, params: ProductSearchParams) -> ProductSearchResult:
        try:
            self.ensure_authenticated()
            limit = params.limit or DEFAULT_PAGE_SIZE
            query = {
                "q": params.query,
                "sku": params.sku,
                "ean": params.ean,
                "category": params.category,
                "limit": limit,
                "offset": params.offset,
            }
            data = self._request_json(
                "GET",
                SEARCH_PATH,
                params={key: value for key, value in query.items() if value is not None},
            )
            products = [self._to_product_price(item) for item in data.get("products") or []]
            self.cache_prices(products)
            total = int(data.get("total_count") or len(products))
            return ProductSearchResult(
                products=products,
                total_count=total,
                has_more=params.offset + len(products) < total,
            )
        except Exception as exc:  # noqa: BLE001 - degrade to cached results
            return self.cached_search(params, exc)

    def _fetch_price(self, sku: str) -> ProductPrice:
        data = self._request_json("GET", PRICE_PATH.format(sku=quote(sku, safe="")))
        price = self._to_product_price(data)
        if not price.sku:
            price = price.model_copy(update={"sku": sku})
        return price

    def get_product_price(self, sku: str) -> Optional[ProductPrice]:
        try:
            self.ensure_authenticated()
            price = self._fetch_price(sku)
            self.cache_prices([price])
            return price
        except Exception as exc:  # noqa: BLE001 - degrade to cached price
            if _is_not_found(exc):
                self.mark_missing([sku])
            return self.cached_price(sku, exc)

    def _fetch_price_or_error(self, sku: str) -> Tuple[str, Optional[ProductPrice], Optional[Exception]]:
        try:
            return sku, self._fetch_price(sku), None
        except Exception as exc:  # noqa: BLE001 - collected per SKU
            return sku, None, exc

    def get_product_prices(self, skus: List[str]) -> Dict[str, ProductPrice]:
        """One request per SKU, at most ``max_concurrency`` in flight.

        SKUs whose live lookup fails are answered from the cache.
        """
        if not skus:
            return {}
        try:
            self.ensure_authenticated()
        except Exception as exc:  # noqa: BLE001 - degrade to cached prices
            return self.cached_prices(skus, exc)

        with ThreadPoolExecutor(max_workers=self.settings.max_concurrency) as executor:
            outcomes = list(executor.map(self._fetch_price_or_error, skus))

        result: Dict[str, ProductPrice] = {}
        failed: List[str] = []
        last_error: Optional[Exception] = None
        for sku, price, error in outcomes:
            if price is not None:
                result[sku] = price
            else:
                failed.append(sku)
                last_error = error
        self.cache_prices(result.values())
        self.mark_missing(sku for sku, _, error in outcomes if _is_not_found(error))
        if failed and last_error is not None:
            result.update(self.cached_prices(failed, last_error))
        return result
