from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

import requests

from supplier_sync.adapters.supplier_api.base import SupplierApiClient, to_decimal
from supplier_sync.adapters.supplier_api.models import (
    DEFAULT_API_UNIT,
    DEFAULT_CURRENCY,
    ProductPrice,
    ProductSearchParams,
    ProductSearchResult,
)
from supplier_sync.util.errors import RequestTimeoutError, SupplierSyncError
from supplier_sync.util.logging import log_event

AO_BASE_URL = "https://ao.dk"
LOGIN_PAGE_PATH = "/kunde/log-ind-side"
LOGIN_PATH = "/api/bruger/ValiderBruger"
PRICE_ACCOUNT_PATH = "/api/bruger/GetLoggedInUsernameAndPriceAccount"
SEARCH_PATH = "/api/Soeg/QuickSearch"
PRODUCT_PATH = "/api/Soeg/EnkeltProdukt"
PRICES_PATH = "/api/Pris/HentPriserForKonto"
PRICE_BATCH_SIZE = 50
DEFAULT_PAGE_SIZE = 25
ACTIVE_LIFECYCLE = "A"
SESSION_TOKEN = "session"


class AOApiClient(SupplierApiClient):
    """AO web shop API. Login is a cookie session held by the ``requests.Session``."""

    supplier_code = "AO"
    supplier_name = "AO"

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.price_account: Optional[str] = None

    def auth_headers(self) -> Dict[str, str]:
        return {"X-Requested-With": "XMLHttpRequest"}

    def authenticate(self) -> bool:
        self.last_auth_error = None
        self.last_auth_timed_out = False
        if not self.has_required_credentials():
            self.last_auth_error = "missing username or password"
            return False
        try:
            self._request("GET", LOGIN_PAGE_PATH, headers={"Accept": "text/html"}, reauthenticate=False)
            result = self._request_json(
                "POST",
                LOGIN_PATH,
                json={
                    "Brugernavn": self.credentials.username,
                    "Password": self.credentials.password,
                    "HuskLogin": True,
                    "LoginKanal": "Web",
                },
                reauthenticate=False,
            )
            if not result.get("Status"):
                message = result.get("Message")
                self.last_auth_error = (
                    f"AO rejected login: {message}" if message else "AO rejected login, wrong username or password"
                )
                return False
            user = self._request_json("GET", PRICE_ACCOUNT_PATH, reauthenticate=False)
            self.price_account = user.get("PriceAccount")
        except RequestTimeoutError as exc:
            self.last_auth_timed_out = True
            self.last_auth_error = f"timeout, ao.dk did not answer within {exc.timeout_seconds}s"
            log_event(self.logger, "supplier_auth_failed", supplier_code=self.supplier_code, error=str(exc))
            return False
        except (SupplierSyncError, requests.RequestException, ValueError, AttributeError) as exc:
            self.last_auth_error = f"unexpected error: {exc}"
            log_event(self.logger, "supplier_auth_failed", supplier_code=self.supplier_code, error=str(exc))
            return False
        self._issue_token(SESSION_TOKEN)
        return True

    def _fetch_prices(self, skus: List[str]) -> Dict[str, Mapping[str, Any]]:
        prices: Dict[str, Mapping[str, Any]] = {}
        if not self.price_account or not skus:
            return prices
        for start in range(0, len(skus), PRICE_BATCH_SIZE):
            batch = skus[start : start + PRICE_BATCH_SIZE]
            response = self._request_json(
                "POST",
                PRICES_PATH,
                params={"kontonummer": self.price_account},
                json=batch,
            )
            if isinstance(response, list):
                for entry in response:
                    prices[str(entry.get("Varenr"))] = entry
        return prices

    @staticmethod
    def _to_product_price(product: Mapping[str, Any], price: Optional[Mapping[str, Any]]) -> ProductPrice:
        return ProductPrice(
            sku=str(product.get("Varenr", "")),
            name=product.get("Name") or "",
            cost_price=(to_decimal(price.get("DinPris")) if price else None) or Decimal("0"),
            list_price=to_decimal(price.get("Listepris")) if price else None,
            currency=DEFAULT_CURRENCY,
            unit=product.get("Maalingsenhed") or DEFAULT_API_UNIT,
            is_available=product.get("Livscyklus") == ACTIVE_LIFECYCLE,
            image_url=product.get("ImageUrlMedium") or None,
        )

    def search_products(self, params: ProductSearchParams) -> ProductSearchResult:
        try:
            self.ensure_authenticated()
            query = params.query or params.sku or params.ean or ""
            limit = params.limit or DEFAULT_PAGE_SIZE
            start = params.offset + 1
            stop = start + limit - 1
            data = self._request_json(
                "GET",
                SEARCH_PATH,
                params={"q": query, "a": "", "start": start, "stop": stop},
            )
            found = data.get("Produkter") or []
            prices = self._fetch_prices([str(product.get("Varenr")) for product in found])
            products = [
                self._to_product_price(product, prices.get(str(product.get("Varenr"))))
                for product in found
            ]
            self.cache_prices(products)
            total = int(data.get("Count") or 0)
            return ProductSearchResult(products=products, total_count=total, has_more=stop < total)
        except Exception as exc:  # noqa: BLE001 - degrade to cached results
            return self.cached_search(params, exc)

    def get_product_price(self, sku: str) -> Optional[ProductPrice]:
        try:
            self.ensure_authenticated()
            product = self._request_json("GET", PRODUCT_PATH, params={"varenr": sku})
            prices = self._fetch_prices([sku])
            result = self._to_product_price(product, prices.get(sku))
            self.cache_prices([result])
            return result
        except Exception as exc:  # noqa: BLE001 - degrade to cached price
            return self.cached_price(sku, exc)

    def get_product_prices(self, skus: List[str]) -> Dict[str, ProductPrice]:
        """Batch prices; names and units come from the cached catalog where known."""
        if not skus:
            return {}
        try:
            self.ensure_authenticated()
            prices = self._fetch_prices(list(skus))
            known = self.price_cache.get_many(self.supplier_id, prices)
            result: Dict[str, ProductPrice] = {}
            for sku, price in prices.items():
                cached = known.get(sku)
                result[sku] = ProductPrice(
                    sku=sku,
                    name=cached.name if cached else sku,
                    cost_price=to_decimal(price.get("DinPris")) or Decimal("0"),
                    list_price=to_decimal(price.get("Listepris")),
                    unit=cached.unit if cached else DEFAULT_API_UNIT,
                    is_available=cached.is_available if cached else True,
                )
            self.cache_prices(result.values())
            if self.price_account:
                self.mark_missing(sku for sku in skus if sku not in prices)
            return result
        except Exception as exc:  # noqa: BLE001 - degrade to cached prices
            return self.cached_prices(skus, exc)

