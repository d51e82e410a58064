from __future__ import annotations

import random
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import requests

from supplier_sync.adapters.supplier_api.models import (
    ApiClientSettings,
    AuthToken,
    ConnectionTestResult,
    ProductPrice,
    ProductSearchParams,
    ProductSearchResult,
    RateLimitInfo,
)
from supplier_sync.persistence.credentials import (
    CredentialStore,
    CredentialTestStatus,
    SupplierCredentials,
)
from supplier_sync.persistence.price_cache import CachedPrice, PriceCache
from supplier_sync.util.errors import (
    ApiRequestError,
    AuthenticationError,
    RequestTimeoutError,
    SupplierSyncError,
)
from supplier_sync.util.logging import get_logger, log_event
from supplier_sync.util.metrics import CloudWatchMetrics

MAX_WAIT_SECONDS = 60.0
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 60
FALLBACK_SEARCH_LIMIT = 50


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return None
    return number if number.is_finite() else None


def _header(headers: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value is not None:
            return value
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


class SupplierApiClient(ABC):
    """Authenticated, rate-limit aware HTTP client for one supplier account.

    Successful price lookups are written to the price cache; when a live call
    fails the public lookup methods answer from that cache instead of raising.
    ``test_connection`` is the exception and always reports what went wrong.
    """

    supplier_code: str = ""
    supplier_name: str = ""

    def __init__(
        self,
        supplier_id: str,
        settings: ApiClientSettings,
        *,
        credential_store: CredentialStore,
        price_cache: PriceCache,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
        metrics: Optional[CloudWatchMetrics] = None,
    ) -> None:
        self.supplier_id = supplier_id
        self.settings = settings
        self.credential_store = credential_store
        self.price_cache = price_cache
        self.session = session or requests.Session()
        self.sleep = sleep
        self.jitter = jitter
        self.metrics = metrics
        self.credentials: Optional[SupplierCredentials] = None
        self.auth_token: Optional[AuthToken] = None
        self.rate_limit: Optional[RateLimitInfo] = None
        self.last_credential_error: Optional[str] = None
        self.last_auth_error: Optional[str] = None
        self.last_auth_timed_out = False
        self._rate_limit_lock = threading.Lock()
        self.logger = get_logger(self.__class__.__name__)

    # credentials and authentication

    def load_credentials(self) -> bool:
        credentials = self.credential_store.load_decrypted_credentials(self.supplier_id, "api")
        if credentials is None:
            self.last_credential_error = f"no active API credentials for {self.supplier_name}"
            log_event(self.logger, "supplier_credentials_missing", supplier_id=self.supplier_id)
            return False
        self.set_credentials(credentials)
        return True

    def set_credentials(self, credentials: SupplierCredentials) -> None:
        self.credentials = credentials
        self.last_credential_error = None
        if credentials.api_endpoint:
            self.settings = self.settings.model_copy(
                update={"base_url": credentials.api_endpoint.rstrip("/")}
            )

    def has_required_credentials(self) -> bool:
        return bool(self.credentials and self.credentials.username and self.credentials.password)

    @abstractmethod
    def authenticate(self) -> bool:
        """Log in and set ``auth_token``. Returns ``False`` on rejected credentials."""

    def is_authenticated(self) -> bool:
        if not self.auth_token:
            return False
        return datetime.now(timezone.utc) < self.auth_token.expires_at

    def ensure_authenticated(self) -> None:
        if self.is_authenticated():
            return
        if not self.authenticate():
            raise AuthenticationError(
                self.last_auth_error or f"authentication failed for {self.supplier_name}"
            )

    def _issue_token(self, access_token: str) -> None:
        self.auth_token = AuthToken(
            access_token=access_token,
            expires_at=datetime.now(timezone.utc)
            + timedelta(seconds=self.settings.auth_token_ttl_seconds),
        )

    def test_connection(self) -> ConnectionTestResult:
        if self.credentials is None and not self.load_credentials():
            reason = self.last_credential_error or "no active API credentials"
            return self._test_result("failed", False, reason, "NO_CREDENTIALS")
        if not self.has_required_credentials():
            return self._test_result(
                "failed",
                False,
                "missing username or password",
                "MISSING_CREDENTIALS",
            )
        try:
            authenticated = self.authenticate()
        except SupplierSyncError as exc:
            return self._test_result("failed", False, f"connection error: {exc}", str(exc))
        if not authenticated:
            if self.last_auth_timed_out:
                message = self.last_auth_error or f"{self.supplier_name} did not respond in time"
                return self._test_result("timeout", False, message, "TIMEOUT")
            message = self.last_auth_error or f"could not log in to {self.supplier_name}"
            return self._test_result("invalid_credentials", False, message, "AUTH_FAILED")
        return self._test_result("success", True, f"connection to {self.supplier_name} is active", None)

    def _test_result(
        self,
        status: CredentialTestStatus,
        success: bool,
        message: str,
        error: Optional[str],
    ) -> ConnectionTestResult:
        self.credential_store.record_test_result(
            self.supplier_id,
            status,
            None if success else message,
        )
        log_event(
            self.logger,
            "supplier_connection_tested",
            supplier_id=self.supplier_id,
            supplier_code=self.supplier_code,
            status=status,
        )
        return ConnectionTestResult(success=success, message=message, error=error)

    # request execution

    def auth_headers(self) -> Dict[str, str]:
        return {}

    def backoff_delay(self, attempt: int) -> float:
        base = self.settings.retry_delay_seconds
        return min(base * (2**attempt) + self.jitter() * base, MAX_WAIT_SECONDS)

    def _wait_for_rate_limit(self) -> None:
        with self._rate_limit_lock:
            info = self.rate_limit
            if not info or info.remaining > 0:
                return
            wait = (info.reset_at - datetime.now(timezone.utc)).total_seconds()
            if wait > 0:
                log_event(
                    self.logger,
                    "supplier_rate_limit_wait",
                    supplier_code=self.supplier_code,
                    wait_seconds=min(wait, MAX_WAIT_SECONDS),
                )
                self.sleep(min(wait, MAX_WAIT_SECONDS))
            # The window has passed; the next response reports a fresh quota.
            self.rate_limit = None

    def _update_rate_limit(self, headers: Mapping[str, str]) -> None:
        remaining = _parse_int(_header(headers, "X-RateLimit-Remaining", "RateLimit-Remaining"))
        if remaining is None:
            return
        reset = _parse_int(_header(headers, "X-RateLimit-Reset", "RateLimit-Reset"))
        if reset is not None:
            reset_at = datetime.fromtimestamp(reset, tz=timezone.utc)
        else:
            reset_at = datetime.now(timezone.utc) + timedelta(seconds=DEFAULT_RATE_LIMIT_WINDOW_SECONDS)
        with self._rate_limit_lock:
            self.rate_limit = RateLimitInfo(remaining=remaining, reset_at=reset_at)

    def _retry_after_seconds(self, response: requests.Response) -> Optional[float]:
        seconds = _parse_int(response.headers.get("Retry-After"))
        if seconds is None or seconds <= 0:
            return None
        return float(seconds)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        base_url: Optional[str] = None,
        reauthenticate: bool = True,
    ) -> requests.Response:
        url = f"{base_url or self.settings.base_url}{path}"
        attempts = self.settings.retry_attempts
        last_error: Optional[SupplierSyncError] = None
        for attempt in range(attempts):
            self._wait_for_rate_limit()
            request_headers = {"Accept": "application/json", **self.auth_headers(), **(headers or {})}
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=request_headers,
                    timeout=self.settings.timeout_seconds,
                )
            except requests.Timeout as exc:
                raise RequestTimeoutError(
                    f"{self.supplier_name} request to {path} timed out after {self.settings.timeout_seconds}s",
                    timeout_seconds=self.settings.timeout_seconds,
                ) from exc
            except requests.RequestException as exc:
                last_error = ApiRequestError(f"{self.supplier_name} request to {path} failed: {exc}")
                self._backoff(attempt, attempts, path, last_error)
                continue

            self._update_rate_limit(response.headers)

            last_attempt = attempt >= attempts - 1
            if response.status_code == 401 and attempt == 0 and reauthenticate and not last_attempt:
                log_event(self.logger, "supplier_reauthenticate", supplier_code=self.supplier_code, path=path)
                self.auth_token = None
                self.authenticate()
                continue
            if response.status_code in (401, 403):
                raise AuthenticationError(
                    f"{self.supplier_name} rejected credentials (HTTP {response.status_code})"
                )
            if response.status_code == 429:
                last_error = ApiRequestError(f"{self.supplier_name} rate limited", status_code=429)
                if last_attempt:
                    break
                delay = self._retry_after_seconds(response)
                if delay is None:
                    delay = self.backoff_delay(attempt)
                log_event(
                    self.logger,
                    "supplier_rate_limited",
                    supplier_code=self.supplier_code,
                    path=path,
                    delay_seconds=delay,
                )
                self.sleep(min(delay, MAX_WAIT_SECONDS))
                continue
            if not response.ok:
                last_error = ApiRequestError(
                    f"{self.supplier_name} HTTP {response.status_code} for {path}",
                    status_code=response.status_code,
                )
                self._backoff(attempt, attempts, path, last_error)
                continue
            return response
        raise last_error or ApiRequestError(f"{self.supplier_name} request to {path} failed after retries")

    def _backoff(self, attempt: int, attempts: int, path: str, error: SupplierSyncError) -> None:
        if attempt >= attempts - 1:
            return
        delay = self.backoff_delay(attempt)
        log_event(
            self.logger,
            "supplier_request_retry",
            supplier_code=self.supplier_code,
            path=path,
            attempt=attempt + 1,
            delay_seconds=delay,
            error=str(error),
        )
        self.sleep(delay)

    def _request_json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._request(method, path, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise ApiRequestError(
                f"{self.supplier_name} returned invalid JSON for {path}",
                status_code=response.status_code,
            ) from exc

    # public lookups

    @abstractmethod
    def search_products(self, params: ProductSearchParams) -> ProductSearchResult:
        ...

    @abstractmethod
    def get_product_price(self, sku: str) -> Optional[ProductPrice]:
        ...

    @abstractmethod
    def get_product_prices(self, skus: List[str]) -> Dict[str, ProductPrice]:
        ...

    # price cache

    def cache_prices(self, prices: Iterable[ProductPrice]) -> None:
        entries = [
            CachedPrice.from_price(self.supplier_id, price, ttl_seconds=self.settings.cache_ttl_seconds)
            for price in prices
        ]
        if entries:
            self.price_cache.upsert(entries)

    def _note_fallback(self, operation: str, error: BaseException) -> None:
        log_event(
            self.logger,
            "supplier_cache_fallback",
            supplier_id=self.supplier_id,
            supplier_code=self.supplier_code,
            operation=operation,
            error=str(error),
        )
        if self.metrics:
            self.metrics.record_cache_fallback(supplier_code=self.supplier_code, operation=operation)

    def mark_missing(self, skus: Iterable[str]) -> None:
        """Flag cached prices for SKUs the supplier no longer returns."""
        skus = list(skus)
        if not skus:
            return
        self.price_cache.mark_stale(self.supplier_id, skus)
        log_event(
            self.logger,
            "supplier_prices_missing",
            supplier_id=self.supplier_id,
            supplier_code=self.supplier_code,
            skus=skus,
        )

    def cached_search(self, params: ProductSearchParams, error: BaseException) -> ProductSearchResult:
        """Search results from the cache; ``warning`` says why live data is missing."""
        self._note_fallback("search_products", error)
        entries = self.price_cache.search(
            self.supplier_id,
            query=params.query or params.ean,
            sku=params.sku,
            limit=params.limit or FALLBACK_SEARCH_LIMIT,
        )
        products = [entry.to_product_price() for entry in entries]
        if products:
            warning = f"{self.supplier_name} is unavailable, showing cached prices"
        else:
            warning = f"{self.supplier_name} is unavailable and no cached prices were found"
        return ProductSearchResult(
            products=products,
            total_count=len(products),
            has_more=False,
            source="cache",
            is_stale=any(product.is_stale for product in products),
            warning=warning,
        )

    def cached_price(self, sku: str, error: BaseException) -> Optional[ProductPrice]:
        self._note_fallback("get_product_price", error)
        entry = self.price_cache.get(self.supplier_id, sku)
        return entry.to_product_price() if entry else None

    def cached_prices(self, skus: Iterable[str], error: BaseException) -> Dict[str, ProductPrice]:
        self._note_fallback("get_product_prices", error)
        return {
            sku: entry.to_product_price()
            for sku, entry in self.price_cache.get_many(self.supplier_id, skus).items()
        }
