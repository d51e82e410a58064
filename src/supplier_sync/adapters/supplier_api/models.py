from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

DEFAULT_CURRENCY = "DKK"
DEFAULT_API_UNIT = "STK"

PriceSource = Literal["api", "cache"]


class ApiClientSettings(BaseModel):
    base_url: str
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_delay_seconds: float = 1.0
    cache_ttl_seconds: int = 86400
    auth_token_ttl_seconds: int = 3600
    max_concurrency: int = 5

    @field_validator("retry_attempts", "max_concurrency")
    @classmethod
    def at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class ProductSearchParams(BaseModel):
    query: Optional[str] = None
    sku: Optional[str] = None
    ean: Optional[str] = None
    category: Optional[str] = None
    limit: Optional[int] = None
    offset: int = 0


class ProductPrice(BaseModel):
    sku: str
    name: str
    cost_price: Decimal
    list_price: Optional[Decimal] = None
    currency: str = DEFAULT_CURRENCY
    unit: str = DEFAULT_API_UNIT
    is_available: bool = True
    stock_quantity: Optional[int] = None
    lead_time_days: Optional[int] = None
    image_url: Optional[str] = None
    source: PriceSource = "api"
    is_stale: bool = False
    cached_at: Optional[datetime] = None


class ProductSearchResult(BaseModel):
    products: List[ProductPrice] = Field(default_factory=list)
    total_count: int = 0
    has_more: bool = False
    source: PriceSource = "api"
    is_stale: bool = False
    warning: Optional[str] = None


class AuthToken(BaseModel):
    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None


class RateLimitInfo(BaseModel):
    remaining: int
    reset_at: datetime


class ConnectionTestResult(BaseModel):
    success: bool
    message: str
    error: Optional[str] = None
