"""Catalog data models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator


class VasType(str, enum.Enum):
    AIRTIME = "airtime"
    DATA = "data"
    ELECTRICITY = "electricity"
    BILL_PAYMENT = "bill_payment"
    VOUCHER = "voucher"


DEFAULT_VAS_TYPES: tuple[VasType, ...] = (
    VasType.AIRTIME,
    VasType.DATA,
    VasType.ELECTRICITY,
    VasType.VOUCHER,
    VasType.BILL_PAYMENT,
)

_VAS_ALIASES = {
    "utility": VasType.ELECTRICITY,
    "prepaidutility": VasType.ELECTRICITY,
    "prepaid-utility": VasType.ELECTRICITY,
    "prepaid_utility": VasType.ELECTRICITY,
    "bill-payment": VasType.BILL_PAYMENT,
    "billpayment": VasType.BILL_PAYMENT,
}


def canonical_vas_type(value: str | VasType) -> VasType:
    """Map any supplier or legacy spelling of a VAS type onto ``VasType``.

    Raises ``ValueError`` for values that name no known VAS type.
    """
    if isinstance(value, VasType):
        return value
    key = (value or "").strip().lower()
    if key in _VAS_ALIASES:
        return _VAS_ALIASES[key]
    return VasType(key)


class TransactionType(str, enum.Enum):
    TOPUP = "topup"
    VOUCHER = "voucher"
    DIRECT = "direct"


@dataclass(slots=True)
class SupplierConfig:
    code: str
    name: str
    base_url: str
    priority: int = 1
    api_prefix: str = ""
    token_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    live_integration: bool = False
    default_commission: Decimal = Decimal("0")
    vas_types: tuple[VasType, ...] = DEFAULT_VAS_TYPES
    endpoint_aliases: Mapping[str, str] = field(default_factory=dict)
    active: bool = True

    @property
    def api_base(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.api_prefix}"

    @property
    def resolved_token_url(self) -> str:
        return self.token_url or f"{self.base_url.rstrip('/')}/connect/token"

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def path_segment(self, vas_type: VasType) -> str:
        """Return the supplier's own URL segment for a canonical VAS type."""
        return self.endpoint_aliases.get(vas_type.value, vas_type.value)


class ExternalProductRecord(BaseModel):
    """Product as listed by a supplier, amounts in major currency units."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    merchant_product_id: str = Field(alias="merchantProductId", min_length=1)
    product_name: str = Field(alias="productName", min_length=1)
    content_creator: str | None = Field(default=None, alias="contentCreator")
    provider: str | None = None
    pinned: bool | None = None
    fixed_amount: bool | None = Field(default=None, alias="fixedAmount")
    amount: Decimal | None = None
    minimum_amount: Decimal | None = Field(default=None, alias="minimumAmount")
    maximum_amount: Decimal | None = Field(default=None, alias="maximumAmount")
    is_promotional: bool | None = Field(default=None, alias="isPromotional")
    promotional_discount: Decimal | None = Field(default=None, alias="promotionalDiscount")
    is_active: bool | None = Field(default=None, alias="isActive")

    @field_validator("merchant_product_id", mode="before")
    @classmethod
    def _coerce_product_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def provenance(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(slots=True)
class ProductVariantDraft:
    """Normalized variant ready for reconciliation."""

    supplier_code: str
    supplier_product_id: str
    product_name: str
    brand_name: str
    brand_category: str
    vas_type: VasType
    transaction_type: TransactionType
    provider: str
    min_amount: int
    max_amount: int
    denominations: list[int] | None
    commission: Decimal
    priority: int
    pinned: bool
    last_synced_at: datetime
    network_type: str = "local"
    fixed_fee: int = 0
    is_promotional: bool = False
    promotional_discount: Decimal | None = None
    status: str = "active"
    sort_order: int = 2
    is_preferred: bool = False
    pricing: dict[str, Any] = field(default_factory=dict)
    constraints: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PersistedVariant:
    """Stored variant with the columns a sync compares against a draft."""

    id: int
    product_id: int
    supplier_product_id: str
    product_name: str
    provider: str | None
    status: str = "active"
    transaction_type: str | None = None
    min_amount: int | None = None
    max_amount: int | None = None
    denominations: list[int] | None = None
    commission: Decimal | None = None
    fixed_fee: int = 0
    priority: int | None = None
    is_promotional: bool = False
    promotional_discount: Decimal | None = None


@dataclass(slots=True)
class CatalogVariant:
    """Persisted variant as read for a purchase decision."""

    id: int
    supplier_code: str
    supplier_product_id: str
    product_name: str
    vas_type: VasType
    provider: str
    min_amount: int
    max_amount: int
    commission: Decimal
    priority: int
    denominations: list[int] | None = None
    fixed_fee: int = 0
    is_promotional: bool = False
    status: str = "active"
