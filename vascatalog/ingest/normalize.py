"""Mapping of supplier product records onto the canonical variant shape."""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from vascatalog.errors import NormalizationError
from vascatalog.ingest.models import (
    ExternalProductRecord,
    ProductVariantDraft,
    SupplierConfig,
    TransactionType,
    VasType,
    canonical_vas_type,
)
from vascatalog.utils.dates import utc_now

DEFAULT_MIN_AMOUNT = 500
DEFAULT_MAX_AMOUNT = 100_000
UNKNOWN_PROVIDER = "Unknown"
SYNC_SOURCE = "supplier_api"

FORCED_PINNED = {VasType.BILL_PAYMENT, VasType.ELECTRICITY}
TOPUP_TYPES = {VasType.AIRTIME, VasType.DATA}


def normalize(
    record: ExternalProductRecord,
    vas_type: VasType | str,
    supplier: SupplierConfig,
    *,
    synced_at: datetime | None = None,
    synced_from: str = SYNC_SOURCE,
) -> ProductVariantDraft:
    try:
        vas = canonical_vas_type(vas_type)
    except ValueError as exc:
        raise NormalizationError(f"Unknown VAS type {vas_type!r}") from exc
    synced_at = synced_at or utc_now()
    declared_pinned = record.pinned
    pinned = True if vas in FORCED_PINNED else bool(declared_pinned)
    min_amount, max_amount, denominations = _amount_bounds(record, vas)
    content_creator = (record.content_creator or "").strip()
    provider = content_creator or (record.provider or "").strip() or UNKNOWN_PROVIDER
    commission = supplier.default_commission

    return ProductVariantDraft(
        supplier_code=supplier.code,
        supplier_product_id=record.merchant_product_id,
        product_name=record.product_name,
        brand_name=content_creator or record.product_name.strip() or supplier.name,
        brand_category=brand_category(vas),
        vas_type=vas,
        transaction_type=transaction_type(vas, pinned),
        provider=provider,
        min_amount=min_amount,
        max_amount=max_amount,
        denominations=denominations,
        commission=commission,
        priority=supplier.priority,
        pinned=pinned,
        last_synced_at=synced_at,
        is_promotional=bool(record.is_promotional),
        promotional_discount=record.promotional_discount,
        status="inactive" if record.is_active is False else "active",
        sort_order=1 if pinned else 2,
        is_preferred=pinned,
        pricing={
            "defaultCommissionRate": commission,
            "fixedAmount": bool(record.fixed_amount),
            "amount": record.amount,
        },
        constraints={
            "minAmount": _optional_cents(record.minimum_amount, "minimumAmount"),
            "maxAmount": _optional_cents(record.maximum_amount, "maximumAmount"),
            "pinned": pinned,
        },
        metadata={
            "supplier": supplier.code,
            "merchantProductId": record.merchant_product_id,
            "productName": record.product_name,
            "contentCreator": record.content_creator,
            "declaredPinned": declared_pinned,
            "pinnedOverride": pinned != bool(declared_pinned),
            "fixedAmount": record.fixed_amount,
            "source": record.provenance(),
            "syncedAt": synced_at.isoformat(),
            "syncedFrom": synced_from,
        },
    )


def transaction_type(vas_type: VasType, pinned: bool) -> TransactionType:
    if pinned:
        return TransactionType.VOUCHER
    if vas_type in TOPUP_TYPES:
        return TransactionType.TOPUP
    return TransactionType.DIRECT


def brand_category(vas_type: VasType) -> str:
    if vas_type is VasType.VOUCHER:
        return "entertainment"
    return "utilities"


def to_cents(value: Any, field_name: str = "amount") -> int:
    """Convert a major-unit amount into integer cents, rounding half up."""
    try:
        cents = (Decimal(str(value)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise NormalizationError(f"Invalid {field_name} {value!r}") from exc
    if not cents.is_finite():
        raise NormalizationError(f"Invalid {field_name} {value!r}")
    if cents < 0:
        raise NormalizationError(f"Negative {field_name} {value!r}")
    return int(cents)


def _optional_cents(value: Decimal | None, field_name: str) -> int | None:
    if value is None:
        return None
    return to_cents(value, field_name)


def _amount_bounds(record: ExternalProductRecord, vas: VasType) -> tuple[int, int, list[int] | None]:
    if record.fixed_amount and vas is not VasType.BILL_PAYMENT:
        if record.amount is None:
            raise NormalizationError(f"Fixed-amount product {record.merchant_product_id} has no amount")
        cents = to_cents(record.amount)
        return cents, cents, [cents]
    min_cents = _optional_cents(record.minimum_amount, "minimumAmount")
    max_cents = _optional_cents(record.maximum_amount, "maximumAmount")
    min_amount = DEFAULT_MIN_AMOUNT if min_cents is None else min_cents
    max_amount = DEFAULT_MAX_AMOUNT if max_cents is None else max_cents
    if min_amount > max_amount:
        raise NormalizationError(
            f"Product {record.merchant_product_id} has minimum {min_amount} above maximum {max_amount}"
        )
    return min_amount, max_amount, None
