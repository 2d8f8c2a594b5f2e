"""Best-deal selection across competing suppliers."""

from __future__ import annotations

import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import and_, select
from sqlalchemy.engine import Engine

from vascatalog.db.tables import product_variants, products, suppliers
from vascatalog.ingest.models import CatalogVariant, VasType, canonical_vas_type

DEFAULT_PREFERRED_SUPPLIER = "FLASH"


def preferred_supplier() -> str:
    return os.environ.get("PREFERRED_SUPPLIER", DEFAULT_PREFERRED_SUPPLIER).upper()


@dataclass(slots=True)
class VariantQuote:
    variant: CatalogVariant
    amount: int
    commission_rate: Decimal
    commission_earned: Decimal
    net_cost: Decimal
    supplier_keeps: Decimal
    rank: int


def price_of(variant: CatalogVariant) -> int:
    """Lowest amount a customer can buy the variant for."""
    if variant.denominations:
        return min(variant.denominations)
    return variant.min_amount


def ranking_key(
    variant: CatalogVariant,
    position: int,
    *,
    preferred: str,
    price: int | None = None,
) -> tuple:
    return (
        -variant.commission,
        price_of(variant) if price is None else price,
        0 if variant.supplier_code.upper() == preferred else 1,
        variant.priority,
        position,
    )


def select_best(
    variants: Iterable[CatalogVariant],
    *,
    preferred_supplier_code: str | None = None,
    amount: int | None = None,
) -> CatalogVariant | None:
    """Pick one variant: highest commission, then lowest price, then the
    preferred supplier, then lowest priority, then first seen.

    When ``amount`` is given every candidate is priced at that amount.
    """
    preferred = (preferred_supplier_code or preferred_supplier()).upper()
    best: tuple | None = None
    winner: CatalogVariant | None = None
    for position, variant in enumerate(variants):
        key = ranking_key(variant, position, preferred=preferred, price=amount)
        if best is None or key < best:
            best = key
            winner = variant
    return winner


def can_serve(variant: CatalogVariant, amount: int) -> bool:
    if variant.status != "active":
        return False
    if not variant.min_amount <= amount <= variant.max_amount:
        return False
    if variant.denominations:
        return amount in variant.denominations
    return True


def eligible_for_amount(variants: Iterable[CatalogVariant], amount: int) -> list[CatalogVariant]:
    return [v for v in variants if can_serve(v, amount)]


def compare_variants(
    variants: Sequence[CatalogVariant],
    amount: int,
    *,
    preferred_supplier_code: str | None = None,
) -> list[VariantQuote]:
    """Rank every variant able to serve ``amount`` and price the deal for each."""
    preferred = (preferred_supplier_code or preferred_supplier()).upper()
    eligible = [(pos, v) for pos, v in enumerate(variants) if can_serve(v, amount)]
    eligible.sort(key=lambda item: ranking_key(item[1], item[0], preferred=preferred, price=amount))
    quotes: list[VariantQuote] = []
    for rank, (_, variant) in enumerate(eligible, start=1):
        earned = Decimal(amount) * variant.commission / 100
        quotes.append(
            VariantQuote(
                variant=variant,
                amount=amount,
                commission_rate=variant.commission,
                commission_earned=earned,
                net_cost=Decimal(amount) - earned,
                supplier_keeps=Decimal(amount) - earned - variant.fixed_fee,
                rank=rank,
            )
        )
    return quotes


def load_catalog_variants(
    engine: Engine,
    vas_type: VasType | str,
    *,
    provider: str | None = None,
) -> list[CatalogVariant]:
    vas = canonical_vas_type(vas_type)
    conditions = [
        product_variants.c.vas_type == vas.value,
        product_variants.c.status == "active",
        suppliers.c.is_active,
    ]
    if provider:
        conditions.append(product_variants.c.provider == provider)
    query = (
        select(
            product_variants.c.id,
            product_variants.c.supplier_product_id,
            product_variants.c.provider,
            product_variants.c.min_amount,
            product_variants.c.max_amount,
            product_variants.c.denominations,
            product_variants.c.commission,
            product_variants.c.fixed_fee,
            product_variants.c.priority,
            product_variants.c.is_promotional,
            product_variants.c.status,
            products.c.name.label("product_name"),
            suppliers.c.code.label("supplier_code"),
        )
        .select_from(
            product_variants.join(products, products.c.id == product_variants.c.product_id).join(
                suppliers, suppliers.c.id == product_variants.c.supplier_id
            )
        )
        .where(and_(*conditions))
        .order_by(product_variants.c.is_preferred.desc(), product_variants.c.sort_order, product_variants.c.id)
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()
    return [
        CatalogVariant(
            id=row["id"],
            supplier_code=row["supplier_code"],
            supplier_product_id=row["supplier_product_id"],
            product_name=row["product_name"],
            vas_type=vas,
            provider=row["provider"] or "Unknown",
            min_amount=row["min_amount"],
            max_amount=row["max_amount"],
            denominations=list(row["denominations"]) if row["denominations"] else None,
            commission=Decimal(str(row["commission"] or 0)),
            fixed_fee=row["fixed_fee"] or 0,
            priority=row["priority"],
            is_promotional=bool(row["is_promotional"]),
            status=row["status"],
        )
        for row in rows
    ]


def best_deal_for(
    engine: Engine,
    vas_type: VasType | str,
    *,
    amount: int | None = None,
    provider: str | None = None,
    preferred_supplier_code: str | None = None,
) -> CatalogVariant | None:
    variants = load_catalog_variants(engine, vas_type, provider=provider)
    if amount is not None:
        variants = eligible_for_amount(variants, amount)
    return select_best(variants, preferred_supplier_code=preferred_supplier_code)
