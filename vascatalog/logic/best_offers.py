"""Materialized best offer per (VAS type, provider, denomination)."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from decimal import Decimal

import pendulum
from sqlalchemy import and_, select
from sqlalchemy.engine import Engine
from sqlalchemy.sql import text

from vascatalog.db.session import decimal_param, json_param, timestamp_param
from vascatalog.db.tables import best_offers
from vascatalog.ingest.models import CatalogVariant, VasType, canonical_vas_type
from vascatalog.logic.best_deal import load_catalog_variants, select_best
from vascatalog.utils.dates import utc_now
from vascatalog.utils.json_safe import safe_encode

logger = logging.getLogger(__name__)

OFFER_VAS_TYPES: tuple[VasType, ...] = (VasType.AIRTIME, VasType.DATA, VasType.VOUCHER)

_PROVIDER_NAMES = {
    "cell c": "CellC",
    "cellc": "CellC",
    "vodacom": "Vodacom",
    "mtn": "MTN",
    "telkom": "Telkom",
    "eeziairtime": "eeziAirtime",
    "eezi airtime": "eeziAirtime",
    "global": "Global",
    "global-airtime": "Global",
    "global-data": "Global",
}


@dataclass(slots=True)
class BestOffer:
    vas_type: VasType
    provider: str
    denomination: int
    variant: CatalogVariant


@dataclass(slots=True)
class OfferRefresh:
    catalog_version: int
    rows: int


def normalize_provider(name: str | None) -> str:
    """Collapse supplier spellings of a network onto one provider name."""
    cleaned = (name or "").strip()
    if not cleaned:
        return "Unknown"
    return _PROVIDER_NAMES.get(cleaned.lower(), cleaned)


def offer_denominations(variant: CatalogVariant) -> list[int]:
    """Amounts a variant is offered at; ranged variants count at their minimum."""
    if variant.denominations:
        return sorted(set(variant.denominations))
    return [variant.min_amount]


def build_best_offers(
    variants: Iterable[CatalogVariant],
    *,
    preferred_supplier_code: str | None = None,
) -> list[BestOffer]:
    groups: dict[tuple[VasType, str, int], list[CatalogVariant]] = {}
    for variant in variants:
        provider = normalize_provider(variant.provider)
        for denomination in offer_denominations(variant):
            groups.setdefault((variant.vas_type, provider, denomination), []).append(variant)

    offers = []
    for (vas_type, provider, denomination), candidates in groups.items():
        winner = select_best(candidates, preferred_supplier_code=preferred_supplier_code, amount=denomination)
        if winner is not None:
            offers.append(BestOffer(vas_type, provider, denomination, winner))
    offers.sort(key=lambda o: (o.vas_type.value, o.provider, o.denomination))
    return offers


def refresh_best_offers(
    engine: Engine,
    *,
    vas_types: Iterable[VasType] = OFFER_VAS_TYPES,
    preferred_supplier_code: str | None = None,
    clock: Callable[[], pendulum.DateTime] = utc_now,
) -> OfferRefresh:
    """Recompute the best offers from the active catalog and replace the table.

    The delete and the inserts share one transaction, so readers see either the
    previous catalog version or the new one.
    """
    variants: list[CatalogVariant] = []
    for vas_type in vas_types:
        variants.extend(load_catalog_variants(engine, vas_type))
    offers = build_best_offers(variants, preferred_supplier_code=preferred_supplier_code)

    refreshed_at = clock()
    catalog_version = int(refreshed_at.timestamp() * 1000)
    with engine.begin() as conn:
        conn.execute(text("DELETE FROM vas_best_offers"))
        if offers:
            conn.execute(
                text(
                    f"""
                    INSERT INTO vas_best_offers (
                      vas_type, provider, denomination, product_variant_id, supplier_code, supplier_product_id,
                      product_name, commission, fixed_fee, denominations, min_amount, max_amount,
                      catalog_version, refreshed_at
                    )
                    VALUES (
                      :vas_type, :provider, :denomination, :product_variant_id, :supplier_code,
                      :supplier_product_id, :product_name, :commission, :fixed_fee,
                      {json_param(conn, "denominations")}, :min_amount, :max_amount, :catalog_version, :refreshed_at
                    )
                    """
                ),
                [
                    {
                        "vas_type": offer.vas_type.value,
                        "provider": offer.provider,
                        "denomination": offer.denomination,
                        "product_variant_id": offer.variant.id,
                        "supplier_code": offer.variant.supplier_code,
                        "supplier_product_id": offer.variant.supplier_product_id,
                        "product_name": offer.variant.product_name,
                        "commission": decimal_param(offer.variant.commission),
                        "fixed_fee": offer.variant.fixed_fee,
                        "denominations": safe_encode([offer.denomination])[0],
                        "min_amount": offer.denomination,
                        "max_amount": offer.denomination,
                        "catalog_version": catalog_version,
                        "refreshed_at": timestamp_param(conn, refreshed_at),
                    }
                    for offer in offers
                ],
            )
    logger.info("Refreshed %s best offers (catalog version %s)", len(offers), catalog_version)
    return OfferRefresh(catalog_version=catalog_version, rows=len(offers))


def load_best_offers(engine: Engine, vas_type: VasType | str, *, provider: str | None = None) -> list[dict]:
    vas = canonical_vas_type(vas_type)
    conditions = [best_offers.c.vas_type == vas.value]
    if provider:
        conditions.append(best_offers.c.provider == normalize_provider(provider))
    query = (
        select(
            best_offers.c.provider,
            best_offers.c.denomination,
            best_offers.c.product_variant_id,
            best_offers.c.supplier_code,
            best_offers.c.supplier_product_id,
            best_offers.c.product_name,
            best_offers.c.commission,
            best_offers.c.fixed_fee,
            best_offers.c.catalog_version,
        )
        .where(and_(*conditions))
        .order_by(best_offers.c.provider, best_offers.c.denomination)
    )
    with engine.connect() as conn:
        rows = conn.execute(query).mappings().all()
    return [{**row, "commission": Decimal(str(row["commission"]))} for row in rows]
