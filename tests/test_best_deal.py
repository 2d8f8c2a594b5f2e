import itertools
from decimal import Decimal

import pendulum
import pytest
from sqlalchemy import text

from vascatalog.ingest.models import CatalogVariant, ProductVariantDraft, SupplierConfig, TransactionType, VasType
from vascatalog.ingest.reconcile import CatalogReconciler
from vascatalog.logic.best_deal import (
    best_deal_for,
    compare_variants,
    eligible_for_amount,
    load_catalog_variants,
    select_best,
)


_ids = itertools.count(1)


def variant(name, commission, min_amount, supplier="MOBILEMART", priority=1, **fields):
    return CatalogVariant(
        id=next(_ids),
        supplier_code=supplier,
        supplier_product_id=name,
        product_name=name,
        vas_type=VasType.AIRTIME,
        provider="Vodacom",
        min_amount=min_amount,
        max_amount=fields.pop("max_amount", 100_000),
        commission=Decimal(str(commission)),
        priority=priority,
        **fields,
    )


def test_highest_commission_beats_lower_price():
    a = variant("A", 5, 1000)
    b = variant("B", 5, 900)
    c = variant("C", 7, 1500)

    assert select_best([a, b, c], preferred_supplier_code="FLASH") is c


def test_lowest_price_breaks_commission_tie():
    a = variant("A", 5, 1000)
    b = variant("B", 5, 900)

    assert select_best([a, b], preferred_supplier_code="FLASH") is b


def test_fixed_denomination_is_the_price():
    a = variant("A", 5, 500, denominations=[2000])
    b = variant("B", 5, 1000)

    assert select_best([a, b], preferred_supplier_code="FLASH") is b


def test_preferred_supplier_breaks_price_tie():
    a = variant("A", 5, 1000, supplier="FLASH", priority=2)
    b = variant("B", 5, 1000, supplier="MOBILEMART", priority=1)

    assert select_best([b, a], preferred_supplier_code="flash") is a


def test_priority_then_first_seen():
    a = variant("A", 5, 1000, priority=3)
    b = variant("B", 5, 1000, priority=1)
    c = variant("C", 5, 1000, priority=1)

    assert select_best([a, b, c], preferred_supplier_code="FLASH") is b
    assert select_best([c, b], preferred_supplier_code="FLASH") is c


def test_select_best_empty_and_env_default(monkeypatch):
    monkeypatch.setenv("PREFERRED_SUPPLIER", "mobilemart")
    a = variant("A", 5, 1000, supplier="FLASH")
    b = variant("B", 5, 1000, supplier="MOBILEMART")

    assert select_best([]) is None
    assert select_best([a, b]) is b


def test_select_best_does_not_mutate_input():
    variants = [variant("A", 5, 1000), variant("B", 7, 1000)]
    snapshot = list(variants)

    select_best(variants, preferred_supplier_code="FLASH")

    assert variants == snapshot


def test_eligible_for_amount_respects_bounds_denominations_and_status():
    ranged = variant("RANGED", 3, 500, max_amount=50_000)
    fixed = variant("FIXED", 4, 2000, max_amount=2000, denominations=[2000])
    inactive = variant("INACTIVE", 9, 500, status="inactive")

    assert eligible_for_amount([ranged, fixed, inactive], 2000) == [ranged, fixed]
    assert eligible_for_amount([ranged, fixed, inactive], 2500) == [ranged]
    assert eligible_for_amount([ranged, fixed, inactive], 100) == []


def test_compare_variants_ranks_and_prices():
    flash = variant("FLASH-VOD", Decimal("3.0"), 500, supplier="FLASH", fixed_fee=10)
    mobilemart = variant("MM-VOD", Decimal("2.5"), 500, supplier="MOBILEMART", priority=2)

    quotes = compare_variants([mobilemart, flash], 10_000, preferred_supplier_code="FLASH")

    assert [q.variant.supplier_code for q in quotes] == ["FLASH", "MOBILEMART"]
    assert [q.rank for q in quotes] == [1, 2]
    best = quotes[0]
    assert best.commission_earned == Decimal("300")
    assert best.net_cost == Decimal("9700")
    assert best.supplier_keeps == Decimal("9690")


def _draft(supplier_code, key, commission, priority, **overrides):
    fields = dict(
        supplier_code=supplier_code,
        supplier_product_id=key,
        product_name="Vodacom Airtime",
        brand_name="Vodacom",
        brand_category="utilities",
        vas_type=VasType.AIRTIME,
        transaction_type=TransactionType.TOPUP,
        provider="Vodacom",
        min_amount=500,
        max_amount=100_000,
        denominations=None,
        commission=Decimal(commission),
        priority=priority,
        pinned=False,
        last_synced_at=pendulum.datetime(2026, 10, 19, tz="UTC"),
    )
    fields.update(overrides)
    return ProductVariantDraft(**fields)


@pytest.fixture()
def catalog(engine):
    reconciler = CatalogReconciler(engine)
    flash = SupplierConfig(code="FLASH", name="Flash", base_url="https://flash.test", priority=1)
    mobilemart = SupplierConfig(code="MOBILEMART", name="MobileMart", base_url="https://mm.test", priority=2)
    flash_id = reconciler.ensure_supplier(flash)
    mobilemart_id = reconciler.ensure_supplier(mobilemart)
    reconciler.reconcile(flash_id, VasType.AIRTIME, [_draft("FLASH", "F-VOD", "3.0", 1)], [])
    reconciler.reconcile(
        mobilemart_id,
        VasType.AIRTIME,
        [
            _draft("MOBILEMART", "M-VOD", "3.0", 2),
            _draft("MOBILEMART", "M-MTN", "4.0", 2, product_name="MTN Airtime", provider="MTN"),
            _draft("MOBILEMART", "M-OLD", "9.0", 2, product_name="Retired", status="inactive"),
        ],
        [],
    )
    return engine


def test_load_catalog_variants_reads_active_variants(catalog):
    variants = load_catalog_variants(catalog, "airtime")

    assert {v.supplier_product_id for v in variants} == {"F-VOD", "M-VOD", "M-MTN"}
    vod = next(v for v in variants if v.supplier_product_id == "F-VOD")
    assert vod.supplier_code == "FLASH"
    assert vod.commission == Decimal("3.0")
    assert vod.vas_type is VasType.AIRTIME


def test_best_deal_for_provider_uses_preferred_supplier_on_tie(catalog):
    best = best_deal_for(catalog, VasType.AIRTIME, amount=2000, provider="Vodacom", preferred_supplier_code="FLASH")

    assert best.supplier_product_id == "F-VOD"


def test_best_deal_for_skips_inactive_suppliers(catalog):
    with catalog.begin() as conn:
        conn.execute(text("UPDATE suppliers SET is_active = :flag WHERE code = 'MOBILEMART'"), {"flag": False})

    best = best_deal_for(catalog, "airtime", preferred_supplier_code="MOBILEMART")

    assert best.supplier_code == "FLASH"


def test_best_deal_for_amount_out_of_range(catalog):
    assert best_deal_for(catalog, "airtime", amount=200_000) is None
