from decimal import Decimal

import pendulum
import pytest

from vascatalog.errors import NormalizationError
from vascatalog.ingest.models import ExternalProductRecord, TransactionType, VasType, canonical_vas_type
from vascatalog.ingest.normalize import DEFAULT_MAX_AMOUNT, DEFAULT_MIN_AMOUNT, normalize, to_cents

SYNCED_AT = pendulum.datetime(2026, 10, 19, 2, 0, tz="UTC")


def make_record(**fields):
    payload = {"merchantProductId": "P1", "productName": "Vodacom Airtime", "contentCreator": "Vodacom"}
    payload.update(fields)
    return ExternalProductRecord.model_validate(payload)


def test_fixed_amount_maps_to_single_denomination(supplier):
    draft = normalize(make_record(pinned=False, fixedAmount=True, amount=20), "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.min_amount == 2000
    assert draft.max_amount == 2000
    assert draft.denominations == [2000]


def test_range_defaults_when_bounds_missing(supplier):
    draft = normalize(make_record(pinned=False, fixedAmount=False), "data", supplier, synced_at=SYNCED_AT)

    assert (draft.min_amount, draft.max_amount) == (DEFAULT_MIN_AMOUNT, DEFAULT_MAX_AMOUNT)
    assert draft.denominations is None


def test_range_converts_major_units_half_up(supplier):
    draft = normalize(
        make_record(pinned=False, minimumAmount="5.005", maximumAmount="1000"),
        VasType.AIRTIME,
        supplier,
        synced_at=SYNCED_AT,
    )

    assert draft.min_amount == 501
    assert draft.max_amount == 100_000


def test_pinless_airtime_is_topup(supplier):
    draft = normalize(make_record(pinned=False), "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.pinned is False
    assert draft.transaction_type is TransactionType.TOPUP
    assert draft.sort_order == 2
    assert draft.is_preferred is False
    assert draft.provider == "Vodacom"
    assert draft.commission == Decimal("2.5")
    assert draft.priority == 2


@pytest.mark.parametrize("vas", ["electricity", "utility", "bill_payment", "bill-payment"])
def test_forced_pinned_types(supplier, vas):
    draft = normalize(make_record(pinned=False), vas, supplier, synced_at=SYNCED_AT)

    assert draft.pinned is True
    assert draft.transaction_type is TransactionType.VOUCHER
    assert draft.metadata["declaredPinned"] is False
    assert draft.metadata["pinnedOverride"] is True
    assert draft.constraints["pinned"] is True


def test_bill_payment_ignores_fixed_amount(supplier, fixture_json):
    raw = fixture_json("mobilemart/bill_payment_products.json")["products"][0]
    draft = normalize(ExternalProductRecord.model_validate(raw), "bill_payment", supplier, synced_at=SYNCED_AT)

    assert draft.denominations is None
    assert (draft.min_amount, draft.max_amount) == (DEFAULT_MIN_AMOUNT, DEFAULT_MAX_AMOUNT)


def test_voucher_category_and_direct_transactions(supplier):
    voucher = normalize(make_record(pinned=True, fixedAmount=True, amount=100), "voucher", supplier, synced_at=SYNCED_AT)
    pinless_voucher = normalize(make_record(pinned=False), "voucher", supplier, synced_at=SYNCED_AT)

    assert voucher.brand_category == "entertainment"
    assert voucher.transaction_type is TransactionType.VOUCHER
    assert pinless_voucher.transaction_type is TransactionType.DIRECT


def test_provenance_metadata(supplier):
    record = make_record(pinned=False, fixedAmount=True, amount=20, promoCode="SPRING")
    draft = normalize(record, "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.metadata["supplier"] == "MOBILEMART"
    assert draft.metadata["merchantProductId"] == "P1"
    assert draft.metadata["syncedFrom"] == "supplier_api"
    assert draft.metadata["syncedAt"] == SYNCED_AT.isoformat()
    assert draft.metadata["source"]["promoCode"] == "SPRING"
    assert draft.last_synced_at == SYNCED_AT


def test_provider_falls_back_to_unknown(supplier):
    record = ExternalProductRecord.model_validate({"merchantProductId": "P9", "productName": "Generic", "pinned": False})
    draft = normalize(record, "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.provider == "Unknown"
    assert draft.brand_name == "Generic"


def test_blank_content_creator_falls_back_to_product_name(supplier):
    record = make_record(pinned=False, contentCreator="   ", provider=" MTN ", productName="MTN Airtime")
    draft = normalize(record, "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.brand_name == "MTN Airtime"
    assert draft.provider == "MTN"


def test_inactive_record_status(supplier):
    draft = normalize(make_record(pinned=False, isActive=False), "airtime", supplier, synced_at=SYNCED_AT)

    assert draft.status == "inactive"


@pytest.mark.parametrize(
    "fields",
    [
        {"fixedAmount": True},
        {"fixedAmount": True, "amount": -5},
        {"minimumAmount": 50, "maximumAmount": 10},
        {"minimumAmount": -1},
    ],
)
def test_invalid_amounts_raise(supplier, fields):
    with pytest.raises(NormalizationError):
        normalize(make_record(pinned=False, **fields), "airtime", supplier, synced_at=SYNCED_AT)


def test_unknown_vas_type_raises(supplier):
    with pytest.raises(NormalizationError):
        normalize(make_record(pinned=False), "lottery", supplier, synced_at=SYNCED_AT)


@pytest.mark.parametrize(
    "fields",
    [
        {"fixedAmount": True, "amount": "12.34"},
        {"fixedAmount": True, "amount": 0},
        {"minimumAmount": 2, "maximumAmount": 2},
        {"minimumAmount": 10},
        {"maximumAmount": "999.99"},
        {},
    ],
)
def test_amount_invariant(supplier, fields):
    draft = normalize(make_record(pinned=False, **fields), "airtime", supplier, synced_at=SYNCED_AT)

    assert isinstance(draft.min_amount, int) and draft.min_amount >= 0
    assert isinstance(draft.max_amount, int) and draft.max_amount >= 0
    assert draft.min_amount <= draft.max_amount
    for value in draft.denominations or []:
        assert draft.min_amount <= value <= draft.max_amount


def test_to_cents_rejects_garbage():
    with pytest.raises(NormalizationError):
        to_cents("twenty")
    assert to_cents(Decimal("0.015")) == 2


@pytest.mark.parametrize(
    "value, expected",
    [
        ("airtime", VasType.AIRTIME),
        ("Utility", VasType.ELECTRICITY),
        ("prepaid_utility", VasType.ELECTRICITY),
        ("billpayment", VasType.BILL_PAYMENT),
        (VasType.VOUCHER, VasType.VOUCHER),
    ],
)
def test_canonical_vas_type(value, expected):
    assert canonical_vas_type(value) is expected


def test_canonical_vas_type_rejects_unknown():
    with pytest.raises(ValueError):
        canonical_vas_type("lottery")
