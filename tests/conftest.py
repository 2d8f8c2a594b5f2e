import json
from decimal import Decimal
from pathlib import Path

import pendulum
import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from vascatalog.db.tables import create_tables
from vascatalog.ingest.models import SupplierConfig

FIXTURES = Path(__file__).parent / "fixtures" / "http"


class FakeClock:
    def __init__(self, start=None):
        self.now = start or pendulum.datetime(2026, 10, 19, 2, 0, tz="UTC")

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now.add(**kwargs)


def load_fixture(path: str):
    return json.loads((FIXTURES / path).read_text())


@pytest.fixture()
def engine():
    # StaticPool keeps one in-memory database visible to executor threads.
    engine = create_engine(
        "sqlite://",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def fixture_json():
    return load_fixture


@pytest.fixture()
def supplier():
    return SupplierConfig(
        code="MOBILEMART",
        name="MobileMart",
        base_url="https://api.test",
        priority=2,
        api_prefix="/api/v1",
        client_id="client",
        client_secret="secret",
        live_integration=True,
        default_commission=Decimal("2.5"),
        endpoint_aliases={"electricity": "utility", "bill_payment": "bill-payment"},
    )


@pytest.fixture()
def offline_supplier(supplier):
    return SupplierConfig(
        code=supplier.code,
        name=supplier.name,
        base_url=supplier.base_url,
        api_prefix=supplier.api_prefix,
        live_integration=False,
    )
