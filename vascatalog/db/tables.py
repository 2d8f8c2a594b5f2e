"""Catalog schema."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine

metadata = MetaData()

suppliers = Table(
    "suppliers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(50), nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("api_endpoint", Text),
    Column("priority", Integer, nullable=False, default=1),
)

brands = Table(
    "product_brands",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", Text, nullable=False, unique=True),
    Column("category", String(50), nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("metadata", JSON),
)

products = Table(
    "products",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("supplier_id", Integer, ForeignKey("suppliers.id"), nullable=False),
    Column("brand_id", Integer, ForeignKey("product_brands.id")),
    Column("name", Text, nullable=False),
    Column("type", String(30), nullable=False),
    Column("supplier_product_id", Text),
    Column("status", String(20), nullable=False, default="active"),
    Column("metadata", JSON),
    UniqueConstraint("supplier_id", "name", "type", name="uq_products_supplier_name_type"),
)

product_variants = Table(
    "product_variants",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("product_id", Integer, ForeignKey("products.id"), nullable=False),
    Column("supplier_id", Integer, ForeignKey("suppliers.id"), nullable=False),
    Column("supplier_product_id", Text, nullable=False),
    Column("vas_type", String(30), nullable=False),
    Column("transaction_type", String(20), nullable=False),
    Column("network_type", String(20), nullable=False, default="local"),
    Column("provider", Text),
    Column("min_amount", Integer, nullable=False),
    Column("max_amount", Integer, nullable=False),
    Column("denominations", JSON),
    Column("commission", Numeric(6, 3), nullable=False, default=0),
    Column("fixed_fee", Integer, nullable=False, default=0),
    Column("is_promotional", Boolean, nullable=False, default=False),
    Column("promotional_discount", Numeric(6, 3)),
    Column("priority", Integer, nullable=False, default=1),
    Column("status", String(20), nullable=False, default="active"),
    Column("pricing", JSON),
    Column("constraints", JSON),
    Column("metadata", JSON),
    Column("last_synced_at", DateTime(timezone=True)),
    Column("sort_order", Integer, nullable=False, default=0),
    Column("is_preferred", Boolean, nullable=False, default=False),
    UniqueConstraint("supplier_id", "supplier_product_id", name="uq_variants_supplier_product"),
)

best_offers = Table(
    "vas_best_offers",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("vas_type", String(30), nullable=False),
    Column("provider", String(100), nullable=False),
    Column("denomination", Integer, nullable=False),
    Column("product_variant_id", Integer, ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=False),
    Column("supplier_code", String(50), nullable=False),
    Column("supplier_product_id", Text, nullable=False),
    Column("product_name", Text),
    Column("commission", Numeric(6, 3), nullable=False, default=0),
    Column("fixed_fee", Integer, nullable=False, default=0),
    Column("denominations", JSON),
    Column("min_amount", Integer, nullable=False),
    Column("max_amount", Integer, nullable=False),
    Column("catalog_version", BigInteger, nullable=False),
    Column("refreshed_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("vas_type", "provider", "denomination", name="uq_best_offers_offering"),
    Index("ix_best_offers_lookup", "vas_type", "provider"),
)

sync_runs = Table(
    "sync_runs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sync_id", String(36), nullable=False, unique=True),
    Column("supplier_code", String(50), nullable=False),
    Column("dry_run", Boolean, nullable=False, default=False),
    Column("status", String(20), nullable=False),
    Column("started_at", DateTime(timezone=True), nullable=False),
    Column("completed_at", DateTime(timezone=True)),
    Column("summary", JSON),
)


def create_tables(engine: Engine) -> None:
    metadata.create_all(engine)
