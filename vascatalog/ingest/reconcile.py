"""Reconciliation of normalized supplier catalogs against the persisted catalog."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from vascatalog.db.session import decimal_param, json_param, timestamp_param
from vascatalog.db.tables import product_variants, products
from vascatalog.errors import PersistenceError
from vascatalog.ingest.models import PersistedVariant, ProductVariantDraft, SupplierConfig, VasType
from vascatalog.utils.json_safe import safe_encode

logger = logging.getLogger(__name__)

# A difference in one of these labels the record "mismatched" in reports.
REPORTED_FIELDS = ("product_name", "provider", "status")
COMPARED_FIELDS = REPORTED_FIELDS + (
    "transaction_type",
    "min_amount",
    "max_amount",
    "denominations",
    "commission",
    "fixed_fee",
    "priority",
    "is_promotional",
    "promotional_discount",
)
# Matches the Numeric(6, 3) columns so a stored value compares equal to its draft.
DECIMAL_SCALE = Decimal("0.001")


@dataclass(slots=True)
class Mismatch:
    key: str
    differences: dict[str, tuple[Any, Any]]

    @property
    def reported(self) -> bool:
        return any(name in REPORTED_FIELDS for name in self.differences)

    def describe(self) -> str:
        return ", ".join(f'{name}: "{old}" vs "{new}"' for name, (old, new) in self.differences.items())


@dataclass(slots=True)
class CatalogDiff:
    missing: list[ProductVariantDraft] = field(default_factory=list)
    extra: list[PersistedVariant] = field(default_factory=list)
    mismatched: list[tuple[ProductVariantDraft, Mismatch]] = field(default_factory=list)
    # stored pricing or limits differ while name, provider and status match
    changed: list[tuple[ProductVariantDraft, Mismatch]] = field(default_factory=list)
    in_sync: int = 0


@dataclass(slots=True)
class ReconciliationResult:
    vas_type: VasType
    dry_run: bool = False
    created: int = 0
    updated: int = 0
    failed: int = 0
    missing: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)
    mismatched: list[Mismatch] = field(default_factory=list)
    changed: list[Mismatch] = field(default_factory=list)
    errors: list[PersistenceError] = field(default_factory=list)
    in_sync: int = 0


def diff_catalog(
    drafts: Iterable[ProductVariantDraft],
    persisted: Iterable[PersistedVariant],
) -> CatalogDiff:
    """Three-way diff keyed by the supplier's own product id."""
    external: dict[str, ProductVariantDraft] = {}
    for draft in drafts:
        if draft.supplier_product_id in external:
            logger.warning("Duplicate supplier product id %s; keeping first", draft.supplier_product_id)
            continue
        external[draft.supplier_product_id] = draft
    stored = {variant.supplier_product_id: variant for variant in persisted}

    diff = CatalogDiff()
    for key, draft in external.items():
        current = stored.get(key)
        if current is None:
            diff.missing.append(draft)
            continue
        differences = _differences(current, draft)
        if not differences:
            diff.in_sync += 1
            continue
        mismatch = Mismatch(key=key, differences=differences)
        if mismatch.reported:
            diff.mismatched.append((draft, mismatch))
        else:
            diff.changed.append((draft, mismatch))
    diff.extra = [variant for key, variant in stored.items() if key not in external]
    return diff


def _differences(current: PersistedVariant, draft: ProductVariantDraft) -> dict[str, tuple[Any, Any]]:
    differences = {}
    for name in COMPARED_FIELDS:
        old = _comparable(name, getattr(current, name))
        new = _comparable(name, getattr(draft, name))
        if old != new:
            differences[name] = (old, new)
    return differences


def _comparable(name: str, value: Any) -> Any:
    """Bring a draft value and its stored column value to one form."""
    if isinstance(value, enum.Enum):
        return value.value
    if name in ("commission", "promotional_discount"):
        if value is None:
            return None
        return Decimal(str(value)).quantize(DECIMAL_SCALE)
    if name == "denominations":
        return [int(v) for v in value] if value else None
    if name == "is_promotional":
        return bool(value)
    return value


class CatalogReconciler:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ensure_supplier(self, supplier: SupplierConfig) -> int:
        with self.engine.begin() as conn:
            existing = conn.execute(
                text("SELECT id FROM suppliers WHERE code = :code"), {"code": supplier.code}
            ).scalar_one_or_none()
            if existing:
                return int(existing)
            result = conn.execute(
                text(
                    """
                    INSERT INTO suppliers (code, name, is_active, api_endpoint, priority)
                    VALUES (:code, :name, :is_active, :api_endpoint, :priority)
                    RETURNING id
                    """
                ),
                {
                    "code": supplier.code,
                    "name": supplier.name,
                    "is_active": supplier.active,
                    "api_endpoint": supplier.base_url,
                    "priority": supplier.priority,
                },
            )
            logger.info("Registered supplier %s", supplier.code)
            return int(result.scalar_one())

    def find_supplier_id(self, code: str) -> int | None:
        with self.engine.connect() as conn:
            existing = conn.execute(
                text("SELECT id FROM suppliers WHERE code = :code"), {"code": code}
            ).scalar_one_or_none()
        return int(existing) if existing is not None else None

    def load_persisted(self, supplier_id: int | None, vas_type: VasType) -> list[PersistedVariant]:
        if supplier_id is None:
            return []
        query = (
            select(
                product_variants.c.id,
                product_variants.c.product_id,
                product_variants.c.supplier_product_id,
                product_variants.c.provider,
                product_variants.c.status,
                product_variants.c.transaction_type,
                product_variants.c.min_amount,
                product_variants.c.max_amount,
                product_variants.c.denominations,
                product_variants.c.commission,
                product_variants.c.fixed_fee,
                product_variants.c.priority,
                product_variants.c.is_promotional,
                product_variants.c.promotional_discount,
                products.c.name,
            )
            .select_from(product_variants.join(products, products.c.id == product_variants.c.product_id))
            .where(
                and_(
                    product_variants.c.supplier_id == supplier_id,
                    products.c.type == vas_type.value,
                )
            )
            .order_by(product_variants.c.id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
        return [
            PersistedVariant(
                id=row["id"],
                product_id=row["product_id"],
                supplier_product_id=row["supplier_product_id"],
                product_name=row["name"],
                provider=row["provider"],
                status=row["status"],
                transaction_type=row["transaction_type"],
                min_amount=row["min_amount"],
                max_amount=row["max_amount"],
                denominations=row["denominations"],
                commission=row["commission"],
                fixed_fee=row["fixed_fee"],
                priority=row["priority"],
                is_promotional=row["is_promotional"],
                promotional_discount=row["promotional_discount"],
            )
            for row in rows
        ]

    def reconcile(
        self,
        supplier_id: int | None,
        vas_type: VasType,
        drafts: Sequence[ProductVariantDraft],
        persisted: Sequence[PersistedVariant],
        *,
        dry_run: bool = False,
    ) -> ReconciliationResult:
        diff = diff_catalog(drafts, persisted)
        result = ReconciliationResult(
            vas_type=vas_type,
            dry_run=dry_run,
            missing=[d.supplier_product_id for d in diff.missing],
            extra=[v.supplier_product_id for v in diff.extra],
            mismatched=[m for _, m in diff.mismatched],
            changed=[m for _, m in diff.changed],
            in_sync=diff.in_sync,
        )
        logger.info(
            "%s: %s in sync, %s missing, %s extra, %s mismatched, %s changed",
            vas_type.value,
            diff.in_sync,
            len(diff.missing),
            len(diff.extra),
            len(diff.mismatched),
            len(diff.changed),
        )
        for variant in diff.extra:
            logger.info("Extra %s variant left in place: %s", vas_type.value, variant.supplier_product_id)
        if dry_run:
            return result
        if supplier_id is None:
            raise ValueError("supplier_id is required outside dry-run mode")

        pending = [*diff.missing, *(draft for draft, _ in diff.mismatched), *(draft for draft, _ in diff.changed)]
        for draft in pending:
            try:
                created = self.apply(supplier_id, draft)
            except PersistenceError as exc:
                result.failed += 1
                result.errors.append(exc)
                logger.error("Failed to sync %s record %s: %s", vas_type.value, exc.key, exc.cause)
                continue
            if created:
                result.created += 1
            else:
                result.updated += 1
        return result

    def apply(self, supplier_id: int, draft: ProductVariantDraft) -> bool:
        """Write one record in its own transaction. Returns True when the variant was created."""
        key = draft.supplier_product_id
        try:
            with self.engine.begin() as conn:
                brand_id = self._ensure_brand(conn, draft)
                product_id = self._ensure_product(conn, supplier_id, brand_id, draft)
                created = self._upsert_variant(conn, supplier_id, product_id, draft)
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            raise PersistenceError(key, exc) from exc
        logger.debug("%s %s (%s)", "Created" if created else "Updated", draft.product_name, key)
        return created

    def _ensure_brand(self, conn: Connection, draft: ProductVariantDraft) -> int:
        existing = conn.execute(
            text("SELECT id FROM product_brands WHERE name = :name"), {"name": draft.brand_name}
        ).scalar_one_or_none()
        if existing:
            return int(existing)
        metadata, _ = safe_encode({"source": draft.supplier_code.lower()})
        result = conn.execute(
            text(
                f"""
                INSERT INTO product_brands (name, category, is_active, metadata)
                VALUES (:name, :category, :is_active, {json_param(conn, "metadata")})
                RETURNING id
                """
            ),
            {"name": draft.brand_name, "category": draft.brand_category, "is_active": True, "metadata": metadata},
        )
        return int(result.scalar_one())

    def _ensure_product(self, conn: Connection, supplier_id: int, brand_id: int, draft: ProductVariantDraft) -> int:
        existing = conn.execute(
            text(
                """
                SELECT id, brand_id, supplier_product_id FROM products
                WHERE supplier_id = :supplier_id AND name = :name AND type = :type
                """
            ),
            {"supplier_id": supplier_id, "name": draft.product_name, "type": draft.vas_type.value},
        ).mappings().first()
        if existing:
            if existing["brand_id"] is None or not existing["supplier_product_id"]:
                conn.execute(
                    text(
                        """
                        UPDATE products
                        SET brand_id = COALESCE(brand_id, :brand_id),
                            supplier_product_id = COALESCE(supplier_product_id, :supplier_product_id)
                        WHERE id = :id
                        """
                    ),
                    {"brand_id": brand_id, "supplier_product_id": draft.supplier_product_id, "id": existing["id"]},
                )
            return int(existing["id"])
        metadata, _ = safe_encode({"source": draft.supplier_code.lower(), "synced": True})
        result = conn.execute(
            text(
                f"""
                INSERT INTO products (supplier_id, brand_id, name, type, supplier_product_id, status, metadata)
                VALUES (:supplier_id, :brand_id, :name, :type, :supplier_product_id, 'active',
                        {json_param(conn, "metadata")})
                RETURNING id
                """
            ),
            {
                "supplier_id": supplier_id,
                "brand_id": brand_id,
                "name": draft.product_name,
                "type": draft.vas_type.value,
                "supplier_product_id": draft.supplier_product_id,
                "metadata": metadata,
            },
        )
        return int(result.scalar_one())

    def _upsert_variant(self, conn: Connection, supplier_id: int, product_id: int, draft: ProductVariantDraft) -> bool:
        params = _variant_params(conn, supplier_id, product_id, draft)
        existing = conn.execute(
            text(
                """
                SELECT id FROM product_variants
                WHERE supplier_id = :supplier_id AND supplier_product_id = :supplier_product_id
                """
            ),
            {"supplier_id": supplier_id, "supplier_product_id": draft.supplier_product_id},
        ).scalar_one_or_none()
        if existing:
            conn.execute(
                text(
                    f"""
                    UPDATE product_variants SET
                      product_id = :product_id,
                      vas_type = :vas_type,
                      transaction_type = :transaction_type,
                      network_type = :network_type,
                      provider = :provider,
                      min_amount = :min_amount,
                      max_amount = :max_amount,
                      denominations = {json_param(conn, "denominations")},
                      commission = :commission,
                      fixed_fee = :fixed_fee,
                      is_promotional = :is_promotional,
                      promotional_discount = :promotional_discount,
                      priority = :priority,
                      status = :status,
                      pricing = {json_param(conn, "pricing")},
                      constraints = {json_param(conn, "constraints")},
                      metadata = {json_param(conn, "metadata")},
                      last_synced_at = :last_synced_at,
                      sort_order = :sort_order,
                      is_preferred = :is_preferred
                    WHERE id = :id
                    """
                ),
                {**params, "id": existing},
            )
            return False
        conn.execute(
            text(
                f"""
                INSERT INTO product_variants (
                  product_id, supplier_id, supplier_product_id, vas_type, transaction_type, network_type,
                  provider, min_amount, max_amount, denominations, commission, fixed_fee, is_promotional,
                  promotional_discount, priority, status, pricing, constraints, metadata, last_synced_at,
                  sort_order, is_preferred
                )
                VALUES (
                  :product_id, :supplier_id, :supplier_product_id, :vas_type, :transaction_type, :network_type,
                  :provider, :min_amount, :max_amount, {json_param(conn, "denominations")}, :commission,
                  :fixed_fee, :is_promotional, :promotional_discount, :priority, :status,
                  {json_param(conn, "pricing")}, {json_param(conn, "constraints")}, {json_param(conn, "metadata")},
                  :last_synced_at, :sort_order, :is_preferred
                )
                """
            ),
            params,
        )
        return True


def _variant_params(conn: Connection, supplier_id: int, product_id: int, draft: ProductVariantDraft) -> dict[str, Any]:
    key = draft.supplier_product_id
    return {
        "product_id": product_id,
        "supplier_id": supplier_id,
        "supplier_product_id": key,
        "vas_type": draft.vas_type.value,
        "transaction_type": draft.transaction_type.value,
        "network_type": draft.network_type,
        "provider": draft.provider,
        "min_amount": draft.min_amount,
        "max_amount": draft.max_amount,
        "denominations": _encode_json(key, "denominations", draft.denominations) if draft.denominations else None,
        "commission": decimal_param(draft.commission),
        "fixed_fee": draft.fixed_fee,
        "is_promotional": draft.is_promotional,
        "promotional_discount": decimal_param(draft.promotional_discount),
        "priority": draft.priority,
        "status": draft.status,
        "pricing": _encode_json(key, "pricing", draft.pricing),
        "constraints": _encode_json(key, "constraints", draft.constraints),
        "metadata": _encode_json(key, "metadata", draft.metadata),
        "last_synced_at": timestamp_param(conn, draft.last_synced_at),
        "sort_order": draft.sort_order,
        "is_preferred": draft.is_preferred,
    }


def _encode_json(key: str, column: str, value: Any) -> str:
    encoded, ok = safe_encode(value)
    if not ok:
        logger.warning("Sanitized %s for %s before writing", column, key)
    return encoded
