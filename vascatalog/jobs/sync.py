"""Catalog sync job: fetch, normalize and reconcile one supplier's catalog."""

from __future__ import annotations

import argparse
import asyncio
import functools
import logging
import os
import sys
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx
import pendulum
from dotenv import load_dotenv
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql import text

from vascatalog.db.session import create_engine_from_env, json_param, timestamp_param
from vascatalog.errors import AuthenticationError, NormalizationError, RequestFailed
from vascatalog.ingest import load_supplier
from vascatalog.ingest.auth import TokenManager
from vascatalog.ingest.client import SupplierClient
from vascatalog.ingest.fetcher import CatalogFetcher
from vascatalog.ingest.models import SupplierConfig, VasType
from vascatalog.ingest.normalize import normalize
from vascatalog.ingest.reconcile import CatalogReconciler, ReconciliationResult
from vascatalog.logic.best_offers import refresh_best_offers
from vascatalog.report.export_csv import export_diff_csv
from vascatalog.report.render import render_summary
from vascatalog.utils.dates import isoformat, utc_now
from vascatalog.utils.json_safe import safe_encode

logger = logging.getLogger(__name__)

DEFAULT_SUPPLIER = "MOBILEMART"


@dataclass(slots=True)
class RecordFailure:
    key: str
    stage: str
    reason: str


@dataclass(slots=True)
class VasTypeSummary:
    vas_type: VasType
    fetched: int = 0
    filtered: int = 0
    rejected: int = 0
    created: int = 0
    updated: int = 0
    missing: int = 0
    extra: int = 0
    mismatched: int = 0
    changed: int = 0
    in_sync: int = 0
    error: str | None = None
    failures: list[RecordFailure] = field(default_factory=list)
    result: ReconciliationResult | None = None

    @property
    def failed(self) -> int:
        return len(self.failures)

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "fetched": self.fetched,
            "filtered": self.filtered,
            "rejected": self.rejected,
            "created": self.created,
            "updated": self.updated,
            "missing": self.missing,
            "extra": self.extra,
            "mismatched": self.mismatched,
            "changed": self.changed,
            "in_sync": self.in_sync,
            "failed": self.failed,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class SyncSummary:
    supplier_code: str
    dry_run: bool
    started_at: pendulum.DateTime
    sync_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    completed_at: pendulum.DateTime | None = None
    by_vas_type: list[VasTypeSummary] = field(default_factory=list)
    fatal_error: str | None = None
    best_offers: int | None = None

    @property
    def fetch_failed(self) -> bool:
        return self.fatal_error is not None or any(t.error for t in self.by_vas_type)

    @property
    def error_count(self) -> int:
        count = sum(t.failed + (1 if t.error else 0) for t in self.by_vas_type)
        return count + (1 if self.fatal_error else 0)

    @property
    def status(self) -> str:
        if self.fetch_failed:
            return "failed"
        if self.error_count:
            return "partial"
        return "success"

    @property
    def exit_code(self) -> int:
        return 1 if self.fetch_failed else 0

    def totals(self) -> dict[str, int]:
        keys = ("fetched", "filtered", "created", "updated", "missing", "extra", "mismatched", "changed", "failed")
        return {key: sum(getattr(t, key) for t in self.by_vas_type) for key in keys}

    def as_dict(self) -> dict[str, Any]:
        return {
            "sync_id": self.sync_id,
            "supplier": self.supplier_code,
            "dry_run": self.dry_run,
            "status": self.status,
            "started_at": isoformat(self.started_at),
            "completed_at": isoformat(self.completed_at),
            "errors": self.error_count,
            "fatal_error": self.fatal_error,
            "best_offers": self.best_offers,
            "totals": self.totals(),
            "by_vas_type": {t.vas_type.value: t.as_dict() for t in self.by_vas_type},
        }


class SyncOrchestrator:
    """Runs fetch, normalize and reconcile for every VAS type of one supplier.

    VAS types are processed one after another and records one at a time, so
    a failure is always attributable to a single type or record.
    """

    def __init__(
        self,
        supplier: SupplierConfig,
        fetcher: CatalogFetcher,
        reconciler: CatalogReconciler,
        *,
        clock: Callable[[], pendulum.DateTime] = utc_now,
        preflight: bool = True,
    ) -> None:
        self.supplier = supplier
        self.fetcher = fetcher
        self.reconciler = reconciler
        self._clock = clock
        self._preflight = preflight

    async def run(self, *, dry_run: bool = False) -> SyncSummary:
        summary = SyncSummary(supplier_code=self.supplier.code, dry_run=dry_run, started_at=self._clock())
        logger.info(
            "Starting %s catalog sync %s%s",
            self.supplier.code,
            summary.sync_id,
            " (dry run)" if dry_run else "",
        )
        if self._preflight:
            health = await self.fetcher.client.token_manager.health_check()
            if health["status"] != "healthy":
                summary.fatal_error = f"{self.supplier.code} API unhealthy: {health.get('error')}"
                logger.error(summary.fatal_error)
                summary.completed_at = self._clock()
                return summary

        if dry_run:
            supplier_id = await _in_executor(self.reconciler.find_supplier_id, self.supplier.code)
        else:
            supplier_id = await _in_executor(self.reconciler.ensure_supplier, self.supplier)

        for vas_type in self.supplier.vas_types:
            summary.by_vas_type.append(await self.sync_vas_type(vas_type, supplier_id, dry_run=dry_run))

        if not dry_run:
            try:
                refresh = await _in_executor(refresh_best_offers, self.reconciler.engine, clock=self._clock)
            except SQLAlchemyError as exc:
                logger.error("Failed to refresh best offers after %s sync: %s", self.supplier.code, exc)
            else:
                summary.best_offers = refresh.rows

        summary.completed_at = self._clock()
        if not dry_run:
            await _in_executor(record_sync_run, self.reconciler.engine, summary)
        logger.info("Finished %s catalog sync with status %s", self.supplier.code, summary.status)
        return summary

    async def sync_vas_type(self, vas_type: VasType, supplier_id: int | None, *, dry_run: bool) -> VasTypeSummary:
        stats = VasTypeSummary(vas_type=vas_type)
        try:
            fetched = await self.fetcher.fetch(vas_type)
        except (AuthenticationError, RequestFailed) as exc:
            stats.error = str(exc)
            logger.error("Failed to fetch %s products: %s", vas_type.value, exc)
            return stats

        stats.fetched = fetched.fetched
        stats.filtered = len(fetched.records)
        stats.rejected = len(fetched.rejected)
        stats.failures.extend(RecordFailure(r.key, "fetch", r.reason) for r in fetched.rejected)

        synced_at = self._clock()
        drafts = []
        for record in fetched.records:
            try:
                drafts.append(normalize(record, vas_type, self.supplier, synced_at=synced_at))
            except NormalizationError as exc:
                logger.warning("Skipping %s record %s: %s", vas_type.value, record.merchant_product_id, exc)
                stats.failures.append(RecordFailure(record.merchant_product_id, "normalize", str(exc)))

        try:
            persisted = await _in_executor(self.reconciler.load_persisted, supplier_id, vas_type)
            result = await _in_executor(
                self.reconciler.reconcile, supplier_id, vas_type, drafts, persisted, dry_run=dry_run
            )
        except SQLAlchemyError as exc:
            stats.error = f"Catalog database error: {exc}"
            logger.error("Failed to reconcile %s products: %s", vas_type.value, exc)
            return stats

        stats.result = result
        stats.created = result.created
        stats.updated = result.updated
        stats.missing = len(result.missing)
        stats.extra = len(result.extra)
        stats.mismatched = len(result.mismatched)
        stats.changed = len(result.changed)
        stats.in_sync = result.in_sync
        stats.failures.extend(RecordFailure(e.key, "persist", str(e.cause)) for e in result.errors)
        logger.info(
            "%s: %s created, %s updated, %s failed",
            vas_type.value,
            stats.created,
            stats.updated,
            stats.failed,
        )
        return stats


async def _in_executor(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    return await asyncio.get_running_loop().run_in_executor(None, functools.partial(func, *args, **kwargs))


def record_sync_run(engine: Engine, summary: SyncSummary) -> None:
    payload, _ = safe_encode(summary.as_dict())
    with engine.begin() as conn:
        conn.execute(
            text(
                f"""
                INSERT INTO sync_runs (sync_id, supplier_code, dry_run, status, started_at, completed_at, summary)
                VALUES (:sync_id, :supplier_code, :dry_run, :status, :started_at, :completed_at,
                        {json_param(conn, "summary")})
                """
            ),
            {
                "sync_id": summary.sync_id,
                "supplier_code": summary.supplier_code,
                "dry_run": summary.dry_run,
                "status": summary.status,
                "started_at": timestamp_param(conn, summary.started_at),
                "completed_at": timestamp_param(conn, summary.completed_at),
                "summary": payload,
            },
        )


async def run_sync(
    supplier: SupplierConfig,
    engine: Engine,
    *,
    dry_run: bool = False,
    session: httpx.AsyncClient | None = None,
) -> SyncSummary:
    own_session = session is None
    session = session or httpx.AsyncClient()
    token_manager = TokenManager(supplier, session=session)
    client = SupplierClient(token_manager, session=session)
    orchestrator = SyncOrchestrator(supplier, CatalogFetcher(client), CatalogReconciler(engine))
    try:
        return await orchestrator.run(dry_run=dry_run)
    finally:
        if own_session:
            await session.aclose()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync a supplier's VAS catalog into the product catalog.")
    parser.add_argument("--supplier", default=os.environ.get("SYNC_SUPPLIER", DEFAULT_SUPPLIER))
    parser.add_argument("--dry-run", action="store_true", help="report differences without writing")
    parser.add_argument("--report-csv", metavar="PATH", help="write per-record differences to a CSV file")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        supplier = load_supplier(args.supplier)
        if not supplier.live_integration and not supplier.has_credentials:
            logger.info("%s live integration disabled and no credentials set; nothing to sync", supplier.code)
            return 0
        engine = create_engine_from_env()
        summary = asyncio.run(run_sync(supplier, engine, dry_run=args.dry_run))
    except Exception:
        logger.exception("Catalog sync failed")
        return 1

    print(render_summary(summary))
    if args.report_csv:
        path = export_diff_csv(summary, args.report_csv)
        logger.info("Wrote differences to %s", path)
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
