"""Celery configuration for the nightly catalog sync."""

from __future__ import annotations

import os

from celery import Celery
from celery.schedules import crontab

from vascatalog.ingest import load_suppliers
from vascatalog.utils.dates import timezone_name

broker_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")
backend_url = os.environ.get("REDIS_URL", "redis://redis:6379/0")

celery_app = Celery("vascatalog", broker=broker_url, backend=backend_url)
celery_app.conf.timezone = timezone_name()


def build_beat_schedule() -> dict[str, dict]:
    hour = int(os.environ.get("SYNC_HOUR", "2"))
    minute = int(os.environ.get("SYNC_MINUTE", "0"))
    schedule = {}
    for supplier in load_suppliers():
        if not supplier.live_integration:
            continue
        schedule[f"nightly-catalog-sync-{supplier.code.lower()}"] = {
            "task": "vascatalog.jobs.sync.run_sync",
            "schedule": crontab(hour=hour, minute=minute),
            "args": (supplier.code,),
        }
    return schedule


celery_app.conf.beat_schedule = build_beat_schedule()


@celery_app.task(name="vascatalog.jobs.sync.run_sync")
def run_sync_task(supplier_code: str, dry_run: bool = False) -> dict:  # pragma: no cover - executed by worker
    import asyncio

    from vascatalog.db.session import create_engine_from_env
    from vascatalog.ingest import load_supplier
    from vascatalog.jobs.sync import run_sync

    summary = asyncio.run(run_sync(load_supplier(supplier_code), create_engine_from_env(), dry_run=dry_run))
    return summary.as_dict()
