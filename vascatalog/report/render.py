"""Plain-text sync summary rendering."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from jinja2 import Environment, FileSystemLoader

from vascatalog.utils.dates import format_timestamp

if TYPE_CHECKING:  # pragma: no cover
    from vascatalog.jobs.sync import SyncSummary

TEMPLATE_DIR = Path(__file__).parent
ENV = Environment(
    loader=FileSystemLoader(str(TEMPLATE_DIR)),
    trim_blocks=True,
    lstrip_blocks=True,
    keep_trailing_newline=True,
)


def render_summary(summary: SyncSummary) -> str:
    template = ENV.get_template("summary.txt.j2")
    return template.render(**_context(summary))


def _context(summary: SyncSummary) -> dict[str, Any]:
    rows = []
    for stats in summary.by_vas_type:
        rows.append(
            {
                "vas_type": stats.vas_type.value,
                "error": stats.error,
                "fetched": stats.fetched,
                "filtered": stats.filtered,
                "created": stats.created,
                "updated": stats.updated,
                "missing": stats.missing,
                "extra": stats.extra,
                "mismatched": stats.mismatched,
                "changed": stats.changed,
                "failed": stats.failed,
                "mismatches": stats.result.mismatched if stats.result else [],
                "failures": stats.failures,
            }
        )
    return {
        "supplier": summary.supplier_code,
        "sync_id": summary.sync_id,
        "dry_run": summary.dry_run,
        "started_at": format_timestamp(summary.started_at),
        "completed_at": format_timestamp(summary.completed_at) if summary.completed_at else None,
        "fatal_error": summary.fatal_error,
        "best_offers": summary.best_offers,
        "rows": rows,
        "totals": summary.totals(),
        "errors": summary.error_count,
        "status": summary.status,
    }
