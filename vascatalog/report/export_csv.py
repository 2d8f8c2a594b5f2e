"""CSV export of per-record sync differences."""

from __future__ import annotations

import csv
import os
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:  # pragma: no cover
    from vascatalog.jobs.sync import SyncSummary

OUTPUT_DIR = Path(os.environ.get("REPORT_OUTPUT_DIR", "artifacts/reports"))

CSV_COLUMNS = [
    "sync_id",
    "supplier",
    "vas_type",
    "status",
    "supplier_product_id",
    "detail",
]


def export_diff_csv(summary: SyncSummary, path: str | Path | None = None) -> Path:
    if path is None:
        OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
        file_path = OUTPUT_DIR / f"sync-{summary.supplier_code.lower()}-{summary.sync_id}.csv"
    else:
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
    with file_path.open("w", newline="") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        writer.writerows(_rows(summary))
    return file_path


def _rows(summary: SyncSummary) -> Iterable[dict[str, object]]:
    base = {"sync_id": summary.sync_id, "supplier": summary.supplier_code}
    for stats in summary.by_vas_type:
        vas_type = stats.vas_type.value
        if stats.error:
            yield {**base, "vas_type": vas_type, "status": "error", "supplier_product_id": "", "detail": stats.error}
            continue
        result = stats.result
        if result is not None:
            for key in result.missing:
                yield {**base, "vas_type": vas_type, "status": "missing", "supplier_product_id": key, "detail": ""}
            for key in result.extra:
                yield {**base, "vas_type": vas_type, "status": "extra", "supplier_product_id": key, "detail": ""}
            for status, mismatches in (("mismatched", result.mismatched), ("changed", result.changed)):
                for mismatch in mismatches:
                    yield {
                        **base,
                        "vas_type": vas_type,
                        "status": status,
                        "supplier_product_id": mismatch.key,
                        "detail": mismatch.describe(),
                    }
        for failure in stats.failures:
            yield {
                **base,
                "vas_type": vas_type,
                "status": "failed",
                "supplier_product_id": failure.key,
                "detail": f"{failure.stage}: {failure.reason}",
            }
