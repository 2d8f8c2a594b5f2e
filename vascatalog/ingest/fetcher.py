"""Supplier catalog listing and commercial filtering."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from vascatalog.errors import RequestFailed
from vascatalog.ingest.client import SupplierClient
from vascatalog.ingest.models import ExternalProductRecord, VasType, canonical_vas_type

logger = logging.getLogger(__name__)

RecordFilter = Callable[[ExternalProductRecord], bool]


def _pinless_only(record: ExternalProductRecord) -> bool:
    return record.pinned is False


def _pinned_only(record: ExternalProductRecord) -> bool:
    return record.pinned is True


def _keep_all(record: ExternalProductRecord) -> bool:
    return True


# Airtime and data launch as direct top-ups only; electricity must return a
# token. Bill payments are kept and forced to pinned by the normalizer.
FILTER_POLICY: dict[VasType, RecordFilter] = {
    VasType.AIRTIME: _pinless_only,
    VasType.DATA: _pinless_only,
    VasType.ELECTRICITY: _pinned_only,
    VasType.BILL_PAYMENT: _keep_all,
    VasType.VOUCHER: _keep_all,
}


@dataclass(slots=True)
class RejectedRecord:
    key: str
    reason: str


@dataclass(slots=True)
class FetchResult:
    vas_type: VasType
    fetched: int = 0
    records: list[ExternalProductRecord] = field(default_factory=list)
    rejected: list[RejectedRecord] = field(default_factory=list)

    @property
    def filtered_out(self) -> int:
        return self.fetched - len(self.records) - len(self.rejected)


class CatalogFetcher:
    def __init__(self, client: SupplierClient) -> None:
        self.client = client

    async def fetch(self, vas_type: VasType | str) -> FetchResult:
        vas_type = canonical_vas_type(vas_type)
        segment = self.client.config.path_segment(vas_type)
        payload = await self.client.get(f"/{segment}/products")
        items = extract_products(payload)
        result = FetchResult(vas_type=vas_type, fetched=len(items))
        keep = FILTER_POLICY[vas_type]
        for index, item in enumerate(items):
            try:
                record = ExternalProductRecord.model_validate(item)
            except ValidationError as exc:
                key = _record_key(item, index)
                logger.warning("Rejected %s record %s: %s", vas_type.value, key, exc.errors()[:3])
                result.rejected.append(RejectedRecord(key=key, reason=str(exc)))
                continue
            if keep(record):
                result.records.append(record)
        logger.info(
            "Fetched %s %s products from %s, %s kept after filtering",
            result.fetched,
            vas_type.value,
            self.client.config.code,
            len(result.records),
        )
        return result


def extract_products(payload: Any) -> list[Any]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("products", "data"):
            value = payload.get(key)
            if isinstance(value, list):
                return value
        return []
    raise RequestFailed(f"Unexpected catalog payload of type {type(payload).__name__}", status=200, body=payload)


def _record_key(item: Any, index: int) -> str:
    if isinstance(item, dict) and item.get("merchantProductId") not in (None, ""):
        return str(item["merchantProductId"])
    return f"#{index}"
