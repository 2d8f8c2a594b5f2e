"""Supplier registry helpers."""

from __future__ import annotations

import os
import pathlib
from decimal import Decimal
from typing import Any, Mapping

import yaml

from vascatalog.errors import ConfigurationError
from vascatalog.ingest.models import DEFAULT_VAS_TYPES, SupplierConfig, canonical_vas_type

SUPPLIERS_PATH = pathlib.Path(__file__).with_name("suppliers.yml")


def load_suppliers(
    path: pathlib.Path = SUPPLIERS_PATH,
    *,
    env: Mapping[str, str] | None = None,
    active_only: bool = True,
) -> list[SupplierConfig]:
    data = yaml.safe_load(path.read_text()) or []
    environ = os.environ if env is None else env
    suppliers = [_build_supplier(item, environ) for item in data]
    if active_only:
        return [s for s in suppliers if s.active]
    return suppliers


def load_supplier(
    code: str,
    path: pathlib.Path = SUPPLIERS_PATH,
    *,
    env: Mapping[str, str] | None = None,
) -> SupplierConfig:
    wanted = code.strip().upper()
    for supplier in load_suppliers(path, env=env, active_only=False):
        if supplier.code == wanted:
            return supplier
    raise ConfigurationError(f"Unknown supplier {code!r}")


def env_flag(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def _build_supplier(item: dict[str, Any], environ: Mapping[str, str]) -> SupplierConfig:
    code = str(item["code"]).upper()
    prefix = f"{code}_"
    vas_types = tuple(canonical_vas_type(v) for v in item.get("vas_types") or ()) or DEFAULT_VAS_TYPES
    return SupplierConfig(
        code=code,
        name=item.get("name", code.title()),
        base_url=environ.get(f"{prefix}API_URL") or item["base_url"],
        priority=int(item.get("priority", 1)),
        api_prefix=item.get("api_prefix", ""),
        token_url=environ.get(f"{prefix}TOKEN_URL") or item.get("token_url"),
        client_id=environ.get(f"{prefix}CLIENT_ID"),
        client_secret=environ.get(f"{prefix}CLIENT_SECRET"),
        live_integration=env_flag(environ.get(f"{prefix}LIVE_INTEGRATION")),
        default_commission=Decimal(str(item.get("default_commission", "0"))),
        vas_types=vas_types,
        endpoint_aliases=dict(item.get("endpoint_aliases") or {}),
        active=bool(item.get("active", True)),
    )
