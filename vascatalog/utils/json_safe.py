"""JSON encoding that never raises on malformed upstream values."""

from __future__ import annotations

import enum
import json
import logging
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

EMPTY_OBJECT = "{}"


def safe_encode(value: Any) -> tuple[str, bool]:
    """Encode ``value`` as JSON text.

    Returns ``(text, ok)``. ``ok`` is False when the value had to be sanitized
    (non-finite floats, callables, unknown objects become ``null``) or, as a
    last resort, replaced by an empty object.
    """
    if value is None:
        return EMPTY_OBJECT, True
    try:
        return json.dumps(value, allow_nan=False, default=_encode_known), True
    except (TypeError, ValueError) as exc:
        first_error = exc
    try:
        text = json.dumps(_sanitize(value), allow_nan=False)
    except (TypeError, ValueError) as exc:  # pragma: no cover - _sanitize only emits JSON types
        logger.warning("JSON encoding fell back to empty object: %s", exc)
        return EMPTY_OBJECT, False
    logger.warning("JSON value sanitized before encoding: %s", first_error)
    return text, False


def _encode_known(value: Any) -> Any:
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValueError(f"Non-finite decimal {value}")
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _sanitize(value: Any) -> Any:
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {str(k): _sanitize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(v) for v in value]
    try:
        encoded = _encode_known(value)
    except (TypeError, ValueError):
        return None
    return _sanitize(encoded)
