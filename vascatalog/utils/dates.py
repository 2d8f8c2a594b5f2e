"""Datetime helpers."""

from __future__ import annotations

import os

import pendulum

DEFAULT_TZ = "Africa/Johannesburg"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def utc_now() -> pendulum.DateTime:
    return pendulum.now("UTC")


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def isoformat(value: pendulum.DateTime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def format_timestamp(value: pendulum.DateTime) -> str:
    return value.in_timezone(timezone_name()).strftime("%Y-%m-%d %H:%M:%S %Z")
