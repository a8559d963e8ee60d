# Overview: Shared query-string parsing for API routes.

from __future__ import annotations

from datetime import date, datetime

from flask import request

from ..errors import ValidationError
from bizdesk.time_utils import parse_iso_date, parse_iso_datetime, utcnow


def datetime_arg(name: str, default: datetime | None = None) -> datetime | None:
    raw = request.args.get(name)
    if not raw:
        return default
    try:
        value = parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")
    return value


def date_arg(name: str, default: date | None = None) -> date | None:
    raw = request.args.get(name)
    if not raw:
        return default
    try:
        return parse_iso_date(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date")


def range_args() -> tuple[datetime, datetime]:
    """start/end query params; defaults to the current year up to now."""
    now = utcnow()
    start = datetime_arg("start", datetime(now.year, 1, 1))
    end = datetime_arg("end", now)
    return start, end


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def datetime_value(name: str, raw) -> datetime | None:
    """ISO-8601 string from a JSON body -> UTC-naive datetime."""
    if raw in (None, ""):
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")
