"""
Row and RPC helpers shared by the Supabase repository adapters.

Supabase returns ISO-8601 timestamps (sometimes with a trailing 'Z') and numeric
columns as strings or floats; these helpers convert them to the domain's UTC
datetimes and Decimals. `call_rpc` normalizes the ways supabase-py reports the
JSON result of a PostgreSQL function.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from postgrest.exceptions import APIError

from domain.errors import ConcurrencyConflict
from domain.time import require_utc_timestamp

# PostgreSQL SQLSTATEs that mean "try again", not "your request is wrong".
_TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def optional_iso_utc(dt: Optional[datetime], *, name: str) -> Optional[str]:
    return to_iso_utc(dt, name=name) if dt is not None else None


def parse_utc_datetime(value: Any) -> datetime:
    """Parse a Supabase timestamp into a timezone-aware UTC datetime."""

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_optional_datetime(value: Any) -> Optional[datetime]:
    return parse_utc_datetime(value) if value is not None else None


def parse_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def parse_optional_decimal(value: Any) -> Optional[Decimal]:
    return parse_decimal(value) if value is not None else None


def rows_or_raise(response: Any, action: str) -> list[Mapping[str, Any]]:
    """Return response rows, raising RuntimeError if PostgREST reported an error."""

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


def call_rpc(client: Any, function: str, params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Execute a PostgreSQL function that returns a JSON object.

    Returns the decoded object (with at least a `success` key). Lock and
    serialization failures raise ConcurrencyConflict so callers can retry.
    """

    try:
        response = client.rpc(function, dict(params)).execute()
    except APIError as e:
        # supabase-py raises APIError for some JSON results, including successful
        # ones, so the payload has to be inspected before treating it as an error.
        try:
            error_data = e.json() if callable(getattr(e, "json", None)) else {}
        except ValueError:
            error_data = {}

        if isinstance(error_data, dict) and "success" in error_data:
            return error_data

        code = getattr(e, "code", None) or (error_data.get("code") if isinstance(error_data, dict) else None)
        if code in _TRANSIENT_SQLSTATES:
            raise ConcurrencyConflict(f"{function}: lock conflict ({code})") from e
        raise RuntimeError(f"{function} failed: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"{function} failed: {error}")

    result = response.data
    if isinstance(result, list):
        result = result[0] if result else {}
    if not isinstance(result, dict):
        raise RuntimeError(f"{function} returned an unexpected payload: {result!r}")

    if result.get("error") == "LOCK_CONFLICT":
        raise ConcurrencyConflict(result.get("message") or f"{function}: lock conflict")
    return result


__all__ = [
    "to_iso_utc",
    "optional_iso_utc",
    "parse_utc_datetime",
    "parse_optional_datetime",
    "parse_decimal",
    "parse_optional_decimal",
    "rows_or_raise",
    "call_rpc",
]
