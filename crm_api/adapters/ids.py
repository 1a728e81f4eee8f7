"""
Identifier and timestamp normalization between API and caller shapes.

The API identifies entities by a numeric primary key (`id`) and a GUID
external key (`key`). Callers see the GUID as `id`; the numeric key is kept
under `_apiId` for the few endpoints that need it.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from numbers import Real
from typing import Any, Iterable, Mapping, Optional

from crm_api.errors import DateDecodeError

API_ID_FIELD = "_apiId"

DEFAULT_DATE_FIELDS = ("createdAt", "updatedAt", "lastContact")

_GUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def normalize_entity(entity: Optional[Mapping[str, Any]]) -> Optional[dict]:
    if entity is None:
        return None
    return {
        **entity,
        "id": entity.get("key") or entity.get("id"),
        API_ID_FIELD: entity.get("id"),
    }


def normalize_entities(entities: Any) -> list[dict]:
    if not isinstance(entities, list):
        return []
    return [normalize_entity(entity) for entity in entities]


def denormalize_entity(entity: Optional[Mapping[str, Any]]) -> Optional[dict]:
    """Convert a normalized entity back into the shape the API accepts."""
    if entity is None:
        return None

    rest = {k: v for k, v in entity.items() if k != API_ID_FIELD}
    if API_ID_FIELD in entity:
        return {**rest, "id": entity[API_ID_FIELD], "key": entity.get("id")}

    # New entity: the canonical id becomes its external key.
    return {**rest, "key": entity.get("id")}


def get_api_id(entity_or_id: Any) -> Any:
    """Return the id to put in an endpoint URL, preferring the numeric key."""
    if isinstance(entity_or_id, Mapping):
        return (
            entity_or_id.get(API_ID_FIELD)
            or entity_or_id.get("key")
            or entity_or_id.get("id")
        )
    return entity_or_id


def is_guid(value: Any) -> bool:
    return isinstance(value, str) and bool(_GUID_PATTERN.match(value))


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _conversion_method(value: Any):
    # Firestore/protobuf timestamps expose one of these.
    for name in ("to_datetime", "ToDatetime"):
        method = getattr(value, name, None)
        if callable(method):
            return method
    return None


def _from_epoch(seconds: Any, field: Optional[str], value: Any) -> datetime:
    # NaN and millisecond epochs fall outside the datetime range.
    try:
        return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise DateDecodeError(field, value) from exc


def decode_timestamp(value: Any, field: Optional[str] = None) -> datetime:
    """
    Decode one wire timestamp into a timezone-aware datetime.

    Shapes are tried in this order, first match wins:
      1. a datetime (returned as-is, naive values are taken as UTC)
      2. an object with a `to_datetime()` / `ToDatetime()` method
      3. an ISO-8601 string
      4. Unix seconds as int or float
      5. a mapping with numeric `seconds` (and optional `nanos`)

    Raises:
        DateDecodeError: the value matches none of the shapes.
    """
    if isinstance(value, datetime):
        return _aware(value)

    method = _conversion_method(value)
    if method is not None:
        converted = method()
        if isinstance(converted, datetime):
            return _aware(converted)
        raise DateDecodeError(field, value)

    if isinstance(value, str):
        try:
            return _aware(datetime.fromisoformat(value.strip()))
        except ValueError as exc:
            raise DateDecodeError(field, value) from exc

    if isinstance(value, Real) and not isinstance(value, bool):
        return _from_epoch(value, field, value)

    if isinstance(value, Mapping):
        seconds = value.get("seconds")
        if isinstance(seconds, Real) and not isinstance(seconds, bool):
            try:
                nanos = float(value.get("nanos") or 0)
            except (TypeError, ValueError) as exc:
                raise DateDecodeError(field, value) from exc
            return _from_epoch(float(seconds) + nanos / 1e9, field, value)

    raise DateDecodeError(field, value)


def normalize_dates(
    entity: Optional[Mapping[str, Any]],
    date_fields: Iterable[str] = DEFAULT_DATE_FIELDS,
) -> Optional[dict]:
    """Decode the named fields; empty or missing fields are left untouched."""
    if entity is None:
        return None

    normalized = dict(entity)
    for field in date_fields:
        value = normalized.get(field)
        if value:
            normalized[field] = decode_timestamp(value, field)
    return normalized


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision and a `Z` suffix."""
    utc = _aware(value).astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def serialize_dates(
    entity: Optional[Mapping[str, Any]],
    date_fields: Iterable[str] = DEFAULT_DATE_FIELDS,
) -> Optional[dict]:
    if entity is None:
        return None

    serialized = dict(entity)
    for field in date_fields:
        value = serialized.get(field)
        if isinstance(value, datetime):
            serialized[field] = format_timestamp(value)
    return serialized
