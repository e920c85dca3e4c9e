"""Value type inference for free-form event data.

:func:`infer` maps any decoded value onto exactly one :class:`Param` variant.
It is total and deterministic: the same input always yields an identical
Param, and composite values serialize to byte-identical JSON because mapping
keys are sorted.

Examples
--------
>>> infer("favoriteCount", 3).int_value
3
>>> infer("tags", ["a", "b"]).json_value
'["a","b"]'
>>> infer("deleted_at", None) is None
True

"""

from __future__ import annotations

import collections.abc as cabc
import datetime as dt
import math
import typing as typ

import msgspec

from quill.common.time import isoformat_utc, parse_instant
from quill.ingest.models import VALUE_FIELDS, Param, ParamKind

DynamicValue: typ.TypeAlias = (
    None
    | str
    | int
    | float
    | bool
    | dt.datetime
    | cabc.Sequence[typ.Any]
    | cabc.Mapping[str, typ.Any]
)

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

_json_encoder = msgspec.json.Encoder(enc_hook=str, order="sorted")


def infer(key: str, value: object) -> Param | None:
    """Infer the Param variant for ``value``.

    Rules apply in order: ``None`` is skipped, text becomes ``string_value``,
    whole numbers ``int_value``, fractional numbers ``float_value``, booleans
    ``bool_value``, datetimes ``timestamp_value`` (UTC ISO-8601), composites
    ``json_value`` and anything else its ``str`` form.

    Returns
    -------
    Param | None
        The inferred Param, or ``None`` when the field should be dropped.

    """
    match value:
        case None:
            return None
        case str():
            return Param(key=key, string_value=value)
        case bool():
            return Param(key=key, bool_value=value)
        case int():
            return _infer_int(key, value)
        case float():
            return _infer_float(key, value)
        case dt.datetime() | dt.date():
            return Param(key=key, timestamp_value=_timestamp_text(value))
        case cabc.Mapping() | list() | tuple() | set() | frozenset():
            return _infer_composite(key, value)
        case _:
            return Param(key=key, string_value=str(value))


def _infer_int(key: str, value: int) -> Param:
    if _INT64_MIN <= value <= _INT64_MAX:
        return Param(key=key, int_value=value)
    return Param(key=key, string_value=str(value))


def _infer_float(key: str, value: float) -> Param:
    if math.isfinite(value) and value.is_integer():
        return _infer_int(key, int(value))
    return Param(key=key, float_value=value)


def _timestamp_text(value: dt.date) -> str:
    instant = parse_instant(value)
    if instant is None:  # pragma: no cover - dates always parse
        return value.isoformat()
    return isoformat_utc(instant)


def canonical_json(value: object) -> str:
    """Serialize a composite value with sorted keys and compact separators."""
    return _json_encoder.encode(value).decode("utf-8")


def _infer_composite(key: str, value: object) -> Param:
    try:
        return Param(key=key, json_value=canonical_json(value))
    except (TypeError, ValueError, OverflowError):
        return Param(key=key, string_value=str(value))


def infer_params(data: cabc.Mapping[str, object]) -> list[Param]:
    """Infer Params for every non-null entry of ``data`` in insertion order."""
    params: list[Param] = []
    for key, value in data.items():
        param = infer(str(key), value)
        if param is not None:
            params.append(param)
    return params


def _matches_kind(kind: ParamKind, value: object) -> bool:
    match kind:
        case ParamKind.STRING:
            return isinstance(value, str)
        case ParamKind.JSON:
            return isinstance(value, str) and _is_serialized_composite(value)
        case ParamKind.INT:
            return (
                isinstance(value, int)
                and not isinstance(value, bool)
                and _INT64_MIN <= value <= _INT64_MAX
            )
        case ParamKind.FLOAT:
            return _fits_float(value)
        case ParamKind.BOOL:
            return isinstance(value, bool)
        case ParamKind.TIMESTAMP:
            return isinstance(value, str) and parse_instant(value) is not None


def _fits_float(value: object) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, float):
        return True
    if not isinstance(value, int):
        return False
    try:
        float(value)
    except OverflowError:
        return False
    return True


def _is_serialized_composite(text: str) -> bool:
    try:
        decoded = msgspec.json.decode(text)
    except msgspec.DecodeError:
        return False
    return isinstance(decoded, dict | list)


class ParamShapeError(ValueError):
    """Raised when a params-array entry is not structurally a Param."""


def revalidate(entry: object) -> Param:
    """Check a producer-supplied Param entry against the inference rules.

    Entries whose single value matches its tag are returned unchanged. A value
    stored under the wrong tag is re-inferred so the inference rules stay the
    only source of truth for variant selection.

    Raises
    ------
    ParamShapeError
        If the entry is not a mapping, lacks a string ``key`` or does not
        carry exactly one value field.

    """
    if not isinstance(entry, cabc.Mapping):
        msg = f"must be an object, got {type(entry).__name__}"
        raise ParamShapeError(msg)
    key = entry.get("key")
    if not isinstance(key, str):
        msg = "must have a string key"
        raise ParamShapeError(msg)

    populated = [name for name in VALUE_FIELDS if entry.get(name) is not None]
    if len(populated) != 1:
        msg = f"must set exactly one value field, found {len(populated)}"
        raise ParamShapeError(msg)

    kind = ParamKind(populated[0])
    value = entry[kind.value]
    if _matches_kind(kind, value):
        if kind is ParamKind.FLOAT:
            value = float(value)
        return Param.of(key, kind, value)

    repaired = infer(key, value)
    if repaired is None:  # pragma: no cover - value is known non-null
        msg = "value could not be inferred"
        raise ParamShapeError(msg)
    return repaired
