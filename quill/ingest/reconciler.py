"""Reconcile historical producer encodings into one intermediate form.

Three payload shapes are in circulation:

``PARAMS_ARRAY``
    ``{"event": ..., "params": [{"key": ..., "<kind>_value": ...}], ...}``
    published by the current event logger.
``NESTED_OBJECT``
    ``{"event_name": ..., "event_data": {...}, "user_context": {...}}``
    published by the earlier API-side logger.
``LEGACY_FLAT``
    The raw note document (``_id``, ``author``, ``content`` ...) published
    before either logger existed.

Classification is by priority: a payload carrying a ``params`` array is
treated as ``PARAMS_ARRAY`` even if it also has ``event_data``, which keeps
migration-window payloads deterministic. Each shape has one registered
reconciliation function. Reconciliation never raises for missing business
fields; the normalizer owns that check.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses as dc
import enum
import typing as typ

from quill.common.time import isoformat_utc, parse_instant
from quill.ingest import user_agent
from quill.ingest.errors import ValidationError
from quill.ingest.models import Param, UserContext
from quill.ingest.values import ParamShapeError, infer, infer_params, revalidate

if typ.TYPE_CHECKING:
    from quill.ingest.values import DynamicValue

Payload: typ.TypeAlias = cabc.Mapping[str, typ.Any]

DEFAULT_EVENT_NAME = "note_action"

LEGACY_FIELDS: frozenset[str] = frozenset(
    {
        "_id",
        "author",
        "content",
        "title",
        "tags",
        "category",
        "isRemoved",
        "favoriteCount",
        "favoritedBy",
        "source",
    }
)
LEGACY_TIMESTAMP_FIELDS: tuple[str, ...] = ("createdAt", "updatedAt")

_NAME_FIELDS = ("event", "event_name")
_TIMESTAMP_FIELDS = ("timestamp", "event_timestamp")
_SUBJECT_FIELDS = ("subject_id", "user_id", "userId")
_AUTHOR_FIELDS = ("author", "author_id")
_CONTEXT_BLOCKS = ("user_context", "user_props")


class ShapeKind(enum.StrEnum):
    """Known inbound payload encodings."""

    PARAMS_ARRAY = "params_array"
    NESTED_OBJECT = "nested_object"
    LEGACY_FLAT = "legacy_flat"


@dc.dataclass(frozen=True, slots=True)
class IntermediateEvent:
    """Shape-independent view of a payload, prior to validation.

    ``timestamp`` and ``event_id`` hold the raw producer values; the
    normalizer parses and validates them.
    """

    shape: ShapeKind
    event_name: str | None
    event_id: object = None
    timestamp: object = None
    subject_id: str | None = None
    author_id: str | None = None
    params: tuple[Param, ...] = ()
    context_source: UserContext | None = None
    inferred_context: UserContext | None = None


ShapeReconciler = typ.Callable[[Payload, str | None], IntermediateEvent]
_registry: dict[ShapeKind, ShapeReconciler] = {}


def register(shape: ShapeKind) -> typ.Callable[[ShapeReconciler], ShapeReconciler]:
    """Register the reconciliation function for a payload shape."""

    def _inner(func: ShapeReconciler) -> ShapeReconciler:
        _registry[shape] = func
        return func

    return _inner


def _is_sequence(value: object) -> bool:
    return isinstance(value, cabc.Sequence) and not isinstance(value, str | bytes)


def detect_shape(payload: Payload) -> ShapeKind:
    """Classify a payload; the first matching rule wins."""
    if _is_sequence(payload.get("params")):
        return ShapeKind.PARAMS_ARRAY
    if isinstance(payload.get("event_data"), cabc.Mapping) or isinstance(
        payload.get("user_context"), cabc.Mapping
    ):
        return ShapeKind.NESTED_OBJECT
    return ShapeKind.LEGACY_FLAT


def reconcile(
    payload: DynamicValue,
    *,
    default_event_name: str | None = DEFAULT_EVENT_NAME,
) -> IntermediateEvent:
    """Reconcile a decoded payload into an :class:`IntermediateEvent`.

    Parameters
    ----------
    payload
        Output of :func:`quill.ingest.decoder.decode_payload`.
    default_event_name
        Label used when the payload names no event. ``None`` leaves the name
        unresolved so the normalizer rejects the payload.

    Raises
    ------
    ValidationError
        If the payload is structurally malformed (not an object, or carrying
        params that are not Params).

    """
    if not isinstance(payload, cabc.Mapping):
        raise ValidationError.not_an_object(type(payload).__name__)
    shape = detect_shape(payload)
    return _registry[shape](payload, default_event_name)


def _text(value: object) -> str | None:
    """Return a stripped identifier string, or None for blanks and composites."""
    match value:
        case bool() | None:
            return None
        case str():
            return value.strip() or None
        case int() | float():
            return str(value)
        case _:
            return None


def _first_text(payload: Payload, fields: tuple[str, ...]) -> str | None:
    for field in fields:
        text = _text(payload.get(field))
        if text is not None:
            return text
    return None


def _first_present(payload: Payload, fields: tuple[str, ...]) -> object:
    for field in fields:
        value = payload.get(field)
        if value is not None:
            return value
    return None


def _event_name(payload: Payload, default: str | None) -> str | None:
    for field in _NAME_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return default


def _context_block(payload: Payload) -> Payload | None:
    for field in _CONTEXT_BLOCKS:
        block = payload.get(field)
        if isinstance(block, cabc.Mapping):
            return block
    return None


def _context_from(source: Payload | None) -> UserContext | None:
    if source is None:
        return None
    context = UserContext(
        device_category=_text(source.get("device_category")),
        operating_system=_text(source.get("operating_system")),
        browser=_text(source.get("browser")),
        country=_text(source.get("country")),
        ip_address=_text(source.get("ip_address")),
    )
    return None if context.is_empty() else context


def _inferred_context(payload: Payload, block: Payload | None) -> UserContext | None:
    """Collect context from top-level fields and any raw user-agent string."""
    ua = _text(payload.get("user_agent"))
    if ua is None and block is not None:
        ua = _text(block.get("user_agent"))
    traits = user_agent.classify(ua)
    context = UserContext(
        device_category=(
            _text(payload.get("device_category")) or traits.device_category
        ),
        operating_system=(
            _text(payload.get("operating_system")) or traits.operating_system
        ),
        browser=_text(payload.get("browser")) or traits.browser,
        country=_text(payload.get("country")),
        ip_address=_text(payload.get("ip_address")),
    )
    return None if context.is_empty() else context


def _mapping_field(payload: Payload, field: str) -> Payload:
    value = payload.get(field)
    if value is None:
        return {}
    if not isinstance(value, cabc.Mapping):
        raise ValidationError.malformed_payload(field, "an object")
    return value


def _build(
    shape: ShapeKind,
    payload: Payload,
    default_event_name: str | None,
    params: cabc.Iterable[Param],
    *,
    author_sources: cabc.Iterable[Payload] = (),
) -> IntermediateEvent:
    block = _context_block(payload)
    author_id = _first_text(payload, _AUTHOR_FIELDS)
    for source in author_sources:
        if author_id is not None:
            break
        author_id = _first_text(source, _AUTHOR_FIELDS)
    return IntermediateEvent(
        shape=shape,
        event_name=_event_name(payload, default_event_name),
        event_id=payload.get("event_id"),
        timestamp=_first_present(payload, _TIMESTAMP_FIELDS),
        subject_id=_first_text(payload, _SUBJECT_FIELDS),
        author_id=author_id,
        params=tuple(params),
        context_source=_context_from(block),
        inferred_context=_inferred_context(payload, block),
    )


@register(ShapeKind.PARAMS_ARRAY)
def reconcile_params_array(
    payload: Payload, default_event_name: str | None
) -> IntermediateEvent:
    """Take producer-typed params verbatim after re-validating each entry."""
    params: list[Param] = []
    for index, entry in enumerate(payload["params"]):
        try:
            params.append(revalidate(entry))
        except ParamShapeError as exc:
            raise ValidationError.malformed_param(index, str(exc)) from exc
    return _build(ShapeKind.PARAMS_ARRAY, payload, default_event_name, params)


@register(ShapeKind.NESTED_OBJECT)
def reconcile_nested_object(
    payload: Payload, default_event_name: str | None
) -> IntermediateEvent:
    """Infer a Param for every ``event_data`` entry."""
    event_data = _mapping_field(payload, "event_data")
    return _build(
        ShapeKind.NESTED_OBJECT,
        payload,
        default_event_name,
        infer_params(event_data),
        author_sources=(event_data,),
    )


def _legacy_timestamp(key: str, value: object) -> Param | None:
    """Render note timestamps as timestamp Params when they parse."""
    raw = value
    if isinstance(value, cabc.Mapping) and "$date" in value:
        raw = value["$date"]
    instant = parse_instant(raw)
    if instant is None:
        return infer(key, value)
    return Param(key=key, timestamp_value=isoformat_utc(instant))


@register(ShapeKind.LEGACY_FLAT)
def reconcile_legacy_flat(
    payload: Payload, default_event_name: str | None
) -> IntermediateEvent:
    """Extract the allow-listed note document fields in document order."""
    params: list[Param] = []
    for field, value in payload.items():
        if field not in LEGACY_FIELDS:
            continue
        param = infer(field, value)
        if param is not None:
            params.append(param)
    for field in LEGACY_TIMESTAMP_FIELDS:
        value = payload.get(field)
        if value is None:
            continue
        param = _legacy_timestamp(field, value)
        if param is not None:
            params.append(param)
    custom = _mapping_field(payload, "customParams")
    params.extend(infer_params(custom))
    return _build(
        ShapeKind.LEGACY_FLAT,
        payload,
        default_event_name,
        params,
        author_sources=(custom,),
    )
