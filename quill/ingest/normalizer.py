"""Assemble canonical Events from reconciled payloads."""

from __future__ import annotations

import typing as typ

from quill.common.time import parse_instant
from quill.ingest.errors import ValidationError
from quill.ingest.ids import generate_event_id
from quill.ingest.models import Event, UserContext

if typ.TYPE_CHECKING:
    import datetime as dt

    from quill.ingest.reconciler import IntermediateEvent

IdFactory = typ.Callable[[], str]


def _producer_event_id(value: object) -> str | None:
    match value:
        case bool() | None:
            return None
        case str():
            return value if value.strip() else None
        case int():
            return str(value)
        case _:
            return None


def merge_user_context(
    explicit: UserContext | None, inferred: UserContext | None
) -> UserContext | None:
    """Overlay the explicit context block on inferred fields, field by field."""
    if explicit is None:
        return inferred
    if inferred is None:
        return explicit
    merged = UserContext(
        **{
            name: getattr(explicit, name)
            if getattr(explicit, name) is not None
            else getattr(inferred, name)
            for name in UserContext.__struct_fields__
        }
    )
    return None if merged.is_empty() else merged


def normalize(
    intermediate: IntermediateEvent,
    *,
    id_factory: IdFactory = generate_event_id,
) -> Event:
    """Validate required fields and build the canonical :class:`Event`.

    Parameters
    ----------
    intermediate
        Output of :func:`quill.ingest.reconciler.reconcile`.
    id_factory
        Called for the event id when the producer supplied none.

    Returns
    -------
    Event
        The immutable canonical event.

    Raises
    ------
    ValidationError
        If the event name or timestamp cannot be resolved. All unresolved
        fields are reported together.

    """
    event_name = intermediate.event_name
    timestamp: dt.datetime | None = parse_instant(intermediate.timestamp)
    if not event_name or timestamp is None:
        missing = (
            *(() if event_name else ("event_name",)),
            *(() if timestamp is not None else ("timestamp",)),
        )
        raise ValidationError.missing(missing)

    event_id = _producer_event_id(intermediate.event_id) or id_factory()
    return Event(
        event_id=event_id,
        event_name=event_name,
        timestamp=timestamp,
        subject_id=intermediate.subject_id or intermediate.author_id,
        params=intermediate.params,
        user_context=merge_user_context(
            intermediate.context_source, intermediate.inferred_context
        ),
    )
