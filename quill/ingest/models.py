"""Canonical event records produced by the ingestion pipeline."""

from __future__ import annotations

import datetime as dt
import enum
import typing as typ

import msgspec

from quill.common.time import isoformat_utc

EventRow: typ.TypeAlias = dict[str, typ.Any]


class ParamKind(enum.StrEnum):
    """Value variants a Param may carry, named after their row field."""

    STRING = "string_value"
    INT = "int_value"
    FLOAT = "float_value"
    BOOL = "bool_value"
    TIMESTAMP = "timestamp_value"
    JSON = "json_value"


VALUE_FIELDS: tuple[str, ...] = tuple(kind.value for kind in ParamKind)


class Param(msgspec.Struct, frozen=True, omit_defaults=True):
    """Typed key/value entry attached to an Event.

    Exactly one value field is populated. Build instances with
    :meth:`Param.of` or :func:`quill.ingest.values.infer` rather than setting
    fields by hand.
    """

    key: str
    string_value: str | None = None
    int_value: int | None = None
    float_value: float | None = None
    bool_value: bool | None = None
    timestamp_value: str | None = None
    json_value: str | None = None

    @classmethod
    def of(cls, key: str, kind: ParamKind, value: object) -> Param:
        """Return a Param with ``value`` stored in the ``kind`` field."""
        return cls(key=key, **{kind.value: value})

    def populated_fields(self) -> tuple[str, ...]:
        """Return the names of value fields that are set."""
        return tuple(name for name in VALUE_FIELDS if getattr(self, name) is not None)

    @property
    def kind(self) -> ParamKind:
        """Return the populated value variant."""
        for name in VALUE_FIELDS:
            if getattr(self, name) is not None:
                return ParamKind(name)
        msg = f"param {self.key!r} has no value field set"
        raise ValueError(msg)

    @property
    def value(self) -> str | int | float | bool:
        """Return the populated value."""
        return getattr(self, self.kind.value)


class UserContext(msgspec.Struct, frozen=True):
    """Device and network context of the acting user."""

    device_category: str | None = None
    operating_system: str | None = None
    browser: str | None = None
    country: str | None = None
    ip_address: str | None = None

    def is_empty(self) -> bool:
        """Return True when no field carries a value."""
        return all(
            getattr(self, name) is None for name in self.__struct_fields__
        )


class Event(msgspec.Struct, frozen=True):
    """Canonical, normalized event ready for analytical storage."""

    event_id: str
    event_name: str
    timestamp: dt.datetime
    subject_id: str | None = None
    params: tuple[Param, ...] = ()
    user_context: UserContext | None = None

    def to_row(self) -> EventRow:
        """Return the outbound row submitted to the sink."""
        return {
            "event_id": self.event_id,
            "event_name": self.event_name,
            "timestamp": isoformat_utc(self.timestamp),
            "subject_id": self.subject_id,
            "params": [msgspec.to_builtins(param) for param in self.params],
            "user_context": (
                None
                if self.user_context is None
                else msgspec.to_builtins(self.user_context)
            ),
        }
