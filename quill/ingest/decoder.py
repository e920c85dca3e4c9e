"""Decode inbound message bodies into generic structured values.

Producers publish JSON either raw or base64-encoded (the Pub/Sub wire form).
Bodies that start with ``{`` or ``[`` are parsed as JSON directly; anything
else must be strict base64 wrapping JSON. Empty bodies decode to ``{}`` so
heartbeat-style messages flow through to validation instead of failing here.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses as dc
import typing as typ

import msgspec

from quill.ingest.errors import DecodeError

if typ.TYPE_CHECKING:
    from quill.ingest.values import DynamicValue

_JSON_OPENERS = frozenset(b"{[")


@dc.dataclass(frozen=True, slots=True)
class InboundMessage:
    """One delivery from the message system.

    Attributes
    ----------
    data
        Opaque payload, raw JSON or base64-encoded JSON. May be absent.
    message_id
        Delivery identifier that stays stable across redeliveries, when the
        message system provides one.
    publish_time
        Producer publish time as reported by the message system.
    attributes
        Message attributes, passed through untouched.

    """

    data: bytes | str | None = None
    message_id: str | None = None
    publish_time: str | None = None
    attributes: dict[str, str] = dc.field(default_factory=dict)

    @classmethod
    def from_push_envelope(cls, body: bytes | str) -> InboundMessage:
        """Build a message from a Pub/Sub push request body.

        Raises
        ------
        DecodeError
            If the body is not a JSON object with a ``message`` block.

        """
        try:
            envelope = msgspec.json.decode(body, type=_PushEnvelope)
        except msgspec.ValidationError as exc:
            raise DecodeError.invalid_envelope(body, str(exc)) from exc
        except msgspec.DecodeError as exc:
            raise DecodeError.invalid_json(body, str(exc)) from exc
        message = envelope.message
        return cls(
            data=message.data,
            message_id=message.message_id,
            publish_time=message.publish_time,
            attributes=dict(message.attributes or {}),
        )


class _PushMessage(msgspec.Struct, frozen=True):
    data: str | None = None
    message_id: str | None = msgspec.field(default=None, name="messageId")
    publish_time: str | None = msgspec.field(default=None, name="publishTime")
    attributes: dict[str, str] | None = None


class _PushEnvelope(msgspec.Struct, frozen=True):
    message: _PushMessage
    subscription: str | None = None


def _as_bytes(data: bytes | str) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else data


def _unwrap_base64(body: bytes) -> bytes:
    try:
        return base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError.invalid_base64(body) from exc


def decode_payload(data: bytes | str | None) -> DynamicValue:
    """Decode a raw or base64-encoded JSON payload.

    Parameters
    ----------
    data
        Message body as delivered. ``None`` and blank bodies are allowed.

    Returns
    -------
    DynamicValue
        The decoded structure; ``{}`` for empty bodies or JSON ``null``.

    Raises
    ------
    DecodeError
        If the body is invalid base64, not UTF-8, or not valid JSON.

    """
    if data is None:
        return {}
    body = _as_bytes(data).strip()
    if not body:
        return {}

    document = body if body[0] in _JSON_OPENERS else _unwrap_base64(body).strip()
    if not document:
        return {}

    try:
        document.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError.invalid_encoding(body) from exc

    try:
        decoded = msgspec.json.decode(document)
    except msgspec.DecodeError as exc:
        raise DecodeError.invalid_json(body, str(exc)) from exc

    return {} if decoded is None else decoded
