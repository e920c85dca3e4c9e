"""Error taxonomy for the ingestion pipeline.

Transformation-stage failures (:class:`DecodeError`, :class:`ValidationError`)
are terminal for a message: redelivering the same bytes cannot fix them.
:class:`RetryableIngestionError` is the only error the pipeline raises to ask
the message system for redelivery.
"""

from __future__ import annotations

import enum

# Number of payload characters kept on decode failures.
RAW_EXCERPT_LIMIT = 64


class IngestionErrorReason(enum.StrEnum):
    """Machine-readable reasons for ingestion failures."""

    INVALID_BASE64 = "invalid_base64"
    INVALID_ENCODING = "invalid_encoding"
    INVALID_JSON = "invalid_json"
    INVALID_ENVELOPE = "invalid_envelope"
    NOT_AN_OBJECT = "not_an_object"
    MALFORMED_PAYLOAD = "malformed_payload"
    MALFORMED_PARAMS = "malformed_params"
    MISSING_FIELDS = "missing_fields"
    SINK_TRANSPORT = "sink_transport"


class IngestionError(Exception):
    """Base class for pipeline failures."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        reason: IngestionErrorReason | str | None = None,
    ) -> None:
        """Store a machine-readable reason for programmatic handling."""
        super().__init__(message)
        self.reason = reason


def _excerpt(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw[:RAW_EXCERPT_LIMIT]


class DecodeError(IngestionError):
    """Raised when a message body cannot be decoded into a structure."""

    def __init__(
        self,
        message: str,
        *,
        raw_excerpt: str,
        reason: IngestionErrorReason,
    ) -> None:
        """Keep a bounded excerpt of the offending payload for diagnostics."""
        super().__init__(message, reason=reason)
        self.raw_excerpt = raw_excerpt

    @classmethod
    def invalid_base64(cls, raw: bytes | str) -> DecodeError:
        """Create an error for bodies that are neither JSON nor base64."""
        return cls(
            "payload is not valid base64",
            raw_excerpt=_excerpt(raw),
            reason=IngestionErrorReason.INVALID_BASE64,
        )

    @classmethod
    def invalid_encoding(cls, raw: bytes | str) -> DecodeError:
        """Create an error for bodies that are not UTF-8 text."""
        return cls(
            "payload is not valid UTF-8",
            raw_excerpt=_excerpt(raw),
            reason=IngestionErrorReason.INVALID_ENCODING,
        )

    @classmethod
    def invalid_json(cls, raw: bytes | str, detail: str) -> DecodeError:
        """Create an error for bodies that fail JSON parsing."""
        return cls(
            f"payload is not valid JSON: {detail}",
            raw_excerpt=_excerpt(raw),
            reason=IngestionErrorReason.INVALID_JSON,
        )

    @classmethod
    def invalid_envelope(cls, raw: bytes | str, detail: str) -> DecodeError:
        """Create an error for push envelopes missing the message block."""
        return cls(
            f"push envelope is malformed: {detail}",
            raw_excerpt=_excerpt(raw),
            reason=IngestionErrorReason.INVALID_ENVELOPE,
        )


class ValidationError(IngestionError):
    """Raised when a decoded payload cannot become a canonical Event."""

    def __init__(
        self,
        message: str,
        *,
        reason: IngestionErrorReason,
        missing_fields: tuple[str, ...] = (),
    ) -> None:
        """Record which required fields could not be resolved."""
        super().__init__(message, reason=reason)
        self.missing_fields = missing_fields

    @classmethod
    def missing(cls, fields: tuple[str, ...]) -> ValidationError:
        """Create an error listing unresolved required fields."""
        return cls(
            f"required fields unresolved: {', '.join(fields)}",
            reason=IngestionErrorReason.MISSING_FIELDS,
            missing_fields=fields,
        )

    @classmethod
    def not_an_object(cls, type_name: str) -> ValidationError:
        """Create an error for payloads that decode to a non-mapping value."""
        return cls(
            f"payload must be a JSON object, got {type_name}",
            reason=IngestionErrorReason.NOT_AN_OBJECT,
        )

    @classmethod
    def malformed_payload(cls, field: str, expected: str) -> ValidationError:
        """Create an error for structural fields with the wrong type."""
        return cls(
            f"{field} must be {expected}",
            reason=IngestionErrorReason.MALFORMED_PAYLOAD,
        )

    @classmethod
    def malformed_param(cls, index: int, detail: str) -> ValidationError:
        """Create an error for params-array entries that are not Params."""
        return cls(
            f"params[{index}] {detail}",
            reason=IngestionErrorReason.MALFORMED_PARAMS,
        )


class RetryableIngestionError(IngestionError):
    """Raised when the message must be redelivered (sink transport failure)."""

    retryable = True

    @classmethod
    def sink_unavailable(cls, detail: str) -> RetryableIngestionError:
        """Create an error signalling a transient sink failure."""
        return cls(
            f"sink transport failure: {detail}",
            reason=IngestionErrorReason.SINK_TRANSPORT,
        )
