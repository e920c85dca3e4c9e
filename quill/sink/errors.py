"""Sink-layer error types."""

from __future__ import annotations


class SinkError(Exception):
    """Base class for analytical-store failures."""


class SinkTransportError(SinkError):
    """Raised when the store is unreachable or reports a retryable error."""

    @classmethod
    def unavailable(cls, detail: str) -> SinkTransportError:
        """Return an error for connection, timeout and operational failures."""
        return cls(f"analytical store unavailable: {detail}")


class SinkContractError(SinkError):
    """Raised when a sink reports results inconsistent with the submitted batch."""

    @classmethod
    def row_index_out_of_range(cls, index: int, row_count: int) -> SinkContractError:
        """Return an error for rejections that point outside the batch."""
        return cls(f"sink rejected row {index} of a {row_count}-row batch")
