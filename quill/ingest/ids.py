"""Event identifier generation.

Generated ids follow the ``evt_<epoch-ms>_<suffix>`` format producers already
emit. When the delivering message system supplies a stable message id,
:func:`derive_event_id` hashes it instead so redeliveries of the same message
keep the same event id.
"""

from __future__ import annotations

import hashlib
import secrets
import string
import time

_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 9
_DERIVED_DIGEST_LENGTH = 32
_NS_PER_MS = 1_000_000

# Ids advance from this pair and ignore later system clock adjustments.
_WALL_ANCHOR_NS = time.time_ns()
_MONOTONIC_ANCHOR_NS = time.monotonic_ns()


def _epoch_millis() -> int:
    elapsed = time.monotonic_ns() - _MONOTONIC_ANCHOR_NS
    return (_WALL_ANCHOR_NS + elapsed) // _NS_PER_MS


def _random_suffix(length: int = _SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def generate_event_id() -> str:
    """Return a fresh, collision-resistant event id."""
    return f"evt_{_epoch_millis()}_{_random_suffix()}"


def derive_event_id(message_id: str) -> str:
    """Return an event id derived deterministically from a delivery id."""
    digest = hashlib.sha256(message_id.encode("utf-8")).hexdigest()
    return f"evt_{digest[:_DERIVED_DIGEST_LENGTH]}"


class EventIdFactory:
    """Produce the fallback id for one message.

    Parameters
    ----------
    message_id
        Delivery identifier that stays stable across redeliveries. When
        absent, every call generates a new random id.

    """

    def __init__(self, message_id: str | None = None) -> None:
        """Bind the factory to an optional delivery identifier."""
        self._message_id = message_id or None

    @property
    def is_deterministic(self) -> bool:
        """Return True when ids are derived from the delivery id."""
        return self._message_id is not None

    def __call__(self) -> str:
        """Return the event id to use when the producer supplied none."""
        if self._message_id is not None:
            return derive_event_id(self._message_id)
        return generate_event_id()
