"""Normalize a single event payload and print the resulting row as JSON."""

from __future__ import annotations

import argparse
import dataclasses as dc
import sys
from pathlib import Path

import msgspec

from quill.ingest.decoder import InboundMessage
from quill.ingest.errors import DecodeError, ValidationError
from quill.ingest.pipeline import normalize_message
from quill.ingest.reconciler import DEFAULT_EVENT_NAME

EXIT_OK = 0
EXIT_DECODE_ERROR = 1
EXIT_VALIDATION_ERROR = 2


def _read_source(source: str) -> bytes:
    if source == "-":
        return sys.stdin.buffer.read()
    return Path(source).read_bytes()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quill-normalize", description=__doc__)
    parser.add_argument(
        "payload",
        help="File holding a raw JSON or base64 message body; '-' reads stdin",
    )
    parser.add_argument(
        "--message-id",
        default=None,
        help="Delivery id used to derive a stable event id",
    )
    parser.add_argument(
        "--default-event-name",
        default=DEFAULT_EVENT_NAME,
        help="Label for payloads that name no event; an empty value rejects them",
    )
    parser.add_argument(
        "--push-envelope",
        action="store_true",
        help="Treat the input as a push-subscription envelope",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Decode, reconcile and normalize one payload.

    Parameters
    ----------
    argv : list[str] | None, optional
        Command-line arguments. ``None`` defaults to ``sys.argv``.

    Returns
    -------
    int
        Exit code: 0 on success, 1 when the body cannot be decoded, 2 when
        the payload fails validation.

    """
    args = _build_parser().parse_args(argv)
    raw = _read_source(args.payload)
    default_event_name = args.default_event_name or None

    try:
        message = (
            InboundMessage.from_push_envelope(raw)
            if args.push_envelope
            else InboundMessage(data=raw)
        )
        if args.message_id:
            message = dc.replace(message, message_id=args.message_id)
        event = normalize_message(message, default_event_name=default_event_name)
    except DecodeError as exc:
        print(f"decode error ({exc.reason}): {exc}", file=sys.stderr)
        return EXIT_DECODE_ERROR
    except ValidationError as exc:
        print(f"validation error ({exc.reason}): {exc}", file=sys.stderr)
        return EXIT_VALIDATION_ERROR

    sys.stdout.write(msgspec.json.encode(event.to_row()).decode("utf-8"))
    sys.stdout.write("\n")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
