"""
Line framing and record envelopes.

``frame`` splits streamed bytes into newline-delimited records, carrying the
trailing partial line across chunks. ``parse_record`` and ``build_envelope``
turn one record into the JSON object forwarded to the sink.
"""

import json
from dataclasses import dataclass
from typing import Any

NEWLINE = b"\n"


@dataclass(frozen=True)
class Structured:
    """A record whose text is a JSON object."""

    value: dict[str, Any]


@dataclass(frozen=True)
class Raw:
    """A record that is not a JSON object; forwarded as text."""

    text: str


ParsedRecord = Structured | Raw


def frame(remainder: bytes, chunk: bytes) -> tuple[list[bytes], bytes]:
    """
    Split ``remainder + chunk`` into complete records and a new remainder.

    The last piece is always kept as the remainder, even when it happens to
    be a whole line, since the next chunk may extend it. Each returned record
    accounts for ``len(record) + 1`` bytes of the batch.

    Example:
        >>> frame(b"", b'{"a":1}\\npartial-tex')
        ([b'{"a":1}'], b'partial-tex')
        >>> frame(b"partial-tex", b"t\\n")
        ([b'partial-text'], b'')
    """
    pieces = (remainder + chunk).split(NEWLINE)
    return pieces[:-1], pieces[-1]


def record_size(record: bytes) -> int:
    """Bytes a framed record occupies in the batch, newline included."""
    return len(record) + 1


def parse_record(raw: bytes) -> ParsedRecord:
    """
    Classify one record. Never raises.

    Surrounding whitespace is trimmed and bytes are decoded as UTF-8 with
    replacement; only a JSON object counts as structured.
    """
    text = raw.decode("utf-8", errors="replace").strip()
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return Raw(text)
    if isinstance(value, dict):
        return Structured(value)
    return Raw(text)


def build_envelope(parsed: ParsedRecord, batch_id: int, source_identifier: str | None) -> dict[str, Any]:
    """
    Build the sink payload for a parsed record.

    Structured records are enriched in place; raw text is wrapped in a
    ``textMessage`` object.
    """
    if isinstance(parsed, Structured):
        envelope = parsed.value
    else:
        envelope = {"textMessage": parsed.text}

    envelope["batchId"] = batch_id
    envelope["sourceIdentifier"] = source_identifier
    return envelope


def serialize_envelope(envelope: dict[str, Any]) -> bytes:
    return json.dumps(envelope, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


__all__ = [
    "Structured",
    "Raw",
    "ParsedRecord",
    "frame",
    "record_size",
    "parse_record",
    "build_envelope",
    "serialize_envelope",
]
