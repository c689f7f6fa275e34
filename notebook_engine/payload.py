"""
Rich-text note payloads and their storage codec.

Note bodies are attributed text: a plain string plus style spans. On disk a body
is a zstandard-compressed JSON document, so long notes stay small in the
SQLite file.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

import zstandard as zstd

from notebook_engine.errors import PayloadError

PAYLOAD_SCHEMA_VERSION = 1
DEFAULT_NOTE_TEXT = "New Note"
PREVIEW_LENGTH = 60

_COMPRESSION_LEVEL = 3


@dataclass(frozen=True, slots=True)
class StyleSpan:
    """
    A styled run of characters.

    Attributes
    ----------
    start:
        Offset of the first styled character.
    length:
        Number of styled characters.
    style:
        Style name, for example "bold" or "italic".
    """

    start: int
    length: int
    style: str


@dataclass(frozen=True, slots=True)
class RichText:
    """
    Attributed note text.

    Spans are validated at construction: they must lie inside ``text`` and
    carry a non-empty style name.
    """

    text: str
    spans: tuple[StyleSpan, ...] = ()

    def __post_init__(self) -> None:
        for span in self.spans:
            if span.start < 0 or span.length < 0:
                raise PayloadError(f"Span has a negative offset or length: {span!r}")
            if span.start + span.length > len(self.text):
                raise PayloadError(f"Span extends past the end of the text: {span!r}")
            if not span.style:
                raise PayloadError("Span style must not be empty.")

    @classmethod
    def plain(cls, text: str) -> RichText:
        """Return unstyled rich text."""
        return cls(text=text)

    def preview(self, limit: int = PREVIEW_LENGTH) -> str:
        """Return the first line of the text, truncated to ``limit`` characters."""
        first_line = self.text.splitlines()[0] if self.text else ""
        if len(first_line) <= limit:
            return first_line
        return first_line[: max(limit - 1, 0)] + "…"


def coerce_rich_text(value: RichText | str) -> RichText:
    """Accept either rich text or a plain string."""
    if isinstance(value, RichText):
        return value
    if isinstance(value, str):
        return RichText.plain(value)
    raise PayloadError(f"Unsupported note payload type: {type(value).__name__}")


def encode_rich_text(body: RichText) -> bytes:
    """
    Serialize and compress a note body.

    Returns
    -------
    bytes
        A zstandard frame containing the JSON document.
    """
    document = {
        "v": PAYLOAD_SCHEMA_VERSION,
        "text": body.text,
        "spans": [[s.start, s.length, s.style] for s in body.spans],
    }
    raw = json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return zstd.ZstdCompressor(level=_COMPRESSION_LEVEL).compress(raw)


def decode_rich_text(blob: bytes) -> RichText:
    """
    Decompress and parse a stored note body.

    Raises
    ------
    PayloadError
        If the blob is not a valid zstandard frame or the document is malformed.
    """
    try:
        raw = zstd.ZstdDecompressor().decompress(blob)
    except zstd.ZstdError as exc:
        raise PayloadError(f"Note payload is not a valid zstandard frame: {exc}") from exc

    try:
        document: Any = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PayloadError(f"Note payload is not valid JSON: {exc}") from exc

    if not isinstance(document, dict) or document.get("v") != PAYLOAD_SCHEMA_VERSION:
        raise PayloadError("Unsupported note payload document.")

    try:
        spans = tuple(StyleSpan(int(a), int(b), str(c)) for a, b, c in document.get("spans", []))
        return RichText(text=str(document["text"]), spans=spans)
    except (KeyError, TypeError, ValueError) as exc:
        raise PayloadError(f"Malformed note payload: {exc}") from exc
