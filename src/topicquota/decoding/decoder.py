"""Tolerant envelope decoder.

Payloads written by older clients are not always valid JSON: some carry raw
newlines inside string values, some have stray bytes around the object.
Decoding is therefore two-staged:

1. strict ``json.loads``; the result must be an object with a ``type`` key
2. only if parsing failed *and* a known ``"type": "<tag>"`` marker is present:
   extract the smallest balanced ``{...}`` span around the marker, escape raw
   control characters inside string literals and parse strictly once more

Anything that still fails is dropped and logged; one bad payload never stops
the surrounding batch. Successful decodes are normalized through the message
registry (canonical tag + projected fields).
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from topicquota.core.models import AssembledPayload, DecodedMessage
from topicquota.decoding.registry import known_wire_types
from topicquota.decoding.specs import MessageRegistry, MessageSpec, resolve_projection_ref

logger = logging.getLogger(__name__)

_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}


@dataclass(kw_only=True)
class DecodeStats:
    decoded: int = 0
    repaired: int = 0
    discarded: int = 0


# ---------- repair helpers ----------


@lru_cache(maxsize=32)
def _type_marker(wire_types: tuple[str, ...]) -> re.Pattern[str]:
    alternation = "|".join(re.escape(t) for t in wire_types)
    return re.compile(r'"type"\s*:\s*"(?:' + alternation + r')"')


def _match_brace(text: str, start: int) -> int | None:
    """Return the index of the ``}`` closing the ``{`` at ``start`` (string-aware)."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            continue
        if c == '"':
            in_string = True
        elif c == "{":
            depth += 1
        elif c == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_enclosing_object(text: str, marker_start: int, marker_end: int) -> str | None:
    """Smallest balanced ``{...}`` span of ``text`` that contains the marker."""
    pos = text.rfind("{", 0, marker_start)
    while pos != -1:
        end = _match_brace(text, pos)
        if end is not None and end >= marker_end:
            return text[pos : end + 1]
        pos = text.rfind("{", 0, pos)
    return None


def escape_control_chars(text: str) -> str:
    """Escape raw control characters that appear inside JSON string literals."""
    out: list[str] = []
    in_string = False
    escaped = False
    for c in text:
        if in_string:
            if escaped:
                escaped = False
            elif c == "\\":
                escaped = True
            elif c == '"':
                in_string = False
            elif ord(c) < 0x20:
                out.append(_CONTROL_ESCAPES.get(c, f"\\u{ord(c):04x}"))
                continue
        elif c == '"':
            in_string = True
        out.append(c)
    return "".join(out)


def repair_payload(text: str, registry: MessageRegistry) -> dict[str, Any] | None:
    """Attempt the regex-guided repair; return the parsed object or None."""
    if not registry:
        return None
    marker = _type_marker(tuple(known_wire_types(registry))).search(text)
    if marker is None:
        return None
    span = extract_enclosing_object(text, marker.start(), marker.end())
    if span is None:
        return None
    try:
        parsed = json.loads(escape_control_chars(span))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) and "type" in parsed else None


# ---------- normalization ----------


def _as_int(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and re.fullmatch(r"-?\d+", value.strip()):
        return int(value.strip())
    return value


def _normalize(raw: dict[str, Any], spec: MessageSpec | None) -> tuple[str, dict[str, Any]]:
    raw_type = str(raw["type"])
    if spec is None:
        return raw_type, raw
    content = dict(raw)
    for key, ref in spec.projection.items():
        value = resolve_projection_ref(ref, raw)
        if value is None:
            continue
        content[key] = _as_int(value) if key in spec.int_fields else value
    return spec.tag, content


# ---------- main decoder ----------


def decode_payload(
    text: str,
    *,
    timestamp: str,
    sequence_number: int | None,
    registry: MessageRegistry,
    stats: DecodeStats | None = None,
) -> DecodedMessage | None:
    """Decode one payload into a `DecodedMessage` or return None if discarded."""
    stats = stats if stats is not None else DecodeStats()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        parsed = repair_payload(text, registry)
        if parsed is None:
            stats.discarded += 1
            logger.warning("Discarding undecodable payload seq=%s at %s: %s", sequence_number, timestamp, e)
            return None
        stats.repaired += 1
        logger.warning("Repaired malformed %r payload seq=%s at %s", parsed["type"], sequence_number, timestamp)
    else:
        if not isinstance(parsed, dict) or "type" not in parsed:
            stats.discarded += 1
            logger.debug("Discarding non-envelope payload seq=%s at %s", sequence_number, timestamp)
            return None

    tag, content = _normalize(parsed, registry.get(str(parsed["type"])))
    stats.decoded += 1
    return DecodedMessage(type=tag, timestamp=timestamp, content=content, sequence_number=sequence_number)


def decode_payloads(
    payloads: Iterable[AssembledPayload],
    registry: MessageRegistry,
) -> tuple[list[DecodedMessage], DecodeStats]:
    """Decode many payloads, keeping input order and skipping discarded ones."""
    stats = DecodeStats()
    out: list[DecodedMessage] = []
    for p in payloads:
        msg = decode_payload(
            p.text,
            timestamp=p.timestamp,
            sequence_number=p.sequence_number,
            registry=registry,
            stats=stats,
        )
        if msg is not None:
            out.append(msg)
    return out, stats
