"""Chunk reassembly for multi-part topic submissions.

A submission larger than one message is split by the ledger into ``total``
fragments that share the initiating transaction's payer account. Fragments
may arrive in any order and interleaved with other entries.

`reassemble` makes one buffered pass over a full fetch:
- single-part entries are emitted directly
- fragments are slotted by ``(initiating_id, total)`` at ``number - 1``
- complete groups are joined once the whole input has been consumed
- incomplete groups are dropped (a later fetch may complete them)

Known limitation: the group key carries no per-submission nonce, so two
unrelated submissions from the same payer with the same part count share a
group. Overwritten slots are reported with a warning.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from topicquota.core.models import AssembledPayload, ChunkGroup, RawLogEntry, consensus_key

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1024


@dataclass(kw_only=True)
class ReassemblyStats:
    """Counters for one reassembly pass."""

    single: int = 0
    fragments: int = 0
    groups_completed: int = 0
    groups_incomplete: int = 0
    slot_collisions: int = 0
    dropped_fragments: int = 0
    undecodable: int = 0


@dataclass(slots=True)
class ReassemblyResult:
    payloads: list[AssembledPayload] = field(default_factory=list)
    stats: ReassemblyStats = field(default_factory=ReassemblyStats)


def _decode_single(entry: RawLogEntry) -> AssembledPayload:
    raw = base64.b64decode(entry.payload_b64)
    return AssembledPayload(
        text=raw.decode("utf-8", errors="replace"),
        timestamp=entry.consensus_timestamp,
        sequence_number=entry.sequence_number,
    )


def reassemble(entries: Iterable[RawLogEntry]) -> ReassemblyResult:
    """Turn raw entries into assembled payloads, oldest first."""
    result = ReassemblyResult()
    stats = result.stats
    groups: dict[tuple[str, int], ChunkGroup] = {}

    for entry in sorted(entries, key=lambda e: e.sort_key):
        info = entry.chunk_info
        if info is None or info.total == 1:
            try:
                result.payloads.append(_decode_single(entry))
            except (binascii.Error, ValueError):
                stats.undecodable += 1
                logger.warning("Dropping entry seq=%s: payload is not valid base64", entry.sequence_number)
                continue
            stats.single += 1
            continue

        if info.total <= 0 or not 1 <= info.number <= info.total:
            stats.dropped_fragments += 1
            logger.warning(
                "Dropping fragment seq=%s: chunk %s/%s out of range",
                entry.sequence_number,
                info.number,
                info.total,
            )
            continue

        key = (info.initiating_id, info.total)
        group = groups.get(key)
        if group is None:
            group = groups[key] = ChunkGroup.open(info.initiating_id, info.total)
        stats.fragments += 1
        if group.put(entry, info.number):
            stats.slot_collisions += 1
            logger.warning(
                "Chunk slot collision for initiator=%s total=%s number=%s (seq=%s replaces earlier fragment)",
                info.initiating_id,
                info.total,
                info.number,
                entry.sequence_number,
            )

    for group in groups.values():
        if not group.is_complete():
            stats.groups_incomplete += 1
            logger.debug(
                "Skipping incomplete chunk group %s (%s/%s parts)",
                group.key,
                group.filled(),
                group.total,
            )
            continue
        try:
            result.payloads.append(group.assemble())
        except (binascii.Error, ValueError):
            stats.undecodable += 1
            logger.warning("Dropping chunk group %s: fragment is not valid base64", group.key)
            continue
        stats.groups_completed += 1

    result.payloads.sort(key=lambda p: (consensus_key(p.timestamp), p.sequence_number or 0))
    return result


def split_payload(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[bytes]:
    """Split a payload into ledger-sized fragments (write-side inverse of `reassemble`)."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not data:
        return [b""]
    return [data[i : i + chunk_size] for i in range(0, len(data), chunk_size)]
