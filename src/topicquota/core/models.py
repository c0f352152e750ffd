"""Core data models for topic message reconstruction and derived views.

This module defines:
- `ChunkInfo` / `RawLogEntry`: one mirror-node topic message, minimally normalized.
- `MessagePage`: one page of entries plus the continuation link, if any.
- `ChunkGroup`: slot buffer used to reassemble a multi-part submission.
- `AssembledPayload`: UTF-8 text of a single entry or a completed group.
- `DecodedMessage`: an application envelope recovered from the log.
- `QuotaView` / `SubscriptionView` / `LicenseView` / `ProjectView`:
  derived state, recomputed on demand, never stored.
- `WorkflowCheckpoint`: journal entry used to resume a license workflow.

Design notes
------------
- Consensus timestamps are kept as the mirror node's ``"<seconds>.<nanos>"``
  strings; `consensus_key` turns them into a sortable integer pair.
- Ordering is always (consensus timestamp, sequence number).
"""

from __future__ import annotations

import base64
import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from topicquota.core.errors import ChunkGroupConsumedError

ACCOUNT_ID_RE = re.compile(r"^\d+\.\d+\.\d+$")


class MessageType:
    """Canonical envelope type tags written by this system."""

    LICENSE_CREATION = "license-creation"
    LICENSE_METADATA = "license-metadata"
    PROJECT_CREATION = "project-creation"
    SUBSCRIPTION_CREATED = "subscription-created"
    CHAT_QA = "chat-qa"
    QUOTA_UPDATE = "quota-update"


# Envelope types whose content may carry a ``usageQuota`` value
QUOTA_BEARING_TYPES: frozenset[str] = frozenset(
    {MessageType.CHAT_QA, MessageType.QUOTA_UPDATE, MessageType.PROJECT_CREATION}
)


def consensus_key(ts: str) -> tuple[int, int]:
    """Return a sortable ``(seconds, nanos)`` pair for a consensus timestamp.

    Accepts the mirror node format (``"1700000000.000123456"``) and, as a
    fallback, ISO-8601 strings. Raises ``ValueError`` for anything else.
    """
    secs, sep, frac = ts.partition(".")
    if secs.isdigit() and (not sep or frac.isdigit()):
        return int(secs), int((frac or "0")[:9].ljust(9, "0"))
    dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    whole = int(dt.timestamp())
    return whole, dt.microsecond * 1000


def is_entity_id(value: str | None) -> bool:
    """True for ``shard.realm.num`` ids (accounts, tokens, topics)."""
    return bool(value) and ACCOUNT_ID_RE.match(value) is not None


def timestamp_to_datetime(ts: str) -> datetime:
    """Convert a consensus or ISO timestamp into an aware UTC datetime."""
    secs, nanos = consensus_key(ts)
    return datetime.fromtimestamp(secs + nanos / 1e9, tz=timezone.utc)


# === Mirror records ===


@dataclass(slots=True, frozen=True)
class ChunkInfo:
    """Chunk metadata of one fragment (``number`` is 1-indexed)."""

    initiating_id: str  # payer account of the initial transaction
    total: int
    number: int
    valid_start: str | None = None  # diagnostics only, not part of the group key


@dataclass(slots=True, frozen=True)
class RawLogEntry:
    """Topic message as fetched from the mirror node."""

    sequence_number: int
    consensus_timestamp: str
    payload_b64: str
    chunk_info: ChunkInfo | None = None

    @property
    def sort_key(self) -> tuple[tuple[int, int], int]:
        return consensus_key(self.consensus_timestamp), self.sequence_number


@dataclass(slots=True, frozen=True)
class MessagePage:
    """One page of topic messages."""

    entries: tuple[RawLogEntry, ...]
    next_link: str | None = None

    @property
    def has_more(self) -> bool:
        """True when the mirror reported further pages that were not fetched."""
        return self.next_link is not None


@dataclass(slots=True)
class NftHolding:
    """One NFT held by an account (from ``/accounts/{id}/nfts``)."""

    token_id: str
    serial_number: int
    account_id: str
    metadata_b64: str = ""

    def metadata_text(self) -> str:
        """Return the base64-decoded metadata as text."""
        return base64.b64decode(self.metadata_b64).decode("utf-8", errors="replace")


# === Reassembly ===


@dataclass(slots=True, frozen=True)
class AssembledPayload:
    """UTF-8 text of a single entry or a fully reassembled chunk group."""

    text: str
    timestamp: str
    sequence_number: int | None
    parts: int = 1


@dataclass(slots=True)
class ChunkGroup:
    """Slot buffer for one multi-part submission.

    - Keyed externally by ``(initiating_id, total)``.
    - Slots are filled out of order; the group is complete when none is empty.
    - A group is assembled exactly once.
    """

    initiating_id: str
    total: int
    payloads: list[str | None] = field(default_factory=list)
    timestamps: list[str | None] = field(default_factory=list)
    sequence_numbers: list[int | None] = field(default_factory=list)
    consumed: bool = False

    @classmethod
    def open(cls, initiating_id: str, total: int) -> ChunkGroup:
        return cls(
            initiating_id=initiating_id,
            total=total,
            payloads=[None] * total,
            timestamps=[None] * total,
            sequence_numbers=[None] * total,
        )

    @property
    def key(self) -> tuple[str, int]:
        return self.initiating_id, self.total

    def put(self, entry: RawLogEntry, number: int) -> bool:
        """Store a fragment in slot ``number - 1``.

        Returns True when the slot was already occupied (the fragment
        replaced an earlier one).
        """
        idx = number - 1
        collided = self.payloads[idx] is not None
        self.payloads[idx] = entry.payload_b64
        self.timestamps[idx] = entry.consensus_timestamp
        self.sequence_numbers[idx] = entry.sequence_number
        return collided

    def filled(self) -> int:
        return sum(1 for p in self.payloads if p is not None)

    def is_complete(self) -> bool:
        return all(p is not None for p in self.payloads)

    def latest_timestamp(self) -> str:
        stamps = [t for t in self.timestamps if t is not None]
        return max(stamps, key=consensus_key)

    def assemble(self) -> AssembledPayload:
        """Decode every slot and join the bytes in slot order.

        Raises `ChunkGroupConsumedError` on a second call and ``ValueError``
        if the group is incomplete.
        """
        if self.consumed:
            raise ChunkGroupConsumedError(f"chunk group {self.key} already assembled")
        if not self.is_complete():
            raise ValueError(f"chunk group {self.key} is incomplete ({self.filled()}/{self.total})")
        self.consumed = True
        raw = b"".join(base64.b64decode(p) for p in self.payloads if p is not None)
        seqs = [s for s in self.sequence_numbers if s is not None]
        return AssembledPayload(
            text=raw.decode("utf-8", errors="replace"),
            timestamp=self.latest_timestamp(),
            sequence_number=max(seqs) if seqs else None,
            parts=self.total,
        )


# === Decoded envelopes ===


@dataclass(slots=True, frozen=True)
class DecodedMessage:
    """Application envelope recovered from the log.

    ``timestamp`` is the consensus timestamp of the source entry (latest
    fragment for chunked payloads); the envelope's own ``timestamp``, if any,
    stays inside ``content``.
    """

    type: str
    timestamp: str
    content: dict[str, Any]
    sequence_number: int | None = None

    @property
    def sort_key(self) -> tuple[tuple[int, int], int, str]:
        return (
            consensus_key(self.timestamp),
            self.sequence_number if self.sequence_number is not None else -1,
            json.dumps(self.content, sort_keys=True, default=str),
        )


# === Derived views ===


@dataclass(slots=True, frozen=True)
class QuotaView:
    """Remaining message quota of a topic."""

    remaining: int
    as_of: str | None  # consensus timestamp of the source message
    bootstrap: bool = False


@dataclass(slots=True, frozen=True)
class SubscriptionView:
    subscription_id: str | None
    status: str
    created_at: datetime | None
    expires_at: datetime | None
    project_limit: int
    message_limit: int
    payment_transaction_id: str | None
    active: bool
    expired: bool
    is_new: bool


@dataclass(slots=True, frozen=True)
class LicenseView:
    token_id: str
    serial_number: int
    topic_id: str | None
    metadata: dict[str, Any]
    timestamp: str


@dataclass(slots=True, frozen=True)
class ProjectView:
    name: str
    topic_id: str | None
    owner_account_id: str | None
    usage_quota: int | None
    created_at: str | None
    timestamp: str


# === Workflow journal record ===


@dataclass(slots=True)
class WorkflowCheckpoint:
    """A single license workflow checkpoint persisted to the journal."""

    account_id: str
    step: str
    topic_id: str | None
    token_id: str | None
    serial_number: int | None
    owner_account_id: str | None
    transfer_status: str | None
    error: str | None
    updated_at: float
    message_timestamp: str | None = None

    def to_json_line(self) -> str:
        """Serialize as a compact JSON line."""
        return json.dumps(asdict(self), separators=(",", ":")) + "\n"

    @classmethod
    def from_json_line(cls, line: str) -> WorkflowCheckpoint:
        return cls(**json.loads(line))


@dataclass(slots=True, frozen=True)
class TransactionReceipt:
    """Outcome of executing a signed transaction."""

    status: str
    transaction_id: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "SUCCESS"
