"""Synthetic ledger + mirror for tests and dry runs.

`InMemoryLedger` implements every collaborator interface at once
(ITopicMessagesProvider, IAccountQueries, ILedgerOperations). Submissions are
chunked exactly like the real ledger does, consensus timestamps are issued
from a deterministic clock, and failures can be injected per operation,
including "committed, then reported as failed".
"""

from __future__ import annotations

import base64
import json
import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from topicquota.core.errors import LedgerOperationError
from topicquota.core.models import (
    ChunkInfo,
    MessagePage,
    NftHolding,
    RawLogEntry,
    TransactionReceipt,
)
from topicquota.decoding.chunks import DEFAULT_CHUNK_SIZE, split_payload

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = b"signed:"


@dataclass(slots=True)
class _Failure:
    status: str
    commit: bool


@dataclass(slots=True)
class _Nft:
    owner: str
    metadata: bytes


class StaticWalletSigner:
    """IWalletSigner that marks bytes as signed (accepted by InMemoryLedger)."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id

    async def sign(self, transaction: bytes) -> bytes:
        return SIGNATURE_PREFIX + transaction


class InMemoryLedger:
    """Deterministic in-memory ledger with a mirror-style read API.

    Parameters
    ----------
    operator_id : str
        Operator (treasury / payer) account; also the chunk initiator.
    chunk_size : int
        Maximum payload bytes per topic entry.
    start_seconds : int
        First consensus second issued by the clock.
    """

    def __init__(
        self,
        operator_id: str = "0.0.2",
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        start_seconds: int = 1_700_000_000,
    ) -> None:
        self.operator_id = operator_id
        self.chunk_size = chunk_size
        self.topics: dict[str, list[RawLogEntry]] = {}
        self.associations: set[tuple[str, str]] = set()
        self.nfts: dict[tuple[str, int], _Nft] = {}
        self.decimals: dict[str, int] = {}
        self.transactions: dict[str, str] = {}
        self.calls: list[tuple[str, tuple[object, ...]]] = []
        self._failures: dict[str, deque[_Failure]] = defaultdict(deque)
        self._next_entity = 1000
        self._seconds = start_seconds
        self._nanos = 0

    # ---------- test controls ----------

    def fail_next(self, operation: str, status: str = "FAILED", *, commit: bool = False) -> None:
        """Make the next call to ``operation`` raise LedgerOperationError(status).

        With ``commit=True`` the effect is applied before the error is raised.
        """
        self._failures[operation].append(_Failure(status=status, commit=commit))

    def register_token(self, token_id: str, *, decimals: int = 0) -> None:
        self.decimals[token_id] = decimals

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def inject(
        self,
        topic_id: str,
        payload: bytes | str,
        *,
        chunk_info: ChunkInfo | None = None,
        consensus_timestamp: str | None = None,
    ) -> RawLogEntry:
        """Append a raw entry verbatim (no chunking, no validation)."""
        data = payload.encode("utf-8") if isinstance(payload, str) else payload
        entries = self.topics.setdefault(topic_id, [])
        entry = RawLogEntry(
            sequence_number=len(entries) + 1,
            consensus_timestamp=consensus_timestamp or self._tick(),
            payload_b64=base64.b64encode(data).decode("ascii"),
            chunk_info=chunk_info,
        )
        entries.append(entry)
        return entry

    # ---------- internals ----------

    def _tick(self) -> str:
        self._nanos += 1
        if self._nanos >= 1_000_000_000:
            self._seconds += 1
            self._nanos = 0
        return f"{self._seconds}.{self._nanos:09d}"

    def _new_entity(self) -> str:
        self._next_entity += 1
        return f"0.0.{self._next_entity}"

    def _take_failure(self, operation: str) -> _Failure | None:
        queue = self._failures.get(operation)
        return queue.popleft() if queue else None

    def _record(self, operation: str, *args: object) -> _Failure | None:
        self.calls.append((operation, args))
        failure = self._take_failure(operation)
        if failure is not None and not failure.commit:
            logger.debug("Injected failure for %s: %s", operation, failure.status)
            raise LedgerOperationError(failure.status)
        return failure

    @staticmethod
    def _raise_after_commit(failure: _Failure | None) -> None:
        if failure is not None:
            raise LedgerOperationError(failure.status)

    # ---------- ITopicMessagesProvider ----------

    async def fetch_messages(
        self,
        topic_id: str,
        *,
        limit: int = 100,
        order: str = "asc",
        next_link: str | None = None,
    ) -> MessagePage:
        after = 0
        if next_link:
            query = parse_qs(urlsplit(next_link).query)
            after = int(query.get("sequencenumber", ["gt:0"])[0].split(":", 1)[1])
            limit = int(query.get("limit", [str(limit)])[0])
        entries = [e for e in self.topics.get(topic_id, []) if e.sequence_number > after]
        if order == "desc":
            entries.reverse()
        page = entries[:limit]
        nxt = None
        if len(entries) > limit and order == "asc":
            nxt = f"/api/v1/topics/{topic_id}/messages?limit={limit}&sequencenumber=gt:{page[-1].sequence_number}"
        return MessagePage(entries=tuple(page), next_link=nxt)

    # ---------- IAccountQueries ----------

    async def is_token_associated(self, account_id: str, token_id: str) -> bool:
        return (account_id, token_id) in self.associations

    async def owns_nft(self, account_id: str, token_id: str, serial_number: int) -> bool:
        nft = self.nfts.get((token_id, serial_number))
        return nft is not None and nft.owner == account_id

    async def account_nfts(self, account_id: str, token_id: str) -> list[NftHolding]:
        return [
            NftHolding(
                token_id=tid,
                serial_number=serial,
                account_id=nft.owner,
                metadata_b64=base64.b64encode(nft.metadata).decode("ascii"),
            )
            for (tid, serial), nft in sorted(self.nfts.items())
            if tid == token_id and nft.owner == account_id
        ]

    async def token_decimals(self, token_id: str) -> int:
        return self.decimals.get(token_id, 0)

    async def transaction_result(self, transaction_id: str) -> str | None:
        return self.transactions.get(transaction_id)

    # ---------- ILedgerOperations ----------

    async def create_topic(self, memo: str = "") -> str:
        failure = self._record("create_topic", memo)
        topic_id = self._new_entity()
        self.topics[topic_id] = []
        self._raise_after_commit(failure)
        return topic_id

    async def mint_token(self, token_id: str, metadata: bytes) -> int:
        failure = self._record("mint_token", token_id, metadata)
        serial = 1 + max((s for (t, s) in self.nfts if t == token_id), default=0)
        self.nfts[(token_id, serial)] = _Nft(owner=self.operator_id, metadata=metadata)
        self.associations.add((self.operator_id, token_id))
        self._raise_after_commit(failure)
        return serial

    async def associate_token(self, account_id: str, token_id: str) -> str:
        failure = self._record("associate_token", account_id, token_id)
        if (account_id, token_id) in self.associations:
            return "TOKEN_ALREADY_ASSOCIATED_TO_ACCOUNT"
        self.associations.add((account_id, token_id))
        self._raise_after_commit(failure)
        return "SUCCESS"

    async def submit_message(self, topic_id: str, message: bytes) -> str:
        failure = self._record("submit_message", topic_id, message)
        if topic_id not in self.topics:
            raise LedgerOperationError("INVALID_TOPIC_ID")
        parts = split_payload(message, self.chunk_size)
        valid_start = self._tick()
        for number, part in enumerate(parts, start=1):
            self.inject(
                topic_id,
                part,
                chunk_info=ChunkInfo(
                    initiating_id=self.operator_id,
                    total=len(parts),
                    number=number,
                    valid_start=valid_start,
                ),
            )
        self._raise_after_commit(failure)
        return "SUCCESS"

    async def transfer_nft(self, token_id: str, serial_number: int, sender: str, recipient: str) -> str:
        failure = self._record("transfer_nft", token_id, serial_number, sender, recipient)
        nft = self.nfts.get((token_id, serial_number))
        if nft is None:
            raise LedgerOperationError("INVALID_NFT_ID")
        if nft.owner != sender:
            raise LedgerOperationError("SENDER_DOES_NOT_OWN_NFT_SERIAL_NO")
        if (recipient, token_id) not in self.associations:
            raise LedgerOperationError("TOKEN_NOT_ASSOCIATED_TO_ACCOUNT")
        nft.owner = recipient
        self._raise_after_commit(failure)
        return "SUCCESS"

    async def execute_signed(self, signed: bytes) -> TransactionReceipt:
        failure = self._record("execute_signed", signed)
        if not signed.startswith(SIGNATURE_PREFIX):
            return TransactionReceipt(status="INVALID_SIGNATURE")
        try:
            body = json.loads(signed[len(SIGNATURE_PREFIX) :])
        except json.JSONDecodeError:
            return TransactionReceipt(status="INVALID_TRANSACTION_BODY")
        payer = body.get("payer", self.operator_id) if isinstance(body, dict) else self.operator_id
        transaction_id = f"{payer}@{self._tick()}"
        self.transactions[transaction_id] = "SUCCESS"
        self._raise_after_commit(failure)
        return TransactionReceipt(status="SUCCESS", transaction_id=transaction_id)
