from __future__ import annotations

from typing import Protocol, runtime_checkable

from topicquota.core.models import (
    DecodedMessage,
    MessagePage,
    NftHolding,
    TransactionReceipt,
    WorkflowCheckpoint,
)


# ---------------------------------------------------------------------------
# ITopicMessagesProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class ITopicMessagesProvider(Protocol):
    """
    Read-only source of raw topic messages.

    Domain expectations:
    - One call is one logical fetch; continuation is never implicit.
    - Entries are returned as RawLogEntry objects, oldest first.
    - Transport failures surface as TransientNetworkError.
    """

    async def fetch_messages(
        self,
        topic_id: str,
        *,
        limit: int,
        order: str = "asc",
        next_link: str | None = None,
    ) -> MessagePage:
        """
        Return one page of messages for the topic.

        Implementations:
        - MirrorNodeClient (mirror node REST API)
        - InMemoryLedger for tests and dry runs
        """
        ...


# ---------------------------------------------------------------------------
# IAccountQueries
# ---------------------------------------------------------------------------

@runtime_checkable
class IAccountQueries(Protocol):
    """
    Read-side account and token queries used to short-circuit workflow steps.
    """

    async def is_token_associated(self, account_id: str, token_id: str) -> bool:
        ...

    async def owns_nft(self, account_id: str, token_id: str, serial_number: int) -> bool:
        ...

    async def account_nfts(self, account_id: str, token_id: str) -> list[NftHolding]:
        ...

    async def token_decimals(self, token_id: str) -> int:
        ...

    async def transaction_result(self, transaction_id: str) -> str | None:
        """Return the ledger result code of a transaction, or None if unknown."""
        ...


# ---------------------------------------------------------------------------
# ILedgerOperations
# ---------------------------------------------------------------------------

@runtime_checkable
class ILedgerOperations(Protocol):
    """
    Mutating ledger operations executed with the operator's credentials.

    Domain expectations:
    - Every call is irreversible once it succeeds on-ledger.
    - A call may raise LedgerOperationError *after* the effect was committed;
      callers confirm through IAccountQueries where that matters.
    - Status strings follow the ledger's codes ("SUCCESS", "FAILED", ...).
    """

    async def create_topic(self, memo: str = "") -> str:
        """Create a topic and return its id."""
        ...

    async def mint_token(self, token_id: str, metadata: bytes) -> int:
        """Mint one NFT and return its serial number."""
        ...

    async def associate_token(self, account_id: str, token_id: str) -> str:
        ...

    async def submit_message(self, topic_id: str, message: bytes) -> str:
        """Append a message (chunked by the implementation if needed)."""
        ...

    async def transfer_nft(
        self,
        token_id: str,
        serial_number: int,
        sender: str,
        recipient: str,
    ) -> str:
        ...

    async def execute_signed(self, signed: bytes) -> TransactionReceipt:
        """Execute a transaction signed by the end user's wallet."""
        ...


# ---------------------------------------------------------------------------
# IWalletSigner
# ---------------------------------------------------------------------------

@runtime_checkable
class IWalletSigner(Protocol):
    """Opaque end-user signing capability (browser wallet, HSM, test stub)."""

    async def sign(self, transaction: bytes) -> bytes:
        ...


# ---------------------------------------------------------------------------
# IMessageCache
# ---------------------------------------------------------------------------

@runtime_checkable
class IMessageCache(Protocol):
    """
    Short-lived memo of reconstructed message sequences keyed by topic id.
    """

    def get(self, topic_id: str) -> list[DecodedMessage] | None:
        ...

    def put(self, topic_id: str, messages: list[DecodedMessage]) -> None:
        ...

    def invalidate(self, topic_id: str | None = None) -> None:
        """Drop one topic's entry, or every entry when topic_id is None."""
        ...


# ---------------------------------------------------------------------------
# IWorkflowJournal
# ---------------------------------------------------------------------------

@runtime_checkable
class IWorkflowJournal(Protocol):
    """
    Append-only journal of workflow checkpoints.

    Domain expectations:
    - Appends are never rewritten.
    - The latest checkpoint per account is the resumable state.
    """

    async def append(self, checkpoint: WorkflowCheckpoint) -> None:
        ...

    async def load_last(self, account_id: str) -> WorkflowCheckpoint | None:
        ...
