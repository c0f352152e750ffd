"""Resumable license issuance workflow.

    INIT --create_log--> TOPIC_CREATED --mint_token--> TOKEN_MINTED
         --associate--> TOKEN_ASSOCIATED --record_message--> MESSAGE_RECORDED
         --transfer--> COMPLETE

Every step performs one irreversible ledger operation. The state only moves
forward on success; a failed step records ``error`` and leaves the step where
it was, so retrying is simply calling the same step again. Invoking a step
whose target was already reached is a no-op.

The two submissions that can commit before reporting an error (the license
record and the NFT transfer) check the ledger for the effect before failing.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from topicquota.core.config import OperatorConfig
from topicquota.core.errors import InvalidTransitionError, LedgerOperationError, TopicQuotaError
from topicquota.core.interfaces import IAccountQueries, ILedgerOperations, IMessageCache, IWorkflowJournal
from topicquota.core.models import DecodedMessage, MessageType, WorkflowCheckpoint, is_entity_id
from topicquota.core.use_cases.read_topic import TopicReadService
from topicquota.decoding.envelopes import encode_envelope, license_creation

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"


class LicenseStep(Enum):
    INIT = "init"
    TOPIC_CREATED = "topic_created"
    TOKEN_MINTED = "token_minted"
    TOKEN_ASSOCIATED = "token_associated"
    MESSAGE_RECORDED = "message_recorded"
    COMPLETE = "complete"
    TOKEN_TRANSFERRED = "complete"  # alias of COMPLETE

    @property
    def index(self) -> int:
        return _STEP_ORDER.index(self)


_STEP_ORDER: list[LicenseStep] = list(LicenseStep)  # aliases are not iterated


@dataclass(frozen=True)
class Transition:
    name: str
    source: LicenseStep
    target: LicenseStep


TRANSITIONS: dict[LicenseStep, Transition] = {
    LicenseStep.INIT: Transition("create_log", LicenseStep.INIT, LicenseStep.TOPIC_CREATED),
    LicenseStep.TOPIC_CREATED: Transition("mint_token", LicenseStep.TOPIC_CREATED, LicenseStep.TOKEN_MINTED),
    LicenseStep.TOKEN_MINTED: Transition("associate", LicenseStep.TOKEN_MINTED, LicenseStep.TOKEN_ASSOCIATED),
    LicenseStep.TOKEN_ASSOCIATED: Transition(
        "record_message", LicenseStep.TOKEN_ASSOCIATED, LicenseStep.MESSAGE_RECORDED
    ),
    LicenseStep.MESSAGE_RECORDED: Transition("transfer", LicenseStep.MESSAGE_RECORDED, LicenseStep.COMPLETE),
}

TRANSITIONS_BY_NAME: dict[str, Transition] = {t.name: t for t in TRANSITIONS.values()}


def _check_transitions() -> None:
    """Every non-terminal step has exactly one transition, to the next step."""
    non_terminal = _STEP_ORDER[:-1]
    if set(TRANSITIONS) != set(non_terminal) or len(TRANSITIONS_BY_NAME) != len(TRANSITIONS):
        raise RuntimeError("license transition table does not cover every non-terminal step exactly once")
    for source, t in TRANSITIONS.items():
        if t.source is not source or t.target.index != source.index + 1:
            raise RuntimeError(f"transition {t.name} does not advance {source.name} by one step")


_check_transitions()


@dataclass(slots=True)
class LicenseWorkflowState:
    """Accumulated workflow state for one account."""

    account_id: str
    step: LicenseStep = LicenseStep.INIT
    topic_id: str | None = None
    token_id: str | None = None
    serial_number: int | None = None
    owner_account_id: str | None = None
    transfer_status: str | None = None
    message_timestamp: str | None = None
    error: str | None = None
    history: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.error is not None

    @property
    def complete(self) -> bool:
        return self.step is LicenseStep.COMPLETE

    def as_result(self) -> dict[str, Any]:
        """``{"error": reason}`` for a failed step, otherwise the state fields."""
        if self.error is not None:
            return {"error": self.error}
        return {
            "step": self.step.value,
            "account_id": self.account_id,
            "topic_id": self.topic_id,
            "token_id": self.token_id,
            "serial_number": self.serial_number,
            "owner_account_id": self.owner_account_id,
            "transfer_status": self.transfer_status,
            "message_timestamp": self.message_timestamp,
        }

    def to_checkpoint(self) -> WorkflowCheckpoint:
        return WorkflowCheckpoint(
            account_id=self.account_id,
            step=self.step.value,
            topic_id=self.topic_id,
            token_id=self.token_id,
            serial_number=self.serial_number,
            owner_account_id=self.owner_account_id,
            transfer_status=self.transfer_status,
            error=self.error,
            updated_at=time.time(),
            message_timestamp=self.message_timestamp,
        )

    @classmethod
    def from_checkpoint(cls, cp: WorkflowCheckpoint) -> LicenseWorkflowState:
        return cls(
            account_id=cp.account_id,
            step=LicenseStep(cp.step),
            topic_id=cp.topic_id,
            token_id=cp.token_id,
            serial_number=cp.serial_number,
            owner_account_id=cp.owner_account_id,
            transfer_status=cp.transfer_status,
            message_timestamp=cp.message_timestamp,
            error=cp.error,
        )


def _recorded_at(message: DecodedMessage) -> str:
    stamped = message.content.get("timestamp")
    return stamped if isinstance(stamped, str) and stamped else message.timestamp


class LicenseWorkflow:
    """Step-indexed license issuance for a single account.

    Parameters
    ----------
    account_id : str
        Account that will own the license (``shard.realm.num``).
    ledger : ILedgerOperations
        Mutating operations (topic creation, mint, associate, submit, transfer).
    queries : IAccountQueries
        Read-side checks used to short-circuit associate and transfer.
    operator : OperatorConfig
        Operator account and license token id; missing values are fatal.
    cache : IMessageCache | None
        Message cache; the license topic entry is invalidated after each step.
    journal : IWorkflowJournal | None
        Optional checkpoint journal for resuming after a restart.
    reader : TopicReadService | None
        License topic reader. When given, `record_message` looks for an
        already committed license record before submitting, so a retry never
        appends a second one.
    """

    def __init__(
        self,
        account_id: str,
        *,
        ledger: ILedgerOperations,
        queries: IAccountQueries,
        operator: OperatorConfig,
        cache: IMessageCache | None = None,
        journal: IWorkflowJournal | None = None,
        reader: TopicReadService | None = None,
        state: LicenseWorkflowState | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not is_entity_id(account_id):
            raise ValueError(f"invalid account id {account_id!r}")
        self._operator_id = operator.require_operator()
        self._license_token_id = operator.require_license_token()
        self._ledger = ledger
        self._queries = queries
        self._cache = cache
        self._journal = journal
        self._reader = reader
        self._metadata = dict(metadata or {})
        self.state = state or LicenseWorkflowState(account_id=account_id)
        if self.state.account_id != account_id:
            raise ValueError("state belongs to a different account")

    @classmethod
    async def resume(
        cls,
        account_id: str,
        *,
        journal: IWorkflowJournal,
        **kwargs: Any,
    ) -> LicenseWorkflow:
        """Rebuild a workflow from the last journal checkpoint of ``account_id``."""
        cp = await journal.load_last(account_id)
        state = LicenseWorkflowState.from_checkpoint(cp) if cp is not None else None
        if state is not None:
            logger.info("Resuming license workflow for %s at step %s", account_id, state.step.value)
        return cls(account_id, journal=journal, state=state, **kwargs)

    # ---------- transition plumbing ----------

    def _enter(self, name: str) -> bool:
        """Return False when the step's target was already reached (no-op)."""
        t = TRANSITIONS_BY_NAME[name]
        if self.state.step.index >= t.target.index:
            logger.debug("Step %s already reached for %s; skipping", t.target.value, self.state.account_id)
            return False
        if self.state.step is not t.source:
            raise InvalidTransitionError(
                f"{name} requires step {t.source.value}, workflow is at {self.state.step.value}"
            )
        return True

    async def _succeed(self, name: str, **fields: Any) -> LicenseWorkflowState:
        t = TRANSITIONS_BY_NAME[name]
        for key, value in fields.items():
            setattr(self.state, key, value)
        self.state.step = t.target
        self.state.error = None
        self.state.history.append(name)
        logger.info("License workflow %s: %s -> %s", self.state.account_id, t.source.value, t.target.value)
        if self._cache is not None and self.state.topic_id is not None:
            self._cache.invalidate(self.state.topic_id)
        await self._checkpoint()
        return self.state

    async def _fail(self, name: str, reason: str) -> LicenseWorkflowState:
        self.state.error = f"{name} failed: {reason}"
        logger.warning("License workflow %s: %s", self.state.account_id, self.state.error)
        await self._checkpoint()
        return self.state

    async def _checkpoint(self) -> None:
        if self._journal is not None:
            await self._journal.append(self.state.to_checkpoint())

    def _require(self, name: str, *fields: str) -> tuple[Any, ...]:
        """Return state fields an earlier step must have set."""
        values = tuple(getattr(self.state, f) for f in fields)
        missing = [f for f, v in zip(fields, values) if v is None]
        if missing:
            raise InvalidTransitionError(f"{name} requires {', '.join(missing)}, missing from the workflow state")
        return values

    async def _recorded_license(self, topic_id: str, token_id: str, serial_number: int) -> DecodedMessage | None:
        if self._reader is None:
            return None
        for m in await self._reader.read_complete(topic_id):
            if (
                m.type == MessageType.LICENSE_CREATION
                and m.content.get("tokenId") == token_id
                and m.content.get("serialNumber") == serial_number
            ):
                return m
        return None

    # ---------- steps ----------

    async def create_log(self) -> LicenseWorkflowState:
        if not self._enter("create_log"):
            return self.state
        try:
            topic_id = await self._ledger.create_topic(memo=f"license:{self.state.account_id}")
        except TopicQuotaError as e:
            return await self._fail("create_log", str(e))
        return await self._succeed("create_log", topic_id=topic_id)

    async def mint_token(self) -> LicenseWorkflowState:
        if not self._enter("mint_token"):
            return self.state
        (topic_id,) = self._require("mint_token", "topic_id")
        try:
            serial = await self._ledger.mint_token(self._license_token_id, topic_id.encode("utf-8"))
        except TopicQuotaError as e:
            return await self._fail("mint_token", str(e))
        return await self._succeed("mint_token", token_id=self._license_token_id, serial_number=serial)

    async def associate(self) -> LicenseWorkflowState:
        if not self._enter("associate"):
            return self.state
        token_id = self.state.token_id or self._license_token_id
        try:
            if await self._queries.is_token_associated(self.state.account_id, token_id):
                logger.info("Account %s already associated with %s", self.state.account_id, token_id)
                return await self._succeed("associate")
        except TopicQuotaError as e:
            return await self._fail("associate", str(e))

        try:
            status = await self._ledger.associate_token(self.state.account_id, token_id)
        except LedgerOperationError as e:
            status = e.status
        except TopicQuotaError as e:
            return await self._fail("associate", str(e))
        if status == SUCCESS or "ALREADY_ASSOCIATED" in status:
            return await self._succeed("associate")
        return await self._fail("associate", status)

    async def record_message(self) -> LicenseWorkflowState:
        if not self._enter("record_message"):
            return self.state
        topic_id, token_id, serial_number = self._require("record_message", "topic_id", "token_id", "serial_number")
        try:
            existing = await self._recorded_license(topic_id, token_id, serial_number)
        except TopicQuotaError as e:
            return await self._fail("record_message", str(e))
        if existing is not None:
            logger.info("License %s#%s is already recorded on topic %s", token_id, serial_number, topic_id)
            return await self._succeed("record_message", message_timestamp=_recorded_at(existing))

        envelope = license_creation(
            token_id,
            serial_number,
            {"topicId": topic_id, "owner": self.state.account_id, **self._metadata},
        )
        reason: str | None
        try:
            status = await self._ledger.submit_message(topic_id, encode_envelope(envelope))
            reason = None if status == SUCCESS else status
        except TopicQuotaError as e:
            reason = str(e)

        if reason is None:
            return await self._succeed("record_message", message_timestamp=envelope["timestamp"])

        # The submission may have been committed before the error surfaced.
        try:
            existing = await self._recorded_license(topic_id, token_id, serial_number)
        except TopicQuotaError as e:
            logger.warning("License record check on topic %s failed: %s", topic_id, e)
            existing = None
        if existing is not None:
            logger.info("Submission reported %r but license %s#%s is on topic %s", reason, token_id, serial_number, topic_id)
            return await self._succeed("record_message", message_timestamp=_recorded_at(existing))
        return await self._fail("record_message", reason)

    async def transfer(self) -> LicenseWorkflowState:
        if not self._enter("transfer"):
            return self.state
        token_id, serial_number = self._require("transfer", "token_id", "serial_number")
        account_id = self.state.account_id
        reason: str | None
        try:
            status = await self._ledger.transfer_nft(token_id, serial_number, self._operator_id, account_id)
            reason = None if status == SUCCESS else status
        except TopicQuotaError as e:
            reason = str(e)

        if reason is None:
            return await self._succeed("transfer", owner_account_id=account_id, transfer_status="transferred")

        # The transfer may have been committed before the error surfaced.
        try:
            owned = await self._queries.owns_nft(account_id, token_id, serial_number)
        except TopicQuotaError as e:
            logger.warning("Ownership check for %s failed: %s", account_id, e)
            owned = False
        if owned:
            logger.info("Transfer reported %r but %s already owns the license", reason, account_id)
            return await self._succeed("transfer", owner_account_id=account_id, transfer_status="already_owned")
        return await self._fail("transfer", reason)

    # ---------- drivers ----------

    def _step_fn(self, name: str) -> Callable[[], Awaitable[LicenseWorkflowState]]:
        return getattr(self, name)

    async def advance(self) -> LicenseWorkflowState:
        """Run the transition out of the current step (no-op when complete)."""
        if self.state.complete:
            return self.state
        return await self._step_fn(TRANSITIONS[self.state.step].name)()

    async def run(self) -> LicenseWorkflowState:
        """Advance until COMPLETE or until a step fails."""
        while not self.state.complete:
            before = self.state.step
            await self.advance()
            if self.state.step is before:
                break
        return self.state
