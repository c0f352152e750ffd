"""Payments for message quota and subscriptions.

Purchases are event-sourced: after a successful payment the topic is
re-read bypassing the cache, the new entitlement is appended as an envelope,
and the returned view is projected from a fresh read. Nothing is mutated
optimistically, so a lagging mirror node shows up as a stale view rather
than an invented one.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from topicquota.core.config import OperatorConfig, QuotaConfig, SubscriptionPlan
from topicquota.core.errors import TopicQuotaError
from topicquota.core.interfaces import IAccountQueries, ILedgerOperations
from topicquota.core.models import QuotaView, SubscriptionView, is_entity_id
from topicquota.core.use_cases.read_topic import TopicReadService
from topicquota.decoding.envelopes import encode_envelope, quota_update, subscription_created
from topicquota.projection.projector import project_quota, project_subscription

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"


@dataclass(slots=True, frozen=True)
class UnsignedTransfer:
    """Token (or HBAR when ``token_id`` is None) transfer awaiting a wallet signature."""

    payer: str
    payee: str
    amount: int
    token_id: str | None = None
    memo: str = ""

    def to_bytes(self) -> bytes:
        """Canonical bytes handed to the wallet signer."""
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(slots=True, frozen=True)
class PaymentResult:
    status: str
    transaction_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.status == SUCCESS


@dataclass(slots=True, frozen=True)
class PurchaseResult:
    payment: PaymentResult | None
    quota: QuotaView | None = None
    subscription: SubscriptionView | None = None
    error: str | None = None

    def as_result(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        out: dict[str, Any] = {
            "status": self.payment.status if self.payment else None,
            "transaction_id": self.payment.transaction_id if self.payment else None,
        }
        if self.quota is not None:
            out["usage_quota"] = self.quota.remaining
        if self.subscription is not None:
            out["subscription_id"] = self.subscription.subscription_id
            out["expires_at"] = self.subscription.expires_at.isoformat() if self.subscription.expires_at else None
        return out


def message_payment_amount(count: int, *, price_per_message: int, decimals: int) -> int:
    """Smallest-unit token amount for ``count`` messages."""
    if count <= 0:
        raise ValueError("message count must be positive")
    return count * price_per_message * 10**decimals


class PaymentWorkflow:
    """Builds, submits and records payments for a license topic or chat topic."""

    def __init__(
        self,
        *,
        ledger: ILedgerOperations,
        queries: IAccountQueries,
        reader: TopicReadService,
        operator: OperatorConfig,
        quota: QuotaConfig | None = None,
    ) -> None:
        self._ledger = ledger
        self._queries = queries
        self._reader = reader
        self._operator = operator
        self._quota = quota or QuotaConfig()

    def build_transfer(
        self,
        amount: int,
        payer: str,
        payee: str | None = None,
        *,
        token_id: str | None = None,
        memo: str = "",
    ) -> UnsignedTransfer:
        payee = payee or self._operator.require_operator()
        if not is_entity_id(payer):
            raise ValueError(f"invalid payer account id {payer!r}")
        if not is_entity_id(payee):
            raise ValueError(f"invalid payee account id {payee!r}")
        if token_id is not None and not is_entity_id(token_id):
            raise ValueError(f"invalid token id {token_id!r}")
        if amount <= 0:
            raise ValueError("amount must be positive")
        if payer == payee:
            raise ValueError("payer and payee must differ")
        return UnsignedTransfer(payer=payer, payee=payee, amount=amount, token_id=token_id, memo=memo)

    async def quote_messages(self, payer: str, count: int) -> UnsignedTransfer:
        """Unsigned payment-token transfer for ``count`` messages."""
        token_id = self._operator.require_payment_token()
        decimals = await self._queries.token_decimals(token_id)
        amount = message_payment_amount(count, price_per_message=self._quota.message_price, decimals=decimals)
        return self.build_transfer(amount, payer, token_id=token_id, memo=f"messages:{count}")

    async def submit(self, signed: bytes) -> PaymentResult:
        try:
            receipt = await self._ledger.execute_signed(signed)
        except TopicQuotaError as e:
            logger.warning("Payment submission failed: %s", e)
            return PaymentResult(status="FAILED", error=str(e))
        if not receipt.ok:
            logger.warning("Payment %s returned %s", receipt.transaction_id, receipt.status)
            return PaymentResult(
                status=receipt.status,
                transaction_id=receipt.transaction_id,
                error=f"payment failed: {receipt.status}",
            )
        logger.info("Payment %s succeeded", receipt.transaction_id)
        return PaymentResult(status=receipt.status, transaction_id=receipt.transaction_id)

    async def _append(self, topic_id: str, envelope: dict[str, Any]) -> str | None:
        """Submit an envelope; return an error string or None."""
        try:
            status = await self._ledger.submit_message(topic_id, encode_envelope(envelope))
        except TopicQuotaError as e:
            return str(e)
        return None if status == SUCCESS else status

    async def purchase_messages(self, topic_id: str, count: int, signed: bytes) -> PurchaseResult:
        """Pay, then append a quota update raising the topic's quota by ``count``."""
        if count <= 0:
            return PurchaseResult(payment=None, error="message count must be positive")
        payment = await self.submit(signed)
        if not payment.ok:
            return PurchaseResult(payment=payment, error=payment.error)

        try:
            current = project_quota(await self._reader.read_complete(topic_id), config=self._quota)
        except TopicQuotaError as e:
            return PurchaseResult(payment=payment, error=f"paid but could not read topic {topic_id}: {e}")
        base = current.remaining if current is not None else 0

        err = await self._append(topic_id, quota_update(base + count))
        if err is not None:
            logger.error("Payment %s succeeded but quota update failed: %s", payment.transaction_id, err)
            return PurchaseResult(payment=payment, error=f"paid but quota update failed: {err}")
        self._reader.invalidate(topic_id)

        try:
            fresh = await self._reader.read_complete(topic_id)
        except TopicQuotaError as e:
            return PurchaseResult(payment=payment, error=f"quota updated but topic {topic_id} could not be re-read: {e}")
        return PurchaseResult(payment=payment, quota=project_quota(fresh, config=self._quota))

    async def purchase_subscription(
        self,
        license_topic_id: str,
        plan: SubscriptionPlan,
        signed: bytes,
        *,
        now: datetime | None = None,
    ) -> PurchaseResult:
        payment = await self.submit(signed)
        if not payment.ok:
            return PurchaseResult(payment=payment, error=payment.error)
        return await self._record_subscription(license_topic_id, plan, payment, now=now)

    async def record_subscription(
        self,
        license_topic_id: str,
        payment_transaction_id: str,
        plan: SubscriptionPlan,
        *,
        now: datetime | None = None,
    ) -> PurchaseResult:
        """Record a subscription paid outside this process, after verifying the payment."""
        try:
            result = await self._queries.transaction_result(payment_transaction_id)
        except TopicQuotaError as e:
            return PurchaseResult(payment=None, error=str(e))
        if result != SUCCESS:
            return PurchaseResult(
                payment=PaymentResult(status=result or "UNKNOWN", transaction_id=payment_transaction_id),
                error=f"payment {payment_transaction_id} not successful: {result or 'not found'}",
            )
        payment = PaymentResult(status=SUCCESS, transaction_id=payment_transaction_id)
        return await self._record_subscription(license_topic_id, plan, payment, now=now)

    async def _record_subscription(
        self,
        license_topic_id: str,
        plan: SubscriptionPlan,
        payment: PaymentResult,
        *,
        now: datetime | None,
    ) -> PurchaseResult:
        now = now or datetime.now(timezone.utc)
        envelope = subscription_created(
            subscription_id=uuid.uuid4().hex,
            subscription_date=now,
            expires_at=now + timedelta(days=plan.period_days),
            project_limit=plan.project_limit,
            message_limit=plan.message_limit,
            price_usd=plan.price_usd,
            price_hsuite=plan.price_hsuite,
            payment_transaction_id=payment.transaction_id,
        )
        err = await self._append(license_topic_id, envelope)
        if err is not None:
            logger.error("Payment %s succeeded but subscription record failed: %s", payment.transaction_id, err)
            return PurchaseResult(payment=payment, error=f"paid but subscription record failed: {err}")
        self._reader.invalidate(license_topic_id)

        try:
            fresh = await self._reader.read_complete(license_topic_id)
        except TopicQuotaError as e:
            return PurchaseResult(payment=payment, error=f"subscription recorded but topic {license_topic_id} could not be re-read: {e}")
        view = project_subscription(fresh, now=now, new_window_s=self._quota.new_subscription_window_s)
        return PurchaseResult(payment=payment, subscription=view)
