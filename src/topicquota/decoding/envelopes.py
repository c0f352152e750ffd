"""Builders for the envelopes this system appends to topics.

Every builder returns a plain dict with the canonical ``type`` tag;
`encode_envelope` turns it into the compact UTF-8 JSON that is submitted.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from topicquota.core.models import MessageType


def iso_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_envelope(envelope: dict[str, Any]) -> bytes:
    if "type" not in envelope:
        raise ValueError("envelope has no 'type'")
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def license_creation(
    token_id: str,
    serial_number: int,
    metadata: dict[str, Any],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    return {
        "type": MessageType.LICENSE_CREATION,
        "tokenId": token_id,
        "serialNumber": serial_number,
        "metadata": metadata,
        "timestamp": iso_timestamp(now),
    }


def project_creation(
    project_name: str,
    owner_account_id: str,
    usage_quota: int,
    *,
    project_topic_id: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "type": MessageType.PROJECT_CREATION,
        "projectName": project_name,
        "ownerAccountId": owner_account_id,
        "usageQuota": usage_quota,
        "createdAt": iso_timestamp(now),
    }
    if project_topic_id is not None:
        envelope["projectTopicId"] = project_topic_id
    return envelope


def subscription_created(
    *,
    subscription_id: str,
    subscription_date: datetime,
    expires_at: datetime,
    project_limit: int,
    message_limit: int,
    price_usd: float,
    price_hsuite: int,
    payment_transaction_id: str | None,
    status: str = "active",
) -> dict[str, Any]:
    return {
        "type": MessageType.SUBSCRIPTION_CREATED,
        "subscriptionId": subscription_id,
        "subscriptionDate": iso_timestamp(subscription_date),
        "expiresAt": iso_timestamp(expires_at),
        "projectLimit": project_limit,
        "messageLimit": message_limit,
        "priceUSD": price_usd,
        "priceHSuite": price_hsuite,
        "paymentTransactionId": payment_transaction_id,
        "status": status,
        "timestamp": iso_timestamp(subscription_date),
    }


def chat_qa(question: str, answer: str, usage_quota: int, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "type": MessageType.CHAT_QA,
        "question": question,
        "answer": answer,
        "usageQuota": usage_quota,
        "timestamp": iso_timestamp(now),
    }


def quota_update(usage_quota: int, *, now: datetime | None = None) -> dict[str, Any]:
    return {
        "type": MessageType.QUOTA_UPDATE,
        "usageQuota": usage_quota,
        "timestamp": iso_timestamp(now),
    }
