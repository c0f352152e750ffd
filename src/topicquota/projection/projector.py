"""State projection by replaying decoded topic messages.

All functions here are pure: they never mutate their input, never touch the
network and return the same answer for any permutation of the same messages.
Messages are ordered by (consensus timestamp, sequence number, canonical
content) before the backward scan, so ties resolve deterministically.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from topicquota.core.config import QuotaConfig
from topicquota.core.models import (
    QUOTA_BEARING_TYPES,
    DecodedMessage,
    LicenseView,
    MessageType,
    ProjectView,
    QuotaView,
    SubscriptionView,
    timestamp_to_datetime,
)


def sort_messages(messages: Iterable[DecodedMessage]) -> list[DecodedMessage]:
    return sorted(messages, key=lambda m: m.sort_key)


def latest(messages: Iterable[DecodedMessage], wanted_types: Iterable[str]) -> DecodedMessage | None:
    """Latest message whose type is one of ``wanted_types``."""
    wanted = frozenset(wanted_types)
    for m in reversed(sort_messages(messages)):
        if m.type in wanted:
            return m
    return None


def project(messages: Iterable[DecodedMessage], wanted_type: str) -> dict[str, Any] | None:
    """Content of the latest message of ``wanted_type`` (a copy), or None."""
    m = latest(messages, (wanted_type,))
    return dict(m.content) if m is not None else None


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def project_quota(
    messages: Iterable[DecodedMessage],
    *,
    config: QuotaConfig | None = None,
) -> QuotaView | None:
    """Remaining quota of a topic.

    The latest quota-bearing message with an integer ``usageQuota`` wins.
    Without one, a topic with at most ``bootstrap_max_messages`` messages is
    treated as new and gets ``bootstrap_quota``; otherwise the quota is unknown.
    """
    config = config or QuotaConfig()
    ordered = sort_messages(messages)
    for m in reversed(ordered):
        if m.type in QUOTA_BEARING_TYPES and _is_int(m.content.get("usageQuota")):
            return QuotaView(remaining=m.content["usageQuota"], as_of=m.timestamp)
    if len(ordered) <= config.bootstrap_max_messages:
        return QuotaView(remaining=config.bootstrap_quota, as_of=None, bootstrap=True)
    return None


def _parse_dt(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        return timestamp_to_datetime(value)
    except ValueError:
        return None


def _int_or(value: Any, default: int) -> int:
    return value if _is_int(value) else default


def project_subscription(
    messages: Iterable[DecodedMessage],
    *,
    now: datetime | None = None,
    new_window_s: int = 3600,
) -> SubscriptionView | None:
    """Latest subscription record, evaluated against ``now``."""
    content = project(messages, MessageType.SUBSCRIPTION_CREATED)
    if content is None:
        return None
    now = now or datetime.now(timezone.utc)
    created = _parse_dt(content.get("subscriptionDate")) or _parse_dt(content.get("timestamp"))
    expires = _parse_dt(content.get("expiresAt"))
    status = str(content.get("status") or "active")
    expired = expires is not None and now > expires
    return SubscriptionView(
        subscription_id=content.get("subscriptionId"),
        status=status,
        created_at=created,
        expires_at=expires,
        project_limit=_int_or(content.get("projectLimit"), 0),
        message_limit=_int_or(content.get("messageLimit"), 0),
        payment_transaction_id=content.get("paymentTransactionId"),
        active=status == "active" and not expired,
        expired=expired,
        is_new=created is not None and (now - created).total_seconds() <= new_window_s,
    )


def project_license(messages: Iterable[DecodedMessage]) -> LicenseView | None:
    m = latest(messages, (MessageType.LICENSE_CREATION,))
    if m is None:
        return None
    metadata = m.content.get("metadata")
    metadata = metadata if isinstance(metadata, dict) else {}
    return LicenseView(
        token_id=str(m.content.get("tokenId") or ""),
        serial_number=_int_or(m.content.get("serialNumber"), 0),
        topic_id=m.content.get("topicId") or metadata.get("topicId"),
        metadata=metadata,
        timestamp=m.timestamp,
    )


def list_projects(messages: Iterable[DecodedMessage]) -> list[ProjectView]:
    """Every project-creation record, in log order."""
    out: list[ProjectView] = []
    for m in sort_messages(messages):
        if m.type != MessageType.PROJECT_CREATION:
            continue
        quota = m.content.get("usageQuota")
        out.append(
            ProjectView(
                name=str(m.content.get("projectName") or ""),
                topic_id=m.content.get("projectTopicId"),
                owner_account_id=m.content.get("ownerAccountId"),
                usage_quota=quota if _is_int(quota) else None,
                created_at=m.content.get("createdAt"),
                timestamp=m.timestamp,
            )
        )
    return out
