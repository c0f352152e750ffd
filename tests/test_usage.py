from datetime import datetime, timedelta, timezone

import pytest

from topicquota.core.config import SubscriptionPlan
from topicquota.core.models import MessageType
from topicquota.decoding.envelopes import chat_qa, encode_envelope, quota_update, subscription_created
from topicquota.projection.projector import list_projects, project_quota
from topicquota.workflow.usage import UsageService

OWNER = "0.0.9001"
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def usage(ledger, operator, reader) -> UsageService:
    return UsageService(ledger=ledger, queries=ledger, reader=reader, operator=operator)


async def _subscribed_topic(ledger, *, project_limit: int = 1, created: datetime = NOW) -> str:
    topic = await ledger.create_topic()
    envelope = subscription_created(
        subscription_id="s1",
        subscription_date=created,
        expires_at=created + timedelta(days=30),
        project_limit=project_limit,
        message_limit=100,
        price_usd=5.0,
        price_hsuite=500,
        payment_transaction_id="0.0.9001@1.000000001",
    )
    await ledger.submit_message(topic, encode_envelope(envelope))
    return topic


@pytest.mark.asyncio
async def test_record_chat_bootstraps_then_decrements(usage, ledger, reader) -> None:
    topic = await ledger.create_topic()

    first = await usage.record_chat(topic, "hi?", "hello")
    second = await usage.record_chat(topic, "again?", "yes")

    assert first.usage_quota == 9
    assert second.usage_quota == 8
    messages = await reader.read(topic)
    assert [m.type for m in messages] == [MessageType.CHAT_QA, MessageType.CHAT_QA]
    assert project_quota(messages).remaining == 8


@pytest.mark.asyncio
async def test_record_chat_refuses_when_exhausted(usage, ledger) -> None:
    topic = await ledger.create_topic()
    await ledger.submit_message(topic, encode_envelope(quota_update(0)))

    result = await usage.record_chat(topic, "q", "a")

    assert result.as_result() == {"error": "usage quota exhausted"}
    assert len(ledger.topics[topic]) == 1


@pytest.mark.asyncio
async def test_create_project_within_limit(usage, ledger, reader) -> None:
    license_topic = await _subscribed_topic(ledger, project_limit=1)

    created = await usage.create_project(license_topic, "alpha", OWNER, now=NOW)
    refused = await usage.create_project(license_topic, "beta", OWNER, now=NOW)

    assert created.error is None
    assert created.usage_quota == 3
    assert refused.error == "project limit reached (1)"
    projects = list_projects(await reader.read(license_topic))
    assert [(p.name, p.topic_id) for p in projects] == [("alpha", created.project_topic_id)]
    project_messages = await reader.read(created.project_topic_id)
    assert project_quota(project_messages).remaining == 3


@pytest.mark.asyncio
async def test_create_project_requires_active_subscription(usage, ledger) -> None:
    expired = await _subscribed_topic(ledger, created=NOW - timedelta(days=45))
    bare = await ledger.create_topic()

    assert (await usage.create_project(expired, "alpha", OWNER, now=NOW)).error == "no active subscription"
    assert (await usage.create_project(bare, "alpha", OWNER, now=NOW)).error == "no active subscription"
    assert ledger.call_count("create_topic") == 2


@pytest.mark.asyncio
async def test_find_license_without_token(usage) -> None:
    lookup = await usage.find_license("0.0.4242")

    assert not lookup.valid
    assert lookup.error == "no license token held"


def test_subscription_plan_default_period() -> None:
    assert SubscriptionPlan(project_limit=1, message_limit=1, price_usd=1.0, price_hsuite=1).period_days == 30


@pytest.mark.asyncio
async def test_record_chat_uses_latest_quota_beyond_first_page(usage, ledger) -> None:
    topic = await ledger.create_topic()
    for i in range(120):
        await ledger.submit_message(topic, encode_envelope(chat_qa("q", "a", 200 - i, now=NOW)))

    result = await usage.record_chat(topic, "still there?", "yes")

    assert result.error is None
    assert result.usage_quota == 80
