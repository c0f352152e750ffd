import json
from typing import Any

import pytest

from conftest import entry
from topicquota.core.errors import TransientNetworkError
from topicquota.core.models import MessagePage, MessageType
from topicquota.core.use_cases.read_topic import TopicReadService, reconstruct_messages
from topicquota.decoding.chunks import split_payload
from topicquota.decoding.registry import make_registry
from topicquota.storage.cache import TTLMessageCache


def test_reconstruct_orders_and_decodes() -> None:
    big = json.dumps({"type": "chat-qa", "question": "q" * 30, "answer": "a" * 30, "usageQuota": 8}).encode()
    parts = split_payload(big, 32)
    entries = [entry(1, {"type": "quota-update", "usageQuota": 9})]
    entries += [entry(2 + i, p, chunk=("0.0.2", len(parts), i + 1)) for i, p in enumerate(parts)]
    entries.append(entry(10, "{broken"))

    result = reconstruct_messages(list(reversed(entries)), make_registry())

    assert [m.type for m in result.messages] == [MessageType.QUOTA_UPDATE, MessageType.CHAT_QA]
    assert result.messages[1].content["usageQuota"] == 8
    assert result.messages[1].timestamp == entries[1 + len(parts) - 1].consensus_timestamp
    assert result.stats.groups_completed == 1
    assert result.stats.discarded == 1


@pytest.mark.asyncio
async def test_read_uses_cache_until_invalidated(mock_provider: Any) -> None:
    mock_provider.fetch_messages.return_value = MessagePage(
        entries=(entry(1, {"type": "quota-update", "usageQuota": 4}),)
    )
    reader = TopicReadService(mock_provider, cache=TTLMessageCache())

    first = await reader.read("0.0.1")
    second = await reader.read("0.0.1")
    assert first == second
    assert mock_provider.fetch_messages.await_count == 1
    assert reader.last_stats is not None and reader.last_stats.from_cache

    reader.invalidate("0.0.1")
    await reader.read("0.0.1")
    assert mock_provider.fetch_messages.await_count == 2


@pytest.mark.asyncio
async def test_read_bypassing_cache_always_fetches(mock_provider: Any) -> None:
    reader = TopicReadService(mock_provider, cache=TTLMessageCache(), page_size=25)

    await reader.read("0.0.1", use_cache=False)
    await reader.read("0.0.1", use_cache=False)

    assert mock_provider.fetch_messages.await_count == 2
    mock_provider.fetch_messages.assert_awaited_with("0.0.1", limit=25)


@pytest.mark.asyncio
async def test_read_reports_has_more(mock_provider: Any) -> None:
    mock_provider.fetch_messages.return_value = MessagePage(entries=(), next_link="/api/v1/topics/0.0.1/messages?x")
    reader = TopicReadService(mock_provider)

    result = await reader.read_with_stats("0.0.1")

    assert result.stats.has_more


@pytest.mark.asyncio
async def test_read_propagates_transient_errors(mock_provider: Any) -> None:
    mock_provider.fetch_messages.side_effect = TransientNetworkError("boom")
    cache = TTLMessageCache()
    reader = TopicReadService(mock_provider, cache=cache)

    with pytest.raises(TransientNetworkError):
        await reader.read("0.0.1")
    assert cache.get("0.0.1") is None


@pytest.mark.asyncio
async def test_read_all_follows_pages(ledger) -> None:
    topic = await ledger.create_topic()
    for i in range(5):
        await ledger.submit_message(topic, json.dumps({"type": "quota-update", "usageQuota": i}).encode())
    reader = TopicReadService(ledger, page_size=2)

    one_page = await reader.read(topic)
    everything = await reader.read_all(topic)

    assert len(one_page) == 2
    assert [m.content["usageQuota"] for m in everything.messages] == [0, 1, 2, 3, 4]
    assert not everything.stats.has_more


@pytest.mark.asyncio
async def test_read_complete_returns_whole_topic(ledger) -> None:
    topic = await ledger.create_topic()
    for i in range(5):
        await ledger.submit_message(topic, json.dumps({"type": "quota-update", "usageQuota": i}).encode())

    short = TopicReadService(ledger, page_size=10)
    paged = TopicReadService(ledger, page_size=2)

    assert len(await short.read_complete(topic)) == 5
    assert [m.content["usageQuota"] for m in await paged.read_complete(topic)] == [0, 1, 2, 3, 4]
