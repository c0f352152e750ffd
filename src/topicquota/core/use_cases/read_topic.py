from __future__ import annotations

import logging
from dataclasses import dataclass

from topicquota.core.interfaces import IMessageCache, ITopicMessagesProvider
from topicquota.core.models import DecodedMessage, RawLogEntry
from topicquota.decoding.chunks import reassemble
from topicquota.decoding.decoder import decode_payloads
from topicquota.decoding.registry import make_registry
from topicquota.decoding.specs import MessageRegistry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class ReconstructionStats:
    """
    Counters for one reconstruction pass.

    Data-integrity problems are reported here instead of being raised:
    - malformed / undecodable payloads
    - incomplete chunk groups (a later fetch may complete them)
    - chunk slot collisions
    """

    entries: int = 0
    single: int = 0
    groups_completed: int = 0
    groups_incomplete: int = 0
    slot_collisions: int = 0
    decoded: int = 0
    repaired: int = 0
    discarded: int = 0
    has_more: bool = False
    from_cache: bool = False


@dataclass(slots=True)
class Reconstruction:
    messages: list[DecodedMessage]
    stats: ReconstructionStats


def reconstruct_messages(
    entries: list[RawLogEntry],
    registry: MessageRegistry,
) -> Reconstruction:
    """
    Reassemble and decode raw entries into an ordered message sequence.

    The output is sorted by (consensus timestamp, sequence number), regardless
    of the order of ``entries``.
    """
    stats = ReconstructionStats(entries=len(entries))

    assembled = reassemble(entries)
    stats.single = assembled.stats.single
    stats.groups_completed = assembled.stats.groups_completed
    stats.groups_incomplete = assembled.stats.groups_incomplete
    stats.slot_collisions = assembled.stats.slot_collisions

    messages, dstats = decode_payloads(assembled.payloads, registry)
    stats.decoded = dstats.decoded
    stats.repaired = dstats.repaired
    stats.discarded = dstats.discarded + assembled.stats.undecodable

    messages.sort(key=lambda m: m.sort_key)
    return Reconstruction(messages=messages, stats=stats)


# ---------------------------------------------------------------------------
# Domain service: TopicReadService
# ---------------------------------------------------------------------------


class TopicReadService:
    """
    Read pipeline: cache → fetch → reassemble → decode → order → cache.

    It depends only on the messages provider and cache interfaces; the
    mirror node client and the in-memory ledger both satisfy the provider.
    A single page of ``page_size`` entries is fetched per read. Callers that
    need more call `read_all`, which follows continuation links explicitly.
    """

    def __init__(
        self,
        provider: ITopicMessagesProvider,
        *,
        registry: MessageRegistry | None = None,
        cache: IMessageCache | None = None,
        page_size: int = 100,
    ) -> None:
        self._provider = provider
        self._registry = registry if registry is not None else make_registry()
        self._cache = cache
        self.page_size = page_size
        self.last_stats: ReconstructionStats | None = None

    async def read(self, topic_id: str, *, use_cache: bool = True) -> list[DecodedMessage]:
        """Return the ordered messages of a topic (one page)."""
        return (await self.read_with_stats(topic_id, use_cache=use_cache)).messages

    async def read_with_stats(self, topic_id: str, *, use_cache: bool = True) -> Reconstruction:
        if use_cache and self._cache is not None:
            cached = self._cache.get(topic_id)
            if cached is not None:
                logger.debug("Cache hit for topic %s (%d messages)", topic_id, len(cached))
                result = Reconstruction(messages=cached, stats=ReconstructionStats(from_cache=True))
                self.last_stats = result.stats
                return result

        page = await self._provider.fetch_messages(topic_id, limit=self.page_size)
        result = reconstruct_messages(list(page.entries), self._registry)
        result.stats.has_more = page.has_more
        if page.has_more:
            logger.info("Topic %s has more than %d entries; later pages were not read", topic_id, self.page_size)
        logger.info(
            "Reconstructed %d messages from %d entries on topic %s (repaired=%d discarded=%d incomplete_groups=%d)",
            len(result.messages),
            result.stats.entries,
            topic_id,
            result.stats.repaired,
            result.stats.discarded,
            result.stats.groups_incomplete,
        )

        if self._cache is not None:
            self._cache.put(topic_id, result.messages)
        self.last_stats = result.stats
        return result

    async def read_all(self, topic_id: str, *, max_pages: int | None = None) -> Reconstruction:
        """Follow continuation links and reconstruct the whole topic (uncached)."""
        entries: list[RawLogEntry] = []
        page = await self._provider.fetch_messages(topic_id, limit=self.page_size)
        entries.extend(page.entries)
        pages = 1
        while page.has_more and (max_pages is None or pages < max_pages):
            page = await self._provider.fetch_messages(
                topic_id, limit=self.page_size, next_link=page.next_link
            )
            entries.extend(page.entries)
            pages += 1
        result = reconstruct_messages(entries, self._registry)
        result.stats.has_more = page.has_more
        self.last_stats = result.stats
        return result

    async def read_complete(self, topic_id: str) -> list[DecodedMessage]:
        """
        Uncached read of the whole topic.

        Fetches one page like `read`; when the topic continues past it, the
        rest is followed with `read_all`. Writes that derive a new value from
        the latest record (quota decrements, purchases, limits) read this way.
        """
        first = await self.read_with_stats(topic_id, use_cache=False)
        if not first.stats.has_more:
            return first.messages
        logger.info("Topic %s spans several pages; reading all of them", topic_id)
        return (await self.read_all(topic_id)).messages

    def invalidate(self, topic_id: str | None = None) -> None:
        if self._cache is not None:
            self._cache.invalidate(topic_id)
