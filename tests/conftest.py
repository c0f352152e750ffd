import base64
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest

from topicquota.adapters.memory import InMemoryLedger
from topicquota.core.config import OperatorConfig
from topicquota.core.models import ChunkInfo, MessagePage, RawLogEntry
from topicquota.core.use_cases.read_topic import TopicReadService
from topicquota.storage.cache import TTLMessageCache

OPERATOR = "0.0.2"
LICENSE_TOKEN = "0.0.500"
PAYMENT_TOKEN = "0.0.600"


def b64(payload: bytes | str | dict[str, Any]) -> str:
    if isinstance(payload, dict):
        payload = json.dumps(payload)
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def entry(
    seq: int,
    payload: bytes | str | dict[str, Any],
    *,
    ts: str | None = None,
    chunk: tuple[str, int, int] | None = None,
) -> RawLogEntry:
    """Build a RawLogEntry; ``chunk`` is (initiator, total, number)."""
    info = None
    if chunk is not None:
        info = ChunkInfo(initiating_id=chunk[0], total=chunk[1], number=chunk[2])
    return RawLogEntry(
        sequence_number=seq,
        consensus_timestamp=ts or f"1700000000.{seq:09d}",
        payload_b64=b64(payload),
        chunk_info=info,
    )


@pytest.fixture
def mock_provider():
    provider = AsyncMock()
    provider.fetch_messages = AsyncMock(return_value=MessagePage(entries=()))
    provider.aclose = AsyncMock()
    return provider


@pytest.fixture
def operator() -> OperatorConfig:
    return OperatorConfig(operator_id=OPERATOR, license_token_id=LICENSE_TOKEN, payment_token_id=PAYMENT_TOKEN)


@pytest.fixture
def ledger() -> InMemoryLedger:
    ledger = InMemoryLedger(operator_id=OPERATOR)
    ledger.register_token(LICENSE_TOKEN)
    ledger.register_token(PAYMENT_TOKEN, decimals=4)
    return ledger


@pytest.fixture
def cache() -> TTLMessageCache:
    return TTLMessageCache(ttl_s=300)


@pytest.fixture
def reader(ledger: InMemoryLedger, cache: TTLMessageCache) -> TopicReadService:
    return TopicReadService(ledger, cache=cache)
