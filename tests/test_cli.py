import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from topicquota.adapters.memory import InMemoryLedger
from topicquota.cli import cli
from topicquota.core.errors import TransientNetworkError
from topicquota.decoding.envelopes import encode_envelope, subscription_created

TOPIC = "0.0.1001"


@pytest.fixture
def mirror() -> InMemoryLedger:
    ledger = InMemoryLedger()
    ledger.aclose = AsyncMock()
    ledger.inject(TOPIC, '{"type":"CHAT_TOPIC","question":"q","answer":"a","usageQuota":6}')
    ledger.inject(TOPIC, '{"type":"quota-update","usageQuota":16}')
    return ledger


def _invoke(mirror, *args: str):
    with patch("topicquota.cli.MirrorNodeClient") as MockClient:
        MockClient.from_config.return_value = mirror
        return CliRunner().invoke(cli, list(args))


def test_messages_json(mirror) -> None:
    result = _invoke(mirror, "messages", TOPIC, "--json")

    assert result.exit_code == 0, result.output
    lines = [json.loads(line) for line in result.output.splitlines()]
    assert [line["type"] for line in lines] == ["chat-qa", "quota-update"]
    assert lines[0]["content"]["usageQuota"] == 6
    mirror.aclose.assert_awaited_once()


def test_messages_table(mirror) -> None:
    result = _invoke(mirror, "messages", TOPIC)

    assert result.exit_code == 0, result.output
    assert "messages from 2 entries" in result.output


def test_quota(mirror) -> None:
    result = _invoke(mirror, "quota", TOPIC)

    assert result.exit_code == 0, result.output
    assert "16" in result.output


def test_quota_unknown_is_an_error(mirror) -> None:
    for i in range(3):
        mirror.inject("0.0.2002", '{"type":"note","n":%d}' % i)

    result = _invoke(mirror, "quota", "0.0.2002")

    assert result.exit_code == 1
    assert "no usage quota" in result.output


def test_subscription(mirror) -> None:
    now = datetime.now(timezone.utc)
    envelope = subscription_created(
        subscription_id="sub-1",
        subscription_date=now,
        expires_at=now + timedelta(days=30),
        project_limit=3,
        message_limit=100,
        price_usd=5.0,
        price_hsuite=500,
        payment_transaction_id="0.0.7@1.000000001",
    )
    mirror.inject(TOPIC, encode_envelope(envelope))

    result = _invoke(mirror, "subscription", TOPIC)

    assert result.exit_code == 0, result.output
    assert "sub-1" in result.output
    assert "active" in result.output


def test_network_error_becomes_click_error(mirror) -> None:
    mirror.fetch_messages = AsyncMock(side_effect=TransientNetworkError("mirror down"))

    result = _invoke(mirror, "messages", TOPIC)

    assert result.exit_code == 1
    assert "mirror down" in result.output
