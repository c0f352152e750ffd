import random
from datetime import datetime, timedelta, timezone

from topicquota.core.config import QuotaConfig
from topicquota.core.models import DecodedMessage, MessageType
from topicquota.projection.projector import (
    list_projects,
    project,
    project_license,
    project_quota,
    project_subscription,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def msg(seq: int, type_: str, **content) -> DecodedMessage:
    return DecodedMessage(
        type=type_,
        timestamp=f"1740830000.{seq:09d}",
        content={"type": type_, **content},
        sequence_number=seq,
    )


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def test_project_returns_latest_match_regardless_of_input_order() -> None:
    messages = [
        msg(1, MessageType.QUOTA_UPDATE, usageQuota=5),
        msg(2, MessageType.CHAT_QA, usageQuota=4),
        msg(3, MessageType.QUOTA_UPDATE, usageQuota=20),
        msg(4, MessageType.CHAT_QA, usageQuota=19),
    ]
    expected = project(messages, MessageType.QUOTA_UPDATE)

    for seed in range(10):
        shuffled = messages[:]
        random.Random(seed).shuffle(shuffled)
        assert project(shuffled, MessageType.QUOTA_UPDATE) == expected
    assert expected is not None and expected["usageQuota"] == 20


def test_project_breaks_timestamp_ties_deterministically() -> None:
    a = DecodedMessage(type="chat-qa", timestamp="1.000000001", content={"type": "chat-qa", "usageQuota": 1})
    b = DecodedMessage(type="chat-qa", timestamp="1.000000001", content={"type": "chat-qa", "usageQuota": 2})

    assert project([a, b], "chat-qa") == project([b, a], "chat-qa")


def test_project_does_not_mutate_input() -> None:
    m = msg(1, MessageType.QUOTA_UPDATE, usageQuota=5)
    result = project([m], MessageType.QUOTA_UPDATE)
    assert result is not None
    result["usageQuota"] = 99

    assert m.content["usageQuota"] == 5


def test_project_quota_uses_latest_quota_bearing_message() -> None:
    messages = [
        msg(1, MessageType.PROJECT_CREATION, projectName="p", usageQuota=3),
        msg(2, MessageType.CHAT_QA, usageQuota=2),
        msg(3, MessageType.QUOTA_UPDATE, usageQuota=12),
        msg(4, MessageType.LICENSE_METADATA, note="ignored"),
    ]

    view = project_quota(messages)

    assert view is not None
    assert view.remaining == 12
    assert view.as_of == messages[2].timestamp
    assert not view.bootstrap


def test_project_quota_skips_non_integer_values() -> None:
    messages = [
        msg(1, MessageType.QUOTA_UPDATE, usageQuota=6),
        msg(2, MessageType.CHAT_QA, usageQuota="lots"),
        msg(3, MessageType.CHAT_QA, usageQuota=True),
    ]

    view = project_quota(messages)

    assert view is not None and view.remaining == 6


def test_project_quota_bootstraps_small_topics() -> None:
    view = project_quota([msg(1, MessageType.LICENSE_METADATA)])

    assert view is not None
    assert view.bootstrap
    assert view.remaining == 10
    assert project_quota([]) == view.__class__(remaining=10, as_of=None, bootstrap=True)


def test_project_quota_unknown_for_larger_topics_without_quota() -> None:
    messages = [msg(i, "other") for i in range(1, 4)]

    assert project_quota(messages) is None
    assert project_quota(messages, config=QuotaConfig(bootstrap_max_messages=3)) is not None


def test_project_subscription_active_and_new() -> None:
    created = NOW - timedelta(minutes=10)
    messages = [
        msg(
            1,
            MessageType.SUBSCRIPTION_CREATED,
            subscriptionId="s1",
            subscriptionDate=_iso(created),
            expiresAt=_iso(created + timedelta(days=30)),
            projectLimit=5,
            messageLimit=1000,
            status="active",
        )
    ]

    view = project_subscription(messages, now=NOW)

    assert view is not None
    assert view.active and view.is_new and not view.expired
    assert view.project_limit == 5
    assert view.message_limit == 1000


def test_project_subscription_expired() -> None:
    created = NOW - timedelta(days=40)
    messages = [
        msg(
            1,
            MessageType.SUBSCRIPTION_CREATED,
            subscriptionDate=_iso(created),
            expiresAt=_iso(created + timedelta(days=30)),
            status="active",
        )
    ]

    view = project_subscription(messages, now=NOW)

    assert view is not None
    assert view.expired and not view.active and not view.is_new


def test_project_subscription_none_without_record() -> None:
    assert project_subscription([msg(1, MessageType.CHAT_QA, usageQuota=1)], now=NOW) is None


def test_project_license_and_projects() -> None:
    messages = [
        msg(1, MessageType.LICENSE_CREATION, tokenId="0.0.500", serialNumber=3, metadata={"topicId": "0.0.1001"}),
        msg(2, MessageType.PROJECT_CREATION, projectName="alpha", ownerAccountId="0.0.9", usageQuota=3, projectTopicId="0.0.1002"),
        msg(3, MessageType.PROJECT_CREATION, projectName="beta", ownerAccountId="0.0.9", usageQuota=3, projectTopicId="0.0.1003"),
    ]

    lic = project_license(messages)
    projects = list_projects(list(reversed(messages)))

    assert lic is not None
    assert (lic.token_id, lic.serial_number, lic.topic_id) == ("0.0.500", 3, "0.0.1001")
    assert [p.name for p in projects] == ["alpha", "beta"]
    assert projects[1].topic_id == "0.0.1003"
