"""Default message registry for license, project, subscription and chat envelopes.

This module exposes:
- `make_registry()` → MessageRegistry prefilled with every known envelope
- `add_message_spec(registry, spec)` → register one spec under all its wire types
- `add_many(registry, specs)` → register multiple
- `known_wire_types(registry)` → every accepted ``type`` value

Supporting another envelope variant only requires adding a `MessageSpec` here.
"""

from __future__ import annotations

from collections.abc import Iterable

from topicquota.core.models import MessageType
from topicquota.decoding.specs import MessageRegistry, MessageSpec, ProjectionRefs

PathRef = ProjectionRefs.PathRef

DEFAULT_SPECS: tuple[MessageSpec, ...] = (
    MessageSpec(
        tag=MessageType.LICENSE_CREATION,
        wire_types=("LICENSE_CREATION",),
        projection={
            "tokenId": PathRef(paths=("tokenId", "token_id")),
            "serialNumber": PathRef(paths=("serialNumber", "serial_number")),
            "metadata": PathRef(paths=("metadata",)),
        },
        int_fields=("serialNumber",),
    ),
    MessageSpec(
        tag=MessageType.LICENSE_METADATA,
        wire_types=("LICENSE_METADATA",),
    ),
    MessageSpec(
        tag=MessageType.PROJECT_CREATION,
        wire_types=("PROJECT_CREATED", "PROJECT_CREATION"),
        projection={
            "projectName": PathRef(paths=("projectName", "name")),
            "ownerAccountId": PathRef(paths=("ownerAccountId", "owner")),
            "createdAt": PathRef(paths=("createdAt", "timestamp")),
            "usageQuota": PathRef(paths=("usageQuota",)),
        },
        int_fields=("usageQuota",),
    ),
    MessageSpec(
        tag=MessageType.SUBSCRIPTION_CREATED,
        wire_types=("SUBSCRIPTION_CREATED",),
        projection={
            "projectLimit": PathRef(paths=("projectLimit",)),
            "messageLimit": PathRef(paths=("messageLimit",)),
        },
        int_fields=("projectLimit", "messageLimit"),
    ),
    MessageSpec(
        tag=MessageType.CHAT_QA,
        wire_types=("CHAT_TOPIC", "openconvai.message"),
        projection={
            "question": PathRef(paths=("question", "input.message")),
            "answer": PathRef(paths=("answer", "output.message")),
            "timestamp": PathRef(paths=("timestamp", "metadata.timestamp")),
            "usageQuota": PathRef(paths=("usageQuota", "metadata.usageQuota")),
        },
        int_fields=("usageQuota",),
    ),
    MessageSpec(
        tag=MessageType.QUOTA_UPDATE,
        wire_types=("CHAT_TOPIC_QUOTA_UPDATE", "openconvai.quota_update"),
        projection={
            "usageQuota": PathRef(paths=("usageQuota", "metadata.usageQuota")),
            "timestamp": PathRef(paths=("timestamp", "metadata.timestamp")),
        },
        int_fields=("usageQuota",),
    ),
)


def make_registry() -> MessageRegistry:
    """Build the default registry with every known envelope spec."""
    reg: MessageRegistry = {}
    add_many(reg, DEFAULT_SPECS)
    return reg


def add_message_spec(registry: MessageRegistry, spec: MessageSpec) -> None:
    """Insert one spec under its canonical tag and every wire alias."""
    for wire_type in spec.all_wire_types():
        registry[wire_type] = spec


def add_many(registry: MessageRegistry, specs: Iterable[MessageSpec]) -> None:
    """Insert many specs into the registry."""
    for s in specs:
        add_message_spec(registry, s)


def known_wire_types(registry: MessageRegistry) -> list[str]:
    """Every accepted ``type`` value, longest first (for regex alternation)."""
    return sorted(registry, key=lambda t: (-len(t), t))
