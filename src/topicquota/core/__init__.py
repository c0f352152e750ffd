"""Core data models, configuration, errors and collaborator interfaces.

This package provides:
- Data models (RawLogEntry, ChunkGroup, DecodedMessage, derived views)
- Configuration classes (MirrorConfig, OperatorConfig, QuotaConfig)
- Typed errors (TransientNetworkError, ConfigurationError, ...)
"""

from topicquota.core.config import MirrorConfig, OperatorConfig, QuotaConfig, SubscriptionPlan
from topicquota.core.errors import (
    ConfigurationError,
    InvalidTransitionError,
    LedgerOperationError,
    TopicQuotaError,
    TransientNetworkError,
)
from topicquota.core.models import ChunkInfo, DecodedMessage, MessageType, RawLogEntry

__all__ = [
    "MirrorConfig",
    "OperatorConfig",
    "QuotaConfig",
    "SubscriptionPlan",
    "ConfigurationError",
    "InvalidTransitionError",
    "LedgerOperationError",
    "TopicQuotaError",
    "TransientNetworkError",
    "ChunkInfo",
    "DecodedMessage",
    "MessageType",
    "RawLogEntry",
]
