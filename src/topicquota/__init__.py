from __future__ import annotations

from .core.models import DecodedMessage, MessageType, QuotaView, RawLogEntry, SubscriptionView
from .core.use_cases.read_topic import TopicReadService, reconstruct_messages
from .decoding.chunks import reassemble
from .decoding.decoder import decode_payload
from .decoding.registry import make_registry
from .projection.projector import project, project_quota, project_subscription
from .storage.cache import TTLMessageCache
from .workflow.license import LicenseStep, LicenseWorkflow
from .workflow.payment import PaymentWorkflow
from .workflow.usage import UsageService

__all__ = [
    "DecodedMessage",
    "MessageType",
    "QuotaView",
    "RawLogEntry",
    "SubscriptionView",
    "TopicReadService",
    "reconstruct_messages",
    "reassemble",
    "decode_payload",
    "make_registry",
    "project",
    "project_quota",
    "project_subscription",
    "TTLMessageCache",
    "LicenseStep",
    "LicenseWorkflow",
    "PaymentWorkflow",
    "UsageService",
]
