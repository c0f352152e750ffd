from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from topicquota.core.config import OperatorConfig, QuotaConfig
from topicquota.core.errors import TopicQuotaError
from topicquota.core.interfaces import IAccountQueries, ILedgerOperations
from topicquota.core.models import LicenseView, is_entity_id
from topicquota.core.use_cases.read_topic import TopicReadService
from topicquota.decoding.envelopes import chat_qa, encode_envelope, project_creation
from topicquota.projection.projector import list_projects, project_license, project_quota, project_subscription

logger = logging.getLogger(__name__)

SUCCESS = "SUCCESS"


@dataclass(slots=True, frozen=True)
class ChatResult:
    usage_quota: int | None = None
    error: str | None = None

    def as_result(self) -> dict[str, Any]:
        return {"error": self.error} if self.error else {"usage_quota": self.usage_quota}


@dataclass(slots=True, frozen=True)
class ProjectCreationResult:
    project_topic_id: str | None = None
    project_name: str | None = None
    usage_quota: int | None = None
    error: str | None = None

    def as_result(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        return {
            "project_topic_id": self.project_topic_id,
            "project_name": self.project_name,
            "usage_quota": self.usage_quota,
        }


@dataclass(slots=True, frozen=True)
class LicenseLookup:
    valid: bool
    license: LicenseView | None = None
    error: str | None = None


class UsageService:
    """
    Day-to-day operations against license and project topics.

    Quotas and limits are always projected from a cache-bypassing read of the
    whole topic just before the new envelope is appended.
    """

    def __init__(
        self,
        *,
        ledger: ILedgerOperations,
        queries: IAccountQueries,
        reader: TopicReadService,
        operator: OperatorConfig | None = None,
        quota: QuotaConfig | None = None,
    ) -> None:
        self._ledger = ledger
        self._queries = queries
        self._reader = reader
        self._operator = operator or OperatorConfig()
        self._quota = quota or QuotaConfig()

    async def _submit(self, topic_id: str, envelope: dict[str, Any]) -> str | None:
        try:
            status = await self._ledger.submit_message(topic_id, encode_envelope(envelope))
        except TopicQuotaError as e:
            return str(e)
        return None if status == SUCCESS else status

    async def record_chat(
        self,
        topic_id: str,
        question: str,
        answer: str,
        *,
        now: datetime | None = None,
    ) -> ChatResult:
        """Append a Q/A exchange, consuming one unit of the topic's quota."""
        try:
            messages = await self._reader.read_complete(topic_id)
        except TopicQuotaError as e:
            return ChatResult(error=str(e))
        quota = project_quota(messages, config=self._quota)
        if quota is None or quota.remaining <= 0:
            return ChatResult(error="usage quota exhausted")

        remaining = quota.remaining - 1
        err = await self._submit(topic_id, chat_qa(question, answer, remaining, now=now))
        if err is not None:
            return ChatResult(error=f"could not record chat: {err}")
        self._reader.invalidate(topic_id)
        logger.info("Recorded chat on topic %s; %d messages left", topic_id, remaining)
        return ChatResult(usage_quota=remaining)

    async def create_project(
        self,
        license_topic_id: str,
        name: str,
        owner_account_id: str,
        usage_quota: int | None = None,
        *,
        now: datetime | None = None,
    ) -> ProjectCreationResult:
        """Create a project topic, within the active subscription's project limit."""
        if not name.strip():
            return ProjectCreationResult(error="project name is required")
        if not is_entity_id(owner_account_id):
            return ProjectCreationResult(error=f"invalid owner account id {owner_account_id!r}")
        try:
            messages = await self._reader.read_complete(license_topic_id)
        except TopicQuotaError as e:
            return ProjectCreationResult(error=str(e))

        sub = project_subscription(messages, now=now, new_window_s=self._quota.new_subscription_window_s)
        if sub is None or not sub.active:
            return ProjectCreationResult(error="no active subscription")
        existing = list_projects(messages)
        if len(existing) >= sub.project_limit:
            return ProjectCreationResult(error=f"project limit reached ({sub.project_limit})")

        quota = usage_quota if usage_quota is not None else self._quota.default_project_quota
        try:
            project_topic_id = await self._ledger.create_topic(memo=f"project:{name}")
        except TopicQuotaError as e:
            return ProjectCreationResult(error=f"could not create project topic: {e}")

        err = await self._submit(project_topic_id, project_creation(name, owner_account_id, quota, now=now))
        if err is None:
            err = await self._submit(
                license_topic_id,
                project_creation(name, owner_account_id, quota, project_topic_id=project_topic_id, now=now),
            )
        if err is not None:
            return ProjectCreationResult(project_topic_id=project_topic_id, error=f"could not record project: {err}")
        self._reader.invalidate(license_topic_id)
        self._reader.invalidate(project_topic_id)
        logger.info("Created project %r on topic %s", name, project_topic_id)
        return ProjectCreationResult(project_topic_id=project_topic_id, project_name=name, usage_quota=quota)

    async def find_license(self, account_id: str, token_id: str | None = None) -> LicenseLookup:
        token_id = token_id or self._operator.require_license_token()
        return await find_license(account_id, token_id, queries=self._queries, reader=self._reader)


async def find_license(
    account_id: str,
    token_id: str,
    *,
    queries: IAccountQueries,
    reader: TopicReadService,
) -> LicenseLookup:
    """Locate an account's license via its NFT metadata (the license topic id)."""
    try:
        holdings = await queries.account_nfts(account_id, token_id)
    except TopicQuotaError as e:
        return LicenseLookup(valid=False, error=str(e))
    if not holdings:
        return LicenseLookup(valid=False, error="no license token held")

    try:
        topic_id = holdings[0].metadata_text().strip()
    except ValueError:
        return LicenseLookup(valid=False, error="license metadata is not valid base64")
    if not is_entity_id(topic_id):
        return LicenseLookup(valid=False, error=f"license metadata is not a topic id: {topic_id!r}")
    try:
        messages = await reader.read(topic_id)
    except TopicQuotaError as e:
        return LicenseLookup(valid=False, error=str(e))
    view = project_license(messages)
    if view is None:
        return LicenseLookup(valid=False, error=f"no license record on topic {topic_id}")
    return LicenseLookup(valid=True, license=view)
