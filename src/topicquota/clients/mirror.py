"""Async client for the Hedera mirror node REST API.

This module provides:
- `MirrorNodeClient`: an async client with sane timeouts/connection limits
- Pydantic models validating the mirror's topic message payloads
- Helpers to normalize transaction ids for the REST paths

It returns `RawLogEntry` records ready for chunk reassembly. Every transport
problem (timeout, connection error, non-2xx status) is raised as
`TransientNetworkError`; malformed entries are logged and skipped.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from topicquota.core.config import MirrorConfig
from topicquota.core.errors import TransientNetworkError
from topicquota.core.models import ChunkInfo, MessagePage, NftHolding, RawLogEntry, consensus_key

logger = logging.getLogger(__name__)


# ---------- wire models ----------


class MirrorTransactionId(BaseModel):
    account_id: str
    transaction_valid_start: str | None = None
    nonce: int | None = None
    scheduled: bool | None = None


class MirrorChunkInfo(BaseModel):
    initial_transaction_id: MirrorTransactionId
    number: int
    total: int


class MirrorMessage(BaseModel):
    consensus_timestamp: str
    sequence_number: int
    message: str
    topic_id: str | None = None
    payer_account_id: str | None = None
    chunk_info: MirrorChunkInfo | None = None

    @field_validator("consensus_timestamp")
    @classmethod
    def _check_timestamp(cls, v: str) -> str:
        consensus_key(v)
        return v

    def to_entry(self) -> RawLogEntry:
        info = None
        if self.chunk_info is not None:
            info = ChunkInfo(
                initiating_id=self.chunk_info.initial_transaction_id.account_id,
                total=self.chunk_info.total,
                number=self.chunk_info.number,
                valid_start=self.chunk_info.initial_transaction_id.transaction_valid_start,
            )
        return RawLogEntry(
            sequence_number=self.sequence_number,
            consensus_timestamp=self.consensus_timestamp,
            payload_b64=self.message,
            chunk_info=info,
        )


class MirrorNft(BaseModel):
    token_id: str
    serial_number: int
    account_id: str | None = None
    metadata: str = ""


def to_mirror_transaction_id(transaction_id: str) -> str:
    """``0.0.123@1700000000.000000001`` → ``0.0.123-1700000000-000000001``."""
    if "@" not in transaction_id:
        return transaction_id
    account, valid_start = transaction_id.split("@", 1)
    return f"{account}-{valid_start.replace('.', '-')}"


def parse_messages(raw: list[dict[str, Any]]) -> list[RawLogEntry]:
    """Validate mirror message dicts, skipping (and logging) malformed ones."""
    out: list[RawLogEntry] = []
    for item in raw:
        try:
            out.append(MirrorMessage.model_validate(item).to_entry())
        except (ValidationError, ValueError) as e:
            seq = item.get("sequence_number") if isinstance(item, dict) else None
            logger.warning("Skipping malformed mirror entry seq=%s: %s", seq, e)
    return out


class MirrorNodeClient:
    """Minimal async mirror node client.

    Parameters
    ----------
    base_url : str
        Mirror node root, e.g. ``https://testnet.mirrornode.hedera.com``.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: int = 20,
        max_connections: int = 16,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            headers={"Accept": "application/json"},
            http2=True,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: MirrorConfig, **kwargs: Any) -> MirrorNodeClient:
        return cls(
            config.resolved_url(),
            timeout_s=config.timeout_s,
            max_connections=config.max_connections,
            **kwargs,
        )

    async def __aenter__(self) -> MirrorNodeClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        allow_404: bool = False,
    ) -> dict[str, Any] | None:
        try:
            r = await self.client.get(path, params=params)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"mirror node timed out on {path}: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"mirror node unreachable on {path}: {e}") from e
        if allow_404 and r.status_code == 404:
            return None
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientNetworkError(
                f"mirror node returned {r.status_code} for {path}",
                status_code=r.status_code,
            ) from e
        try:
            data = r.json()
        except ValueError as e:
            raise TransientNetworkError(f"mirror node returned invalid JSON for {path}") from e
        if not isinstance(data, dict):
            raise TransientNetworkError(f"mirror node returned unexpected payload for {path}")
        return data

    # ---------- topic messages ----------

    async def fetch_messages(
        self,
        topic_id: str,
        *,
        limit: int = 100,
        order: str = "asc",
        next_link: str | None = None,
    ) -> MessagePage:
        """Fetch one page of topic messages.

        When ``next_link`` is given it is followed verbatim (it already carries
        the cursor and limit); otherwise the first page is requested.
        """
        if next_link:
            data = await self._get_json(next_link)
        else:
            data = await self._get_json(
                f"/api/v1/topics/{topic_id}/messages",
                params={"limit": limit, "order": order, "encoding": "base64"},
            )
        assert data is not None
        raw = data.get("messages") or []
        entries = parse_messages(raw)
        nxt = (data.get("links") or {}).get("next")
        logger.debug("Fetched %d/%d valid entries from topic %s (more=%s)", len(entries), len(raw), topic_id, bool(nxt))
        return MessagePage(entries=tuple(entries), next_link=nxt)

    async def iter_pages(
        self,
        topic_id: str,
        *,
        limit: int = 100,
        max_pages: int | None = None,
    ) -> AsyncIterator[MessagePage]:
        """Yield pages until the mirror reports no further link (or ``max_pages``)."""
        page = await self.fetch_messages(topic_id, limit=limit)
        pages = 1
        yield page
        while page.has_more and (max_pages is None or pages < max_pages):
            page = await self.fetch_messages(topic_id, limit=limit, next_link=page.next_link)
            pages += 1
            yield page

    # ---------- account / token queries ----------

    async def is_token_associated(self, account_id: str, token_id: str) -> bool:
        data = await self._get_json(
            f"/api/v1/accounts/{account_id}/tokens",
            params={"token.id": token_id},
            allow_404=True,
        )
        if data is None:
            return False
        return any(t.get("token_id") == token_id for t in data.get("tokens") or [])

    async def owns_nft(self, account_id: str, token_id: str, serial_number: int) -> bool:
        data = await self._get_json(f"/api/v1/tokens/{token_id}/nfts/{serial_number}", allow_404=True)
        if data is None:
            return False
        return data.get("account_id") == account_id and not data.get("deleted", False)

    async def account_nfts(self, account_id: str, token_id: str) -> list[NftHolding]:
        out: list[NftHolding] = []
        data = await self._get_json(
            f"/api/v1/accounts/{account_id}/nfts",
            params={"token.id": token_id},
            allow_404=True,
        )
        while data is not None:
            for item in data.get("nfts") or []:
                try:
                    nft = MirrorNft.model_validate(item)
                except ValidationError as e:
                    logger.warning("Skipping malformed NFT record for %s: %s", account_id, e)
                    continue
                out.append(
                    NftHolding(
                        token_id=nft.token_id,
                        serial_number=nft.serial_number,
                        account_id=nft.account_id or account_id,
                        metadata_b64=nft.metadata,
                    )
                )
            nxt = (data.get("links") or {}).get("next")
            data = await self._get_json(nxt) if nxt else None
        return out

    async def token_decimals(self, token_id: str) -> int:
        data = await self._get_json(f"/api/v1/tokens/{token_id}")
        assert data is not None
        return int(data.get("decimals") or 0)

    async def transaction_result(self, transaction_id: str) -> str | None:
        data = await self._get_json(
            f"/api/v1/transactions/{to_mirror_transaction_id(transaction_id)}",
            allow_404=True,
        )
        if data is None:
            return None
        txs = data.get("transactions") or []
        return txs[0].get("result") if txs else None

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()
