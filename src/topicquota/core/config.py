from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from topicquota.core.errors import ConfigurationError

MIRROR_URLS: dict[str, str] = {
    "mainnet": "https://mainnet-public.mirrornode.hedera.com",
    "testnet": "https://testnet.mirrornode.hedera.com",
    "previewnet": "https://previewnet.mirrornode.hedera.com",
}


@dataclass(frozen=True)
class MirrorConfig:
    """Configuration for the mirror node reader and the message cache."""

    network: str = "testnet"
    base_url: str | None = None  # overrides the network default
    page_size: int = 100
    timeout_s: int = 20
    max_connections: int = 16
    cache_ttl_s: float = 300.0

    def resolved_url(self) -> str:
        if self.base_url:
            return self.base_url.rstrip("/")
        try:
            return MIRROR_URLS[self.network]
        except KeyError:
            raise ConfigurationError(
                f"unknown network {self.network!r}; expected one of {sorted(MIRROR_URLS)}"
            ) from None


@dataclass(frozen=True)
class OperatorConfig:
    """Operator identity and token ids used by the mutating workflows."""

    operator_id: str | None = None
    license_token_id: str | None = None
    payment_token_id: str | None = None

    def require_operator(self) -> str:
        if not self.operator_id:
            raise ConfigurationError("operator account id is not configured (HEDERA_OPERATOR_ID)")
        return self.operator_id

    def require_license_token(self) -> str:
        if not self.license_token_id:
            raise ConfigurationError("license token id is not configured (LICENSE_TOKEN_ID)")
        return self.license_token_id

    def require_payment_token(self) -> str:
        if not self.payment_token_id:
            raise ConfigurationError("payment token id is not configured (HSUITE_TOKEN_ID)")
        return self.payment_token_id


@dataclass(frozen=True)
class QuotaConfig:
    """Quota projection and pricing rules."""

    bootstrap_quota: int = 10
    bootstrap_max_messages: int = 2
    default_project_quota: int = 3
    message_price: int = 1000  # payment token units per message, before decimals
    new_subscription_window_s: int = 3600


@dataclass(frozen=True)
class SubscriptionPlan:
    """Limits and prices of one subscription tier."""

    project_limit: int
    message_limit: int
    price_usd: float
    price_hsuite: int
    period_days: int = 30


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_str(env: Mapping[str, str], name: str) -> str | None:
    raw = env.get(name)
    return raw.strip() if raw and raw.strip() else None


def load_mirror_config(env: Mapping[str, str] | None = None) -> MirrorConfig:
    env = os.environ if env is None else env
    return MirrorConfig(
        network=(_env_str(env, "HEDERA_NETWORK") or "testnet").lower(),
        base_url=_env_str(env, "MIRROR_NODE_URL"),
        page_size=_env_int(env, "MIRROR_PAGE_SIZE", 100),
        timeout_s=_env_int(env, "MIRROR_TIMEOUT_S", 20),
        cache_ttl_s=float(_env_int(env, "MIRROR_CACHE_TTL_S", 300)),
    )


def load_operator_config(env: Mapping[str, str] | None = None) -> OperatorConfig:
    env = os.environ if env is None else env
    return OperatorConfig(
        operator_id=_env_str(env, "HEDERA_OPERATOR_ID"),
        license_token_id=_env_str(env, "LICENSE_TOKEN_ID"),
        payment_token_id=_env_str(env, "HSUITE_TOKEN_ID"),
    )


def load_quota_config(env: Mapping[str, str] | None = None) -> QuotaConfig:
    env = os.environ if env is None else env
    return QuotaConfig(message_price=_env_int(env, "MESSAGE_PRICE", 1000))
