import pytest

from topicquota.core.config import (
    MIRROR_URLS,
    MirrorConfig,
    OperatorConfig,
    load_mirror_config,
    load_operator_config,
    load_quota_config,
)
from topicquota.core.errors import ConfigurationError


def test_load_mirror_config_from_env() -> None:
    config = load_mirror_config({"HEDERA_NETWORK": "MAINNET", "MIRROR_PAGE_SIZE": "50"})

    assert config.network == "mainnet"
    assert config.page_size == 50
    assert config.cache_ttl_s == 300.0
    assert config.resolved_url() == MIRROR_URLS["mainnet"]


def test_mirror_url_override_and_unknown_network() -> None:
    assert MirrorConfig(base_url="http://localhost:5551/").resolved_url() == "http://localhost:5551"
    with pytest.raises(ConfigurationError):
        MirrorConfig(network="devnet").resolved_url()


def test_bad_integer_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        load_quota_config({"MESSAGE_PRICE": "cheap"})


def test_operator_config_requirements() -> None:
    config = load_operator_config({"HEDERA_OPERATOR_ID": "0.0.2", "LICENSE_TOKEN_ID": " "})

    assert config.require_operator() == "0.0.2"
    with pytest.raises(ConfigurationError):
        config.require_license_token()
    with pytest.raises(ConfigurationError):
        OperatorConfig().require_payment_token()
