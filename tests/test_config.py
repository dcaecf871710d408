"""Tests for BotConfig."""

import pytest
from pydantic import ValidationError

from zkbot.config import BotConfig


def test_defaults():
    """Test that an empty environment gives the defaults."""
    config = BotConfig.from_env({})
    assert config.command_prefix == "/zkbot"
    assert config.base_branch == "main"
    assert config.partial_release_percent == 50
    assert config.ipfs_url == "http://127.0.0.1:5001"
    assert config.chain_id is None


def test_from_env_reads_variables():
    """Test that environment variables override defaults."""
    config = BotConfig.from_env(
        {
            "GITHUB_TOKEN": "ghp_test",
            "PROVIDER_URL": "https://rpc.example",
            "CHAIN_ID": "11155111",
            "LEDGER_CONFIRMATION_TIMEOUT": "45",
            "ZKBOT_PARTIAL_RELEASE_PERCENT": "25",
            "ZKBOT_COMMAND_PREFIX": "/bounty",
            "LOG_LEVEL": "",
        }
    )
    assert config.github_token == "ghp_test"
    assert config.provider_url == "https://rpc.example"
    assert config.chain_id == 11155111
    assert config.ledger_confirmation_timeout == 45.0
    assert config.partial_release_percent == 25
    assert config.command_prefix == "/bounty"
    assert config.log_level == "INFO"


def test_verifier_falls_back_to_github_bot_contract():
    """Test the verifier address fallback."""
    config = BotConfig(github_bot_contract_address="0xbot")
    assert config.verifier_address == "0xbot"

    config = BotConfig(github_bot_contract_address="0xbot", verifier_contract_address="0xver")
    assert config.verifier_address == "0xver"


def test_partial_release_percent_is_bounded():
    """Test that the release percentage must be between 1 and 100."""
    with pytest.raises(ValidationError):
        BotConfig(partial_release_percent=150)

    with pytest.raises(ValidationError):
        BotConfig(partial_release_percent=0)


def test_processed_event_ttl():
    """Test the redelivery window default and its environment override."""
    assert BotConfig.from_env({}).processed_event_ttl_hours == 168.0

    config = BotConfig.from_env({"ZKBOT_PROCESSED_EVENT_TTL_HOURS": "12"})
    assert config.processed_event_ttl_hours == 12.0

    with pytest.raises(ValidationError):
        BotConfig(processed_event_ttl_hours=0)
