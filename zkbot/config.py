"""Bot configuration.

A single BotConfig is built at startup (usually from the environment) and
handed to every component. Nothing reads the environment after that.
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field


class BotConfig(BaseModel):
    """Settings for the bot and its three external systems."""

    # GitHub
    github_token: str = ""
    github_api_url: str = "https://api.github.com"
    command_prefix: str = "/zkbot"
    base_branch: str = "main"
    solutions_dir: str = "solutions"
    http_timeout: float = 30.0

    # Ledger
    provider_url: str = "http://127.0.0.1:8545/"
    chain_id: Optional[int] = None
    wallet_private_key: str = ""
    zk_review_contract_address: str = ""
    dao_contract_address: str = ""
    github_bot_contract_address: str = ""
    # Falls back to the GitHubBot contract when unset
    verifier_contract_address: str = ""
    ledger_confirmation_timeout: float = 120.0
    # Merge requires a partial release, so at least 1%
    partial_release_percent: int = Field(default=50, ge=1, le=100)

    # Artifact store
    ipfs_url: str = "http://127.0.0.1:5001"

    # How long a handled event key is kept for redelivery checks
    processed_event_ttl_hours: float = Field(default=168.0, gt=0)

    log_level: str = "INFO"

    @property
    def verifier_address(self) -> str:
        return self.verifier_contract_address or self.github_bot_contract_address

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "BotConfig":
        """Build the config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ (used by tests).
        """
        env = os.environ if environ is None else environ
        values = {
            "github_token": env.get("GITHUB_TOKEN"),
            "github_api_url": env.get("GITHUB_API_URL"),
            "command_prefix": env.get("ZKBOT_COMMAND_PREFIX"),
            "base_branch": env.get("ZKBOT_BASE_BRANCH"),
            "solutions_dir": env.get("ZKBOT_SOLUTIONS_DIR"),
            "provider_url": env.get("PROVIDER_URL"),
            "chain_id": env.get("CHAIN_ID"),
            "wallet_private_key": env.get("WALLET_PRIVATE_KEY"),
            "zk_review_contract_address": env.get("ZK_REVIEW_CONTRACT_ADDRESS"),
            "dao_contract_address": env.get("DAO_CONTRACT_ADDRESS"),
            "github_bot_contract_address": env.get("GITHUB_BOT_CONTRACT_ADDRESS"),
            "verifier_contract_address": env.get("VERIFIER_CONTRACT_ADDRESS"),
            "ledger_confirmation_timeout": env.get("LEDGER_CONFIRMATION_TIMEOUT"),
            "partial_release_percent": env.get("ZKBOT_PARTIAL_RELEASE_PERCENT"),
            "ipfs_url": env.get("IPFS_URL"),
            "processed_event_ttl_hours": env.get("ZKBOT_PROCESSED_EVENT_TTL_HOURS"),
            "log_level": env.get("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in values.items() if v not in (None, "")})
