"""Wiring for the bot.

ZkBot follows a two-phase start:

- __init__: store the configuration only
- set_up: build the clients, the lifecycle and the router

Tests call set_up() with doubles for the ledger, artifact store and
repository; production calls it with nothing and gets the real clients.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from .artifacts import ArtifactStoreClient
from .config import BotConfig
from .events import InboundEvent
from .github import RepositoryMutator
from .ledger import LedgerGateway
from .lifecycle import BountyLifecycle
from .memory import IssueMemory
from .router import WebhookEventRouter

logger = logging.getLogger(__name__)


class ZkBot:
    """The bounty bot: one lifecycle and router built from one BotConfig.

    Usage:
        bot = ZkBot(BotConfig.from_env())
        bot.set_up()
        await bot.dispatch(parse_github_event("issues", payload))
    """

    def __init__(self, config: BotConfig):
        self.config = config

        # Initialized in set_up()
        self.lifecycle: Optional[BountyLifecycle] = None
        self.router: Optional[WebhookEventRouter] = None

    def set_up(
        self,
        store=None,
        ledger=None,
        artifacts=None,
        repository=None,
    ) -> None:
        """Build the components, using any doubles passed in."""
        memory = IssueMemory(
            store, processed_ttl=timedelta(hours=self.config.processed_event_ttl_hours)
        )
        self.lifecycle = BountyLifecycle(
            config=self.config,
            ledger=ledger or LedgerGateway.from_config(self.config),
            artifacts=artifacts
            or ArtifactStoreClient(self.config.ipfs_url, timeout=self.config.http_timeout),
            repository=repository
            or RepositoryMutator(
                token=self.config.github_token,
                api_url=self.config.github_api_url,
                timeout=self.config.http_timeout,
            ),
            memory=memory,
        )
        self.router = WebhookEventRouter(self.lifecycle, memory)

        logger.info(
            "ZkBot initialized",
            extra={
                "provider_url": self.config.provider_url,
                "ipfs_url": self.config.ipfs_url,
                "command_prefix": self.config.command_prefix,
            },
        )

    def _require_set_up(self) -> None:
        if self.router is None or self.lifecycle is None:
            raise RuntimeError("Bot not initialized. Call set_up() first.")

    async def dispatch(self, event: InboundEvent) -> str:
        self._require_set_up()
        return await self.router.dispatch(event)

    async def issue_status(self, issue_id: int) -> Dict[str, Any]:
        self._require_set_up()
        async with self.lifecycle.locks.hold(issue_id):
            return await self.lifecycle.issue_status(issue_id)
