"""zkbot - zero-knowledge code review bounty bot.

Coordinates GitHub issues, an on-chain bounty ledger and an IPFS artifact
store: circuits are registered per issue, proofs are verified on-chain,
and verified solutions become pull requests whose merge releases the
bounty.

Key components:
- ZkBot: wires configuration, clients, lifecycle and router
- BountyLifecycle: the per-issue state machine
- WebhookEventRouter: (event type, action) dispatch and error boundary
- BotConfig: configuration built once at startup
"""

from .bot import ZkBot
from .config import BotConfig
from .lifecycle import BountyLifecycle
from .router import WebhookEventRouter

__all__ = [
    "ZkBot",
    "BotConfig",
    "BountyLifecycle",
    "WebhookEventRouter",
]
