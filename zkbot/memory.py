"""Durable keyed store for what the ledger cannot tell us.

The ledger is the source of truth for circuits, solutions and bounties.
This store only keeps the coordinates needed to reply later and the
bookkeeping that makes event handling safe under redelivery.

Namespaces:
- ("issues", "<issue_id>"): per-issue keys
    - "reply": repository and issue number to comment on
    - "solution": content address and contributor of the submitted solution
    - "pending": ledger transaction awaiting confirmation
    - "pull_request": the solution PR once opened
- ("events",): idempotency keys of fully handled events, pruned after a TTL
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .models import ReplyTarget, SolutionSubmission
from .state import PendingOperation

logger = logging.getLogger(__name__)

NAMESPACE_ISSUES = ("issues",)
NAMESPACE_EVENTS = ("events",)

# Processed keys are pruned once per this many marks
PRUNE_EVERY = 100


def get_store():
    """Get the LangGraph Store backing the bot's durable state.

    Uses PostgreSQL when DATABASE_URL is set, in-memory otherwise.

    Returns:
        LangGraph Store instance
    """
    database_url = os.environ.get("DATABASE_URL")

    if not database_url:
        # Dev fallback - warn loudly
        logger.warning(
            "DATABASE_URL not set - using in-memory store (data will be lost)"
        )
        from langgraph.store.memory import InMemoryStore

        return InMemoryStore()

    try:
        from langgraph.store.postgres import PostgresStore
        from psycopg import Connection
        from psycopg.rows import dict_row

        conn = Connection.connect(
            database_url, autocommit=True, prepare_threshold=0, row_factory=dict_row
        )
        store = PostgresStore(conn)
        store.setup()

        logger.info("Initialized PostgresStore")
        return store

    except ImportError as e:
        logger.error(f"Failed to import PostgresStore dependencies: {e}")
        raise
    except Exception as e:
        logger.error(f"Failed to initialize PostgresStore: {e}")
        raise


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class IssueMemory:
    """Typed access to the bot's durable per-issue state."""

    def __init__(self, store=None, processed_ttl: Optional[timedelta] = None):
        """Initialize issue memory.

        Args:
            store: Optional LangGraph Store instance. If not provided,
                   creates one using get_store().
            processed_ttl: How long a processed event key counts as seen.
                   Defaults to one week.
        """
        self.store = store if store is not None else get_store()
        self.processed_ttl = processed_ttl or timedelta(days=7)
        self._marks_since_prune = 0

    def _namespace(self, issue_id: int) -> tuple:
        return (*NAMESPACE_ISSUES, str(issue_id))

    async def _get(self, issue_id: int, key: str) -> Optional[Dict[str, Any]]:
        item = await self.store.aget(self._namespace(issue_id), key)
        return item.value if item else None

    async def _put(self, issue_id: int, key: str, value: Dict[str, Any]) -> None:
        await self.store.aput(self._namespace(issue_id), key, value)

    # ==========================================
    # Reply coordinates
    # ==========================================

    async def save_reply_target(self, issue_id: int, target: ReplyTarget) -> None:
        await self._put(issue_id, "reply", target.to_dict())

    async def get_reply_target(self, issue_id: int) -> Optional[ReplyTarget]:
        value = await self._get(issue_id, "reply")
        return ReplyTarget.from_dict(value) if value else None

    # ==========================================
    # Solution bookkeeping
    # ==========================================

    async def save_solution(self, issue_id: int, solution: SolutionSubmission) -> None:
        await self._put(issue_id, "solution", solution.to_dict())

    async def get_solution(self, issue_id: int) -> Optional[SolutionSubmission]:
        value = await self._get(issue_id, "solution")
        return SolutionSubmission.from_dict(value) if value else None

    async def save_pull_request(self, issue_id: int, number: int, url: str) -> None:
        await self._put(
            issue_id,
            "pull_request",
            {"number": number, "url": url, "opened_at": _now()},
        )
        logger.info(f"Recorded pull request #{number} for issue {issue_id}")

    async def get_pull_request(self, issue_id: int) -> Optional[Dict[str, Any]]:
        return await self._get(issue_id, "pull_request")

    # ==========================================
    # Pending ledger transactions
    # ==========================================

    async def save_pending(
        self, issue_id: int, operation: PendingOperation, tx_hash: str
    ) -> None:
        await self._put(
            issue_id,
            "pending",
            {"operation": operation.value, "tx_hash": tx_hash, "submitted_at": _now()},
        )
        logger.info(f"Issue {issue_id} has pending {operation.value}: {tx_hash}")

    async def get_pending(self, issue_id: int) -> Optional[Dict[str, Any]]:
        return await self._get(issue_id, "pending")

    async def clear_pending(self, issue_id: int) -> None:
        await self.store.adelete(self._namespace(issue_id), "pending")

    # ==========================================
    # Event idempotency
    # ==========================================

    def _expired(self, item, now: datetime) -> bool:
        return item.updated_at < now - self.processed_ttl

    async def is_processed(self, event_key: str) -> bool:
        item = await self.store.aget(NAMESPACE_EVENTS, event_key)
        return item is not None and not self._expired(item, datetime.now(timezone.utc))

    async def mark_processed(self, event_key: str) -> None:
        await self.store.aput(NAMESPACE_EVENTS, event_key, {"processed_at": _now()})

        self._marks_since_prune += 1
        if self._marks_since_prune >= PRUNE_EVERY:
            self._marks_since_prune = 0
            await self.prune_processed()

    async def prune_processed(self, now: Optional[datetime] = None) -> int:
        """Delete processed event keys older than the TTL.

        Returns:
            Number of keys deleted.
        """
        now = now or datetime.now(timezone.utc)
        stale = []
        offset = 0
        while True:
            items = await self.store.asearch(NAMESPACE_EVENTS, limit=PRUNE_EVERY, offset=offset)
            stale.extend(item.key for item in items if self._expired(item, now))
            if len(items) < PRUNE_EVERY:
                break
            offset += len(items)

        for key in stale:
            await self.store.adelete(NAMESPACE_EVENTS, key)
        if stale:
            logger.info(f"Pruned {len(stale)} processed event keys")
        return len(stale)
