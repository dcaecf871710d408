"""Dispatch inbound events to lifecycle handlers by (event type, action).

The router is the per-event error boundary: BotErrors become a comment on
the issue, unknown events are logged and dropped, and anything else
propagates so the ingress can answer 500 and the sender can redeliver.
"""

import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple

from .errors import BotError, RepositoryMutationFailure
from .events import InboundEvent
from .lifecycle import BountyLifecycle
from .memory import IssueMemory
from .models import ReplyTarget

logger = logging.getLogger(__name__)

HANDLED = "handled"
REJECTED = "rejected"
DUPLICATE = "duplicate"
IGNORED = "ignored"

Handler = Callable[[InboundEvent], Awaitable[None]]


class WebhookEventRouter:
    """Routes each event to exactly one handler, one issue at a time."""

    def __init__(self, lifecycle: BountyLifecycle, memory: IssueMemory):
        self.lifecycle = lifecycle
        self.memory = memory
        self.handlers: Dict[Tuple[str, str], Handler] = {
            ("issues", "opened"): lifecycle.handle_issue_opened,
            ("issue_comment", "created"): lifecycle.handle_issue_comment,
            ("pull_request", "closed"): lifecycle.handle_pull_request_closed,
            ("ledger", "solution-verified"): lifecycle.handle_solution_verified,
        }

    async def dispatch(self, event: InboundEvent) -> str:
        """Handle one event.

        Returns:
            One of "handled", "rejected" (a BotError was reported on the
            issue), "duplicate" (already processed) or "ignored".
        """
        handler = self.handlers.get((event.event_type, event.action))
        if handler is None:
            logger.info(f"Ignoring unhandled event {event.event_type}.{event.action}")
            return IGNORED

        issue_id = event.issue_id
        if issue_id is None:
            logger.info(
                f"Ignoring {event.event_type}.{event.action} without an issue reference"
            )
            return IGNORED

        async with self.lifecycle.locks.hold(issue_id):
            key = event.idempotency_key
            if key and await self.memory.is_processed(key):
                logger.info(f"Skipping redelivered event {key}")
                return DUPLICATE

            try:
                await handler(event)
                outcome = HANDLED
            except BotError as e:
                logger.warning(
                    f"{event.event_type}.{event.action} for issue {issue_id} "
                    f"rejected: {e}",
                    extra={"issue_id": issue_id, "error": type(e).__name__},
                )
                await self._report(issue_id, getattr(event, "reply_target", None), e)
                outcome = REJECTED

            if key:
                await self.memory.mark_processed(key)
        return outcome

    async def _report(
        self, issue_id: int, target: Optional[ReplyTarget], error: BotError
    ) -> None:
        target = target or await self.memory.get_reply_target(issue_id)
        if target is None:
            logger.error(f"Cannot report error for issue {issue_id}: no reply target")
            return
        try:
            await self.lifecycle.repository.post_comment(target, error.comment())
        except RepositoryMutationFailure as e:
            logger.error(f"Failed to report error on issue {issue_id}: {e}")
