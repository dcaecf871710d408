"""Tests for event routing, redelivery and error reporting."""

import pytest
from unittest.mock import AsyncMock

from fakes import comment_payload, issue_opened_payload
from zkbot.events import UnhandledEvent, parse_github_event


class TestDispatch:
    """Tests for WebhookEventRouter.dispatch."""

    @pytest.mark.asyncio
    async def test_unknown_event_is_ignored(self, bot, ledger, repository):
        """Test that unhandled event types cause no side effects."""
        outcome = await bot.dispatch(UnhandledEvent(event_type="push", action=None))

        assert outcome == "ignored"
        assert ledger.calls == []
        assert repository.calls == []

    @pytest.mark.asyncio
    async def test_plain_comment_is_handled_silently(self, bot, repository):
        """Test that a comment that is not a command posts nothing."""
        event = parse_github_event("issue_comment", comment_payload("Nice work!"))
        outcome = await bot.dispatch(event)

        assert outcome == "handled"
        assert repository.comments == []

    @pytest.mark.asyncio
    async def test_unknown_verb_posts_help(self, bot, repository, ledger):
        """Test that an unknown command gets the help text."""
        event = parse_github_event("issue_comment", comment_payload("/zkbot frobnicate"))
        await bot.dispatch(event)

        body = repository.comments_on(42)[-1]
        assert body.startswith("Unknown command. Available commands are:")
        assert "/zkbot add-circuits [IPFS_CID]" in body
        assert "/zkbot hereisprove [IPFS_CID]" in body
        assert ledger.calls == []

    @pytest.mark.asyncio
    async def test_redelivered_event_is_skipped(self, bot, ledger):
        """Test that a redelivered comment does not repeat the ledger write."""
        event = parse_github_event(
            "issue_comment", comment_payload("/zkbot add-circuits bafy123")
        )

        first = await bot.dispatch(event)
        second = await bot.dispatch(event)

        assert (first, second) == ("handled", "duplicate")
        assert len(ledger.writes("register_circuit")) == 1

    @pytest.mark.asyncio
    async def test_redelivered_issue_opened_posts_once(self, bot, repository):
        """Test that instructions are not posted twice for one issue."""
        event = parse_github_event("issues", issue_opened_payload())

        await bot.dispatch(event)
        await bot.dispatch(event)

        assert len(repository.comments_on(42)) == 1

    @pytest.mark.asyncio
    async def test_rejected_event_is_not_retried(self, bot, repository):
        """Test that a reported rejection is also marked processed."""
        event = parse_github_event(
            "issue_comment",
            comment_payload("/zkbot add-circuits bafy123", commenter="mallory"),
        )

        assert await bot.dispatch(event) == "rejected"
        assert await bot.dispatch(event) == "duplicate"
        assert len(repository.comments_on(42)) == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_propagates(self, bot, memory):
        """Test that a programming error is raised and the event left unprocessed."""
        event = parse_github_event("issues", issue_opened_payload())
        bot.router.handlers[("issues", "opened")] = AsyncMock(
            side_effect=RuntimeError("boom")
        )

        with pytest.raises(RuntimeError):
            await bot.dispatch(event)

        assert not await memory.is_processed(event.idempotency_key)

    @pytest.mark.asyncio
    async def test_failed_error_comment_is_logged(self, bot, repository):
        """Test that an error report that cannot be posted does not raise."""
        repository.fail_on.add("post_comment")
        event = parse_github_event(
            "issue_comment",
            comment_payload("/zkbot add-circuits bafy123", commenter="mallory"),
        )

        assert await bot.dispatch(event) == "rejected"


class TestBotSetUp:
    """Tests for ZkBot wiring."""

    @pytest.mark.asyncio
    async def test_dispatch_requires_set_up(self, config):
        """Test that an uninitialised bot refuses events."""
        from zkbot.bot import ZkBot

        bot = ZkBot(config)
        with pytest.raises(RuntimeError, match="set_up"):
            await bot.dispatch(UnhandledEvent(event_type="push"))
