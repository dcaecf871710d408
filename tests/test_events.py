"""Tests for inbound event parsing."""

import pytest
from pydantic import ValidationError

from fakes import comment_payload, issue_opened_payload, pull_request_closed_payload
from zkbot.events import (
    IssueCommentCreated,
    IssueOpened,
    PullRequestClosed,
    SolutionVerifiedNotification,
    UnhandledEvent,
    parse_github_event,
    parse_ledger_event,
)


class TestParseGitHubEvent:
    """Tests for parse_github_event."""

    def test_issue_opened(self):
        """Test parsing an issues.opened delivery."""
        event = parse_github_event("issues", issue_opened_payload(number=3, body="hi"))

        assert isinstance(event, IssueOpened)
        assert event.issue_id == 3
        assert event.reply_target.repo.full_name == "solo-daemon/example-syntax-error"
        assert event.idempotency_key == "issues.opened:solo-daemon/example-syntax-error#3"

    def test_issue_comment(self):
        """Test that the comment id keys redelivery."""
        event = parse_github_event(
            "issue_comment", comment_payload("/zkbot help", comment_id=77)
        )

        assert isinstance(event, IssueCommentCreated)
        assert event.comment.user.login == "alice"
        assert event.idempotency_key == "issue_comment.created:77"

    def test_pull_request_issue_reference(self):
        """Test that the issue comes from the PR body marker."""
        event = parse_github_event(
            "pull_request", pull_request_closed_payload("Resolves Issue #42")
        )

        assert isinstance(event, PullRequestClosed)
        assert event.issue_id == 42
        assert event.reply_target.issue_number == 42

    def test_pull_request_without_reference(self):
        """Test a PR body without an issue marker."""
        event = parse_github_event("pull_request", pull_request_closed_payload(""))
        assert event.issue_id is None
        assert event.reply_target is None

    def test_unhandled_action(self):
        """Test that other actions are not validated."""
        event = parse_github_event("issues", {"action": "labeled"})
        assert isinstance(event, UnhandledEvent)
        assert (event.event_type, event.action) == ("issues", "labeled")

    def test_missing_fields_raise(self):
        """Test that a handled event with missing fields is rejected."""
        with pytest.raises(ValidationError):
            parse_github_event("issues", {"action": "opened", "issue": {"number": 1}})


class TestParseLedgerEvent:
    """Tests for parse_ledger_event."""

    def test_solution_verified(self):
        """Test parsing a solution-verified notification."""
        event = parse_ledger_event(
            {"event": "solution-verified", "issue_id": 42, "content_address": "bafy"}
        )

        assert isinstance(event, SolutionVerifiedNotification)
        assert event.issue_id == 42
        assert event.idempotency_key is None

    def test_unknown_ledger_event(self):
        """Test that unknown notifications are unhandled."""
        event = parse_ledger_event({"event": "bounty-funded"})
        assert isinstance(event, UnhandledEvent)
        assert event.event_type == "ledger"
