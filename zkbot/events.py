"""Inbound event types.

Each (event type, action) pair the bot reacts to has its own model carrying
only the fields that event guarantees. Payloads are validated here, at the
ingress boundary; anything the bot does not handle becomes UnhandledEvent.
"""

from typing import Literal, Optional, Union

from pydantic import BaseModel

from .commands import find_issue_reference
from .models import RepoRef, ReplyTarget


class GitHubUser(BaseModel):
    login: str


class GitHubRepository(BaseModel):
    name: str
    owner: GitHubUser

    @property
    def ref(self) -> RepoRef:
        return RepoRef(owner=self.owner.login, name=self.name)


class GitHubIssue(BaseModel):
    number: int
    user: GitHubUser
    body: Optional[str] = None


class GitHubComment(BaseModel):
    id: int
    user: GitHubUser
    body: str = ""


class GitHubPullRequest(BaseModel):
    number: int
    user: GitHubUser
    merged: bool = False
    body: Optional[str] = None


class IssueOpened(BaseModel):
    event_type: Literal["issues"] = "issues"
    action: Literal["opened"]
    repository: GitHubRepository
    issue: GitHubIssue

    @property
    def issue_id(self) -> int:
        return self.issue.number

    @property
    def reply_target(self) -> ReplyTarget:
        return ReplyTarget(repo=self.repository.ref, issue_number=self.issue.number)

    @property
    def idempotency_key(self) -> str:
        return f"issues.opened:{self.repository.ref.full_name}#{self.issue.number}"


class IssueCommentCreated(BaseModel):
    event_type: Literal["issue_comment"] = "issue_comment"
    action: Literal["created"]
    repository: GitHubRepository
    issue: GitHubIssue
    comment: GitHubComment

    @property
    def issue_id(self) -> int:
        return self.issue.number

    @property
    def reply_target(self) -> ReplyTarget:
        return ReplyTarget(repo=self.repository.ref, issue_number=self.issue.number)

    @property
    def idempotency_key(self) -> str:
        return f"issue_comment.created:{self.comment.id}"


class PullRequestClosed(BaseModel):
    event_type: Literal["pull_request"] = "pull_request"
    action: Literal["closed"]
    repository: GitHubRepository
    pull_request: GitHubPullRequest

    @property
    def issue_id(self) -> Optional[int]:
        """The issue this PR resolves, from the `Issue #<n>` marker in its body."""
        return find_issue_reference(self.pull_request.body)

    @property
    def reply_target(self) -> Optional[ReplyTarget]:
        if self.issue_id is None:
            return None
        return ReplyTarget(repo=self.repository.ref, issue_number=self.issue_id)

    @property
    def idempotency_key(self) -> str:
        return (
            f"pull_request.closed:{self.repository.ref.full_name}"
            f"#{self.pull_request.number}:{self.pull_request.merged}"
        )


class SolutionVerifiedNotification(BaseModel):
    """Sent by the ledger watcher when a solution is verified on-chain."""

    event_type: Literal["ledger"] = "ledger"
    action: Literal["solution-verified"] = "solution-verified"
    issue_id: int
    content_address: Optional[str] = None
    contributor: Optional[str] = None

    @property
    def idempotency_key(self) -> None:
        # Doubles as the reconciliation pass, so repeats are always handled
        return None


class UnhandledEvent(BaseModel):
    event_type: str
    action: Optional[str] = None


InboundEvent = Union[
    IssueOpened,
    IssueCommentCreated,
    PullRequestClosed,
    SolutionVerifiedNotification,
    UnhandledEvent,
]

GITHUB_EVENT_MODELS = {
    ("issues", "opened"): IssueOpened,
    ("issue_comment", "created"): IssueCommentCreated,
    ("pull_request", "closed"): PullRequestClosed,
}

LEDGER_EVENT_MODELS = {
    "solution-verified": SolutionVerifiedNotification,
}


def parse_github_event(event_name: str, payload: dict) -> InboundEvent:
    """Validate a GitHub webhook payload.

    Raises:
        pydantic.ValidationError: a handled event is missing required fields.
    """
    action = payload.get("action")
    model = GITHUB_EVENT_MODELS.get((event_name, action))
    if model is None:
        return UnhandledEvent(event_type=event_name, action=action)
    return model.model_validate(payload)


def parse_ledger_event(payload: dict) -> InboundEvent:
    """Validate a ledger notification of the form {"event": ..., ...}."""
    name = payload.get("event")
    model = LEDGER_EVENT_MODELS.get(name)
    if model is None:
        return UnhandledEvent(event_type="ledger", action=name)
    return model.model_validate({**payload, "action": name})
