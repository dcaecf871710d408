"""Value types shared between components."""

from dataclasses import dataclass, field
from typing import Any, List, Optional


@dataclass(frozen=True)
class RepoRef:
    """A GitHub repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class ReplyTarget:
    """Where to post comments about an issue."""

    repo: RepoRef
    issue_number: int

    def to_dict(self) -> dict:
        return {
            "owner": self.repo.owner,
            "repo": self.repo.name,
            "issue_number": self.issue_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReplyTarget":
        return cls(
            repo=RepoRef(owner=data["owner"], name=data["repo"]),
            issue_number=int(data["issue_number"]),
        )


@dataclass(frozen=True)
class Proof:
    """A Groth16-style proof: three curve-point groups and the public inputs."""

    a: List[Any]
    b: List[List[Any]]
    c: List[Any]
    input: List[Any]

    def as_args(self) -> tuple:
        return (self.a, self.b, self.c, self.input)


@dataclass(frozen=True)
class LedgerReceipt:
    """A confirmed ledger transaction."""

    tx_hash: str
    block_number: Optional[int] = None
    # Id assigned on-chain by the call, when its event log carries one
    assigned_id: Optional[int] = None
    logs: list = field(default_factory=list)


@dataclass(frozen=True)
class SolutionSubmission:
    """What the bot remembers about a submitted solution."""

    content_address: str
    contributor_login: Optional[str] = None
    contributor_wallet: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "content_address": self.content_address,
            "contributor_login": self.contributor_login,
            "contributor_wallet": self.contributor_wallet,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SolutionSubmission":
        return cls(
            content_address=data["content_address"],
            contributor_login=data.get("contributor_login"),
            contributor_wallet=data.get("contributor_wallet"),
        )
