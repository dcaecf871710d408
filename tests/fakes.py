"""In-memory doubles for the ledger, artifact store and GitHub, plus payload builders."""

import json
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from web3 import Web3

from zkbot.artifacts import ArtifactStoreClient
from zkbot.errors import ArtifactUnavailable, RepositoryMutationFailure
from zkbot.ledger import TX_CONFIRMED
from zkbot.models import LedgerReceipt
from zkbot.state import LedgerIssueRecord

CREATOR = "alice"
SOLVER = "bob"
REPO_OWNER = "solo-daemon"
REPO_NAME = "example-syntax-error"
CREATOR_WALLET = "0x" + "ab" * 20
SOLVER_WALLET = "0x" + "cd" * 20

PROOF = {
    "a": ["1", "2"],
    "b": [["3", "4"], ["5", "6"]],
    "c": ["7", "8"],
    "input": ["9"],
}
PROOF_BYTES = json.dumps(PROOF).encode()
SOLUTION_HASH = "0x" + "ef" * 32

WRITE_OPERATIONS = (
    "register_circuit",
    "create_issue",
    "submit_solution",
    "release_bounty",
    "trigger_full_bounty_release",
)


class FakeLedger:
    """Keeps per-issue records and applies writes the way the contracts would."""

    def __init__(self):
        self.records: Dict[int, LedgerIssueRecord] = {}
        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, Exception] = {}
        self.tx_status: Dict[str, str] = {}
        self._tx_count = 0

    def record(self, issue_id: int) -> LedgerIssueRecord:
        return self.records.get(issue_id, LedgerIssueRecord(issue_id=issue_id))

    def update(self, issue_id: int, **changes) -> None:
        self.records[issue_id] = replace(self.record(issue_id), **changes)

    def writes(self, name: Optional[str] = None) -> List[Tuple[str, tuple]]:
        return [
            call
            for call in self.calls
            if call[0] in WRITE_OPERATIONS and (name is None or call[0] == name)
        ]

    def _receipt(self, assigned_id: Optional[int] = None) -> LedgerReceipt:
        self._tx_count += 1
        return LedgerReceipt(
            tx_hash=f"0x{self._tx_count:064x}",
            block_number=self._tx_count,
            assigned_id=assigned_id,
        )

    def _check(self, name: str, args: tuple) -> None:
        self.calls.append((name, args))
        if name in self.failures:
            raise self.failures.pop(name)

    async def register_circuit(self, issue_id, name, description, content_address, verifier):
        self._check("register_circuit", (issue_id, name, description, content_address, verifier))
        self.update(issue_id, circuit_registered=True, circuit_id="7")
        return self._receipt(assigned_id=7)

    async def create_issue(self, issue_id, circuit_id, amount, creator_wallet):
        self._check("create_issue", (issue_id, circuit_id, amount, creator_wallet))
        self.update(
            issue_id,
            ledger_id=1001,
            circuit_registered=True,
            circuit_id=circuit_id,
            creator_wallet=creator_wallet,
            bounty_amount=Web3.to_wei(amount, "ether"),
        )
        return self._receipt(assigned_id=1001)

    async def submit_solution(self, issue_id, content_address, proof):
        self._check("submit_solution", (issue_id, content_address, *proof.as_args()))
        self.update(issue_id, solution_verified=True, solution_cid=content_address)
        return self._receipt()

    async def release_bounty(self, issue_id, recipient, amount):
        self._check("release_bounty", (issue_id, recipient, amount))
        record = self.record(issue_id)
        self.update(issue_id, released_amount=record.released_amount + amount)
        return self._receipt()

    async def trigger_full_bounty_release(self, issue_id):
        self._check("trigger_full_bounty_release", (issue_id,))
        record = self.record(issue_id)
        self.update(issue_id, released_amount=record.bounty_amount, fully_released=True)
        return self._receipt()

    async def get_issue_record(self, issue_id):
        self.calls.append(("get_issue_record", (issue_id,)))
        return self.record(issue_id)

    async def get_bounty_amount(self, issue_id):
        self.calls.append(("get_bounty_amount", (issue_id,)))
        return self.record(issue_id).bounty_amount

    async def get_solution_hash(self, issue_id):
        self._check("get_solution_hash", (issue_id,))
        return SOLUTION_HASH

    async def transaction_status(self, tx_hash):
        self.calls.append(("transaction_status", (tx_hash,)))
        return self.tx_status.get(tx_hash, TX_CONFIRMED)


class FakeArtifacts(ArtifactStoreClient):
    """Serves payloads from a dict; decoding is the real client's."""

    def __init__(self, blobs: Optional[Dict[str, bytes]] = None):
        super().__init__()
        self.blobs = dict(blobs or {})
        self.fetched: List[str] = []

    async def fetch(self, content_address: str) -> bytes:
        self.fetched.append(content_address)
        if content_address not in self.blobs:
            raise ArtifactUnavailable(f"`{content_address}` could not be resolved")
        return self.blobs[content_address]


class FakeRepository:
    """Records GitHub writes instead of making them."""

    def __init__(self):
        self.calls: List[Tuple[str, tuple]] = []
        self.comments: List[Tuple[int, str]] = []
        self.fail_on: set = set()
        self.next_pr_number = 7

    def _check(self, name: str, args: tuple) -> None:
        self.calls.append((name, args))
        if name in self.fail_on:
            raise RepositoryMutationFailure(f"{name} failed", status_code=502)

    def called(self, name: str) -> List[tuple]:
        return [args for call, args in self.calls if call == name]

    def comments_on(self, issue_number: int) -> List[str]:
        return [body for number, body in self.comments if number == issue_number]

    async def create_branch(self, repo, from_ref, new_name):
        self._check("create_branch", (repo, from_ref, new_name))
        return "basesha"

    async def put_file(self, repo, path, content, branch, message):
        self._check("put_file", (repo, path, content, branch, message))
        return {"content": {"path": path}}

    async def open_pull_request(self, repo, head, base, title, body):
        self._check("open_pull_request", (repo, head, base, title, body))
        number = self.next_pr_number
        return {
            "number": number,
            "html_url": f"https://github.com/{repo.owner}/{repo.name}/pull/{number}",
        }

    async def post_comment(self, target, body):
        self._check("post_comment", (target, body))
        self.comments.append((target.issue_number, body))
        return {"id": len(self.comments), "body": body}


def repository_payload() -> dict:
    return {"name": REPO_NAME, "owner": {"login": REPO_OWNER}}


def issue_opened_payload(number: int = 42, body: str = "", creator: str = CREATOR) -> dict:
    return {
        "action": "opened",
        "repository": repository_payload(),
        "issue": {"number": number, "body": body, "user": {"login": creator}},
    }


def comment_payload(
    body: str,
    number: int = 42,
    commenter: str = CREATOR,
    creator: str = CREATOR,
    comment_id: int = 5001,
) -> dict:
    return {
        "action": "created",
        "repository": repository_payload(),
        "issue": {"number": number, "body": "", "user": {"login": creator}},
        "comment": {"id": comment_id, "body": body, "user": {"login": commenter}},
    }


def pull_request_closed_payload(
    body: str, merged: bool = True, number: int = 9, author: str = "zkbot[bot]"
) -> dict:
    return {
        "action": "closed",
        "repository": repository_payload(),
        "pull_request": {
            "number": number,
            "merged": merged,
            "body": body,
            "user": {"login": author},
        },
    }
