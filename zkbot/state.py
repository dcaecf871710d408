"""Lifecycle state for a bounty issue.

Status is never stored: it is derived from the ledger's issue record plus
any ledger transaction still awaiting confirmation.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Status(str, Enum):
    """Per-issue lifecycle states, in order."""

    OPENED = "opened"
    CIRCUIT_REGISTRATION_PENDING = "circuit_registration_pending"
    CIRCUIT_REGISTERED = "circuit_registered"
    SOLUTION_PENDING = "solution_pending"
    SOLUTION_VERIFIED = "solution_verified"
    PARTIALLY_REWARDED = "partially_rewarded"
    FULLY_REWARDED = "fully_rewarded"


class ReleaseState(str, Enum):
    UNRELEASED = "unreleased"
    PARTIAL_RELEASED = "partial_released"
    FULL_RELEASED = "full_released"


class PendingOperation(str, Enum):
    """Ledger writes whose confirmation can be outstanding."""

    REGISTER_CIRCUIT = "register_circuit"
    CREATE_ISSUE = "create_issue"
    SUBMIT_SOLUTION = "submit_solution"
    RELEASE_BOUNTY = "release_bounty"
    FULL_RELEASE = "full_release"


# Allowed forward moves. Rejections keep the current state.
TRANSITIONS = {
    Status.OPENED: {Status.CIRCUIT_REGISTRATION_PENDING},
    Status.CIRCUIT_REGISTRATION_PENDING: {Status.CIRCUIT_REGISTERED, Status.OPENED},
    Status.CIRCUIT_REGISTERED: {Status.SOLUTION_PENDING},
    Status.SOLUTION_PENDING: {Status.SOLUTION_VERIFIED, Status.CIRCUIT_REGISTERED},
    Status.SOLUTION_VERIFIED: {Status.PARTIALLY_REWARDED},
    Status.PARTIALLY_REWARDED: {Status.FULLY_REWARDED},
    Status.FULLY_REWARDED: set(),
}


def can_transition(current: Status, target: Status) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class LedgerIssueRecord:
    """The ledger's view of one issue, as returned by getIssue."""

    issue_id: int
    ledger_id: int = 0
    circuit_registered: bool = False
    circuit_id: str = ""
    creator_wallet: str = ""
    bounty_amount: int = 0
    solution_verified: bool = False
    solution_cid: str = ""
    released_amount: int = 0
    fully_released: bool = False

    @property
    def release_state(self) -> ReleaseState:
        if self.fully_released:
            return ReleaseState.FULL_RELEASED
        if self.released_amount > 0:
            return ReleaseState.PARTIAL_RELEASED
        return ReleaseState.UNRELEASED


def derive_status(
    record: LedgerIssueRecord, pending: Optional[PendingOperation] = None
) -> Status:
    """Map a ledger record (and an unconfirmed write, if any) to a Status."""
    if record.fully_released:
        return Status.FULLY_REWARDED
    if record.released_amount > 0:
        return Status.PARTIALLY_REWARDED
    if record.solution_verified:
        return Status.SOLUTION_VERIFIED
    if record.circuit_registered:
        if pending == PendingOperation.SUBMIT_SOLUTION:
            return Status.SOLUTION_PENDING
        return Status.CIRCUIT_REGISTERED
    if pending in (PendingOperation.REGISTER_CIRCUIT, PendingOperation.CREATE_ISSUE):
        return Status.CIRCUIT_REGISTRATION_PENDING
    return Status.OPENED
