"""Error kinds raised by zkbot components.

Every error a user can cause (or observe) derives from BotError and knows
how to describe itself as an issue comment. The router turns these into
comments; anything else is a programming error and propagates.
"""

from typing import Optional


class BotError(Exception):
    """Base class for errors that are reported back on the issue."""

    def comment(self) -> str:
        return str(self)


class ValidationError(BotError):
    """Missing or malformed command arguments or issue fields."""

    def comment(self) -> str:
        return f"Invalid request: {self}"


class AuthorizationError(BotError):
    """The acting user may not perform this transition."""


class InvalidTransition(BotError):
    """The issue is not in a state that allows the requested transition."""


class LedgerError(BotError):
    """Base class for ledger failures."""


class LedgerRejected(LedgerError):
    """The ledger reverted the transaction."""

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash

    def comment(self) -> str:
        return f"The ledger rejected the transaction: {self.reason}"


class LedgerUnavailable(LedgerError):
    """The ledger node could not be reached. Nothing was submitted."""

    def comment(self) -> str:
        return f"The ledger is unavailable, nothing was submitted: {self}"


class LedgerTimeout(LedgerError):
    """Confirmation was not observed in time. The outcome is unknown."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"transaction {tx_hash} not confirmed after {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout

    def comment(self) -> str:
        return (
            f"Transaction `{self.tx_hash}` is still pending on the ledger. "
            "Its outcome will be picked up on the next status check; "
            "please do not resubmit."
        )


class ArtifactUnavailable(BotError):
    """The content address could not be resolved or decoded."""

    def comment(self) -> str:
        return f"Could not fetch the artifact: {self}"


class MalformedProof(BotError):
    """The proof payload lacks required components."""

    def comment(self) -> str:
        return f"Malformed proof: {self}"


class RepositoryMutationFailure(BotError):
    """A GitHub write failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
