"""Comment command and issue-body field parsing.

Nothing in here raises on user input: a comment that is not a command
parses to None, an unknown verb parses to the help command, and missing
issue-body fields come back as None.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from web3 import Web3

ADD_CIRCUITS = "add-circuits"
HERE_IS_PROVE = "hereisprove"
HELP = "help"

VERBS = (ADD_CIRCUITS, HERE_IS_PROVE)

CIRCUIT_ID_MARKER = "Circuit ID:"
BOUNTY_AMOUNT_MARKER = "Bounty Amount:"
WALLET_MARKER = "Metamask ID:"
CONTRIBUTOR_MARKER = "Contributor:"
ISSUE_REFERENCE_MARKER = "Issue #"

_ISSUE_REFERENCE = re.compile(re.escape(ISSUE_REFERENCE_MARKER) + r"(\d+)")


def help_text(prefix: str = "/zkbot") -> str:
    return (
        "Unknown command. Available commands are:\n"
        f"- `{prefix} {ADD_CIRCUITS} [IPFS_CID] [VERIFIER_ADDRESS]`\n"
        f"- `{prefix} {HERE_IS_PROVE} [IPFS_CID]`"
    )


def instructions_text(prefix: str = "/zkbot") -> str:
    return (
        "Please provide the IPFS CID of the zk-circuits you have uploaded "
        "using the command:\n\n"
        f"`{prefix} {ADD_CIRCUITS} [IPFS_CID] [VERIFIER_ADDRESS]`\n\n"
        "Issues opened against an existing circuit are funded automatically "
        "when the body includes:\n"
        f"`{CIRCUIT_ID_MARKER} <id>`, `{BOUNTY_AMOUNT_MARKER} <amount>` "
        f"and `{WALLET_MARKER} <wallet address>`."
    )


@dataclass(frozen=True)
class Command:
    """A parsed bot command."""

    verb: str
    args: Tuple[str, ...] = ()

    def arg(self, index: int) -> Optional[str]:
        return self.args[index] if index < len(self.args) else None


@dataclass(frozen=True)
class IssueFields:
    """Structured fields found in an issue or comment body."""

    circuit_id: Optional[str] = None
    bounty_amount: Optional[Decimal] = None
    wallet: Optional[str] = None
    contributor_wallet: Optional[str] = None
    issue_reference: Optional[int] = None
    # Markers that were present but whose value did not parse
    malformed: List[str] = field(default_factory=list)

    @property
    def has_registration(self) -> bool:
        """True when everything needed to fund the issue on-chain is present."""
        return (
            self.circuit_id is not None
            and self.bounty_amount is not None
            and self.wallet is not None
        )

    @property
    def has_any_registration_field(self) -> bool:
        return any(
            value is not None
            for value in (self.circuit_id, self.bounty_amount, self.wallet)
        ) or any(
            marker in self.malformed
            for marker in (BOUNTY_AMOUNT_MARKER, WALLET_MARKER)
        )


def parse_command(body: Optional[str], prefix: str = "/zkbot") -> Optional[Command]:
    """Parse a comment body into a Command.

    Only the first line is considered. Returns None when the comment does
    not start with the command prefix.
    """
    if not body:
        return None
    lines = body.strip().splitlines()
    if not lines:
        return None
    tokens = lines[0].split()
    if not tokens or tokens[0] != prefix:
        return None
    if len(tokens) < 2 or tokens[1] not in VERBS:
        return Command(verb=HELP, args=tuple(tokens[1:2]))
    return Command(verb=tokens[1], args=tuple(tokens[2:]))


def extract_field(body: Optional[str], marker: str) -> Optional[str]:
    """Return the token following marker, or None if the marker is absent."""
    if not body:
        return None
    match = re.search(re.escape(marker) + r"[ \t]*(\S+)", body)
    return match.group(1) if match else None


def find_issue_reference(text: Optional[str]) -> Optional[int]:
    """Return the first `Issue #<n>` number in text."""
    if not text:
        return None
    match = _ISSUE_REFERENCE.search(text)
    return int(match.group(1)) if match else None


def _parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        amount = Decimal(raw)
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


def _parse_wallet(raw: Optional[str]) -> Optional[str]:
    if raw is None or not Web3.is_address(raw):
        return None
    return Web3.to_checksum_address(raw)


def parse_issue_fields(body: Optional[str]) -> IssueFields:
    """Extract the bounty fields from an issue (or comment) body."""
    malformed = []

    raw_amount = extract_field(body, BOUNTY_AMOUNT_MARKER)
    amount = _parse_amount(raw_amount)
    if raw_amount is not None and amount is None:
        malformed.append(BOUNTY_AMOUNT_MARKER)

    raw_wallet = extract_field(body, WALLET_MARKER)
    wallet = _parse_wallet(raw_wallet)
    if raw_wallet is not None and wallet is None:
        malformed.append(WALLET_MARKER)

    raw_contributor = extract_field(body, CONTRIBUTOR_MARKER)
    contributor = _parse_wallet(raw_contributor)
    if raw_contributor is not None and contributor is None:
        malformed.append(CONTRIBUTOR_MARKER)

    return IssueFields(
        circuit_id=extract_field(body, CIRCUIT_ID_MARKER),
        bounty_amount=amount,
        wallet=wallet,
        contributor_wallet=contributor,
        issue_reference=find_issue_reference(body),
        malformed=malformed,
    )
