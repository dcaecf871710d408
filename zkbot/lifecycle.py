"""Issue-to-bounty lifecycle.

Drives each issue through

    Opened -> CircuitRegistrationPending -> CircuitRegistered
           -> SolutionPending -> SolutionVerified
           -> PartiallyRewarded -> FullyRewarded

The current state is always re-derived from the ledger (plus any
transaction still awaiting confirmation), never from process memory.
Handlers for one issue run under that issue's lock; the router takes it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import Any, Dict, Optional, Tuple

from web3 import Web3

from .commands import (
    ADD_CIRCUITS,
    BOUNTY_AMOUNT_MARKER,
    CIRCUIT_ID_MARKER,
    CONTRIBUTOR_MARKER,
    HERE_IS_PROVE,
    WALLET_MARKER,
    Command,
    help_text,
    instructions_text,
    parse_command,
    parse_issue_fields,
)
from .config import BotConfig
from .errors import (
    AuthorizationError,
    InvalidTransition,
    LedgerError,
    LedgerTimeout,
    RepositoryMutationFailure,
    ValidationError,
)
from .events import (
    IssueCommentCreated,
    IssueOpened,
    PullRequestClosed,
    SolutionVerifiedNotification,
)
from .ledger import TX_CONFIRMED, TX_DROPPED, TX_PENDING
from .memory import IssueMemory
from .models import LedgerReceipt, ReplyTarget, SolutionSubmission
from .state import (
    LedgerIssueRecord,
    PendingOperation,
    Status,
    can_transition,
    derive_status,
)

logger = logging.getLogger(__name__)

VERIFIED_STATES = (
    Status.SOLUTION_VERIFIED,
    Status.PARTIALLY_REWARDED,
    Status.FULLY_REWARDED,
)


def solution_branch(issue_id: int, contributor_login: Optional[str] = None) -> str:
    if contributor_login:
        return f"solution-{issue_id}-{contributor_login}"
    return f"solution-{issue_id}"


def pull_request_body(
    issue_id: int, content_address: str, contributor_wallet: Optional[str] = None
) -> str:
    body = (
        f"This PR contains the verified solution for Issue #{issue_id}\n\n"
        f"IPFS CID: {content_address}"
    )
    if contributor_wallet:
        body += f"\n{CONTRIBUTOR_MARKER} {contributor_wallet}"
    return body


def _ether(amount_wei: int) -> str:
    return f"{Web3.from_wei(amount_wei, 'ether').normalize():f}"


class IssueLocks:
    """One asyncio.Lock per issue id, dropped once nobody holds or awaits it."""

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, issue_id: int):
        lock = self._locks.setdefault(issue_id, asyncio.Lock())
        self._waiters[issue_id] = self._waiters.get(issue_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[issue_id] -= 1
            if not self._waiters[issue_id]:
                del self._waiters[issue_id]
                del self._locks[issue_id]

    def __len__(self) -> int:
        return len(self._locks)


class BountyLifecycle:
    """Maps inbound events to lifecycle transitions for a single issue."""

    def __init__(
        self,
        config: BotConfig,
        ledger,
        artifacts,
        repository,
        memory: IssueMemory,
    ):
        """Initialize the lifecycle.

        Args:
            config: Bot configuration.
            ledger: LedgerGateway (or a double with the same coroutines).
            artifacts: ArtifactStoreClient.
            repository: RepositoryMutator.
            memory: Durable per-issue store.
        """
        self.config = config
        self.ledger = ledger
        self.artifacts = artifacts
        self.repository = repository
        self.memory = memory
        self.locks = IssueLocks()

    # ==========================================
    # Event handlers
    # ==========================================

    async def handle_issue_opened(self, event: IssueOpened) -> None:
        """Post instructions; fund the issue if its body already says how."""
        issue_id = event.issue_id
        target = event.reply_target
        await self.memory.save_reply_target(issue_id, target)
        await self._comment(target, instructions_text(self.config.command_prefix))

        fields = parse_issue_fields(event.issue.body)
        if not fields.has_any_registration_field:
            return
        if not fields.has_registration:
            missing = [
                marker
                for marker, value in (
                    (CIRCUIT_ID_MARKER, fields.circuit_id),
                    (BOUNTY_AMOUNT_MARKER, fields.bounty_amount),
                    (WALLET_MARKER, fields.wallet),
                )
                if value is None
            ]
            raise ValidationError(
                f"missing or malformed field(s): {', '.join(missing)}"
            )

        status, _, pending = await self._load(issue_id)
        self._require(status, pending, Status.CIRCUIT_REGISTRATION_PENDING, "fund this issue")
        self._log_transition(issue_id, status, Status.CIRCUIT_REGISTRATION_PENDING)

        receipt = await self._submit(
            issue_id,
            PendingOperation.CREATE_ISSUE,
            self.ledger.create_issue(
                issue_id, fields.circuit_id, fields.bounty_amount, fields.wallet
            ),
        )
        self._log_transition(issue_id, Status.CIRCUIT_REGISTRATION_PENDING, Status.CIRCUIT_REGISTERED)
        await self._comment(
            target,
            f"Issue registered on-chain with id {receipt.assigned_id}. "
            f"A bounty of {fields.bounty_amount} is escrowed for circuit "
            f"`{fields.circuit_id}`.",
        )

    async def handle_issue_comment(self, event: IssueCommentCreated) -> None:
        command = parse_command(event.comment.body, self.config.command_prefix)
        if command is None:
            return

        await self.memory.save_reply_target(event.issue_id, event.reply_target)

        if command.verb == ADD_CIRCUITS:
            await self._add_circuits(event, command)
        elif command.verb == HERE_IS_PROVE:
            await self._here_is_prove(event, command)
        else:
            await self._comment(event.reply_target, help_text(self.config.command_prefix))

    async def handle_solution_verified(self, event: SolutionVerifiedNotification) -> None:
        """Finish a solution the ledger has verified.

        This is also the reconciliation pass: it opens a PR or issues the
        partial release when an earlier attempt did not get that far.
        """
        issue_id = event.issue_id
        if await self.memory.get_reply_target(issue_id) is None:
            logger.warning(f"No reply target recorded for issue {issue_id}, ignoring")
            return

        if event.contributor:
            if not Web3.is_address(event.contributor):
                raise ValidationError(f"`{event.contributor}` is not a wallet address")
            solution = await self.memory.get_solution(issue_id)
            if solution is None:
                solution = SolutionSubmission(content_address=event.content_address or "")
            if solution.contributor_wallet is None:
                await self.memory.save_solution(
                    issue_id,
                    replace(
                        solution,
                        contributor_wallet=Web3.to_checksum_address(event.contributor),
                    ),
                )

        # Settling a pending submission here may already complete the solution
        status, _, pending = await self._load(issue_id)
        if status != Status.SOLUTION_VERIFIED or pending is not None:
            logger.info(
                f"Issue {issue_id} is {status.value}, nothing to complete",
                extra={"issue_id": issue_id, "pending": pending},
            )
            return

        await self._complete_verified_solution(issue_id)

    async def handle_pull_request_closed(self, event: PullRequestClosed) -> None:
        """Trigger the full release when the solution PR is merged."""
        if not event.pull_request.merged:
            logger.info(f"Pull request #{event.pull_request.number} closed without merge")
            return

        issue_id = event.issue_id
        target = event.reply_target
        status, _, pending = await self._load(issue_id)
        if status == Status.FULLY_REWARDED:
            logger.info(f"Bounty for issue {issue_id} already fully released")
            return
        self._require(status, pending, Status.FULLY_REWARDED, "release the full bounty")

        await self._submit(
            issue_id,
            PendingOperation.FULL_RELEASE,
            self.ledger.trigger_full_bounty_release(issue_id),
        )
        self._log_transition(issue_id, status, Status.FULLY_REWARDED)
        await self._comment(
            target, f"Full bounty release has been triggered for Issue #{issue_id}"
        )

    async def issue_status(self, issue_id: int) -> Dict[str, Any]:
        """Reconcile pending transactions and report the derived status."""
        status, record, pending = await self._load(issue_id)
        stored = await self.memory.get_pending(issue_id)
        return {
            "issue_id": issue_id,
            "status": status.value,
            "release_state": record.release_state.value,
            "pending": stored if pending is not None else None,
        }

    # ==========================================
    # Commands
    # ==========================================

    async def _add_circuits(self, event: IssueCommentCreated, command: Command) -> None:
        issue_id = event.issue_id
        content_address = command.arg(0)
        if not content_address:
            raise ValidationError(
                f"usage: `{self.config.command_prefix} {ADD_CIRCUITS} [IPFS_CID] [VERIFIER_ADDRESS]`"
            )
        verifier = command.arg(1) or self.config.verifier_address
        if not Web3.is_address(verifier):
            raise ValidationError(f"`{verifier}` is not a verifier contract address")
        if event.comment.user.login != event.issue.user.login:
            raise AuthorizationError("Only the issue creator can add circuits.")

        status, _, pending = await self._load(issue_id)
        self._require(status, pending, Status.CIRCUIT_REGISTRATION_PENDING, "add circuits")
        self._log_transition(issue_id, status, Status.CIRCUIT_REGISTRATION_PENDING)

        receipt = await self._submit(
            issue_id,
            PendingOperation.REGISTER_CIRCUIT,
            self.ledger.register_circuit(
                issue_id,
                f"Circuit for Issue #{issue_id}",
                f"Circuit for GitHub issue #{issue_id}",
                content_address,
                Web3.to_checksum_address(verifier),
            ),
        )
        self._log_transition(issue_id, Status.CIRCUIT_REGISTRATION_PENDING, Status.CIRCUIT_REGISTERED)

        message = f"Circuits with IPFS CID {content_address} have been registered on-chain."
        if receipt.assigned_id is not None:
            message += f" Circuit id: {receipt.assigned_id}."
        await self._comment(event.reply_target, message)

    async def _here_is_prove(self, event: IssueCommentCreated, command: Command) -> None:
        issue_id = event.issue_id
        target = event.reply_target
        login = event.comment.user.login
        content_address = command.arg(0)
        if not content_address:
            raise ValidationError(
                f"usage: `{self.config.command_prefix} {HERE_IS_PROVE} [IPFS_CID]`"
            )
        fields = parse_issue_fields(event.comment.body)
        if CONTRIBUTOR_MARKER in fields.malformed:
            raise ValidationError(f"`{CONTRIBUTOR_MARKER}` must be a wallet address")

        status, _, pending = await self._load(issue_id)

        if status == Status.SOLUTION_VERIFIED and pending is None:
            # The verified contributor may still supply the wallet for the partial release
            solution = await self.memory.get_solution(issue_id)
            if (
                fields.contributor_wallet
                and solution is not None
                and solution.contributor_login == login
                and solution.contributor_wallet is None
            ):
                await self.memory.save_solution(
                    issue_id, replace(solution, contributor_wallet=fields.contributor_wallet)
                )
                await self._complete_verified_solution(issue_id, target)
                return

        if status in VERIFIED_STATES:
            raise InvalidTransition("A solution for this issue has already been verified.")
        self._require(status, pending, Status.SOLUTION_PENDING, "submit a solution")

        payload, proof = await self.artifacts.fetch_proof(content_address)

        # Recorded first so a late confirmation can still credit the contributor
        await self.memory.save_solution(
            issue_id,
            SolutionSubmission(
                content_address=content_address,
                contributor_login=login,
                contributor_wallet=fields.contributor_wallet,
            ),
        )
        self._log_transition(issue_id, status, Status.SOLUTION_PENDING)

        await self._submit(
            issue_id,
            PendingOperation.SUBMIT_SOLUTION,
            self.ledger.submit_solution(issue_id, content_address, proof),
        )
        self._log_transition(issue_id, Status.SOLUTION_PENDING, Status.SOLUTION_VERIFIED)

        message = f"Solution with IPFS CID {content_address} has been submitted and verified on-chain."
        try:
            message += f" SHA Hash: {await self.ledger.get_solution_hash(issue_id)}"
        except LedgerError as e:
            logger.warning(f"Could not read the solution hash for issue {issue_id}: {e}")
        await self._comment(target, message)
        await self._complete_verified_solution(issue_id, target, payload)

    # ==========================================
    # Post-verification
    # ==========================================

    async def _complete_verified_solution(
        self,
        issue_id: int,
        target: Optional[ReplyTarget] = None,
        payload: Optional[bytes] = None,
    ) -> None:
        """Open the solution PR and issue the partial release, whichever is missing."""
        target = target or await self.memory.get_reply_target(issue_id)
        if target is None:
            logger.error(f"No reply target for verified issue {issue_id}")
            return

        record = await self.ledger.get_issue_record(issue_id)
        status = derive_status(record)
        if status != Status.SOLUTION_VERIFIED:
            logger.info(f"Issue {issue_id} is {status.value}, skipping completion")
            return

        solution = await self.memory.get_solution(issue_id)
        content_address = record.solution_cid or (solution.content_address if solution else "")
        login = solution.contributor_login if solution else None
        wallet = solution.contributor_wallet if solution else None

        if await self.memory.get_pull_request(issue_id) is None:
            if payload is None:
                payload = await self.artifacts.fetch(content_address)
            try:
                await self._open_solution_pr(issue_id, target, content_address, payload, login, wallet)
            except RepositoryMutationFailure as e:
                # The ledger side is final; only the PR is missing
                logger.error(
                    f"Solution for issue {issue_id} verified but PR creation failed: {e}",
                    extra={"issue_id": issue_id, "content_address": content_address},
                )
                await self._comment(
                    target,
                    "The solution is verified on-chain, but opening the pull request "
                    f"failed: {e}. The ledger state is final; the pull request will be "
                    "opened by the next reconciliation pass or by an operator.",
                )
                return

        if wallet is None:
            mention = f"@{login}" if login else "The contributor"
            await self._comment(
                target,
                f"{mention}, the partial bounty is waiting for a wallet. Reply with "
                f"`{self.config.command_prefix} {HERE_IS_PROVE} {content_address}` "
                f"and a `{CONTRIBUTOR_MARKER} <wallet address>` line to receive it.",
            )
            return

        await self._release_partial(issue_id, target, wallet, login)

    async def _open_solution_pr(
        self,
        issue_id: int,
        target: ReplyTarget,
        content_address: str,
        payload: bytes,
        login: Optional[str],
        wallet: Optional[str],
    ) -> None:
        repo = target.repo
        base = self.config.base_branch
        branch = solution_branch(issue_id, login)

        await self.repository.create_branch(repo, base, branch)
        await self.repository.put_file(
            repo,
            f"{self.config.solutions_dir}/issue-{issue_id}-solution.json",
            payload,
            branch,
            f"Add solution for issue #{issue_id}",
        )
        pr = await self.repository.open_pull_request(
            repo,
            branch,
            base,
            f"Solution for Issue #{issue_id}",
            pull_request_body(issue_id, content_address, wallet),
        )
        await self.memory.save_pull_request(issue_id, pr["number"], pr.get("html_url", ""))
        logger.info(f"Created PR #{pr['number']} for Issue #{issue_id}")

        message = f"Opened pull request #{pr['number']} with the verified solution."
        if login:
            message += f" @{login} has submitted a verified solution for this issue."
        await self._comment(target, message)

    async def _release_partial(
        self, issue_id: int, target: ReplyTarget, wallet: str, login: Optional[str]
    ) -> None:
        bounty = await self.ledger.get_bounty_amount(issue_id)
        amount = bounty * self.config.partial_release_percent // 100
        if amount <= 0:
            logger.warning(f"Issue {issue_id} has no bounty to release")
            return

        await self._submit(
            issue_id,
            PendingOperation.RELEASE_BOUNTY,
            self.ledger.release_bounty(issue_id, wallet, amount),
        )
        self._log_transition(issue_id, Status.SOLUTION_VERIFIED, Status.PARTIALLY_REWARDED)
        recipient = f"@{login}" if login else wallet
        await self._comment(
            target,
            f"A partial bounty of {_ether(amount)} has been allocated to {recipient} "
            "for their verified solution.",
        )

    # ==========================================
    # State and ledger plumbing
    # ==========================================

    async def _load(
        self, issue_id: int
    ) -> Tuple[Status, LedgerIssueRecord, Optional[PendingOperation]]:
        """Settle any pending transaction, then derive the status from the ledger."""
        pending_op = None
        pending = await self.memory.get_pending(issue_id)
        if pending:
            operation = PendingOperation(pending["operation"])
            outcome = await self.ledger.transaction_status(pending["tx_hash"])
            if outcome == TX_PENDING:
                pending_op = operation
            else:
                await self.memory.clear_pending(issue_id)
                await self._settle(issue_id, operation, pending["tx_hash"], outcome)

        record = await self.ledger.get_issue_record(issue_id)
        return derive_status(record, pending_op), record, pending_op

    async def _settle(
        self, issue_id: int, operation: PendingOperation, tx_hash: str, outcome: str
    ) -> None:
        """Report the late outcome of a transaction that timed out earlier."""
        logger.info(
            f"Pending {operation.value} for issue {issue_id} settled: {outcome}",
            extra={"issue_id": issue_id, "tx_hash": tx_hash},
        )
        target = await self.memory.get_reply_target(issue_id)
        if target is not None:
            if outcome == TX_CONFIRMED:
                message = f"Transaction `{tx_hash}` ({operation.value}) has been confirmed."
            elif outcome == TX_DROPPED:
                message = (
                    f"Transaction `{tx_hash}` ({operation.value}) was dropped by the "
                    "ledger node and never mined. You may retry."
                )
            else:
                message = (
                    f"Transaction `{tx_hash}` ({operation.value}) was reverted by the "
                    "ledger. You may retry."
                )
            await self._comment(target, message)

        if outcome == TX_CONFIRMED and operation == PendingOperation.SUBMIT_SOLUTION:
            await self._complete_verified_solution(issue_id, target)

    async def _submit(
        self, issue_id: int, operation: PendingOperation, call
    ) -> LedgerReceipt:
        """Await a ledger write, recording it as pending if confirmation times out."""
        try:
            return await call
        except LedgerTimeout as e:
            await self.memory.save_pending(issue_id, operation, e.tx_hash)
            raise

    @staticmethod
    def _require(
        status: Status,
        pending: Optional[PendingOperation],
        target: Status,
        action: str,
    ) -> None:
        if pending is not None:
            raise InvalidTransition(
                f"Cannot {action}: a {pending.value} transaction is still pending "
                "on the ledger."
            )
        if not can_transition(status, target):
            raise InvalidTransition(
                f"Cannot {action} while the issue is {status.value.replace('_', ' ')}."
            )

    @staticmethod
    def _log_transition(issue_id: int, current: Status, new: Status) -> None:
        logger.info(
            f"Issue {issue_id}: {current.value} -> {new.value}",
            extra={"issue_id": issue_id, "from_status": current.value, "to_status": new.value},
        )

    async def _comment(self, target: ReplyTarget, body: str) -> None:
        """Post a comment; failures are logged, never raised."""
        try:
            await self.repository.post_comment(target, body)
        except RepositoryMutationFailure as e:
            logger.error(
                f"Failed to comment on {target.repo.full_name}#{target.issue_number}: {e}"
            )
