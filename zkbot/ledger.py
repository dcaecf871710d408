"""Gateway to the bounty contracts.

Three contracts are involved:
- ZKCodeReview: circuits, solutions and the per-issue record
- ZKReviewDAO: bounty escrow and partial releases
- GitHubBot: full release once the solution PR is merged

Every write is signed by the bot's account, submitted, and awaited until a
receipt arrives. The gateway never deduplicates: the ledger is the
authority on duplicate registrations and releases.

LedgerUnavailable means nothing left the bot. Once a signed transaction
may have reached the node, any failure is a LedgerTimeout carrying its hash.
"""

import asyncio
import logging
from dataclasses import replace
from decimal import Decimal
from typing import Any, Iterable, Optional, Tuple

from web3 import Web3
from web3.exceptions import (
    ContractLogicError,
    TimeExhausted,
    TransactionNotFound,
    Web3RPCError,
)
from web3.logs import DISCARD

from .config import BotConfig
from .errors import LedgerRejected, LedgerTimeout, LedgerUnavailable
from .models import LedgerReceipt, Proof
from .state import LedgerIssueRecord

logger = logging.getLogger(__name__)

TX_CONFIRMED = "confirmed"
TX_REVERTED = "reverted"
TX_PENDING = "pending"
TX_DROPPED = "dropped"


def _params(items: Iterable[Tuple[str, str]]) -> list:
    return [{"type": type_, "name": name} for type_, name in items]


def _function(name, inputs, outputs=(), mutability="nonpayable") -> dict:
    return {
        "type": "function",
        "name": name,
        "inputs": _params(inputs),
        "outputs": _params(outputs),
        "stateMutability": mutability,
    }


def _event(name, inputs) -> dict:
    return {
        "type": "event",
        "name": name,
        "anonymous": False,
        "inputs": [
            {"type": type_, "name": name_, "indexed": indexed}
            for type_, name_, indexed in inputs
        ],
    }


ZK_REVIEW_ABI = [
    _function(
        "registerCircuit",
        [
            ("uint256", "issueId"),
            ("string", "name"),
            ("string", "description"),
            ("string", "ipfsCid"),
            ("address", "verifier"),
        ],
        [("uint256", "circuitId")],
    ),
    _function(
        "submitSolution",
        [
            ("uint256", "issueId"),
            ("string", "ipfsCid"),
            ("uint256[2]", "a"),
            ("uint256[2][2]", "b"),
            ("uint256[2]", "c"),
            ("uint256[]", "input"),
        ],
    ),
    _function(
        "getIssue",
        [("uint256", "issueId")],
        [
            ("uint256", "ledgerId"),
            ("bool", "circuitRegistered"),
            ("string", "circuitId"),
            ("address", "creator"),
            ("uint256", "bountyAmount"),
            ("bool", "solutionVerified"),
            ("string", "solutionCid"),
            ("uint256", "releasedAmount"),
            ("bool", "fullyReleased"),
        ],
        mutability="view",
    ),
    _function(
        "getSHAHash",
        [("uint256", "issueId")],
        [("bytes32", "solutionHash")],
        mutability="view",
    ),
    _event(
        "CircuitRegistered",
        [("uint256", "circuitId", True), ("uint256", "issueId", True)],
    ),
]

DAO_ABI = [
    _function(
        "createIssue",
        [
            ("uint256", "githubIssueId"),
            ("string", "circuitId"),
            ("uint256", "bountyAmount"),
            ("address", "creator"),
        ],
        [("uint256", "issueId")],
    ),
    _function(
        "getBountyAmount",
        [("uint256", "issueId")],
        [("uint256", "amount")],
        mutability="view",
    ),
    _function(
        "releaseBounty",
        [("uint256", "issueId"), ("address", "recipient"), ("uint256", "amount")],
    ),
    _event(
        "IssueCreated",
        [("uint256", "issueId", True), ("uint256", "githubIssueId", True)],
    ),
]

GITHUB_BOT_ABI = [
    _function("triggerBountyRelease", [("uint256", "issueId")]),
]


def _revert_reason(error: Exception) -> str:
    reason = getattr(error, "message", None) or str(error)
    return reason or "execution reverted"


class LedgerGateway:
    """Submit bounty transactions and read the per-issue ledger record."""

    def __init__(
        self,
        w3: Web3,
        account: Any,
        zk_review: Any,
        dao: Any,
        github_bot: Any,
        confirmation_timeout: float = 120.0,
        chain_id: Optional[int] = None,
    ):
        """Initialize the gateway.

        Args:
            w3: Connected Web3 instance.
            account: Local signing account (eth_account LocalAccount).
            zk_review: ZKCodeReview contract handle.
            dao: ZKReviewDAO contract handle.
            github_bot: GitHubBot contract handle.
            confirmation_timeout: Seconds to wait for a receipt.
            chain_id: Optional chain id stamped on transactions.
        """
        self.w3 = w3
        self.account = account
        self.zk_review = zk_review
        self.dao = dao
        self.github_bot = github_bot
        self.confirmation_timeout = confirmation_timeout
        self.chain_id = chain_id
        # Serialises nonce assignment for the single signing account
        self._send_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: BotConfig) -> "LedgerGateway":
        w3 = Web3(Web3.HTTPProvider(config.provider_url, request_kwargs={"timeout": 30}))
        account = w3.eth.account.from_key(config.wallet_private_key)

        def contract(address: str, abi: list):
            return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)

        return cls(
            w3=w3,
            account=account,
            zk_review=contract(config.zk_review_contract_address, ZK_REVIEW_ABI),
            dao=contract(config.dao_contract_address, DAO_ABI),
            github_bot=contract(config.github_bot_contract_address, GITHUB_BOT_ABI),
            confirmation_timeout=config.ledger_confirmation_timeout,
            chain_id=config.chain_id,
        )

    # ==========================================
    # Writes
    # ==========================================

    async def register_circuit(
        self,
        issue_id: int,
        name: str,
        description: str,
        content_address: str,
        verifier: str,
    ) -> LedgerReceipt:
        fn = self.zk_review.functions.registerCircuit(
            issue_id, name, description, content_address, verifier
        )
        receipt = await self._transact("registerCircuit", fn)
        return self._with_assigned_id(
            receipt, self.zk_review.events.CircuitRegistered, "circuitId"
        )

    async def create_issue(
        self, issue_id: int, circuit_id: str, amount: Decimal, creator_wallet: str
    ) -> LedgerReceipt:
        """Open the issue on the ledger, escrowing amount (in ether)."""
        amount_wei = Web3.to_wei(amount, "ether")
        fn = self.dao.functions.createIssue(issue_id, circuit_id, amount_wei, creator_wallet)
        receipt = await self._transact("createIssue", fn)
        receipt = self._with_assigned_id(receipt, self.dao.events.IssueCreated, "issueId")
        if receipt.assigned_id is None:
            return replace(receipt, assigned_id=issue_id)
        return receipt

    async def submit_solution(
        self, issue_id: int, content_address: str, proof: Proof
    ) -> LedgerReceipt:
        fn = self.zk_review.functions.submitSolution(
            issue_id, content_address, *proof.as_args()
        )
        return await self._transact("submitSolution", fn)

    async def release_bounty(
        self, issue_id: int, recipient: str, amount: int
    ) -> LedgerReceipt:
        """Release amount (in wei) of the escrowed bounty to recipient."""
        fn = self.dao.functions.releaseBounty(issue_id, recipient, amount)
        return await self._transact("releaseBounty", fn)

    async def trigger_full_bounty_release(self, issue_id: int) -> LedgerReceipt:
        fn = self.github_bot.functions.triggerBountyRelease(issue_id)
        return await self._transact("triggerBountyRelease", fn)

    # ==========================================
    # Reads
    # ==========================================

    async def get_issue_record(self, issue_id: int) -> LedgerIssueRecord:
        fields = await self._call(self.zk_review.functions.getIssue(issue_id))
        (
            ledger_id,
            circuit_registered,
            circuit_id,
            creator,
            bounty_amount,
            solution_verified,
            solution_cid,
            released_amount,
            fully_released,
        ) = fields
        return LedgerIssueRecord(
            issue_id=issue_id,
            ledger_id=int(ledger_id),
            circuit_registered=bool(circuit_registered),
            circuit_id=circuit_id,
            creator_wallet=creator,
            bounty_amount=int(bounty_amount),
            solution_verified=bool(solution_verified),
            solution_cid=solution_cid,
            released_amount=int(released_amount),
            fully_released=bool(fully_released),
        )

    async def get_bounty_amount(self, issue_id: int) -> int:
        return int(await self._call(self.dao.functions.getBountyAmount(issue_id)))

    async def get_solution_hash(self, issue_id: int) -> str:
        """Hash the ledger recorded for the verified solution, as hex."""
        value = await self._call(self.zk_review.functions.getSHAHash(issue_id))
        return Web3.to_hex(value) if isinstance(value, (bytes, bytearray)) else str(value)

    async def transaction_status(self, tx_hash: str) -> str:
        """Check a previously submitted transaction without waiting.

        Returns:
            "confirmed" or "reverted" once mined, "pending" while the node
            still holds it, and "dropped" when the node no longer knows it or
            its nonce has been used by another transaction.
        """
        try:
            return await asyncio.to_thread(self._transaction_status, tx_hash)
        except OSError as e:
            raise LedgerUnavailable(str(e)) from e

    def _transaction_status(self, tx_hash: str) -> str:
        try:
            receipt = self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            pass
        else:
            return TX_CONFIRMED if receipt["status"] == 1 else TX_REVERTED

        try:
            tx = self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return TX_DROPPED

        mined_nonce = self.w3.eth.get_transaction_count(tx["from"], "latest")
        if mined_nonce > tx["nonce"]:
            # Nonce consumed but this hash has no receipt: it was replaced
            return TX_DROPPED
        return TX_PENDING

    # ==========================================
    # Internals
    # ==========================================

    async def _call(self, fn) -> Any:
        try:
            return await asyncio.to_thread(fn.call)
        except ContractLogicError as e:
            raise LedgerRejected(_revert_reason(e)) from e
        except OSError as e:
            raise LedgerUnavailable(str(e)) from e

    def _sign_and_send(self, fn) -> str:
        sender = self.account.address
        try:
            tx = fn.build_transaction(
                {
                    "from": sender,
                    "nonce": self.w3.eth.get_transaction_count(sender, "pending"),
                }
            )
        except ContractLogicError as e:
            raise LedgerRejected(_revert_reason(e)) from e
        except OSError as e:
            raise LedgerUnavailable(str(e)) from e

        if self.chain_id:
            tx["chainId"] = self.chain_id

        signed = self.account.sign_transaction(tx)
        try:
            raw_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except (ContractLogicError, Web3RPCError) as e:
            raise LedgerRejected(_revert_reason(e)) from e
        except OSError as e:
            # The node may have accepted it before the connection failed
            tx_hash = Web3.to_hex(signed.hash)
            logger.warning(f"Send of {tx_hash} failed in transit: {e}")
            raise LedgerTimeout(tx_hash, self.confirmation_timeout) from e
        return Web3.to_hex(raw_hash)

    async def _transact(self, label: str, fn) -> LedgerReceipt:
        async with self._send_lock:
            tx_hash = await asyncio.to_thread(self._sign_and_send, fn)

        logger.info(f"Submitted {label} transaction {tx_hash}")

        try:
            receipt = await asyncio.to_thread(
                self.w3.eth.wait_for_transaction_receipt,
                tx_hash,
                timeout=self.confirmation_timeout,
            )
        except (TimeExhausted, OSError) as e:
            # Submitted but unobserved: the outcome is unknown, never resubmit
            logger.warning(f"{label} transaction {tx_hash} unconfirmed: {e}")
            raise LedgerTimeout(tx_hash, self.confirmation_timeout) from e

        if receipt["status"] != 1:
            logger.warning(f"{label} transaction {tx_hash} reverted")
            raise LedgerRejected(f"{label} transaction reverted", tx_hash=tx_hash)

        logger.info(
            f"Confirmed {label} transaction {tx_hash}",
            extra={"block_number": receipt.get("blockNumber")},
        )
        return LedgerReceipt(
            tx_hash=tx_hash,
            block_number=receipt.get("blockNumber"),
            logs=list(receipt.get("logs", [])),
        )

    def _with_assigned_id(self, receipt: LedgerReceipt, event, arg: str) -> LedgerReceipt:
        entries = event().process_receipt({"logs": receipt.logs}, errors=DISCARD)
        for entry in entries:
            return replace(receipt, assigned_id=int(entry["args"][arg]))
        return receipt
