"""Shared test fixtures."""

import pytest
from langgraph.store.memory import InMemoryStore

from fakes import PROOF_BYTES, FakeArtifacts, FakeLedger, FakeRepository
from zkbot.bot import ZkBot
from zkbot.config import BotConfig
from zkbot.memory import IssueMemory


@pytest.fixture
def config():
    return BotConfig(
        github_token="test-token",
        verifier_contract_address="0x" + "11" * 20,
        ledger_confirmation_timeout=1.0,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def memory(store):
    return IssueMemory(store)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def artifacts():
    return FakeArtifacts({"bafy456": PROOF_BYTES})


@pytest.fixture
def repository():
    return FakeRepository()


@pytest.fixture
def bot(config, store, ledger, artifacts, repository):
    """A bot wired to in-memory doubles."""
    bot = ZkBot(config)
    bot.set_up(store=store, ledger=ledger, artifacts=artifacts, repository=repository)
    return bot
