"""Test configuration and fixtures for Agent Stake."""
import os
import pytest
from unittest.mock import MagicMock
from agent_stake.core.config import GlobalParameters, to_base_units
from agent_stake.core.engine import StakingEngine
from agent_stake.core.events import MemoryNotifier
from agent_stake.core.transfer import LocalTreasury, ValueTransfer

OWNER = "owner"
AGENT1 = "agent1"
AGENT2 = "agent2"
SLASHER = "slasher"
LOCK_DURATION = 3600


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


def units(amount: str) -> int:
    return to_base_units(amount)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def params():
    """Parameters of the reference deployment with a one hour lock."""
    return GlobalParameters(
        min_stake=units("0.01"),
        max_stake=units("0.5"),
        reward_multiplier=1500,
        slash_penalty=2000,
        lock_duration=LOCK_DURATION,
    )


@pytest.fixture
def treasury():
    """Local wallets with funds for every test principal."""
    treasury = LocalTreasury()
    for principal in (OWNER, AGENT1, AGENT2, SLASHER):
        treasury.deposit(principal, units("10"))
    return treasury


@pytest.fixture
def notifier():
    return MemoryNotifier()


@pytest.fixture
def engine(treasury, params, notifier, clock):
    """Engine funded with 0.1 of rewards and one authorized slasher."""
    return StakingEngine.deploy(
        owner=OWNER,
        transfer=treasury,
        parameters=params,
        initial_funding=units("0.1"),
        slashers=[SLASHER],
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def mock_transfer():
    """Transfer collaborator that accepts every payment."""
    transfer = MagicMock(spec=ValueTransfer)
    transfer.receive.return_value = True
    transfer.send.return_value = True
    return transfer


@pytest.fixture
def make_stake(engine):
    """Create a stake for a principal and return its id."""
    def _make(staker=AGENT1, amount="0.05", refs=("intent1", "intent2"), rationale="Test connection"):
        value = units(amount)
        return engine.create_stake(staker, list(refs), value, rationale, attached_payment=value)
    return _make


@pytest.fixture
def env_setup():
    """Set up environment variables for testing."""
    os.environ["AGENT_STAKE_LOG_LEVEL"] = "DEBUG"
    yield
    del os.environ["AGENT_STAKE_LOG_LEVEL"]
