"""Integration tests for the agent-stake command line."""
import json
import pytest
from click.testing import CliRunner
from agent_stake.core.config import to_base_units
from agent_stake.core.stake import StakeStatus
from agent_stake.core.store import load_state
from agent_stake.core.events import CompositeNotifier, LogNotifier, WebhookNotifier
from agent_stake.main import build_notifier, cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path):
    return tmp_path / "state"


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "stake.yaml"
    path.write_text(
        "parameters:\n"
        "  min_stake: \"0.01\"\n"
        "  max_stake: \"0.5\"\n"
        "  reward_multiplier: 1500\n"
        "  slash_penalty: 2000\n"
        "  lock_duration: 0\n"
    )
    return path


@pytest.fixture
def invoke(runner, state_dir):
    def _invoke(*args, **kwargs):
        return runner.invoke(cli, ["--state-dir", str(state_dir), *args], obj={}, **kwargs)
    return _invoke


@pytest.fixture
def initialized(invoke, config_file):
    result = invoke("init", "--owner", "alice", "--config", str(config_file))
    assert result.exit_code == 0, result.output
    assert invoke("wallet", "deposit", "alice", "1").exit_code == 0
    assert invoke("wallet", "deposit", "bob", "1").exit_code == 0
    assert invoke("fund", "--as", "alice", "0.1").exit_code == 0
    return invoke


def test_init_refuses_to_overwrite(initialized, config_file):
    result = initialized("init", "--owner", "mallory")
    assert result.exit_code == 1
    result = initialized("init", "--owner", "mallory", "--force")
    assert result.exit_code == 0


def test_commands_need_state(invoke):
    result = invoke("stats", "bob")
    assert result.exit_code == 1


def test_full_lifecycle(initialized, state_dir):
    result = initialized("stake", "--as", "bob", "--ref", "intent1", "--ref", "intent2",
                         "--amount", "0.05", "--rationale", "These users should connect")
    assert result.exit_code == 0, result.output
    assert "Created stake #1" in result.output

    result = initialized("resolve", "--as", "alice", "1", "--success")
    assert result.exit_code == 0, result.output
    assert "reward 0.0075" in result.output

    result = initialized("claim", "--as", "bob")
    assert result.exit_code == 0, result.output
    assert "Claimed 0.0075" in result.output

    result = initialized("withdraw", "--as", "bob", "1")
    assert result.exit_code == 0, result.output

    result = initialized("wallet", "balance", "bob")
    assert "bob balance: 1.0075" in result.output

    engine, treasury = load_state(state_dir / "state.json")
    assert engine.get_stake(1).status == StakeStatus.WITHDRAWN
    assert treasury.balance_of("bob") == to_base_units("1.0075")


def test_rejected_stake_exits_with_error(initialized, state_dir):
    result = initialized("stake", "--as", "bob", "--ref", "a", "--ref", "b",
                         "--amount", "0.005", "--rationale", "too small")
    assert result.exit_code == 1
    engine, _ = load_state(state_dir / "state.json")
    assert engine.stake_count == 0


def test_invalid_amount(initialized):
    result = initialized("fund", "--as", "alice", "lots")
    assert result.exit_code == 2


def test_slash_and_stats(initialized):
    initialized("stake", "--as", "bob", "--ref", "a", "--ref", "b", "--amount", "0.05", "--rationale", "r")
    initialized("stake", "--as", "bob", "--ref", "c", "--ref", "d", "--amount", "0.1", "--rationale", "r")

    result = initialized("stats", "bob")
    assert "Total staked:    0.15" in result.output
    assert "Active stakes:   2" in result.output

    result = initialized("slash", "--as", "carol", "1", "--reason", "spam")
    assert result.exit_code == 1

    assert initialized("slasher", "add", "--as", "alice", "carol").exit_code == 0
    result = initialized("slash", "--as", "carol", "1", "--reason", "spam")
    assert result.exit_code == 0, result.output
    assert "penalty 0.01" in result.output

    result = initialized("stats", "bob")
    assert "Total staked:    0.1" in result.output
    assert "Active stakes:   1" in result.output

    result = initialized("show", "1")
    assert "SLASHED" in result.output
    assert "spam" in result.output


def test_list_stakes(initialized):
    initialized("stake", "--as", "bob", "--ref", "a", "--ref", "b", "--amount", "0.05", "--rationale", "r")
    result = initialized("list", "--ref", "b")
    assert "#1" in result.output
    result = initialized("list", "--participant", "nobody")
    assert "No stakes found" in result.output
    result = initialized("list")
    assert result.exit_code == 2


def test_suspend_and_resume(initialized):
    assert initialized("suspend", "--as", "alice").exit_code == 0
    result = initialized("stake", "--as", "bob", "--ref", "a", "--ref", "b", "--amount", "0.05", "--rationale", "r")
    assert result.exit_code == 1
    assert initialized("resume", "--as", "alice").exit_code == 0
    result = initialized("stake", "--as", "bob", "--ref", "a", "--ref", "b", "--amount", "0.05", "--rationale", "r")
    assert result.exit_code == 0


def test_params_update_and_show(initialized):
    result = initialized("params", "update", "--as", "alice", "--min-stake", "0.02", "--max-stake", "1",
                         "--reward-multiplier", "1000", "--slash-penalty", "500")
    assert result.exit_code == 0, result.output
    result = initialized("params", "show")
    assert "Min stake:         0.02" in result.output
    assert "Reward multiplier: 1000 bp" in result.output

    result = initialized("params", "update", "--as", "alice", "--min-stake", "2", "--max-stake", "1",
                         "--reward-multiplier", "1000", "--slash-penalty", "500")
    assert result.exit_code == 1


def test_emergency_withdraw(initialized, state_dir):
    result = initialized("emergency-withdraw", "--as", "alice", "--yes")
    assert result.exit_code == 0, result.output
    assert "Drained 0.1 to alice" in result.output
    result = initialized("summary")
    assert "Held balance:        0" in result.output


def test_state_file_is_readable_json(initialized, state_dir):
    data = json.loads((state_dir / "state.json").read_text())
    assert data["engine"]["owner"] == "alice"
    assert data["treasury"]["balances"]["bob"] == to_base_units("1")


def test_notifier_logs_by_default(monkeypatch):
    monkeypatch.delenv("AGENT_STAKE_WEBHOOK_URL", raising=False)
    assert isinstance(build_notifier(), LogNotifier)


def test_notifier_adds_webhook_from_environment(monkeypatch):
    monkeypatch.setenv("AGENT_STAKE_WEBHOOK_URL", "http://indexer.local/events")
    notifier = build_notifier()
    assert isinstance(notifier, CompositeNotifier)
    assert [type(n) for n in notifier.notifiers] == [LogNotifier, WebhookNotifier]
    assert notifier.notifiers[1].url == "http://indexer.local/events"


def test_lock_is_released_between_commands(initialized, state_dir, invoke):
    assert (state_dir / "state.json.lock").exists()
    result = invoke("wallet", "balance", "owner")
    assert result.exit_code == 0
