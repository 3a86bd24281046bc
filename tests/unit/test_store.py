"""Unit tests for state persistence."""
import json
import pytest
from conftest import AGENT1, AGENT2, OWNER, SLASHER, units
from agent_stake.core.stake import StakeStatus
from agent_stake.core import store
from agent_stake.core.store import get_state_path, load_state, save_state, state_lock


def test_state_survives_save_and_load(engine, treasury, make_stake, clock, tmp_path):
    make_stake(AGENT1, amount="0.05", refs=("intent1", "intent2"))
    make_stake(AGENT2, amount="0.1", refs=("intent2", "intent3"))
    make_stake(AGENT1, amount="0.2")
    engine.resolve_successful(OWNER, 1)
    engine.slash(SLASHER, 2, "spam")
    engine.set_creation_suspended(OWNER, True)

    path = tmp_path / "state.json"
    save_state(engine, treasury, path)
    restored, restored_treasury = load_state(path)

    assert restored.owner == OWNER
    assert restored.authorized_slashers == {SLASHER}
    assert restored.params == engine.params
    assert restored.creation_suspended is True
    assert restored.stake_count == 3
    assert restored.get_stake(2).status == StakeStatus.SLASHED
    assert restored.get_stake(2).slash_reason == "spam"
    assert restored.get_stake_ids_for_reference("intent2") == [1, 2]
    assert restored.get_participant_stats(AGENT1) == engine.get_participant_stats(AGENT1)
    assert restored.total_staked == engine.total_staked
    assert restored.total_rewards_distributed == engine.total_rewards_distributed
    assert restored.held_balance == engine.held_balance
    assert restored_treasury.balance_of(AGENT1) == treasury.balance_of(AGENT1)

    # The restored engine keeps allocating fresh ids and paying out
    restored.set_creation_suspended(OWNER, False)
    assert restored.create_stake(AGENT2, ["a", "b"], units("0.05"), "r",
                                 attached_payment=units("0.05")) == 4
    assert restored.claim(AGENT1) == units("0.0075")


def test_saved_file_is_json(engine, treasury, make_stake, tmp_path):
    make_stake()
    path = tmp_path / "nested" / "state.json"
    save_state(engine, treasury, path)
    data = json.loads(path.read_text())
    assert data["engine"]["owner"] == OWNER
    assert data["engine"]["stakes"][0]["status"] == 0
    assert data["engine"]["stakes"][0]["amount"] == units("0.05")
    assert not path.with_suffix(".json.tmp").exists()


def test_load_missing_state(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_state(tmp_path / "state.json")


def test_state_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("AGENT_STAKE_HOME", str(tmp_path))
    assert get_state_path() == tmp_path / "state.json"
    assert get_state_path(tmp_path / "other") == tmp_path / "other" / "state.json"


def test_state_lock_creates_lock_beside_state(tmp_path):
    path = tmp_path / "home" / "state.json"
    with state_lock(path) as lock_path:
        assert lock_path == tmp_path / "home" / "state.json.lock"
        assert lock_path.exists()


def test_state_lock_without_fcntl(tmp_path, monkeypatch):
    monkeypatch.setattr(store, "HAS_FCNTL", False)
    path = tmp_path / "state.json"
    with state_lock(path) as lock_path:
        assert lock_path.read_text() != ""
        with pytest.raises(TimeoutError):
            with state_lock(path, timeout=0.1):
                pass
    assert not lock_path.exists()
