"""JSON persistence of engine and treasury state."""
import json
import os
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple, Union

from loguru import logger
from pydantic import BaseModel, Field

from .config import GlobalParameters, get_state_dir
from .engine import StakingEngine
from .events import Notifier
from .stake import ParticipantAccount, Stake
from .transfer import LocalTreasury, TreasuryState

STATE_FILE = "state.json"
LOCK_SUFFIX = ".lock"
LOCK_POLL_INTERVAL = 0.05

# Cross-platform file locking
HAS_FCNTL = False
try:
    import fcntl
    HAS_FCNTL = True
except ImportError:
    pass  # Windows - fall back to an exclusive lock file


class EngineState(BaseModel):
    """Everything needed to rebuild a StakingEngine."""
    owner: str
    slashers: List[str] = Field(default_factory=list)
    parameters: GlobalParameters
    validate_parameters: bool = True
    creation_suspended: bool = False
    next_id: int = 1
    stakes: List[Stake] = Field(default_factory=list)
    accounts: List[ParticipantAccount] = Field(default_factory=list)
    by_reference: Dict[str, List[int]] = Field(default_factory=dict)
    total_staked: int = 0
    total_rewards_distributed: int = 0
    held_balance: int = 0


class Snapshot(BaseModel):
    engine: EngineState
    treasury: TreasuryState = Field(default_factory=TreasuryState)


def dump_engine(engine: StakingEngine) -> EngineState:
    with engine._lock:
        ledger = engine.ledger
        return EngineState(
            owner=engine.owner,
            slashers=sorted(engine.authorized_slashers),
            parameters=engine.params,
            validate_parameters=engine.validate_parameters,
            creation_suspended=engine.creation_suspended,
            next_id=ledger.next_id,
            stakes=[ledger.stakes[i] for i in sorted(ledger.stakes)],
            accounts=list(ledger.accounts.values()),
            by_reference=ledger.by_reference,
            total_staked=engine.total_staked,
            total_rewards_distributed=engine.total_rewards_distributed,
            held_balance=engine.held_balance,
        ).model_copy(deep=True)


def restore_engine(state: EngineState,
                   transfer,
                   notifier: Optional[Notifier] = None,
                   **kwargs) -> StakingEngine:
    engine = StakingEngine(
        owner=state.owner,
        transfer=transfer,
        parameters=state.parameters,
        notifier=notifier,
        validate_parameters=state.validate_parameters,
        **kwargs
    )
    for principal in state.slashers:
        engine.auth.add_slasher(state.owner, principal)
    engine.creation_suspended = state.creation_suspended
    engine.ledger.next_id = state.next_id
    engine.ledger.stakes = {s.id: s for s in state.stakes}
    engine.ledger.accounts = {a.principal: a for a in state.accounts}
    engine.ledger.by_reference = {k: list(v) for k, v in state.by_reference.items()}
    engine.total_staked = state.total_staked
    engine.total_rewards_distributed = state.total_rewards_distributed
    engine.held_balance = state.held_balance
    return engine


def get_state_path(state_dir: Optional[Union[str, Path]] = None) -> Path:
    return Path(state_dir or get_state_dir()) / STATE_FILE


def save_state(engine: StakingEngine,
               treasury: LocalTreasury,
               path: Union[str, Path]) -> None:
    """Write a snapshot atomically (temp file + rename)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    snapshot = Snapshot(engine=dump_engine(engine), treasury=treasury.state)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, 'w') as f:
        json.dump(snapshot.model_dump(mode="json"), f, indent=2)
    os.replace(tmp_path, path)
    logger.debug(f"Saved state to {path}")


def load_state(path: Union[str, Path],
               notifier: Optional[Notifier] = None) -> Tuple[StakingEngine, LocalTreasury]:
    """Rebuild engine and treasury from a snapshot written by save_state."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"No staking state at {path}, run 'agent-stake init' first")
    with open(path) as f:
        data = json.load(f)
    snapshot = Snapshot(**data)
    treasury = LocalTreasury(snapshot.treasury)
    engine = restore_engine(snapshot.engine, treasury, notifier=notifier)
    logger.debug(f"Loaded {engine.stake_count} stakes from {path}")
    return engine, treasury


@contextmanager
def state_lock(path: Union[str, Path], timeout: float = 30.0) -> Iterator[Path]:
    """Hold an exclusive lock next to the state file, blocking until it is free.

    A session holds it from loading the snapshot until its save is done.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_path = path.with_suffix(path.suffix + LOCK_SUFFIX)
    if HAS_FCNTL:
        with open(lock_path, 'w') as lock_fd:
            fcntl.flock(lock_fd, fcntl.LOCK_EX)
            try:
                yield lock_path
            finally:
                fcntl.flock(lock_fd, fcntl.LOCK_UN)
        return

    deadline = time.monotonic() + timeout
    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            break
        except FileExistsError:
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Timed out waiting for {lock_path}")
            time.sleep(LOCK_POLL_INTERVAL)
    try:
        os.write(fd, str(os.getpid()).encode())
        yield lock_path
    finally:
        os.close(fd)
        os.remove(lock_path)


@contextmanager
def locked_state(path: Union[str, Path],
                 notifier: Optional[Notifier] = None,
                 save: bool = True) -> Iterator[Tuple[StakingEngine, LocalTreasury]]:
    """Load, hand out and (if the body succeeds) save state under state_lock."""
    with state_lock(path):
        engine, treasury = load_state(path, notifier=notifier)
        yield engine, treasury
        if save:
            save_state(engine, treasury, path)
