"""Stake lifecycle and rewards/slashing accounting engine."""
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Sequence, Set

from loguru import logger

from .auth import AuthorizationRegistry
from .config import GlobalParameters, apply_bp, format_amount
from .errors import (
    AmountTooHigh,
    AmountTooLow,
    CreationSuspended,
    EmptyRationale,
    InsufficientReferences,
    InsufficientReserve,
    InvalidParameters,
    LockNotElapsed,
    NoRewardsDue,
    NotActive,
    NotOwner,
    NotResolved,
    PaymentMismatch,
    ReentrantCall,
    StakingError,
    TransferFailed,
)
from .events import (
    Event,
    LogNotifier,
    Notifier,
    RewardsClaimed,
    StakeCreated,
    StakeResolved,
    StakeSlashed,
    StakeWithdrawn,
)
from .ledger import StakeLedger, Transaction
from .stake import ParticipantStats, Stake, StakeStatus
from .transfer import ValueTransfer

MIN_REFERENCES = 2


class StakingEngine:
    """Owns the ledger, participant aggregates and held value.

    Every mutating call runs under one lock inside a journalled
    transaction: either all of its effects land or none do. A mutating
    call made while another is in progress, such as from a transfer
    callback, fails with ReentrantCall. Events are handed to the notifier
    only after the transaction has committed.
    """

    def __init__(self,
                 owner: str,
                 transfer: ValueTransfer,
                 parameters: Optional[GlobalParameters] = None,
                 notifier: Optional[Notifier] = None,
                 clock: Callable[[], float] = time.time,
                 validate_parameters: bool = True):
        """Initialize the engine.

        Args:
            owner: Principal allowed to run privileged operations
            transfer: Custody collaborator used for every payment
            parameters: Stake bounds and rates, defaults if omitted
            notifier: Receiver of lifecycle events, logs them if omitted
            clock: Source of the current time in seconds
            validate_parameters: Reject min_stake > max_stake on update
        """
        self.auth = AuthorizationRegistry(owner)
        self.transfer = transfer
        self.params = parameters or GlobalParameters()
        self.notifier = notifier or LogNotifier()
        self.clock = clock
        self.validate_parameters = validate_parameters
        self.ledger = StakeLedger()

        self.total_staked = 0
        self.total_rewards_distributed = 0
        self.held_balance = 0
        self.creation_suspended = False

        self._lock = threading.RLock()
        self._active: Optional[str] = None
        if self.validate_parameters:
            self._check_parameters(self.params)

    @classmethod
    def deploy(cls,
               owner: str,
               transfer: ValueTransfer,
               parameters: Optional[GlobalParameters] = None,
               initial_funding: int = 0,
               slashers: Sequence[str] = (),
               **kwargs) -> "StakingEngine":
        """Construct an engine, fund its reward reserve and authorize slashers.

        The funding is taken from the owner through transfer, like any
        other reserve funding.
        """
        engine = cls(owner=owner, transfer=transfer, parameters=parameters, **kwargs)
        if initial_funding:
            engine.fund_reserve(owner, initial_funding, attached_payment=initial_funding)
        for principal in slashers:
            engine.add_slasher(owner, principal)
        logger.info(f"Deployed staking engine owned by {owner}")
        return engine

    # ------------------------------------------------------------------
    # transaction plumbing

    @contextmanager
    def _atomic(self, operation: str) -> Iterator[Transaction]:
        with self._lock:
            # The lock is re-entrant so a transfer callback on the same
            # thread reaches this guard instead of deadlocking
            if self._active is not None:
                logger.warning(f"{operation} rejected: {self._active} still in progress")
                raise ReentrantCall(f"Cannot run {operation} while {self._active} is in progress")
            txn = Transaction()
            self._active = operation
            try:
                yield txn
            except StakingError as e:
                if len(txn):
                    logger.error(f"{operation} rolled back: {e}")
                else:
                    logger.warning(f"{operation} rejected: {e}")
                txn.rollback()
                raise
            except BaseException:
                logger.exception(f"{operation} failed unexpectedly, rolling back")
                txn.rollback()
                raise
            finally:
                self._active = None

    def _publish(self, events: Sequence[Event]) -> None:
        for event in events:
            try:
                self.notifier.notify(event)
            except Exception as e:
                # The operation has already committed
                logger.error(f"Notifier failed for {event.event}: {e}")

    def _now(self) -> int:
        return int(self.clock())

    def _pay_out(self, txn: Transaction, recipient: str, amount: int) -> None:
        """Release held value to recipient; the caller's changes are already journalled."""
        if amount > self.held_balance:
            raise TransferFailed(
                f"Cannot send {format_amount(amount)}, only {format_amount(self.held_balance)} held"
            )
        txn.set(self, "held_balance", self.held_balance - amount)
        try:
            ok = self.transfer.send(recipient, amount)
        except Exception as e:
            raise TransferFailed(f"Transfer of {amount} to {recipient} failed: {e}") from e
        if not ok:
            raise TransferFailed(f"Transfer of {amount} to {recipient} was refused")

    def _take_payment(self, txn: Transaction, payer: str, amount: int) -> None:
        try:
            ok = self.transfer.receive(payer, amount)
        except Exception as e:
            raise TransferFailed(f"Payment of {amount} from {payer} failed: {e}") from e
        if not ok:
            raise TransferFailed(f"Payment of {amount} from {payer} was refused")
        txn.set(self, "held_balance", self.held_balance + amount)

    def _adjust_active(self, txn: Transaction, stake: Stake, delta: int) -> None:
        account = self.ledger.ensure_account(txn, stake.staker)
        txn.set(account, "active_staked", account.active_staked + delta)
        txn.set(self, "total_staked", self.total_staked + delta)

    # ------------------------------------------------------------------
    # stake lifecycle

    def create_stake(self,
                     staker: str,
                     referenced_ids: Sequence[str],
                     amount: int,
                     rationale: str,
                     attached_payment: int) -> int:
        """Lock amount against a claim that the referenced items connect.

        Returns:
            Id of the new stake
        """
        events: List[Event] = []
        with self._atomic("create_stake") as txn:
            if self.creation_suspended:
                raise CreationSuspended("Stake creation is suspended")
            if attached_payment != amount:
                raise PaymentMismatch(f"Attached {attached_payment}, declared {amount}")
            if amount < self.params.min_stake:
                raise AmountTooLow(
                    f"Stake amount too low: {format_amount(amount)} < {format_amount(self.params.min_stake)}"
                )
            if amount > self.params.max_stake:
                raise AmountTooHigh(
                    f"Stake amount too high: {format_amount(amount)} > {format_amount(self.params.max_stake)}"
                )
            if isinstance(referenced_ids, str):
                raise InsufficientReferences("Referenced ids must be a sequence, not a single string")
            if len(referenced_ids) < MIN_REFERENCES:
                raise InsufficientReferences(
                    f"Need at least {MIN_REFERENCES} referenced ids, got {len(referenced_ids)}"
                )
            if not rationale:
                raise EmptyRationale("Rationale must not be empty")

            stake = Stake(
                id=self.ledger.next_id,
                staker=staker,
                referenced_ids=list(referenced_ids),
                amount=amount,
                rationale=rationale,
                created_at=self._now(),
            )
            self.ledger.insert(txn, stake)
            self._adjust_active(txn, stake, amount)
            self._take_payment(txn, staker, amount)
            events.append(StakeCreated(
                id=stake.id,
                staker=staker,
                referenced_ids=stake.referenced_ids,
                amount=amount,
                rationale=rationale,
            ))
        logger.info(f"Stake {stake.id} created by {staker} for {format_amount(amount)}")
        self._publish(events)
        return stake.id

    def _active_stake(self, stake_id: int) -> Stake:
        stake = self.ledger.get(stake_id)
        if stake.status != StakeStatus.ACTIVE:
            raise NotActive(f"Stake {stake_id} is {stake.status.name}, not ACTIVE")
        return stake

    def resolve_successful(self, caller: str, stake_id: int) -> int:
        """Mark a stake successful and accrue its reward. Returns the reward."""
        events: List[Event] = []
        with self._atomic("resolve_successful") as txn:
            self.auth.require_owner(caller, "resolve stakes")
            stake = self._active_stake(stake_id)
            reward = apply_bp(stake.amount, self.params.reward_multiplier)

            txn.set(stake, "status", StakeStatus.SUCCESSFUL)
            txn.set(stake, "reward_amount", reward)
            txn.set(stake, "resolved_at", self._now())
            account = self.ledger.ensure_account(txn, stake.staker)
            txn.set(account, "claimable_rewards", account.claimable_rewards + reward)
            txn.set(self, "total_rewards_distributed", self.total_rewards_distributed + reward)
            events.append(StakeResolved(
                id=stake.id, staker=stake.staker, successful=True, reward_amount=reward,
            ))
        logger.info(f"Stake {stake_id} resolved successful, reward {format_amount(reward)}")
        self._publish(events)
        return reward

    def resolve_failed(self, caller: str, stake_id: int) -> None:
        events: List[Event] = []
        with self._atomic("resolve_failed") as txn:
            self.auth.require_owner(caller, "resolve stakes")
            stake = self._active_stake(stake_id)
            txn.set(stake, "status", StakeStatus.FAILED)
            txn.set(stake, "resolved_at", self._now())
            events.append(StakeResolved(
                id=stake.id, staker=stake.staker, successful=False, reward_amount=0,
            ))
        logger.info(f"Stake {stake_id} resolved failed")
        self._publish(events)

    def slash(self, caller: str, stake_id: int, reason: str) -> int:
        """Slash an active stake. Returns the recorded penalty.

        The whole amount leaves active accounting and is never refunded;
        the penalty figure is only an audit record of the forfeited share.
        The forfeited value stays held and becomes part of the reserve.
        """
        events: List[Event] = []
        with self._atomic("slash") as txn:
            self.auth.require_slasher(caller)
            stake = self._active_stake(stake_id)
            penalty = apply_bp(stake.amount, self.params.slash_penalty)

            txn.set(stake, "status", StakeStatus.SLASHED)
            txn.set(stake, "slash_amount", penalty)
            txn.set(stake, "slash_reason", reason)
            txn.set(stake, "resolved_at", self._now())
            self._adjust_active(txn, stake, -stake.amount)
            events.append(StakeSlashed(
                id=stake.id, staker=stake.staker, slash_amount=penalty, slasher=caller,
            ))
        logger.info(f"Stake {stake_id} slashed by {caller} ({reason}), penalty {format_amount(penalty)}")
        self._publish(events)
        return penalty

    def withdraw(self, caller: str, stake_id: int) -> int:
        """Return a resolved stake's amount to its staker after the lock period."""
        events: List[Event] = []
        with self._atomic("withdraw") as txn:
            stake = self.ledger.get(stake_id)
            if caller != stake.staker:
                raise NotOwner(f"{caller} does not own stake {stake_id}")
            if not stake.status.is_resolved:
                raise NotResolved(f"Stake {stake_id} is {stake.status.name}, not resolved")
            unlock_at = stake.created_at + self.params.lock_duration
            if self._now() < unlock_at:
                raise LockNotElapsed(f"Stake {stake_id} is locked until {unlock_at}")

            txn.set(stake, "status", StakeStatus.WITHDRAWN)
            self._adjust_active(txn, stake, -stake.amount)
            self._pay_out(txn, stake.staker, stake.amount)
            events.append(StakeWithdrawn(id=stake.id, staker=stake.staker, amount=stake.amount))
        logger.info(f"Stake {stake_id} withdrawn by {caller}: {format_amount(stake.amount)}")
        self._publish(events)
        return stake.amount

    # ------------------------------------------------------------------
    # rewards

    def claim(self, staker: str) -> int:
        """Pay out the staker's whole claimable balance. Returns the amount paid."""
        events: List[Event] = []
        with self._atomic("claim") as txn:
            account = self.ledger.account(staker)
            amount = account.claimable_rewards if account else 0
            if amount <= 0:
                raise NoRewardsDue(f"No rewards due for {staker}")
            if self.reserve_balance < amount:
                raise InsufficientReserve(
                    f"Reserve {format_amount(self.reserve_balance)} cannot cover {format_amount(amount)}"
                )
            txn.set(account, "claimable_rewards", 0)
            self._pay_out(txn, staker, amount)
            events.append(RewardsClaimed(staker=staker, amount=amount))
        logger.info(f"{staker} claimed {format_amount(amount)} in rewards")
        self._publish(events)
        return amount

    # ------------------------------------------------------------------
    # authorization

    def add_slasher(self, caller: str, principal: str) -> bool:
        with self._atomic("add_slasher"):
            return self.auth.add_slasher(caller, principal)

    def remove_slasher(self, caller: str, principal: str) -> bool:
        with self._atomic("remove_slasher"):
            return self.auth.remove_slasher(caller, principal)

    def is_authorized_to_slash(self, principal: str) -> bool:
        with self._lock:
            return self.auth.is_authorized_to_slash(principal)

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        with self._atomic("transfer_ownership"):
            self.auth.transfer_ownership(caller, new_owner)

    # ------------------------------------------------------------------
    # administration

    def _check_parameters(self, params: GlobalParameters) -> None:
        if params.min_stake > params.max_stake:
            raise InvalidParameters(
                f"min_stake {format_amount(params.min_stake)} exceeds max_stake {format_amount(params.max_stake)}"
            )

    def update_parameters(self,
                          caller: str,
                          min_stake: int,
                          max_stake: int,
                          reward_multiplier: int,
                          slash_penalty: int) -> GlobalParameters:
        """Overwrite stake bounds and rates. The lock duration is kept."""
        with self._atomic("update_parameters") as txn:
            self.auth.require_owner(caller, "update parameters")
            try:
                params = GlobalParameters(
                    min_stake=min_stake,
                    max_stake=max_stake,
                    reward_multiplier=reward_multiplier,
                    slash_penalty=slash_penalty,
                    lock_duration=self.params.lock_duration,
                )
            except ValueError as e:
                raise InvalidParameters(str(e)) from e
            if self.validate_parameters:
                self._check_parameters(params)
            txn.set(self, "params", params)
        logger.info(f"Parameters updated: {params.model_dump()}")
        return params

    def fund_reserve(self, caller: str, amount: int, attached_payment: int) -> int:
        """Add value for reward payouts. Returns the new reserve balance."""
        with self._atomic("fund_reserve") as txn:
            self.auth.require_owner(caller, "fund the reserve")
            if amount <= 0:
                raise AmountTooLow("Funding amount must be positive")
            if attached_payment != amount:
                raise PaymentMismatch(f"Attached {attached_payment}, declared {amount}")
            self._take_payment(txn, caller, amount)
        logger.info(f"Reserve funded with {format_amount(amount)}")
        return self.reserve_balance

    def emergency_withdraw(self, caller: str) -> int:
        """Send every held unit to the owner. Returns the amount drained.

        Nothing protects outstanding claimable rewards or stakes awaiting
        withdrawal; afterwards those operations fail with TransferFailed
        until the engine is funded again.
        """
        with self._atomic("emergency_withdraw") as txn:
            self.auth.require_owner(caller, "drain held value")
            amount = self.held_balance
            if amount:
                self._pay_out(txn, caller, amount)
        logger.warning(f"Emergency withdrawal of {format_amount(amount)} to {caller}")
        return amount

    def set_creation_suspended(self, caller: str, suspended: bool) -> None:
        """Gate create_stake only. Resolution, slashing, withdrawal and claims keep working."""
        with self._atomic("set_creation_suspended") as txn:
            self.auth.require_owner(caller, "suspend stake creation")
            txn.set(self, "creation_suspended", bool(suspended))
        logger.info(f"Stake creation {'suspended' if suspended else 'resumed'}")

    # ------------------------------------------------------------------
    # queries

    @property
    def owner(self) -> str:
        return self.auth.owner

    @property
    def authorized_slashers(self) -> Set[str]:
        return self.auth.slashers

    @property
    def parameters(self) -> GlobalParameters:
        return self.params

    @property
    def is_creation_suspended(self) -> bool:
        return self.creation_suspended

    @property
    def reserve_balance(self) -> int:
        """Held value not owed back to stakes that are still counted as staked."""
        return max(self.held_balance - self.total_staked, 0)

    def get_stake(self, stake_id: int) -> Stake:
        with self._lock:
            return self.ledger.get(stake_id).model_copy(deep=True)

    def get_stake_ids_for_reference(self, referenced_id: str) -> List[int]:
        with self._lock:
            return self.ledger.ids_for_reference(referenced_id)

    def get_stake_ids_for_participant(self, principal: str) -> List[int]:
        with self._lock:
            return self.ledger.ids_for_participant(principal)

    def get_stakes_for_reference(self, referenced_id: str) -> List[Stake]:
        with self._lock:
            return [self.get_stake(i) for i in self.ledger.ids_for_reference(referenced_id)]

    def get_stakes_for_participant(self, principal: str) -> List[Stake]:
        with self._lock:
            return [self.get_stake(i) for i in self.ledger.ids_for_participant(principal)]

    def get_participant_stats(self, principal: str) -> ParticipantStats:
        """Aggregates for principal; the active count scans every stake it ever made."""
        with self._lock:
            account = self.ledger.account(principal)
            if account is None:
                return ParticipantStats(active_staked=0, claimable_rewards=0, active_stake_count=0)
            active_count = sum(
                1 for i in account.owned_stake_ids
                if self.ledger.stakes[i].status == StakeStatus.ACTIVE
            )
            return ParticipantStats(
                active_staked=account.active_staked,
                claimable_rewards=account.claimable_rewards,
                active_stake_count=active_count,
            )

    @property
    def stake_count(self) -> int:
        return len(self.ledger)
