"""Authoritative stake store, its secondary indices and the undo journal."""
from typing import Any, Callable, Dict, List, MutableMapping, MutableSequence, Optional

from loguru import logger

from .errors import NotFound
from .stake import ParticipantAccount, Stake


class Transaction:
    """Undo journal for one engine operation.

    Every mutation goes through the journal so that a failure anywhere in
    the operation, including a failed payout, restores the exact prior
    state.
    """

    def __init__(self):
        self._undo: List[Callable[[], None]] = []

    def set(self, obj: Any, name: str, value: Any) -> None:
        old = getattr(obj, name)
        self._undo.append(lambda: setattr(obj, name, old))
        setattr(obj, name, value)

    def append(self, seq: MutableSequence, item: Any) -> None:
        seq.append(item)
        self._undo.append(seq.pop)

    def put(self, mapping: MutableMapping, key: Any, value: Any) -> None:
        if key in mapping:
            old = mapping[key]
            self._undo.append(lambda: mapping.__setitem__(key, old))
        else:
            self._undo.append(lambda: mapping.pop(key))
        mapping[key] = value

    def rollback(self) -> None:
        while self._undo:
            self._undo.pop()()

    def __len__(self) -> int:
        return len(self._undo)


class StakeLedger:
    """Stake records keyed by id plus indices by participant and by reference.

    Records are never deleted. Ids start at 1 and are never reused.
    """

    def __init__(self):
        self.stakes: Dict[int, Stake] = {}
        self.accounts: Dict[str, ParticipantAccount] = {}
        self.by_reference: Dict[str, List[int]] = {}
        self.next_id = 1

    def get(self, stake_id: int) -> Stake:
        stake = self.stakes.get(stake_id)
        if stake is None:
            raise NotFound(f"Stake {stake_id} does not exist")
        return stake

    def account(self, principal: str) -> Optional[ParticipantAccount]:
        return self.accounts.get(principal)

    def ensure_account(self, txn: Transaction, principal: str) -> ParticipantAccount:
        account = self.accounts.get(principal)
        if account is None:
            account = ParticipantAccount(principal=principal)
            txn.put(self.accounts, principal, account)
        return account

    def insert(self, txn: Transaction, stake: Stake) -> None:
        """Store a new stake and append it to every index."""
        if stake.id != self.next_id:
            raise ValueError(f"Expected stake id {self.next_id}, got {stake.id}")
        txn.set(self, "next_id", self.next_id + 1)
        txn.put(self.stakes, stake.id, stake)

        account = self.ensure_account(txn, stake.staker)
        txn.append(account.owned_stake_ids, stake.id)

        # Duplicate references index the stake once per occurrence
        for ref in stake.referenced_ids:
            if ref not in self.by_reference:
                txn.put(self.by_reference, ref, [])
            txn.append(self.by_reference[ref], stake.id)
        logger.debug(f"Indexed stake {stake.id} under {len(stake.referenced_ids)} references")

    def ids_for_reference(self, referenced_id: str) -> List[int]:
        return list(self.by_reference.get(referenced_id, []))

    def ids_for_participant(self, principal: str) -> List[int]:
        account = self.accounts.get(principal)
        return list(account.owned_stake_ids) if account else []

    def __len__(self) -> int:
        return len(self.stakes)
