"""Value custody collaborators."""
from abc import ABC, abstractmethod
from typing import Dict, Optional

from loguru import logger
from pydantic import BaseModel, Field


class ValueTransfer(ABC):
    """Moves value between principals and the engine.

    Both directions report success synchronously. A False return (or an
    exception) is treated by the engine as a failed transfer and the whole
    operation is rolled back.
    """

    @abstractmethod
    def receive(self, payer: str, amount: int) -> bool:
        """Take an attached payment of amount from payer into custody."""

    @abstractmethod
    def send(self, recipient: str, amount: int) -> bool:
        """Push amount out of custody to recipient."""


class TreasuryState(BaseModel):
    """Serializable wallet balances of a LocalTreasury."""
    balances: Dict[str, int] = Field(default_factory=dict)


class LocalTreasury(ValueTransfer):
    """In-process wallets for every principal.

    Used by the command line and in tests. Payments fail when the payer's
    wallet is short, never by raising.
    """

    def __init__(self, state: Optional[TreasuryState] = None):
        self.state = state or TreasuryState()

    def balance_of(self, principal: str) -> int:
        return self.state.balances.get(principal, 0)

    def deposit(self, principal: str, amount: int) -> int:
        """Credit a wallet from outside the system. Returns the new balance."""
        if amount <= 0:
            raise ValueError("Deposit amount must be positive")
        self.state.balances[principal] = self.balance_of(principal) + amount
        return self.state.balances[principal]

    def receive(self, payer: str, amount: int) -> bool:
        balance = self.balance_of(payer)
        if balance < amount:
            logger.warning(f"Wallet of {payer} holds {balance}, cannot pay {amount}")
            return False
        self.state.balances[payer] = balance - amount
        return True

    def send(self, recipient: str, amount: int) -> bool:
        self.state.balances[recipient] = self.balance_of(recipient) + amount
        return True
