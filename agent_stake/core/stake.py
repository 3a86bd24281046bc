"""Stake records and per-participant accounts."""
from enum import IntEnum
from typing import List, Optional

from pydantic import BaseModel, Field


class StakeStatus(IntEnum):
    """Lifecycle of a stake.

    ACTIVE moves exactly once to SUCCESSFUL, FAILED or SLASHED.
    SUCCESSFUL and FAILED stakes may then be WITHDRAWN. SLASHED is final.
    """
    ACTIVE = 0
    SUCCESSFUL = 1
    FAILED = 2
    SLASHED = 3
    WITHDRAWN = 4

    @property
    def is_resolved(self) -> bool:
        return self in (StakeStatus.SUCCESSFUL, StakeStatus.FAILED)

    @property
    def counts_as_staked(self) -> bool:
        return self not in (StakeStatus.SLASHED, StakeStatus.WITHDRAWN)


class Stake(BaseModel):
    """Value locked by a staker on a connection between referenced items."""
    id: int = Field(gt=0)
    staker: str
    referenced_ids: List[str]
    amount: int = Field(ge=0)
    rationale: str
    created_at: int
    status: StakeStatus = StakeStatus.ACTIVE
    reward_amount: int = 0
    slash_amount: int = 0
    slash_reason: Optional[str] = None
    resolved_at: Optional[int] = None


class ParticipantAccount(BaseModel):
    """Aggregates kept alongside the ledger for one principal."""
    principal: str
    active_staked: int = 0
    claimable_rewards: int = 0
    owned_stake_ids: List[int] = Field(default_factory=list)


class ParticipantStats(BaseModel):
    active_staked: int
    claimable_rewards: int
    active_stake_count: int
