"""Core staking engine."""
from .auth import AuthorizationRegistry
from .config import GlobalParameters, format_amount, load_parameters, to_base_units
from .engine import StakingEngine
from .errors import (
    AuthorizationError,
    ResourceError,
    StakingError,
    StateError,
    TransferError,
    ValidationError,
)
from .events import CompositeNotifier, LogNotifier, MemoryNotifier, Notifier, WebhookNotifier
from .ledger import StakeLedger
from .stake import ParticipantAccount, ParticipantStats, Stake, StakeStatus
from .transfer import LocalTreasury, ValueTransfer

__all__ = [
    "AuthorizationRegistry",
    "AuthorizationError",
    "CompositeNotifier",
    "GlobalParameters",
    "LocalTreasury",
    "LogNotifier",
    "MemoryNotifier",
    "Notifier",
    "ParticipantAccount",
    "ParticipantStats",
    "ResourceError",
    "Stake",
    "StakeLedger",
    "StakeStatus",
    "StakingEngine",
    "StakingError",
    "StateError",
    "TransferError",
    "ValidationError",
    "ValueTransfer",
    "WebhookNotifier",
    "format_amount",
    "load_parameters",
    "to_base_units",
]
