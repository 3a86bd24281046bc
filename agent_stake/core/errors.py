"""Error taxonomy for the staking engine."""


class StakingError(Exception):
    """Base class for every error raised by the staking engine."""


class ValidationError(StakingError):
    """Malformed or out-of-range input."""


class AuthorizationError(StakingError):
    """Caller lacks the role required for the operation."""


class StateError(StakingError):
    """Operation is not valid for the current lifecycle state."""


class TransferError(StakingError):
    """Inbound or outbound payment failed."""


class ResourceError(StakingError):
    """Not enough held value to honour a payout."""


class AmountTooLow(ValidationError):
    pass


class AmountTooHigh(ValidationError):
    pass


class InsufficientReferences(ValidationError):
    pass


class EmptyRationale(ValidationError):
    pass


class PaymentMismatch(ValidationError):
    pass


class InvalidParameters(ValidationError):
    pass


class NotFound(ValidationError):
    pass


class Unauthorized(AuthorizationError):
    pass


class NotOwner(AuthorizationError):
    """Caller is not the staker that owns the stake."""


class NotActive(StateError):
    pass


class NotResolved(StateError):
    pass


class LockNotElapsed(StateError):
    pass


class CreationSuspended(StateError):
    pass


class NoRewardsDue(StateError):
    pass


class TransferFailed(TransferError):
    pass


class InsufficientReserve(ResourceError):
    pass


class ReentrantCall(StateError):
    """A mutating call was made while another one is still in progress."""
