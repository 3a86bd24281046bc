"""Owner and slasher authorization."""
from typing import Iterable, Optional, Set

from loguru import logger

from .errors import Unauthorized


class AuthorizationRegistry:
    """Tracks the owning principal and the principals allowed to slash."""

    def __init__(self, owner: str, slashers: Optional[Iterable[str]] = None):
        """Initialize the registry.

        Args:
            owner: Principal that owns the engine
            slashers: Principals authorized to slash in addition to the owner
        """
        if not owner:
            raise ValueError("Owner principal must not be empty")
        self._owner = owner
        self._slashers: Set[str] = set(slashers or ())

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def slashers(self) -> Set[str]:
        return set(self._slashers)

    def is_owner(self, principal: str) -> bool:
        return principal == self._owner

    def is_authorized_to_slash(self, principal: str) -> bool:
        """True if principal is the owner or an authorized slasher."""
        return self.is_owner(principal) or principal in self._slashers

    def require_owner(self, principal: str, action: str) -> None:
        if not self.is_owner(principal):
            raise Unauthorized(f"{principal} is not allowed to {action}: owner only")

    def require_slasher(self, principal: str) -> None:
        if not self.is_authorized_to_slash(principal):
            raise Unauthorized(f"{principal} is not authorized to slash")

    def add_slasher(self, caller: str, principal: str) -> bool:
        """Authorize principal to slash. Returns False if it already was."""
        self.require_owner(caller, "add slashers")
        if principal in self._slashers:
            return False
        self._slashers.add(principal)
        logger.info(f"Authorized slasher {principal}")
        return True

    def remove_slasher(self, caller: str, principal: str) -> bool:
        """Revoke principal's slashing right. Returns False if it had none."""
        self.require_owner(caller, "remove slashers")
        if principal not in self._slashers:
            return False
        self._slashers.discard(principal)
        logger.info(f"Revoked slasher {principal}")
        return True

    def transfer_ownership(self, caller: str, new_owner: str) -> None:
        self.require_owner(caller, "transfer ownership")
        if not new_owner:
            raise ValueError("New owner must not be empty")
        logger.info(f"Ownership transferred from {self._owner} to {new_owner}")
        self._owner = new_owner
