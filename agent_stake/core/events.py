"""Lifecycle events and the notifiers that publish them."""
from abc import ABC, abstractmethod
from typing import Callable, List, Literal, Optional, Union

from loguru import logger
from pydantic import BaseModel


class StakeCreated(BaseModel):
    event: Literal["StakeCreated"] = "StakeCreated"
    id: int
    staker: str
    referenced_ids: List[str]
    amount: int
    rationale: str


class StakeResolved(BaseModel):
    event: Literal["StakeResolved"] = "StakeResolved"
    id: int
    staker: str
    successful: bool
    reward_amount: int


class StakeSlashed(BaseModel):
    event: Literal["StakeSlashed"] = "StakeSlashed"
    id: int
    staker: str
    slash_amount: int
    slasher: str


class RewardsClaimed(BaseModel):
    event: Literal["RewardsClaimed"] = "RewardsClaimed"
    staker: str
    amount: int


class StakeWithdrawn(BaseModel):
    event: Literal["StakeWithdrawn"] = "StakeWithdrawn"
    id: int
    staker: str
    amount: int


Event = Union[StakeCreated, StakeResolved, StakeSlashed, RewardsClaimed, StakeWithdrawn]


class Notifier(ABC):
    """Receives events after an operation has committed."""

    @abstractmethod
    def notify(self, event: Event) -> None:
        """Deliver one event."""


class LogNotifier(Notifier):
    def notify(self, event: Event) -> None:
        logger.info(f"{event.event}: {event.model_dump_json(exclude={'event'})}")


class MemoryNotifier(Notifier):
    """Keeps every event in order, optionally forwarding to a callback."""

    def __init__(self, callback: Optional[Callable[[Event], None]] = None):
        self.events: List[Event] = []
        self.callback = callback

    def notify(self, event: Event) -> None:
        self.events.append(event)
        if self.callback:
            self.callback(event)

    def of_type(self, name: str) -> List[Event]:
        return [e for e in self.events if e.event == name]


class WebhookNotifier(Notifier):
    """POSTs each event as JSON to an indexer endpoint."""

    def __init__(self, url: str, timeout: float = 5.0, session=None):
        import requests

        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify(self, event: Event) -> None:
        response = self.session.post(
            self.url,
            data=event.model_dump_json(),
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()


class CompositeNotifier(Notifier):
    """Fans each event out to several notifiers; one failing does not stop the rest."""

    def __init__(self, notifiers: List[Notifier] = None):
        self.notifiers: List[Notifier] = list(notifiers or [])

    def notify(self, event: Event) -> None:
        for notifier in self.notifiers:
            try:
                notifier.notify(event)
            except Exception as e:
                logger.error(f"{type(notifier).__name__} failed for {event.event}: {e}")
