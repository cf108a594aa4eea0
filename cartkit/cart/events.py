"""Cart lifecycle notifications."""
from enum import Enum
from typing import Any, Iterable, List, Protocol

from cartkit.logging import get_logger

logger = get_logger(__name__)


class CartEvent(str, Enum):
    """Lifecycle notifications emitted by CartStore."""
    BEFORE_ADD = "cart.adding"
    AFTER_ADD = "cart.added"
    BEFORE_UPDATE = "cart.updating"
    AFTER_UPDATE = "cart.updated"
    BEFORE_REMOVE = "cart.removing"
    AFTER_REMOVE = "cart.removed"
    STORED = "cart.stored"
    RESTORED = "cart.restored"
    ERASED = "cart.erased"
    DELETED = "cart.deleted"
    MERGED = "cart.merged"


class CartObserver(Protocol):
    """Anything that wants to hear about cart mutations."""

    def notify(self, event: CartEvent, payload: Any) -> None:
        ...


class EventDispatcher:
    """
    Fan-out to registered observers.

    Observer failures are logged and swallowed: a broken listener must
    never fail the cart operation that triggered it.
    """

    def __init__(self, observers: Iterable[CartObserver] = ()) -> None:
        self._observers: List[CartObserver] = list(observers)

    def subscribe(self, observer: CartObserver) -> None:
        self._observers.append(observer)

    def unsubscribe(self, observer: CartObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def notify(self, event: CartEvent, payload: Any = None) -> None:
        for observer in list(self._observers):
            try:
                observer.notify(event, payload)
            except Exception:
                logger.warning(
                    "Cart observer %s failed on %s",
                    type(observer).__name__,
                    event.value,
                    exc_info=True,
                )
