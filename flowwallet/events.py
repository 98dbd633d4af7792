"""In-process event dispatch for account additions and chain events."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountAddedPayload:
    address: str


class Event:
    """A named event whose handlers each run on their own thread."""

    def __init__(self, name: str, warn_if_unhandled: bool = False) -> None:
        self.name = name
        self.warn_if_unhandled = warn_if_unhandled
        self._handlers: list[Callable[..., Any]] = []
        self._lock = threading.Lock()

    def register(self, handler: Callable[..., Any]) -> None:
        """Add a handler for this event."""
        logger.debug("Registering %s event handler", self.name)
        with self._lock:
            self._handlers.append(handler)

    def trigger(self, *args: Any) -> list[threading.Thread]:
        """Dispatch the payload to every handler; return the started threads."""
        logger.debug("Handling %s event", self.name, extra={"payload": args})
        with self._lock:
            handlers = list(self._handlers)
        if not handlers and self.warn_if_unhandled:
            logger.warning("No listeners for %s events", self.name)
        threads = [
            threading.Thread(target=handler, args=args, daemon=True)
            for handler in handlers
        ]
        for thread in threads:
            thread.start()
        return threads


ACCOUNT_ADDED = Event("AccountAdded")
CHAIN_EVENT = Event("chain", warn_if_unhandled=True)