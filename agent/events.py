"""
Agent status values and the status channel listeners subscribe to.
"""

import logging
from enum import Enum
from typing import Callable, List

logger = logging.getLogger(__name__)


class AgentStatus(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    ACTING = "acting"
    OBSERVING = "observing"
    INDEXING = "indexing"


StatusCallback = Callable[[AgentStatus], None]


class StatusChannel:
    """Publishes status transitions to subscribers. Publishing never suspends."""

    def __init__(self, initial: AgentStatus = AgentStatus.IDLE):
        self._current = initial
        self._subscribers: List[StatusCallback] = []
        self.history: List[AgentStatus] = []

    @property
    def current(self) -> AgentStatus:
        return self._current

    def subscribe(self, callback: StatusCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, status: AgentStatus) -> None:
        self._current = status
        self.history.append(status)
        for callback in list(self._subscribers):
            try:
                callback(status)
            except Exception as e:
                logger.warning(f"Status subscriber failed on {status.value}: {e}")
