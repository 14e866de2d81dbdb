"""
Pool lifecycle events.

The pool emits one event per committed effect (a stake, a claim, a close,
an accumulator catch-up, an admin action). Listeners such as the metrics
exporter subscribe by event name; the bus also keeps a short history that
the RPC exposes for inspection.
"""
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)

POSITION_STAKED = 'position_staked'
REWARDS_CLAIMED = 'rewards_claimed'
POSITION_UNSTAKED = 'position_unstaked'
POOL_UPDATED = 'pool_updated'
POOL_PAUSED = 'pool_paused'
POOL_UNPAUSED = 'pool_unpaused'
FEES_WITHDRAWN = 'fees_withdrawn'
EMERGENCY_WITHDRAWN = 'emergency_withdrawn'

EVENT_TYPES = frozenset({
    POSITION_STAKED,
    REWARDS_CLAIMED,
    POSITION_UNSTAKED,
    POOL_UPDATED,
    POOL_PAUSED,
    POOL_UNPAUSED,
    FEES_WITHDRAWN,
    EMERGENCY_WITHDRAWN,
})


@dataclass
class PoolEvent:
    seq: int
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)


class EventBus:
    """
    Synchronous pub/sub for pool events.

    Emitting happens after the pool has committed, so a listener that raises
    is logged and skipped; it can neither roll back nor block the operation.
    """

    def __init__(self, history_size: int = 256):
        self.listeners: Dict[str, List[Callable]] = {t: [] for t in EVENT_TYPES}
        self.history: Deque[PoolEvent] = deque(maxlen=history_size)
        self._seq = 0

    def _check(self, event_type: str):
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown pool event: {event_type}")

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Register `callback(**data)` for one event name.

        Raises:
            ValueError: for names the pool never emits
        """
        self._check(event_type)
        self.listeners[event_type].append(callback)
        logger.debug(f"Listener added for {event_type}")

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        self._check(event_type)
        if callback in self.listeners[event_type]:
            self.listeners[event_type].remove(callback)
        else:
            logger.warning(f"Listener for {event_type} was not subscribed")

    def emit(self, event_type: str, **data: Any) -> PoolEvent:
        self._check(event_type)
        self._seq += 1
        event = PoolEvent(seq=self._seq, event_type=event_type, data=data)
        self.history.append(event)

        for callback in list(self.listeners[event_type]):
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Listener for {event_type} failed: {e}", exc_info=True)
        return event

    def recent(self, event_type: Optional[str] = None, limit: int = 50) -> List[PoolEvent]:
        """Newest-last slice of the history, optionally for one event name."""
        if event_type is not None:
            self._check(event_type)
        events = [e for e in self.history if event_type is None or e.event_type == event_type]
        return events[-limit:] if limit > 0 else []

    def clear(self, event_type: Optional[str] = None) -> None:
        """Drop listeners for one event name, or all listeners and the history."""
        if event_type is not None:
            self._check(event_type)
            self.listeners[event_type] = []
            return
        for name in self.listeners:
            self.listeners[name] = []
        self.history.clear()


event_bus = EventBus()
