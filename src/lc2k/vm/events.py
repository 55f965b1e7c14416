"""LC-2K Engine Notifications

Named events are queued when the engine emits them and delivered to
listeners once the triggering state change is complete.
"""

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)

# Stop and lifecycle notifications
STOP_ON_ENTRY = 'stopOnEntry'
STOP_ON_STEP = 'stopOnStep'
STOP_ON_BREAKPOINT = 'stopOnBreakpoint'
STOP_ON_INSTRUCTION_BREAKPOINT = 'stopOnInstructionBreakpoint'
STOP_ON_DATA_BREAKPOINT = 'stopOnDataBreakpoint'
STOP_ON_EXCEPTION = 'stopOnException'
STOP_ON_PAUSE = 'stopOnPause'
BREAKPOINT_VERIFIED = 'breakpointVerified'
OUTPUT = 'output'
END = 'end'


class EventEmitter:
    """Observer registry with queued delivery."""

    def __init__(self, scheduler: Optional[Callable[[Callable[[], None]], Any]] = None):
        """Initialize the emitter.

        Args:
            scheduler: Optional callable that runs a callback later, such as
                ``loop.call_soon``. Without one, queued events are delivered
                by ``flush``.
        """
        self.scheduler = scheduler
        self.listeners: Dict[str, List[Callable]] = {}
        self.pending: Deque[Tuple[str, tuple]] = deque()

    def on(self, event: str, callback: Callable) -> None:
        self.listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback: Callable) -> None:
        callbacks = self.listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event: str, *args: Any) -> None:
        """Queue an event for delivery."""
        self.pending.append((event, args))
        if self.scheduler is not None and len(self.pending) == 1:
            self.scheduler(self.flush)

    def dispatch(self) -> None:
        """Deliver queued events now unless a scheduler delivers them."""
        if self.scheduler is None:
            self.flush()

    def flush(self) -> None:
        """Deliver every queued event in emission order."""
        while self.pending:
            event, args = self.pending.popleft()
            for callback in list(self.listeners.get(event, [])):
                try:
                    callback(*args)
                except Exception:
                    logger.exception("Listener for %s failed", event)
