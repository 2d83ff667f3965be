"""
Notifications emitted when a sync completes.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional


logger = logging.getLogger(__name__)


class AppEvent(str, Enum):
    META_DIFF_SYNC = "META_DIFF_SYNC"


@dataclass
class SyncEvent:
    """Payload delivered to listeners."""

    event: AppEvent
    workspace_id: str
    base_id: str
    source_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


Listener = Callable[[SyncEvent], Any]


class AppHooks:
    """Registry of event listeners. Listener failures are logged, never raised."""

    def __init__(self):
        self._listeners: Dict[AppEvent, List[Listener]] = {}

    def on(self, event: AppEvent, listener: Listener) -> None:
        self._listeners.setdefault(event, []).append(listener)

    def off(self, event: AppEvent, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    async def emit(self, payload: SyncEvent) -> None:
        for listener in list(self._listeners.get(payload.event, [])):
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Listener for {payload.event.value} failed: {e}")
