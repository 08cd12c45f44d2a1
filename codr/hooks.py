"""
Hook registry for codr lifecycle events.

Each Session owns one HookRegistry. The agent loop and the transport emit
events at key lifecycle points; registered hooks receive the event data and
can optionally replace it by returning a new dict.

Usage:
    def my_hook(data):
        print(data["turn"])
        return data  # return modified data, or None to keep original

    session.hooks.register("turn_start", my_hook)
"""

import threading
from typing import Any, Callable, Dict, List

HookCallback = Callable[[Dict[str, Any]], Any]

EVENTS = (
    "turn_start", "turn_end", "turn_failed",
    "api_request", "api_response", "api_retry", "api_error",
    "tool_before", "tool_after",
    "session_save",
)


class HookRegistry:
    def __init__(self):
        self._hooks: Dict[str, List[HookCallback]] = {}
        # tool_after fires from worker threads when calls run concurrently
        self._lock = threading.Lock()

    def register(self, event: str, callback: HookCallback) -> None:
        """Register a callback for a named event."""
        with self._lock:
            self._hooks.setdefault(event, []).append(callback)

    def emit(self, event: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Emit event, passing data through each hook. Hooks can mutate data
        by returning a dict; returning None keeps data unchanged."""
        with self._lock:
            callbacks = list(self._hooks.get(event, []))
        for cb in callbacks:
            result = cb(data)
            if isinstance(result, dict):
                data = result
        return data

    def clear(self) -> None:
        """Remove all registered hooks."""
        with self._lock:
            self._hooks.clear()

    def registered_events(self) -> List[str]:
        """Return list of events that have at least one hook registered."""
        with self._lock:
            return [ev for ev, cbs in self._hooks.items() if cbs]
