"""
Logging middleware: writes one JSONL record per lifecycle event.

Each session gets its own EventLog bound to its own HookRegistry, so two
sessions in one process never write into each other's files.
"""

import json
import os
import threading
import time
from typing import Any, Dict, Optional

from codr.hooks import EVENTS, HookRegistry

# Fields too large (or too sensitive) to copy into the log
_SKIP_FIELDS = ("messages", "request_data", "response", "api_key")


class EventLog:
    def __init__(self, log_path: Optional[str] = None, run_context: Optional[Dict[str, Any]] = None):
        self.log_path = log_path
        self.run_context: Dict[str, Any] = dict(run_context or {})
        self._lock = threading.Lock()

    @classmethod
    def in_dir(cls, log_dir: str, run_context: Optional[Dict[str, Any]] = None) -> "EventLog":
        """Create a log file path under log_dir named after the current time."""
        os.makedirs(log_dir, exist_ok=True)
        timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
        return cls(os.path.join(log_dir, f"codr_{timestamp}_{os.getpid()}.jsonl"), run_context)

    def log_event(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> None:
        """Write a single JSONL log entry. No-op when no log path is set."""
        if not self.log_path:
            return
        rec: Dict[str, Any] = {"ts": time.strftime("%Y-%m-%dT%H:%M:%S"), "event": event_type}
        for key, val in self.run_context.items():
            if val:
                rec[key] = val
        for k, v in (payload or {}).items():
            if k in _SKIP_FIELDS:
                continue
            rec[k] = v
        line = json.dumps(rec, ensure_ascii=False, default=str) + "\n"
        with self._lock:
            directory = os.path.dirname(self.log_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line)

    def _on_event(self, event_name: str):
        def callback(data: Dict[str, Any]) -> None:
            self.log_event(event_name, data)
        return callback

    def install(self, hooks: HookRegistry) -> "EventLog":
        """Register logging hooks for all lifecycle events."""
        for event in EVENTS:
            hooks.register(event, self._on_event(event))
        return self
