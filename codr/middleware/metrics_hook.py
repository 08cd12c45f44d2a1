"""
Metrics middleware: turn, API and tool counters for one session.
"""

import threading
import time
from typing import Any, Dict, Optional

from codr.hooks import HookRegistry


class MetricsCollector:
    """Collects counters from lifecycle events; read by /status."""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        self.turns_total: int = 0
        self.turns_failed: int = 0
        self.api_requests: int = 0
        self.api_retries: int = 0
        self.tool_calls_total: int = 0
        self.tool_errors_total: int = 0
        self.tool_call_counts: Dict[str, int] = {}
        self.tool_error_counts: Dict[str, int] = {}
        self.usage: Dict[str, int] = {}
        self.start_time: Optional[float] = time.time()

    def on_turn_start(self, data: Dict[str, Any]) -> None:
        self.turns_total += 1

    def on_turn_failed(self, data: Dict[str, Any]) -> None:
        self.turns_failed += 1

    def on_api_request(self, data: Dict[str, Any]) -> None:
        self.api_requests += 1

    def on_api_retry(self, data: Dict[str, Any]) -> None:
        self.api_retries += 1

    def on_api_response(self, data: Dict[str, Any]) -> None:
        for key, value in (data.get("usage") or {}).items():
            if isinstance(value, int) and not isinstance(value, bool):
                self.usage[key] = self.usage.get(key, 0) + value

    def on_tool_after(self, data: Dict[str, Any]) -> None:
        tool_name = data.get("tool_name") or "unknown"
        # tool_after fires from worker threads
        with self._lock:
            self.tool_calls_total += 1
            self.tool_call_counts[tool_name] = self.tool_call_counts.get(tool_name, 0) + 1
            if data.get("is_error"):
                self.tool_errors_total += 1
                self.tool_error_counts[tool_name] = self.tool_error_counts.get(tool_name, 0) + 1

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            result: Dict[str, Any] = {
                "turns_total": self.turns_total,
                "turns_failed": self.turns_failed,
                "api_requests": self.api_requests,
                "api_retries": self.api_retries,
                "tool_calls_total": self.tool_calls_total,
                "tool_errors_total": self.tool_errors_total,
                "tool_call_counts": dict(self.tool_call_counts),
                "tool_error_counts": dict(self.tool_error_counts),
            }
        if self.usage:
            result["usage"] = dict(self.usage)
        if self.start_time:
            result["duration_seconds"] = round(time.time() - self.start_time, 2)
        return result

    def install(self, hooks: HookRegistry) -> "MetricsCollector":
        """Register metrics hooks on a session's registry."""
        hooks.register("turn_start", self.on_turn_start)
        hooks.register("turn_failed", self.on_turn_failed)
        hooks.register("api_request", self.on_api_request)
        hooks.register("api_retry", self.on_api_retry)
        hooks.register("api_response", self.on_api_response)
        hooks.register("tool_after", self.on_tool_after)
        return self
