"""
Default middleware for a codr session.

Call install_defaults() when a session starts to register the built-in hooks.
"""

from typing import Any, Dict, Optional

from codr.hooks import HookRegistry
from codr.middleware.logging_hook import EventLog
from codr.middleware.metrics_hook import MetricsCollector


def install_defaults(
    hooks: HookRegistry,
    log_dir: Optional[str] = None,
    run_context: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Register all default middleware hooks. Returns installed components.

    Args:
        hooks: The session's hook registry.
        log_dir: Directory for the JSONL event log; no file is written if None.
        run_context: Fields copied into every log record (model, session id).

    Returns:
        Dict with "metrics" (MetricsCollector) and "event_log" (EventLog).
    """
    if log_dir:
        event_log = EventLog.in_dir(log_dir, run_context)
    else:
        event_log = EventLog(None, run_context)
    event_log.install(hooks)
    collector = MetricsCollector().install(hooks)
    return {
        "metrics": collector,
        "event_log": event_log,
    }
