"""Tests for the hook registry and the default middleware."""

import json

from codr.hooks import HookRegistry
from codr.middleware import install_defaults
from codr.middleware.logging_hook import EventLog
from codr.middleware.metrics_hook import MetricsCollector
from codr.session import Session

from codr_fakes import ScriptedTransport, make_config, reply, tool_calls


def test_emit_passes_data_through_hooks():
    hooks = HookRegistry()
    hooks.register("turn_start", lambda data: {**data, "tagged": True})
    hooks.register("turn_start", lambda data: None)
    assert hooks.emit("turn_start", {"turn": 1}) == {"turn": 1, "tagged": True}


def test_emit_without_hooks():
    assert HookRegistry().emit("turn_end", {"turn": 2}) == {"turn": 2}


def test_registries_are_independent():
    first, second = HookRegistry(), HookRegistry()
    seen = []
    first.register("turn_start", seen.append)
    second.emit("turn_start", {"turn": 1})
    assert seen == []
    assert first.registered_events() == ["turn_start"]
    first.clear()
    assert first.registered_events() == []


def test_event_log_writes_jsonl(tmp_path):
    log = EventLog.in_dir(str(tmp_path / "logs"), {"model": "m1"})
    log.log_event("api_request", {"attempt": 1, "messages": ["big"], "api_key": "secret"})
    log.log_event("api_response", {"attempt": 1})

    with open(log.log_path, encoding="utf-8") as f:
        records = [json.loads(line) for line in f]
    assert [r["event"] for r in records] == ["api_request", "api_response"]
    assert records[0]["model"] == "m1"
    assert "messages" not in records[0]
    assert "api_key" not in records[0]


def test_event_log_without_path_is_silent(tmp_path):
    EventLog(None).log_event("turn_start", {"turn": 1})
    assert list(tmp_path.iterdir()) == []


def test_metrics_collector_counts():
    hooks = HookRegistry()
    metrics = MetricsCollector().install(hooks)
    hooks.emit("turn_start", {})
    hooks.emit("api_request", {})
    hooks.emit("api_retry", {})
    hooks.emit("api_response", {"usage": {"prompt_tokens": 10, "completion_tokens": 4}})
    hooks.emit("api_response", {"usage": {"prompt_tokens": 5}})
    hooks.emit("tool_after", {"tool_name": "read_file", "is_error": False})
    hooks.emit("tool_after", {"tool_name": "read_file", "is_error": True})
    hooks.emit("turn_failed", {})

    summary = metrics.summary()
    assert summary["turns_total"] == 1
    assert summary["turns_failed"] == 1
    assert summary["api_requests"] == 1
    assert summary["api_retries"] == 1
    assert summary["usage"] == {"prompt_tokens": 15, "completion_tokens": 4}
    assert summary["tool_call_counts"] == {"read_file": 2}
    assert summary["tool_error_counts"] == {"read_file": 1}


def test_install_defaults_without_log_dir():
    components = install_defaults(HookRegistry())
    assert components["event_log"].log_path is None
    assert isinstance(components["metrics"], MetricsCollector)


def test_session_logs_turn_events(project, tmp_path):
    config = make_config(project, log_dir=str(tmp_path / "logs"))
    session = Session(config, transport=ScriptedTransport([
        tool_calls(("c1", "create_file", {"file_path": "a.txt", "content": "x"})),
        reply("done"),
    ]))
    session.submit("make a.txt")

    with open(session.event_log.log_path, encoding="utf-8") as f:
        events = [json.loads(line)["event"] for line in f]
    assert events[0] == "session_start"
    assert events[1:] == ["turn_start", "tool_before", "tool_after", "turn_end"]
