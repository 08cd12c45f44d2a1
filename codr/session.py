"""Session controller: owns one conversation, its config and turn counter,
applies the confirmation policy to destructive tool calls, and persists
conversations to JSON when asked to.
"""

import glob as globlib
import json
import os
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from codr.agent import AgentLoop, LoopState, TurnResult
from codr.config import Config
from codr.errors import (
    IterationLimitExceeded,
    ProtocolError,
    TransportError,
    TurnCancelled,
    UserDenied,
)
from codr.hooks import HookRegistry
from codr.messages import Conversation, ConversationError, ToolResult, system_message
from codr.middleware import install_defaults
from codr.tool_handlers import FileOperationExecutor, FileOperationRequest, ToolSpec, is_destructive
from codr.transport import TransportClient

# (tool name, request) -> "yes" | "no" | "always"
ConfirmCallback = Callable[[str, FileOperationRequest], str]

# Failures that end the turn but leave the session usable
TURN_FAILURES = (TransportError, ProtocolError, IterationLimitExceeded, TurnCancelled)


class ConfirmMode(str, Enum):
    PROMPT = "prompt"
    AUTO = "auto"
    DENY = "deny"


# ---------------------------
# Persistence helpers
# ---------------------------

def create_new_session_path(session_dir: str) -> str:
    timestamp = time.strftime("%Y-%m-%d_%H-%M-%S")
    return os.path.join(session_dir, f"{timestamp}_codr.json")


def find_latest_session(session_dir: str) -> Optional[str]:
    if not os.path.isdir(session_dir):
        return None
    files = globlib.glob(os.path.join(session_dir, "*_codr.json"))
    if not files:
        return None
    files.sort(reverse=True)
    return files[0]


class Session:
    def __init__(
        self,
        config: Config,
        transport: Optional[Any] = None,
        executor: Optional[FileOperationExecutor] = None,
        confirm: Optional[ConfirmCallback] = None,
        conversation: Optional[Conversation] = None,
        session_path: Optional[str] = None,
    ):
        self.config = config
        self.hooks = HookRegistry()
        components = install_defaults(self.hooks, config.log_dir, {"model": config.model})
        self.metrics = components["metrics"]
        self.event_log = components["event_log"]

        self.executor = executor or FileOperationExecutor(config.project_root)
        self.transport = transport or TransportClient(hooks=self.hooks)
        self.confirm = confirm
        self.confirm_mode = ConfirmMode(config.confirm)
        self.conversation = conversation or Conversation([system_message(config.system_prompt)])
        self.session_path = session_path
        self.turn = 0
        self.loop = AgentLoop(self.transport, self.executor, self.hooks, authorize=self.authorize)

        self._turn_lock = threading.Lock()
        self._cancel: Optional[threading.Event] = None
        self.event_log.log_event("session_start", {"settings": config.public_dict(), "session_path": session_path})

    # ---------------------------
    # Confirmation policy
    # ---------------------------

    def authorize(self, spec: ToolSpec, request: FileOperationRequest) -> None:
        """Raise UserDenied if a destructive request is not allowed to run."""
        if not is_destructive(request):
            return
        target = self.executor.display(request.path)
        if self.confirm_mode == ConfirmMode.AUTO:
            return
        if self.confirm_mode == ConfirmMode.DENY:
            raise UserDenied(f"{spec.name} on {target} is blocked by the confirmation policy")
        if self.confirm is None:
            raise UserDenied(f"{spec.name} on {target} needs confirmation and no one is there to confirm")

        answer = (self.confirm(spec.name, request) or "").strip().lower()
        self.event_log.log_event("confirmation", {"tool_name": spec.name, "path": target, "answer": answer})
        if answer in ("a", "always"):
            self.confirm_mode = ConfirmMode.AUTO
            return
        if answer in ("y", "yes"):
            return
        raise UserDenied(f"user declined {spec.name} on {target}")

    # ---------------------------
    # Turns
    # ---------------------------

    def submit(self, user_input: str) -> TurnResult:
        """Run one turn. Turn-level failures come back in TurnResult.error;
        AuthError propagates because it ends the session."""
        with self._turn_lock:
            self.turn += 1
            start_len = len(self.conversation)
            self._cancel = threading.Event()
            try:
                return self.loop.run_turn(
                    self.conversation, self.config, user_input,
                    turn=self.turn, cancel_event=self._cancel,
                )
            except TURN_FAILURES as exc:
                return TurnResult(
                    turn=self.turn,
                    state=LoopState.FAILED,
                    messages_appended=len(self.conversation) - start_len,
                    iterations=self.loop.iterations,
                    tool_results=tuple(self.loop.tool_results),
                    transitions=tuple(self.loop.transitions),
                    error=exc,
                )
            finally:
                self._cancel = None

    def cancel(self) -> None:
        """Abort the running turn, if any. Safe to call from another thread."""
        event = self._cancel
        if event is not None:
            event.set()

    def reset(self) -> None:
        """Start a fresh conversation; the turn counter keeps counting."""
        self.conversation = Conversation([system_message(self.config.system_prompt)])
        if self.session_path:
            self.session_path = create_new_session_path(self.config.sessions_path())
        self.event_log.log_event("session_reset", {"turn": self.turn})

    def status(self) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "endpoint": self.config.endpoint,
            "project_root": self.config.project_root,
            "confirm": self.confirm_mode.value,
            "turn": self.turn,
            "session_path": self.session_path,
            "log_path": self.event_log.log_path,
            "conversation": self.conversation.summarize(),
            "metrics": self.metrics.summary(),
        }

    # ---------------------------
    # Persistence
    # ---------------------------

    def save(self, path: Optional[str] = None) -> str:
        """Write the conversation to JSON and return the file path."""
        path = path or self.session_path or create_new_session_path(self.config.sessions_path())
        self.session_path = path
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        created = None
        if os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    created = json.load(f).get("created")
            except (OSError, ValueError, AttributeError):
                created = None

        messages = self.conversation.to_wire()
        session_data = {
            "model": self.config.model,
            "turn": self.turn,
            "messages": messages,
            "created": created or time.strftime("%Y-%m-%dT%H:%M:%S"),
            "updated": time.strftime("%Y-%m-%dT%H:%M:%S"),
        }
        # Hook: session_save (read-only notification)
        self.hooks.emit("session_save", {"path": path, "message_count": len(messages)})

        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(session_data, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
        return path

    @classmethod
    def resume(
        cls,
        config: Config,
        path: Optional[str] = None,
        **kwargs: Any,
    ) -> "Session":
        """Load the given (or latest) saved session; start fresh if none loads.

        Tool calls left unanswered by an interrupted run get Cancelled error
        results so the conversation is valid to send again.
        """
        path = path or find_latest_session(config.sessions_path())
        conversation = None
        turn = 0
        load_error = None
        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                conversation = Conversation.from_wire(data.get("messages") or [])
                turn = int(data.get("turn") or 0)
            except (OSError, ValueError, KeyError, ConversationError) as exc:
                load_error = exc
                conversation = None

        if conversation is None or len(conversation) == 0:
            session = cls(config, session_path=create_new_session_path(config.sessions_path()), **kwargs)
            if load_error is not None:
                session.event_log.log_event("session_load_error", {"path": path, "error": str(load_error)})
            return session

        for call_id in conversation.pending_tool_calls():
            conversation.append(
                ToolResult.error(call_id, TurnCancelled("previous run ended before this call ran")).to_message()
            )
        session = cls(config, conversation=conversation, session_path=path, **kwargs)
        session.turn = turn
        session.event_log.log_event("session_loaded", {"path": path, "message_count": len(conversation)})
        return session
