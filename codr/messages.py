"""
Conversation data model: messages, tool calls, tool results, and the
append-only Conversation log sent to the model on every request.
"""

import json
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: str = "{}"

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass(frozen=True)
class Message:
    role: Role
    content: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            out["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role == Role.TOOL:
            out["name"] = self.name
        return out

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "Message":
        calls = []
        for tc in data.get("tool_calls") or []:
            fn = tc.get("function") or {}
            args = fn.get("arguments", "{}")
            if not isinstance(args, str):
                args = json.dumps(args, ensure_ascii=False)
            calls.append(ToolCall(id=str(tc.get("id")), name=str(fn.get("name") or ""), arguments=args))
        return cls(
            role=Role(data.get("role")),
            content=data.get("content"),
            tool_calls=tuple(calls),
            tool_call_id=data.get("tool_call_id"),
            name=data.get("name"),
        )


def system_message(text: str) -> Message:
    return Message(role=Role.SYSTEM, content=text)


def user_message(text: str) -> Message:
    return Message(role=Role.USER, content=text)


class ToolStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class ToolResult:
    tool_call_id: str
    status: ToolStatus
    payload: str
    name: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.status == ToolStatus.ERROR

    @classmethod
    def ok(cls, tool_call_id: str, payload: str, name: Optional[str] = None) -> "ToolResult":
        return cls(tool_call_id, ToolStatus.OK, payload, name)

    @classmethod
    def error(cls, tool_call_id: str, exc: BaseException, name: Optional[str] = None) -> "ToolResult":
        describe = getattr(exc, "describe", None)
        text = describe() if callable(describe) else f"{type(exc).__name__}: {exc}"
        return cls(tool_call_id, ToolStatus.ERROR, f"error: {text}", name)

    def to_message(self) -> Message:
        return Message(role=Role.TOOL, content=self.payload, tool_call_id=self.tool_call_id, name=self.name)


@dataclass(frozen=True)
class ModelResponse:
    assistant_text: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()
    request_id: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)
    finish_reason: Optional[str] = None

    def to_message(self) -> Message:
        return Message(role=Role.ASSISTANT, content=self.assistant_text, tool_calls=self.tool_calls)


class ConversationError(ValueError):
    pass


class Conversation:
    """Ordered, append-only message log.

    Messages are immutable once appended. A tool message is accepted only if
    its tool_call_id was issued by an earlier assistant message and has not
    been answered yet.
    """

    def __init__(self, messages: Optional[List[Message]] = None):
        self._messages: List[Message] = []
        self._issued: Set[str] = set()
        self._answered: Set[str] = set()
        self._lock = threading.Lock()
        for msg in messages or []:
            self.append(msg)

    def append(self, message: Message) -> None:
        with self._lock:
            if message.role == Role.TOOL:
                call_id = message.tool_call_id
                if not call_id or call_id not in self._issued:
                    raise ConversationError(f"tool message references unknown tool_call_id {call_id!r}")
                if call_id in self._answered:
                    raise ConversationError(f"tool_call_id {call_id!r} already has a result")
                self._answered.add(call_id)
            elif message.role == Role.ASSISTANT:
                for tc in message.tool_calls:
                    if tc.id in self._issued:
                        raise ConversationError(f"duplicate tool_call_id {tc.id!r}")
                for tc in message.tool_calls:
                    self._issued.add(tc.id)
            self._messages.append(message)

    def extend(self, messages: List[Message]) -> None:
        for msg in messages:
            self.append(msg)

    @property
    def messages(self) -> Tuple[Message, ...]:
        with self._lock:
            return tuple(self._messages)

    def pending_tool_calls(self) -> List[str]:
        """Tool-call ids issued by the model that have no result yet."""
        with self._lock:
            return [
                tc.id
                for msg in self._messages
                if msg.role == Role.ASSISTANT
                for tc in msg.tool_calls
                if tc.id not in self._answered
            ]

    def to_wire(self) -> List[Dict[str, Any]]:
        return [m.to_wire() for m in self.messages]

    @classmethod
    def from_wire(cls, data: List[Dict[str, Any]]) -> "Conversation":
        return cls([Message.from_wire(m) for m in data])

    def summarize(self) -> Dict[str, Any]:
        msgs = self.messages
        return {
            "message_count": len(msgs),
            "roles": [m.role.value for m in msgs],
            "tool_message_count": sum(1 for m in msgs if m.role == Role.TOOL),
            "tool_call_count": sum(len(m.tool_calls) for m in msgs),
            "total_chars": sum(len(m.content or "") for m in msgs),
        }

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages)

    def __getitem__(self, idx):
        return self.messages[idx]
