"""
Agent loop: drives one user turn through the model/tool state machine.

    AWAITING_USER_INPUT -> MODEL_REQUESTED
        -> (TOOL_CALLS_PENDING -> TOOLS_EXECUTING -> MODEL_REQUESTED)*
        -> RESPONDING -> AWAITING_USER_INPUT

FAILED is reachable from any state. The loop borrows the Conversation and
Config for the duration of run_turn() and keeps neither.
"""

import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from codr.config import Config
from codr.errors import (
    CodrError,
    FileOperationError,
    IterationLimitExceeded,
    ProtocolError,
    ToolResolutionError,
    TurnCancelled,
    UserDenied,
)
from codr.hooks import HookRegistry
from codr.messages import Conversation, ConversationError, ModelResponse, ToolCall, ToolResult, user_message
from codr.tool_handlers import (
    FileOperationExecutor,
    FileOperationRequest,
    OperationKind,
    ToolSpec,
    make_openai_tools,
    resolve_call,
)

# Raises UserDenied to block a call
Authorizer = Callable[[ToolSpec, FileOperationRequest], None]

# Kinds whose effects span more than their own path
_SERIAL_KINDS = {OperationKind.MKDIR, OperationKind.LIST}


class LoopState(str, Enum):
    AWAITING_USER_INPUT = "awaiting_user_input"
    MODEL_REQUESTED = "model_requested"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    TOOLS_EXECUTING = "tools_executing"
    RESPONDING = "responding"
    FAILED = "failed"


@dataclass
class TurnResult:
    turn: int
    state: LoopState
    final_text: Optional[str] = None
    messages_appended: int = 0
    iterations: int = 0
    tool_results: Tuple[ToolResult, ...] = ()
    transitions: Tuple[LoopState, ...] = ()
    error: Optional[CodrError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.state == LoopState.AWAITING_USER_INPUT


@dataclass
class _Prepared:
    index: int
    call: ToolCall
    spec: ToolSpec
    request: FileOperationRequest
    lane: str


class AgentLoop:
    def __init__(
        self,
        transport: Any,
        executor: FileOperationExecutor,
        hooks: Optional[HookRegistry] = None,
        authorize: Optional[Authorizer] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ):
        self.transport = transport
        self.executor = executor
        self.hooks = hooks or HookRegistry()
        self.authorize = authorize
        self.tools = tools if tools is not None else make_openai_tools()

        # Diagnostics for the most recent turn
        self.state = LoopState.AWAITING_USER_INPUT
        self.transitions: List[LoopState] = []
        self.iterations = 0
        self.tool_results: List[ToolResult] = []

    def _transition(self, state: LoopState) -> None:
        self.state = state
        self.transitions.append(state)

    def run_turn(
        self,
        conversation: Conversation,
        config: Config,
        user_input: str,
        turn: int = 1,
        cancel_event: Optional[threading.Event] = None,
    ) -> TurnResult:
        """Run one user turn to completion.

        Tool failures are handed back to the model as error results. Transport,
        protocol, iteration-limit and cancellation failures move the loop to
        FAILED and are raised to the caller; messages appended before the
        failure stay in the conversation.
        """
        self.transitions = [LoopState.AWAITING_USER_INPUT]
        self.state = LoopState.AWAITING_USER_INPUT
        self.iterations = 0
        self.tool_results = []
        start_len = len(conversation)

        conversation.append(user_message(user_input))
        self._transition(LoopState.MODEL_REQUESTED)
        self.hooks.emit("turn_start", {"turn": turn, "user_input": user_input, "message_count": len(conversation)})

        try:
            while True:
                if self.iterations >= config.max_iterations:
                    raise IterationLimitExceeded(config.max_iterations)
                self.iterations += 1
                if self.state != LoopState.MODEL_REQUESTED:
                    self._transition(LoopState.MODEL_REQUESTED)

                response: ModelResponse = self.transport.send(
                    conversation.messages, self.tools, config, cancel_event=cancel_event,
                )
                try:
                    conversation.append(response.to_message())
                except ConversationError as exc:
                    raise ProtocolError(f"assistant message rejected: {exc}", cause=exc) from exc

                if not response.tool_calls:
                    self._transition(LoopState.RESPONDING)
                    result = TurnResult(
                        turn=turn,
                        state=LoopState.AWAITING_USER_INPUT,
                        final_text=response.assistant_text,
                        messages_appended=len(conversation) - start_len,
                        iterations=self.iterations,
                        tool_results=tuple(self.tool_results),
                    )
                    self._transition(LoopState.AWAITING_USER_INPUT)
                    result.transitions = tuple(self.transitions)
                    self.hooks.emit("turn_end", {
                        "turn": turn,
                        "iterations": self.iterations,
                        "messages_appended": result.messages_appended,
                        "tool_calls": len(self.tool_results),
                        "request_id": response.request_id,
                    })
                    return result

                self._transition(LoopState.TOOL_CALLS_PENDING)
                results, cancelled = self._run_tool_calls(response.tool_calls, config, cancel_event)
                for tool_result in results:
                    conversation.append(tool_result.to_message())
                self.tool_results.extend(results)
                if cancelled:
                    raise TurnCancelled("interrupted while running tools")
        except KeyboardInterrupt:
            exc = TurnCancelled("interrupted by user")
            self._fail(turn, exc)
            raise exc from None
        except CodrError as exc:
            self._fail(turn, exc)
            raise

    def _fail(self, turn: int, exc: CodrError) -> None:
        self._transition(LoopState.FAILED)
        self.hooks.emit("turn_failed", {
            "turn": turn,
            "kind": exc.kind,
            "error": exc.describe(),
            "iterations": self.iterations,
        })

    # ---------------------------
    # Tool execution
    # ---------------------------

    def _prepare(self, index: int, call: ToolCall) -> _Prepared:
        spec, request = resolve_call(call)
        lane = self.executor.lane_key(request)
        if self.authorize is not None:
            self.authorize(spec, request)
        return _Prepared(index, call, spec, request, lane)

    def _run_tool_calls(
        self,
        calls: Tuple[ToolCall, ...],
        config: Config,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[List[ToolResult], bool]:
        """Execute one batch of tool calls; results come back in call order.

        Returns (results, cancelled). On cancellation every call that did not
        run gets a Cancelled error result, so each tool call stays answered.
        """
        slots: List[Optional[ToolResult]] = [None] * len(calls)
        prepared: List[_Prepared] = []
        cancelled = False

        self._transition(LoopState.TOOLS_EXECUTING)
        try:
            # Resolution and confirmation prompts happen one at a time, in order
            for idx, call in enumerate(calls):
                try:
                    prepared.append(self._prepare(idx, call))
                except (ToolResolutionError, FileOperationError, UserDenied) as exc:
                    slots[idx] = ToolResult.error(call.id, exc, call.name)
                    self._after_tool(call.name, call.id, None, slots[idx])

            if prepared:
                stop = threading.Event()
                lanes: "OrderedDict[str, List[_Prepared]]" = OrderedDict()
                for item in prepared:
                    lanes.setdefault(item.lane, []).append(item)

                serial = (
                    config.tool_workers <= 1
                    or len(lanes) <= 1
                    or any(item.request.kind in _SERIAL_KINDS for item in prepared)
                )
                if serial:
                    self._run_lane(prepared, slots, stop, cancel_event)
                else:
                    self._run_lanes_concurrently(list(lanes.values()), slots, stop, cancel_event, config.tool_workers)
        except KeyboardInterrupt:
            cancelled = True

        if cancel_event is not None and cancel_event.is_set():
            cancelled = True

        results: List[ToolResult] = []
        for idx, call in enumerate(calls):
            result = slots[idx]
            if result is None:
                cancelled = True
                result = ToolResult.error(call.id, TurnCancelled("turn interrupted before this call ran"), call.name)
            results.append(result)
        return results, cancelled

    def _run_lanes_concurrently(
        self,
        lanes: List[List[_Prepared]],
        slots: List[Optional[ToolResult]],
        stop: threading.Event,
        cancel_event: Optional[threading.Event],
        workers: int,
    ) -> None:
        pool = ThreadPoolExecutor(max_workers=min(workers, len(lanes)), thread_name_prefix="codr-tool")
        try:
            futures = [pool.submit(self._run_lane, lane, slots, stop, cancel_event) for lane in lanes]
            wait(futures)
            for future in futures:
                future.result()
        except KeyboardInterrupt:
            # lanes finish their current call and stop picking up new ones
            stop.set()
            raise
        finally:
            pool.shutdown(wait=True)

    def _run_lane(
        self,
        items: List[_Prepared],
        slots: List[Optional[ToolResult]],
        stop: threading.Event,
        cancel_event: Optional[threading.Event],
    ) -> None:
        for item in items:
            if stop.is_set() or (cancel_event is not None and cancel_event.is_set()):
                return
            slots[item.index] = self._execute_one(item)

    def _execute_one(self, item: _Prepared) -> ToolResult:
        self.hooks.emit("tool_before", {
            "tool_name": item.spec.name,
            "tool_call_id": item.call.id,
            "kind": item.request.kind.value,
            "path": self.executor.display(item.lane),
        })
        try:
            outcome = self.executor.execute(item.request)
            result = ToolResult.ok(item.call.id, outcome.output, item.spec.name)
        except FileOperationError as exc:
            result = ToolResult.error(item.call.id, exc, item.spec.name)
        except Exception as exc:  # every issued call must still get an answer
            result = ToolResult.error(item.call.id, exc, item.spec.name)
        self._after_tool(item.spec.name, item.call.id, self.executor.display(item.lane), result)
        return result

    def _after_tool(self, tool_name: str, call_id: str, path: Optional[str], result: ToolResult) -> None:
        self.hooks.emit("tool_after", {
            "tool_name": tool_name,
            "tool_call_id": call_id,
            "path": path,
            "is_error": result.is_error,
            "result": result.payload[:200],
        })
