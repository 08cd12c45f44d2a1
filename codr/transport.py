"""Transport client for OpenAI-compatible chat/completions endpoints.

One `send()` call is one logical model request: it owns its retry loop and
backoff state, so concurrent sessions never share retry bookkeeping.
"""

import http.client
import json
import socket
import threading
import time
import urllib.error
import urllib.request
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from codr.config import Config
from codr.errors import AuthError, ProtocolError, TransportError, TurnCancelled
from codr.hooks import HookRegistry
from codr.messages import Message, ModelResponse, ToolCall

AUTH_STATUS = {401, 403}
MAX_RETRY_AFTER = 60.0
MAX_RESPONSE_BYTES = 16 * 1024 * 1024


def _is_transient_status(status: int) -> bool:
    return status in (408, 429) or status >= 500


def _read_error_body(err: urllib.error.HTTPError) -> str:
    try:
        return err.read().decode("utf-8", errors="replace")[:500]
    except (OSError, ValueError, AttributeError):
        return ""
    finally:
        try:
            err.close()
        except (OSError, AttributeError):
            pass


def _parse_retry_after(headers: Any) -> Optional[float]:
    if headers is None:
        return None
    value = headers.get("Retry-After")
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    return max(0.0, min(seconds, MAX_RETRY_AFTER))


def backoff_delay(attempt: int, config: Config, retry_after: Optional[float] = None) -> float:
    """Delay before attempt `attempt + 1`. Attempts are numbered from 1."""
    if retry_after is not None:
        return retry_after
    return min(config.retry_backoff * (2 ** (attempt - 1)), config.retry_backoff_max)


class _Transient(Exception):
    def __init__(self, description: str, cause: BaseException, status: Optional[int] = None,
                 retry_after: Optional[float] = None):
        super().__init__(description)
        self.cause = cause
        self.status = status
        self.retry_after = retry_after


class TransportClient:
    def __init__(
        self,
        hooks: Optional[HookRegistry] = None,
        urlopen: Optional[Callable[..., Any]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.hooks = hooks
        self._urlopen = urlopen or urllib.request.urlopen
        self._sleep = sleep or time.sleep

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.hooks is not None:
            self.hooks.emit(event, data)

    def build_request_body(
        self,
        messages: Sequence[Message],
        tools: List[Dict[str, Any]],
        config: Config,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": config.model,
            "messages": [m.to_wire() for m in messages],
            "stream": False,
        }
        if tools:
            body["tools"] = tools
            body["tool_choice"] = "auto"
        if config.max_tokens is not None:
            body["max_tokens"] = config.max_tokens
        if config.temperature is not None:
            body["temperature"] = config.temperature
        return body

    def send(
        self,
        messages: Sequence[Message],
        tools: List[Dict[str, Any]],
        config: Config,
        cancel_event: Optional[threading.Event] = None,
    ) -> ModelResponse:
        """POST the conversation and return the parsed assistant response.

        Raises AuthError on 401/403 without retrying, TransportError once the
        attempts run out (or on a non-transient HTTP error), ProtocolError
        on a body that does not fit the schema, and TurnCancelled when
        `cancel_event` is set while waiting.
        """
        body = self.build_request_body(messages, tools, config)
        data = json.dumps(body, ensure_ascii=False).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }

        last: Optional[_Transient] = None
        for attempt in range(1, config.max_attempts + 1):
            if cancel_event is not None and cancel_event.is_set():
                raise TurnCancelled("request cancelled")
            self._emit("api_request", {
                "attempt": attempt,
                "model": config.model,
                "url": config.endpoint,
                "message_count": len(body["messages"]),
                "tool_count": len(tools or []),
            })
            request = urllib.request.Request(config.endpoint, data=data, headers=headers, method="POST")
            try:
                raw, resp_headers = self._attempt(request, config, cancel_event)
            except _Transient as exc:
                last = exc
                if attempt >= config.max_attempts:
                    break
                delay = backoff_delay(attempt, config, exc.retry_after)
                self._emit("api_retry", {
                    "attempt": attempt,
                    "status": exc.status,
                    "error": str(exc),
                    "delay": delay,
                })
                self._wait(delay, cancel_event)
                continue

            response = self.parse_response(raw, resp_headers)
            self._emit("api_response", {
                "attempt": attempt,
                "request_id": response.request_id,
                "usage": response.usage,
                "finish_reason": response.finish_reason,
                "tool_call_count": len(response.tool_calls),
            })
            return response

        if last is None:
            raise TransportError(f"no request sent: max_attempts is {config.max_attempts}", attempts=0)
        error = TransportError(
            f"giving up after {config.max_attempts} attempt(s): {last}",
            cause=last.cause,
            status=last.status,
            attempts=config.max_attempts,
        )
        self._emit("api_error", {"kind": error.kind, "error": error.describe(), "status": last.status})
        raise error

    def _wait(self, delay: float, cancel_event: Optional[threading.Event]) -> None:
        if delay <= 0:
            return
        if cancel_event is None:
            self._sleep(delay)
        elif cancel_event.wait(delay):
            raise TurnCancelled("request cancelled during retry backoff")

    def _attempt(
        self,
        request: urllib.request.Request,
        config: Config,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[bytes, Any]:
        try:
            return self._open(request, config.request_timeout, cancel_event)
        except urllib.error.HTTPError as err:
            status = err.code
            retry_after = _parse_retry_after(err.headers)
            detail = _read_error_body(err)
            if status in AUTH_STATUS:
                error = AuthError(f"endpoint rejected credentials (HTTP {status}): {detail}", cause=err, status=status)
                self._emit("api_error", {"kind": error.kind, "error": error.describe(), "status": status})
                raise error from err
            if _is_transient_status(status):
                raise _Transient(f"HTTP {status}: {detail}", err, status=status, retry_after=retry_after) from err
            error = TransportError(f"HTTP {status}: {detail}", cause=err, status=status, attempts=1)
            self._emit("api_error", {"kind": error.kind, "error": error.describe(), "status": status})
            raise error from err
        except urllib.error.URLError as err:
            raise _Transient(f"network error: {err.reason}", err) from err
        except (socket.timeout, TimeoutError) as err:
            raise _Transient(f"timed out after {config.request_timeout}s", err) from err
        except (ConnectionError, http.client.HTTPException) as err:
            raise _Transient(f"connection error: {err}", err) from err

    def _read(self, request: urllib.request.Request, timeout: float) -> Tuple[bytes, Any]:
        with self._urlopen(request, timeout=timeout) as resp:
            raw = resp.read(MAX_RESPONSE_BYTES)
            return raw, getattr(resp, "headers", None)

    def _open(
        self,
        request: urllib.request.Request,
        timeout: float,
        cancel_event: Optional[threading.Event],
    ) -> Tuple[bytes, Any]:
        if cancel_event is None:
            return self._read(request, timeout)

        # urlopen blocks, so the attempt runs on a daemon thread and an
        # abandoned request is left to hit its own timeout.
        box: Dict[str, Any] = {}

        def worker() -> None:
            try:
                box["result"] = self._read(request, timeout)
            except Exception as exc:  # re-raised on the caller's thread
                box["error"] = exc

        thread = threading.Thread(target=worker, name="codr-transport", daemon=True)
        thread.start()
        while thread.is_alive():
            thread.join(0.05)
            if thread.is_alive() and cancel_event.is_set():
                raise TurnCancelled("request cancelled")
        if "error" in box:
            raise box["error"]
        return box["result"]

    # ---------------------------
    # Response parsing
    # ---------------------------

    def parse_response(self, raw: bytes, headers: Any = None) -> ModelResponse:
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            preview = raw[:200].decode("utf-8", "replace") if isinstance(raw, (bytes, bytearray)) else str(raw)[:200]
            raise ProtocolError(f"invalid JSON response: {preview!r}", cause=exc) from exc
        response = parse_completion(payload)
        if response.request_id is None and headers is not None:
            request_id = headers.get("X-Request-Id") or headers.get("X-Request-ID")
            if request_id:
                response = ModelResponse(
                    assistant_text=response.assistant_text,
                    tool_calls=response.tool_calls,
                    request_id=request_id,
                    usage=response.usage,
                    finish_reason=response.finish_reason,
                )
        return response


def _content_text(content: Any) -> Optional[str]:
    if content is None or isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if not isinstance(part, dict) or not isinstance(part.get("text", ""), str):
                raise ProtocolError("assistant content parts must be objects with text")
            parts.append(part.get("text", ""))
        return "".join(parts)
    raise ProtocolError(f"assistant content has unexpected type {type(content).__name__}")


def _parse_tool_calls(raw_calls: Any) -> Tuple[ToolCall, ...]:
    if raw_calls is None:
        return ()
    if not isinstance(raw_calls, list):
        raise ProtocolError("tool_calls must be a list")
    calls: List[ToolCall] = []
    seen = set()
    for idx, tc in enumerate(raw_calls):
        if not isinstance(tc, dict):
            raise ProtocolError(f"tool_calls[{idx}] is not an object")
        call_type = tc.get("type", "function")
        if call_type != "function":
            raise ProtocolError(f"tool_calls[{idx}] has unsupported type '{call_type}'")
        call_id = tc.get("id")
        if not isinstance(call_id, str) or not call_id:
            raise ProtocolError(f"tool_calls[{idx}] is missing an id")
        if call_id in seen:
            raise ProtocolError(f"duplicate tool call id '{call_id}'")
        seen.add(call_id)
        fn = tc.get("function")
        if not isinstance(fn, dict):
            raise ProtocolError(f"tool_calls[{idx}] is missing its function object")
        name = fn.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ProtocolError(f"tool_calls[{idx}] is missing a function name")
        args = fn.get("arguments", "")
        if isinstance(args, dict):
            args = json.dumps(args, ensure_ascii=False)
        elif args is None:
            args = ""
        elif not isinstance(args, str):
            raise ProtocolError(f"tool_calls[{idx}] arguments must be a string or object")
        calls.append(ToolCall(id=call_id, name=name, arguments=args))
    return tuple(calls)


def parse_completion(payload: Any) -> ModelResponse:
    """Validate a decoded chat-completions body and build a ModelResponse."""
    if not isinstance(payload, dict):
        raise ProtocolError("response body is not a JSON object")
    if payload.get("error"):
        err = payload["error"]
        message = err.get("message") if isinstance(err, dict) else err
        raise ProtocolError(f"endpoint returned an error object: {message}")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProtocolError("response has no choices")
    choice = choices[0]
    if not isinstance(choice, dict):
        raise ProtocolError("choices[0] is not an object")
    message = choice.get("message")
    if not isinstance(message, dict):
        raise ProtocolError("choices[0] has no message object")
    role = message.get("role", "assistant")
    if role != "assistant":
        raise ProtocolError(f"expected an assistant message, got role '{role}'")

    text = _content_text(message.get("content"))
    tool_calls = _parse_tool_calls(message.get("tool_calls"))
    if not tool_calls and not (text or "").strip():
        raise ProtocolError("assistant message has neither content nor tool calls")

    usage = payload.get("usage")
    request_id = payload.get("request_id") or payload.get("id")
    return ModelResponse(
        assistant_text=text,
        tool_calls=tool_calls,
        request_id=request_id if isinstance(request_id, str) else None,
        usage=usage if isinstance(usage, dict) else {},
        finish_reason=choice.get("finish_reason"),
    )
