"""Error taxonomy for codr.

Recoverable errors (tool resolution, file operations, denials) are turned into
`error` tool results by the agent loop. Transport and protocol errors fail the
current turn. Auth and configuration errors end the session.
"""

from typing import Optional


class CodrError(Exception):
    """Base class. `kind` is the short name shown to users and to the model."""

    kind = "Error"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def describe(self) -> str:
        text = f"{self.kind}: {self.message}" if self.message else self.kind
        if self.cause is not None:
            text += f" (cause: {type(self.cause).__name__}: {self.cause})"
        return text


class ConfigError(CodrError):
    kind = "ConfigError"


class TransportError(CodrError):
    """Network or HTTP failure that survived every retry."""

    kind = "TransportError"

    def __init__(
        self,
        message: str = "",
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
        attempts: int = 0,
    ):
        super().__init__(message, cause)
        self.status = status
        self.attempts = attempts


class ProtocolError(CodrError):
    """The endpoint answered with a body that does not match the chat-completions schema."""

    kind = "ProtocolError"


class AuthError(CodrError):
    kind = "AuthError"

    def __init__(self, message: str = "", cause: Optional[BaseException] = None, status: Optional[int] = None):
        super().__init__(message, cause)
        self.status = status


class ToolResolutionError(CodrError):
    """Unknown tool name or arguments that do not fit the tool's parameters."""

    kind = "ToolResolutionError"


class FileOperationError(CodrError):
    kind = "FileOperationError"

    def __init__(self, message: str = "", path: Optional[str] = None, cause: Optional[BaseException] = None):
        super().__init__(message, cause)
        self.path = path


class PathNotFound(FileOperationError):
    kind = "NotFound"


class AlreadyExists(FileOperationError):
    kind = "AlreadyExists"


class PathEscape(FileOperationError):
    kind = "PathEscape"


class UnsupportedContent(FileOperationError):
    kind = "UnsupportedContent"


class FileIOError(FileOperationError):
    kind = "IOError"


class UserDenied(CodrError):
    kind = "UserDenied"


class IterationLimitExceeded(CodrError):
    kind = "IterationLimitExceeded"

    def __init__(self, limit: int):
        super().__init__(f"no final answer after {limit} model requests")
        self.limit = limit


class TurnCancelled(CodrError):
    kind = "Cancelled"
