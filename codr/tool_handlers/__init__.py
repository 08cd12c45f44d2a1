"""
Tool handlers package: registry, argument dispatch and the file executor.

Re-exports the public names so callers can import from
`codr.tool_handlers` directly.
"""

from codr.tool_handlers._path import (
    DEFAULT_IGNORE_DIRS,
    resolve_path,
    to_display_path,
)

from codr.tool_handlers.registry import (
    TOOL_ALIAS_MAP,
    TOOL_REGISTRY,
    OperationKind,
    Param,
    ToolSpec,
    lookup,
    make_openai_tools,
    resolve_tool_name,
)

from codr.tool_handlers.file_ops import (
    MAX_FILE_SIZE,
    FileOperationExecutor,
    FileOperationRequest,
    FileOperationResult,
    is_destructive,
)

from codr.tool_handlers.dispatch import resolve_call
