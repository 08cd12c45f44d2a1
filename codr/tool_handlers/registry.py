"""
Tool registry: the static catalog of callable file tools and its rendering
into the chat-completions `tools` schema.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from codr.errors import ToolResolutionError


class OperationKind(str, Enum):
    CREATE = "create"
    READ = "read"
    REPLACE = "replace"
    APPEND = "append"
    MKDIR = "mkdir"
    LIST = "list"


@dataclass(frozen=True)
class Param:
    name: str
    type: str
    description: str
    required: bool = True
    default: Any = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    kind: OperationKind
    description: str
    params: Tuple[Param, ...]

    @property
    def required(self) -> List[str]:
        return [p.name for p in self.params if p.required]

    def param(self, name: str) -> Optional[Param]:
        for p in self.params:
            if p.name == name:
                return p
        return None


_FILE_PATH = Param("file_path", "string", "Path of the file, relative to the project root")
_FOLDER_PATH = Param("folder_path", "string", "Path of the folder, relative to the project root")

_TOOLS = (
    ToolSpec(
        name="create_file",
        kind=OperationKind.CREATE,
        description=(
            "Create a new file with the given content. Parent folders are created as needed. "
            "Fails if the file already exists unless overwrite is true."
        ),
        params=(
            _FILE_PATH,
            Param("content", "string", "Full content of the new file"),
            Param("overwrite", "boolean", "Replace the file if it already exists", required=False, default=False),
        ),
    ),
    ToolSpec(
        name="replace_file_content",
        kind=OperationKind.REPLACE,
        description="Replace the whole content of an existing file. Never creates files.",
        params=(
            _FILE_PATH,
            Param("content", "string", "New content of the file"),
        ),
    ),
    ToolSpec(
        name="append_to_file",
        kind=OperationKind.APPEND,
        description="Append content to the end of an existing file.",
        params=(
            _FILE_PATH,
            Param("content", "string", "Content to append"),
        ),
    ),
    ToolSpec(
        name="read_file",
        kind=OperationKind.READ,
        description="Read the full text content of a file.",
        params=(_FILE_PATH,),
    ),
    ToolSpec(
        name="create_folder",
        kind=OperationKind.MKDIR,
        description="Create a folder, including any missing parent folders.",
        params=(_FOLDER_PATH,),
    ),
    ToolSpec(
        name="get_folder_files",
        kind=OperationKind.LIST,
        description="List files and folders in a directory, including nested contents.",
        params=(
            _FOLDER_PATH,
            Param(
                "recursive", "boolean",
                "Whether to list the contents of subfolders too (default: true)",
                required=False, default=True,
            ),
        ),
    ),
)

TOOL_REGISTRY: Mapping[str, ToolSpec] = MappingProxyType({t.name: t for t in _TOOLS})

# Names models commonly guess instead of the canonical ones
TOOL_ALIAS_MAP: Mapping[str, str] = MappingProxyType({
    "write_file": "create_file",
    "replace_file": "replace_file_content",
    "append_file": "append_to_file",
    "mkdir": "create_folder",
    "list_files": "get_folder_files",
})


def resolve_tool_name(name: str) -> str:
    raw = (name or "").strip()
    if raw:
        raw = raw.splitlines()[0]
    if "<|" in raw:
        raw = raw.split("<|", 1)[0]
    key = raw.strip().lower()
    return TOOL_ALIAS_MAP.get(key, key)


def lookup(name: str) -> ToolSpec:
    """Return the ToolSpec for `name` or raise ToolResolutionError."""
    spec = TOOL_REGISTRY.get(resolve_tool_name(name))
    if spec is None:
        available = ", ".join(sorted(TOOL_REGISTRY))
        raise ToolResolutionError(f"unknown tool '{name}'. Available tools: {available}")
    return spec


def make_openai_tools(registry: Optional[Mapping[str, ToolSpec]] = None) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for spec in (registry or TOOL_REGISTRY).values():
        properties: Dict[str, Any] = {}
        for p in spec.params:
            prop: Dict[str, Any] = {"type": p.type, "description": p.description}
            if not p.required and p.default is not None:
                prop["default"] = p.default
            properties[p.name] = prop
        out.append({
            "type": "function",
            "function": {
                "name": spec.name,
                "description": spec.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": spec.required,
                    "additionalProperties": False,
                },
            },
        })
    return out
