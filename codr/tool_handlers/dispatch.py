"""
Tool dispatch: turn a model ToolCall into a validated FileOperationRequest.

Name lookup, JSON argument decoding (with repair of common model mistakes),
argument alias mapping and type validation all happen here, before the
filesystem is touched. Every failure raises ToolResolutionError.
"""

import json
import re
from typing import Any, Dict, Tuple

from codr.errors import ToolResolutionError
from codr.messages import ToolCall
from codr.tool_handlers.file_ops import FileOperationRequest
from codr.tool_handlers.registry import OperationKind, ToolSpec, lookup


# ---------------------------
# Argument alias mapping
# ---------------------------
# Maps common alternative parameter names to the canonical names, so a model
# that says "path" instead of "file_path" does not burn an iteration.

_FILE_ALIASES = {
    "path": "file_path", "file": "file_path", "filename": "file_path",
    "filepath": "file_path", "file_name": "file_path",
}
_CONTENT_ALIASES = {
    "text": "content", "data": "content", "code": "content",
    "body": "content", "contents": "content",
}
_FOLDER_ALIASES = {
    "path": "folder_path", "folder": "folder_path", "dir": "folder_path",
    "directory": "folder_path", "dir_path": "folder_path",
}

_ARG_ALIASES: Dict[str, Dict[str, str]] = {
    "create_file": {**_FILE_ALIASES, **_CONTENT_ALIASES, "force": "overwrite"},
    "replace_file_content": {**_FILE_ALIASES, **_CONTENT_ALIASES},
    "append_to_file": {**_FILE_ALIASES, **_CONTENT_ALIASES},
    "read_file": dict(_FILE_ALIASES),
    "create_folder": dict(_FOLDER_ALIASES),
    "get_folder_files": {**_FOLDER_ALIASES, "recurse": "recursive"},
}


def _normalize_arg_names(tool_name: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Remap alternative argument names to canonical names for a given tool."""
    aliases = _ARG_ALIASES.get(tool_name)
    if not aliases:
        return args
    normalized: Dict[str, Any] = {}
    # canonical names first so an alias never shadows them
    for key, value in args.items():
        if key in aliases.values():
            normalized[key] = value
    for key, value in args.items():
        canonical = aliases.get(key.lower(), key)
        if canonical in normalized:
            continue
        normalized[canonical] = value
    return normalized


# ---------------------------
# JSON repair for malformed tool arguments
# ---------------------------

def _repair_json(raw: str) -> str:
    """Try to fix common JSON errors from small models."""
    if not raw or not raw.strip():
        return raw
    s = raw.strip()
    # Strip markdown code fences
    fence = re.match(r"^```(?:json)?\s*(.*?)\s*```$", s, re.DOTALL)
    if fence:
        s = fence.group(1)
    s = re.sub(r",\s*([}\]])", r"\1", s)
    if "'" in s and '"' not in s:
        s = s.replace("'", '"')
    opens = s.count("{") - s.count("}")
    if opens > 0:
        s += "}" * opens
    return s


def _decode_arguments(tool_name: str, raw_args: Any) -> Dict[str, Any]:
    if isinstance(raw_args, dict):
        return raw_args
    if raw_args is None or not str(raw_args).strip():
        return {}
    try:
        parsed = json.loads(raw_args)
    except json.JSONDecodeError as exc:
        repaired = _repair_json(str(raw_args))
        try:
            parsed = json.loads(repaired)
        except json.JSONDecodeError:
            raise ToolResolutionError(
                f"invalid JSON in arguments for tool '{tool_name}': {exc}. Raw: {str(raw_args)[:100]}",
                cause=exc,
            ) from exc
    if not isinstance(parsed, dict):
        raise ToolResolutionError(f"invalid arguments for tool '{tool_name}': expected object")
    return parsed


_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "boolean": lambda v: isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
}


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    return value


def _validate_tool_args(spec: ToolSpec, args: Dict[str, Any]) -> Dict[str, Any]:
    valid = [p.name for p in spec.params]
    unknown = sorted(set(args) - set(valid))
    if unknown:
        raise ToolResolutionError(
            f"unknown parameter(s) for tool '{spec.name}': {', '.join(unknown)}. "
            f"Valid parameters: {', '.join(valid)}"
        )

    missing = [name for name in spec.required if args.get(name) is None]
    if missing:
        example_args = {p: "..." for p in spec.required}
        raise ToolResolutionError(
            f"missing required parameter(s) for tool '{spec.name}': {', '.join(missing)}. "
            f"Example: {spec.name}({json.dumps(example_args)})"
        )

    out: Dict[str, Any] = {}
    for p in spec.params:
        value = args.get(p.name)
        if value is None:
            out[p.name] = p.default
            continue
        if p.type == "boolean":
            value = _coerce_bool(value)
        check = _TYPE_CHECKS.get(p.type)
        if check is not None and not check(value):
            raise ToolResolutionError(
                f"invalid type for parameter '{p.name}' on tool '{spec.name}': expected {p.type}"
            )
        out[p.name] = value
    return out


def resolve_call(tool_call: ToolCall) -> Tuple[ToolSpec, FileOperationRequest]:
    """Validate a tool call against the registry and build its request."""
    if not (tool_call.name or "").strip():
        raise ToolResolutionError("missing tool name")
    spec = lookup(tool_call.name)
    args = _decode_arguments(spec.name, tool_call.arguments)
    args = _normalize_arg_names(spec.name, args)
    args = _validate_tool_args(spec, args)

    kind = spec.kind
    if kind == OperationKind.CREATE:
        request = FileOperationRequest(kind, args["file_path"], args["content"], overwrite=bool(args["overwrite"]))
    elif kind in (OperationKind.REPLACE, OperationKind.APPEND):
        request = FileOperationRequest(kind, args["file_path"], args["content"])
    elif kind == OperationKind.READ:
        request = FileOperationRequest(kind, args["file_path"])
    elif kind == OperationKind.MKDIR:
        request = FileOperationRequest(kind, args["folder_path"])
    elif kind == OperationKind.LIST:
        request = FileOperationRequest(kind, args["folder_path"], recursive=bool(args["recursive"]))
    else:
        raise ToolResolutionError(f"tool '{spec.name}' has no file operation")
    return spec, request
