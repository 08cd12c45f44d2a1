"""Tests for the tool registry and tool-call argument resolution."""

import pytest

from codr.errors import ToolResolutionError
from codr.messages import ToolCall
from codr.tool_handlers import (
    TOOL_REGISTRY,
    OperationKind,
    lookup,
    make_openai_tools,
    resolve_call,
)
from codr.tool_handlers.dispatch import _repair_json


class TestRegistry:
    def test_core_tools_registered(self):
        for name in ("create_file", "replace_file_content", "append_to_file", "read_file"):
            assert name in TOOL_REGISTRY

    def test_lookup_unknown(self):
        with pytest.raises(ToolResolutionError) as exc_info:
            lookup("delete_everything")
        assert "Available tools" in str(exc_info.value)

    def test_lookup_is_case_and_space_insensitive(self):
        assert lookup("  Read_File ").name == "read_file"

    def test_lookup_alias(self):
        assert lookup("write_file").name == "create_file"

    def test_registry_is_read_only(self):
        with pytest.raises(TypeError):
            TOOL_REGISTRY["x"] = None

    def test_spec_declares_required(self):
        spec = lookup("create_file")
        assert spec.required == ["file_path", "content"]
        assert spec.param("overwrite").required is False

    def test_openai_tools_shape(self):
        tools = make_openai_tools()
        assert len(tools) == len(TOOL_REGISTRY)
        by_name = {t["function"]["name"]: t for t in tools}
        create = by_name["create_file"]
        assert create["type"] == "function"
        params = create["function"]["parameters"]
        assert params["type"] == "object"
        assert params["required"] == ["file_path", "content"]
        assert params["properties"]["overwrite"]["type"] == "boolean"
        assert params["additionalProperties"] is False
        assert by_name["get_folder_files"]["function"]["parameters"]["properties"]["recursive"]["default"] is True


class TestResolveCall:
    def call(self, name, arguments):
        return ToolCall(id="call_1", name=name, arguments=arguments)

    def test_create(self):
        spec, request = resolve_call(self.call("create_file", '{"file_path": "a.txt", "content": "hi"}'))
        assert spec.name == "create_file"
        assert request.kind == OperationKind.CREATE
        assert request.path == "a.txt"
        assert request.content == "hi"
        assert request.overwrite is False

    def test_create_overwrite_string_bool(self):
        _, request = resolve_call(self.call("create_file", '{"file_path": "a", "content": "", "overwrite": "true"}'))
        assert request.overwrite is True

    def test_read(self):
        _, request = resolve_call(self.call("read_file", '{"file_path": "x.py"}'))
        assert request.kind == OperationKind.READ
        assert request.content is None

    def test_list_defaults_recursive(self):
        _, request = resolve_call(self.call("get_folder_files", '{"folder_path": "."}'))
        assert request.kind == OperationKind.LIST
        assert request.recursive is True

    def test_argument_aliases(self):
        _, request = resolve_call(self.call("append_to_file", '{"path": "log.txt", "text": "more"}'))
        assert request.path == "log.txt"
        assert request.content == "more"

    def test_canonical_name_wins_over_alias(self):
        _, request = resolve_call(self.call("read_file", '{"file_path": "real.txt", "path": "alias.txt"}'))
        assert request.path == "real.txt"

    def test_repairs_trailing_comma(self):
        _, request = resolve_call(self.call("read_file", '{"file_path": "a.txt",}'))
        assert request.path == "a.txt"

    def test_unrepairable_json(self):
        with pytest.raises(ToolResolutionError) as exc_info:
            resolve_call(self.call("read_file", '{"file_path": '))
        assert "invalid JSON" in str(exc_info.value)

    def test_arguments_must_be_object(self):
        with pytest.raises(ToolResolutionError):
            resolve_call(self.call("read_file", '["a.txt"]'))

    def test_missing_required(self):
        with pytest.raises(ToolResolutionError) as exc_info:
            resolve_call(self.call("replace_file_content", '{"file_path": "a.txt"}'))
        assert "content" in str(exc_info.value)

    def test_unknown_parameter(self):
        with pytest.raises(ToolResolutionError) as exc_info:
            resolve_call(self.call("read_file", '{"file_path": "a", "line": 3}'))
        assert "unknown parameter" in str(exc_info.value)

    def test_wrong_type(self):
        with pytest.raises(ToolResolutionError):
            resolve_call(self.call("create_file", '{"file_path": "a", "content": 42}'))

    def test_unknown_tool(self):
        with pytest.raises(ToolResolutionError):
            resolve_call(self.call("run_shell", '{"command": "rm -rf /"}'))

    def test_missing_name(self):
        with pytest.raises(ToolResolutionError):
            resolve_call(self.call("", "{}"))

    def test_empty_arguments_report_missing(self):
        with pytest.raises(ToolResolutionError) as exc_info:
            resolve_call(self.call("read_file", ""))
        assert "missing required" in str(exc_info.value)


def test_repair_json_single_quotes_and_braces():
    assert _repair_json("{'file_path': 'a.txt'") == '{"file_path": "a.txt"}'


def test_repair_json_code_fence():
    assert _repair_json('```json\n{"a": 1}\n```') == '{"a": 1}'
