"""Tests for braintrust/evidence/dispatch.py: tool names, arguments, structured errors."""

import asyncio

import pytest

from braintrust.evidence.dispatch import TOOL_SPECS, ToolDispatcher, canonical_tool_name
from braintrust.models import ToolInvocation


def _inv(name: str, arguments: dict | None = None, argument_error: str | None = None) -> ToolInvocation:
    return ToolInvocation(
        name=name,
        arguments=arguments or {},
        call_id="call_1",
        sequence=1,
        argument_error=argument_error,
    )


@pytest.fixture
def dispatcher(toolkit) -> ToolDispatcher:
    return ToolDispatcher(toolkit)


def test_tool_specs_cover_the_four_operations():
    assert [s.name for s in TOOL_SPECS] == ["find_files", "search_content", "read_file", "diff_changes"]
    for tool in TOOL_SPECS:
        assert tool.parameters["type"] == "object"


@pytest.mark.parametrize(
    ("alias", "canonical"),
    [("Glob", "find_files"), ("glob_files", "find_files"), ("Grep", "search_content"),
     ("grep_content", "search_content"), ("Read", "read_file"), ("GitDiff", "diff_changes"),
     ("git_diff", "diff_changes"), ("read_file", "read_file")],
)
def test_aliases(alias, canonical):
    assert canonical_tool_name(alias) == canonical


async def test_find_files_payload(dispatcher):
    result = await dispatcher.execute(_inv("find_files", {"pattern": "**/*.go"}))
    assert result.ok
    assert result.payload == {"pattern": "**/*.go", "count": 1, "results": ["main.go"]}


async def test_search_content_accepts_pattern_alias(dispatcher):
    result = await dispatcher.execute(_inv("Grep", {"pattern": "Println", "glob": "*.go"}))
    assert result.ok
    assert result.tool == "search_content"
    assert result.payload["matches"] == [{"path": "main.go", "line": 6, "text": '\tfmt.Println("hello")'}]


async def test_read_file_payload_is_numbered(dispatcher):
    result = await dispatcher.execute(_inv("read_file", {"path": "src/pkg/util.py"}))
    assert result.ok
    assert result.payload["start_line"] == 1
    assert result.payload["end_line"] == 2
    assert result.payload["content"] == "     1\tdef helper(x):\n     2\t    return x + 1"


async def test_read_file_accepts_offset_and_limit_aliases(dispatcher):
    result = await dispatcher.execute(_inv("Read", {"file_path": "main.go", "offset": 5, "limit": 2}))
    assert result.ok
    assert result.payload["start_line"] == 5
    assert result.payload["end_line"] == 6


async def test_integral_floats_and_numeric_strings_are_accepted(dispatcher):
    result = await dispatcher.execute(_inv("read_file", {"path": "main.go", "start_line": 2.0, "end_line": "3"}))
    assert result.ok
    assert result.payload["start_line"] == 2


@pytest.mark.parametrize(
    ("name", "arguments", "code"),
    [
        ("read_file", {"path": "../../etc/passwd"}, "confinement"),
        ("read_file", {"path": ".env"}, "denied"),
        ("read_file", {"path": "missing.txt"}, "not_found"),
        ("read_file", {}, "invalid_arguments"),
        ("read_file", {"path": 42}, "invalid_arguments"),
        ("read_file", {"path": "main.go", "start_line": True}, "invalid_arguments"),
        ("find_files", {"pattern": "/abs/*"}, "invalid_pattern"),
        ("diff_changes", {"base": "x;y"}, "invalid_ref"),
        ("delete_repo", {}, "unknown_tool"),
    ],
)
async def test_errors_become_structured_results(dispatcher, name, arguments, code):
    result = await dispatcher.execute(_inv(name, arguments))
    assert result.ok is False
    assert result.error_code == code
    assert result.error


async def test_undecodable_arguments_are_reported_not_raised(dispatcher):
    result = await dispatcher.execute(_inv("read_file", argument_error="arguments are not valid JSON"))
    assert result.ok is False
    assert result.error_code == "invalid_arguments"
    assert "not valid JSON" in result.error


async def test_timeout_becomes_timeout_result(toolkit, monkeypatch):
    dispatcher = ToolDispatcher(toolkit, timeout_sec=0.05)

    async def slow_diff(base_ref=None, path=None):
        await asyncio.sleep(5)

    monkeypatch.setattr(toolkit, "diff_changes", slow_diff)

    result = await dispatcher.execute(_inv("diff_changes", {}))

    assert result.ok is False
    assert result.error_code == "timeout"
