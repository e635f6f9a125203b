"""Tool declarations and dispatch of canonical ToolInvocations onto the toolkit."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from braintrust.evidence.errors import (
    InvalidArgumentsError,
    ToolError,
    ToolTimeoutError,
    UnknownToolError,
)
from braintrust.evidence.toolkit import EvidenceToolkit
from braintrust.models import ToolInvocation, ToolResult

logger = logging.getLogger(__name__)

DEFAULT_TOOL_TIMEOUT_SEC = 120.0

FIND_FILES = "find_files"
SEARCH_CONTENT = "search_content"
READ_FILE = "read_file"
DIFF_CHANGES = "diff_changes"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    parameters: dict[str, Any]


TOOL_SPECS: list[ToolSpec] = [
    ToolSpec(
        name=FIND_FILES,
        description=(
            "Find repository files whose relative path matches a glob. "
            "Supports *, ?, [...] and ** (zero or more directories)."
        ),
        parameters={
            "type": "object",
            "properties": {
                "pattern": {"type": "string", "description": "Glob like src/**/*.py or **/*.go"},
                "max_results": {"type": "integer", "description": "Max results (<=200). Default 200."},
            },
            "required": ["pattern"],
        },
    ),
    ToolSpec(
        name=SEARCH_CONTENT,
        description=(
            "Search file contents for a regex (falls back to a literal match if the regex "
            "is invalid); optionally restrict to files matching a glob."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Regular expression or literal text"},
                "glob": {"type": "string", "description": "Optional glob scope like src/**/*.ts"},
                "max_results": {"type": "integer", "description": "Max matches (<=200). Default 200."},
            },
            "required": ["query"],
        },
    ),
    ToolSpec(
        name=READ_FILE,
        description="Read a line range of a file (path relative to the repository root).",
        parameters={
            "type": "object",
            "properties": {
                "path": {"type": "string", "description": "Relative file path"},
                "start_line": {"type": "integer", "description": "1-based start line. Default 1."},
                "end_line": {"type": "integer", "description": "1-based inclusive end line"},
                "max_lines": {"type": "integer", "description": "Max lines (<=400). Default 400."},
            },
            "required": ["path"],
        },
    ),
    ToolSpec(
        name=DIFF_CHANGES,
        description="Show the git diff of HEAD against a base ref, optionally for one path.",
        parameters={
            "type": "object",
            "properties": {
                "base": {"type": "string", "description": "Base ref to diff against. Default 'main'."},
                "path": {"type": "string", "description": "Optional path to restrict the diff"},
            },
            "required": [],
        },
    ),
]

_ALIASES = {
    FIND_FILES: FIND_FILES, "Glob": FIND_FILES, "glob_files": FIND_FILES,
    SEARCH_CONTENT: SEARCH_CONTENT, "Grep": SEARCH_CONTENT, "grep_content": SEARCH_CONTENT,
    READ_FILE: READ_FILE, "Read": READ_FILE,
    DIFF_CHANGES: DIFF_CHANGES, "GitDiff": DIFF_CHANGES, "git_diff": DIFF_CHANGES,
}


def canonical_tool_name(name: str) -> str | None:
    return _ALIASES.get(name)


def _str_arg(args: dict[str, Any], *keys: str, required: bool = False) -> str | None:
    for key in keys:
        value = args.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise InvalidArgumentsError(f"'{key}' must be a string")
        return value
    if required:
        raise InvalidArgumentsError(f"missing required parameter: {keys[0]}")
    return None


def _int_arg(args: dict[str, Any], *keys: str) -> int | None:
    for key in keys:
        value = args.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            raise InvalidArgumentsError(f"'{key}' must be an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value.strip())
        raise InvalidArgumentsError(f"'{key}' must be an integer")
    return None


class ToolDispatcher:
    """Execute ToolInvocations against an EvidenceToolkit; never raises ToolError."""

    def __init__(self, toolkit: EvidenceToolkit, timeout_sec: float = DEFAULT_TOOL_TIMEOUT_SEC) -> None:
        self.toolkit = toolkit
        self.timeout_sec = timeout_sec

    async def execute(self, invocation: ToolInvocation) -> ToolResult:
        tool = canonical_tool_name(invocation.name) or invocation.name
        try:
            if invocation.argument_error:
                raise InvalidArgumentsError(invocation.argument_error)
            if canonical_tool_name(invocation.name) is None:
                raise UnknownToolError(
                    f"unknown tool: {invocation.name} (available: {', '.join(s.name for s in TOOL_SPECS)})"
                )
            try:
                payload = await asyncio.wait_for(
                    self._run(tool, invocation.arguments),
                    timeout=self.timeout_sec,
                )
            except TimeoutError as exc:
                raise ToolTimeoutError(f"{tool} timed out after {self.timeout_sec}s") from exc
        except ToolError as exc:
            logger.debug("Tool %s #%d failed: [%s] %s", tool, invocation.sequence, exc.code, exc.message)
            return ToolResult(ok=False, tool=tool, error_code=exc.code, error=exc.message)
        except OSError as exc:
            logger.warning("Tool %s #%d I/O error: %s", tool, invocation.sequence, exc)
            return ToolResult(ok=False, tool=tool, error_code="io_error", error=str(exc))
        return ToolResult(ok=True, tool=tool, payload=payload)

    async def _run(self, tool: str, args: dict[str, Any]) -> dict[str, Any]:
        kit = self.toolkit
        if tool == FIND_FILES:
            pattern = _str_arg(args, "pattern", required=True)
            limit = _int_arg(args, "max_results")
            files = await asyncio.to_thread(kit.find_files, pattern, limit)
            return {"pattern": pattern, "count": len(files), "results": files}

        if tool == SEARCH_CONTENT:
            query = _str_arg(args, "query", "pattern", required=True)
            glob_filter = _str_arg(args, "glob")
            limit = _int_arg(args, "max_results", "head_limit")
            matches = await asyncio.to_thread(kit.search_content, query, glob_filter, limit)
            return {
                "query": query,
                "count": len(matches),
                "matches": [{"path": m.path, "line": m.line_number, "text": m.line} for m in matches],
            }

        if tool == READ_FILE:
            path = _str_arg(args, "path", "file_path", required=True)
            start = _int_arg(args, "start_line", "offset")
            end = _int_arg(args, "end_line")
            max_lines = _int_arg(args, "max_lines", "limit")
            lines = await asyncio.to_thread(kit.read_file, path, start, end, max_lines)
            first, last = kit.window(start, end, max_lines)
            return {
                "path": path,
                "start_line": first,
                "end_line": lines[-1][0] if lines else last,
                "content": "\n".join(f"{n:>6}\t{text}" for n, text in lines),
            }

        # DIFF_CHANGES
        base = _str_arg(args, "base", "base_ref")
        path = _str_arg(args, "path", "file_path")
        diff = await kit.diff_changes(base, path)
        return {
            "compared": diff.compared,
            "truncated": diff.truncated,
            "diff": diff.text or "No changes found.",
        }
