"""Errors raised by the evidence toolkit. Always recovered into a ToolResult."""


class ToolError(Exception):
    """Base for every recoverable tool failure."""

    code = "tool_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidPatternError(ToolError):
    code = "invalid_pattern"


class InvalidRefError(ToolError):
    code = "invalid_ref"


class ConfinementError(ToolError):
    """Path resolves outside the repository root."""

    code = "confinement"


class NotFoundError(ToolError):
    code = "not_found"


class DeniedPathError(ToolError):
    """Path matches the sensitive-file denylist."""

    code = "denied"


class SizeLimitError(ToolError):
    code = "too_large"


class InvalidArgumentsError(ToolError):
    code = "invalid_arguments"


class UnknownToolError(ToolError):
    code = "unknown_tool"


class ToolTimeoutError(ToolError):
    code = "timeout"


class GitCommandError(ToolError):
    code = "git_failed"
