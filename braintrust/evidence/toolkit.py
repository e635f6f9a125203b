"""Read-only evidence operations against a confined repository root."""

import asyncio
import contextlib
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from braintrust.evidence.errors import (
    GitCommandError,
    InvalidArgumentsError,
    InvalidRefError,
    NotFoundError,
    SizeLimitError,
    ToolTimeoutError,
)
from braintrust.evidence.paths import (
    compile_glob,
    denied_pathspecs,
    glob_matches,
    is_denied,
    normalize_relative,
    open_confined,
    open_in_dir,
    resolve_confined,
    walk_files,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 200
DEFAULT_MAX_FILE_BYTES = 2 * 1024 * 1024
DEFAULT_MAX_READ_LINES = 400
DEFAULT_MAX_DIFF_LINES = 10_000
DEFAULT_DIFF_TIMEOUT_SEC = 60.0
DEFAULT_BASE_REF = "main"

# Longest line text returned by SearchContent
_MAX_MATCH_CHARS = 1000
_GIT_LINE_LIMIT = 4 * 1024 * 1024

# Repository config must not be able to run programs or rewrite the output
_GIT_CONFIG_OVERRIDES = (
    "-c", "core.quotepath=off",
    "-c", "core.fsmonitor=false",
    "-c", "diff.external=",
    "-c", "diff.noprefix=false",
)
_GIT_DIFF_FLAGS = (
    "--no-color", "--no-ext-diff", "--no-textconv", "--relative",
    "--src-prefix=a/", "--dst-prefix=b/",
)
_GIT_ENV = {"GIT_CONFIG_NOSYSTEM": "1", "GIT_TERMINAL_PROMPT": "0", "GIT_OPTIONAL_LOCKS": "0"}

_DIFF_HEADER = "diff --git "
_NEW_SIDE_RE = re.compile(r' "?b/')

_SAFE_REF_RE = re.compile(r"[A-Za-z0-9._/\-]+")

_BINARY_EXTENSIONS = frozenset({
    ".pyc", ".pyo", ".so", ".dll", ".dylib", ".exe", ".bin", ".class", ".jar",
    ".sqlite", ".db", ".o", ".a", ".png", ".jpg", ".jpeg", ".gif", ".ico", ".pdf",
    ".zip", ".gz", ".tar", ".whl",
})


@dataclass(frozen=True)
class SearchMatch:
    path: str
    line_number: int
    line: str


@dataclass(frozen=True)
class DiffResult:
    text: str
    truncated: bool
    compared: str        # revision expression that produced the diff


def _clamp(value: int | None, ceiling: int) -> int:
    if value is None or value <= 0:
        return ceiling
    return min(value, ceiling)


class EvidenceToolkit:
    """FindFiles / SearchContent / ReadFile / DiffChanges over one repository.

    Every operation is a read; none mutates the tree. Blocking operations are
    plain methods (callers run them in a worker thread); DiffChanges is a
    coroutine because it streams a subprocess.
    """

    def __init__(
        self,
        root: str | Path,
        *,
        max_results: int = DEFAULT_MAX_RESULTS,
        max_file_bytes: int = DEFAULT_MAX_FILE_BYTES,
        max_read_lines: int = DEFAULT_MAX_READ_LINES,
        max_diff_lines: int = DEFAULT_MAX_DIFF_LINES,
        diff_timeout_sec: float = DEFAULT_DIFF_TIMEOUT_SEC,
    ) -> None:
        resolved = Path(root).expanduser().resolve()
        if not resolved.is_dir():
            raise ValueError(f"Repository root is not a directory: {root}")
        if not os.access(resolved, os.R_OK | os.X_OK):
            raise ValueError(f"Repository root is not readable: {root}")
        self.root = resolved
        self.max_results = max_results
        self.max_file_bytes = max_file_bytes
        self.max_read_lines = max_read_lines
        self.max_diff_lines = max_diff_lines
        self.diff_timeout_sec = diff_timeout_sec

    def find_files(self, pattern: str, max_results: int | None = None) -> list[str]:
        """Relative paths of regular files whose full path matches ``pattern``."""
        limit = _clamp(max_results, self.max_results)
        matcher = compile_glob(pattern)
        results: list[str] = []
        with contextlib.closing(walk_files(self.root)) as walker:
            for rel, _name, _dirfd, _size in walker:
                if glob_matches(matcher, rel):
                    results.append(rel)
                    if len(results) >= limit:
                        break
        return results

    def search_content(
        self,
        query: str,
        glob_filter: str | None = None,
        max_results: int | None = None,
    ) -> list[SearchMatch]:
        """Lines matching ``query`` as a regex, or as a literal when it does not compile."""
        if not query:
            raise InvalidArgumentsError("query is required")
        limit = _clamp(max_results, self.max_results)
        try:
            regex = re.compile(query)
        except re.error as exc:
            logger.debug("Query %r is not a valid regex (%s), matching literally", query, exc)
            regex = re.compile(re.escape(query))
        matcher = compile_glob(glob_filter) if glob_filter else None

        results: list[SearchMatch] = []
        with contextlib.closing(walk_files(self.root)) as walker:
            for rel, name, dirfd, size in walker:
                if matcher is not None and not glob_matches(matcher, rel):
                    continue
                if size > self.max_file_bytes:
                    logger.debug("Skipping %s: %d bytes exceeds ceiling", rel, size)
                    continue
                if os.path.splitext(name)[1].lower() in _BINARY_EXTENSIONS:
                    continue
                fd = open_in_dir(dirfd, name)
                if fd is None:
                    continue
                with os.fdopen(fd, "r", encoding="utf-8", errors="replace") as handle:
                    for line_number, line in enumerate(handle, start=1):
                        if "\x00" in line:
                            break
                        text = line.rstrip("\r\n")
                        if regex.search(text):
                            results.append(SearchMatch(rel, line_number, text[:_MAX_MATCH_CHARS]))
                            if len(results) >= limit:
                                return results
        return results

    def window(
        self,
        start_line: int | None,
        end_line: int | None,
        max_lines: int | None,
    ) -> tuple[int, int]:
        """Effective 1-based inclusive (start, end); never wider than max_lines."""
        limit = _clamp(max_lines, self.max_read_lines)
        start = start_line if start_line is not None and start_line >= 1 else 1
        end = end_line if end_line is not None and end_line > 0 else start + limit - 1
        if end < start:
            end = start
        if end - start + 1 > limit:
            end = start + limit - 1
        return start, end

    def read_file(
        self,
        path: str,
        start_line: int | None = None,
        end_line: int | None = None,
        max_lines: int | None = None,
    ) -> list[tuple[int, str]]:
        """Numbered lines of a regular file inside the root."""
        start, end = self.window(start_line, end_line, max_lines)
        fd, rel = open_confined(self.root, path)
        size = os.fstat(fd).st_size
        if size > self.max_file_bytes:
            os.close(fd)
            raise SizeLimitError(f"{rel} is {size} bytes, limit is {self.max_file_bytes}")
        lines: list[tuple[int, str]] = []
        with os.fdopen(fd, "r", encoding="utf-8", errors="replace") as handle:
            for line_number, line in enumerate(handle, start=1):
                if line_number < start:
                    continue
                if line_number > end:
                    break
                lines.append((line_number, line.rstrip("\r\n")))
        return lines

    async def diff_changes(self, base_ref: str | None = None, path: str | None = None) -> DiffResult:
        """Diff of ``base_ref...HEAD``, falling back to weaker comparisons.

        Output is limited to the root even when the root is a subdirectory of
        a larger repository, and sections for denylisted paths are withheld.
        """
        base = base_ref or DEFAULT_BASE_REF
        if not _SAFE_REF_RE.fullmatch(base) or base.startswith("-"):
            raise InvalidRefError(f"invalid base ref: {base!r}")

        pathspec = ["--", (self._diff_pathspec(path) if path else "") or ".", *denied_pathspecs()]

        attempts = [[f"{base}...HEAD"], [base], ["HEAD"], []]
        last_error: GitCommandError | None = None
        for revs in attempts:
            try:
                text, truncated = await self._run_git_diff(revs, pathspec)
            except GitCommandError as exc:
                logger.debug("git diff %s failed: %s", " ".join(revs) or "(worktree)", exc)
                last_error = exc
                continue
            return DiffResult(text=text, truncated=truncated, compared=" ".join(revs) or "worktree")
        assert last_error is not None
        raise last_error

    def _diff_pathspec(self, path: str) -> str:
        try:
            return resolve_confined(self.root, path)
        except NotFoundError:
            # Deleted files still show up in diffs
            return normalize_relative(self.root, path)

    async def _run_git_diff(self, revs: list[str], pathspec: list[str]) -> tuple[str, bool]:
        cmd = ["git", "--no-pager", *_GIT_CONFIG_OVERRIDES, "diff", *_GIT_DIFF_FLAGS, *revs, *pathspec]
        env = {**os.environ, **_GIT_ENV}
        env.pop("GIT_EXTERNAL_DIFF", None)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(self.root),
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
                limit=_GIT_LINE_LIMIT,
            )
        except OSError as exc:
            raise GitCommandError(f"failed to start git: {exc}") from exc

        lines: list[str] = []

        async def collect() -> bool:
            assert proc.stdout is not None
            withheld = False
            while True:
                try:
                    raw = await proc.stdout.readline()
                except ValueError:
                    logger.warning("git diff produced a line over %d bytes, truncating", _GIT_LINE_LIMIT)
                    return True
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if line.startswith(_DIFF_HEADER):
                    withheld = _section_is_denied(line)
                    if withheld:
                        logger.info("Withholding diff section: %s", line)
                if withheld:
                    continue
                if len(lines) >= self.max_diff_lines:
                    return True
                lines.append(line)
            await proc.wait()
            return False

        try:
            truncated = await asyncio.wait_for(collect(), timeout=self.diff_timeout_sec)
        except TimeoutError as exc:
            raise ToolTimeoutError(f"git diff timed out after {self.diff_timeout_sec}s") from exc
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()

        text = "\n".join(lines)
        if not truncated and proc.returncode != 0 and not text:
            raise GitCommandError(
                f"git diff {' '.join(revs) or '(worktree)'} exited with status {proc.returncode}"
            )
        return text, truncated


def _section_is_denied(header: str) -> bool:
    """True if either side of a ``diff --git a/X b/Y`` header is denylisted.

    Paths may contain `` b/`` themselves, so every split point is checked.
    """
    rest = header[len(_DIFF_HEADER):]
    for match in _NEW_SIDE_RE.finditer(rest):
        old = rest[:match.start()].strip('"')
        new = rest[match.start() + 1:].strip('"')
        if is_denied(old.removeprefix("a/")) or is_denied(new.removeprefix("b/")):
            return True
    return False
