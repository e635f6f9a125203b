"""Path confinement, sensitive-file denylist and glob compilation.

Every filesystem access made on behalf of a model goes through this module.
Paths are resolved one component at a time with ``dir_fd``-relative opens
starting from a handle on the repository root, so a component that is swapped
for a symlink between the check and the open fails with ELOOP instead of
escaping. Symlinks inside the tree are followed by re-walking their target
from the root handle; a target that leaves the root is rejected.
"""

import errno
import logging
import os
import re
import stat
from collections import deque
from collections.abc import Iterator
from pathlib import Path

from braintrust.evidence.errors import (
    ConfinementError,
    DeniedPathError,
    InvalidArgumentsError,
    InvalidPatternError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

# Directories never descended into by FindFiles/SearchContent
SKIP_DIRS = frozenset({
    ".git", ".svn", ".hg", "node_modules", ".venv", "venv", "__pycache__",
    "target", ".tox", ".mypy_cache", ".pytest_cache", ".braintrust", ".codex-sessions",
})

# Any path containing one of these components is off limits
_SENSITIVE_DIRS = frozenset({".git", ".svn", ".hg", ".ssh", ".aws", ".gnupg", ".docker", ".kube"})

_SENSITIVE_BASENAMES = frozenset({
    ".env", ".envrc", ".netrc", ".npmrc", ".pypirc", ".pgpass", ".git-credentials",
    ".htpasswd", "id_rsa", "id_dsa", "id_ecdsa", "id_ed25519", "credentials",
    "credentials.json", "secrets.json", "secrets.yaml", "secrets.yml",
})

_SENSITIVE_EXTENSIONS = frozenset({
    ".pem", ".key", ".p12", ".pfx", ".jks", ".keystore", ".kdbx", ".ppk", ".gpg", ".asc",
})

_MAX_SYMLINK_HOPS = 40

_DIR_FLAGS = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0) | getattr(os, "O_CLOEXEC", 0)
_FILE_FLAGS = (
    os.O_RDONLY
    | getattr(os, "O_NOFOLLOW", 0)
    | getattr(os, "O_NONBLOCK", 0)
    | getattr(os, "O_CLOEXEC", 0)
)


def is_denied(rel_path: str) -> bool:
    """True if a repository-relative path names a credential or VCS-internal file."""
    parts = [p for p in rel_path.replace("\\", "/").split("/") if p]
    if not parts:
        return False
    if any(p in _SENSITIVE_DIRS for p in parts):
        return True
    name = parts[-1]
    lowered = name.lower()
    if lowered in _SENSITIVE_BASENAMES or lowered.startswith(".env."):
        return True
    return os.path.splitext(lowered)[1] in _SENSITIVE_EXTENSIONS


def denied_pathspecs() -> list[str]:
    """Git exclude pathspecs covering the denylist, for commands that read the index."""
    specs = [f":(exclude,glob)**/{d}/**" for d in sorted(_SENSITIVE_DIRS)]
    specs += [f":(exclude,glob,icase)**/{name}" for name in sorted(_SENSITIVE_BASENAMES)]
    specs.append(":(exclude,glob,icase)**/.env.*")
    specs += [f":(exclude,glob,icase)**/*{ext}" for ext in sorted(_SENSITIVE_EXTENSIONS)]
    return specs


# --- glob ---

def _matching_brace(seg: str, start: int) -> int:
    depth = 0
    for i in range(start, len(seg)):
        if seg[i] == "{":
            depth += 1
        elif seg[i] == "}":
            depth -= 1
            if depth == 0:
                return i
    return -1


def _split_alternatives(body: str) -> list[str]:
    alternatives: list[str] = []
    depth = 0
    current: list[str] = []
    for ch in body:
        if ch == "," and depth == 0:
            alternatives.append("".join(current))
            current = []
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
        current.append(ch)
    alternatives.append("".join(current))
    return alternatives


def _segment_to_regex(seg: str) -> str:
    out: list[str] = []
    i = 0
    n = len(seg)
    while i < n:
        ch = seg[i]
        if ch == "{":
            close = _matching_brace(seg, i)
            alternatives = _split_alternatives(seg[i + 1:close]) if close != -1 else []
            if len(alternatives) < 2:
                # No comma: the braces are literal text
                out.append(re.escape(ch))
            else:
                out.append("(?:" + "|".join(_segment_to_regex(a) for a in alternatives) + ")")
                i = close
        elif ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "[":
            j = i + 1
            if j < n and seg[j] in "!^":
                j += 1
            if j < n and seg[j] == "]":
                j += 1
            close = seg.find("]", j)
            if close == -1:
                out.append(re.escape(ch))
            else:
                body = seg[i + 1:close]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append("[" + body.replace("\\", "\\\\") + "]")
                i = close
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


def compile_glob(pattern: str) -> re.Pattern[str]:
    """Compile a glob into a regex matched against ``relative/path/``.

    ``**`` as a whole segment matches zero or more directories and ``{a,b}``
    alternates within a segment. The trailing slash lets ``**`` at the end of
    a pattern match files as well.

    Raises:
        InvalidPatternError: if no relative path could ever match.
    """
    normalized = (pattern or "").replace("\\", "/").strip()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if not normalized:
        raise InvalidPatternError("pattern is empty")
    if normalized.startswith("/"):
        raise InvalidPatternError(f"pattern must be relative to the repository root: {pattern!r}")

    parts: list[str] = []
    for seg in normalized.split("/"):
        if seg in ("", "."):
            continue
        if seg == "..":
            raise InvalidPatternError(f"pattern cannot contain '..': {pattern!r}")
        if seg == "**":
            parts.append("(?:.+/)?")
        else:
            parts.append(_segment_to_regex(seg) + "/")

    if not parts:
        raise InvalidPatternError(f"pattern matches nothing: {pattern!r}")
    try:
        return re.compile("".join(parts), re.DOTALL)
    except re.error as exc:
        raise InvalidPatternError(f"invalid pattern {pattern!r}: {exc}") from exc


def glob_matches(matcher: re.Pattern[str], rel_path: str) -> bool:
    return matcher.fullmatch(rel_path + "/") is not None


# --- confinement ---

def split_relative(root: Path, path: str) -> list[str]:
    """Split a caller-supplied path into components relative to ``root``.

    Absolute paths are accepted only when they sit lexically under the root.
    ``..`` components are kept for the resolver to apply.
    """
    if not isinstance(path, str) or not path.strip():
        raise InvalidArgumentsError("path is required")
    if "\x00" in path:
        raise ConfinementError("path contains a NUL byte")

    normalized = path.replace("\\", "/")
    if normalized.startswith("/") or re.match(r"^[A-Za-z]:/", normalized):
        root_prefix = root.as_posix().rstrip("/") + "/"
        if not normalized.startswith(root_prefix):
            raise ConfinementError(f"absolute path outside repository root: {path}")
        normalized = normalized[len(root_prefix):]

    return [p for p in normalized.split("/") if p not in ("", ".")]


def normalize_relative(root: Path, path: str) -> str:
    """Lexically collapse ``..`` without touching the filesystem."""
    stack: list[str] = []
    for part in split_relative(root, path):
        if part == "..":
            if not stack:
                raise ConfinementError(f"path escapes repository root: {path}")
            stack.pop()
        else:
            stack.append(part)
    rel = "/".join(stack)
    if is_denied(rel):
        raise DeniedPathError(f"access denied: {path}")
    return rel


def _translate_os_error(exc: OSError, path: str) -> Exception:
    if exc.errno == errno.ELOOP:
        return ConfinementError(f"symlink encountered while opening {path}")
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)):
        return NotFoundError(f"no such file: {path}")
    return NotFoundError(f"cannot open {path}: {exc.strerror or exc}")


def _descend(root: Path, path: str, *, open_file: bool) -> tuple[int | None, str, os.stat_result]:
    """Resolve ``path`` under ``root`` component by component.

    Returns (fd of the final regular file or None, canonical relative path,
    lstat of the final entry). The caller owns the returned fd.
    """
    parts = deque(split_relative(root, path))
    stack = [os.open(root, _DIR_FLAGS)]
    names: list[str] = []
    hops = 0
    final_stat = os.fstat(stack[0])
    try:
        while parts:
            part = parts.popleft()
            if part == "..":
                if len(stack) == 1:
                    raise ConfinementError(f"path escapes repository root: {path}")
                os.close(stack.pop())
                names.pop()
                final_stat = os.fstat(stack[-1])
                continue

            try:
                st = os.stat(part, dir_fd=stack[-1], follow_symlinks=False)
            except OSError as exc:
                raise _translate_os_error(exc, path) from exc

            if stat.S_ISLNK(st.st_mode):
                hops += 1
                if hops > _MAX_SYMLINK_HOPS:
                    raise ConfinementError(f"too many symlinks resolving {path}")
                target = os.readlink(part, dir_fd=stack[-1])
                if target.startswith("/"):
                    target_parts = split_relative(root, target)
                    while len(stack) > 1:
                        os.close(stack.pop())
                    names.clear()
                else:
                    target_parts = [p for p in target.split("/") if p not in ("", ".")]
                parts.extendleft(reversed(target_parts))
                continue

            candidate = "/".join([*names, part])
            if is_denied(candidate):
                raise DeniedPathError(f"access denied: {path}")

            if parts:
                if not stat.S_ISDIR(st.st_mode):
                    raise NotFoundError(f"not a directory: {candidate}")
                try:
                    fd = os.open(part, _DIR_FLAGS | getattr(os, "O_NOFOLLOW", 0), dir_fd=stack[-1])
                except OSError as exc:
                    raise _translate_os_error(exc, path) from exc
                stack.append(fd)
                names.append(part)
                final_stat = st
                continue

            names.append(part)
            final_stat = st
            if not open_file:
                return None, candidate, st
            if not stat.S_ISREG(st.st_mode):
                raise NotFoundError(f"not a regular file: {candidate}")
            try:
                fd = os.open(part, _FILE_FLAGS, dir_fd=stack[-1])
            except OSError as exc:
                raise _translate_os_error(exc, path) from exc
            if not stat.S_ISREG(os.fstat(fd).st_mode):
                os.close(fd)
                raise NotFoundError(f"not a regular file: {candidate}")
            return fd, candidate, st

        rel = "/".join(names)
        if open_file:
            raise NotFoundError(f"not a regular file: {rel or '.'}")
        return None, rel, final_stat
    finally:
        for fd in stack:
            os.close(fd)


def open_confined(root: Path, path: str) -> tuple[int, str]:
    """Open a regular file inside ``root``. Returns (fd, canonical relative path)."""
    fd, rel, _ = _descend(root, path, open_file=True)
    assert fd is not None
    return fd, rel


def resolve_confined(root: Path, path: str) -> str:
    """Canonical relative path of an existing entry (file or directory) inside ``root``."""
    _, rel, _ = _descend(root, path, open_file=False)
    return rel


def walk_files(root: Path) -> Iterator[tuple[str, str, int, int]]:
    """Yield (relative path, basename, dir fd, size) for regular files under ``root``.

    Order is deterministic: files of a directory in name order, then its
    subdirectories in name order. Symlinks are neither reported nor followed;
    skipped and sensitive directories are pruned before descent. The dir fd is
    only valid until the generator advances.
    """
    walker = os.fwalk(str(root), follow_symlinks=False)
    root_str = str(root)
    try:
        for dirpath, dirnames, filenames, dirfd in walker:
            rel_dir = os.path.relpath(dirpath, root_str).replace(os.sep, "/")
            prefix = "" if rel_dir == "." else rel_dir + "/"
            dirnames[:] = sorted(
                d for d in dirnames
                if d not in SKIP_DIRS and not is_denied(prefix + d)
            )
            for name in sorted(filenames):
                rel = prefix + name
                if is_denied(rel):
                    continue
                try:
                    st = os.stat(name, dir_fd=dirfd, follow_symlinks=False)
                except OSError:
                    continue
                if not stat.S_ISREG(st.st_mode):
                    continue
                yield rel, name, dirfd, st.st_size
    finally:
        walker.close()


def open_in_dir(dirfd: int, name: str) -> int | None:
    """Open a walked file without following symlinks; None if it vanished or changed type."""
    try:
        fd = os.open(name, _FILE_FLAGS, dir_fd=dirfd)
    except OSError as exc:
        logger.debug("Skipping %s: %s", name, exc)
        return None
    if not stat.S_ISREG(os.fstat(fd).st_mode):
        os.close(fd)
        return None
    return fd
