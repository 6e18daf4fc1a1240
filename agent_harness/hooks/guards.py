"""
Policy guards for tool-use events.

Each guard is a plain function ``(event, context) -> HookResult`` that tests
one rule against the event and, at most, reads the filesystem. Guards deny
only on an explicit policy match; anything they cannot decide continues.

Guards:
- block_dangerous_commands: destructive shell commands and system path writes
- block_protected_files:    writes/edits to secrets and credential stores
- prevent_force_push:       force pushes to main/master
- tdd_guard / tdd_guard_warn: edits to source files that have no test
"""

from __future__ import annotations

import re
import shlex
from pathlib import Path, PurePosixPath

from .types import HookContext, HookEvent, HookResult


# =============================================================================
# Dangerous Commands
# =============================================================================

# Checked in order; the first match wins
DANGEROUS_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"rm\s+-(?:rf|fr)\s+/(?!\w)"),  # rm -rf / (but allow rm -rf /path)
    re.compile(r"rm\s+-(?:rf|fr)\s+~/"),
    re.compile(r"rm\s+-(?:rf|fr)\s+\$HOME"),
    re.compile(r">\s*/dev/sd[a-z]"),  # Write to disk devices
    re.compile(r"mkfs\."),
    re.compile(r"dd\s+if=.*of=/dev"),
    re.compile(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),  # Fork bomb
    re.compile(r"wget.*\|\s*(?:ba|z)?sh\b"),
    re.compile(r"curl.*\|\s*(?:ba|z)?sh\b"),
    re.compile(r"chmod\s+(?:-R\s+)?777\s+/"),
    re.compile(r"chown\s+-R\s+.*\s+/"),
]

SYSTEM_PATH_PREFIXES = ("/etc/", "/usr/", "/bin/", "/sbin/", "/boot/", "/sys/", "/proc/")

# Redirect, tee or rm (with any flags) directly in front of a path
_WRITE_OR_DELETE = r"(?:>>?\s*|\brm\s+(?:-\S+\s+)*|\btee\s+(?:-\S+\s+)*)"

SYSTEM_PATH_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    (prefix, re.compile(_WRITE_OR_DELETE + re.escape(prefix)))
    for prefix in SYSTEM_PATH_PREFIXES
]


def block_dangerous_commands(event: HookEvent, context: HookContext) -> HookResult:
    """Deny Bash commands that destroy data or modify system paths."""
    if event.tool_name != "Bash":
        return HookResult.proceed()

    command = event.command

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(command):
            return HookResult.deny(
                f"Dangerous command blocked: matches pattern {pattern.pattern}"
            )

    for prefix, pattern in SYSTEM_PATH_PATTERNS:
        if pattern.search(command):
            return HookResult.deny(f"Cannot modify system path: {prefix}")

    return HookResult.proceed()


# =============================================================================
# Protected Files
# =============================================================================

PROTECTED_FILE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\.env\.production$"),
    re.compile(r"\.env\.local$"),
    re.compile(r"credentials\.json$"),
    re.compile(r"secrets\.json$"),
    re.compile(r"\.ssh/"),
    re.compile(r"\.gnupg/"),
    re.compile(r"\.aws/credentials$"),
    re.compile(r"\.kube/config$"),
]


def block_protected_files(event: HookEvent, context: HookContext) -> HookResult:
    """Deny Write/Edit on environment files, credentials and key stores."""
    if event.tool_name not in ("Write", "Edit"):
        return HookResult.proceed()

    file_path = event.file_path
    normalized = file_path.replace("\\", "/")

    for pattern in PROTECTED_FILE_PATTERNS:
        if pattern.search(normalized):
            return HookResult.deny(f"Cannot modify protected file: {file_path}")

    return HookResult.proceed()


# =============================================================================
# Force Push
# =============================================================================

PROTECTED_BRANCHES = ("main", "master")
FORCE_PUSH_REASON = "Force push to main/master is blocked. Use a feature branch instead."

_FORCE_LONG_FLAGS = ("--force", "--force-with-lease")
# Long options of git push that take a separate value
_VALUE_OPTIONS = ("-o", "--push-option", "--repo", "--receive-pack", "--exec")
_ALL_REFS_FLAGS = ("--all", "--mirror", "--branches")
_SEPARATORS = {"&&", "||", ";", "|", "&", ";;", "|&"}
_PUNCTUATION = "();<>|&"


def read_current_branch(project_root: Path) -> str | None:
    """
    Read the checked-out branch from .git/HEAD without running git.

    Walks up from ``project_root`` to find the repository and follows the
    ``gitdir:`` indirection used by worktrees and submodules.

    Returns:
        Branch name, or None when detached, not a repository, or unreadable
    """
    root = Path(project_root)
    for candidate in (root, *root.parents):
        git_path = candidate / ".git"
        try:
            if git_path.is_dir():
                head_file = git_path / "HEAD"
            elif git_path.is_file():
                pointer = git_path.read_text(encoding="utf-8").strip()
                if not pointer.startswith("gitdir:"):
                    return None
                gitdir = Path(pointer[len("gitdir:"):].strip())
                if not gitdir.is_absolute():
                    gitdir = candidate / gitdir
                head_file = gitdir / "HEAD"
            else:
                continue

            head = head_file.read_text(encoding="utf-8").strip()
        except (OSError, UnicodeDecodeError):
            return None

        if head.startswith("ref:"):
            ref = head[len("ref:"):].strip()
            return ref.removeprefix("refs/heads/")
        return None

    return None


def _split_segments(command: str) -> list[list[str]]:
    """Tokenize a shell command into simple-command segments."""
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True

    segments: list[list[str]] = [[]]
    for token in lexer:
        if token in _SEPARATORS:
            segments.append([])
        # Bare redirection operators are dropped
        elif token.strip(_PUNCTUATION):
            segments[-1].append(token)
    return [s for s in segments if s]


def _push_arguments(tokens: list[str]) -> list[str] | None:
    """Return the arguments after ``git ... push``, or None if not a push."""
    for i, token in enumerate(tokens):
        if token == "git" or token.endswith("/git"):
            rest = tokens[i + 1:]
            if "push" in rest:
                return rest[rest.index("push") + 1:]
            return None
    return None


def _push_targets_protected(args: list[str], current_branch: str | None) -> bool:
    force = False
    all_refs = False
    positionals: list[str] = []

    skip_next = False
    for arg in args:
        if skip_next:
            skip_next = False
            continue
        if arg == "--":
            continue
        if arg.startswith("--"):
            name = arg.split("=", 1)[0]
            if name in _FORCE_LONG_FLAGS:
                force = True
            elif name in _ALL_REFS_FLAGS:
                all_refs = True
            elif name in _VALUE_OPTIONS and "=" not in arg:
                skip_next = True
            continue
        if arg.startswith("-") and len(arg) > 1:
            if arg in _VALUE_OPTIONS:
                skip_next = True
            elif "f" in arg[1:]:
                force = True
            continue
        positionals.append(arg)

    refspecs = positionals[1:]
    targets: list[str | None] = []
    for refspec in refspecs:
        if refspec.startswith("+"):
            force = True
            refspec = refspec[1:]
        dst = refspec.rsplit(":", 1)[-1] if ":" in refspec else refspec
        if dst == "HEAD":
            targets.append(current_branch)
        else:
            targets.append(dst.removeprefix("refs/heads/"))

    if not refspecs:
        # Omitted ref pushes the current branch
        targets.append(current_branch)

    if not force:
        return False
    if all_refs:
        return True
    return any(t in PROTECTED_BRANCHES for t in targets if t)


def prevent_force_push(event: HookEvent, context: HookContext) -> HookResult:
    """Deny ``git push`` with a force flag when it targets main/master."""
    if event.tool_name != "Bash":
        return HookResult.proceed()

    command = event.command
    if "push" not in command:
        return HookResult.proceed()

    try:
        segments = _split_segments(command)
    except ValueError:
        # Unbalanced quotes; fall back to a plain pattern check
        if re.search(r"git\s+push\s+.*(-f|--force)", command) and (
            re.search(r"\s+(main|master)\s*$", command)
            or re.search(r"origin\s+(main|master)", command)
        ):
            return HookResult.deny(FORCE_PUSH_REASON)
        return HookResult.proceed()

    current_branch: str | None = None
    branch_read = False

    for tokens in segments:
        args = _push_arguments(tokens)
        if args is None:
            continue
        if not branch_read:
            current_branch = read_current_branch(context.project_root)
            branch_read = True
        if _push_targets_protected(args, current_branch):
            return HookResult.deny(FORCE_PUSH_REASON)

    return HookResult.proceed()


# =============================================================================
# TDD Guard
# =============================================================================

JS_SOURCE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")
PY_SOURCE_EXTENSIONS = (".py",)


def is_test_file(path: str) -> bool:
    """Whether ``path`` is itself a test (or test support) file."""
    posix = "/" + path.replace("\\", "/").lstrip("/")
    name = posix.rsplit("/", 1)[-1]
    return (
        ".test." in name
        or ".spec." in name
        or "/__tests__/" in posix
        or "/test/" in posix
        or "/tests/" in posix
        or name.startswith("test_")
        or name.endswith("_test.py")
        or name == "conftest.py"
    )


def _relative_to_root(file_path: str, project_root: Path) -> str:
    """Express ``file_path`` relative to the project root when possible."""
    normalized = file_path.replace("\\", "/")
    path = Path(normalized)
    if path.is_absolute():
        try:
            return path.relative_to(project_root).as_posix()
        except ValueError:
            try:
                return path.resolve().relative_to(project_root.resolve()).as_posix()
            except ValueError:
                return path.as_posix()
    return PurePosixPath(normalized).as_posix()


def candidate_test_paths(rel_path: str) -> list[str]:
    """
    Derive the paths where a test for ``rel_path`` may live.

    JavaScript/TypeScript: sibling ``.test``/``.spec`` files, ``src/`` mirrored
    into ``__tests__/`` or ``test/``, a sibling ``__tests__/`` directory and a
    flat top-level ``test/`` directory.

    Python: sibling ``test_<stem>.py``/``<stem>_test.py``, and ``tests/`` or
    ``test/`` directories (flat or mirroring the package path).
    """
    path = PurePosixPath(rel_path)
    ext = path.suffix
    stem = path.stem
    parent = path.parent
    candidates: list[str] = []

    def add(p: PurePosixPath | str) -> None:
        s = PurePosixPath(p).as_posix()
        if s not in candidates:
            candidates.append(s)

    # Path below src/, used for mirrored layouts
    parts = path.parts
    mirrored: PurePosixPath | None = None
    if "src" in parts:
        idx = parts.index("src")
        mirrored = PurePosixPath(*parts[idx + 1:]) if idx + 1 < len(parts) else None

    if ext in JS_SOURCE_EXTENSIONS:
        add(parent / f"{stem}.test{ext}")
        add(parent / f"{stem}.spec{ext}")
        if mirrored is not None:
            prefix = PurePosixPath(*parts[: parts.index("src")])
            add(prefix / "__tests__" / mirrored.parent / f"{stem}.test{ext}")
            add(PurePosixPath("test") / mirrored.parent / f"{stem}.test{ext}")
        add(parent / "__tests__" / f"{stem}.test{ext}")
        add(PurePosixPath("test") / f"{stem}.test{ext}")
    elif ext in PY_SOURCE_EXTENSIONS:
        add(parent / f"test_{stem}.py")
        add(parent / f"{stem}_test.py")
        for test_dir in ("tests", "test"):
            add(PurePosixPath(test_dir) / f"test_{stem}.py")
            inner = mirrored if mirrored is not None else path
            add(PurePosixPath(test_dir) / inner.parent / f"test_{stem}.py")

    return candidates


def tdd_guard(event: HookEvent, context: HookContext) -> HookResult:
    """Deny edits to implementation files that have no corresponding test."""
    if event.tool_name != "Edit":
        return HookResult.proceed()

    file_path = event.file_path
    if not file_path:
        return HookResult.proceed()

    if not file_path.endswith(JS_SOURCE_EXTENSIONS + PY_SOURCE_EXTENSIONS):
        return HookResult.proceed()

    rel_path = _relative_to_root(file_path, context.project_root)
    if is_test_file(rel_path):
        return HookResult.proceed()

    for candidate in candidate_test_paths(rel_path):
        if (context.project_root / candidate).exists():
            return HookResult.proceed()

    name = PurePosixPath(file_path.replace("\\", "/")).name
    return HookResult.deny(
        f"TDD Guard: Write tests first! No test file found for {file_path}. "
        "Create a test file before modifying implementation.",
        inject_message=(
            f"[TDD REMINDER] Before editing {name}, please create a corresponding test file."
        ),
    )


def tdd_guard_warn(event: HookEvent, context: HookContext) -> HookResult:
    """Lenient TDD guard: continue, but carry the warning to the driver."""
    result = tdd_guard(event, context)
    if result.denied:
        return HookResult.proceed(inject_message=f"[TDD WARNING] {result.reason}")
    return result


__all__ = [
    "DANGEROUS_PATTERNS",
    "FORCE_PUSH_REASON",
    "PROTECTED_BRANCHES",
    "PROTECTED_FILE_PATTERNS",
    "SYSTEM_PATH_PREFIXES",
    "block_dangerous_commands",
    "block_protected_files",
    "candidate_test_paths",
    "is_test_file",
    "prevent_force_push",
    "read_current_branch",
    "tdd_guard",
    "tdd_guard_warn",
]
