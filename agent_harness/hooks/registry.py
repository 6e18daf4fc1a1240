"""Guard registry - maps the closed set of guard identifiers to functions."""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from .audit import audit_file_changes, audit_tool_usage, session_end_logger, session_start_logger
from .guards import (
    block_dangerous_commands,
    block_protected_files,
    prevent_force_push,
    tdd_guard,
    tdd_guard_warn,
)
from .types import GuardFn


class GuardId(str, Enum):
    """Identifiers usable in hook configuration."""

    DANGEROUS_COMMAND = "dangerous_command"
    PROTECTED_FILE = "protected_file"
    FORCE_PUSH = "force_push"
    TDD_STRICT = "tdd_strict"
    TDD_WARN = "tdd_warn"
    AUDIT_TOOL_USAGE = "audit_tool_usage"
    AUDIT_FILE_CHANGES = "audit_file_changes"
    SESSION_START_LOGGER = "session_start_logger"
    SESSION_END_LOGGER = "session_end_logger"


class GuardRegistry:
    """
    Resolve guard identifiers to guard functions.

    The table is fixed at construction and must cover every ``GuardId``, so
    a config that names a guard either resolves completely when it is built
    or fails right there.
    """

    def __init__(self, table: dict[GuardId, GuardFn]):
        missing = [g.value for g in GuardId if g not in table]
        if missing:
            raise ValueError(f"Guard table missing entries: {', '.join(missing)}")
        self._table = dict(table)
        self._names = {fn: gid for gid, fn in self._table.items()}

    def get(self, guard_id: GuardId | str) -> GuardFn:
        """
        Get the function for a guard id.

        Raises:
            ValueError: If ``guard_id`` is not a known identifier
        """
        try:
            key = GuardId(guard_id)
        except ValueError:
            known = ", ".join(g.value for g in GuardId)
            raise ValueError(f"Unknown guard '{guard_id}' (known: {known})") from None
        return self._table[key]

    def name_of(self, guard: GuardFn) -> str:
        """Identifier of a registered guard, or its function name."""
        gid = self._names.get(guard)
        if gid is not None:
            return gid.value
        return getattr(guard, "__name__", "anonymous")

    def list_guards(self) -> list[str]:
        return [g.value for g in self._table]

    def __contains__(self, guard_id: object) -> bool:
        try:
            return GuardId(guard_id) in self._table
        except ValueError:
            return False


default_registry = GuardRegistry(
    {
        GuardId.DANGEROUS_COMMAND: block_dangerous_commands,
        GuardId.PROTECTED_FILE: block_protected_files,
        GuardId.FORCE_PUSH: prevent_force_push,
        GuardId.TDD_STRICT: tdd_guard,
        GuardId.TDD_WARN: tdd_guard_warn,
        GuardId.AUDIT_TOOL_USAGE: audit_tool_usage,
        GuardId.AUDIT_FILE_CHANGES: audit_file_changes,
        GuardId.SESSION_START_LOGGER: session_start_logger,
        GuardId.SESSION_END_LOGGER: session_end_logger,
    }
)


def resolve_guards(guard_ids: Iterable[GuardId | str]) -> list[GuardFn]:
    """Resolve identifiers in order using the default registry."""
    return [default_registry.get(gid) for gid in guard_ids]


__all__ = ["GuardId", "GuardRegistry", "default_registry", "resolve_guards"]
