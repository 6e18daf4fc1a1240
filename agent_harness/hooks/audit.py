"""Audit sinks - append-only tool usage, file change and session logs.

Sinks run as guards but never deny: a failed write is logged and dropped so
logging faults cannot block legitimate work.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from ..persistence import append_line
from .types import AuditLogEntry, HookAction, HookContext, HookEvent, HookResult

logger = logging.getLogger(__name__)

AUDIT_LOG_NAME = "audit_log.jsonl"
FILE_CHANGES_LOG_NAME = "file_changes.log"
SESSIONS_LOG_NAME = "sessions.log"


class AuditLog:
    """
    JSONL audit trail of tool usage.

    One file per agent directory: <agent_dir>/audit_log.jsonl
    Human-readable. Append-only; entries are never rewritten.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)

    @classmethod
    def for_agent_dir(cls, agent_dir: Path | str) -> "AuditLog":
        return cls(Path(agent_dir) / AUDIT_LOG_NAME)

    def append(self, entry: AuditLogEntry) -> None:
        """
        Append one entry as a single JSON line.

        Raises:
            OSError: When the log cannot be written
        """
        append_line(self.path, entry.model_dump_json())

    def entries(self, limit: int | None = None) -> list[AuditLogEntry]:
        """
        Read entries in file order, skipping corrupt lines.

        Args:
            limit: Only return the last ``limit`` entries

        Returns:
            Parsed entries, oldest first
        """
        if not self.path.exists():
            return []

        entries = []
        try:
            with open(self.path, "rb") as f:
                for raw in f:
                    try:
                        line = raw.decode("utf-8")
                    except UnicodeDecodeError:
                        continue
                    if not line.strip():
                        continue
                    try:
                        entries.append(AuditLogEntry.model_validate_json(line))
                    except ValidationError:
                        continue
        except OSError:
            return []

        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries


def load_audit_log(agent_dir: Path | str, limit: int = 100) -> list[AuditLogEntry]:
    """Return the most recent ``limit`` audit entries for an agent directory."""
    return AuditLog.for_agent_dir(agent_dir).entries(limit=limit)


def _append_text(path: Path, line: str) -> None:
    try:
        append_line(path, line)
    except OSError as e:
        logger.debug("Dropping log line for %s: %s", path, e)


# =============================================================================
# Sink guards
# =============================================================================


def audit_tool_usage(event: HookEvent, context: HookContext) -> HookResult:
    """Record every tool call as one JSON line in audit_log.jsonl."""
    entry = AuditLogEntry(
        timestamp=event.timestamp,
        session_id=context.session_id,
        event=event.event_type.value,
        tool=event.tool_name,
        action=HookAction.ALLOW.value,
        details=json.dumps(event.tool_input or {}, default=str),
    )

    try:
        AuditLog.for_agent_dir(context.agent_dir).append(entry)
    except OSError as e:
        logger.debug("Dropping audit entry for %s: %s", event.tool_name, e)

    return HookResult.proceed()


def audit_file_changes(event: HookEvent, context: HookContext) -> HookResult:
    """Record Write/Edit targets in file_changes.log."""
    if event.tool_name not in ("Write", "Edit"):
        return HookResult.proceed()

    action = "WRITE" if event.tool_name == "Write" else "EDIT"
    _append_text(
        context.agent_dir / FILE_CHANGES_LOG_NAME,
        f"[{event.timestamp}] {action}: {event.file_path}",
    )
    return HookResult.proceed()


def session_start_logger(event: HookEvent, context: HookContext) -> HookResult:
    _append_text(
        context.agent_dir / SESSIONS_LOG_NAME,
        f"[{event.timestamp}] SESSION START: {context.session_id}",
    )
    return HookResult.proceed()


def session_end_logger(event: HookEvent, context: HookContext) -> HookResult:
    _append_text(
        context.agent_dir / SESSIONS_LOG_NAME,
        f"[{event.timestamp}] SESSION END: {context.session_id}",
    )
    return HookResult.proceed()


__all__ = [
    "AUDIT_LOG_NAME",
    "AuditLog",
    "FILE_CHANGES_LOG_NAME",
    "SESSIONS_LOG_NAME",
    "audit_file_changes",
    "audit_tool_usage",
    "load_audit_log",
    "session_end_logger",
    "session_start_logger",
]
