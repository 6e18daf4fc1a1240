"""
Error tracking and recovery hints.

Errors are kept in <agent_dir>/error-log.json as a JSON array, oldest first,
capped at the most recent MAX_ERRORS entries. Logging an error must never
take the caller down, so write failures are only reported at debug level.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

from pydantic import BaseModel, Field, ValidationError

from .persistence import PersistenceError, atomic_write_json, read_json
from .session_schema import CheckpointInfo, utc_now

logger = logging.getLogger(__name__)

ERROR_LOG_NAME = "error-log.json"
MAX_ERRORS = 100


class ErrorEntry(BaseModel):
    """One logged error."""

    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    session: str
    error: str
    context: str
    recovery: str | None = None
    resolved: bool = False


def _truncate(text: str, width: int) -> str:
    return text[:width] + "..." if len(text) > width else text


class ErrorLog:
    """Bounded error history for one agent directory."""

    def __init__(self, agent_dir: Path | str, max_entries: int = MAX_ERRORS):
        self.agent_dir = Path(agent_dir)
        self.max_entries = max_entries

    @property
    def path(self) -> Path:
        return self.agent_dir / ERROR_LOG_NAME

    def _read(self) -> list[ErrorEntry]:
        data = read_json(self.path, default=[])
        if not isinstance(data, list):
            return []

        entries = []
        for item in data:
            try:
                entries.append(ErrorEntry.model_validate(item))
            except ValidationError:
                continue
        return entries

    def _write(self, entries: list[ErrorEntry]) -> bool:
        try:
            atomic_write_json(self.path, [e.model_dump() for e in entries])
        except PersistenceError as e:
            logger.debug("Could not write error log: %s", e)
            return False
        return True

    def log_error(
        self,
        error: BaseException | str,
        context: str,
        recovery: str | None = None,
        session_id: str | None = None,
    ) -> ErrorEntry:
        """
        Record an error.

        Args:
            error: Exception or message
            context: What was being attempted
            recovery: Suggested or attempted recovery, if any
            session_id: Session the error belongs to

        Returns:
            The entry that was (or would have been) stored
        """
        entry = ErrorEntry(
            session=session_id or "unknown",
            error=str(error) or type(error).__name__,
            context=context,
            recovery=recovery,
        )

        entries = self._read()
        entries.append(entry)
        self._write(entries[-self.max_entries:])
        return entry

    def recent(self, limit: int = 10) -> list[ErrorEntry]:
        """Most recent errors, newest first."""
        if limit <= 0:
            return []
        return list(reversed(self._read()[-limit:]))

    def mark_resolved(self, index: int) -> bool:
        """
        Mark an entry resolved.

        Args:
            index: Position in ``recent()`` order (0 is the newest)

        Returns:
            False if there is no such entry or the log could not be written
        """
        entries = self._read()
        if index < 0 or index >= len(entries):
            return False

        entries[len(entries) - 1 - index].resolved = True
        return self._write(entries)

    def recovery_summary(self, checkpoints: Iterable[CheckpointInfo] = ()) -> str:
        """
        Render recent errors and checkpoints as a status block for the agent.

        Args:
            checkpoints: Checkpoints to mention, newest first (only the first
                three are shown)
        """
        errors = [e for e in self.recent(5) if not e.resolved]
        recent_checkpoints = list(checkpoints)[:3]

        lines = ["", "## ERROR RECOVERY STATUS", ""]

        if errors:
            lines.append(f"Recent Errors ({len(errors)}):")
            for err in errors[:3]:
                lines.append(f"   - {_truncate(err.error, 60)}")
                lines.append(f"     Context: {_truncate(err.context, 50)}")
        else:
            lines.append("No recent errors logged")

        if recent_checkpoints:
            lines.append("")
            lines.append(f"Recent Checkpoints ({len(recent_checkpoints)}):")
            for cp in recent_checkpoints:
                lines.append(f"   - {cp.id}: {_truncate(cp.description, 50)}")
                lines.append(f"     {cp.created_at.isoformat()}")

        lines.append("")
        lines.append("Recovery Options:")
        if recent_checkpoints:
            lines.append(f"   - Restore checkpoint {recent_checkpoints[0].id} to roll back file changes")
        lines.append("   - Check git log for recent commits")
        lines.append(f"   - Review {ERROR_LOG_NAME} for detailed error history")

        return "\n".join(lines) + "\n"


__all__ = ["ERROR_LOG_NAME", "ErrorEntry", "ErrorLog", "MAX_ERRORS"]
