"""
Session schema models for agent-harness.

Pydantic models for session_state.json, sessions/<id>.json and
checkpoints/<id>/checkpoint.json.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_session_id() -> str:
    """Generate a collision-proof session id."""
    return f"session-{uuid.uuid4().hex}"


class SessionStatus(str, Enum):
    """Lifecycle states for a session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    INTERRUPTED = "interrupted"  # Only set explicitly by a resuming process
    FORKED = "forked"


class FileSnapshot(BaseModel):
    """One backed-up file inside a checkpoint."""

    path: str  # POSIX path relative to the project root
    hash: str
    size: int
    backed_up: bool = False


class CheckpointInfo(BaseModel):
    """
    A restorable snapshot of the tracked project files.

    Persisted as checkpoint.json next to the backup payload; the checkpoint
    directory is the unit of durability.
    """

    id: str
    created_at: datetime
    description: str
    feature_id: str | None = None
    files_snapshot: list[FileSnapshot] = Field(default_factory=list)
    can_restore: bool = True

    @property
    def backed_up_files(self) -> list[FileSnapshot]:
        return [f for f in self.files_snapshot if f.backed_up]


class SessionState(BaseModel):
    """
    A resumable unit of long-running work.

    Persisted on every mutation; never deleted automatically.
    """

    session_id: str = Field(default_factory=generate_session_id)
    parent_session_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)
    status: SessionStatus = SessionStatus.ACTIVE

    # Feature progress
    current_feature: str | None = None
    completed_features: list[str] = Field(default_factory=list)
    failed_features: list[str] = Field(default_factory=list)

    # Conversation context (summary for long sessions)
    context_summary: str = ""
    important_decisions: list[str] = Field(default_factory=list)

    # Tool state
    tools_initialized: list[str] = Field(default_factory=list)
    mcp_servers_active: list[str] = Field(default_factory=list)

    checkpoints: list[CheckpointInfo] = Field(default_factory=list)
    current_checkpoint: str | None = None

    model_config = {
        "use_enum_values": True,
        "validate_assignment": True,
    }


__all__ = [
    "CheckpointInfo",
    "FileSnapshot",
    "SessionState",
    "SessionStatus",
    "generate_session_id",
    "utc_now",
]
