"""
Session Manager for agent-harness.

Manages resumable sessions under <agent_dir>/:

    session_state.json      current session pointer
    sessions/<id>.json      one history file per session id

A session left ``active`` by an abnormal exit stays ``active`` on disk; the
process that resumes it decides whether to call ``mark_interrupted``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .persistence import atomic_write_text
from .session_schema import CheckpointInfo, SessionState, SessionStatus, utc_now

logger = logging.getLogger(__name__)

SESSION_STATE_NAME = "session_state.json"
SESSIONS_DIR_NAME = "sessions"


class SessionManager:
    """
    Creates, persists, resumes and forks sessions for one agent directory.

    Each instance is independent, so tests and multiple in-process sessions
    can use separate agent directories side by side.
    """

    def __init__(self, agent_dir: Path | str):
        """
        Initialize session manager.

        Args:
            agent_dir: Per-project agent directory (e.g. <project>/.agent)
        """
        self.agent_dir = Path(agent_dir)

    @property
    def state_file(self) -> Path:
        """Get session_state.json path."""
        return self.agent_dir / SESSION_STATE_NAME

    @property
    def sessions_dir(self) -> Path:
        return self.agent_dir / SESSIONS_DIR_NAME

    def get_session_file(self, session_id: str) -> Path:
        """Get sessions/<id>.json path."""
        return self.sessions_dir / f"{session_id}.json"

    def session_exists(self, session_id: str) -> bool:
        return self.get_session_file(session_id).exists()

    # =========================================================================
    # Core lifecycle
    # =========================================================================

    def create(self, parent_id: str | None = None) -> SessionState:
        """
        Create a new, unsaved session.

        Args:
            parent_id: Session this one continues from, if any

        Returns:
            Fresh ``active`` session with empty progress lists
        """
        return SessionState(parent_session_id=parent_id)

    def save(self, state: SessionState) -> Path:
        """
        Persist a session as the current pointer and in its history file.

        Refreshes ``last_active``. Both writes are atomic; saving the same
        state twice leaves the same files.

        Returns:
            Path to the session's history file

        Raises:
            PersistenceError: If either file could not be written
        """
        state.last_active = utc_now()
        payload = state.model_dump_json(indent=2)

        history_file = self.get_session_file(state.session_id)
        atomic_write_text(self.state_file, payload)
        atomic_write_text(history_file, payload)

        return history_file

    def load(self) -> SessionState | None:
        """Load the current session, or None if absent or unparsable."""
        return self._read_state(self.state_file)

    def load_by_id(self, session_id: str) -> SessionState | None:
        """Load a session from history, or None if absent or unparsable."""
        return self._read_state(self.get_session_file(session_id))

    def fork(self, parent: SessionState) -> SessionState:
        """
        Branch a new session off ``parent``.

        The child copies completed features, context summary, decisions and
        checkpoint references by value. The parent is marked ``forked``; both
        are saved, the child last so it becomes the current session.

        Returns:
            The new ``active`` child session
        """
        child = self.create(parent_id=parent.session_id)
        child.completed_features = list(parent.completed_features)
        child.context_summary = parent.context_summary
        child.important_decisions = list(parent.important_decisions)
        child.checkpoints = [c.model_copy(deep=True) for c in parent.checkpoints]
        child.current_checkpoint = parent.current_checkpoint

        parent.status = SessionStatus.FORKED
        self.save(parent)
        self.save(child)

        logger.info("Forked session %s -> %s", parent.session_id, child.session_id)
        return child

    def list(self) -> list[SessionState]:
        """
        List all persisted sessions, most recently active first.

        Unreadable history files are skipped.
        """
        if not self.sessions_dir.exists():
            return []

        sessions = []
        for session_file in self.sessions_dir.glob("*.json"):
            state = self._read_state(session_file)
            if state is not None:
                sessions.append(state)

        return sorted(sessions, key=lambda s: s.last_active, reverse=True)

    def _read_state(self, path: Path) -> SessionState | None:
        if not path.exists():
            return None
        try:
            return SessionState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.debug("Ignoring unreadable session file %s: %s", path, e)
            return None

    # =========================================================================
    # Status transitions
    # =========================================================================

    def complete(self, state: SessionState) -> None:
        """Mark a session as finished normally."""
        state.status = SessionStatus.COMPLETED
        state.current_feature = None
        self.save(state)

    def mark_interrupted(self, state: SessionState) -> None:
        """
        Record that a session was left behind by an abnormal exit.

        Never called automatically; a resuming process calls it once it has
        decided not to continue the session as-is.
        """
        state.status = SessionStatus.INTERRUPTED
        self.save(state)

    # =========================================================================
    # Progress tracking
    # =========================================================================

    def start_feature(self, state: SessionState, feature_id: str) -> None:
        state.current_feature = feature_id
        self.save(state)

    def complete_feature(self, state: SessionState, feature_id: str) -> None:
        """Move a feature to the completed list."""
        if feature_id not in state.completed_features:
            state.completed_features.append(feature_id)
        if feature_id in state.failed_features:
            state.failed_features.remove(feature_id)
        if state.current_feature == feature_id:
            state.current_feature = None
        self.save(state)

    def fail_feature(self, state: SessionState, feature_id: str) -> None:
        if feature_id not in state.failed_features:
            state.failed_features.append(feature_id)
        if state.current_feature == feature_id:
            state.current_feature = None
        self.save(state)

    def add_decision(self, state: SessionState, decision: str) -> None:
        state.important_decisions.append(decision)
        self.save(state)

    def update_summary(self, state: SessionState, summary: str) -> None:
        state.context_summary = summary
        self.save(state)

    def record_checkpoint(self, state: SessionState, checkpoint: CheckpointInfo) -> None:
        """Attach a checkpoint reference and make it the current one."""
        state.checkpoints.append(checkpoint.model_copy(deep=True))
        state.current_checkpoint = checkpoint.id
        self.save(state)

    # =========================================================================
    # Resumption helpers
    # =========================================================================

    def resume_options(self, state: SessionState) -> dict[str, Any]:
        """Options handed to the coding driver when resuming a session."""
        return {
            "resume": state.session_id,
            "context_summary": state.context_summary,
            "completed_features": list(state.completed_features),
        }

    def summarize(self, state: SessionState) -> str:
        """Human-readable session summary for context preservation."""
        lines = [
            f"Session {state.session_id}",
            f"Started: {state.created_at.isoformat()}",
            f"Features completed: {len(state.completed_features)}",
        ]

        if state.failed_features:
            lines.append(f"Features failed: {len(state.failed_features)}")

        if state.current_feature:
            lines.append(f"Currently working on: {state.current_feature}")

        if state.important_decisions:
            lines.append("")
            lines.append("Key decisions:")
            lines.extend(f"- {decision}" for decision in state.important_decisions)

        return "\n".join(lines) + "\n"


__all__ = ["SESSIONS_DIR_NAME", "SESSION_STATE_NAME", "SessionManager"]
