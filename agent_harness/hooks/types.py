"""Core types for the tool-use governance engine."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel


class HookEventType(str, Enum):
    """Points in the agent lifecycle where hooks run."""

    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    POST_TOOL_USE_FAILURE = "PostToolUseFailure"
    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    STOP = "Stop"
    SUBAGENT_STOP = "SubagentStop"
    PRE_COMPACT = "PreCompact"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"

    @property
    def is_tool_event(self) -> bool:
        return self in TOOL_EVENTS


TOOL_EVENTS = frozenset(
    {
        HookEventType.PRE_TOOL_USE,
        HookEventType.POST_TOOL_USE,
        HookEventType.POST_TOOL_USE_FAILURE,
    }
)


class HookAction(str, Enum):
    """Decision returned by a guard."""

    ALLOW = "allow"
    DENY = "deny"
    CONTINUE = "continue"
    MODIFY = "modify"


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class HookEvent:
    """One tool invocation attempt (or lifecycle event) as seen by guards."""

    event_type: HookEventType
    tool_name: str | None = None
    tool_input: dict[str, Any] = field(default_factory=dict)
    session_id: str | None = None
    timestamp: str = field(default_factory=_timestamp)

    @property
    def command(self) -> str:
        """Shell command of a Bash tool call, or an empty string."""
        value = self.tool_input.get("command")
        return value if isinstance(value, str) else ""

    @property
    def file_path(self) -> str:
        """Target path of a file tool call, or an empty string."""
        value = (
            self.tool_input.get("file_path")
            or self.tool_input.get("filePath")
            or self.tool_input.get("path")
        )
        return value if isinstance(value, str) else ""


@dataclass
class HookContext:
    """Per-call context supplied by the tool-execution driver."""

    project_root: Path
    agent_dir: Path
    session_id: str
    feature_in_progress: str | None = None

    def __post_init__(self):
        self.project_root = Path(self.project_root)
        self.agent_dir = Path(self.agent_dir)


@dataclass
class HookResult:
    """
    Outcome of evaluating one guard, or of a whole evaluation.

    A ``modify`` result must carry the replacement tool input.
    """

    action: HookAction = HookAction.CONTINUE
    reason: str | None = None
    modified_input: dict[str, Any] | None = None
    inject_message: str | None = None

    def __post_init__(self):
        self.action = HookAction(self.action)
        if self.action is HookAction.MODIFY and self.modified_input is None:
            raise ValueError("A modify result requires modified_input")

    @classmethod
    def proceed(cls, inject_message: str | None = None) -> "HookResult":
        return cls(action=HookAction.CONTINUE, inject_message=inject_message)

    @classmethod
    def deny(cls, reason: str, inject_message: str | None = None) -> "HookResult":
        return cls(action=HookAction.DENY, reason=reason, inject_message=inject_message)

    @classmethod
    def modify(cls, modified_input: dict[str, Any], reason: str | None = None) -> "HookResult":
        return cls(action=HookAction.MODIFY, reason=reason, modified_input=modified_input)

    @property
    def denied(self) -> bool:
        return self.action is HookAction.DENY

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"action": self.action.value}
        if self.reason is not None:
            data["reason"] = self.reason
        if self.modified_input is not None:
            data["modified_input"] = self.modified_input
        if self.inject_message is not None:
            data["inject_message"] = self.inject_message
        return data


GuardFn = Callable[[HookEvent, HookContext], HookResult]


@dataclass
class HookMatcher:
    """
    Scopes an ordered guard list to the tools whose name matches ``pattern``.

    String patterns are regular expressions searched (not anchored) against
    the tool name, so ``"Write|Edit"`` matches both tools.
    """

    pattern: str | re.Pattern[str]
    guards: list[GuardFn] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.pattern, str):
            self._regex = re.compile(self.pattern)
        else:
            self._regex = self.pattern

    @property
    def source(self) -> str:
        return self._regex.pattern

    def matches(self, tool_name: str | None) -> bool:
        return self._regex.search(tool_name or "") is not None

    @classmethod
    def from_ids(cls, pattern: str | re.Pattern[str], guard_ids: list[Any]) -> "HookMatcher":
        """Build a matcher from guard identifiers, resolving them now."""
        from .registry import resolve_guards

        return cls(pattern=pattern, guards=resolve_guards(guard_ids))


class AuditLogEntry(BaseModel):
    """One line of audit_log.jsonl."""

    timestamp: str
    session_id: str
    event: str
    tool: str | None = None
    action: str
    details: str


__all__ = [
    "AuditLogEntry",
    "GuardFn",
    "HookAction",
    "HookContext",
    "HookEvent",
    "HookEventType",
    "HookMatcher",
    "HookResult",
    "TOOL_EVENTS",
]
