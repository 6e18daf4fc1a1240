"""
Hook policy engine.

Evaluates the guards configured for an event in declared order and folds
their results into one decision:

- the first ``deny`` is final; nothing after it runs
- ``modify`` swaps the working tool input seen by every later guard
- inject messages from non-denying guards are carried to the final result

Tool events (PreToolUse, PostToolUse, PostToolUseFailure) only run matchers
whose pattern matches the tool name. Other events run every configured guard.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any

from .registry import GuardId, default_registry, resolve_guards
from .types import (
    GuardFn,
    HookAction,
    HookContext,
    HookEvent,
    HookEventType,
    HookMatcher,
    HookResult,
    TOOL_EVENTS,
)

logger = logging.getLogger(__name__)


@dataclass
class HooksConfig:
    """
    Guard layout per event type.

    ``matchers`` holds the ordered matcher lists of tool events; ``hooks``
    holds the ordered guard lists of all other events.
    """

    matchers: dict[HookEventType, list[HookMatcher]] = field(default_factory=dict)
    hooks: dict[HookEventType, list[GuardFn]] = field(default_factory=dict)

    def add_matcher(self, event_type: HookEventType | str, matcher: HookMatcher) -> None:
        event_type = HookEventType(event_type)
        if event_type not in TOOL_EVENTS:
            raise ValueError(f"{event_type.value} is not a tool event; use add_hook")
        self.matchers.setdefault(event_type, []).append(matcher)

    def add_hook(self, event_type: HookEventType | str, guard: GuardFn) -> None:
        event_type = HookEventType(event_type)
        if event_type in TOOL_EVENTS:
            raise ValueError(f"{event_type.value} is a tool event; use add_matcher")
        self.hooks.setdefault(event_type, []).append(guard)

    def guards_for(self, event_type: HookEventType, tool_name: str | None) -> list[GuardFn]:
        """Guards that apply to one event, in evaluation order."""
        if event_type in TOOL_EVENTS:
            return [
                guard
                for matcher in self.matchers.get(event_type, [])
                if matcher.matches(tool_name)
                for guard in matcher.guards
            ]
        return list(self.hooks.get(event_type, []))


def _run_guard(guard: GuardFn, event: HookEvent, context: HookContext) -> HookResult:
    try:
        result = guard(event, context)
    except Exception:
        # Guard faults never become a denial
        logger.warning(
            "Guard %s failed on %s; continuing",
            default_registry.name_of(guard),
            event.event_type.value,
            exc_info=True,
        )
        return HookResult.proceed()

    if not isinstance(result, HookResult):
        logger.warning(
            "Guard %s returned %r; treating as continue",
            default_registry.name_of(guard),
            result,
        )
        return HookResult.proceed()
    return result


def evaluate(
    event_type: HookEventType | str,
    context: HookContext,
    tool_name: str | None = None,
    tool_input: dict[str, Any] | None = None,
    config: HooksConfig | None = None,
) -> HookResult:
    """
    Run the configured guards for one event.

    Args:
        event_type: Lifecycle event being evaluated
        context: Project, agent directory and session of the caller
        tool_name: Tool being invoked (tool events only)
        tool_input: Tool arguments (tool events only)
        config: Guard layout; defaults to ``create_default_hooks_config()``

    Returns:
        The first deny, otherwise ``modify`` (final working input) if any
        guard modified the input, ``allow`` if any guard allowed, else
        ``continue``. Inject messages of non-denying guards are joined.
    """
    event_type = HookEventType(event_type)
    if config is None:
        config = create_default_hooks_config()

    event = HookEvent(
        event_type=event_type,
        tool_name=tool_name,
        tool_input=dict(tool_input or {}),
        session_id=context.session_id,
    )

    modified = False
    allowed = False
    messages: list[str] = []

    for guard in config.guards_for(event_type, tool_name):
        result = _run_guard(guard, event, context)

        if result.action is HookAction.DENY:
            return result

        if result.action is HookAction.MODIFY:
            event = dataclasses.replace(event, tool_input=dict(result.modified_input or {}))
            modified = True
        elif result.action is HookAction.ALLOW:
            allowed = True

        if result.inject_message:
            messages.append(result.inject_message)

    inject_message = "\n".join(messages) if messages else None

    if modified:
        return HookResult(
            action=HookAction.MODIFY,
            modified_input=event.tool_input,
            inject_message=inject_message,
        )
    if allowed:
        return HookResult(action=HookAction.ALLOW, inject_message=inject_message)
    return HookResult.proceed(inject_message=inject_message)


# =============================================================================
# Configuration builders
# =============================================================================


def create_default_hooks_config(
    enable_tdd: bool = True,
    enable_audit: bool = True,
    enable_security: bool = True,
    strict_tdd: bool = False,
    prevent_force_push: bool = True,
) -> HooksConfig:
    """
    Build the standard guard layout.

    PreToolUse:  Bash -> dangerous commands, force push
                 Write|Edit -> protected files
                 Edit -> TDD (strict or warning)
    PostToolUse: .* -> tool usage audit, file change audit
    SessionStart / SessionEnd: session log markers
    """
    config = HooksConfig()

    if enable_security:
        bash_guards = [GuardId.DANGEROUS_COMMAND]
        if prevent_force_push:
            bash_guards.append(GuardId.FORCE_PUSH)
        config.add_matcher(HookEventType.PRE_TOOL_USE, HookMatcher.from_ids("Bash", bash_guards))
        config.add_matcher(
            HookEventType.PRE_TOOL_USE,
            HookMatcher.from_ids("Write|Edit", [GuardId.PROTECTED_FILE]),
        )

    if enable_tdd:
        tdd = GuardId.TDD_STRICT if strict_tdd else GuardId.TDD_WARN
        config.add_matcher(HookEventType.PRE_TOOL_USE, HookMatcher.from_ids("Edit", [tdd]))

    if enable_audit:
        config.add_matcher(
            HookEventType.POST_TOOL_USE,
            HookMatcher.from_ids(".*", [GuardId.AUDIT_TOOL_USAGE, GuardId.AUDIT_FILE_CHANGES]),
        )

    config.add_hook(HookEventType.SESSION_START, default_registry.get(GuardId.SESSION_START_LOGGER))
    config.add_hook(HookEventType.SESSION_END, default_registry.get(GuardId.SESSION_END_LOGGER))

    return config


def hooks_config_from_dict(data: dict[str, Any]) -> HooksConfig:
    """
    Build a HooksConfig from its JSON form.

    Example:
        {
            "PreToolUse": [{"matcher": "Bash", "guards": ["dangerous_command"]}],
            "SessionStart": ["session_start_logger"]
        }

    Raises:
        ValueError: On unknown event names, guard ids or malformed entries
    """
    if not isinstance(data, dict):
        raise ValueError("Hooks configuration must be an object")

    config = HooksConfig()

    for event_name, entries in data.items():
        try:
            event_type = HookEventType(event_name)
        except ValueError:
            raise ValueError(f"Unknown hook event '{event_name}'") from None

        if not isinstance(entries, list):
            raise ValueError(f"Hooks for {event_name} must be a list")

        if event_type in TOOL_EVENTS:
            for entry in entries:
                if not isinstance(entry, dict) or "matcher" not in entry:
                    raise ValueError(f"{event_name} entries need a 'matcher' and 'guards'")
                config.add_matcher(
                    event_type,
                    HookMatcher.from_ids(entry["matcher"], entry.get("guards", [])),
                )
        else:
            for guard in resolve_guards(entries):
                config.add_hook(event_type, guard)

    return config


def describe_hooks_config(config: HooksConfig) -> dict[str, Any]:
    """
    JSON-serialisable summary of a config, naming each guard.

    Tool events map to ``[{"matcher": ..., "hooks": [...]}]``; other events
    to a plain list of guard names.
    """
    summary: dict[str, Any] = {}

    for event_type, matchers in config.matchers.items():
        summary[event_type.value] = [
            {
                "matcher": m.source,
                "hooks": [default_registry.name_of(g) for g in m.guards],
            }
            for m in matchers
        ]

    for event_type, guards in config.hooks.items():
        summary[event_type.value] = [default_registry.name_of(g) for g in guards]

    return summary


__all__ = [
    "HooksConfig",
    "create_default_hooks_config",
    "describe_hooks_config",
    "evaluate",
    "hooks_config_from_dict",
]
