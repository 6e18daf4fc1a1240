"""
Hook bridge - run the policy engine as a Claude Code hook command.

Claude Code pipes a JSON payload to the hook on stdin:

    {"session_id": "...", "tool_name": "Bash", "tool_input": {...}, "cwd": "..."}

and reads the outcome back from the exit code and stdout/stderr:

    exit 0   proceed; stdout may carry hookSpecificOutput JSON
    exit 2   blocking denial; stderr is shown to the model
    exit 1   non-blocking hook error
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..config import HarnessConfig
from .engine import evaluate
from .types import HookAction, HookContext, HookEventType, HookResult

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_BLOCK = 2

UNKNOWN_SESSION = "unknown"


def parse_payload(stdin_text: str) -> dict[str, Any]:
    """Parse hook input, treating anything malformed as an empty payload."""
    if not stdin_text or not stdin_text.strip():
        return {}
    try:
        data = json.loads(stdin_text)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed hook input")
        return {}
    return data if isinstance(data, dict) else {}


def render_result(event_type: HookEventType, result: HookResult) -> tuple[int, str, str]:
    """
    Translate an engine result into (exit_code, stdout, stderr).

    PreToolUse decisions are also reported as ``permissionDecision`` so
    drivers that read JSON output see the same verdict as the exit code.
    """
    specific: dict[str, Any] = {"hookEventName": event_type.value}

    if result.action is HookAction.DENY:
        reason = result.reason or "Blocked by hook policy"
        stderr = reason
        if result.inject_message:
            stderr += "\n" + result.inject_message

        stdout = ""
        if event_type is HookEventType.PRE_TOOL_USE:
            specific["permissionDecision"] = "deny"
            specific["permissionDecisionReason"] = reason
            stdout = json.dumps({"hookSpecificOutput": specific})
        return EXIT_BLOCK, stdout, stderr

    if result.action is HookAction.MODIFY and event_type is HookEventType.PRE_TOOL_USE:
        specific["updatedInput"] = result.modified_input
        if result.reason:
            specific["permissionDecisionReason"] = result.reason
    elif result.action is HookAction.ALLOW and event_type is HookEventType.PRE_TOOL_USE:
        specific["permissionDecision"] = "allow"

    if result.inject_message:
        specific["additionalContext"] = result.inject_message

    if len(specific) == 1:
        return EXIT_OK, "", ""
    return EXIT_OK, json.dumps({"hookSpecificOutput": specific}), ""


def run_hook(
    stdin_text: str,
    event_name: str,
    config: HarnessConfig | None = None,
    project_root: Path | str | None = None,
) -> tuple[int, str, str]:
    """
    Evaluate one hook invocation end to end.

    Args:
        stdin_text: Raw JSON payload from Claude Code
        event_name: Hook event name (e.g. "PreToolUse")
        config: Harness config; loaded for the project when omitted
        project_root: Project directory; defaults to the payload's ``cwd``,
            then the current directory

    Returns:
        (exit_code, stdout_text, stderr_text)
    """
    try:
        event_type = HookEventType(event_name)
    except ValueError:
        return EXIT_ERROR, "", f"Unknown hook event '{event_name}'"

    payload = parse_payload(stdin_text)

    if project_root is None:
        cwd = payload.get("cwd")
        project_root = cwd if isinstance(cwd, str) and cwd else Path.cwd()
    project_root = Path(project_root)

    if config is None:
        config = HarnessConfig.for_project(project_root)

    try:
        hooks_config = config.build_hooks_config()
    except ValueError as e:
        return EXIT_ERROR, "", f"Invalid hook configuration: {e}"

    paths = config.paths(project_root)
    session_id = payload.get("session_id")
    context = HookContext(
        project_root=paths.project_root,
        agent_dir=paths.agent_dir,
        session_id=session_id if isinstance(session_id, str) and session_id else UNKNOWN_SESSION,
    )

    tool_name = payload.get("tool_name")
    tool_input = payload.get("tool_input")

    result = evaluate(
        event_type,
        context,
        tool_name=tool_name if isinstance(tool_name, str) else None,
        tool_input=tool_input if isinstance(tool_input, dict) else None,
        config=hooks_config,
    )

    if result.denied:
        logger.info("Denied %s on %s: %s", tool_name, event_type.value, result.reason)

    return render_result(event_type, result)


__all__ = ["EXIT_BLOCK", "EXIT_ERROR", "EXIT_OK", "parse_payload", "render_result", "run_hook"]
