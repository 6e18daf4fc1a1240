"""Tool-use governance: guards, audit sinks and the policy engine."""

from .audit import AuditLog, load_audit_log
from .engine import (
    HooksConfig,
    create_default_hooks_config,
    describe_hooks_config,
    evaluate,
    hooks_config_from_dict,
)
from .registry import GuardId, GuardRegistry, default_registry
from .types import (
    AuditLogEntry,
    GuardFn,
    HookAction,
    HookContext,
    HookEvent,
    HookEventType,
    HookMatcher,
    HookResult,
)

__all__ = [
    "AuditLog",
    "AuditLogEntry",
    "GuardFn",
    "GuardId",
    "GuardRegistry",
    "HookAction",
    "HookContext",
    "HookEvent",
    "HookEventType",
    "HookMatcher",
    "HookResult",
    "HooksConfig",
    "create_default_hooks_config",
    "default_registry",
    "describe_hooks_config",
    "evaluate",
    "hooks_config_from_dict",
    "load_audit_log",
]
