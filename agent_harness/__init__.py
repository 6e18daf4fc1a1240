"""agent-harness: safe, resumable runs for autonomous coding agents.

Two layers:
- Governance: a hook policy engine that screens every tool call
  (dangerous commands, protected files, force pushes, test-first edits)
  and keeps an audit trail.
- Recovery: persistent sessions that can be resumed or forked, and file
  checkpoints that can be restored.
"""

__version__ = "0.1.0"

# Governance
from .hooks import (
    AuditLogEntry,
    GuardId,
    HookAction,
    HookContext,
    HookEvent,
    HookEventType,
    HookMatcher,
    HookResult,
    HooksConfig,
    create_default_hooks_config,
    evaluate,
    hooks_config_from_dict,
    load_audit_log,
)
from .hooks.bridge import run_hook

# Recovery
from .session_schema import CheckpointInfo, FileSnapshot, SessionState, SessionStatus
from .session_manager import SessionManager
from .checkpoint_manager import CheckpointManager
from .error_recovery import ErrorLog

# Config & persistence
from .config import HarnessConfig, HarnessPaths, default_config
from .persistence import PersistenceError

__all__ = [
    # Governance
    "AuditLogEntry",
    "GuardId",
    "HookAction",
    "HookContext",
    "HookEvent",
    "HookEventType",
    "HookMatcher",
    "HookResult",
    "HooksConfig",
    "create_default_hooks_config",
    "evaluate",
    "hooks_config_from_dict",
    "load_audit_log",
    "run_hook",
    # Recovery
    "CheckpointInfo",
    "FileSnapshot",
    "SessionState",
    "SessionStatus",
    "SessionManager",
    "CheckpointManager",
    "ErrorLog",
    # Config & persistence
    "HarnessConfig",
    "HarnessPaths",
    "default_config",
    "PersistenceError",
]
