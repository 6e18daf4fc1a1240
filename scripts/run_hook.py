#!/usr/bin/env python3
"""
Run the agent-harness policy engine as a Claude Code hook.

Usage (in .claude/settings.json):

    "PreToolUse": [{"matcher": "*", "hooks": [
        {"type": "command", "command": "python scripts/run_hook.py PreToolUse"}
    ]}]

Hooks receive JSON via stdin. This script:
1. Reads the hook input from stdin
2. Evaluates the configured guards for the event
3. Reports the decision through exit code, stdout and stderr

Set HARNESS_LOG_LEVEL=DEBUG to see engine logging on stderr.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from agent_harness.hooks.bridge import EXIT_ERROR, run_hook  # noqa: E402


def main(argv: list[str] | None = None) -> int:
    argv = sys.argv[1:] if argv is None else argv

    logging.basicConfig(
        stream=sys.stderr,
        level=os.environ.get("HARNESS_LOG_LEVEL", "WARNING").upper(),
        format="%(name)s %(levelname)s: %(message)s",
    )

    if not argv:
        print("usage: run_hook.py <EventName>", file=sys.stderr)
        return EXIT_ERROR

    exit_code, stdout_text, stderr_text = run_hook(sys.stdin.read(), argv[0])

    if stdout_text:
        sys.stdout.write(stdout_text)
    if stderr_text:
        sys.stderr.write(stderr_text + "\n")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
