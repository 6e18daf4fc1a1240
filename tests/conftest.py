"""Shared pytest fixtures for agent-harness tests."""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from agent_harness.hooks.types import HookContext


@pytest.fixture(autouse=True)
def clean_harness_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep HARNESS_* variables from the developer's shell out of tests."""
    for key in list(os.environ):
        if key.startswith("HARNESS_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """Empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def agent_dir(project_root: Path) -> Path:
    """Agent directory inside the project (not created yet)."""
    return project_root / ".agent"


@pytest.fixture
def hook_context(project_root: Path, agent_dir: Path) -> HookContext:
    return HookContext(
        project_root=project_root,
        agent_dir=agent_dir,
        session_id="session-test",
    )


def write_file(path: Path, content: str = "") -> Path:
    """Create ``path`` (and its parents) with ``content``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def make_file():
    return write_file
