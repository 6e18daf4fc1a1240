"""
Checkpoint Manager for agent-harness.

Snapshots the tracked part of a project tree and restores it on demand.

Layout under <agent_dir>/checkpoints/<checkpoint_id>/:

    checkpoint.json     CheckpointInfo metadata
    <relative paths>    verbatim copies of the tracked files

A checkpoint directory is self-contained: deleting it removes the checkpoint
completely, and nothing outside it is needed to restore.

Restore overwrites unconditionally. It does not compare live files against
the snapshot; callers that want a conflict policy can inspect
``changed_files`` first.
"""

from __future__ import annotations

import hashlib
import logging
import shutil
import time
import uuid
from datetime import datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from .config import CheckpointConfig, HarnessConfig
from .persistence import atomic_write_text
from .session_schema import CheckpointInfo, FileSnapshot, utc_now

logger = logging.getLogger(__name__)

CHECKPOINTS_DIR_NAME = "checkpoints"
CHECKPOINT_METADATA_NAME = "checkpoint.json"

# Directories without metadata younger than this may still be being written
ORPHAN_GRACE_SECONDS = 300


def file_hash(data: bytes) -> str:
    """Content hash used in snapshots (sha256, 16 hex chars)."""
    return hashlib.sha256(data).hexdigest()[:16]


def generate_checkpoint_id() -> str:
    """Time-ordered, collision-proof checkpoint id."""
    return f"ckpt-{time.time_ns():x}-{uuid.uuid4().hex[:8]}"


class CheckpointManager:
    """
    Creates, restores, lists and prunes file checkpoints for one project.

    Args:
        agent_dir: Per-project agent directory (checkpoints live below it)
        project_root: Root of the tree being snapshotted
        config: Which files are tracked and how many checkpoints to keep
        auto_checkpoint: Whether should_checkpoint may ever return True
    """

    def __init__(
        self,
        agent_dir: Path | str,
        project_root: Path | str,
        config: CheckpointConfig | None = None,
        auto_checkpoint: bool = True,
    ):
        self.agent_dir = Path(agent_dir)
        self.project_root = Path(project_root)
        self.config = config or CheckpointConfig()
        self.auto_checkpoint = auto_checkpoint
        self._last_created: datetime | None = None

    @classmethod
    def from_config(cls, config: HarnessConfig, project_root: Path | str) -> "CheckpointManager":
        """Build a manager for a project from its harness config."""
        paths = config.paths(project_root)
        return cls(
            paths.agent_dir,
            paths.project_root,
            config.checkpoints,
            auto_checkpoint=config.features.enable_file_checkpointing,
        )

    @property
    def checkpoints_dir(self) -> Path:
        return self.agent_dir / CHECKPOINTS_DIR_NAME

    def get_checkpoint_dir(self, checkpoint_id: str) -> Path:
        return self.checkpoints_dir / checkpoint_id

    # =========================================================================
    # File discovery
    # =========================================================================

    def discover_files(self) -> list[str]:
        """
        Find the files a checkpoint tracks.

        Source files with a tracked extension below ``config.source_dir``
        (skipping hidden and excluded directories), then the top-level
        config files that exist.

        Returns:
            POSIX paths relative to the project root
        """
        files: list[str] = []

        source_dir = self.project_root / self.config.source_dir
        if source_dir.is_dir():
            for path in self._walk(source_dir):
                files.append(path.relative_to(self.project_root).as_posix())

        for name in self.config.config_files:
            if (self.project_root / name).is_file() and name not in files:
                files.append(name)

        return files

    def _walk(self, directory: Path) -> list[Path]:
        found: list[Path] = []
        try:
            entries = sorted(directory.iterdir())
        except OSError:
            return found

        extensions = tuple(self.config.source_extensions)
        for entry in entries:
            if entry.is_dir():
                if entry.is_symlink():
                    continue
                if entry.name.startswith(".") or entry.name in self.config.excluded_dirs:
                    continue
                found.extend(self._walk(entry))
            elif entry.name.endswith(extensions):
                found.append(entry)
        return found

    # =========================================================================
    # Create / restore
    # =========================================================================

    def create(self, description: str, feature_id: str | None = None) -> CheckpointInfo:
        """
        Snapshot the tracked files.

        Files that disappear before they can be read are left out of the
        snapshot. Files that were read but could not be copied are recorded
        with ``backed_up=False`` and are skipped on restore.

        Args:
            description: What this checkpoint marks
            feature_id: Feature being worked on, if any

        Returns:
            Metadata of the new checkpoint

        Raises:
            PersistenceError: If checkpoint.json could not be written (the
                partial checkpoint directory is removed)
        """
        checkpoint_id = generate_checkpoint_id()
        checkpoint_dir = self.get_checkpoint_dir(checkpoint_id)
        checkpoint_dir.mkdir(parents=True, exist_ok=False)

        try:
            snapshots = []
            for rel_path in self.discover_files():
                snapshot = self._snapshot_file(rel_path, checkpoint_dir)
                if snapshot is not None:
                    snapshots.append(snapshot)

            checkpoint = CheckpointInfo(
                id=checkpoint_id,
                created_at=self._next_timestamp(),
                description=description,
                feature_id=feature_id,
                files_snapshot=snapshots,
                can_restore=True,
            )

            atomic_write_text(
                checkpoint_dir / CHECKPOINT_METADATA_NAME,
                checkpoint.model_dump_json(indent=2),
            )
        except Exception:
            shutil.rmtree(checkpoint_dir, ignore_errors=True)
            raise

        logger.info(
            "Created checkpoint %s (%d files): %s",
            checkpoint_id,
            len(snapshots),
            description,
        )
        return checkpoint

    def _next_timestamp(self) -> datetime:
        # Strictly increasing so newest-first ordering is stable
        now = utc_now()
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now

    def _snapshot_file(self, rel_path: str, checkpoint_dir: Path) -> FileSnapshot | None:
        source = self.project_root / rel_path
        try:
            data = source.read_bytes()
        except OSError:
            # Vanished (or unreadable) since discovery
            return None

        backup = checkpoint_dir / rel_path
        backed_up = True
        try:
            backup.parent.mkdir(parents=True, exist_ok=True)
            # Write the bytes that were hashed so hash and payload agree
            backup.write_bytes(data)
            shutil.copystat(source, backup)
        except OSError as e:
            logger.warning("Could not back up %s: %s", rel_path, e)
            try:
                backed_up = backup.is_file() and backup.read_bytes() == data
            except OSError:
                backed_up = False

        return FileSnapshot(
            path=rel_path,
            hash=file_hash(data),
            size=len(data),
            backed_up=backed_up,
        )

    def restore(self, checkpoint_id: str) -> bool:
        """
        Copy every backed-up file of a checkpoint back into the project.

        Overwrites unconditionally and creates missing directories.

        Returns:
            True on success. False (with an error logged naming the
            checkpoint and the reason) when the checkpoint is missing,
            unreadable, not restorable, or a file could not be written.
        """
        if not self._valid_id(checkpoint_id):
            logger.error("Checkpoint %s not found: invalid checkpoint id", checkpoint_id)
            return False

        checkpoint_dir = self.get_checkpoint_dir(checkpoint_id)
        metadata_path = checkpoint_dir / CHECKPOINT_METADATA_NAME

        if not metadata_path.exists():
            logger.error("Checkpoint %s not found", checkpoint_id)
            return False

        try:
            checkpoint = CheckpointInfo.model_validate_json(
                metadata_path.read_text(encoding="utf-8")
            )
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.error("Checkpoint %s cannot be read: %s", checkpoint_id, e)
            return False

        if not checkpoint.can_restore:
            logger.error("Checkpoint %s cannot be restored: marked as not restorable", checkpoint_id)
            return False

        root = self.project_root.resolve()
        for snapshot in checkpoint.backed_up_files:
            backup = checkpoint_dir / snapshot.path
            target = (root / snapshot.path).resolve()

            if not target.is_relative_to(root):
                logger.warning(
                    "Checkpoint %s: skipping %s outside the project root",
                    checkpoint_id,
                    snapshot.path,
                )
                continue

            if not backup.is_file():
                logger.warning("Checkpoint %s: backup of %s is missing", checkpoint_id, snapshot.path)
                continue

            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(backup, target)
            except OSError as e:
                logger.error("Failed to restore checkpoint %s: %s: %s", checkpoint_id, snapshot.path, e)
                return False

        logger.info("Restored checkpoint %s: %s", checkpoint_id, checkpoint.description)
        return True

    @staticmethod
    def _valid_id(checkpoint_id: str) -> bool:
        if not checkpoint_id or checkpoint_id in (".", ".."):
            return False
        return "/" not in checkpoint_id and "\\" not in checkpoint_id

    # =========================================================================
    # Query / retention
    # =========================================================================

    def get(self, checkpoint_id: str) -> CheckpointInfo | None:
        """Load one checkpoint's metadata, or None if missing or corrupt."""
        if not self._valid_id(checkpoint_id):
            return None
        metadata_path = self.get_checkpoint_dir(checkpoint_id) / CHECKPOINT_METADATA_NAME
        if not metadata_path.exists():
            return None
        try:
            return CheckpointInfo.model_validate_json(metadata_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError):
            return None

    def list(self) -> list[CheckpointInfo]:
        """All checkpoints with valid metadata, newest first."""
        if not self.checkpoints_dir.exists():
            return []

        checkpoints = []
        for checkpoint_dir in self.checkpoints_dir.iterdir():
            if not checkpoint_dir.is_dir():
                continue
            checkpoint = self.get(checkpoint_dir.name)
            if checkpoint is not None:
                checkpoints.append(checkpoint)

        return sorted(checkpoints, key=lambda c: (c.created_at, c.id), reverse=True)

    def latest(self) -> CheckpointInfo | None:
        checkpoints = self.list()
        return checkpoints[0] if checkpoints else None

    def cleanup(self, keep_count: int | None = None) -> list[str]:
        """
        Delete all but the ``keep_count`` newest checkpoints.

        Deletion removes whole checkpoint directories and cannot be undone.
        Leftover directories with corrupt metadata, or with none after
        ORPHAN_GRACE_SECONDS, are removed as well.

        Args:
            keep_count: Checkpoints to keep (default: config.max_checkpoints)

        Returns:
            Ids of the deleted checkpoints, oldest first
        """
        if keep_count is None:
            keep_count = self.config.max_checkpoints
        if keep_count < 0:
            raise ValueError("keep_count must be >= 0")

        self._prune_orphans()

        checkpoints = self.list()
        if len(checkpoints) <= keep_count:
            return []

        deleted = []
        for checkpoint in reversed(checkpoints[keep_count:]):
            checkpoint_dir = self.get_checkpoint_dir(checkpoint.id)
            try:
                shutil.rmtree(checkpoint_dir)
            except OSError as e:
                logger.warning("Could not delete checkpoint %s: %s", checkpoint.id, e)
                continue
            deleted.append(checkpoint.id)

        if deleted:
            logger.info("Removed %d old checkpoints", len(deleted))
        return deleted

    def _prune_orphans(self) -> None:
        if not self.checkpoints_dir.exists():
            return

        now = time.time()
        for checkpoint_dir in self.checkpoints_dir.iterdir():
            if not checkpoint_dir.is_dir() or self.get(checkpoint_dir.name) is not None:
                continue
            try:
                if not (checkpoint_dir / CHECKPOINT_METADATA_NAME).exists():
                    if now - checkpoint_dir.stat().st_mtime < ORPHAN_GRACE_SECONDS:
                        continue
                shutil.rmtree(checkpoint_dir)
            except OSError as e:
                logger.warning("Could not delete incomplete checkpoint %s: %s", checkpoint_dir.name, e)
                continue
            logger.info("Removed incomplete checkpoint %s", checkpoint_dir.name)

    def changed_files(self, checkpoint_id: str) -> list[str] | None:
        """
        Tracked files whose live content differs from the checkpoint.

        Files deleted since the checkpoint count as changed. Read-only.

        Returns:
            Relative paths, or None if the checkpoint does not exist
        """
        checkpoint = self.get(checkpoint_id)
        if checkpoint is None:
            return None

        changed = []
        for snapshot in checkpoint.files_snapshot:
            try:
                current = file_hash((self.project_root / snapshot.path).read_bytes())
            except OSError:
                changed.append(snapshot.path)
                continue
            if current != snapshot.hash:
                changed.append(snapshot.path)
        return changed

    def should_checkpoint(self, completed_count: int) -> bool:
        """Whether ``completed_count`` completed features warrant an automatic checkpoint."""
        interval = self.config.checkpoint_interval
        return (
            self.auto_checkpoint
            and self.config.auto_save
            and interval > 0
            and completed_count > 0
            and completed_count % interval == 0
        )


__all__ = [
    "CHECKPOINTS_DIR_NAME",
    "CHECKPOINT_METADATA_NAME",
    "CheckpointManager",
    "file_hash",
    "generate_checkpoint_id",
]
