"""Configuration file editing with backup and atomic writes."""

import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple, Union

import structlog

from host_provisioner.exceptions import FilesystemError
from host_provisioner.types import BackupRecord, EditMode

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ConfigEdit:
    """A single idempotent change to a configuration file."""

    path: Path
    content: str
    mode: EditMode = EditMode.APPEND_ONCE
    marker: Optional[str] = None
    file_mode: int = 0o644


def begin_line(marker: str) -> str:
    return f"# BEGIN {marker}"


def end_line(marker: str) -> str:
    return f"# END {marker}"


def render_block(marker: str, content: str) -> str:
    """Wrap content in marker comment lines."""
    body = content if content.endswith("\n") else content + "\n"
    return f"{begin_line(marker)}\n{body}{end_line(marker)}\n"


class ConfigWriter:
    """Apply configuration edits with one backup per file per session."""

    def __init__(self, backup_dir: Path, dry_run: bool = False) -> None:
        """Initialize config writer.

        Args:
            backup_dir: Directory for storing backups
            dry_run: If True, log edits without touching the filesystem
        """
        self.backup_dir = backup_dir
        self.dry_run = dry_run
        self.backups: Dict[str, BackupRecord] = {}
        self.created: Set[str] = set()

    def apply(self, edit: ConfigEdit) -> bool:
        """Apply an edit according to its mode.

        Returns:
            True if the file changed
        """
        if edit.mode == EditMode.FULL_OVERWRITE:
            return self.replace_file(edit.path, edit.content, edit.file_mode)

        if not edit.marker:
            raise ValueError(f"{edit.mode.value} edit of {edit.path} needs a marker")
        if edit.mode == EditMode.REPLACE_BLOCK:
            return self.replace_block(edit.path, edit.marker, edit.content, edit.file_mode)
        return self.apply_block(edit.path, edit.marker, edit.content, edit.file_mode)

    def apply_block(
        self, path: Path, marker: str, content: str, file_mode: int = 0o644
    ) -> bool:
        """Append a marked block unless the marker is already present.

        Returns:
            True if the block was appended
        """
        current = self.read_text(path)
        if begin_line(marker) in current:
            logger.info("block_present", path=str(path), marker=marker)
            return False

        if current and not current.endswith("\n"):
            current += "\n"
        self.backup_once(path)
        self._write(path, current + render_block(marker, content), file_mode)
        logger.info("block_appended", path=str(path), marker=marker)
        return True

    def replace_block(
        self, path: Path, marker: str, content: str, file_mode: int = 0o644
    ) -> bool:
        """Replace the marked block, appending it when absent.

        Returns:
            True if the file changed
        """
        current = self.read_text(path)
        block = render_block(marker, content)
        lines = current.splitlines(keepends=True)
        span = self._find_block(lines, marker)

        if span is None:
            return self.apply_block(path, marker, content, file_mode)

        start, end = span
        existing = "".join(lines[start : end + 1])
        if existing == block:
            logger.info("block_unchanged", path=str(path), marker=marker)
            return False

        updated = "".join(lines[:start]) + block + "".join(lines[end + 1 :])
        self.backup_once(path)
        self._write(path, updated, file_mode)
        logger.info("block_replaced", path=str(path), marker=marker)
        return True

    def remove_block(self, path: Path, marker: str) -> bool:
        """Delete the marked block; a missing file or block is not an error."""
        current = self.read_text(path)
        lines = current.splitlines(keepends=True)
        span = self._find_block(lines, marker)
        if span is None:
            return False

        start, end = span
        self.backup_once(path)
        mode = path.stat().st_mode & 0o777
        self._write(path, "".join(lines[:start] + lines[end + 1 :]), mode)
        logger.info("block_removed", path=str(path), marker=marker)
        return True

    def has_block(self, path: Path, marker: str) -> bool:
        return begin_line(marker) in self.read_text(path)

    def replace_file(self, path: Path, content: str, file_mode: int = 0o644) -> bool:
        """Overwrite a file atomically.

        Returns:
            True if the content or mode changed
        """
        if path.exists():
            current = self.read_text(path)
            if current == content and path.stat().st_mode & 0o777 == file_mode:
                logger.info("file_unchanged", path=str(path))
                return False
            self.backup_once(path)

        self._write(path, content, file_mode)
        logger.info("file_written", path=str(path), mode=oct(file_mode))
        return True

    def backup_once(self, path: Path) -> Optional[Path]:
        """Copy a file into the backup directory the first time it is edited.

        Returns:
            Path to backup file or None if source doesn't exist
        """
        key = str(path)
        if key in self.backups:
            return Path(self.backups[key].backup_path)
        if not path.exists() or self.dry_run:
            return None

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_path = self.backup_dir / f"{path.name}.{timestamp}"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, backup_path)
        except OSError as e:
            raise FilesystemError(path, e) from e

        self.backups[key] = BackupRecord(
            original_path=key,
            backup_path=str(backup_path),
            timestamp=timestamp,
        )
        logger.info("file_backed_up", path=key, backup=str(backup_path))
        return backup_path

    def restore(self, path: Path) -> bool:
        """Undo this session's edits to one file.

        Restores the backup, or deletes the file if this session created it.

        Returns:
            True if anything was restored
        """
        key = str(path)
        try:
            if key in self.created:
                path.unlink(missing_ok=True)
                self.created.discard(key)
                self.backups.pop(key, None)
            elif key in self.backups:
                shutil.copy2(self.backups[key].backup_path, path)
            else:
                return False
        except OSError as e:
            raise FilesystemError(path, e) from e
        logger.warning("file_restored", path=key)
        return True

    def ensure_dir(self, path: Path, mode: int = 0o755) -> None:
        """Create a directory if needed and force its mode.

        Raises:
            FilesystemError: If the directory cannot be created or chmodded
        """
        if self.dry_run:
            logger.info("dry_run_mkdir", path=str(path), mode=oct(mode))
            return
        try:
            path.mkdir(mode=mode, parents=True, exist_ok=True)
            path.chmod(mode)
        except OSError as e:
            raise FilesystemError(path, e) from e

    def remove_empty_dir(self, path: Path) -> bool:
        """Remove a directory only if nothing is left in it.

        Returns:
            True if the directory was removed
        """
        if not path.is_dir() or any(path.iterdir()):
            return False
        if self.dry_run:
            logger.info("dry_run_remove", path=str(path))
            return False
        try:
            path.rmdir()
        except OSError as e:
            raise FilesystemError(path, e) from e
        logger.info("path_removed", path=str(path))
        return True

    def remove_paths(self, paths: Iterable[Union[str, Path]]) -> List[str]:
        """Delete files or directory trees; missing paths are skipped.

        Returns:
            List of removed paths
        """
        removed: List[str] = []
        for item in paths:
            path = Path(item)
            if not path.exists() and not path.is_symlink():
                continue
            if self.dry_run:
                logger.info("dry_run_remove", path=str(path))
                continue
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise FilesystemError(path, e) from e
            removed.append(str(path))
            logger.info("path_removed", path=str(path))
        return removed

    def read_text(self, path: Path) -> str:
        """Read file content; a missing file reads as empty."""
        try:
            return path.read_text()
        except FileNotFoundError:
            return ""
        except OSError as e:
            raise FilesystemError(path, e) from e

    @staticmethod
    def _find_block(lines: List[str], marker: str) -> Optional[Tuple[int, int]]:
        start = None
        for index, line in enumerate(lines):
            stripped = line.rstrip("\n")
            if stripped == begin_line(marker):
                start = index
            elif stripped == end_line(marker) and start is not None:
                return start, index
        return None

    def _write(self, path: Path, content: str, file_mode: int) -> None:
        """Write via a temporary file in the same directory, then rename.

        Raises:
            FilesystemError: On permission, space or path problems
        """
        if self.dry_run:
            logger.info("dry_run_write", path=str(path))
            return

        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
            with os.fdopen(fd, "w") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, file_mode)
            existed = path.exists()
            if existed:
                stat_info = path.stat()
                os.chown(tmp_name, stat_info.st_uid, stat_info.st_gid)
            os.replace(tmp_name, path)
            if not existed:
                self.created.add(str(path))
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise FilesystemError(path, e) from e
