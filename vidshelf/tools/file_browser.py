"""Directory listing and deletion inside the sandbox root."""

import logging
import os
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

from vidshelf.tools.errors import AccessDenied, InternalFailure, NotFound
from vidshelf.tools.sandbox import resolve_path, to_relative_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """One stat() snapshot of a directory child."""

    name: str
    relative_path: str
    is_directory: bool
    size_bytes: int
    modified_time: datetime

    def to_dict(self) -> dict[str, Any]:
        """Wire format expected by the UI client."""
        return {
            "name": self.name,
            "path": self.relative_path,
            "isDirectory": self.is_directory,
            "size": self.size_bytes,
            "modifiedTime": self.modified_time.isoformat(),
        }


def _points_inside(root: Path, path: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except (ValueError, OSError, RuntimeError):
        return False
    return True


def stat_entry(root: Path, path: Path) -> FileEntry:
    """Build a FileEntry for ``path``.

    Symlinks pointing outside the root are described by lstat, so nothing
    about their target is reported. Dangling symlinks also fall back to lstat.
    """
    if path.is_symlink() and not _points_inside(root, path):
        st = path.lstat()
        is_dir = False
    else:
        try:
            st = path.stat()
        except FileNotFoundError:
            st = path.lstat()
        is_dir = os.path.isdir(path)
    return FileEntry(
        name=path.name,
        relative_path=to_relative_path(root, path),
        is_directory=is_dir,
        size_bytes=st.st_size,
        modified_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
    )


def list_directory(root: Path, rel_path: str | None = "/") -> list[FileEntry]:
    """List the direct children of a sandboxed directory, sorted by name.

    Raises:
        AccessDenied: path escapes the root.
        NotFound: path is missing or not a directory.
        InternalFailure: any other filesystem error (cause is logged only).
    """
    directory = resolve_path(root, rel_path)
    if not directory.is_dir():
        raise NotFound("Directory not found")

    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name)
        # Children are reported under their own (link) name, so build paths from
        # the resolved directory rather than resolving each child.
        return [stat_entry(root, child) for child in children]
    except OSError:
        logger.exception("Error reading directory %s", directory)
        raise InternalFailure("Failed to read directory")


def delete_entry(root: Path, rel_path: str | None) -> None:
    """Delete a file, or a directory recursively. The root itself is refused.

    A symlink is removed as a link; its target is left alone.
    """
    clean = (rel_path or "").replace("\\", "/").strip("/")
    if "\x00" in clean:
        raise AccessDenied()
    pure = PurePosixPath(clean)
    if pure.name in ("", ".", ".."):
        target = resolve_path(root, rel_path)
    else:
        # Only the parent is resolved so a final symlink component stays a link.
        target = resolve_path(root, str(pure.parent)) / pure.name

    if target == root.resolve():
        raise AccessDenied()
    if not os.path.lexists(target):
        raise NotFound("File not found")

    try:
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()
    except OSError:
        logger.exception("Error deleting %s", target)
        raise InternalFailure("Failed to delete file")
    logger.info("Deleted %s", to_relative_path(root, target))
