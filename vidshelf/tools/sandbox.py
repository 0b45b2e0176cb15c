"""Sandbox path resolution.

Every client-supplied path is joined onto the sandbox root, canonicalized
(``..`` collapsed, symlinks followed) and then checked for containment.
String-prefix checks are not used: ``/videos-old`` starts with ``/videos``.
"""

import logging
from pathlib import Path

from vidshelf.tools.errors import AccessDenied

logger = logging.getLogger(__name__)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False


def resolve_path(root: Path, rel_path: str | None) -> Path:
    """Resolve a client path against ``root``.

    ``rel_path`` is treated as rooted at the sandbox: ``/``, ``""`` and
    ``None`` all mean the root itself, and ``/a/b.mp4`` means ``root/a/b.mp4``.

    Raises:
        AccessDenied: if the canonical path is outside the root.
    """
    root = root.resolve()
    rel = (rel_path or "").replace("\\", "/").lstrip("/")
    if "\x00" in rel:
        raise AccessDenied()

    try:
        resolved = (root / rel).resolve()
    except (OSError, RuntimeError, ValueError) as exc:
        logger.warning("could not resolve %r: %s", rel_path, exc)
        raise AccessDenied() from exc

    if not _is_within(resolved, root):
        logger.warning("rejected path outside sandbox: %r", rel_path)
        raise AccessDenied()
    return resolved


def to_relative_path(root: Path, path: Path) -> str:
    """Express ``path`` relative to the sandbox root, always with a leading ``/``."""
    rel = path.relative_to(root.resolve()).as_posix()
    return "/" if rel == "." else "/" + rel
