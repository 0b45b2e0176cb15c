"""Watches the edited/ directory for new video files.

Uses watchdog. On a new file: wait for writes to settle, stat it into a
FileEntry and pass its dict to the on_new_file callback (server.py pushes
it to WebSocket clients as a new_output event).
"""

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional

from watchdog.events import FileCreatedEvent, FileMovedEvent, FileSystemEventHandler
from watchdog.observers import Observer

from vidshelf.tools.file_browser import stat_entry

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = (".mp4", ".mkv", ".webm", ".mov")
SETTLE_WAIT = 1.0  # seconds between size checks
SETTLE_RETRIES = 3


class _VideoHandler(FileSystemEventHandler):
    def __init__(self, watcher: "OutputWatcher"):
        super().__init__()
        self._watcher = watcher

    def on_created(self, event):
        if not isinstance(event, FileCreatedEvent):
            return
        self._watcher._handle_new_file(event.src_path)

    def on_moved(self, event):
        if not isinstance(event, FileMovedEvent):
            return
        self._watcher._handle_new_file(event.dest_path)


class OutputWatcher:
    """Reports video files appearing in ``watch_dir`` (a directory under ``root``)."""

    def __init__(
        self,
        root: Path,
        watch_dir: Path,
        extensions: tuple[str, ...] = VIDEO_EXTENSIONS,
        on_new_file: Optional[Callable[[dict[str, Any]], None]] = None,
    ):
        self.root = Path(root)
        self.watch_dir = Path(watch_dir)
        self.extensions = extensions
        self.on_new_file = on_new_file

        self._observer: Optional[Observer] = None
        self._lock = threading.Lock()
        self._seen: set[str] = set()

    def start(self) -> None:
        """Start watching. Non-blocking (runs observer thread)."""
        self.watch_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            self._seen.update(p.name for p in self.watch_dir.iterdir())
        self._observer = Observer()
        self._observer.schedule(_VideoHandler(self), str(self.watch_dir), recursive=False)
        self._observer.start()
        logger.info("OutputWatcher started on %s", self.watch_dir)

    def stop(self) -> None:
        """Stop watching. Joins observer thread."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
            logger.info("OutputWatcher stopped")

    @property
    def running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def _handle_new_file(self, filepath: str) -> None:
        """Process a newly detected file (called from the observer thread)."""
        p = Path(filepath)
        if p.suffix.lower() not in self.extensions:
            return

        with self._lock:
            if p.name in self._seen:
                return
            self._seen.add(p.name)

        if not self._wait_for_settle(p):
            return

        try:
            entry = stat_entry(self.root, p)
        except (OSError, ValueError) as exc:
            logger.warning("could not stat new output %s: %s", p, exc)
            return

        if self.on_new_file is not None:
            try:
                self.on_new_file(entry.to_dict())
            except Exception as exc:
                logger.warning("on_new_file callback error: %s", exc)

    def _wait_for_settle(self, filepath: Path) -> bool:
        """Wait until file size stabilizes. False if the file disappeared."""
        for _ in range(SETTLE_RETRIES):
            try:
                size1 = filepath.stat().st_size
            except OSError:
                return False
            time.sleep(SETTLE_WAIT)
            try:
                size2 = filepath.stat().st_size
            except OSError:
                return False
            if size1 == size2 and size2 > 0:
                return True
        return True  # still growing; report it anyway
