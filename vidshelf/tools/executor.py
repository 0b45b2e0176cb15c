"""Media backends: run a ConcatEdit and report completion or failure.

The server only knows the MediaBackend interface. FFmpegBackend is the
concrete implementation: it renders the edit to an ffmpeg command line and
runs it via subprocess.run.
"""

import logging
import shlex
import subprocess
import time
from abc import ABC, abstractmethod

from vidshelf.tools.edit_plan import ConcatEdit, build_ffmpeg_cmd
from vidshelf.tools.errors import EngineError

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20


class MediaBackend(ABC):
    """Contract for the engine that performs decode/filter/encode work."""

    @abstractmethod
    def run(self, edit: ConcatEdit) -> None:
        """Produce ``edit.output`` from ``edit.source``.

        Raises:
            EngineError: the engine failed; ``details`` carries its message.
        """

    def is_available(self) -> bool:
        return True


def _stderr_tail(stderr: str) -> str:
    """Last lines of ffmpeg stderr, where the actual error is printed."""
    lines = [line for line in (stderr or "").strip().splitlines() if line.strip()]
    return "\n".join(lines[-STDERR_TAIL_LINES:])


class FFmpegBackend(MediaBackend):
    """Runs edits through the ffmpeg command-line tool."""

    def __init__(self, binary: str = "ffmpeg", timeout: float | None = 3600.0):
        self.binary = binary
        self.timeout = timeout

    def is_available(self) -> bool:
        try:
            proc = subprocess.run(
                [self.binary, "-version"], capture_output=True, text=True, timeout=10,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
            return False
        return proc.returncode == 0

    def run(self, edit: ConcatEdit) -> None:
        cmd = build_ffmpeg_cmd(edit, self.binary)
        logger.info("Executing ffmpeg: %s", shlex.join(cmd))
        t0 = time.perf_counter()

        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            logger.error("ffmpeg timed out after %ss for %s", self.timeout, edit.output)
            raise EngineError(details=f"ffmpeg timed out after {self.timeout}s") from exc
        except (FileNotFoundError, OSError) as exc:
            logger.error("ffmpeg could not be started: %s", exc)
            raise EngineError(details=f"could not run ffmpeg: {exc}") from exc

        if proc.returncode != 0:
            message = f"ffmpeg exited with code {proc.returncode}: {_stderr_tail(proc.stderr)}"
            logger.error("ffmpeg failed for %s. %s", edit.output, message)
            raise EngineError(details=message)

        logger.info("ffmpeg finished %s in %.1fs", edit.output.name, time.perf_counter() - t0)
