"""Artifact storage on the local filesystem and age-based cleanup."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .errors import StorageError

logger = logging.getLogger(__name__)

_sequence = itertools.count(1)
_sequence_lock = threading.Lock()


def _next_sequence() -> int:
    with _sequence_lock:
        return next(_sequence)


class ArtifactStore:
    """Write generated files under a directory and hand out download URLs."""

    def __init__(
        self,
        root: Path,
        url_prefix: str = "/downloads",
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Create the store; the directory is created lazily on first write."""
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")
        self._clock = clock

    def unique_name(self, stem: str, extension: str) -> str:
        """
        Generate an artifact name that is unique within this process.

        Names embed the current time in milliseconds and a process-wide
        sequence number, so names generated in order also sort in order.

        Parameters:
            stem (str): Leading part of the name, e.g. ``"split-part1"``.
            extension (str): File extension with or without the leading dot.

        Returns:
            str: A name such as ``"split-part1-1700000000000-7.pdf"``.
        """
        suffix = extension if extension.startswith(".") else f".{extension}"
        millis = int(self._clock() * 1000)
        return f"{stem}-{millis}-{_next_sequence()}{suffix}"

    def path_for(self, name: str) -> Path:
        """Return the filesystem path of an artifact, rejecting names with directories."""
        if not name or Path(name).name != name:
            raise StorageError(f"Invalid artifact name: {name!r}")
        return self.root / name

    def url_for(self, name: str) -> str:
        """Return the download URL of an artifact."""
        return f"{self.url_prefix}/{name}"

    def write_artifact(self, name: str, data: bytes) -> str:
        """
        Write one artifact and return its download URL.

        Raises:
            StorageError: If the file cannot be written; a partial file is removed.
        """
        path = self.path_for(name)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as error:
            self._discard(path)
            raise StorageError(f"Could not write artifact {name}: {error}") from error
        logger.debug("Wrote artifact %s (%d bytes)", name, len(data))
        return self.url_for(name)

    def write_batch(self, items: Sequence[Tuple[str, bytes]]) -> List[str]:
        """
        Write several artifacts, all or nothing.

        Raises:
            StorageError: If any write fails; artifacts already written by this call are removed.
        """
        written: List[str] = []
        try:
            for name, data in items:
                self.write_artifact(name, data)
                written.append(name)
        except StorageError:
            for name in written:
                self._discard(self.path_for(name))
            raise
        return [self.url_for(name) for name in written]

    def read_artifact(self, name: str) -> bytes:
        """
        Read an artifact back.

        Raises:
            StorageError: If the file cannot be read.
        """
        try:
            return self.path_for(name).read_bytes()
        except OSError as error:
            raise StorageError(f"Could not read artifact {name}: {error}") from error

    def delete(self, name: str) -> None:
        """Delete an artifact if it exists."""
        self._discard(self.path_for(name))

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as error:
            logger.warning("Could not remove %s: %s", path, error)


class CleanupScheduler:
    """Periodically delete files older than a retention window."""

    def __init__(
        self,
        directories: Iterable[Path],
        retention_seconds: float = 3600,
        interval_seconds: float = 1800,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Configure the sweep.

        Parameters:
            directories (Iterable[Path]): Directories whose direct children are swept.
            retention_seconds (float): Minimum age, by modification time, before a file is deleted.
            interval_seconds (float): Delay between sweeps when running in the background.
            clock (Callable[[], float]): Returns the current epoch time in seconds.
        """
        self.directories = [Path(directory) for directory in directories]
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def sweep(self) -> List[Path]:
        """Delete expired files once and return the paths removed."""
        now = self._clock()
        removed: List[Path] = []
        for directory in self.directories:
            if not directory.is_dir():
                continue
            for path in directory.iterdir():
                try:
                    if not path.is_file():
                        continue
                    if now - path.stat().st_mtime > self.retention_seconds:
                        path.unlink()
                        removed.append(path)
                except FileNotFoundError:
                    continue
                except OSError as error:
                    logger.warning("Cleanup skipped %s: %s", path, error)
        if removed:
            logger.info("Cleanup removed %d expired files", len(removed))
        return removed

    @property
    def running(self) -> bool:
        """Whether the background thread is alive."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start sweeping in a daemon thread; no-op if already running."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="pagesmith-cleanup", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the background thread."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.sweep()
            except Exception as error:  # noqa: BLE001
                logger.error("Cleanup sweep failed: %s", error)
