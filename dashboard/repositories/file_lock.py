"""
Cross-process mutual exclusion based on an exclusive marker file.

The marker is created with O_CREAT | O_EXCL, so only one process (or thread)
can hold it at a time. It contains the holder's PID for diagnostics only.
Markers older than ``stale_after`` seconds are treated as left behind by a
crashed writer and removed, one breaker at a time.
"""
from __future__ import annotations

import logging
import os
import random
import time
from pathlib import Path

from dashboard.domain.errors import StorageUnavailableError

logger = logging.getLogger(__name__)


class FileLock:
    def __init__(
        self,
        path: str | os.PathLike,
        *,
        retries: int = 20,
        base_delay: float = 0.1,
        max_factor: int = 8,
        stale_after: float = 5.0,
        jitter: float = 0.05,
    ) -> None:
        self.path = Path(path)
        self.break_path = self.path.with_name(self.path.name + ".break")
        self.retries = max(1, retries)
        self.base_delay = base_delay
        self.max_factor = max_factor
        self.stale_after = stale_after
        self.jitter = jitter
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _try_create(self) -> bool:
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as exc:
            raise StorageUnavailableError("Clients data directory is not writable.") from exc
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
        except OSError as exc:
            os.close(fd)
            try:
                self.path.unlink()
            except OSError as unlink_exc:
                logger.warning("Could not remove half-written lock %s: %s", self.path, unlink_exc)
            raise StorageUnavailableError("Clients data directory is not writable.") from exc
        os.close(fd)
        return True

    def _take_break_marker(self) -> bool:
        try:
            fd = os.open(self.break_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            # Quem morreu no meio da quebra deixa o marcador para tras
            try:
                age = time.time() - os.stat(self.break_path).st_mtime
            except FileNotFoundError:
                return False
            if age > self.stale_after:
                try:
                    os.unlink(self.break_path)
                except FileNotFoundError:
                    pass
            return False
        except OSError as exc:
            logger.warning("Could not create break marker %s: %s", self.break_path, exc)
            return False
        os.close(fd)
        return True

    def _remove_if_stale(self) -> bool:
        """
        Remove the marker if it is stale. Returns True when the caller should
        retry at once.

        Only one process breaks a lock at a time (``<lock>.break``), and the
        marker is unlinked only while it is still the file judged stale, so a
        writer that broke it first and created a fresh marker keeps its lock.
        """
        try:
            seen = self.path.stat()
        except OSError:
            return False
        if time.time() - seen.st_mtime <= self.stale_after:
            return False
        if not self._take_break_marker():
            return False
        try:
            try:
                current = self.path.stat()
            except FileNotFoundError:
                return True
            if (current.st_ino, current.st_mtime_ns) != (seen.st_ino, seen.st_mtime_ns):
                return False
            try:
                self.path.unlink()
            except FileNotFoundError:
                return True
            except OSError as exc:
                logger.warning("Could not remove stale lock %s: %s", self.path, exc)
                return False
            logger.warning(
                "Removed stale lock %s (age %.1fs)", self.path, time.time() - seen.st_mtime
            )
            return True
        finally:
            try:
                os.unlink(self.break_path)
            except OSError as exc:
                logger.warning("Could not remove break marker %s: %s", self.break_path, exc)

    def backoff(self, attempt: int) -> float:
        return self.base_delay * min(2 ** attempt, self.max_factor) + random.uniform(0, self.jitter)

    def acquire(self) -> None:
        for attempt in range(self.retries):
            if self._try_create():
                self._held = True
                return
            if self._remove_if_stale():
                continue
            time.sleep(self.backoff(attempt))
        raise StorageUnavailableError(
            "Could not acquire file lock for clients data. Try again later."
        )

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        try:
            self.path.unlink()
        except OSError as exc:
            # Nao fatal: o lock vira "stale" e e removido pelo proximo escritor
            logger.warning("Could not release lock %s: %s", self.path, exc)

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
