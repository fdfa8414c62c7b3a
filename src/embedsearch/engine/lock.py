"""
Exclusive data-directory lock.

One lock file per data directory, guarded by an ``flock`` held on its
descriptor for as long as the lock is owned. The kernel drops the flock when
the owning process exits, so a lock file left behind by a crash is simply
taken over by the next owner; the file itself only records who holds it.
"""

import contextlib
import fcntl
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from embedsearch.errors import InstanceStartupError

logger = structlog.get_logger()

# Retries when the file we locked was unlinked or replaced in the meantime
MAX_ATTEMPTS = 3


def read_lock_holder(lock_path: Path) -> Optional[Dict[str, Any]]:
    """Read the lock file. Returns None if missing or unreadable."""
    try:
        data = json.loads(lock_path.read_text())
    except (FileNotFoundError, ValueError, OSError):
        return None
    return data if isinstance(data, dict) else None


def _same_file(fd: int, path: Path) -> bool:
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    opened = os.fstat(fd)
    return (opened.st_dev, opened.st_ino) == (on_disk.st_dev, on_disk.st_ino)


class DataDirectoryLock:
    """Guarantees at most one supervised engine per data directory."""

    def __init__(self, lock_path: Path, owner: str):
        self.lock_path = lock_path
        self.owner = owner
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        directory = str(self.lock_path.parent)
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstanceStartupError(
                InstanceStartupError.DIRECTORY_UNWRITABLE,
                f"Cannot create data directory {directory}: {e}",
                directory,
            ) from e

        for _ in range(MAX_ATTEMPTS):
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
            except OSError as e:
                raise InstanceStartupError(
                    InstanceStartupError.DIRECTORY_UNWRITABLE,
                    f"Cannot write lock file in {directory}: {e}",
                    directory,
                ) from e

            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                os.close(fd)
                holder = read_lock_holder(self.lock_path) or {}
                raise InstanceStartupError(
                    InstanceStartupError.DIRECTORY_LOCKED,
                    f"Data directory {directory} is locked by instance "
                    f"'{holder.get('instance')}' (pid {holder.get('pid')})",
                    directory,
                )

            # The previous owner may have unlinked the file between our open and flock
            if not _same_file(fd, self.lock_path):
                os.close(fd)
                continue

            previous = read_lock_holder(self.lock_path)
            if previous is not None:
                logger.warning("reclaiming_stale_lock", lock_path=str(self.lock_path), holder=previous)
            self._write_holder(fd)
            self._fd = fd
            logger.debug("data_directory_locked", lock_path=str(self.lock_path), instance=self.owner)
            return

        raise InstanceStartupError(
            InstanceStartupError.DIRECTORY_LOCKED,
            f"Data directory {directory} lock is contended",
            directory,
        )

    def _write_holder(self, fd: int) -> None:
        record = {
            "pid": os.getpid(),
            "instance": self.owner,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        os.ftruncate(fd, 0)
        os.pwrite(fd, json.dumps(record).encode("utf-8"), 0)

    def release(self) -> None:
        if self._fd is None:
            return
        # Unlink while still locked so a waiter never inherits a dead file
        with contextlib.suppress(FileNotFoundError):
            self.lock_path.unlink()
        fcntl.flock(self._fd, fcntl.LOCK_UN)
        os.close(self._fd)
        self._fd = None
        logger.debug("data_directory_unlocked", lock_path=str(self.lock_path))
