"""Cross-process build lock.

Command-line builds share the references folder and the compile toolchain,
so concurrent invocations are serialised with an exclusive OS lock on a
single lock file. A contended lock is not an error: the caller is told once
that it is waiting and then blocks until the other build finishes. The OS
releases the lock if the holding process dies.
"""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

WAITING_MESSAGE = "Waiting for other builds to complete"

if sys.platform == "win32":
    import msvcrt

    def _try_lock(handle: IO[bytes]) -> bool:
        handle.seek(0)
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _lock(handle: IO[bytes]) -> None:
        while not _try_lock(handle):
            time.sleep(0.5)

    def _unlock(handle: IO[bytes]) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(handle: IO[bytes]) -> bool:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _lock(handle: IO[bytes]) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)

    def _unlock(handle: IO[bytes]) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


@contextmanager
def build_lock(path: Path, notify: Optional[Callable[[str], None]] = None) -> Iterator[None]:
    """Hold the exclusive build lock at *path* for the duration of the block.

    Args:
        path: The shared lock file; created if missing.
        notify: Called once with a notice if the lock is held elsewhere.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a+b") as handle:
        if not _try_lock(handle):
            logger.debug("Build lock %s is held, waiting", path)
            if notify is not None:
                notify(WAITING_MESSAGE)
            _lock(handle)
        try:
            yield
        finally:
            _unlock(handle)
