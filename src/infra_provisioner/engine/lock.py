"""Local exclusive file locks.

Session locks never queue: a lock already held by another session (thread
or process) fails immediately so the caller can retry later.  Blocking
locks are only used around short writes.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING

from infra_provisioner.engine.errors import StateLockedError

if TYPE_CHECKING:
    from types import TracebackType

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover
    fcntl = None  # type: ignore[assignment]


class FileLock:
    """Exclusive lock backed by a lock file; non-blocking unless asked."""

    locked_error: type[Exception] = StateLockedError

    def __init__(self, lock_path: Path, *, blocking: bool = False) -> None:
        self._lock_path = Path(lock_path)
        self._blocking = blocking
        self._file = None

    @property
    def lock_path(self) -> Path:
        return self._lock_path

    def __enter__(self) -> FileLock:
        # Keep fd open for lifetime of the lock.
        self._lock_path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self._lock_path.open("a+", encoding="utf-8")
        try:
            self._acquire()
        except OSError as e:
            self._close()
            raise self.locked_error(f"Lock is held by another session: {self._lock_path}") from e
        except Exception:
            self._close()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._file is None:
            return
        try:
            self._release()
        finally:
            self._close()

    def _close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            finally:
                self._file = None

    def _acquire(self) -> None:
        if self._file is None:
            raise self.locked_error("Lock file is not open")

        if fcntl is not None:
            flags = fcntl.LOCK_EX if self._blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
            fcntl.flock(self._file.fileno(), flags)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            mode = msvcrt.LK_LOCK if self._blocking else msvcrt.LK_NBLCK
            msvcrt.locking(self._file.fileno(), mode, 1)
            return

        raise self.locked_error("File locking is not supported on this platform")

    def _release(self) -> None:
        if self._file is None:
            return

        if fcntl is not None:
            fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
            return

        if sys.platform == "win32":  # pragma: no cover
            import msvcrt

            msvcrt.locking(self._file.fileno(), msvcrt.LK_UNLCK, 1)
            return


class StateLock(FileLock):
    """Exclusive apply-session lock for a local state file."""

    def __init__(self, state_path: Path) -> None:
        super().__init__(Path(str(state_path) + ".lock"))
