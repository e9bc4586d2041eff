"""Process-owned lock files."""

from __future__ import annotations

import contextlib
import os
import re

__all__ = ["LockError", "lock", "unlock"]

_PID = re.compile(r"\s*([+-]?\d+)")


class LockError(Exception):
    """The lock file is not owned by the calling process."""


def lock(path: str | os.PathLike[str]) -> bool:
    """Create a lock file at ``path`` owned by the calling process.

    If the lock file exists and its owner is the calling process, the lock is
    considered held. If the owner is another live process, returns False. A
    lock whose owner is not running, or is unreadable, is taken over.
    """
    path = os.fspath(path)
    temp = _create_temp_lock(path)
    try:
        try:
            os.link(temp, path)
        except FileExistsError as exists:
            try:
                owner = _get_owner(path)
            except OSError:
                raise exists from None

            if owner == os.getpid():
                return True
            if _is_alive(owner):
                return False

            os.remove(path)
            os.link(temp, path)
        return True
    finally:
        _discard_temp_lock(temp, path)


def unlock(path: str | os.PathLike[str]) -> None:
    """Release a lock file owned by the calling process.

    Raises ``LockError`` if the calling process is not the owner and
    ``OSError`` if the file cannot be read or removed.
    """
    path = os.fspath(path)
    if _get_owner(path) != os.getpid():
        raise LockError("process is not owner of lock file")
    os.remove(path)


def _get_owner(path: str) -> int:
    """Return the pid stored in the lock file, or -1 if it holds none."""
    with open(path, encoding="utf-8", errors="replace") as handle:
        content = handle.read()
    match = _PID.match(content)
    return int(match.group(1)) if match else -1


def _is_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def _create_temp_lock(path: str) -> str:
    pid = os.getpid()
    temp = f"{path}.{pid}"
    try:
        with open(temp, "w", encoding="utf-8") as handle:
            handle.write(str(pid))
    except OSError:
        with contextlib.suppress(OSError):
            os.remove(temp)
        raise
    return temp


def _discard_temp_lock(temp: str, path: str) -> None:
    """Remove the temporary lock unless it became the lock file itself."""
    try:
        temp_stat = os.stat(temp)
    except FileNotFoundError:
        return
    try:
        lock_stat = os.stat(path)
    except OSError:
        lock_stat = None
    if lock_stat is None or not os.path.samestat(lock_stat, temp_stat):
        with contextlib.suppress(OSError):
            os.remove(temp)