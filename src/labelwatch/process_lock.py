from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
import errno
import json
import os
from pathlib import Path


_LOCK_FILENAME = "watcher.lock"


class ProcessLockError(RuntimeError):
    """Raised when another watcher already owns the state directory."""


@contextmanager
def watcher_process_lock(*, state_dir: Path, command: str) -> Iterator[Path]:
    lock_path = state_dir / _LOCK_FILENAME
    _acquire(lock_path, command=command)
    try:
        yield lock_path
    finally:
        _release(lock_path)


def _acquire(lock_path: Path, *, command: str) -> None:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    # Second attempt only happens after a stale lock from a dead process was removed.
    for _ in range(2):
        try:
            fd = os.open(lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            owner_pid = _read_owner_pid(lock_path)
            if owner_pid is not None and owner_pid != os.getpid() and not _pid_is_running(
                owner_pid
            ):
                try:
                    os.unlink(lock_path)
                except FileNotFoundError:
                    pass
                continue
            raise ProcessLockError(_active_lock_message(lock_path, owner_pid)) from None

        payload = {
            "pid": os.getpid(),
            "command": command,
            "started_at": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
        }
        try:
            os.write(fd, (json.dumps(payload, sort_keys=True) + "\n").encode("utf-8"))
            os.fsync(fd)
        finally:
            os.close(fd)
        return

    raise ProcessLockError(_active_lock_message(lock_path, _read_owner_pid(lock_path)))


def _release(lock_path: Path) -> None:
    if _read_owner_pid(lock_path) != os.getpid():
        return
    try:
        os.unlink(lock_path)
    except FileNotFoundError:
        pass


def _active_lock_message(lock_path: Path, owner_pid: int | None) -> str:
    owner_detail = f" (pid={owner_pid})" if owner_pid is not None else ""
    return (
        f"Another labelwatch process appears active{owner_detail}. Lock file: {lock_path}. "
        "If no watcher is running, remove the lock file and retry."
    )


def _read_owner_pid(lock_path: Path) -> int | None:
    try:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict):
        return None
    pid = payload.get("pid")
    if isinstance(pid, bool) or not isinstance(pid, int):
        return None
    return pid


def _pid_is_running(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as exc:
        return exc.errno != errno.ESRCH
    return True
