from __future__ import annotations

import errno
import json
import os
from pathlib import Path

import pytest

from labelwatch import process_lock as process_lock_module
from labelwatch.process_lock import ProcessLockError, watcher_process_lock


def _write_lock(lock_path: Path, pid: object) -> None:
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.write_text(
        json.dumps({"pid": pid, "command": "run", "started_at": "2026-01-01T00:00:00.000000Z"}),
        encoding="utf-8",
    )


def test_lock_is_created_and_removed(tmp_path: Path) -> None:
    with watcher_process_lock(state_dir=tmp_path / "state", command="run") as lock_path:
        assert lock_path == tmp_path / "state" / "watcher.lock"
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
        assert payload["pid"] == os.getpid()
        assert payload["command"] == "run"
        assert payload["started_at"].endswith("Z")
    assert not (tmp_path / "state" / "watcher.lock").exists()


def test_lock_is_released_on_error(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match="boom"):
        with watcher_process_lock(state_dir=tmp_path, command="run"):
            raise RuntimeError("boom")
    assert not (tmp_path / "watcher.lock").exists()


def test_live_owner_blocks_second_watcher(tmp_path: Path) -> None:
    _write_lock(tmp_path / "watcher.lock", os.getpid())

    with pytest.raises(ProcessLockError, match=r"appears active \(pid="):
        with watcher_process_lock(state_dir=tmp_path, command="run"):
            pass
    assert (tmp_path / "watcher.lock").exists()


def test_unreadable_lock_blocks(tmp_path: Path) -> None:
    (tmp_path / "watcher.lock").write_text("garbage", encoding="utf-8")

    with pytest.raises(ProcessLockError, match="Another labelwatch process appears active\\."):
        with watcher_process_lock(state_dir=tmp_path, command="run"):
            pass


def test_stale_lock_is_reclaimed(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _write_lock(tmp_path / "watcher.lock", 424242)
    monkeypatch.setattr(process_lock_module, "_pid_is_running", lambda pid: False)

    with watcher_process_lock(state_dir=tmp_path, command="run") as lock_path:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
        assert payload["pid"] == os.getpid()


def test_release_keeps_foreign_lock(tmp_path: Path) -> None:
    lock_path = tmp_path / "watcher.lock"
    _write_lock(lock_path, 424242)

    process_lock_module._release(lock_path)

    assert lock_path.exists()


def test_read_owner_pid_rejects_bad_payloads(tmp_path: Path) -> None:
    lock_path = tmp_path / "watcher.lock"
    assert process_lock_module._read_owner_pid(lock_path) is None
    _write_lock(lock_path, True)
    assert process_lock_module._read_owner_pid(lock_path) is None
    lock_path.write_text("[1]", encoding="utf-8")
    assert process_lock_module._read_owner_pid(lock_path) is None


def test_pid_is_running(monkeypatch: pytest.MonkeyPatch) -> None:
    assert process_lock_module._pid_is_running(0) is False
    assert process_lock_module._pid_is_running(os.getpid()) is True

    def raise_permission(pid: int, sig: int) -> None:
        _ = pid, sig
        raise PermissionError()

    monkeypatch.setattr(process_lock_module.os, "kill", raise_permission)
    assert process_lock_module._pid_is_running(1) is True

    def raise_esrch(pid: int, sig: int) -> None:
        _ = pid, sig
        raise OSError(errno.ESRCH, "no such process")

    monkeypatch.setattr(process_lock_module.os, "kill", raise_esrch)
    assert process_lock_module._pid_is_running(1) is False
