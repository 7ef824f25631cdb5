from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path
import tempfile
import threading

from labelwatch.models import WorkItemKind
from labelwatch.observability import log_event


LOGGER = logging.getLogger("labelwatch.state")

_FILENAMES: dict[WorkItemKind, str] = {
    "issue": "processed_issues.json",
    "pull_request": "processed_prs.json",
}


class StateFileError(RuntimeError):
    """A persisted processed-id file exists but cannot be parsed."""


@dataclass(frozen=True)
class ProcessedSnapshot:
    issues: frozenset[int]
    pull_requests: frozenset[int]

    def contains(self, kind: WorkItemKind, number: int) -> bool:
        if kind == "issue":
            return number in self.issues
        return number in self.pull_requests


class ProcessedStore:
    """Durable record of issue and pull request numbers already handled.

    Each kind lives in its own JSON file holding a flat list of integers. A missing
    file reads as an empty list. Entries are only ever appended; nothing here removes
    an identifier once recorded.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._lock = threading.Lock()

    @property
    def state_dir(self) -> Path:
        return self._state_dir

    def path_for(self, kind: WorkItemKind) -> Path:
        return self._state_dir / _FILENAMES[kind]

    def load(self) -> ProcessedSnapshot:
        with self._lock:
            return ProcessedSnapshot(
                issues=frozenset(self._read_ids("issue")),
                pull_requests=frozenset(self._read_ids("pull_request")),
            )

    def list_processed(self, kind: WorkItemKind) -> tuple[int, ...]:
        with self._lock:
            return tuple(self._read_ids(kind))

    def mark_processed(self, kind: WorkItemKind, number: int) -> bool:
        """Record ``number`` as handled. Returns False when it was already recorded."""
        with self._lock:
            ids = self._read_ids(kind)
            if number in ids:
                return False
            ids.append(number)
            self._write_ids(kind, ids)
        log_event(LOGGER, "state_item_recorded", kind=kind, number=number)
        return True

    def _read_ids(self, kind: WorkItemKind) -> list[int]:
        path = self.path_for(kind)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StateFileError(f"Invalid JSON in state file {path}: {exc}") from exc
        if not isinstance(payload, list):
            raise StateFileError(f"State file {path} must contain a JSON list")
        ids: list[int] = []
        for entry in payload:
            if isinstance(entry, bool) or not isinstance(entry, int):
                raise StateFileError(f"State file {path} has a non-integer entry: {entry!r}")
            ids.append(entry)
        return ids

    def _write_ids(self, kind: WorkItemKind, ids: list[int]) -> None:
        path = self.path_for(kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(json.dumps(ids, indent=2))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except Exception:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
