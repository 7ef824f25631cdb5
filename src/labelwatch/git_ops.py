from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
import logging
import re

from labelwatch.config import RepoConfig
from labelwatch.observability import log_event, log_warning_event
from labelwatch.shell import run


LOGGER = logging.getLogger("labelwatch.git_ops")

_SCP_REMOTE_RE = re.compile(r"^(?:[\w.-]+@)?[\w.-]+:(?P<path>[^/][^:]*)$")
_URL_REMOTE_RE = re.compile(r"^(?:https?|ssh|git)://(?:[^@/]+@)?[^/]+/(?P<path>.+)$")


@dataclass(frozen=True)
class RepoCoordinates:
    owner: str
    name: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_remote_url(url: str) -> RepoCoordinates:
    """Extract owner/name from an scp-style, ssh://, git:// or https:// remote URL."""
    candidate = url.strip()
    match = _URL_REMOTE_RE.match(candidate) or _SCP_REMOTE_RE.match(candidate)
    if match is None:
        raise ValueError(f"Unrecognized git remote URL: {url!r}")
    path = match.group("path").strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Remote URL has no owner/name path: {url!r}")
    # Only the last two segments matter; GitLab-style subgroups are not supported.
    return RepoCoordinates(owner=parts[-2], name=parts[-1])


class GitRepoManager:
    """Runs git against the single working tree the watcher owns.

    Every workflow borrows the tree through :meth:`working_tree`, which always hands
    it back reset onto the default branch.
    """

    def __init__(self, repo: RepoConfig) -> None:
        self.repo = repo
        self.checkout_path = repo.checkout_path

    def _git(self, *args: str) -> str:
        return run(["git", "-C", str(self.checkout_path), *args])

    def resolve_remote_url(self) -> str:
        url = self._git("remote", "get-url", self.repo.remote).strip()
        if not url:
            raise RuntimeError(f"Git remote {self.repo.remote!r} has no URL")
        return url

    def resolve_coordinates(self) -> RepoCoordinates:
        explicit = self.repo.explicit_coordinates
        if explicit is not None:
            return RepoCoordinates(owner=explicit[0], name=explicit[1])
        coordinates = parse_remote_url(self.resolve_remote_url())
        log_event(
            LOGGER,
            "git_remote_resolved",
            remote=self.repo.remote,
            repo_full_name=coordinates.full_name,
        )
        return coordinates

    def ensure_tracked_files_clean(self) -> None:
        """Refuse to run over local edits, which the reset on release would destroy."""
        dirty = self._git("status", "--porcelain", "--untracked-files=no").strip()
        if dirty:
            raise RuntimeError(
                f"Working tree at {self.checkout_path} has uncommitted changes:\n{dirty}"
            )

    def exclude_untracked_files(self) -> tuple[str, ...]:
        """Hide files that predate the agent run from `add -A` and `clean -fd`.

        The paths are appended to `.git/info/exclude`, which is local to this clone.
        """
        listing = self._git("ls-files", "-z", "--others", "--exclude-standard", "--directory")
        untracked = tuple(path for path in listing.split("\0") if path)
        if not untracked:
            return ()
        git_path = self._git("rev-parse", "--git-path", "info/exclude").strip()
        exclude_path = self.checkout_path / git_path
        exclude_path.parent.mkdir(parents=True, exist_ok=True)
        with exclude_path.open("a", encoding="utf-8") as fh:
            fh.write("# kept out of labelwatch commits\n")
            for path in untracked:
                fh.write(f"/{_escape_exclude_pattern(path)}\n")
        log_event(
            LOGGER,
            "git_untracked_excluded",
            checkout_path=str(self.checkout_path),
            count=len(untracked),
        )
        return untracked

    @contextmanager
    def working_tree(self) -> Iterator[Path]:
        log_event(LOGGER, "working_tree_acquired", checkout_path=str(self.checkout_path))
        self.exclude_untracked_files()
        try:
            yield self.checkout_path
        finally:
            self.restore_default_branch()
            log_event(LOGGER, "working_tree_released", checkout_path=str(self.checkout_path))

    def restore_default_branch(self) -> None:
        log_event(
            LOGGER,
            "git_restore_default_branch",
            checkout_path=str(self.checkout_path),
            default_branch=self.repo.default_branch,
        )
        self._git("reset", "--hard")
        self._git("clean", "-fd")
        self._git("checkout", self.repo.default_branch)

    def sync_default_branch(self) -> None:
        log_event(
            LOGGER,
            "git_sync_default_branch",
            checkout_path=str(self.checkout_path),
            default_branch=self.repo.default_branch,
        )
        self._git("checkout", self.repo.default_branch)
        self._git("pull", "--ff-only", self.repo.remote, self.repo.default_branch)

    def create_or_reset_branch(self, branch: str) -> None:
        log_event(
            LOGGER,
            "git_branch_reset",
            checkout_path=str(self.checkout_path),
            branch=branch,
        )
        self._git("checkout", "-B", branch)

    def list_staged_files(self) -> tuple[str, ...]:
        self._git("add", "-A")
        diff = self._git("diff", "--cached", "--name-only").strip()
        if not diff:
            return ()
        return tuple(line for line in diff.splitlines() if line.strip())

    def commit_all(self, message: str) -> None:
        if not self.list_staged_files():
            raise RuntimeError("No staged changes to commit")
        log_event(
            LOGGER,
            "git_commit",
            checkout_path=str(self.checkout_path),
            has_message=bool(message.strip()),
        )
        self._git("commit", "-m", message)

    def push_branch(self, branch: str) -> None:
        log_event(
            LOGGER,
            "git_push",
            checkout_path=str(self.checkout_path),
            branch=branch,
        )
        try:
            # The branch name is derived from the item, so a retry rewrites its own earlier push.
            self._git("push", "--force", "-u", self.repo.remote, branch)
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "git_push_failed",
                checkout_path=str(self.checkout_path),
                branch=branch,
                error_type=type(exc).__name__,
            )
            raise

    def fetch_remote(self) -> None:
        log_event(
            LOGGER,
            "git_fetch_remote",
            checkout_path=str(self.checkout_path),
            remote=self.repo.remote,
        )
        self._git("fetch", self.repo.remote, "--prune")

    def checkout_remote_branch(self, branch: str) -> None:
        log_event(
            LOGGER,
            "git_checkout_remote_branch",
            checkout_path=str(self.checkout_path),
            branch=branch,
        )
        self._git("checkout", "-B", branch, f"{self.repo.remote}/{branch}")


def _escape_exclude_pattern(path: str) -> str:
    # Glob characters match literally once escaped; trailing spaces are dropped unless escaped.
    escaped = re.sub(r"([\\*?\[\]])", r"\\\1", path)
    stripped = escaped.rstrip(" ")
    return stripped + "\\ " * (len(escaped) - len(stripped))
