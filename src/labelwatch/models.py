from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


WorkItemKind = Literal["issue", "pull_request"]
ItemOutcomeStatus = Literal["pr_opened", "no_changes", "review_posted", "review_skipped"]


@dataclass(frozen=True)
class WorkItem:
    """An open, labeled issue or pull request as read from the issues listing."""

    kind: WorkItemKind
    number: int
    author_login: str
    title: str
    body: str
    html_url: str
    labels: tuple[str, ...] = ()

    @property
    def is_pull_request(self) -> bool:
        return self.kind == "pull_request"


@dataclass(frozen=True)
class PullRequest:
    number: int
    html_url: str


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    base_ref: str


@dataclass(frozen=True)
class ItemOutcome:
    kind: WorkItemKind
    number: int
    status: ItemOutcomeStatus
    branch: str | None = None
    pr_number: int | None = None
    pr_url: str | None = None


@dataclass(frozen=True)
class CycleReport:
    listed: int
    eligible: int
    succeeded: int
    failed: int
    aborted: bool = False
