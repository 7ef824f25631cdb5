from __future__ import annotations

from labelwatch.models import WorkItem
from labelwatch.prompts import (
    build_issue_task,
    build_review_task,
    issue_branch_name,
    issue_commit_message,
    issue_pr_body,
    issue_pr_title,
    no_changes_comment,
)


def _item(kind: str = "issue", number: int = 42, body: str = "Fix the typo") -> WorkItem:
    return WorkItem(
        kind=kind,  # type: ignore[arg-type]
        number=number,
        author_login="alice",
        title="Refactor",
        body=body,
        html_url="",
    )


def test_issue_task_is_the_issue_body() -> None:
    assert build_issue_task(_item()) == "Fix the typo"
    assert build_issue_task(_item(body="")) == ""


def test_review_task_layout() -> None:
    task = build_review_task(
        item=_item(kind="pull_request", number=7, body="Please look"),
        diff="+added\n-removed",
        review_file="Review.md",
    )

    assert task.startswith("Pull Request #7: Refactor\n\nPlease look\n\nDiff:\n+added\n-removed")
    assert task.endswith("put any comments in Review.md.")


def test_issue_naming() -> None:
    assert issue_branch_name(42) == "claude-issue-42"
    assert "#42" in issue_commit_message(42)
    assert issue_pr_title(42) == "Address issue #42"
    assert issue_pr_body(42).endswith("Closes #42")
    assert "#42" in no_changes_comment(42)
