from __future__ import annotations

from labelwatch.models import WorkItem


def build_issue_task(item: WorkItem) -> str:
    return item.body or ""


def build_review_task(*, item: WorkItem, diff: str, review_file: str) -> str:
    return (
        f"Pull Request #{item.number}: {item.title}\n\n"
        f"{item.body or ''}\n\n"
        f"Diff:\n{diff}\n\n"
        "This is a code review task. Please review the changes and put any comments in "
        f"{review_file}."
    )


def issue_branch_name(issue_number: int) -> str:
    return f"claude-issue-{issue_number}"


def issue_commit_message(issue_number: int) -> str:
    return f"Address issue #{issue_number}"


def issue_pr_title(issue_number: int) -> str:
    return f"Address issue #{issue_number}"


def issue_pr_body(issue_number: int) -> str:
    return f"This PR addresses issue #{issue_number}. Closes #{issue_number}"


def no_changes_comment(issue_number: int) -> str:
    return (
        f"The agent finished issue #{issue_number} without changing any files, "
        "so no pull request was opened."
    )
