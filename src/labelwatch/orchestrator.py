from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Literal

from labelwatch.agent_adapter import AgentAdapter, AgentTask
from labelwatch.config import AppConfig
from labelwatch.git_ops import GitRepoManager
from labelwatch.github_gateway import GitHubGateway
from labelwatch.models import CycleReport, ItemOutcome, PullRequest, WorkItem
from labelwatch.observability import log_event, log_warning_event
from labelwatch.prompts import (
    build_issue_task,
    build_review_task,
    issue_branch_name,
    issue_commit_message,
    issue_pr_body,
    issue_pr_title,
    no_changes_comment,
)
from labelwatch.state import ProcessedSnapshot, ProcessedStore


LOGGER = logging.getLogger("labelwatch.orchestrator")

SkipReason = Literal["not_actor", "already_processed", "duplicate_in_listing"]


def classify_item(
    item: WorkItem, *, actor_login: str, processed: ProcessedSnapshot
) -> SkipReason | None:
    """Return why ``item`` is not ours to act on, or ``None`` when it is eligible."""
    if item.author_login.strip().lower() != actor_login.strip().lower():
        return "not_actor"
    if processed.contains(item.kind, item.number):
        return "already_processed"
    return None


def select_eligible(
    items: Iterable[WorkItem], *, actor_login: str, processed: ProcessedSnapshot
) -> list[WorkItem]:
    eligible: list[WorkItem] = []
    seen: set[tuple[str, int]] = set()
    for item in items:
        reason = classify_item(item, actor_login=actor_login, processed=processed)
        if reason is None and (item.kind, item.number) in seen:
            reason = "duplicate_in_listing"
        if reason is not None:
            log_event(
                LOGGER,
                "item_skipped",
                kind=item.kind,
                number=item.number,
                reason=reason,
            )
            continue
        seen.add((item.kind, item.number))
        eligible.append(item)
    return eligible


class WatchOrchestrator:
    """One poll cycle: list labeled items, filter them, and run each workflow in turn.

    Items run strictly one after another because they all share one working tree.
    Nothing raised while handling an item or while listing escapes :meth:`poll_once`.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        state: ProcessedStore,
        github: GitHubGateway,
        git_manager: GitRepoManager,
        agent: AgentAdapter,
        actor_login: str,
    ) -> None:
        self._config = config
        self._state = state
        self._github = github
        self._git = git_manager
        self._agent = agent
        self._actor_login = actor_login

    def poll_once(self) -> CycleReport:
        label = self._config.repo.trigger_label
        log_event(LOGGER, "poll_started", label=label, actor=self._actor_login)
        try:
            items = self._github.list_open_items_with_label(label)
            processed = self._state.load()
        except Exception as exc:  # noqa: BLE001
            log_warning_event(
                LOGGER,
                "poll_aborted",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return CycleReport(listed=0, eligible=0, succeeded=0, failed=0, aborted=True)

        eligible = select_eligible(items, actor_login=self._actor_login, processed=processed)
        succeeded = 0
        failed = 0
        for item in eligible:
            if self._run_item(item):
                succeeded += 1
            else:
                failed += 1

        report = CycleReport(
            listed=len(items),
            eligible=len(eligible),
            succeeded=succeeded,
            failed=failed,
        )
        log_event(
            LOGGER,
            "poll_completed",
            listed=report.listed,
            eligible=report.eligible,
            succeeded=report.succeeded,
            failed=report.failed,
        )
        return report

    def _run_item(self, item: WorkItem) -> bool:
        log_event(LOGGER, "item_processing_started", kind=item.kind, number=item.number)
        try:
            outcome = self.process_item(item)
            self._state.mark_processed(item.kind, item.number)
        except Exception as exc:  # noqa: BLE001
            # Left out of the processed set, so the next cycle picks it up again.
            log_warning_event(
                LOGGER,
                "item_processing_failed",
                kind=item.kind,
                number=item.number,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            return False
        log_event(
            LOGGER,
            "item_processing_completed",
            kind=item.kind,
            number=item.number,
            status=outcome.status,
            branch=outcome.branch,
            pr_number=outcome.pr_number,
        )
        return True

    def process_item(self, item: WorkItem) -> ItemOutcome:
        if item.is_pull_request:
            return self._process_pull_request(item)
        return self._process_issue(item)

    def _process_issue(self, item: WorkItem) -> ItemOutcome:
        branch = issue_branch_name(item.number)
        with self._git.working_tree() as checkout_path:
            self._git.sync_default_branch()
            self._git.create_or_reset_branch(branch)
            self._agent.run_task(
                task=AgentTask(kind="issue", number=item.number, text=build_issue_task(item)),
                cwd=checkout_path,
            )

            if not self._git.list_staged_files():
                log_event(LOGGER, "issue_no_changes", number=item.number, branch=branch)
                self._github.post_issue_comment(item.number, no_changes_comment(item.number))
                return ItemOutcome(kind="issue", number=item.number, status="no_changes")

            self._git.commit_all(issue_commit_message(item.number))
            self._git.push_branch(branch)
            pr = self._open_issue_pull_request(issue_number=item.number, branch=branch)

        return ItemOutcome(
            kind="issue",
            number=item.number,
            status="pr_opened",
            branch=branch,
            pr_number=pr.number,
            pr_url=pr.html_url,
        )

    def _open_issue_pull_request(self, *, issue_number: int, branch: str) -> PullRequest:
        base = self._config.repo.default_branch
        existing = self._github.find_pull_request_by_head(head=branch, base=base)
        if existing is not None:
            log_event(
                LOGGER,
                "github_pr_reused",
                issue_number=issue_number,
                pr_number=existing.number,
                branch=branch,
            )
            return existing
        return self._github.create_pull_request(
            title=issue_pr_title(issue_number),
            head=branch,
            base=base,
            body=issue_pr_body(issue_number),
        )

    def _process_pull_request(self, item: WorkItem) -> ItemOutcome:
        # The issues listing carries no base ref, so it is looked up per eligible PR.
        snapshot = self._github.get_pull_request(item.number)
        with self._git.working_tree() as checkout_path:
            self._git.fetch_remote()
            self._git.checkout_remote_branch(snapshot.base_ref)
            diff = self._github.get_pull_request_diff(item.number)
            task_text = build_review_task(
                item=item,
                diff=diff,
                review_file=self._config.agent.review_file,
            )
            result = self._agent.run_task(
                task=AgentTask(
                    kind="pull_request",
                    number=item.number,
                    text=task_text,
                    collect_review=True,
                ),
                cwd=checkout_path,
            )

            review = result.review_text or ""
            if not review.strip():
                log_event(LOGGER, "review_skipped", pr_number=item.number, reason="no_review")
                return ItemOutcome(kind="pull_request", number=item.number, status="review_skipped")

            self._github.post_issue_comment(item.number, review)
            log_event(LOGGER, "github_review_posted", pr_number=item.number)

        return ItemOutcome(
            kind="pull_request",
            number=item.number,
            status="review_posted",
            pr_number=item.number,
        )
