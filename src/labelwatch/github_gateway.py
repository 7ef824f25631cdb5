from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import json
import logging
import os
from typing import cast
from urllib.parse import urlencode

from labelwatch.models import PullRequest, PullRequestSnapshot, WorkItem
from labelwatch.observability import log_event, log_warning_event
from labelwatch.shell import run


LOGGER = logging.getLogger("labelwatch.github_gateway")
_PAGE_SIZE = 100
_DIFF_MEDIA_TYPE = "application/vnd.github.diff"


class GitHubPollingError(RuntimeError):
    """A read from GitHub failed or returned something unusable; the next poll retries."""


@dataclass(frozen=True)
class _Response:
    status: int
    headers: dict[str, str]
    body: str


@dataclass(frozen=True)
class GitHubGateway:
    """The handful of GitHub REST calls the watcher makes, issued through ``gh api``.

    JSON reads are conditional on the last ETag seen for the same path, so an
    unchanged listing costs a 304 and is served from the cached payload.
    """

    owner: str
    name: str
    token: str | None = field(default=None, repr=False, compare=False)
    _etag_cache: dict[str, tuple[str, object]] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def get_authenticated_login(self) -> str:
        user = _expect_dict(self._get_json("/user"), what="user")
        login = _login(user.get("login"))
        if not login:
            raise GitHubPollingError("Unexpected GitHub response: authenticated user has no login")
        return login

    def list_open_items_with_label(self, label: str) -> list[WorkItem]:
        """Open issues and pull requests carrying ``label``, in listing order.

        Both kinds come from the issues endpoint; an entry with a ``pull_request``
        key is a pull request.
        """
        items: list[WorkItem] = []
        page = 1
        while True:
            query = urlencode(
                {"state": "open", "labels": label, "per_page": _PAGE_SIZE, "page": page}
            )
            entries = _expect_list(
                self._get_json(self._repo_path(f"issues?{query}")), what="issues"
            )
            items.extend(_work_item(entry) for entry in entries if isinstance(entry, dict))
            if len(entries) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_items_listed",
            label=label,
            count=len(items),
            pull_request_count=sum(1 for item in items if item.is_pull_request),
        )
        return items

    def get_pull_request(self, pr_number: int) -> PullRequestSnapshot:
        payload = _expect_dict(
            self._get_json(self._repo_path(f"pulls/{pr_number}")), what="pull request"
        )
        base = payload.get("base")
        base_ref = base.get("ref") if isinstance(base, dict) else None
        if not isinstance(base_ref, str) or not base_ref:
            raise GitHubPollingError(f"Pull request #{pr_number} has no base ref")
        return PullRequestSnapshot(number=pr_number, base_ref=base_ref)

    def get_pull_request_diff(self, pr_number: int) -> str:
        diff = self._get(self._repo_path(f"pulls/{pr_number}"), accept=_DIFF_MEDIA_TYPE).body
        log_event(
            LOGGER,
            "github_diff_fetched",
            pr_number=pr_number,
            line_count=len(diff.splitlines()),
        )
        return diff

    def create_pull_request(self, title: str, head: str, base: str, body: str) -> PullRequest:
        payload = _expect_dict(
            self._send(
                "POST",
                self._repo_path("pulls"),
                {"title": title, "head": head, "base": base, "body": body},
            ),
            what="created pull request",
        )
        pr = _pull_request(payload)
        log_event(
            LOGGER,
            "github_pr_created",
            pr_number=pr.number,
            pr_url=pr.html_url,
            head=head,
            base=base,
        )
        return pr

    def find_pull_request_by_head(self, *, head: str, base: str) -> PullRequest | None:
        """The newest open pull request from ``head`` into ``base``, if any."""
        query = urlencode({"state": "open", "head": f"{self.owner}:{head}", "base": base})
        entries = _expect_list(self._get_json(self._repo_path(f"pulls?{query}")), what="pulls")
        candidates = [_pull_request(entry) for entry in entries if isinstance(entry, dict)]
        return max(candidates, key=lambda pr: pr.number, default=None)

    def post_issue_comment(self, issue_number: int, body: str) -> None:
        self._send("POST", self._repo_path(f"issues/{issue_number}/comments"), {"body": body})
        log_event(LOGGER, "github_comment_posted", issue_number=issue_number)

    def _repo_path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.name}/{suffix}"

    def _env(self) -> Mapping[str, str] | None:
        if self.token is None:
            return None
        return {**os.environ, "GH_TOKEN": self.token}

    def _get(self, path: str, *, accept: str | None = None, etag: str | None = None) -> _Response:
        cmd = ["gh", "api", "--method", "GET", "--include"]
        if accept is not None:
            cmd.extend(["--header", f"Accept: {accept}"])
        if etag is not None:
            cmd.extend(["--header", f"If-None-Match: {etag}"])
        cmd.append(path)
        # gh exits non-zero on HTTP errors; the status line tells us more than the exit code.
        raw = run(cmd, check=False, env=self._env())
        response = _parse_response(raw)
        if response.status == 304 or 200 <= response.status < 300:
            return response
        log_warning_event(
            LOGGER,
            "github_get_failed",
            path=path,
            status=response.status,
            body=response.body.strip() or None,
        )
        raise GitHubPollingError(
            f"GET {path} returned HTTP {response.status}: {response.body.strip() or '<empty>'}"
        )

    def _get_json(self, path: str) -> object:
        cached = self._etag_cache.get(path)
        response = self._get(path, etag=cached[0] if cached is not None else None)
        if response.status == 304:
            if cached is None:
                raise GitHubPollingError(f"GET {path} returned 304 without a cached payload")
            return cached[1]
        try:
            payload = json.loads(response.body)
        except json.JSONDecodeError as exc:
            raise GitHubPollingError(f"GET {path} returned invalid JSON: {exc}") from exc
        etag = response.headers.get("etag")
        if etag:
            self._etag_cache[path] = (etag, payload)
        return payload

    def _send(self, method: str, path: str, payload: dict[str, object]) -> object:
        raw = run(
            ["gh", "api", "--method", method, path, "--input", "-"],
            input_text=json.dumps(payload),
            env=self._env(),
        )
        return json.loads(raw) if raw.strip() else None


def _parse_response(raw: str) -> _Response:
    """Split ``gh api --include`` output into status, headers and body.

    Interim responses (``100 Continue``, redirects) come first; the last header block wins.
    """
    head, _, body = raw.replace("\r\n", "\n").partition("\n\n")
    while body.startswith("HTTP/"):
        head, _, body = body.partition("\n\n")
    status_line, *header_lines = head.split("\n")
    parts = status_line.split(" ", 2)
    if not status_line.startswith("HTTP/") or len(parts) < 2 or not parts[1].isdigit():
        preview = " ".join(raw.split())[:200] or "<empty>"
        raise GitHubPollingError(f"Unreadable response from gh api: {preview}")
    headers: dict[str, str] = {}
    for line in header_lines:
        key, sep, value = line.partition(":")
        if sep:
            headers[key.strip().lower()] = value.strip()
    return _Response(status=int(parts[1]), headers=headers, body=body)


def _work_item(entry: dict[str, object]) -> WorkItem:
    user = entry.get("user")
    labels = entry.get("labels")
    return WorkItem(
        kind="pull_request" if "pull_request" in entry else "issue",
        number=_number(entry.get("number")),
        author_login=_login(user.get("login") if isinstance(user, dict) else None),
        title=_text(entry.get("title")),
        body=_text(entry.get("body")),
        html_url=_text(entry.get("html_url")),
        labels=tuple(
            label["name"]
            for label in (labels if isinstance(labels, list) else [])
            if isinstance(label, dict) and isinstance(label.get("name"), str)
        ),
    )


def _pull_request(entry: dict[str, object]) -> PullRequest:
    return PullRequest(number=_number(entry.get("number")), html_url=_text(entry.get("html_url")))


def _expect_dict(value: object, *, what: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise GitHubPollingError(f"Unexpected GitHub response for {what}: expected an object")
    return cast(dict[str, object], value)


def _expect_list(value: object, *, what: str) -> list[object]:
    if not isinstance(value, list):
        raise GitHubPollingError(f"Unexpected GitHub response for {what}: expected a list")
    return value


def _number(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise GitHubPollingError(f"Unexpected GitHub item number: {value!r}")


def _text(value: object) -> str:
    return value if isinstance(value, str) else ""


def _login(value: object) -> str:
    return value.strip().lower() if isinstance(value, str) else ""
