from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from labelwatch.models import WorkItemKind


class AgentError(RuntimeError):
    """The execution agent failed, timed out, or could not be started."""


@dataclass(frozen=True)
class AgentTask:
    kind: WorkItemKind
    number: int
    text: str
    collect_review: bool = False


@dataclass(frozen=True)
class AgentRunResult:
    review_text: str | None


class AgentAdapter(ABC):
    @abstractmethod
    def run_task(self, *, task: AgentTask, cwd: Path) -> AgentRunResult:
        """Run the agent to completion on ``task`` inside the working tree at ``cwd``.

        Returns the review artifact text when ``task.collect_review`` is set and the agent
        wrote one, otherwise ``None``. Raises :class:`AgentError` on any failure.
        """
