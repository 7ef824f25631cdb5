from __future__ import annotations

from pathlib import Path
import logging
import time

from labelwatch.agent_adapter import AgentAdapter, AgentError, AgentRunResult, AgentTask
from labelwatch.config import AgentConfig
from labelwatch.observability import log_event, log_warning_event
from labelwatch.shell import CommandError, CommandTimeoutError, run


LOGGER = logging.getLogger("labelwatch.docker_agent")


class DockerAgentAdapter(AgentAdapter):
    """Runs the agent inside a throwaway container with the working tree mounted.

    The task text is handed over as a file in the working tree; the agent may leave a
    review file next to it. Both files are removed again so they never end up staged.
    """

    def __init__(self, config: AgentConfig) -> None:
        self._config = config

    def run_task(self, *, task: AgentTask, cwd: Path) -> AgentRunResult:
        task_path = cwd / self._config.task_file
        review_path = cwd / self._config.review_file
        container_name = container_name_for(task)

        _remove_if_present(review_path)
        task_path.write_text(task.text, encoding="utf-8")
        log_event(
            LOGGER,
            "agent_invocation_started",
            kind=task.kind,
            number=task.number,
            container_name=container_name,
            timeout_seconds=self._config.timeout_seconds,
        )
        started = time.monotonic()
        try:
            run(
                self.build_command(cwd=cwd, container_name=container_name),
                cwd=cwd,
                timeout=self._config.timeout_seconds,
            )
        except CommandTimeoutError as exc:
            log_warning_event(
                LOGGER,
                "agent_invocation_failed",
                kind=task.kind,
                number=task.number,
                reason="timeout",
            )
            self._force_remove_container(container_name)
            _remove_if_present(review_path)
            raise AgentError(
                f"Agent timed out after {self._config.timeout_seconds}s on "
                f"{task.kind} #{task.number}"
            ) from exc
        except (CommandError, OSError) as exc:
            log_warning_event(
                LOGGER,
                "agent_invocation_failed",
                kind=task.kind,
                number=task.number,
                reason=type(exc).__name__,
            )
            _remove_if_present(review_path)
            raise AgentError(f"Agent failed on {task.kind} #{task.number}: {exc}") from exc
        finally:
            _remove_if_present(task_path)

        review_text: str | None = None
        if task.collect_review:
            review_text = _read_optional(review_path)
        _remove_if_present(review_path)
        log_event(
            LOGGER,
            "agent_invocation_finished",
            kind=task.kind,
            number=task.number,
            duration_seconds=round(time.monotonic() - started, 1),
            has_review=review_text is not None,
        )
        return AgentRunResult(review_text=review_text)

    def build_command(self, *, cwd: Path, container_name: str) -> list[str]:
        prompt = self._config.prompt.replace("{task_file}", self._config.task_file)
        return [
            "docker",
            "run",
            "--rm",
            "--name",
            container_name,
            "-v",
            f"{cwd.resolve()}:{self._config.workspace_mount}",
            "-w",
            self._config.workspace_mount,
            *self._config.docker_args,
            self._config.image,
            *self._config.command,
            prompt,
        ]

    def _force_remove_container(self, container_name: str) -> None:
        # The docker client dying does not stop the container it started.
        try:
            run(["docker", "rm", "-f", container_name], check=False)
        except OSError as exc:
            log_event(
                LOGGER,
                "agent_container_cleanup_failed",
                container_name=container_name,
                error_type=type(exc).__name__,
            )


def container_name_for(task: AgentTask) -> str:
    kind = "pr" if task.kind == "pull_request" else "issue"
    return f"labelwatch-{kind}-{task.number}"


def _read_optional(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        log_event(LOGGER, "agent_review_missing", path=str(path))
        return None


def _remove_if_present(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
