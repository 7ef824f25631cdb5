from __future__ import annotations

import argparse
from dataclasses import dataclass
import json
import logging
import os
from pathlib import Path

from labelwatch.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    ConfigError,
    StartupError,
    load_config,
    require_github_token,
)
from labelwatch.docker_agent import DockerAgentAdapter
from labelwatch.git_ops import GitRepoManager, RepoCoordinates
from labelwatch.github_gateway import GitHubGateway
from labelwatch.observability import configure_logging, log_event
from labelwatch.orchestrator import WatchOrchestrator
from labelwatch.process_lock import ProcessLockError, watcher_process_lock
from labelwatch.scheduler import PollScheduler
from labelwatch.state import ProcessedStore, StateFileError


LOGGER = logging.getLogger("labelwatch.cli")


@dataclass(frozen=True)
class WatcherRuntime:
    coordinates: RepoCoordinates
    github: GitHubGateway
    git_manager: GitRepoManager
    state: ProcessedStore
    actor_login: str


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="labelwatch")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Poll for labeled issues and pull requests and hand them to the agent"
    )
    run_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    run_parser.add_argument("--once", action="store_true", help="Run a single poll cycle and exit")
    run_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log every event instead of milestones only",
    )

    status_parser = subparsers.add_parser(
        "status", help="Show issue and pull request numbers already handled"
    )
    status_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    status_parser.add_argument("--json", action="store_true", help="Print as JSON")
    status_parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    verbose = bool(getattr(args, "verbose", False))
    config_path: Path = getattr(args, "config", DEFAULT_CONFIG_PATH)
    try:
        config = load_config(config_path, must_exist=config_path != DEFAULT_CONFIG_PATH)
        if args.command == "run":
            configure_logging("high" if verbose else "low", state_dir=config.runtime.state_dir)
            _cmd_run(config, once=bool(args.once))
            return
        if args.command == "status":
            configure_logging(verbose)
            _cmd_status(config, as_json=bool(args.json))
            return
    except (ConfigError, StartupError, ProcessLockError, StateFileError) as exc:
        raise SystemExit(f"labelwatch: {exc}") from exc

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(config: AppConfig, *, once: bool) -> None:
    token = require_github_token(os.environ)
    runtime = bootstrap(config, token=token)
    with watcher_process_lock(state_dir=runtime.state.state_dir, command="run"):
        orchestrator = WatchOrchestrator(
            config,
            state=runtime.state,
            github=runtime.github,
            git_manager=runtime.git_manager,
            agent=DockerAgentAdapter(config.agent),
            actor_login=runtime.actor_login,
        )
        log_event(
            LOGGER,
            "watcher_started",
            repo_full_name=runtime.coordinates.full_name,
            label=config.repo.trigger_label,
            actor=runtime.actor_login,
            once=once,
        )
        if once:
            orchestrator.poll_once()
            return

        scheduler = PollScheduler(
            orchestrator.poll_once,
            interval_seconds=config.runtime.poll_interval_seconds,
        )
        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            log_event(LOGGER, "watcher_interrupted")


def _cmd_status(config: AppConfig, *, as_json: bool) -> None:
    git_manager = GitRepoManager(config.repo)
    coordinates = resolve_coordinates(git_manager)
    state = ProcessedStore(repo_state_dir(config, coordinates))
    issues = state.list_processed("issue")
    pull_requests = state.list_processed("pull_request")

    if as_json:
        payload = {
            "repo_full_name": coordinates.full_name,
            "state_dir": str(state.state_dir),
            "issues": list(issues),
            "pull_requests": list(pull_requests),
        }
        print(json.dumps(payload, indent=2))
        return

    print(f"Repo: {coordinates.full_name}")
    print(f"State: {state.state_dir}")
    print(f"Processed issues: {_format_numbers(issues)}")
    print(f"Processed pull requests: {_format_numbers(pull_requests)}")


def bootstrap(config: AppConfig, *, token: str) -> WatcherRuntime:
    git_manager = GitRepoManager(config.repo)
    coordinates = resolve_coordinates(git_manager)
    try:
        git_manager.ensure_tracked_files_clean()
    except (RuntimeError, OSError) as exc:
        raise StartupError(str(exc)) from exc
    github = GitHubGateway(coordinates.owner, coordinates.name, token=token)
    try:
        actor_login = github.get_authenticated_login()
    except (RuntimeError, OSError) as exc:
        raise StartupError(f"Could not determine the authenticated GitHub user: {exc}") from exc
    return WatcherRuntime(
        coordinates=coordinates,
        github=github,
        git_manager=git_manager,
        state=ProcessedStore(repo_state_dir(config, coordinates)),
        actor_login=actor_login,
    )


def resolve_coordinates(git_manager: GitRepoManager) -> RepoCoordinates:
    try:
        return git_manager.resolve_coordinates()
    except (RuntimeError, ValueError, OSError) as exc:
        raise StartupError(
            f"Could not resolve repository from git remote {git_manager.repo.remote!r}: "
            f"{_first_line(str(exc))}"
        ) from exc


def repo_state_dir(config: AppConfig, coordinates: RepoCoordinates) -> Path:
    return config.runtime.state_dir / coordinates.owner / coordinates.name


def _format_numbers(numbers: tuple[int, ...]) -> str:
    if not numbers:
        return "<none>"
    return ", ".join(f"#{number}" for number in numbers)


def _first_line(text: str) -> str:
    stripped = text.strip()
    return stripped.splitlines()[0] if stripped else "<no detail>"
