from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
import tomllib
from typing import cast


DEFAULT_CONFIG_PATH = Path("labelwatch.toml")
GITHUB_TOKEN_ENV = "GITHUB_TOKEN"


@dataclass(frozen=True)
class RuntimeConfig:
    state_dir: Path
    poll_interval_seconds: int = 300


@dataclass(frozen=True)
class RepoConfig:
    trigger_label: str = "claude"
    default_branch: str = "main"
    remote: str = "origin"
    checkout_path: Path = Path(".")
    owner: str | None = None
    name: str | None = None

    @property
    def explicit_coordinates(self) -> tuple[str, str] | None:
        """The configured owner/name pair, when it overrides the git remote."""
        if self.owner is None or self.name is None:
            return None
        return self.owner, self.name


@dataclass(frozen=True)
class AgentConfig:
    image: str = "my-claude-image"
    command: tuple[str, ...] = ("claude",)
    prompt: str = "Read the task in {task_file} and accomplish it"
    task_file: str = "Task.md"
    review_file: str = "Review.md"
    workspace_mount: str = "/workspace"
    timeout_seconds: int = 3600
    docker_args: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repo: RepoConfig = field(default_factory=RepoConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)


class ConfigError(ValueError):
    pass


class StartupError(RuntimeError):
    """Fatal bootstrap failure; the watcher cannot start."""


def default_state_dir() -> Path:
    return Path("~/.local/share/labelwatch").expanduser()


def load_config(path: Path, *, must_exist: bool = True) -> AppConfig:
    if not path.exists():
        if must_exist:
            raise ConfigError(f"Config file not found: {path}")
        return _checked(AppConfig(runtime=RuntimeConfig(state_dir=default_state_dir())))

    with path.open("rb") as fh:
        try:
            data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    runtime_data = _optional_table(data, "runtime") or {}
    repo_data = _optional_table(data, "repo") or {}
    agent_data = _optional_table(data, "agent") or {}

    runtime = RuntimeConfig(
        state_dir=_path_with_default(runtime_data, "state_dir", default_state_dir()),
        poll_interval_seconds=_int_with_default(runtime_data, "poll_interval_seconds", 300),
    )
    if runtime.poll_interval_seconds < 5:
        raise ConfigError("runtime.poll_interval_seconds must be >= 5")

    repo = RepoConfig(
        trigger_label=_str_with_default(repo_data, "trigger_label", "claude"),
        default_branch=_str_with_default(repo_data, "default_branch", "main"),
        remote=_str_with_default(repo_data, "remote", "origin"),
        checkout_path=_path_with_default(repo_data, "checkout_path", Path(".")),
        owner=_optional_str(repo_data, "owner"),
        name=_optional_str(repo_data, "name"),
    )
    if (repo.owner is None) != (repo.name is None):
        raise ConfigError("repo.owner and repo.name must be set together")

    agent = AgentConfig(
        image=_str_with_default(agent_data, "image", "my-claude-image"),
        command=_tuple_of_str_with_default(agent_data, "command", ("claude",)),
        prompt=_str_with_default(
            agent_data, "prompt", "Read the task in {task_file} and accomplish it"
        ),
        task_file=_str_with_default(agent_data, "task_file", "Task.md"),
        review_file=_str_with_default(agent_data, "review_file", "Review.md"),
        workspace_mount=_str_with_default(agent_data, "workspace_mount", "/workspace"),
        timeout_seconds=_int_with_default(agent_data, "timeout_seconds", 3600),
        docker_args=_tuple_of_str_with_default(agent_data, "docker_args", ()),
    )
    if not agent.command:
        raise ConfigError("agent.command must contain at least one entry")
    if agent.timeout_seconds < 1:
        raise ConfigError("agent.timeout_seconds must be >= 1")
    if agent.task_file == agent.review_file:
        raise ConfigError("agent.task_file and agent.review_file must differ")

    return _checked(AppConfig(runtime=runtime, repo=repo, agent=agent))


def _checked(config: AppConfig) -> AppConfig:
    # Anything under the checkout is swept by `git clean` and could be staged into a commit.
    state_dir = config.runtime.state_dir.resolve()
    checkout = config.repo.checkout_path.resolve()
    if state_dir.is_relative_to(checkout):
        raise ConfigError(
            f"runtime.state_dir ({state_dir}) must be outside repo.checkout_path ({checkout})"
        )
    return config


def require_github_token(environ: Mapping[str, str]) -> str:
    token = environ.get(GITHUB_TOKEN_ENV, "").strip()
    if not token:
        raise StartupError(f"{GITHUB_TOKEN_ENV} environment variable is not set")
    return token


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _path_with_default(data: dict[str, object], key: str, default: Path) -> Path:
    value = _optional_str(data, key)
    if value is None:
        return default
    return Path(value).expanduser()


def _tuple_of_str_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    if key not in data:
        return default
    value = data[key]
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        out.append(item)
    return tuple(out)
