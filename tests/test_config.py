from __future__ import annotations

from pathlib import Path

import pytest

from labelwatch import config
from labelwatch.config import AppConfig, ConfigError, StartupError, require_github_token


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def run_from_tmp_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    # The default checkout is the working directory, which must not contain the state dir.
    monkeypatch.chdir(tmp_path)


def test_load_config_full_file(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path / "labelwatch.toml",
        """
[runtime]
state_dir = "~/tmp/labelwatch"
poll_interval_seconds = 60

[repo]
trigger_label = "bot"
default_branch = "trunk"
remote = "upstream"
checkout_path = "/srv/checkout"
owner = "octo"
name = "widgets"

[agent]
image = "ghcr.io/example/agent:latest"
command = ["claude", "--print"]
prompt = "Do {task_file}"
task_file = "TASK.txt"
review_file = "REVIEW.txt"
workspace_mount = "/src"
timeout_seconds = 900
docker_args = ["--network", "host"]
""".strip(),
    )

    loaded = config.load_config(cfg_path)

    assert isinstance(loaded, AppConfig)
    assert loaded.runtime.state_dir.as_posix().endswith("/tmp/labelwatch")
    assert "~" not in loaded.runtime.state_dir.as_posix()
    assert loaded.runtime.poll_interval_seconds == 60
    assert loaded.repo.trigger_label == "bot"
    assert loaded.repo.default_branch == "trunk"
    assert loaded.repo.remote == "upstream"
    assert loaded.repo.checkout_path == Path("/srv/checkout")
    assert loaded.repo.explicit_coordinates == ("octo", "widgets")
    assert loaded.agent.image == "ghcr.io/example/agent:latest"
    assert loaded.agent.command == ("claude", "--print")
    assert loaded.agent.prompt == "Do {task_file}"
    assert loaded.agent.task_file == "TASK.txt"
    assert loaded.agent.review_file == "REVIEW.txt"
    assert loaded.agent.workspace_mount == "/src"
    assert loaded.agent.timeout_seconds == 900
    assert loaded.agent.docker_args == ("--network", "host")


def test_load_config_empty_file_uses_reference_defaults(tmp_path: Path) -> None:
    loaded = config.load_config(_write(tmp_path / "labelwatch.toml", ""))

    assert loaded.runtime.poll_interval_seconds == 300
    assert loaded.runtime.state_dir == config.default_state_dir()
    assert loaded.repo.trigger_label == "claude"
    assert loaded.repo.default_branch == "main"
    assert loaded.repo.remote == "origin"
    assert loaded.repo.explicit_coordinates is None
    assert loaded.agent.task_file == "Task.md"
    assert loaded.agent.review_file == "Review.md"
    assert loaded.agent.command == ("claude",)


def test_missing_file_is_defaults_only_when_optional(tmp_path: Path) -> None:
    missing = tmp_path / "nope.toml"

    loaded = config.load_config(missing, must_exist=False)
    assert loaded.repo.trigger_label == "claude"

    with pytest.raises(ConfigError, match="Config file not found"):
        config.load_config(missing)


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("[runtime]\npoll_interval_seconds = 1\n", "poll_interval_seconds must be >= 5"),
        ("[runtime]\npoll_interval_seconds = true\n", "poll_interval_seconds must be an integer"),
        ('[repo]\nowner = "octo"\n', "must be set together"),
        ('[repo]\ntrigger_label = ""\n', "trigger_label must be a non-empty string"),
        ("[agent]\ntimeout_seconds = 0\n", "timeout_seconds must be >= 1"),
        ("[agent]\ncommand = []\n", "at least one entry"),
        ("[agent]\ncommand = [1]\n", "command must be a list of strings"),
        ('[agent]\ndocker_args = "x"\n', "docker_args must be a list of strings"),
        ('[agent]\nreview_file = "Task.md"\n', "must differ"),
        ('runtime = "x"\n', r"\[runtime\] must be a TOML table"),
    ],
)
def test_load_config_rejects_invalid_values(tmp_path: Path, content: str, message: str) -> None:
    cfg_path = _write(tmp_path / "labelwatch.toml", content)

    with pytest.raises(ConfigError, match=message):
        config.load_config(cfg_path)


def test_require_github_token() -> None:
    assert require_github_token({"GITHUB_TOKEN": " abc "}) == "abc"

    with pytest.raises(StartupError, match="GITHUB_TOKEN"):
        require_github_token({})
    with pytest.raises(StartupError, match="GITHUB_TOKEN"):
        require_github_token({"GITHUB_TOKEN": "   "})


@pytest.mark.parametrize("state_dir", ["checkout", "checkout/.labelwatch", "checkout/a/../b"])
def test_state_dir_inside_checkout_is_rejected(tmp_path: Path, state_dir: str) -> None:
    (tmp_path / "checkout").mkdir()
    cfg_path = _write(
        tmp_path / "labelwatch.toml",
        f'[runtime]\nstate_dir = "{tmp_path / state_dir}"\n\n'
        f'[repo]\ncheckout_path = "{tmp_path / "checkout"}"\n',
    )

    with pytest.raises(ConfigError, match="must be outside repo.checkout_path"):
        config.load_config(cfg_path)


def test_state_dir_next_to_checkout_is_accepted(tmp_path: Path) -> None:
    cfg_path = _write(
        tmp_path / "labelwatch.toml",
        f'[runtime]\nstate_dir = "{tmp_path / "checkout-state"}"\n\n'
        f'[repo]\ncheckout_path = "{tmp_path / "checkout"}"\n',
    )

    loaded = config.load_config(cfg_path)

    assert loaded.runtime.state_dir == tmp_path / "checkout-state"


def test_default_state_dir_inside_working_directory_is_rejected(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(config, "default_state_dir", lambda: tmp_path / ".labelwatch")

    with pytest.raises(ConfigError, match="must be outside"):
        config.load_config(tmp_path / "absent.toml", must_exist=False)


def test_invalid_toml_is_a_config_error(tmp_path: Path) -> None:
    cfg_path = _write(tmp_path / "labelwatch.toml", "[runtime\n")

    with pytest.raises(ConfigError, match="Invalid TOML"):
        config.load_config(cfg_path)
