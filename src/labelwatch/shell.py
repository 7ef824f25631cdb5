from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
import logging
import subprocess


class CommandError(RuntimeError):
    pass


class CommandTimeoutError(CommandError):
    """Raised when a command outlives its timeout and is killed."""


LOGGER = logging.getLogger("labelwatch.shell")


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def run(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    check: bool = True,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> str:
    try:
        proc = subprocess.run(
            argv,
            cwd=str(cwd) if cwd else None,
            input=input_text,
            text=True,
            capture_output=True,
            check=False,
            env=dict(env) if env is not None else None,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as exc:
        LOGGER.error(
            "event=command_timed_out command=%s timeout_seconds=%s",
            argv[0] if argv else "<empty>",
            timeout,
        )
        raise CommandTimeoutError(
            f"Command timed out after {timeout} seconds\ncmd: {' '.join(argv)}"
        ) from exc
    if check and proc.returncode != 0:
        LOGGER.error(
            "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
            " ".join(argv),
            proc.returncode,
            _preview(proc.stderr),
            _preview(proc.stdout),
        )
        raise CommandError(
            "Command failed\n"
            f"cmd: {' '.join(argv)}\n"
            f"exit: {proc.returncode}\n"
            f"stdout:\n{proc.stdout}\n"
            f"stderr:\n{proc.stderr}"
        )
    return proc.stdout
