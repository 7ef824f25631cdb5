from __future__ import annotations

import json
import logging
import logging.handlers
from pathlib import Path
import sys
from typing import Final


_ROOT_LOGGER: Final[str] = "labelwatch"
_VALUE_LIMIT: Final[int] = 120
_FORMAT: Final[str] = "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s"

# Events shown in "low" mode. Anything at WARNING or above is always shown.
MILESTONE_EVENTS: Final[frozenset[str]] = frozenset(
    {
        "watcher_started",
        "watcher_interrupted",
        "poll_started",
        "poll_completed",
        "poll_aborted",
        "poll_tick_skipped",
        "item_processing_completed",
        "item_processing_failed",
        "agent_invocation_started",
        "agent_invocation_finished",
        "github_pr_created",
        "github_pr_reused",
        "github_review_posted",
        "github_comment_posted",
        "state_item_recorded",
    }
)


def configure_logging(verbose: bool | str | None, *, state_dir: Path | None = None) -> None:
    """Point the ``labelwatch`` logger at stderr, and at a rotating file under ``state_dir``.

    ``verbose`` is ``"high"`` (or ``True``) for every event, ``"low"`` for milestones
    and warnings only, and ``None``/``False`` for silence.
    """
    milestones_only = _milestones_only(verbose)
    logger = logging.getLogger(_ROOT_LOGGER)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if milestones_only is None:
        logger.addHandler(logging.NullHandler())
        logger.setLevel(logging.CRITICAL + 1)
        return

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if state_dir is not None:
        logs_dir = state_dir / "logs"
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.TimedRotatingFileHandler(
                logs_dir / "labelwatch.log", when="midnight", utc=True, encoding="utf-8"
            )
        )
    for handler in handlers:
        handler.setFormatter(logging.Formatter(_FORMAT))
        if milestones_only:
            handler.addFilter(_MilestoneFilter())
        logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def log_event(logger: logging.Logger, event: str, **fields: object) -> None:
    _emit(logger, logging.INFO, event, fields)


def log_warning_event(logger: logging.Logger, event: str, **fields: object) -> None:
    _emit(logger, logging.WARNING, event, fields)


def render_event(event: str, fields: dict[str, object]) -> str:
    """``event=<name>`` followed by ``key=value`` pairs in key order."""
    pairs = [("event", event), *sorted(fields.items())]
    return " ".join(f"{key}={format_value(value)}" for key, value in pairs)


def format_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int | float):
        return str(value)
    text = " ".join(str(value).split())
    if len(text) > _VALUE_LIMIT:
        text = text[:_VALUE_LIMIT] + "..."
    if not text:
        return "<empty>"
    if " " in text or "=" in text:
        return json.dumps(text)
    return text


def _emit(logger: logging.Logger, level: int, event: str, fields: dict[str, object]) -> None:
    if logger.isEnabledFor(level):
        logger.log(level, render_event(event, fields), extra={"event_name": event})


def _milestones_only(verbose: bool | str | None) -> bool | None:
    if verbose is None or verbose is False:
        return None
    if verbose is True:
        return False
    mode = verbose.strip().lower()
    if mode not in {"low", "high"}:
        raise ValueError(f"Unsupported verbose mode: {verbose!r}")
    return mode == "low"


class _MilestoneFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        return getattr(record, "event_name", None) in MILESTONE_EVENTS
