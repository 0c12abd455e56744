"""Logging helpers for the telco billing batch runs."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from pathlib import Path


RUNS_ROOT = Path("runs/telco-billing")


def run_log_path(command: str, *, root: Path = RUNS_ROOT) -> str:
    """One log file per CLI invocation, stamped in UTC."""
    stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    slug = str(command or "cli").strip().replace("-", "_") or "cli"
    return str(root / "logs" / f"{slug}_{stamp}.log")


def configure_logging(level: int = logging.INFO, log_paths: list[str] | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] | None = None
    if log_paths:
        handlers = [logging.StreamHandler()]
        for entry in log_paths:
            path = Path(entry)
            path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
    kwargs: dict[str, object] = {
        "level": level,
        "format": "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "datefmt": "%Y-%m-%d %H:%M:%S",
    }
    if handlers:
        kwargs["handlers"] = handlers
    logging.basicConfig(**kwargs)  # type: ignore[arg-type]
