import logging
import shutil
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


class ToolNotFoundError(RuntimeError):
    """A required external tool is not on PATH."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"{tool} not found")
        self.tool = tool


def require_tool(name: str) -> str:
    """Return the resolved path of `name` or raise ToolNotFoundError."""
    path = shutil.which(name)
    if not path:
        raise ToolNotFoundError(name)
    return path


def first_line(text: str) -> str:
    lines = text.splitlines()
    return lines[0] if lines else ""


def trim_lines(text: str, n: int) -> str:
    """Keep only the last `n` lines of `text`."""
    if n <= 0:
        return ""
    return "\n".join(text.splitlines()[-n:])


def configure_logger(
    name: str = "backup_dash",
    log_file: Optional[Path] = None,
    max_bytes: int = 1_000_000,
) -> logging.Logger:
    """Configure the package logger.

    The terminal belongs to the dashboard, so records only ever go to a
    rotating file. Without `log_file` the logger is silenced.
    """
    logger = logging.getLogger(name)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    if log_file is None:
        logger.addHandler(logging.NullHandler())
        return logger

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=1)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return logger
