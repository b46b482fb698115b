# src/unilogin_backend/app/core/logging.py
from __future__ import annotations
import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR":    logging.ERROR,
    "WARNING":  logging.WARNING,
    "INFO":     logging.INFO,
    "DEBUG":    logging.DEBUG,
}

# chatty client libraries; their request lines would leak codes in query strings
_QUIET = ("httpx", "httpcore")


def _level_from_env(var: str, default: str = "INFO") -> int:
    val = (os.getenv(var, default) or "").strip().upper()
    return _LEVELS.get(val, _LEVELS[default])


def setup_logging() -> None:
    """
    Configure root logging once. Idempotent.
    LOG_LEVEL controls our verbosity (default INFO),
    HTTP_LOG_LEVEL the provider HTTP client (default WARNING).
    """
    level = _level_from_env("LOG_LEVEL", "INFO")
    for name in _QUIET:
        logging.getLogger(name).setLevel(_level_from_env("HTTP_LOG_LEVEL", "WARNING"))

    root = logging.getLogger()
    if root.handlers:
        # already configured (pytest, uvicorn, etc.)
        root.setLevel(level)
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    root.setLevel(level)
    root.addHandler(handler)


def mask(value: str | None, keep: int = 8) -> str:
    """Shorten a secret-bearing value (code, token) for log lines."""
    if not value:
        return "<none>"
    if len(value) <= keep:
        return "*" * len(value)
    return value[:keep] + "..."
