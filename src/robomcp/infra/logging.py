"""Process-wide logging configuration."""

from __future__ import annotations

import logging

_LEVELS: dict[str, int] = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def resolve_level(name: str) -> int:
    return _LEVELS.get(name.strip().upper(), logging.INFO)


def setup_logging(level_name: str = "INFO") -> None:
    """Log to stderr so stdout stays free for the host protocol."""
    level = resolve_level(level_name)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # quiet noisy deps
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
