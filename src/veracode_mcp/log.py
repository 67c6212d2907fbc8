"""Logging setup. stdout carries JSON-RPC, so everything goes to stderr."""

from __future__ import annotations

import logging
import os
import sys

ROOT_LOGGER = "veracode_mcp"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the package namespace."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def parse_level(raw: str | None) -> int:
    """LOG_LEVEL value -> logging level. Unknown values mean INFO."""
    return _LEVELS.get((raw or "info").strip().lower(), logging.INFO)


def configure_logging(level: str | None = None) -> logging.Logger:
    """Install a single stderr handler on the package logger.

    Safe to call more than once; the handler is replaced, not duplicated.
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(parse_level(level if level is not None else os.environ.get("LOG_LEVEL")))

    for handler in list(root.handlers):
        if getattr(handler, "_veracode_mcp", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._veracode_mcp = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False
    return root
