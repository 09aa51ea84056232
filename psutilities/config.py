"""
Configuration and logging setup.

Settings come from environment variables (or a ``.env`` file loaded with
python-dotenv):

    AZURE_DEVOPS_ORGANIZATION
    AZURE_DEVOPS_PROJECT
    AZURE_DEVOPS_PAT
    GITHUB_TOKEN
    PSUTILITIES_LOG_LEVEL     (default: WARNING)
    PSUTILITIES_HTTP_TIMEOUT  (default: 30 seconds)

Explicit arguments passed to a client always take precedence.
"""

from __future__ import annotations

import logging
import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseModel):
    """Resolved configuration for PSUtilities clients."""

    organization: str = ""
    project: str = ""
    pat: str = ""
    github_token: str = ""
    log_level: str = "WARNING"
    http_timeout: float = 30.0


def load_settings(dotenv: bool = True) -> Settings:
    """
    Read settings from the process environment.

    Args:
        dotenv: Load a ``.env`` file first (existing variables are not
            overridden).
    """
    if dotenv:
        load_dotenv()

    timeout_raw = os.getenv("PSUTILITIES_HTTP_TIMEOUT", "")
    try:
        timeout = float(timeout_raw) if timeout_raw else 30.0
    except ValueError:
        logger.warning("Ignoring invalid PSUTILITIES_HTTP_TIMEOUT %r; using 30 seconds", timeout_raw)
        timeout = 30.0

    return Settings(
        organization=os.getenv("AZURE_DEVOPS_ORGANIZATION", ""),
        project=os.getenv("AZURE_DEVOPS_PROJECT", ""),
        pat=os.getenv("AZURE_DEVOPS_PAT", ""),
        github_token=os.getenv("GITHUB_TOKEN", ""),
        log_level=os.getenv("PSUTILITIES_LOG_LEVEL", "WARNING").upper(),
        http_timeout=timeout,
    )


def configure_logging(level: str | int = "WARNING") -> None:
    """Send log records to stderr and set the ``psutilities`` logger level.

    Unknown level names fall back to WARNING.
    """
    if isinstance(level, str):
        name = level.upper()
        level = getattr(logging, name) if name in _VALID_LEVELS else logging.WARNING
    logging.basicConfig(
        level=logging.WARNING,
        format=_LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    logging.getLogger("psutilities").setLevel(level)
