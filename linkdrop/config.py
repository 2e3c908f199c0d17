"""Configuration loading for linkdrop."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional
from xml.etree import ElementTree as ET

from .tokens import MIN_TOKEN_LENGTH

logger = logging.getLogger(__name__)

ENV_ADDRESS = "LINKDROP_ADDRESS"
ENV_PORT = "LINKDROP_PORT"
ENV_PRIVATE_TOKEN = "LINKDROP_PRIVATE_TOKEN"
ENV_FEED_TOKEN = "LINKDROP_FEED_TOKEN"
ENV_LOG = "LINKDROP_LOG"
ENV_LOG_FILE = "LINKDROP_LOG_FILE"
ENV_SHUTDOWN_GRACE = "LINKDROP_SHUTDOWN_GRACE"

DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 8001
DEFAULT_SHUTDOWN_GRACE = 10.0


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    feed_path: Path
    private_token: str
    feed_token: str
    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE

    def masked(self) -> Dict[str, object]:
        """Return the configuration with secrets hidden, for logging."""
        return {
            "feed_path": str(self.feed_path),
            "private_token": "***MASKED***",
            "feed_token": "***MASKED***",
            "address": self.address,
            "port": self.port,
            "shutdown_grace": self.shutdown_grace,
        }


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars: Dict[str, str] = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
    except (OSError, ET.ParseError) as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise ValueError(f"Unable to read environment file {path}: {exc}") from exc

    for var in tree.getroot().findall("variable"):
        name = var.attrib.get("name")
        value = var.text
        if name and value:
            env_vars[name] = value.strip()

    return env_vars


def read_logging_config(environ: Mapping[str, str]) -> LoggingConfig:
    return LoggingConfig(
        level=environ.get(ENV_LOG) or "INFO",
        file=environ.get(ENV_LOG_FILE) or None,
    )


def read_token(environ: Mapping[str, str], name: str) -> str:
    """Read a required token, rejecting ones that are too short to be secret."""
    token = environ.get(name)
    if token is None:
        raise ValueError(f"{name} environment variable is not set")
    if len(token) < MIN_TOKEN_LENGTH:
        raise ValueError(
            f"{name} is too short; it must be at least {MIN_TOKEN_LENGTH} characters"
        )
    return token


def _read_port(environ: Mapping[str, str]) -> int:
    raw = environ.get(ENV_PORT)
    if not raw:
        return DEFAULT_PORT
    try:
        port = int(raw)
    except ValueError:
        port = -1
    if not 0 < port < 65536:
        logger.warning("Ignoring invalid %s=%r; using %d", ENV_PORT, raw, DEFAULT_PORT)
        return DEFAULT_PORT
    return port


def _read_grace(environ: Mapping[str, str]) -> float:
    raw = environ.get(ENV_SHUTDOWN_GRACE)
    if not raw:
        return DEFAULT_SHUTDOWN_GRACE
    try:
        grace = float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_SHUTDOWN_GRACE} must be a number of seconds") from exc
    if grace < 0:
        raise ValueError(f"{ENV_SHUTDOWN_GRACE} must not be negative")
    return grace


def load_config(
    feed_path: str, environ: Optional[Mapping[str, str]] = None
) -> AppConfig:
    """Build the server configuration from the environment."""
    if environ is None:
        environ = os.environ

    private_token = read_token(environ, ENV_PRIVATE_TOKEN)
    feed_token = read_token(environ, ENV_FEED_TOKEN)

    return AppConfig(
        feed_path=Path(feed_path),
        private_token=private_token,
        feed_token=feed_token,
        address=environ.get(ENV_ADDRESS) or DEFAULT_ADDRESS,
        port=_read_port(environ),
        shutdown_grace=_read_grace(environ),
    )
