"""
Client configuration.

Settings come from explicit arguments, environment variables, or the
``irmin`` section of a YAML file:

```yaml
irmin:
  url: "http://127.0.0.1:8080"
  task_owner: "alice"
  tree: "master"          # Optional, empty means the default branch
  queue_size: 100         # Optional, pending replies buffered per stream
  connect_timeout: 10.0   # Optional, seconds
  log_level: "INFO"       # Optional, JSON log lines for the client loggers
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .exceptions import ConfigurationError

DEFAULT_TASK_OWNER = "irmin-http-client"
DEFAULT_QUEUE_SIZE = 100
DEFAULT_CONNECT_TIMEOUT = 10.0


@dataclass
class ClientConfig:
    """Configuration for an Irmin REST connection."""

    base_url: str
    task_owner: str = DEFAULT_TASK_OWNER
    tree: str = ""
    queue_size: int = DEFAULT_QUEUE_SIZE
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    log_level: str | None = None

    def validate(self) -> ClientConfig:
        """Check the settings, returning self for chaining.

        Raises:
            ConfigurationError: If a setting is out of range
        """
        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError("base_url", f"not an http(s) URL: {self.base_url!r}")
        if self.queue_size < 1:
            raise ConfigurationError("queue_size", "must be at least 1")
        if self.connect_timeout <= 0:
            raise ConfigurationError("connect_timeout", "must be positive")
        if self.log_level is not None and not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigurationError("log_level", f"unknown level {self.log_level!r}")
        return self

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Create config from environment variables."""
        url = os.environ.get("IRMIN_URL")
        if not url:
            raise ConfigurationError("IRMIN_URL", "not set")

        try:
            queue_size = int(os.environ.get("IRMIN_QUEUE_SIZE", DEFAULT_QUEUE_SIZE))
            timeout = float(os.environ.get("IRMIN_CONNECT_TIMEOUT", DEFAULT_CONNECT_TIMEOUT))
        except ValueError as e:
            raise ConfigurationError("environment", str(e)) from e

        return cls(
            base_url=url,
            task_owner=os.environ.get("IRMIN_TASK_OWNER", DEFAULT_TASK_OWNER),
            tree=os.environ.get("IRMIN_TREE", ""),
            queue_size=queue_size,
            connect_timeout=timeout,
            log_level=os.environ.get("IRMIN_LOG_LEVEL") or None,
        ).validate()

    @classmethod
    def from_file(cls, config_path: Path | str) -> ClientConfig:
        """Create config from the ``irmin`` section of a YAML file."""
        path = Path(config_path)
        try:
            content = path.read_text()
        except OSError as e:
            raise ConfigurationError(str(path), f"cannot read: {e}") from e

        try:
            data: dict[str, Any] = yaml.safe_load(content) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(str(path), f"invalid YAML: {e}") from e

        section = data.get("irmin") or {}
        if not isinstance(section, dict):
            raise ConfigurationError("irmin", "section must be a mapping")
        if not section.get("url"):
            raise ConfigurationError("irmin.url", "not set")

        return cls(
            base_url=str(section["url"]),
            task_owner=str(section.get("task_owner", DEFAULT_TASK_OWNER)),
            tree=str(section.get("tree") or ""),
            queue_size=int(section.get("queue_size", DEFAULT_QUEUE_SIZE)),
            connect_timeout=float(section.get("connect_timeout", DEFAULT_CONNECT_TIMEOUT)),
            log_level=str(section["log_level"]) if section.get("log_level") else None,
        ).validate()
