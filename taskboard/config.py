# Task board configuration
# Override via taskboard.yaml, environment variables, or CLI args.

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

CONFIG_PATH = Path("taskboard.yaml")

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

ENV_OVERRIDES = {
    "TASKBOARD_DB": "db_path",
    "TASKBOARD_BACKEND": "backend",
    "TASKBOARD_API_URL": "api_url",
    "TASKBOARD_API_KEY": "api_key",
    "TASKBOARD_API_SECRET": "api_secret",
}


@dataclass
class Config:
    """Runtime configuration for the board service."""

    # Persistence
    backend: str = "sqlite"          # sqlite | rest
    db_path: str = "~/.local/share/taskboard/taskboard.db"
    api_url: str = ""                # rest backend base URL
    api_key: str = ""                # rest backend anon key

    # Service
    api_secret: str = ""             # X-API-Key for mutating routes; empty = open
    request_timeout: float = 10.0    # seconds per gateway call
    resync_on_success: bool = True   # full fetch after a lane change
    notice_limit: int = 50
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in file paths."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        environ = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if environ.get(var):
                setattr(self, attr, environ[var])

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """Load config from YAML file, falling back to defaults, then apply env overrides."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            with open(cfg_path, "r") as f:
                data = yaml.safe_load(f) or {}
            cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        if cfg.backend not in ("sqlite", "rest"):
            raise ValueError(f"Unknown backend: {cfg.backend}")
        return cfg


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
