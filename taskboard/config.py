# Taskboard client configuration
# Override endpoints and paths via taskboard.yaml or environment variables.

import os
import logging
import yaml
from pathlib import Path
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "config" / "taskboard.yaml"

ENV_OVERRIDES = {
    "TASKBOARD_API_BASE_URL": "api_base_url",
    "TASKBOARD_STATE_DB": "state_db",
    "TASKBOARD_LOG_LEVEL": "log_level",
}


@dataclass
class Config:
    """Runtime configuration for the sync engine."""

    # Backend
    api_base_url: str = "http://localhost:3000"
    request_timeout: float = 10.0

    # Persisted UI state (active board)
    state_db: str = "~/.local/share/taskboard/state.db"

    log_level: str = "INFO"

    def resolve(self):
        """Apply environment overrides, expand ~ and validate."""
        for env, attr in ENV_OVERRIDES.items():
            value = os.environ.get(env)
            if value:
                setattr(self, attr, value)

        if not self.api_base_url:
            raise ConfigError(
                "api_base_url is not set.\n"
                "Set it in taskboard.yaml or: export TASKBOARD_API_BASE_URL=http://host:port"
            )
        try:
            self.request_timeout = float(self.request_timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"request_timeout must be a number, got {self.request_timeout!r}")

        self.state_db = str(Path(self.state_db).expanduser())
        self.log_level = str(self.log_level).upper()

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                cfg = cls(**{k: v for k, v in data.items() if hasattr(cls, k)})
            except (OSError, yaml.YAMLError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve()
        return cfg
