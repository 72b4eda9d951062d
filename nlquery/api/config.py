"""API server configuration loader."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class APIConfig:
    """Load and manage API server configuration from api.yaml."""

    def __init__(self, config_path: str | None = None):
        """Initialize configuration.

        Args:
            config_path: Path to api.yaml config file (default: $NLQ_API_CONFIG
                or config/api.yaml)
        """
        if config_path is None:
            config_path = os.getenv("NLQ_API_CONFIG", os.path.join("config", "api.yaml"))

        self.config_path = Path(config_path)
        self.config: dict[str, Any] = {}

        self._load_config()

    def _load_config(self):
        """Load configuration from YAML file, falling back to defaults."""
        self._load_defaults()

        if not self.config_path.exists():
            logger.warning(f"Config file not found: {self.config_path}, using defaults")
            return

        try:
            with open(self.config_path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load config: {e}")
            return

        for section, values in loaded.items():
            if isinstance(values, dict) and isinstance(self.config.get(section), dict):
                self.config[section].update(values)
            else:
                self.config[section] = values
        logger.info(f"Loaded API configuration from {self.config_path}")

    def _load_defaults(self):
        """Load default configuration."""
        self.config = {
            "server": {
                "host": "0.0.0.0",
                "port": 3000,
                # Conversation state lives in process memory
                "workers": 1,
                "reload": False,
            },
            "cors": {
                "enabled": True,
                "allow_origins": ["*"],
                "allow_methods": ["GET", "POST", "DELETE", "OPTIONS"],
                "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
            },
            "logging": {
                "level": "INFO",
                "structured": False,
                "file": None,
            },
            "knowledge_base": {
                "path": os.getenv("NLQ_KNOWLEDGE_BASE", os.path.join("data", "knowledge-base.jsonl")),
            },
            "engine": {
                "config_dir": "config",
            },
        }

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key path (e.g., "server.port")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value = self.config

        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default

        return value

    def knowledge_base_path(self) -> Path:
        return Path(self.get("knowledge_base.path", os.path.join("data", "knowledge-base.jsonl")))
