"""Engine configuration loader for thresholds, limits and responder settings."""

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "NLQ_"


@dataclass
class EngineConfig:
    """Tunable engine parameters.

    Every threshold the engine compares against lives here so deployments
    can adjust them without code changes.
    """

    # Context store
    history_cap: int = 100
    entity_expiry_minutes: float = 30.0
    recent_turn_window: int = 5

    # Intent resolution
    clarification_threshold: float = 0.5

    # Routing and coordination
    fallback_threshold: float = 0.5
    coordination_threshold: float = 0.7
    additional_min_confidence: float = 0.5
    max_additional_responders: int = 2
    responder_timeout_seconds: float = 2.0
    request_timeout_seconds: float | None = None
    default_responder_id: str = "query-interface-agent"
    default_responder_name: str = "Query-Interface-Agent"
    function_dimensions: list[str] = field(default_factory=lambda: ["0D", "1D", "2D", "3D"])
    responder_endpoints: dict[str, str] = field(default_factory=dict)

    # Synthesis
    max_follow_up_suggestions: int = 5
    related_entity_window: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineConfig":
        """Build config from a mapping, ignoring unknown keys.

        Args:
            data: Raw configuration values

        Returns:
            EngineConfig instance
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning(f"Ignoring unknown engine settings: {sorted(unknown)}")
        return cls(**{key: value for key, value in data.items() if key in known})


class ConfigLoader:
    """Loads engine configuration from config/engine.yaml and the environment."""

    def __init__(self, config_dir: str | None = None, env_file: str | None = None):
        """Initialize configuration loader.

        Args:
            config_dir: Directory containing config files (default: ./config)
            env_file: Path to .env file (default: ./.env)
        """
        self.config_dir = Path(config_dir or "config")
        self.env_file = Path(env_file or ".env")

        if self.env_file.exists():
            load_dotenv(self.env_file)
            logger.info(f"Loaded environment from {self.env_file}")
        else:
            logger.debug(f"Environment file not found: {self.env_file}")

        self.engine = self._load_engine()

    def _load_engine(self) -> EngineConfig:
        """Load engine settings from engine.yaml, then apply NLQ_* overrides."""
        engine_file = self.config_dir / "engine.yaml"
        data: dict[str, Any] = {}

        if engine_file.exists():
            with open(engine_file) as f:
                data = (yaml.safe_load(f) or {}).get("engine", {})
            logger.info(f"Loaded engine configuration from {engine_file}")
        else:
            logger.warning(f"Engine config not found: {engine_file}, using defaults")

        data.update(self._load_env_overrides())
        return EngineConfig.from_dict(data)

    def _load_env_overrides(self) -> dict[str, Any]:
        """Read NLQ_<SETTING> environment variables.

        Values are parsed as YAML scalars so numbers, booleans and lists
        come through typed (e.g. NLQ_FUNCTION_DIMENSIONS="[0D, 1D]").
        """
        overrides = {}
        for config_field in fields(EngineConfig):
            raw = os.getenv(f"{ENV_PREFIX}{config_field.name.upper()}")
            if raw is None:
                continue
            try:
                overrides[config_field.name] = yaml.safe_load(raw)
            except yaml.YAMLError:
                logger.warning(f"Could not parse {ENV_PREFIX}{config_field.name.upper()}={raw!r}")
        return overrides
