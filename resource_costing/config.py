"""
Configuration loader for the Resource Costing Engine.

Loads defaults from costing_config.yaml and provides typed access to all
configuration sections. Runs never read this module directly: it only
builds the immutable RunConfiguration a run is given.
"""
from pathlib import Path
from typing import Any, Optional
from functools import lru_cache

import yaml

from .domain.entities.run_configuration import RunConfiguration
from .domain.exceptions import ConfigurationError


# Default config ships inside the package
DEFAULT_CONFIG_PATH = Path(__file__).parent / "costing_config.yaml"


class CostingConfig:
    """
    Configuration manager for the Resource Costing Engine.

    Loads YAML configuration and provides typed access to all sections.
    Use get_config() to obtain the singleton instance.
    """

    def __init__(self, config_path: Optional[Path] = None):
        self._config_path = config_path or DEFAULT_CONFIG_PATH
        self._config: dict = {}
        self._load()

    def _load(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            raise ConfigurationError(f"Config file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r') as f:
                self._config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self._config, dict):
            raise ConfigurationError("Config file must contain a YAML mapping")

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load()
        get_config.cache_clear()

    @property
    def version(self) -> str:
        """Configuration file version."""
        return self._config.get("version", "unknown")

    # =========================================================================
    # Run Defaults
    # =========================================================================

    @property
    def run_defaults(self) -> dict:
        """Default capacity basis, method, idle policy and tolerance."""
        return self._config.get("run", {})

    # =========================================================================
    # Solver
    # =========================================================================

    @property
    def solver(self) -> dict:
        """Reciprocal solver settings."""
        return self._config.get("solver", {})

    @property
    def max_workers(self) -> int:
        """Threads used for independent cyclic components."""
        return self.solver.get("max_workers", 1)

    # =========================================================================
    # Rounding
    # =========================================================================

    @property
    def rounding(self) -> dict:
        """Output rounding configuration."""
        return self._config.get("rounding", {"places": 2, "mode": "HALF_UP"})

    # =========================================================================
    # Logging
    # =========================================================================

    @property
    def logging_config(self) -> dict:
        """Logging level and format used by the CLI."""
        return self._config.get("logging", {})

    @property
    def log_level(self) -> str:
        return str(self.logging_config.get("level", "INFO")).upper()

    @property
    def log_format(self) -> str:
        return self.logging_config.get(
            "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    # =========================================================================
    # Run Configuration
    # =========================================================================

    def run_settings(self) -> dict:
        """Flattened run settings from the run, solver and rounding sections."""
        settings = {}
        settings.update(self.run_defaults)
        settings.update(self.solver)
        rounding = self.rounding
        if "places" in rounding:
            settings["rounding_places"] = rounding["places"]
        if "mode" in rounding:
            settings["rounding_mode"] = rounding["mode"]
        return settings

    def run_configuration(self, **overrides: Any) -> RunConfiguration:
        """
        Build an immutable RunConfiguration from the defaults.

        Args:
            **overrides: RunConfiguration fields replacing the defaults;
                None values are ignored

        Raises:
            ConfigurationError: on unknown keys or invalid values
        """
        settings = self.run_settings()
        settings.update({k: v for k, v in overrides.items() if v is not None})
        return RunConfiguration.from_dict(settings)


@lru_cache(maxsize=1)
def get_config(config_path: Optional[str] = None) -> CostingConfig:
    """
    Get the singleton configuration instance.

    Args:
        config_path: Optional path to config file. Only used on first call.

    Returns:
        CostingConfig singleton instance
    """
    path = Path(config_path) if config_path else None
    return CostingConfig(path)


def reload_config() -> CostingConfig:
    """Reload configuration from disk and return new instance."""
    get_config.cache_clear()
    return get_config()
