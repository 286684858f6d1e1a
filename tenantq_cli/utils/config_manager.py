"""CLI settings stored in ~/.tenantq/config.yaml, with env overrides"""

import copy
import os
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG: dict[str, Any] = {
    "api": {
        "base_url": "http://localhost:8000",
        "timeout": 30,
        "tenant_id": None,
    },
    "display": {
        "show_reasons": True,
        "max_reasons": 10,
    },
}

# Environment wins over the file, so CI can point the CLI elsewhere
ENV_OVERRIDES = {
    "TENANTQ_API_URL": "api.base_url",
    "TENANTQ_TENANT_ID": "api.tenant_id",
}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _coerce(key: str, value: Any, default: Any) -> Any:
    """Convert a command-line string to the type of the default value"""
    if not isinstance(value, str) or default is None or isinstance(default, str):
        return value
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered not in ("true", "false", "yes", "no", "1", "0"):
            raise ValueError(f"{key} expects true or false, got: {value}")
        return lowered in ("true", "yes", "1")
    if isinstance(default, int):
        if not value.isdigit():
            raise ValueError(f"{key} expects a whole number, got: {value}")
        return int(value)
    return value


class ConfigManager:
    """Read and write CLI configuration"""

    def __init__(self, config_dir: Path | None = None):
        self.config_dir = config_dir or Path.home() / ".tenantq"
        self.config_file = self.config_dir / "config.yaml"

    def _read_file(self) -> dict[str, Any]:
        if not self.config_file.exists():
            return {}
        with open(self.config_file) as f:
            return yaml.safe_load(f) or {}

    def load_config(self) -> dict[str, Any]:
        """Defaults, then the file, then environment overrides"""
        config = _merge(copy.deepcopy(DEFAULT_CONFIG), self._read_file())
        for env_var, key in ENV_OVERRIDES.items():
            if os.getenv(env_var):
                self._assign(config, key, os.environ[env_var])
        return config

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value using dot notation (e.g., 'api.base_url')"""
        current: Any = self.load_config()
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def set(self, key: str, value: Any) -> Any:
        """Validate, coerce and persist a value; returns what was stored"""
        section, _, name = key.partition(".")
        if section not in DEFAULT_CONFIG or name not in DEFAULT_CONFIG[section]:
            known = [f"{s}.{n}" for s, values in DEFAULT_CONFIG.items() for n in values]
            raise KeyError(f"Unknown configuration key: {key} (known: {', '.join(known)})")

        value = _coerce(key, value, DEFAULT_CONFIG[section][name])
        if key == "api.base_url" and not str(value).startswith(("http://", "https://")):
            raise ValueError("API base URL must start with http:// or https://")

        stored = self._read_file()
        self._assign(stored, key, value)
        self._write(stored)
        return value

    def reset(self) -> None:
        self._write(copy.deepcopy(DEFAULT_CONFIG))

    def reasons_limit(self) -> int:
        """How many skip/fail reasons job output shows; 0 hides them"""
        if not self.get("display.show_reasons", True):
            return 0
        return max(int(self.get("display.max_reasons", 10)), 0)

    def dump(self) -> str:
        return yaml.dump(self.load_config(), default_flow_style=False)

    def _write(self, config: dict[str, Any]) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w") as f:
            yaml.dump(config, f, default_flow_style=False)

    @staticmethod
    def _assign(config: dict[str, Any], key: str, value: Any) -> None:
        *parents, name = key.split(".")
        current = config
        for part in parents:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]
        current[name] = value


# Global config manager instance
config = ConfigManager()
