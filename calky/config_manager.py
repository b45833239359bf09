from __future__ import annotations

import copy
import errno
import os
import threading
from pathlib import Path
from typing import Any, TextIO

import yaml

from calky.models import AppConfig, default_app_config

MASK = "***"

# Environment variables that win over the file, mapped to (section, key).
ENV_OVERRIDES = {
    "CALKY_STORE_BASE_URL": ("store", "base_url"),
    "CALKY_STORE_OWNER": ("store", "owner"),
    "CALKY_STORE_TOKEN": ("store", "token"),
}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _dump(data: dict[str, Any], handle: TextIO) -> None:
    yaml.safe_dump(data, handle, sort_keys=False, allow_unicode=True, default_flow_style=False)


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    def _read_file(self) -> dict[str, Any]:
        with self.config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config root must be a mapping: {self.config_path}")
        return data

    def load(self) -> AppConfig:
        with self._lock:
            data = self._read_file()
        for env_name, (section, key) in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                data.setdefault(section, {})[key] = value
        return AppConfig.from_dict(data)

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            payload = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                _dump(payload, handle)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # A bind-mounted config file cannot be swapped atomically.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    _dump(payload, handle)
                tmp_path.unlink(missing_ok=True)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            merged = _deep_merge(AppConfig.from_dict(self._read_file()).to_dict(), payload)
            config = AppConfig.from_dict(merged)
            self.save(config)
            return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        if config.get("store", {}).get("token"):
            config["store"]["token"] = MASK
        return config
