"""Configuration controller for YAML-based settings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class ConfigPaths:
    """Filesystem paths for configuration files."""

    config_dir: Path
    config_file: Path
    override_file: Path


class ConfigController:
    """Singleton controller for loading configuration."""

    _instance: "ConfigController | None" = None

    def __init__(self, config_file: str = "default.yaml", config_dir: Path | None = None) -> None:
        if ConfigController._instance is not None:
            raise RuntimeError("You cannot create another ConfigController class")

        config_dir = Path(config_dir) if config_dir is not None else Path("config")
        self.paths = ConfigPaths(
            config_dir=config_dir,
            config_file=config_dir / config_file,
            override_file=config_dir / "override.yaml",
        )
        self.config: dict[str, Any] = {}
        self.load_config()

    @classmethod
    def get_instance(cls) -> "ConfigController":
        """Return the singleton instance of the controller."""

        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def load_config(self) -> None:
        """Load configuration from default and override YAML files."""

        with self.paths.config_file.open("r", encoding="utf-8") as file:
            config = yaml.safe_load(file) or {}

        if self.paths.override_file.exists():
            with self.paths.override_file.open("r", encoding="utf-8") as file:
                override_config = yaml.safe_load(file) or {}
            if override_config:
                config = self._deep_merge(config, override_config)

        self.config = self._normalize_config(config)

    def get_config(self) -> dict[str, Any]:
        """Return the currently loaded configuration."""

        return dict(self.config)

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge dictionaries, overriding base values with override values."""

        merged = dict(base)
        for key, value in override.items():
            if (
                key in merged
                and isinstance(merged[key], dict)
                and isinstance(value, dict)
            ):
                merged[key] = self._deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged

    def _normalize_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Fill typed defaults for the cascade, downstream and annotation sections."""

        normalized = dict(config)
        normalized["logging_level"] = str(normalized.get("logging_level", "INFO"))
        normalized["file_logging_enabled"] = bool(normalized.get("file_logging_enabled", False))
        normalized["log_file"] = str(normalized.get("log_file", "./var/log/anomaly_cascade.log"))

        cascade_cfg = dict(normalized.get("cascade") or {})
        budget_cfg = dict(cascade_cfg.get("budget") or {})
        cascade_cfg["enabled"] = bool(cascade_cfg.get("enabled", False))
        prompt = cascade_cfg.get("prompt")
        cascade_cfg["prompt"] = str(prompt) if prompt is not None else None
        cascade_cfg["poll_interval_s"] = float(cascade_cfg.get("poll_interval_s", 0.5))
        cascade_cfg["settle_delay_s"] = float(cascade_cfg.get("settle_delay_s", 0.5))
        cascade_cfg["request_timeout_s"] = float(cascade_cfg.get("request_timeout_s", 30.0))
        budget_cfg["max_requests"] = int(budget_cfg.get("max_requests", 0))
        budget_cfg["window_s"] = float(budget_cfg.get("window_s", 60.0))
        cascade_cfg["budget"] = budget_cfg
        normalized["cascade"] = cascade_cfg

        downstream_cfg = dict(normalized.get("downstream") or {})
        downstream_cfg["model"] = str(downstream_cfg.get("model", "gpt-4o-2024-05-13"))
        downstream_cfg["detail"] = str(downstream_cfg.get("detail", "auto"))
        downstream_cfg["max_tokens"] = int(downstream_cfg.get("max_tokens", 300))
        downstream_cfg["timeout_s"] = float(downstream_cfg.get("timeout_s", 30.0))
        downstream_cfg["endpoint"] = str(
            downstream_cfg.get("endpoint", "https://api.openai.com/v1/chat/completions")
        )
        normalized["downstream"] = downstream_cfg

        annotation_cfg = dict(normalized.get("annotation") or {})
        stroke = annotation_cfg.get("stroke_rgba") or [255, 0, 0, 128]
        annotation_cfg["stroke_rgba"] = [int(channel) for channel in stroke][:4]
        annotation_cfg["save_images"] = bool(annotation_cfg.get("save_images", False))
        annotation_cfg["save_dir"] = str(annotation_cfg.get("save_dir", "./var/anomalies"))
        normalized["annotation"] = annotation_cfg
        return normalized
