#!/usr/bin/env python3
"""Central JSON configuration for actionflow."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic.v1 import BaseModel, Field, validator

_APP_CONFIG_PATH = Path("configs/app.json")
_APP_CONFIG_PATH_OVERRIDE: Path | None = None
_APP_CONFIG_OVERRIDE: dict[str, Any] = {}
_CONFIG_CACHE: AppConfig | None = None
_CONFIG_WARNED = False
_logger = logging.getLogger("core.config")

DEFAULT_BANNED_OUTPUT_LINES = [
    "Preparing Convex functions...",
    "Checking that documents match your schema...",
    "transforming (",
    "computing gzip size",
]


def _coerce_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value if str(item).strip()]
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return []
        return [entry.strip() for entry in raw.split(",") if entry.strip()]
    return []


class RuntimeConfig(BaseModel):
    version: str = Field("0.4.0", example="0.4.0")
    log_level: str = Field("DEBUG", example="INFO")
    log_style: str = Field("", example="dark")
    cache_dir: str = Field(".cache", example=".cache")

    @validator("log_level", pre=True, always=True)
    def _normalize_log_level(cls, value: Any) -> str:
        if not value:
            return "DEBUG"
        return str(value).strip().upper()

    @validator("cache_dir", pre=True, always=True)
    def _normalize_cache_dir(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return ".cache"
        return str(value)


class SandboxConfig(BaseModel):
    workdir: str = Field("/home/project", example="/home/project")
    shell: str = Field("/bin/sh", example="/bin/bash")

    @validator("workdir", pre=True, always=True)
    def _normalize_workdir(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return "/home/project"
        return str(value).rstrip("/") or "/"


class RunnerConfig(BaseModel):
    start_launch_delay: float = Field(2.0, example=2.0)
    build_command: str = Field("npm run build", example="npm run build")
    build_output_dir: str = Field("dist", example="dist")
    history_dir: str = Field(".history", example=".history")
    platform_package: str = Field("convex", example="convex")
    dev_server_command: str = Field("npm run dev", example="npm run dev")
    alert_title: str = Field("Dev Server Failed", example="Dev Server Failed")

    @validator("start_launch_delay", pre=True, always=True)
    def _normalize_start_launch_delay(cls, value: Any) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return 2.0
        return max(parsed, 0.0)

    @validator("build_command", "dev_server_command", pre=True, always=True)
    def _normalize_command(cls, value: Any, field) -> str:
        if value is None or not str(value).strip():
            return str(field.default)
        return " ".join(str(value).split())


class ToolsConfig(BaseModel):
    deploy_command: str = Field("npx convex dev --once", example="npx convex dev --once")
    lint_command: str = Field("npm run lint", example="npm run lint")
    banned_output_lines: list[str] = Field(
        default_factory=lambda: list(DEFAULT_BANNED_OUTPUT_LINES)
    )

    @validator("banned_output_lines", pre=True, always=True)
    def _normalize_banned_output_lines(cls, value: Any) -> list[str]:
        if value is None:
            return list(DEFAULT_BANNED_OUTPUT_LINES)
        return _coerce_list(value)


def _runtime_config_default() -> RuntimeConfig:
    return RuntimeConfig.parse_obj({})


def _sandbox_config_default() -> SandboxConfig:
    return SandboxConfig.parse_obj({})


def _runner_config_default() -> RunnerConfig:
    return RunnerConfig.parse_obj({})


def _tools_config_default() -> ToolsConfig:
    return ToolsConfig.parse_obj({})


class AppConfig(BaseModel):
    """Typed configuration for the actionflow runtime."""

    runtime: RuntimeConfig = Field(default_factory=_runtime_config_default)
    sandbox: SandboxConfig = Field(default_factory=_sandbox_config_default)
    runner: RunnerConfig = Field(default_factory=_runner_config_default)
    tools: ToolsConfig = Field(default_factory=_tools_config_default)

    class Config:
        """Pydantic configuration settings."""

        extra = "ignore"

    @classmethod
    def load(cls, path: str | Path) -> AppConfig:
        """Load configuration from a JSON file."""
        payload = _load_json(path)
        return cls.parse_obj(payload)

    def to_json(self, *, indent: int = 2) -> str:
        """Serialize config to JSON."""
        return self.json(indent=indent, exclude_none=True)

    def write(self, path: str | Path, *, indent: int = 2) -> None:
        """Write config JSON to disk."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_json(indent=indent) + "\n", encoding="utf-8")


def _load_json(path: str | Path) -> dict[str, Any]:
    target = Path(path)
    if not target.exists():
        return {}
    with target.open(encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError("Config payload must be a JSON object.")
    return payload


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(dict(base.get(key, {})), value)
        else:
            base[key] = value
    return base


def set_app_config_path(path: str | Path) -> None:
    """Override the app config path (tests only)."""
    global _APP_CONFIG_PATH_OVERRIDE, _CONFIG_CACHE
    _APP_CONFIG_PATH_OVERRIDE = Path(path)
    _CONFIG_CACHE = None


def reset_config() -> None:
    """Clear cached configuration and overrides."""
    global _CONFIG_CACHE, _APP_CONFIG_OVERRIDE, _APP_CONFIG_PATH_OVERRIDE, _CONFIG_WARNED
    _CONFIG_CACHE = None
    _APP_CONFIG_OVERRIDE = {}
    _APP_CONFIG_PATH_OVERRIDE = None
    _CONFIG_WARNED = False


def set_config_override(payload: dict[str, Any], *, replace: bool = False) -> None:
    """Override config values in-memory (tests/CLI)."""
    global _APP_CONFIG_OVERRIDE, _CONFIG_CACHE
    if replace:
        _APP_CONFIG_OVERRIDE = payload
    else:
        _APP_CONFIG_OVERRIDE = _deep_merge(_APP_CONFIG_OVERRIDE, payload)
    _CONFIG_CACHE = None


def get_app_config_path() -> str:
    """Return the configured app JSON path."""
    return str(_APP_CONFIG_PATH_OVERRIDE or _APP_CONFIG_PATH)


def get_config() -> AppConfig:
    """Return cached AppConfig instance."""
    global _CONFIG_CACHE, _CONFIG_WARNED
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE
    config_path = Path(get_app_config_path())
    if not config_path.exists() and not _CONFIG_WARNED:
        _logger.warning("Config file not found at %s. Using defaults.", config_path)
        _CONFIG_WARNED = True
    base_payload = AppConfig().dict()
    file_payload = _load_json(config_path)
    merged = _deep_merge(base_payload, file_payload)
    if _APP_CONFIG_OVERRIDE:
        merged = _deep_merge(merged, _APP_CONFIG_OVERRIDE)
    _CONFIG_CACHE = AppConfig.parse_obj(merged)
    return _CONFIG_CACHE


def get_config_value(*keys: str, default: Any | None = None) -> Any:
    """Return a nested config value or default."""
    current: Any = get_config()
    for key in keys:
        if isinstance(current, BaseModel):
            current = getattr(current, key, None)
        elif isinstance(current, dict):
            current = current.get(key)
        else:
            return default
        if current is None:
            return default
    return current


__all__ = [
    "AppConfig",
    "RunnerConfig",
    "RuntimeConfig",
    "SandboxConfig",
    "ToolsConfig",
    "get_app_config_path",
    "get_config",
    "get_config_value",
    "reset_config",
    "set_app_config_path",
    "set_config_override",
]
