from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

import yaml

from .models import RepoRef

CONFIG_FILENAME = "issuetree.config.yaml"
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_ISSUES_DIR = "issues"
DEFAULT_SNAPSHOT_DIR = ".issuetree/snapshots"


class ConfigError(RuntimeError):
    pass


@dataclass
class SyncConfig:
    version: int
    source_file: Path | None
    # GitHub
    github_repo: str | None
    github_api_url: str
    github_user: str | None
    # Storage
    issues_dir: Path
    snapshot_dir: Path
    # Logging configuration
    logging_json_enabled: bool
    logging_level: str
    # Concurrency configuration
    concurrency_enabled: bool
    concurrency_max_workers: int
    # Retry configuration
    retry_attempts: int
    retry_base_sleep: float
    # Environment authentication configuration
    env_auth_load_dotenv: bool
    env_auth_dotenv_path: str | None

    @property
    def repo_ref(self) -> RepoRef | None:
        return RepoRef.parse(self.github_repo) if self.github_repo else None


def _resolve_env_var(value: Any, env_var_name: str | None = None) -> Any:
    """Resolve environment variable if value starts with $."""
    if isinstance(value, str) and value.startswith("$"):
        env_name = env_var_name or value[1:]
        return os.getenv(env_name, value)
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"config section '{name}' must be a mapping")
    return cast(dict[str, Any], value)


def _build(raw: dict[str, Any], base_dir: Path, source: Path | None) -> SyncConfig:
    gh = _section(raw, "github")
    storage = _section(raw, "storage")
    logging_config = _section(raw, "logging")
    concurrency_config = _section(raw, "concurrency")
    retry_config = _section(raw, "retry")
    env_auth = _section(raw, "environment")

    repo = _resolve_env_var(gh.get("repo"))
    if repo is not None:
        try:
            RepoRef.parse(str(repo))
        except ValueError as exc:
            raise ConfigError(f"github.repo: {exc}") from exc
    try:
        max_workers = int(concurrency_config.get("max_workers", 4))
        attempts = int(retry_config.get("attempts", 3))
        base_sleep = float(retry_config.get("base_sleep", 0.5))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid numeric setting: {exc}") from exc
    if max_workers < 1:
        raise ConfigError("concurrency.max_workers must be >= 1")
    if attempts < 1:
        raise ConfigError("retry.attempts must be >= 1")

    return SyncConfig(
        version=int(raw.get("version", 1)),
        source_file=source,
        github_repo=str(repo) if repo is not None else None,
        github_api_url=str(_resolve_env_var(gh.get("api_url")) or DEFAULT_API_URL),
        github_user=_resolve_env_var(gh.get("user")),
        issues_dir=base_dir / storage.get("issues_dir", DEFAULT_ISSUES_DIR),
        snapshot_dir=base_dir / storage.get("snapshot_dir", DEFAULT_SNAPSHOT_DIR),
        logging_json_enabled=bool(logging_config.get("json_enabled", False)),
        logging_level=str(logging_config.get("level", "INFO")),
        concurrency_enabled=bool(concurrency_config.get("enabled", True)),
        concurrency_max_workers=max_workers,
        retry_attempts=attempts,
        retry_base_sleep=base_sleep,
        env_auth_load_dotenv=bool(env_auth.get("load_dotenv", True)),
        env_auth_dotenv_path=env_auth.get("dotenv_path"),
    )


def load_config(path: str | Path) -> SyncConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Configuration file not found: {p}")
    try:
        loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {p}: {exc}") from exc
    if not isinstance(loaded, dict):
        raise ConfigError(f"{p} must contain a mapping")
    return _build(cast(dict[str, Any], loaded), p.parent, p)


def default_config(base_dir: str | Path | None = None) -> SyncConfig:
    return _build({}, Path(base_dir) if base_dir is not None else Path.cwd(), None)


def discover_config(start: str | Path | None = None) -> SyncConfig:
    """Load ``issuetree.config.yaml`` from ``start`` (default cwd) or fall back to defaults."""
    base = Path(start) if start is not None else Path.cwd()
    candidate = base / CONFIG_FILENAME
    if candidate.exists():
        return load_config(candidate)
    return default_config(base)


__all__ = ["CONFIG_FILENAME", "ConfigError", "SyncConfig", "default_config", "discover_config", "load_config"]
