"""Global configuration management for astrocache."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any, Dict
from urllib.parse import urlparse

from .text import Messages

DEFAULT_CONFIG_DIR = Path(os.path.expanduser("~")) / ".astrocache"
CONFIG_DIR = DEFAULT_CONFIG_DIR
CONFIG_FILE = CONFIG_DIR / "config.json"
_CONFIG_DIR_OVERRIDE: ContextVar[Path | None] = ContextVar(
    "astrocache_config_dir_override",
    default=None,
)
DEFAULT_API_URL = "https://images-api.nasa.gov/search"
DEFAULT_TIMEOUT = 30.0
DEFAULT_RECENT_LIMIT = 10
ENV_API_URL = "ASTROCACHE_API_URL"


class RecencyPolicy(str, Enum):
    """How a repeated search of a known term affects recent-search ordering."""

    REFRESH_ON_SEARCH = "refresh"
    FIRST_SEARCH = "first"


DEFAULT_RECENCY_POLICY = RecencyPolicy.REFRESH_ON_SEARCH.value
SUPPORTED_RECENCY_POLICIES: tuple[str, ...] = tuple(policy.value for policy in RecencyPolicy)


@dataclass
class Config:
    api_url: str | None = None
    timeout: float = DEFAULT_TIMEOUT
    recent_limit: int = DEFAULT_RECENT_LIMIT
    recency_policy: str = DEFAULT_RECENCY_POLICY
    last_query: str | None = None


def _resolve_config_dir() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    return override if override is not None else CONFIG_DIR


def _resolve_config_file() -> Path:
    override = _CONFIG_DIR_OVERRIDE.get()
    if override is not None:
        return override / "config.json"
    return CONFIG_FILE


@contextmanager
def config_dir_context(path: Path | str | None):
    """Temporarily override the config directory for the current context."""

    if path is None:
        yield
        return
    dir_path = Path(path).expanduser().resolve()
    if dir_path.exists() and not dir_path.is_dir():
        raise NotADirectoryError(f"Path is not a directory: {dir_path}")
    token = _CONFIG_DIR_OVERRIDE.set(dir_path)
    try:
        yield
    finally:
        _CONFIG_DIR_OVERRIDE.reset(token)


def load_config() -> Config:
    config_file = _resolve_config_file()
    if not config_file.exists():
        return Config()
    raw = json.loads(config_file.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()
    return Config(
        api_url=normalize_api_url(raw.get("api_url")),
        timeout=_coerce_timeout_lenient(raw.get("timeout")),
        recent_limit=_coerce_limit_lenient(raw.get("recent_limit")),
        recency_policy=_coerce_recency_policy(raw.get("recency_policy")),
        last_query=(raw.get("last_query") or "").strip() or None,
    )


def save_config(config: Config) -> None:
    config_dir = _resolve_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    data: Dict[str, Any] = {}
    if config.api_url:
        data["api_url"] = config.api_url
    data["timeout"] = config.timeout
    data["recent_limit"] = config.recent_limit
    data["recency_policy"] = config.recency_policy
    if config.last_query:
        data["last_query"] = config.last_query
    config_file = _resolve_config_file()
    config_file.write_text(
        json.dumps(data, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def set_config_dir(path: Path | str | None) -> None:
    global CONFIG_DIR, CONFIG_FILE
    if path is None:
        CONFIG_DIR = DEFAULT_CONFIG_DIR
    else:
        dir_path = Path(path).expanduser().resolve()
        if dir_path.exists() and not dir_path.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {dir_path}")
        CONFIG_DIR = dir_path
    CONFIG_FILE = CONFIG_DIR / "config.json"


def config_from_json(
    payload: str | Mapping[str, object], *, base: Config | None = None
) -> Config:
    """Return a Config from a JSON string or mapping without saving it."""
    data = _coerce_config_payload(payload)
    config = Config() if base is None else _clone_config(base)
    _apply_config_payload(config, data)
    return config


def set_api_url(value: str | None) -> None:
    config = load_config()
    config.api_url = normalize_api_url(value)
    save_config(config)


def set_timeout(value: float) -> None:
    config = load_config()
    config.timeout = float(value)
    save_config(config)


def set_recent_limit(value: int) -> None:
    config = load_config()
    config.recent_limit = int(value)
    save_config(config)


def set_recency_policy(value: str) -> None:
    config = load_config()
    config.recency_policy = _normalize_recency_policy(value)
    save_config(config)


def set_last_query(value: str | None) -> None:
    config = load_config()
    config.last_query = (value or "").strip() or None
    save_config(config)


def normalize_api_url(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    if not cleaned:
        return None
    parsed = urlparse(cleaned)
    if not parsed.scheme or not parsed.netloc:
        return None
    return cleaned


def resolve_api_url(configured: str | None) -> str:
    """Return the first available endpoint from config, environment, or default."""

    if configured:
        return configured
    env_url = normalize_api_url(os.getenv(ENV_API_URL))
    if env_url:
        return env_url
    return DEFAULT_API_URL


def resolve_recency_policy(value: str | None) -> RecencyPolicy:
    return RecencyPolicy(_coerce_recency_policy(value))


def _coerce_config_payload(payload: str | Mapping[str, object]) -> Mapping[str, object]:
    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID) from exc
    elif isinstance(payload, Mapping):
        data = dict(payload)
    else:
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    if not isinstance(data, Mapping):
        raise ValueError(Messages.ERROR_CONFIG_JSON_INVALID)
    return data


def _clone_config(config: Config) -> Config:
    return Config(
        api_url=config.api_url,
        timeout=config.timeout,
        recent_limit=config.recent_limit,
        recency_policy=config.recency_policy,
        last_query=config.last_query,
    )


def _apply_config_payload(config: Config, payload: Mapping[str, object]) -> None:
    if "api_url" in payload:
        raw_url = payload["api_url"]
        if raw_url is not None and not isinstance(raw_url, str):
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="api_url"))
        config.api_url = normalize_api_url(raw_url)
        if raw_url and config.api_url is None:
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="api_url"))
    if "timeout" in payload:
        config.timeout = _coerce_timeout(payload["timeout"])
    if "recent_limit" in payload:
        config.recent_limit = _coerce_limit(payload["recent_limit"])
    if "recency_policy" in payload:
        config.recency_policy = _normalize_recency_policy(payload["recency_policy"])
    if "last_query" in payload:
        value = payload["last_query"]
        if value is not None and not isinstance(value, str):
            raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="last_query"))
        config.last_query = (value or "").strip() or None


def _coerce_timeout(value: object) -> float:
    if value is None:
        return DEFAULT_TIMEOUT
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="timeout"))
    try:
        timeout = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="timeout")) from exc
    if timeout <= 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="timeout"))
    return timeout


def _coerce_limit(value: object) -> int:
    if value is None:
        return DEFAULT_RECENT_LIMIT
    if isinstance(value, bool):
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="recent_limit"))
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return DEFAULT_RECENT_LIMIT
        try:
            value = int(cleaned)
        except ValueError as exc:
            raise ValueError(
                Messages.ERROR_CONFIG_VALUE_INVALID.format(field="recent_limit")
            ) from exc
    if not isinstance(value, int) or value <= 0:
        raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="recent_limit"))
    return value


def _coerce_timeout_lenient(value: object) -> float:
    try:
        return _coerce_timeout(value)
    except ValueError:
        return DEFAULT_TIMEOUT


def _coerce_limit_lenient(value: object) -> int:
    try:
        return _coerce_limit(value)
    except ValueError:
        return DEFAULT_RECENT_LIMIT


def _normalize_recency_policy(value: object) -> str:
    if value is None:
        return DEFAULT_RECENCY_POLICY
    if isinstance(value, RecencyPolicy):
        return value.value
    if isinstance(value, str):
        normalized = value.strip().lower() or DEFAULT_RECENCY_POLICY
        if normalized in SUPPORTED_RECENCY_POLICIES:
            return normalized
    raise ValueError(Messages.ERROR_CONFIG_VALUE_INVALID.format(field="recency_policy"))


def _coerce_recency_policy(value: object) -> str:
    try:
        return _normalize_recency_policy(value)
    except ValueError:
        return DEFAULT_RECENCY_POLICY
