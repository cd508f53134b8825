"""Configuration loading utilities for the directory administration console."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
DEFAULT_TEMPLATE_PATH = Path("config/settings.example.yaml")
ENV_CONFIG_PATH = "ENTRA_CONFIG"
ENV_PREFIX = "ENTRA_"

# Public client id used by the Microsoft Graph command-line tools.
DEFAULT_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"
DEFAULT_SCOPES: tuple[str, ...] = (
    "User.ReadWrite.All",
    "Group.ReadWrite.All",
    "Directory.AccessAsUser.All",
    "UserAuthenticationMethod.ReadWrite.All",
)
AUTH_FLOWS = ("interactive", "device_code")


@dataclass
class GraphConfig:
    """Settings for the delegated Microsoft Graph session."""

    tenant_id: str = "organizations"
    client_id: str = DEFAULT_CLIENT_ID
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    auth_flow: str = "interactive"
    default_usage_location: Optional[str] = None
    request_timeout: int = 30

    @property
    def authority(self) -> str:
        return f"https://login.microsoftonline.com/{self.tenant_id}"


@dataclass
class SessionConfig:
    """Bounded reconnect policy used by the interactive shell."""

    max_attempts: int = 3
    retry_delay_seconds: int = 5


@dataclass
class SearchConfig:
    result_limit: int = 10
    listing_limit: int = 20


@dataclass
class LoggingConfig:
    level: str = "INFO"
    error_log_file: Path = field(default_factory=lambda: Path("logs/entra_console_errors.log"))


@dataclass
class PolicyConfig:
    """Account policies applied when new users are created."""

    force_mfa_on_next_sign_in: bool = False


@dataclass
class AppConfig:
    """Aggregate configuration for the console."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigurationError(
            f"Configuration file '{path}' does not exist. "
            "Create it from 'config/settings.example.yaml' or set environment variables."
        )
    with path.open("r", encoding="utf-8") as file:
        payload = yaml.safe_load(file) or {}
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Override configuration values with environment variables."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def ensure_default_config(
    path: Optional[Path] = None, template_path: Optional[Path] = None
) -> Path:
    """Ensure a configuration file exists, copying from the example if needed."""

    target_path = _resolve_config_path(path)
    if target_path.exists():
        return target_path

    template = Path(template_path) if template_path is not None else DEFAULT_TEMPLATE_PATH
    if not template.exists():
        raise ConfigurationError(
            "Default configuration template not found. "
            "Ensure 'config/settings.example.yaml' is present or specify a template."
        )

    target_path.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy(template, target_path)
    return target_path


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path == DEFAULT_CONFIG_PATH:
        ensure_default_config(resolved_path)

    config_dict = _load_from_file(resolved_path)
    return _apply_environment_overrides(config_dict)


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config_dict.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return value


def _normalize_sequence(value: Any) -> Iterable[Any]:
    if isinstance(value, (list, tuple, set)):
        return value
    if isinstance(value, str):
        return value.replace(",", " ").split()
    return [value]


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _to_int(value: Any, name: str) -> int:
    try:
        if isinstance(value, str):
            return int(value.strip())
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Configuration value '{name}' must be an integer.") from exc


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Load application configuration from disk and environment variables."""

    config_dict = _load_config_dict(path)

    graph_section = _section(config_dict, "graph")
    defaults = GraphConfig()
    scopes = tuple(
        filter(
            None,
            [str(entry).strip() for entry in _normalize_sequence(graph_section.get("scopes", DEFAULT_SCOPES))],
        )
    ) or DEFAULT_SCOPES
    auth_flow = (_optional_str(graph_section.get("auth_flow")) or defaults.auth_flow).lower()
    if auth_flow not in AUTH_FLOWS:
        raise ConfigurationError(
            f"Unsupported graph.auth_flow '{auth_flow}'. Expected one of: {', '.join(AUTH_FLOWS)}."
        )
    usage_location = _optional_str(graph_section.get("default_usage_location"))
    if usage_location and len(usage_location) != 2:
        raise ConfigurationError("graph.default_usage_location must be a two-letter country code.")
    graph_config = GraphConfig(
        tenant_id=_optional_str(graph_section.get("tenant_id")) or defaults.tenant_id,
        client_id=_optional_str(graph_section.get("client_id")) or defaults.client_id,
        scopes=scopes,
        auth_flow=auth_flow,
        default_usage_location=usage_location.upper() if usage_location else None,
        request_timeout=_to_int(
            graph_section.get("request_timeout", defaults.request_timeout), "graph.request_timeout"
        ),
    )

    session_section = _section(config_dict, "session")
    session_config = SessionConfig(
        max_attempts=max(
            1,
            _to_int(session_section.get("max_attempts", SessionConfig.max_attempts), "session.max_attempts"),
        ),
        retry_delay_seconds=max(
            0,
            _to_int(
                session_section.get("retry_delay_seconds", SessionConfig.retry_delay_seconds),
                "session.retry_delay_seconds",
            ),
        ),
    )

    search_section = _section(config_dict, "search")
    search_config = SearchConfig(
        result_limit=max(
            1, _to_int(search_section.get("result_limit", SearchConfig.result_limit), "search.result_limit")
        ),
        listing_limit=max(
            1, _to_int(search_section.get("listing_limit", SearchConfig.listing_limit), "search.listing_limit")
        ),
    )

    logging_section = _section(config_dict, "logging")
    default_logging = LoggingConfig()
    error_log_file = _optional_str(logging_section.get("error_log_file"))
    logging_config = LoggingConfig(
        level=(_optional_str(logging_section.get("level")) or default_logging.level).upper(),
        error_log_file=Path(error_log_file) if error_log_file else default_logging.error_log_file,
    )

    policy_section = _section(config_dict, "policy")
    policy_config = PolicyConfig(
        force_mfa_on_next_sign_in=_to_bool(policy_section.get("force_mfa_on_next_sign_in", False)),
    )

    return AppConfig(
        graph=graph_config,
        session=session_config,
        search=search_config,
        logging=logging_config,
        policy=policy_config,
    )


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DEFAULT_SCOPES",
    "ensure_default_config",
    "GraphConfig",
    "LoggingConfig",
    "PolicyConfig",
    "SearchConfig",
    "SessionConfig",
    "load_config",
]
