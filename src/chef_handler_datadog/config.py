from __future__ import annotations

import argparse
import json
import re
import tempfile
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from .util.errors import ConfigError
from .util.serialization import sanitize_for_json

# --------
# Defaults
# --------
DEFAULT_TAG_PREFIX = "tag:"
DEFAULT_RESOURCE_CLASS = "unclassified"
DEFAULT_TIMEOUT = 10.0
ALLOWED_CONFIG_KEYS = {
    "api_key",
    "application_key",
    "url",
    "site",
    "hostname",
    "use_ec2_instance_id",
    "tag_prefix",
    "scope_prefix",
    "tags_blacklist_regex",
    "tags_submission_retries",
    "send_policy_tags",
    "notify_on_failure",
    "extra_endpoints",
    "cache_resource_details",
    "cache_dir",
    "resource_class_map",
    "default_resource_class",
    "timeout",
    "log_level",
    "json_logs",
}
BOOL_CONFIG_KEYS = {"use_ec2_instance_id", "send_policy_tags", "cache_resource_details", "json_logs"}
INT_CONFIG_KEYS = {"tags_submission_retries"}
STR_CONFIG_KEYS = {
    "api_key",
    "application_key",
    "url",
    "site",
    "hostname",
    "tag_prefix",
    "scope_prefix",
    "tags_blacklist_regex",
    "default_resource_class",
    "log_level",
}
EXTRA_ENDPOINT_KEYS = {"url", "api_url", "api_key", "application_key"}


@dataclass(frozen=True)
class HandlerConfig:
    # Credentials / endpoints
    api_key: Optional[str] = None
    application_key: Optional[str] = None
    url: Optional[str] = None
    site: Optional[str] = None
    extra_endpoints: Tuple[Mapping[str, str], ...] = ()

    # Hostname
    hostname: Optional[str] = None
    use_ec2_instance_id: bool = True

    # Tags
    tag_prefix: str = DEFAULT_TAG_PREFIX
    scope_prefix: str = ""
    tags_blacklist_regex: Optional[str] = None
    tags_submission_retries: int = 0
    send_policy_tags: bool = False

    # Events
    notify_on_failure: Tuple[str, ...] = ()

    # Metrics
    cache_resource_details: bool = False
    cache_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    resource_class_map: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    default_resource_class: str = DEFAULT_RESOURCE_CLASS

    # Transport / logging
    timeout: float = DEFAULT_TIMEOUT
    log_level: Optional[str] = None
    json_logs: bool = False


def normalize_key(key: Any) -> str:
    """
    Map 'api_key', ':api_key', 'API-KEY' and similar spellings to one form.
    """
    return str(key).strip().lstrip(":").strip().lower().replace("-", "_")


def _coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Config field '{key}' must be a boolean")


def _coerce_int(key: str, value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        result = value
    elif isinstance(value, str) and value.strip():
        try:
            result = int(value)
        except ValueError:
            raise ConfigError(f"Config field '{key}' must be an integer") from None
    else:
        raise ConfigError(f"Config field '{key}' must be an integer")
    if result < 0:
        raise ConfigError(f"Config field '{key}' must not be negative")
    return result


def _coerce_float(key: str, value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        result = float(value)
    elif isinstance(value, str) and value.strip():
        try:
            result = float(value)
        except ValueError:
            raise ConfigError(f"Config field '{key}' must be a number") from None
    else:
        raise ConfigError(f"Config field '{key}' must be a number")
    if result <= 0:
        raise ConfigError(f"Config field '{key}' must be positive")
    return result


def _coerce_handles(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return tuple(h for h in re.split(r"[\s,]+", value) if h)
    if isinstance(value, (list, tuple)) and all(isinstance(h, str) for h in value):
        return tuple(h.strip() for h in value if h.strip())
    raise ConfigError("Config field 'notify_on_failure' must be a list of strings or a space-separated string")


def _coerce_extra_endpoints(value: Any) -> Tuple[Mapping[str, str], ...]:
    if not isinstance(value, (list, tuple)):
        raise ConfigError("Config field 'extra_endpoints' must be a list of objects")
    endpoints: List[Mapping[str, str]] = []
    for idx, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise ConfigError(f"extra_endpoints[{idx}] must be an object")
        normalized: Dict[str, str] = {}
        for raw_key, raw_value in entry.items():
            key = normalize_key(raw_key)
            if key not in EXTRA_ENDPOINT_KEYS:
                warnings.warn(f"Unknown key ignored in extra_endpoints[{idx}]: {raw_key}")
                continue
            if raw_value is None:
                continue
            normalized[key] = str(raw_value)
        endpoints.append(MappingProxyType(normalized))
    return tuple(endpoints)


def _coerce_class_map(value: Any) -> Mapping[str, str]:
    if not isinstance(value, Mapping):
        raise ConfigError("Config field 'resource_class_map' must be a mapping of cookbook to class")
    return MappingProxyType({str(k): str(v) for k, v in value.items()})


def _normalize_config(data: Mapping[Any, Any]) -> Dict[str, Any]:
    keyed = {normalize_key(k): v for k, v in data.items()}
    unknown = sorted(set(keyed.keys()) - ALLOWED_CONFIG_KEYS)
    if unknown:
        warnings.warn(f"Unknown config keys ignored: {', '.join(unknown)}")
    normalized: Dict[str, Any] = {}
    for key, value in keyed.items():
        if key not in ALLOWED_CONFIG_KEYS or value is None:
            continue
        if key in BOOL_CONFIG_KEYS:
            normalized[key] = _coerce_bool(key, value)
        elif key in INT_CONFIG_KEYS:
            normalized[key] = _coerce_int(key, value)
        elif key == "timeout":
            normalized[key] = _coerce_float(key, value)
        elif key == "notify_on_failure":
            normalized[key] = _coerce_handles(value)
        elif key == "extra_endpoints":
            normalized[key] = _coerce_extra_endpoints(value)
        elif key == "resource_class_map":
            normalized[key] = _coerce_class_map(value)
        elif key == "cache_dir":
            if not isinstance(value, (str, Path)):
                raise ConfigError("Config field 'cache_dir' must be a string path")
            normalized[key] = Path(value)
        elif key in STR_CONFIG_KEYS:
            if not isinstance(value, str):
                raise ConfigError(f"Config field '{key}' must be a string")
            value = value.strip()
            # Empty credentials/urls behave like unset ones; prefixes may be empty.
            if not value and key not in {"scope_prefix", "tag_prefix"}:
                continue
            normalized[key] = value
    regex = normalized.get("tags_blacklist_regex")
    if regex is not None:
        try:
            re.compile(regex)
        except re.error as e:
            raise ConfigError(f"Config field 'tags_blacklist_regex' is not a valid regular expression: {e}") from e
    if "log_level" in normalized:
        normalized["log_level"] = normalized["log_level"].upper()
    return normalized


def load_handler_config(data: Optional[Mapping[Any, Any]] = None) -> HandlerConfig:
    """
    Build a HandlerConfig from a mapping whose keys may be strings or symbol-like.
    """
    if data is None:
        return HandlerConfig()
    if isinstance(data, HandlerConfig):
        return data
    if not isinstance(data, Mapping):
        raise ConfigError("Handler configuration must be a mapping")
    return HandlerConfig(**_normalize_config(data))


def _parse_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    text = path.read_text(encoding="utf-8")
    try:
        if path.suffix.lower() == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be an object")
    return data


def _compact_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys with None values so they don't override lower-precedence config.
    """
    return {k: v for k, v in data.items() if v is not None}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chef-dd-report",
        description="Report a Chef run's metrics, event and tags to Datadog",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", type=Path, help="Optional YAML/JSON handler config file")
        p.add_argument("--api-key", default=None, help="Datadog API key")
        p.add_argument("--application-key", default=None, help="Datadog application key")
        p.add_argument("--url", default=None, help="Datadog base URL (overrides --site)")
        p.add_argument("--site", default=None, help="Datadog site, e.g. datadoghq.eu")
        p.add_argument("--hostname", default=None, help="Hostname override for all submitted data")
        p.add_argument(
            "--json-logs",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Enable JSON logs",
        )
        p.add_argument("--log-level", default=None, help="Log level (INFO, DEBUG, ...)")

    p_report = subparsers.add_parser("report", help="Submit a run status document to Datadog")
    add_common(p_report)
    p_report.add_argument("--run-status", type=Path, required=True, help="JSON run status document")
    p_report.add_argument(
        "--tags-submission-retries",
        type=int,
        default=None,
        help="Retries when the host is not yet known to Datadog (default 0)",
    )
    p_report.add_argument(
        "--cache-resource-details",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Dump per-resource metrics to a local JSON file",
    )

    p_validate = subparsers.add_parser("validate-config", help="Validate credentials and list endpoints")
    add_common(p_validate)
    return parser


def load_cli_config(argv: Optional[List[str]] = None) -> Tuple[str, argparse.Namespace, HandlerConfig]:
    """
    Build HandlerConfig by merging the optional config file with CLI args.
    Precedence (low -> high): defaults < config file < CLI.

    Returns:
      (command, parsed args, HandlerConfig)
    """
    ns = build_parser().parse_args(argv)

    file_cfg: Dict[str, Any] = {}
    if getattr(ns, "config", None):
        file_cfg = _normalize_config(_parse_config_file(Path(ns.config)))

    cli_cfg: Dict[str, Any] = _normalize_config(
        _compact_dict(
            {
                "api_key": ns.api_key,
                "application_key": ns.application_key,
                "url": ns.url,
                "site": ns.site,
                "hostname": ns.hostname,
                "json_logs": ns.json_logs,
                "log_level": ns.log_level,
                "tags_submission_retries": getattr(ns, "tags_submission_retries", None),
                "cache_resource_details": getattr(ns, "cache_resource_details", None),
            }
        )
    )

    merged = dict(file_cfg)
    merged.update(cli_cfg)
    return ns.command, ns, HandlerConfig(**merged)


def dump_config(cfg: HandlerConfig) -> Dict[str, Any]:
    return sanitize_for_json(cfg)
