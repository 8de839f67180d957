"""Tracer configuration: pydantic models, TOML files and environment variables.

Priority: explicit overrides > environment variables > config file > defaults.
"""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

from strand.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "strand.toml"

SamplerType = Literal["const", "probabilistic", "rateLimiting", "remote"]
TagValue = Union[str, int, float, bool]


class _ConfigModel(BaseModel):
    # Accept both sampler_type and samplerType style keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class SamplerConfig(_ConfigModel):
    type: SamplerType = "probabilistic"
    param: float = 0.001
    sampling_server_url: str = "http://localhost:5778/sampling"
    refresh_interval_ms: int = Field(default=60000, gt=0)
    max_operations: int = Field(default=2000, gt=0)

    @model_validator(mode="after")
    def _check_param(self) -> "SamplerConfig":
        if self.type == "const" and self.param not in (0, 1):
            raise ValueError("const sampler param must be 0 or 1")
        if self.type in ("probabilistic", "remote") and not 0.0 <= self.param <= 1.0:
            raise ValueError(f"{self.type} sampler param must be between 0.0 and 1.0")
        if self.type == "rateLimiting" and self.param < 0:
            raise ValueError("rateLimiting sampler param must be >= 0")
        return self


class ReporterConfig(_ConfigModel):
    flush_interval_ms: int = Field(default=1000, gt=0)
    max_queue_size: int = Field(default=1000, gt=0)
    max_batch_bytes: int = Field(default=65000, ge=512, le=65507)
    max_batch_spans: int = Field(default=100, gt=0)
    close_timeout_ms: int = Field(default=5000, ge=0)
    drop_policy: Literal["newest", "oldest"] = "newest"
    transport: Literal["udp", "otlp", "console"] = "udp"
    otlp_endpoint: Optional[str] = None


class StrandConfig(_ConfigModel):
    service_name: str
    sampler: SamplerConfig = Field(default_factory=SamplerConfig)
    reporter: ReporterConfig = Field(default_factory=ReporterConfig)
    agent_host: str = "localhost"
    agent_port: int = Field(default=6831, gt=0, lt=65536)
    log_spans: bool = False
    tags: Dict[str, TagValue] = Field(default_factory=dict)
    propagation: Literal["strand", "w3c"] = "strand"

    @field_validator("service_name")
    @classmethod
    def _service_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("service_name must not be empty")
        return value.strip()


# Environment variable -> (section, key); section None means top level
ENV_VARS: Dict[str, Tuple[Optional[str], str]] = {
    "STRAND_SERVICE_NAME": (None, "service_name"),
    "STRAND_SAMPLER_TYPE": ("sampler", "type"),
    "STRAND_SAMPLER_PARAM": ("sampler", "param"),
    "STRAND_SAMPLING_SERVER_URL": ("sampler", "sampling_server_url"),
    "STRAND_AGENT_HOST": (None, "agent_host"),
    "STRAND_AGENT_PORT": (None, "agent_port"),
    "STRAND_REPORTER_FLUSH_INTERVAL_MS": ("reporter", "flush_interval_ms"),
    "STRAND_REPORTER_MAX_QUEUE_SIZE": ("reporter", "max_queue_size"),
    "STRAND_REPORTER_MAX_BATCH_BYTES": ("reporter", "max_batch_bytes"),
    "STRAND_REPORTER_TRANSPORT": ("reporter", "transport"),
    "STRAND_LOG_SPANS": (None, "log_spans"),
    "STRAND_TAGS": (None, "tags"),
    "STRAND_PROPAGATION": (None, "propagation"),
}


def load_toml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a TOML config file.

    Returns an empty dict if the file does not exist.

    Raises:
        ConfigError: the file is not valid TOML
    """
    config_path = Path(path)
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}", details={"reason": str(exc)}) from exc


def find_config_file() -> Optional[str]:
    """Look for strand.toml in the current directory, then the home directory."""
    for directory in (Path.cwd(), Path.home()):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return str(candidate)
    return None


def load_env_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect config values from STRAND_* environment variables."""
    environ = os.environ if environ is None else environ
    result: Dict[str, Any] = {}
    for name, (section, key) in ENV_VARS.items():
        raw = environ.get(name)
        if raw is None or raw == "":
            continue
        value: Any = _parse_tags(raw) if key == "tags" else raw
        if section is None:
            result[key] = value
        else:
            result.setdefault(section, {})[key] = value
    return result


def load_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> StrandConfig:
    """
    Build the effective configuration.

    Raises:
        ConfigError: the merged configuration is invalid
    """
    path = config_file or find_config_file()
    merged: Dict[str, Any] = {}
    if path:
        merged = _normalize_keys(load_toml_config(path))
        logger.debug(f"Loaded configuration file {path}")
    merged = _deep_merge(merged, _normalize_keys(load_env_config()))
    merged = _deep_merge(merged, _normalize_keys(dict(overrides or {})))
    try:
        return StrandConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError("Invalid tracer configuration", details={"errors": _format_errors(exc)}) from exc


def merge_config(config: StrandConfig, overrides: Mapping[str, Any]) -> StrandConfig:
    """Return a validated copy of ``config`` with ``overrides`` applied."""
    merged = _deep_merge(config.model_dump(), _normalize_keys(dict(overrides)))
    try:
        return StrandConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError("Invalid tracer configuration", details={"errors": _format_errors(exc)}) from exc


def validate_config(
    config_file: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Tuple[bool, str, Optional[StrandConfig]]:
    """Return (is_valid, message, config or None) instead of raising."""
    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        return False, str(exc), None
    return True, "Configuration is valid", config


def _parse_tags(raw: str) -> Dict[str, str]:
    tags: Dict[str, str] = {}
    for item in raw.split(","):
        if "=" not in item:
            continue
        key, value = item.split("=", 1)
        if key.strip():
            tags[key.strip()] = value.strip()
    return tags


_FIELD_ALIASES = {
    to_camel(name): name
    for model in (StrandConfig, SamplerConfig, ReporterConfig)
    for name in model.model_fields
}


def _normalize_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Rewrite camelCase keys and dotted keys ("sampler.type") to the nested
    snake_case layout so sources merge key by key.
    """
    result: Dict[str, Any] = {}
    for raw_key, value in data.items():
        parts = [_FIELD_ALIASES.get(part, part) for part in str(raw_key).split(".")]
        if parts[-1] != "tags" and isinstance(value, Mapping):
            value = _normalize_keys(value)
        target = result
        for part in parts[:-1]:
            target = target.setdefault(part, {})
        key = parts[-1]
        if isinstance(target.get(key), dict) and isinstance(value, dict):
            value = _deep_merge(target[key], value)
        target[key] = value
    return result


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(result.get(key), dict) and key != "tags":
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _format_errors(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in error['loc']) or 'config'}: {error['msg']}" for error in exc.errors()
    )
