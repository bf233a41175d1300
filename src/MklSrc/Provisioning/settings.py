# === NAVMAP v1 ===
# {
#   "module": "MklSrc.Provisioning.settings",
#   "purpose": "Define configuration models, environment overrides, and YAML loading for MKL provisioning",
#   "sections": [
#     {"id": "models", "name": "Configuration Models", "anchor": "MOD", "kind": "api"},
#     {"id": "env", "name": "Environment Overrides", "anchor": "ENV", "kind": "api"},
#     {"id": "loading", "name": "Settings Loading", "anchor": "LOA", "kind": "api"}
#   ]
# }
# === /NAVMAP ===

"""Configuration models and loaders for the MKL provisioning pipeline.

Settings are layered: built-in defaults, then an optional YAML file, then
``MKLFETCH_*`` environment variables, then explicit keyword overrides supplied
by the command line. The build tool's ``OUT_DIR`` variable is honoured as the
output directory when nothing more specific is configured.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .platforms import LinkVariant, Platform

__all__ = [
    "HttpSettings",
    "ExtractionSettings",
    "LoggingSettings",
    "ProvisioningSettings",
    "EnvironmentOverrides",
    "get_env_overrides",
    "load_raw_yaml",
    "load_settings",
]

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


class HttpSettings(BaseModel):
    """HTTP client settings for archive downloads."""

    model_config = ConfigDict(frozen=True)

    connect_timeout_sec: float = Field(default=30.0, gt=0.0, le=600.0)
    read_timeout_sec: Optional[float] = Field(
        default=None,
        gt=0.0,
        description="Read timeout in seconds; None blocks until the transfer completes",
    )
    verify_tls: bool = Field(default=True, description="Verify TLS against the certifi bundle")
    trust_env: bool = Field(default=True, description="Honor HTTP(S)_PROXY and NO_PROXY")
    user_agent: str = Field(default="mklfetch/0.1")
    chunk_size: int = Field(default=1 << 20, ge=1024)
    progress_log_bytes_threshold: int = Field(
        default=64 << 20,
        ge=0,
        description="Emit a progress record every N bytes; 0 disables progress logging",
    )


class ExtractionSettings(BaseModel):
    """Guards applied while unpacking archives."""

    model_config = ConfigDict(frozen=True)

    max_compression_ratio: Optional[float] = Field(
        default=100.0,
        gt=1.0,
        description="Maximum uncompressed/compressed size ratio; None disables the check",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_dir: Optional[Path] = Field(default=None, description="Directory for JSON log files")
    max_log_size_mb: int = Field(default=20, gt=0)
    retention_days: int = Field(default=14, ge=1)

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, value: str) -> str:
        upper = str(value).upper()
        if upper not in _VALID_LEVELS:
            raise ValueError(f"level must be one of {sorted(_VALID_LEVELS)}, got '{value}'")
        return upper

    def level_int(self) -> int:
        return getattr(logging, self.level)


class ProvisioningSettings(BaseModel):
    """Top-level settings for one provisioning run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    out_dir: Optional[Path] = Field(default=None, description="Writable output directory")
    platform: Platform = Field(default_factory=Platform.detect)
    variant: LinkVariant = LinkVariant.STATIC
    artifacts_file: Optional[Path] = Field(
        default=None, description="YAML artifact table overriding built-in profiles"
    )
    http: HttpSettings = Field(default_factory=HttpSettings)
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @field_validator("platform", mode="before")
    @classmethod
    def parse_platform(cls, value: Any) -> Platform:
        return Platform.parse(value)

    @field_validator("variant", mode="before")
    @classmethod
    def parse_variant(cls, value: Any) -> LinkVariant:
        return LinkVariant.parse(value)

    def require_out_dir(self) -> Path:
        """Return the output directory or raise when none was configured."""

        if self.out_dir is None:
            raise ConfigurationError(
                "No output directory configured; pass --out-dir or set MKLFETCH_OUT_DIR/OUT_DIR"
            )
        return self.out_dir

    def config_hash(self) -> str:
        """Deterministic fingerprint of the effective settings."""

        payload = self.model_dump(mode="json")
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


class EnvironmentOverrides(BaseSettings):
    """Pydantic settings model exposing ``MKLFETCH_*`` environment overrides."""

    out_dir: Optional[Path] = Field(default=None, alias="MKLFETCH_OUT_DIR")
    platform: Optional[str] = Field(default=None, alias="MKLFETCH_PLATFORM")
    variant: Optional[str] = Field(default=None, alias="MKLFETCH_VARIANT")
    artifacts_file: Optional[Path] = Field(default=None, alias="MKLFETCH_ARTIFACTS_FILE")
    log_level: Optional[str] = Field(default=None, alias="MKLFETCH_LOG_LEVEL")
    log_dir: Optional[Path] = Field(default=None, alias="MKLFETCH_LOG_DIR")
    connect_timeout_sec: Optional[float] = Field(default=None, alias="MKLFETCH_CONNECT_TIMEOUT_SEC")
    read_timeout_sec: Optional[float] = Field(default=None, alias="MKLFETCH_READ_TIMEOUT_SEC")
    build_out_dir: Optional[Path] = Field(default=None, alias="OUT_DIR")

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")


def get_env_overrides() -> Dict[str, str]:
    """Return environment-derived overrides as stringified key/value pairs."""

    env = EnvironmentOverrides()
    return {
        key: str(value) for key, value in env.model_dump(by_alias=False, exclude_none=True).items()
    }


def load_raw_yaml(config_path: Path) -> Mapping[str, object]:
    """Read a YAML settings document, returning an empty mapping for empty files."""

    try:
        with Path(config_path).open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Unable to read configuration {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration {config_path} is not valid YAML: {exc}") from exc
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Configuration {config_path} must be a mapping at the top level")
    return raw


def _merge_section(target: Dict[str, Any], section: str, values: Mapping[str, Any]) -> None:
    if not values:
        return
    current = dict(target.get(section) or {})
    current.update(values)
    target[section] = current


def _apply_env_overrides(data: Dict[str, Any]) -> None:
    """Mutate ``data`` in-place using :class:`EnvironmentOverrides`."""

    env = EnvironmentOverrides()
    logger = logging.getLogger("MklSrc.Provisioning")

    out_dir = env.out_dir or (None if data.get("out_dir") else env.build_out_dir)
    for key, value in (
        ("out_dir", out_dir),
        ("platform", env.platform),
        ("variant", env.variant),
        ("artifacts_file", env.artifacts_file),
    ):
        if value is not None:
            data[key] = value
            logger.debug("applied environment override", extra={"stage": "config", "key": key})

    _merge_section(
        data,
        "logging",
        {
            key: value
            for key, value in (("level", env.log_level), ("log_dir", env.log_dir))
            if value is not None
        },
    )
    _merge_section(
        data,
        "http",
        {
            key: value
            for key, value in (
                ("connect_timeout_sec", env.connect_timeout_sec),
                ("read_timeout_sec", env.read_timeout_sec),
            )
            if value is not None
        },
    )


def load_settings(
    config_path: Optional[Path] = None,
    **overrides: Any,
) -> ProvisioningSettings:
    """Build :class:`ProvisioningSettings` from YAML, the environment, and ``overrides``.

    ``overrides`` whose value is ``None`` are ignored so command-line options
    that were not supplied do not mask lower layers. Nested sections may be
    passed as mappings (for example ``logging={"level": "DEBUG"}``).
    """

    data: Dict[str, Any] = dict(load_raw_yaml(config_path)) if config_path else {}
    _apply_env_overrides(data)
    for key, value in overrides.items():
        if value is None:
            continue
        if isinstance(value, Mapping):
            _merge_section(data, key, value)
        else:
            data[key] = value
    try:
        return ProvisioningSettings.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid provisioning settings: {exc}") from exc
