"""Environment configuration record and its read-only accessors.

A project carries exactly one :class:`ConfigurationRecord`: the shared
application-level tags plus one :class:`EnvironmentConfig` per deployment
target.  The record is authored once as YAML, validated with pydantic, and
never mutated afterwards.  Callers only ever go through
:func:`get_environment_config` and :func:`get_environment_tags`.

Example document::

    application_tags:
      owner: team-a
    environments:
      Production:
        region: us-east-1
        account: "123456789012"
        alert_email: oncall@example.com
        tags:
          Environment: production
"""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from realign.errors import ConfigError


DEFAULT_ENVIRONMENTS_FILE = Path("config") / "environments.yaml"
ENVIRONMENTS_FILE_ENV = "REALIGN_ENVIRONMENTS_FILE"

_ACCOUNT_RE = re.compile(r"^\d{12}$")


class EnvironmentName(str, Enum):
    """The fixed set of deployment targets a record may describe."""

    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"
    DEVELOPMENT_DR = "DevelopmentDR"
    STAGING_DR = "StagingDR"
    PRODUCTION_DR = "ProductionDR"

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class EnvironmentConfig(BaseModel):
    """Immutable settings for one deployment environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    region: str = Field(..., min_length=1, description="Cloud region identifier")
    account: str = Field(..., description="12-digit cloud account identifier")
    tags: Mapping[str, str] = Field(default_factory=dict)
    alert_email: Optional[str] = Field(default=None, description="Alert contact address")

    @field_validator("account", mode="before")
    @classmethod
    def _account_digits(cls, value: Any) -> str:
        value = str(value).strip()
        if not _ACCOUNT_RE.match(value):
            raise ValueError(f"account must be 12 digits, got {value!r}")
        return value

    @field_validator("tags", mode="after")
    @classmethod
    def _freeze_tags(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType({str(k): str(v) for k, v in value.items()})


class ConfigurationRecord(BaseModel):
    """Shared application tags plus every known environment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    application_tags: Mapping[str, str] = Field(default_factory=dict)
    environments: Mapping[EnvironmentName, EnvironmentConfig] = Field(default_factory=dict)

    @field_validator("application_tags", mode="after")
    @classmethod
    def _freeze_app_tags(cls, value: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType({str(k): str(v) for k, v in value.items()})

    @field_validator("environments", mode="after")
    @classmethod
    def _freeze_environments(
        cls, value: Mapping[EnvironmentName, EnvironmentConfig]
    ) -> Mapping[EnvironmentName, EnvironmentConfig]:
        return MappingProxyType(dict(value))

    def environment_names(self) -> list[str]:
        """Return the names of the environments this record defines, sorted."""
        return sorted(name.value for name in self.environments)

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form, suitable for YAML or template contexts."""
        return {
            "application_tags": dict(self.application_tags),
            "environments": {
                name.value: {
                    "region": env.region,
                    "account": env.account,
                    "tags": dict(env.tags),
                    "alert_email": env.alert_email,
                }
                for name, env in sorted(self.environments.items(), key=lambda kv: kv[0].value)
            },
        }


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_configuration(data: Any, source: str = "<memory>") -> ConfigurationRecord:
    """Validate an already-parsed mapping into a :class:`ConfigurationRecord`.

    Raises:
        ConfigError: If the document is not a mapping, names an environment
            outside :class:`EnvironmentName`, or fails field validation.
    """
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"environment configuration must be a mapping: {source}", source)

    for name in (data.get("environments") or {}):
        if name not in EnvironmentName.values():
            raise ConfigError(f"unknown environment: {name}", source)

    try:
        return ConfigurationRecord.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid environment configuration in {source}: {exc}", source) from exc


def load_configuration(path: str | Path) -> ConfigurationRecord:
    """Read and validate a YAML environment record from *path*."""
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigError(f"environment configuration not found: {file_path}", file_path)
    try:
        data = yaml.safe_load(file_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {file_path}: {exc}", file_path) from exc
    return parse_configuration(data, str(file_path))


_default_record: ConfigurationRecord | None = None


def default_configuration() -> ConfigurationRecord:
    """Return the process-wide record, loading it on first use.

    The file is taken from ``$REALIGN_ENVIRONMENTS_FILE`` or
    ``config/environments.yaml`` relative to the working directory.
    """
    global _default_record
    if _default_record is None:
        path = Path(os.environ.get(ENVIRONMENTS_FILE_ENV) or DEFAULT_ENVIRONMENTS_FILE)
        _default_record = load_configuration(path)
    return _default_record


def reset_default_configuration() -> None:
    """Forget the cached process-wide record (used by tests)."""
    global _default_record
    _default_record = None


# ---------------------------------------------------------------------------
# Accessors
# ---------------------------------------------------------------------------


def get_environment_config(
    name: str, record: ConfigurationRecord | None = None
) -> EnvironmentConfig:
    """Look up the immutable config for environment *name*.

    Raises:
        ConfigError: ``unknown environment: <name>`` when *name* is not one of
            the environments defined by the record.
    """
    record = record if record is not None else default_configuration()
    try:
        key = EnvironmentName(name)
    except ValueError:
        raise ConfigError(f"unknown environment: {name}", name) from None
    env = record.environments.get(key)
    if env is None:
        raise ConfigError(f"unknown environment: {name}", name)
    return env


def get_environment_tags(
    name: str, record: ConfigurationRecord | None = None
) -> dict[str, str]:
    """Return the application tags overlaid with environment *name*'s tags.

    Environment keys win on collision.  The result is a new dict.
    """
    record = record if record is not None else default_configuration()
    env = get_environment_config(name, record)
    merged = dict(record.application_tags)
    merged.update(env.tags)
    return merged
