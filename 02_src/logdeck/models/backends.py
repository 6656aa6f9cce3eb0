"""Backend and RPC peer configuration models.

These are supplied by the external configuration loader; logdeck only
validates and reads them.
"""

import re
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import ConfigError

_VERSION_RE = re.compile(r"^\d+\.\d+(\.\d+)?$")


class BackendType(str, Enum):
    """Supported log backends."""

    ELASTICSEARCH = "elasticsearch"
    OPENOBSERVE = "openobserve"
    KIBANA = "kibana"


class BasicAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["basic"] = "basic"
    username: str
    password: str


class BearerAuth(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["bearer"] = "bearer"
    token: str


Auth = Annotated[Union[BasicAuth, BearerAuth], Field(discriminator="type")]


class BackendConfig(BaseModel):
    """Connection settings of one log backend."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    type: BackendType
    url: str
    auth: Auth | None = None
    index_pattern: str = Field(default="logs-*", alias="indexOrStreamPattern")
    organization: str = "default"
    verify_ssl: bool = Field(default=True, alias="verifySsl")
    version: str = "7.10.2"
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("index_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        value = value.strip().strip("/")
        if not value:
            raise ValueError("index or stream pattern must not be empty")
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _VERSION_RE.match(value):
            raise ValueError(f"version must look like 7.10 or 7.10.2, got {value!r}")
        return value

    @property
    def version_tuple(self) -> tuple[int, ...]:
        return tuple(int(part) for part in self.version.split("."))

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BackendConfig":
        """Validate an externally loaded mapping, raising ConfigError."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigError(f"Invalid backend configuration: {e}") from e


class RpcServerConfig(BaseModel):
    """How to launch the MCP peer."""

    model_config = ConfigDict(frozen=True)

    command: str
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RpcServerConfig":
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigError(f"Invalid RPC server configuration: {e}") from e
