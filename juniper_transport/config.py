"""Connection settings loaded from keyword arguments and ``JUNIPER_*`` env vars."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from juniper_transport.errors import ConfigurationError

DEFAULT_SSH_PORT = 22


class HostKeyPolicy(str, Enum):
    strict = "strict"
    accept_new = "accept-new"
    disabled = "disabled"


def _split_paths(value: Any) -> Any:
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    return value


class BastionHop(BaseModel):
    """One jump host in front of the target device."""

    host: str
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[SecretStr] = None
    key_files: list[str] = Field(default_factory=list)

    @field_validator("key_files", mode="before")
    @classmethod
    def split_key_files(cls, value: Any) -> Any:
        return _split_paths(value)


class ConnectionSettings(BaseSettings):
    """All connection configuration; every field can come from the environment."""

    # Target device
    host: Optional[str] = None
    port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[SecretStr] = None
    key_files: Union[list[str], str, None] = None
    key_passphrase: Optional[SecretStr] = None
    keys_only: bool = False

    # Timeouts (seconds)
    timeout: float = Field(default=30, gt=0)
    command_timeout: float = Field(default=30, gt=0)
    keepalive_interval: int = Field(default=60, ge=0)

    # Host keys
    host_key_policy: HostKeyPolicy = HostKeyPolicy.strict
    known_hosts_file: Optional[str] = None

    # Single bastion shorthand
    bastion_host: Optional[str] = None
    bastion_user: Optional[str] = None
    bastion_port: int = Field(default=DEFAULT_SSH_PORT, ge=1, le=65535)
    bastion_password: Optional[SecretStr] = None

    # Multi-hop chain, outermost first
    bastion_chain: list[BastionHop] = Field(default_factory=list)

    # Custom proxy command with %h / %p / %r tokens
    proxy_command: Optional[str] = None

    # Reuse the device password for bastion hops that have none of their own
    reuse_credentials_for_bastion: bool = False

    # Retries of the initial socket connect
    connection_retries: int = Field(default=5, ge=0)
    connection_retry_sleep: float = Field(default=1, ge=0)

    # JunOS CLI
    disable_complete_on_space: bool = False

    # Serve canned responses instead of connecting
    mock: bool = False

    model_config = {
        "env_prefix": "JUNIPER_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_ignore_empty": True,
        "extra": "ignore",
    }

    @field_validator("key_files", mode="before")
    @classmethod
    def split_key_files(cls, value: Any) -> Any:
        return _split_paths(value)

    @model_validator(mode="after")
    def check_consistency(self) -> "ConnectionSettings":
        if not self.host:
            raise ValueError("Host is required")
        if not self.user:
            raise ValueError("User is required")
        if self.proxy_command and (self.bastion_host or self.bastion_chain):
            raise ValueError("Cannot specify both bastion_host and proxy_command")
        if self.bastion_host and self.bastion_chain:
            raise ValueError("Cannot specify both bastion_host and bastion_chain")
        return self

    # ── derived views ────────────────────────────────────────────────

    @property
    def identity_files(self) -> list[str]:
        return list(self.key_files or [])

    def resolved_bastion_chain(self) -> list[BastionHop]:
        """Bastion hops with user and credential fallbacks applied.

        A hop without its own password only inherits the device password when
        ``reuse_credentials_for_bastion`` is set.
        """
        if self.bastion_chain:
            hops = [hop.model_copy() for hop in self.bastion_chain]
        elif self.bastion_host:
            hops = [
                BastionHop(
                    host=self.bastion_host,
                    port=self.bastion_port,
                    user=self.bastion_user,
                    password=self.bastion_password,
                ),
            ]
        else:
            return []

        for hop in hops:
            if not hop.user:
                hop.user = self.user
            if hop.password is None and self.reuse_credentials_for_bastion:
                hop.password = self.password
        return hops

    def safe_dict(self) -> dict[str, Any]:
        """Settings for logging, without any credential material."""
        return self.model_dump(
            exclude={"password", "bastion_password", "key_passphrase", "proxy_command"},
            mode="json",
        ) | {
            "bastion_chain": [
                {"host": h.host, "port": h.port, "user": h.user}
                for h in self.bastion_chain
            ],
        }


def load_settings(**overrides: Any) -> ConnectionSettings:
    """Build settings, raising ConfigurationError instead of ValidationError.

    Only field locations and messages are reported; input values (which may
    be secrets) are not.
    """
    try:
        return ConnectionSettings(**overrides)
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            msg = err["msg"].removeprefix("Value error, ")
            loc = ".".join(str(p) for p in err["loc"])
            problems.append(f"{loc}: {msg}" if loc else msg)
        raise ConfigurationError("; ".join(problems)) from None
