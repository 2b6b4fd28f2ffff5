from __future__ import annotations

import os
import re
from pathlib import Path
from typing import List, Optional

import pydantic
import yaml
from pydantic import BaseModel, Field, field_validator

from .errors import ValidationError

DEFAULT_CONFIG_PATH = "server-init.yaml"
PLACEHOLDER_USER = "YOUR_USERNAME"
PLACEHOLDER_SSH_KEY = "YOUR_SSH_PUBLIC_KEY_HERE"
DEFAULT_MAIL_HOSTNAME = "mail.example.com"

CONFIG_EXAMPLE = """\
new_user: your_username
ssh_port: 22
ssh_public_key: "ssh-ed25519 AAAA..."
mail_hostname: mail.example.com
user_password: ""  # optional, or set USER_PASSWORD
"""

_SSH_KEY_TYPES = (
    "ssh-rsa",
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
)
_HOSTNAME_RE = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_USER_RE = re.compile(r"^[a-z_][a-z0-9_-]*$")


class StateConfig(BaseModel):
    """Locations of the engine's durable state."""

    checkpoint_path: Path = Path("/var/tmp/server-init-step.json")
    lock_path: Path = Path("/var/lock/server-init.lock")
    progress_log: Path = Path("/var/log/server-init-progress.log")


class PreflightConfig(BaseModel):
    """Environment checks run before anything touches the host."""

    require_root: bool = True
    allowed_os: List[str] = Field(default_factory=lambda: ["ubuntu", "debian"])
    expected_version: Optional[str] = "24."
    check_network: bool = True
    network_targets: List[str] = Field(
        default_factory=lambda: ["8.8.8.8:53", "[2001:4860:4860::8888]:53"]
    )
    network_timeout: float = 2.0


class ServerConfig(BaseModel):
    """Top-level configuration model."""

    new_user: str
    ssh_port: int = 22
    ssh_public_key: str
    mail_hostname: str = DEFAULT_MAIL_HOSTNAME
    user_password: Optional[str] = None
    install_docker: bool = False
    state: StateConfig = StateConfig()
    preflight: PreflightConfig = PreflightConfig()

    @field_validator("new_user")
    @classmethod
    def _check_user(cls, v: str) -> str:
        if v != PLACEHOLDER_USER and not _USER_RE.match(v):
            raise ValueError("must be lowercase alphanumeric with - or _")
        return v

    @field_validator("ssh_port")
    @classmethod
    def _check_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError("must be 1-65535")
        return v

    @field_validator("ssh_public_key")
    @classmethod
    def _check_key(cls, v: str) -> str:
        v = v.strip()
        if v != PLACEHOLDER_SSH_KEY and not any(
            v.startswith(kind + " ") for kind in _SSH_KEY_TYPES
        ):
            raise ValueError("must start with ssh-rsa, ssh-ed25519 or ecdsa-sha2-*")
        return v

    @field_validator("mail_hostname")
    @classmethod
    def _check_hostname(cls, v: str) -> str:
        if not _HOSTNAME_RE.match(v):
            raise ValueError("invalid hostname format")
        return v


def resolve_config_path(path: Optional[str | Path] = None) -> Path:
    return Path(path or os.getenv("SERVERINIT_CONFIG", DEFAULT_CONFIG_PATH))


def load_config(path: Optional[str | Path] = None) -> ServerConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SERVERINIT_CONFIG env
            variable or 'server-init.yaml' in the current directory.

    Raises:
        ValidationError: The file is missing, unreadable or malformed.
    """

    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise ValidationError(
            f"Configuration file '{config_path}' not found. Create it with:\n"
            + CONFIG_EXAMPLE
        )
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ValidationError(f"Cannot read configuration file '{config_path}': {exc}")
    if not isinstance(data, dict):
        raise ValidationError(f"Configuration file '{config_path}' must be a mapping")

    env_password = os.getenv("USER_PASSWORD")
    if env_password:
        data["user_password"] = env_password

    try:
        return ServerConfig(**data)
    except pydantic.ValidationError as exc:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid configuration in '{config_path}':", problems)
