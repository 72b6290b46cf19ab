"""Hostgate settings: HOSTGATE_* environment variables, config files and overrides.

All settings can be configured via environment variables with the HOSTGATE_ prefix.
Example: HOSTGATE_DATABASE_PATH=/opt/.get/domains.db points the registry at an
existing database.

Settings are built once at process start (see load_settings) and handed to
HostgateContext; nothing in the package reads configuration from module globals.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_yaml(text: str, path: Path) -> dict[str, Any]:
    try:
        return yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e


def _parse_toml(text: str, path: Path) -> dict[str, Any]:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {path}: {e}") from e


_PARSERS = {".yaml": _parse_yaml, ".yml": _parse_yaml, ".toml": _parse_toml}


def load_config_from_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML or TOML config file into a (possibly nested) dict.

    Raises:
        FileNotFoundError: The file is missing.
        ValueError: Unknown extension, undecodable bytes or a syntax error.
    """
    path = Path(path)
    parse = _PARSERS.get(path.suffix.lower())
    if parse is None:
        raise ValueError(f"Unsupported config format: {path.suffix or path.name}")
    if not path.is_file():
        raise FileNotFoundError(f"No config file at {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ValueError(f"{path} is not valid UTF-8: {e}") from e
    return parse(text, path)


def flatten_config(config: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    """Join nested keys with underscores: {"a": {"b": 1}} -> {"a_b": 1}."""
    flat: dict[str, Any] = {}
    for key, value in config.items():
        name = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat |= flatten_config(value, name)
        else:
            flat[name] = value
    return flat


# Top-level keys of a config file that only group settings.
_SECTIONS = ("registry", "certificates", "gateway", "logging")


def _default_data_dir() -> Path:
    return Path.home() / ".hostgate"


class HostgateSettings(BaseSettings):
    """Process-wide settings for the registry, certificates and gateway."""

    model_config = SettingsConfigDict(
        env_prefix="HOSTGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Registry
    database_path: Path = Field(
        default_factory=lambda: _default_data_dir() / "domains.db",
        description="SQLite file holding the domains table.",
    )
    sqlite_timeout: float = Field(
        default=5.0,
        description="Seconds a reader waits on a locked database before failing.",
    )
    handshake_lookup_timeout: float = Field(
        default=0.5,
        description=(
            "Seconds a TLS handshake waits on a locked database before serving "
            "the default certificate."
        ),
    )

    # Certificates
    acme_root: Path = Field(
        default=Path("/etc/letsencrypt/live"),
        description="Directory with one <domain>/ folder of issued material per certificate.",
    )
    acme_log_path: Path = Field(
        default=Path("/var/log/letsencrypt/letsencrypt.log"),
        description="ACME client log shown by 'hostgate ssl logs'.",
    )
    ssl_dir: Path = Field(
        default=Path("/etc/ssl"),
        description="Base directory for the default self-signed pair.",
    )
    self_signed_common_name: str = Field(
        default="local.hostgate",
        description="Common name of the default listener certificate.",
    )
    self_signed_days: int = Field(default=365, description="Validity of the default certificate.")
    self_signed_key_bits: int = Field(
        default=2048, description="RSA key size for the default certificate."
    )
    certbot_binary: str = Field(default="certbot", description="ACME client executable.")
    openssl_binary: str = Field(default="openssl", description="OpenSSL executable.")
    dns_nameservers: list[str] = Field(
        default_factory=list,
        description="Resolvers used to check challenge propagation (system default when empty).",
    )
    propagation_attempts: int = Field(
        default=10,
        description="DNS propagation checks before giving up.",
    )
    propagation_interval: float = Field(
        default=60.0,
        description="Seconds between DNS propagation checks.",
    )
    propagation_timeout: float = Field(
        default=600.0,
        description="Upper bound in seconds for the whole propagation wait.",
    )
    renewal_window_days: int = Field(
        default=30,
        description="Certificates expiring within this many days are due for renewal.",
    )
    tool_timeout: float = Field(
        default=300.0,
        description="Seconds a non-interactive certbot/openssl call may run.",
    )

    # Gateway
    https_bind: str = Field(default="0.0.0.0:443", description="TLS listener address.")
    http_bind: str | None = Field(
        default="0.0.0.0:80",
        description="Plain HTTP listener that redirects to HTTPS. Empty disables it.",
    )
    upstream_host: str = Field(
        default="127.0.0.1", description="Host that 'server' targets live on."
    )
    index_document: str = Field(
        default="index.html", description="Fallback document for static roots."
    )
    proxy_timeout: float | None = Field(
        default=600.0,
        description="Timeout in seconds for proxied requests. None or 0 for indefinite.",
    )

    log_level: str = Field(default="info", description="debug, info, warning or error.")

    @field_validator("http_bind", mode="before")
    @classmethod
    def _empty_bind_disables(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warning", "error"):
            raise ValueError(f"Unsupported log level: {value}")
        return value

    @property
    def self_signed_cert_path(self) -> Path:
        return self.ssl_dir / "certs" / "hostgate-selfsigned.crt"

    @property
    def self_signed_key_path(self) -> Path:
        return self.ssl_dir / "private" / "hostgate-selfsigned.key"

    def to_env_dict(self) -> dict[str, str]:
        """Render every setting as a HOSTGATE_* variable; lists become JSON."""
        result = {}
        for key, value in self.model_dump().items():
            if value is None:
                rendered = ""
            elif isinstance(value, list):
                rendered = json.dumps(value)
            else:
                rendered = str(value)
            result[f"HOSTGATE_{key.upper()}"] = rendered
        return result

    def to_display_dict(self) -> dict[str, Any]:
        """Group settings by config-file section for `hostgate config show`."""
        return {
            "registry": {
                "database_path": str(self.database_path),
                "sqlite_timeout": self.sqlite_timeout,
                "handshake_lookup_timeout": self.handshake_lookup_timeout,
            },
            "certificates": {
                "acme_root": str(self.acme_root),
                "acme_log_path": str(self.acme_log_path),
                "self_signed_cert_path": str(self.self_signed_cert_path),
                "self_signed_key_path": str(self.self_signed_key_path),
                "self_signed_common_name": self.self_signed_common_name,
                "propagation_attempts": self.propagation_attempts,
                "propagation_interval": self.propagation_interval,
                "propagation_timeout": self.propagation_timeout,
                "renewal_window_days": self.renewal_window_days,
            },
            "gateway": {
                "https_bind": self.https_bind,
                "http_bind": self.http_bind,
                "upstream_host": self.upstream_host,
                "index_document": self.index_document,
                "proxy_timeout": self.proxy_timeout,
            },
            "logging": {"log_level": self.log_level},
        }


def load_settings(config_file: str | Path | None = None, **overrides: Any) -> HostgateSettings:
    """Build settings from an optional file, the environment and explicit overrides.

    Values from the file and overrides are passed as init arguments, so they
    win over HOSTGATE_* variables; None overrides are ignored.

    Example:
        settings = load_settings("hostgate.yaml", log_level="debug")
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        for key, value in load_config_from_file(config_file).items():
            if key in _SECTIONS and isinstance(value, dict):
                values.update(flatten_config(value))
            else:
                values.update(flatten_config({key: value}))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return HostgateSettings(**values)
