"""Settings loader for sshfan."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import paramiko
import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path("~/.config/sshfan/config.yaml")


@dataclass
class Settings:
    """Runtime settings shared by every session."""

    ssh_config: Path = field(default_factory=lambda: Path("~/.ssh/config").expanduser())
    poll_interval: float = 0.1
    connect_timeout: int = 30
    port: int | None = None
    ssh_key: Path | None = None
    strict_host_keys: bool = False
    log_dir: Path | None = None
    log_level: str = "WARNING"
    source_path: Path | None = None  # Path to the settings file, if any

    def connect_options(self, host: str, ssh_options: paramiko.SSHConfig | None = None) -> dict[str, Any]:
        """Keyword arguments for ``SSHClient.connect`` to reach ``host``.

        HostName, Port and IdentityFile come from the ssh config entry for
        the alias when one is given; explicit settings take precedence.
        """
        options: dict[str, Any] = {"timeout": self.connect_timeout}
        if ssh_options is not None:
            entry = ssh_options.lookup(host)
            options["hostname"] = entry.get("hostname", host)
            if "port" in entry:
                options["port"] = int(entry["port"])
            if "identityfile" in entry:
                options["key_filename"] = entry["identityfile"]
        if self.port is not None:
            options["port"] = self.port
        if self.ssh_key is not None:
            options["key_filename"] = str(self.ssh_key)
        return options

    def load_ssh_options(self) -> paramiko.SSHConfig | None:
        """Parse the ssh config file for transport options, if readable."""
        try:
            return paramiko.SSHConfig.from_path(str(self.ssh_config))
        except OSError:
            return None
        except paramiko.SSHException as e:
            logger.warning("Ignoring ssh options in %s: %s", self.ssh_config, e)
            return None


def load_settings(settings_path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file.

    Without an explicit path the default location is used when it exists,
    otherwise built-in defaults apply.
    """
    if settings_path is None:
        default = DEFAULT_SETTINGS_PATH.expanduser()
        if not default.exists():
            return Settings()
        settings_path = default

    settings_path = Path(settings_path).expanduser().resolve()
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")

    settings = _parse_settings(raw)
    settings.source_path = settings_path
    return settings


def _parse_settings(raw: dict[str, Any]) -> Settings:
    """Parse raw YAML data into a Settings object."""
    known = {f.name for f in fields(Settings)} - {"source_path"}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(unknown)}")

    defaults = Settings()

    poll_interval = float(raw.get("poll_interval", defaults.poll_interval))
    if poll_interval <= 0:
        raise ValueError("poll_interval must be positive")

    connect_timeout = int(raw.get("connect_timeout", defaults.connect_timeout))
    if connect_timeout <= 0:
        raise ValueError("connect_timeout must be positive")

    port = raw.get("port")
    if port is not None:
        port = int(port)

    log_level = str(raw.get("log_level", defaults.log_level)).upper()

    return Settings(
        ssh_config=_optional_path(raw.get("ssh_config")) or defaults.ssh_config,
        poll_interval=poll_interval,
        connect_timeout=connect_timeout,
        port=port,
        ssh_key=_optional_path(raw.get("ssh_key")),
        strict_host_keys=bool(raw.get("strict_host_keys", defaults.strict_host_keys)),
        log_dir=_optional_path(raw.get("log_dir")),
        log_level=log_level,
    )


def _optional_path(value: Any) -> Path | None:
    if value is None:
        return None
    return Path(str(value)).expanduser()
