"""
Configuration dataclasses and loader for the certificate renewer.

The configuration file is line oriented:

* ``# ...`` comments and blank lines are ignored
* ``KEY=value`` lines set global options
* every other line is a domain line ``domain|dns_provider[|account]``

Relative paths are resolved against the directory holding the file.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .exceptions import ConfigError


DEFAULT_CA_PROVIDER = "letsencrypt"
DEFAULT_CREDENTIALS_FILE = "dns_credentials"
DEFAULT_DNS_SLEEP = 300
DEFAULT_CERT_DIR = "cert"
DEFAULT_LOG_DIR = "logs"
DEFAULT_PROMPT_TIMEOUT = 30
DEFAULT_ACME_TIMEOUT = 600
LOG_FILE_NAME = "renew_cert.log"

OPTION_PATTERN = re.compile(r"^([A-Z][A-Z0-9_]*)=(.*)$")

# Accepted for old configuration files, value ignored
DEPRECATED_OPTIONS = frozenset({"DNS_PROVIDER"})


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "info"
    output_format: str = "text"  # 'json', 'text', 'both'
    log_dir: Optional[Path] = None

    @property
    def log_file(self) -> Optional[Path]:
        if self.log_dir is None:
            return None
        return self.log_dir / LOG_FILE_NAME


@dataclass
class DomainLine:
    """A domain line with its position in the configuration file."""

    line_number: int
    text: str


@dataclass
class RenewConfig:
    """Main configuration combining global options and domain lines."""

    config_file: Path
    nginx_conf_dir: Optional[Path] = None
    ca_provider: str = DEFAULT_CA_PROVIDER
    dns_credentials_file: Optional[Path] = None
    dns_sleep: int = DEFAULT_DNS_SLEEP
    cert_dir: Optional[Path] = None
    acme_sh_path: Optional[Path] = None
    acme_home: Optional[Path] = None
    prompt_timeout: int = DEFAULT_PROMPT_TIMEOUT
    acme_timeout: int = DEFAULT_ACME_TIMEOUT
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    domain_lines: list[DomainLine] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def base_dir(self) -> Path:
        return self.config_file.parent

    @property
    def backup_dir(self) -> Optional[Path]:
        if self.nginx_conf_dir is None:
            return None
        return self.nginx_conf_dir / "backup"

    def cert_path(self, main_domain: str) -> Path:
        return self.cert_dir / f"{main_domain}.pem"

    def key_path(self, main_domain: str) -> Path:
        return self.cert_dir / f"{main_domain}.key"


def resolve_path(value: str, base_dir: Path) -> Path:
    """Resolve a possibly relative path against base_dir, dropping a trailing slash."""
    path = Path(os.path.expanduser(value.strip()))
    if not path.is_absolute():
        path = base_dir / path
    return Path(os.path.normpath(path))


def _int_option(name: str, value: str, default: int, warnings: list[str]) -> int:
    if re.fullmatch(r"[0-9]+", value):
        return int(value)
    warnings.append(f"{name} value is invalid: {value!r}, using default: {default}")
    return default


def load_config(config_path: Path) -> RenewConfig:
    """
    Load configuration from a line-oriented configuration file.

    Args:
        config_path: Path to the configuration file

    Returns:
        RenewConfig with options applied and domain lines collected

    Raises:
        ConfigError: If the file does not exist or cannot be read
    """
    config_path = Path(config_path).absolute()
    if not config_path.is_file():
        raise ConfigError(
            code="config_missing",
            message=f"Configuration file {config_path} does not exist",
            details={
                "file": str(config_path),
                "hint": "one domain per line, e.g. *.example.com|dns_cf",
            },
        )

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(
            code="config_unreadable",
            message=f"Failed to read configuration file: {e}",
            details={"file": str(config_path)},
        )

    base_dir = config_path.parent
    config = RenewConfig(config_file=config_path)
    credentials_file = DEFAULT_CREDENTIALS_FILE
    cert_dir = DEFAULT_CERT_DIR
    log_dir = DEFAULT_LOG_DIR

    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        option = OPTION_PATTERN.match(line)
        if option is None:
            config.domain_lines.append(DomainLine(line_number=number, text=line))
            continue

        name, value = option.group(1), option.group(2).strip()
        if name == "NGINX_CONF_DIR":
            config.nginx_conf_dir = resolve_path(value, base_dir) if value else None
        elif name == "CA_PROVIDER":
            config.ca_provider = value or DEFAULT_CA_PROVIDER
        elif name == "DNS_CREDENTIALS_FILE":
            credentials_file = value or DEFAULT_CREDENTIALS_FILE
        elif name == "DNS_SLEEP":
            config.dns_sleep = _int_option(name, value, DEFAULT_DNS_SLEEP, config.warnings)
        elif name == "CERT_DIR":
            cert_dir = value or DEFAULT_CERT_DIR
        elif name == "LOG_DIR":
            log_dir = value or DEFAULT_LOG_DIR
        elif name == "ACME_SH_PATH":
            config.acme_sh_path = resolve_path(value, base_dir) if value else None
        elif name == "ACME_HOME":
            config.acme_home = resolve_path(value, base_dir) if value else None
        elif name == "PROMPT_TIMEOUT":
            config.prompt_timeout = _int_option(
                name, value, DEFAULT_PROMPT_TIMEOUT, config.warnings
            )
        elif name == "ACME_TIMEOUT":
            config.acme_timeout = _int_option(name, value, DEFAULT_ACME_TIMEOUT, config.warnings)
        elif name in DEPRECATED_OPTIONS:
            config.warnings.append(
                f"{name} is deprecated and ignored; give each domain its own provider"
            )
        else:
            config.warnings.append(f"Unknown option {name} on line {number} ignored")

    config.dns_credentials_file = resolve_path(credentials_file, base_dir)
    config.cert_dir = resolve_path(cert_dir, base_dir)
    config.logging.log_dir = resolve_path(log_dir, base_dir)

    return config
