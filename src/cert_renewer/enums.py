"""
Enumeration types for the certificate renewer.

These enums provide type-safe constants for status codes, error codes,
and configuration options throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class CertificateType(Enum):
    """Kind of certificate requested for a domain line."""

    WILDCARD = "wildcard"
    SINGLE = "single"


class DomainFormatErrorCode(Enum):
    """Error codes for domain line parsing failures."""

    MISSING_PROVIDER = "missing_provider"
    EMPTY_INPUT = "empty_input"
    CONF_SUFFIX = "conf_suffix"
    FORBIDDEN_CHARS = "forbidden_chars"
    MISPLACED_WILDCARD = "misplaced_wildcard"
    EDGE_DOT = "edge_dot"
    CONSECUTIVE_DOTS = "consecutive_dots"
    TOO_FEW_LABELS = "too_few_labels"
    LABEL_LENGTH = "label_length"
    LABEL_HYPHEN = "label_hyphen"
    INVALID_TLD = "invalid_tld"
    INVALID_PUNYCODE = "invalid_punycode"
    INVALID_PROVIDER = "invalid_provider"
    INVALID_ACCOUNT = "invalid_account"


class RewriteStatus(Enum):
    """Outcome of a configuration file rewrite that did not fail."""

    UPDATED = "updated"
    ALREADY_CURRENT = "already_current"
    NO_TLS_DIRECTIVES = "no_tls_directives"
    NO_CHANGE = "no_change"


class RewriteErrorCode(Enum):
    """Error codes for configuration rewrite failures."""

    UNSAFE_PATH = "unsafe_path"
    READ_FAILED = "read_failed"
    BACKUP_FAILED = "backup_failed"
    TEMP_FILE_FAILED = "temp_file_failed"
    RENAME_FAILED = "rename_failed"
    VERIFY_FAILED = "verify_failed"


class WebServerType(Enum):
    """Supported web servers, in detection order."""

    OPENRESTY = "openresty"
    NGINX = "nginx"


class DomainStage(Enum):
    """Furthest stage a domain reached during a run."""

    SKIPPED = "skipped"
    ISSUE_FAILED = "issue_failed"
    INSTALL_FAILED = "install_failed"
    INSTALLED = "installed"
