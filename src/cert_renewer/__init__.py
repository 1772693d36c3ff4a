"""
Cert Renewer - acme.sh driven TLS certificate renewal and deployment.

This package parses a list of ``domain|dns_provider[|account]`` entries,
issues and installs certificates through acme.sh one domain at a time,
points matching nginx/OpenResty vhost files at the new certificates with
backup and atomic rename, and reloads the web server.
"""

__version__ = "0.1.0"
__author__ = "Cert Renewer Team"

from cert_renewer.exceptions import (
    CertRenewerError,
    ConfigError,
    ParseError,
    MissingProviderError,
    InvalidDomainFormatError,
    InvalidProviderFormatError,
    InvalidAccountIdError,
    CredentialError,
    ToolNotFoundError,
    IssuanceError,
    InstallError,
    MatchError,
    RewriteError,
    ReloadError,
)
from cert_renewer.enums import (
    LogLevel,
    CertificateType,
    DomainFormatErrorCode,
    RewriteStatus,
    RewriteErrorCode,
    WebServerType,
    DomainStage,
)
from cert_renewer.models import (
    DomainSpec,
    CredentialSet,
    ConfigMatch,
    RewriteResult,
    SuccessRecord,
    DomainOutcome,
    RunSummary,
)
from cert_renewer.config import (
    LoggingConfig,
    DomainLine,
    RenewConfig,
    load_config,
)
from cert_renewer.domain_parser import (
    DomainSpecParser,
    DomainValidationResult,
    DomainFormatError,
    extract_main_domain,
    is_wildcard_domain,
    validate_domain,
)
from cert_renewer.domain_matcher import (
    DomainMatcher,
)
from cert_renewer.credentials import (
    CredentialResolver,
)
from cert_renewer.config_rewriter import (
    ConfigRewriter,
    TempFileRegistry,
)
from cert_renewer.acme_client import (
    AcmeClient,
    CommandResult,
)
from cert_renewer.web_server import (
    WebServer,
)
from cert_renewer.prompt import (
    ask_yes_no,
)
from cert_renewer.audit_logger import (
    AuditLogger,
    LogEntry,
)
from cert_renewer.orchestrator import (
    RenewOrchestrator,
    PrevalidationReport,
    LineReport,
)
from cert_renewer.cli import (
    main as cli_main,
    create_parser,
)

__all__ = [
    # Exceptions
    "CertRenewerError",
    "ConfigError",
    "ParseError",
    "MissingProviderError",
    "InvalidDomainFormatError",
    "InvalidProviderFormatError",
    "InvalidAccountIdError",
    "CredentialError",
    "ToolNotFoundError",
    "IssuanceError",
    "InstallError",
    "MatchError",
    "RewriteError",
    "ReloadError",
    # Enums
    "LogLevel",
    "CertificateType",
    "DomainFormatErrorCode",
    "RewriteStatus",
    "RewriteErrorCode",
    "WebServerType",
    "DomainStage",
    # Models
    "DomainSpec",
    "CredentialSet",
    "ConfigMatch",
    "RewriteResult",
    "SuccessRecord",
    "DomainOutcome",
    "RunSummary",
    # Configuration
    "LoggingConfig",
    "DomainLine",
    "RenewConfig",
    "load_config",
    # Domain Parser
    "DomainSpecParser",
    "DomainValidationResult",
    "DomainFormatError",
    "extract_main_domain",
    "is_wildcard_domain",
    "validate_domain",
    # Domain Matcher
    "DomainMatcher",
    # Credentials
    "CredentialResolver",
    # Config Rewriter
    "ConfigRewriter",
    "TempFileRegistry",
    # ACME Client
    "AcmeClient",
    "CommandResult",
    # Web Server
    "WebServer",
    # Prompt
    "ask_yes_no",
    # Audit Logger
    "AuditLogger",
    "LogEntry",
    # Orchestrator
    "RenewOrchestrator",
    "PrevalidationReport",
    "LineReport",
    # CLI
    "cli_main",
    "create_parser",
]
