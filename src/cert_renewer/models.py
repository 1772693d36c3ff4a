"""
Data models for the certificate renewer.

This module defines the values passed between the parser, matcher,
credential resolver, rewriter and orchestrator.
"""

from dataclasses import dataclass, field
from typing import Optional

from .enums import CertificateType, DomainStage, RewriteStatus


@dataclass(frozen=True)
class DomainSpec:
    """One validated domain line from the configuration file."""

    raw: str  # Original line
    domain: str  # Domain as requested, wildcard prefix included
    is_wildcard: bool
    main_domain: str  # Wildcard prefix stripped; names cert files
    dns_provider: str  # dns_xxx
    account_id: Optional[str] = None

    @property
    def certificate_type(self) -> CertificateType:
        if self.is_wildcard:
            return CertificateType.WILDCARD
        return CertificateType.SINGLE


@dataclass
class CredentialSet:
    """Resolved DNS API credentials for one provider account."""

    variables: dict[str, str] = field(default_factory=dict)
    account_id: Optional[str] = None  # None is the default, unsuffixed set
    default_names: list[str] = field(default_factory=list)
    account_names: list[str] = field(default_factory=list)
    rejected_names: list[str] = field(default_factory=list)

    def overlay(self, base: Optional[dict[str, str]] = None) -> dict[str, str]:
        """Return a copy of ``base`` with these credentials layered on top."""
        env = dict(base or {})
        env.update(self.variables)
        return env

    def __repr__(self) -> str:
        # Values are secrets; only names are shown
        return (
            f"CredentialSet(account_id={self.account_id!r}, "
            f"names={sorted(self.variables)!r})"
        )


@dataclass
class ConfigMatch:
    """Configuration files that belong to a main domain."""

    main_domain: str
    conf_dir: str
    files: list[str] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.files)


@dataclass
class RewriteResult:
    """Outcome of rewriting the TLS directives of one configuration file."""

    file: str
    modified: bool
    cert_path: str
    key_path: str
    status: RewriteStatus
    backup_path: Optional[str] = None


@dataclass(frozen=True)
class SuccessRecord:
    """A domain whose certificate was issued and installed."""

    domain: str
    main_domain: str


@dataclass
class DomainOutcome:
    """Everything that happened to one domain during a run."""

    domain: str
    stage: DomainStage
    errors: list[str] = field(default_factory=list)
    rewrites: list[RewriteResult] = field(default_factory=list)


@dataclass
class RunSummary:
    """Aggregate result of a renewal run."""

    start_time: str
    end_time: Optional[str] = None
    exit_code: int = 0
    outcomes: list[DomainOutcome] = field(default_factory=list)
    successes: list[SuccessRecord] = field(default_factory=list)
    reloaded: bool = False
    fatal_error: Optional[str] = None

    @property
    def files_updated(self) -> int:
        return sum(
            1 for outcome in self.outcomes for rewrite in outcome.rewrites
            if rewrite.modified
        )
