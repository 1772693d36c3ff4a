"""
Exception classes for the certificate renewer.

All exceptions inherit from CertRenewerError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class CertRenewerError(Exception):
    """Base exception for all certificate renewer errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(CertRenewerError):
    """Raised when the configuration file cannot be read or is unusable."""

    pass


class ParseError(CertRenewerError):
    """Raised when a domain line in the configuration file is malformed."""

    pass


class MissingProviderError(ParseError):
    """Raised when a domain line carries no '|provider' part."""

    pass


class InvalidDomainFormatError(ParseError):
    """Raised when the domain part of a line fails label/TLD validation."""

    pass


class InvalidProviderFormatError(ParseError):
    """Raised when the DNS provider is empty or not of the form dns_xxx."""

    pass


class InvalidAccountIdError(ParseError):
    """Raised when the account suffix of a domain line contains illegal characters."""

    pass


class CredentialError(CertRenewerError):
    """Raised when DNS API credentials are missing or unusable."""

    pass


class ToolNotFoundError(CertRenewerError):
    """Raised when the ACME client executable cannot be located."""

    pass


class IssuanceError(CertRenewerError):
    """Raised when the ACME client fails to issue or renew a certificate."""

    pass


class InstallError(CertRenewerError):
    """Raised when an issued certificate cannot be installed to the certificate directory."""

    pass


class MatchError(CertRenewerError):
    """Raised when no web-server configuration file belongs to a domain."""

    pass


class RewriteError(CertRenewerError):
    """Raised when a web-server configuration file cannot be rewritten safely."""

    pass


class ReloadError(CertRenewerError):
    """Raised when the web server fails its syntax check or reload."""

    pass
