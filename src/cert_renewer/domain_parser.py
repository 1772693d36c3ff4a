"""
Domain line parsing and validation module.

Turns a ``domain|provider[|account]`` line from the configuration file into
an immutable DomainSpec. Handles wildcard detection, main-domain extraction,
label/TLD validation and DNS provider validation.
"""

import re
from dataclasses import dataclass
from typing import Optional

import idna

from cert_renewer.enums import DomainFormatErrorCode
from cert_renewer.exceptions import (
    InvalidAccountIdError,
    InvalidDomainFormatError,
    InvalidProviderFormatError,
    MissingProviderError,
)
from cert_renewer.models import DomainSpec


WILDCARD_PREFIX = "*."
PROVIDER_PREFIX = "dns_"
FIELD_SEPARATOR = "|"

MAX_LABEL_LENGTH = 63

# Anything outside letters, digits, dot, underscore, asterisk and hyphen
FORBIDDEN_CHARS_PATTERN = re.compile(r"[^A-Za-z0-9._*-]")
TLD_PATTERN = re.compile(r"^[A-Za-z]+$")
ACCOUNT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass
class DomainFormatError:
    """Structured error information for domain validation failures."""

    code: DomainFormatErrorCode
    message: str
    details: dict


@dataclass
class DomainValidationResult:
    """Result of validating the domain part of a line."""

    valid: bool
    main_domain: Optional[str]
    error: Optional[DomainFormatError]


def is_wildcard_domain(domain: str) -> bool:
    """Return True if the domain starts with the literal ``*.`` prefix."""
    return domain.startswith(WILDCARD_PREFIX)


def extract_main_domain(domain: str) -> str:
    """
    Strip the wildcard prefix from a domain.

    ``*.example.com`` and ``*.v1.example.com`` become ``example.com`` and
    ``v1.example.com``; any other domain, at any depth, is returned as-is.
    """
    if is_wildcard_domain(domain):
        return domain[len(WILDCARD_PREFIX):]
    return domain


def validate_domain(domain: str) -> DomainValidationResult:
    """
    Validate the domain part of a configuration line.

    The wildcard prefix is removed first and the remainder is checked.
    Underscores are let through in non-TLD labels even though some CAs
    refuse them.

    Args:
        domain: Domain as written in the configuration file

    Returns:
        DomainValidationResult with the main domain or a structured error
    """
    main_domain = extract_main_domain(domain)

    def fail(code: DomainFormatErrorCode, message: str, **details) -> DomainValidationResult:
        details.setdefault("domain", domain)
        return DomainValidationResult(
            valid=False,
            main_domain=None,
            error=DomainFormatError(code=code, message=message, details=details),
        )

    if not main_domain:
        return fail(DomainFormatErrorCode.EMPTY_INPUT, "Domain is empty")

    if main_domain.lower().endswith(".conf"):
        return fail(
            DomainFormatErrorCode.CONF_SUFFIX,
            "Domain ends with '.conf'; list the domain, not its config file",
        )

    forbidden = FORBIDDEN_CHARS_PATTERN.findall(main_domain)
    if forbidden:
        return fail(
            DomainFormatErrorCode.FORBIDDEN_CHARS,
            "Domain contains forbidden characters",
            forbidden_chars=sorted(set(forbidden)),
        )

    if "*" in main_domain:
        return fail(
            DomainFormatErrorCode.MISPLACED_WILDCARD,
            "Wildcard is only allowed as a leading '*.'",
        )

    if main_domain.startswith(".") or main_domain.endswith("."):
        return fail(DomainFormatErrorCode.EDGE_DOT, "Domain starts or ends with a dot")

    if ".." in main_domain:
        return fail(DomainFormatErrorCode.CONSECUTIVE_DOTS, "Domain contains consecutive dots")

    labels = main_domain.split(".")
    if len(labels) < 2:
        return fail(
            DomainFormatErrorCode.TOO_FEW_LABELS,
            "Domain needs at least two labels (name.tld)",
        )

    for label in labels:
        if not 1 <= len(label) <= MAX_LABEL_LENGTH:
            return fail(
                DomainFormatErrorCode.LABEL_LENGTH,
                f"Label length must be between 1 and {MAX_LABEL_LENGTH}",
                label=label,
            )
        if label.startswith("-") or label.endswith("-"):
            return fail(
                DomainFormatErrorCode.LABEL_HYPHEN,
                "Label starts or ends with a hyphen",
                label=label,
            )

    tld = labels[-1]
    if not TLD_PATTERN.match(tld):
        return fail(
            DomainFormatErrorCode.INVALID_TLD,
            f"TLD '{tld}' must contain letters only",
            tld=tld,
        )

    for label in labels:
        if label.lower().startswith("xn--"):
            try:
                idna.decode(label.lower())
            except (idna.IDNAError, UnicodeError) as e:
                return fail(
                    DomainFormatErrorCode.INVALID_PUNYCODE,
                    f"Label '{label}' is not valid punycode: {e}",
                    label=label,
                )

    return DomainValidationResult(valid=True, main_domain=main_domain, error=None)


class DomainSpecParser:
    """
    Parses configuration lines into DomainSpec values.

    Accepted forms are ``domain|provider`` and ``domain|provider|account``.
    Only the first two separators split the line and every field is trimmed.
    """

    def parse(self, line: str) -> DomainSpec:
        """
        Parse one domain line.

        Args:
            line: Raw line from the configuration file

        Returns:
            Immutable DomainSpec

        Raises:
            MissingProviderError: The line has no '|' separator
            InvalidDomainFormatError: The domain fails label/TLD validation
            InvalidProviderFormatError: The provider is empty or lacks 'dns_'
            InvalidAccountIdError: The account suffix has illegal characters
        """
        stripped = line.strip()

        if FIELD_SEPARATOR not in stripped:
            raise MissingProviderError(
                code=DomainFormatErrorCode.MISSING_PROVIDER.value,
                message=f"No DNS provider given for '{stripped}' (expected domain|dns_xxx)",
                details={"line": line},
            )

        fields = [part.strip() for part in stripped.split(FIELD_SEPARATOR, 2)]
        domain, provider = fields[0], fields[1]
        account_id = fields[2] if len(fields) > 2 and fields[2] else None

        result = validate_domain(domain)
        if not result.valid:
            raise InvalidDomainFormatError(
                code=result.error.code.value,
                message=result.error.message,
                details={**result.error.details, "line": line},
            )

        self.validate_provider(provider, line)

        if account_id is not None and not ACCOUNT_ID_PATTERN.match(account_id):
            raise InvalidAccountIdError(
                code=DomainFormatErrorCode.INVALID_ACCOUNT.value,
                message=f"Account id '{account_id}' may only contain letters, digits, '_' and '-'",
                details={"line": line, "account_id": account_id},
            )

        return DomainSpec(
            raw=line,
            domain=domain,
            is_wildcard=is_wildcard_domain(domain),
            main_domain=result.main_domain,
            dns_provider=provider,
            account_id=account_id,
        )

    @staticmethod
    def validate_provider(provider: str, line: str = "") -> None:
        """Raise InvalidProviderFormatError unless provider looks like dns_xxx."""
        if not provider or not provider.startswith(PROVIDER_PREFIX):
            raise InvalidProviderFormatError(
                code=DomainFormatErrorCode.INVALID_PROVIDER.value,
                message=f"DNS provider '{provider}' is not in dns_xxx format",
                details={"line": line, "provider": provider},
            )
