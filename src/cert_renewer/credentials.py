"""
Credential Resolver module.

Reads a DNS credentials file of ``export NAME=value`` lines and resolves the
variables handed to the ACME client for one provider account.

Resolution runs in two passes:

1. Default pass: every variable whose name carries no account suffix.
2. Account pass (only when an account id is given): variables named
   ``<base>_account<id>`` or ``<base>_<id>`` are re-exported as ``<base>``.

Account values override default values of the same base name. The result is
a CredentialSet that is layered onto the environment of a single ACME call
and never exported to this process.

Known edge case: for names with two or more underscores, telling
``GD_Key_prod`` (suffixed) apart from a provider's own multi-part name
relies on the last ``_`` token looking like a standard credential word
(Key, Secret, Token, Id, ...). A provider variable ending in
some other word is treated as account-suffixed and left out of the default
pass.
"""

import os
import re
from typing import Optional

from dotenv.parser import parse_stream

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import CredentialError
from .models import CredentialSet


EXPORT_PATTERN = re.compile(r"^\s*export\s+")
VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ACCOUNT_SUFFIX_PATTERN = re.compile(r"_account[A-Za-z0-9-]+$")

# Characters that would allow command injection if a value reached a shell
SHELL_METACHARS = frozenset("`$();")

# Trailing name tokens that belong to a provider's own variable names
STANDARD_NAME_WORDS = (
    "key", "secret", "token", "id", "email", "mail", "user", "username",
    "login", "password", "pass", "pwd", "name", "domain", "zone", "url",
    "endpoint", "host", "server", "region", "project", "tenant", "api",
    "account", "customer", "port", "ttl", "pat",
)


def has_shell_metachars(value: str) -> bool:
    """Return True if value contains any of `` ` $ ( ) ; ``."""
    return any(char in SHELL_METACHARS for char in value)


def is_account_suffixed(name: str) -> bool:
    """
    Return True if a variable name looks like it carries an account suffix.

    ``Ali_Key`` and ``OVH_AK`` are default variables; ``Ali_Key_account1``
    and ``GD_Key_prod`` are suffixed. A ``Prefix_Word`` name is always a
    default unless it uses the ``_account<id>`` form.
    """
    if ACCOUNT_SUFFIX_PATTERN.search(name):
        return True
    if name.strip("_").count("_") <= 1:
        return False
    token = name.rstrip("_").rsplit("_", 1)[-1].lower()
    return not token.endswith(STANDARD_NAME_WORDS)


def strip_account_suffix(name: str, account_id: str) -> Optional[str]:
    """Return the base name if ``name`` ends with the account's suffix, else None."""
    for suffix in (f"_account{account_id}", f"_{account_id}"):
        if name.endswith(suffix):
            base = name[: -len(suffix)]
            if VARIABLE_NAME_PATTERN.match(base):
                return base
    return None


class CredentialResolver:
    """Resolves DNS API credentials with default-then-override precedence."""

    COMPONENT = "CredentialResolver"

    def __init__(self, credentials_file: str, logger: Optional[AuditLogger] = None) -> None:
        """
        Initialize the resolver.

        Args:
            credentials_file: Path to the ``export NAME=value`` credentials file
            logger: Optional audit logger
        """
        self._credentials_file = credentials_file
        self._logger = logger

    @property
    def credentials_file(self) -> str:
        return self._credentials_file

    def read_exports(self) -> list[tuple[str, str]]:
        """
        Read every ``export NAME=value`` declaration in file order.

        Raises:
            CredentialError: The file is missing or unreadable
        """
        path = self._credentials_file
        if not os.path.isfile(path):
            raise CredentialError(
                code="file_missing",
                message=f"DNS credentials file does not exist: {path}",
                details={
                    "file": path,
                    "hint": "copy dns_credentials.example and fill in your API keys",
                },
            )

        try:
            with open(path, "r", encoding="utf-8") as f:
                bindings = list(parse_stream(f))
        except (OSError, UnicodeDecodeError) as e:
            raise CredentialError(
                code="file_unreadable",
                message=f"DNS credentials file is not readable: {e}",
                details={"file": path},
            )

        exports = []
        for binding in bindings:
            if binding.key is None or binding.value is None:
                continue
            if not EXPORT_PATTERN.match(binding.original.string):
                continue
            if not VARIABLE_NAME_PATTERN.match(binding.key):
                self._log(
                    LogLevel.WARN,
                    f"Ignoring invalid variable name on line {binding.original.line}",
                    {"name": binding.key},
                )
                continue
            exports.append((binding.key, binding.value))
        return exports

    def resolve(self, provider: str, account_id: Optional[str] = None) -> CredentialSet:
        """
        Resolve the credentials for a DNS provider account.

        Args:
            provider: DNS provider (dns_xxx), used for messages
            account_id: Optional account suffix selecting an alternate set

        Returns:
            CredentialSet whose variables overlay the ACME client's environment

        Raises:
            CredentialError: The file is unusable or neither pass found anything
        """
        exports = self.read_exports()
        credential_set = CredentialSet(account_id=account_id)

        default_vars = {}
        for name, value in exports:
            if is_account_suffixed(name):
                continue
            if self._accept(name, value, credential_set):
                default_vars[name] = value
                credential_set.default_names.append(name)

        account_vars = {}
        if account_id:
            for name, value in exports:
                base = strip_account_suffix(name, account_id)
                if base is None:
                    continue
                if self._accept(name, value, credential_set):
                    account_vars[base] = value
                    credential_set.account_names.append(base)

            if not account_vars:
                self._log(
                    LogLevel.WARN,
                    f"No credentials found for account '{account_id}', using defaults",
                    {"provider": provider, "account_id": account_id},
                )

        if not default_vars and not account_vars:
            raise CredentialError(
                code="no_credentials",
                message=f"No usable credentials for {provider} in {self._credentials_file}",
                details={
                    "provider": provider,
                    "account_id": account_id,
                    "file": self._credentials_file,
                    "rejected": list(credential_set.rejected_names),
                },
            )

        credential_set.variables.update(default_vars)
        credential_set.variables.update(account_vars)

        self._log(
            LogLevel.INFO,
            f"Credentials resolved for {provider}",
            {
                "account_id": account_id,
                "default_names": list(credential_set.default_names),
                "account_names": list(credential_set.account_names),
            },
        )
        return credential_set

    def _accept(self, name: str, value: str, credential_set: CredentialSet) -> bool:
        if has_shell_metachars(value):
            credential_set.rejected_names.append(name)
            self._log(
                LogLevel.WARN,
                f"Skipping {name}: value contains shell metacharacters",
                {"name": name},
            )
            return False
        return True

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
