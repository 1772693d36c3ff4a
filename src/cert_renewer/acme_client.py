"""
ACME client collaborator.

Thin wrapper around the acme.sh executable: locating it, upgrading it,
setting the default CA, issuing certificates over DNS-01 and installing
them into the certificate directory. Success of an issuance is decided by
the exit status and by the presence of the certificate artifacts, since a
zero exit status alone is not trusted.
"""

import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel
from .exceptions import InstallError, IssuanceError, ToolNotFoundError
from .models import CredentialSet


EXECUTABLE_NAME = "acme.sh"
DEFAULT_HOME = Path.home() / ".acme.sh"
SEARCH_PATHS = (
    DEFAULT_HOME / EXECUTABLE_NAME,
    Path("/root/.acme.sh") / EXECUTABLE_NAME,
)
INSTALL_HINT = "curl https://get.acme.sh | sh"

# acme.sh exits with 2 when a certificate is not yet due for renewal
RENEW_SKIPPED_EXIT = 2
MAINTENANCE_TIMEOUT = 300


@dataclass
class CommandResult:
    """Captured result of one external command."""

    argv: list[str]
    returncode: int
    output: str


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class AcmeClient:
    """Drives acme.sh for issuance and installation."""

    COMPONENT = "AcmeClient"

    def __init__(
        self,
        executable: Path,
        home: Optional[Path] = None,
        timeout: int = 600,
        logger: Optional[AuditLogger] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        """
        Initialize the client.

        Args:
            executable: Path to acme.sh
            home: acme.sh state directory holding issued artifacts
            timeout: Seconds allowed per call, on top of any DNS wait
            logger: Optional audit logger
            runner: Callable compatible with subprocess.run
        """
        self._executable = Path(executable)
        self._home = Path(home) if home else self.default_home(self._executable)
        self._timeout = timeout
        self._logger = logger
        self._runner = runner

    @property
    def executable(self) -> Path:
        return self._executable

    @property
    def home(self) -> Path:
        return self._home

    @staticmethod
    def default_home(executable: Path) -> Path:
        if executable.parent.name == ".acme.sh":
            return executable.parent
        return DEFAULT_HOME

    @staticmethod
    def locate(configured: Optional[Path] = None) -> Path:
        """
        Find an executable acme.sh.

        Looks at the configured path, the usual install locations and PATH.

        Raises:
            ToolNotFoundError: No executable candidate exists
        """
        candidates = []
        if configured:
            candidates.append(Path(configured))
        candidates.extend(SEARCH_PATHS)
        on_path = shutil.which(EXECUTABLE_NAME)
        if on_path:
            candidates.append(Path(on_path))

        for candidate in candidates:
            if is_executable(candidate):
                return candidate

        raise ToolNotFoundError(
            code="acme_not_found",
            message=f"acme.sh is not installed; install it with: {INSTALL_HINT}",
            details={"searched": [str(c) for c in candidates]},
        )

    def upgrade(self) -> bool:
        """Run ``acme.sh --upgrade``; failure is reported, not raised."""
        return self._maintenance(["--upgrade"], "acme.sh upgrade")

    def set_default_ca(self, server: str) -> bool:
        """Run ``acme.sh --set-default-ca --server <server>``."""
        return self._maintenance(["--set-default-ca", "--server", server], f"Default CA {server}")

    def issue(
        self,
        provider: str,
        domain: str,
        dns_sleep: int,
        credentials: Optional[CredentialSet] = None,
    ) -> CommandResult:
        """
        Issue or renew a certificate over the DNS-01 challenge.

        Args:
            provider: DNS API plugin (dns_xxx)
            domain: Domain as requested, wildcard prefix included
            dns_sleep: Seconds acme.sh waits for DNS propagation
            credentials: DNS API variables layered onto this call's environment only

        Raises:
            IssuanceError: Non-zero exit status, timeout, or missing artifacts
        """
        argv = [
            str(self._executable), "--issue",
            "--dns", provider,
            "-d", domain,
            "--dnssleep", str(dns_sleep),
        ]
        try:
            env = credentials.overlay(os.environ) if credentials is not None else None
            result = self._run(argv, timeout=dns_sleep + self._timeout, env=env)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise IssuanceError(
                code="issue_not_run",
                message=f"Issuance for {domain} did not complete: {e}",
                details={"domain": domain, "provider": provider},
            )

        if result.returncode not in (0, RENEW_SKIPPED_EXIT):
            raise IssuanceError(
                code="issue_failed",
                message=f"acme.sh --issue failed for {domain} with exit status {result.returncode}",
                details={"domain": domain, "provider": provider, "returncode": result.returncode},
            )

        if self.find_artifacts(domain) is None:
            raise IssuanceError(
                code="artifacts_missing",
                message=f"acme.sh reported success but no certificate exists for {domain}",
                details={
                    "domain": domain,
                    "provider": provider,
                    "returncode": result.returncode,
                    "searched": [str(d) for d in self.artifact_dirs(domain)],
                },
            )

        if result.returncode == RENEW_SKIPPED_EXIT:
            self._log(LogLevel.INFO, f"Certificate for {domain} is not due for renewal yet")
        return result

    def install(self, domain: str, key_path: Path, cert_path: Path) -> CommandResult:
        """
        Copy the issued key and full chain to their stable locations.

        Raises:
            InstallError: Non-zero exit status or empty/missing output files
        """
        argv = [
            str(self._executable), "--install-cert",
            "-d", domain,
            "--key-file", str(key_path),
            "--fullchain-file", str(cert_path),
        ]
        try:
            result = self._run(argv, timeout=self._timeout)
        except (OSError, subprocess.TimeoutExpired) as e:
            raise InstallError(
                code="install_not_run",
                message=f"Installation for {domain} did not complete: {e}",
                details={"domain": domain},
            )

        if result.returncode != 0:
            raise InstallError(
                code="install_failed",
                message=f"acme.sh --install-cert failed for {domain} with exit status {result.returncode}",
                details={"domain": domain, "returncode": result.returncode},
            )

        for path in (Path(key_path), Path(cert_path)):
            if not path.is_file() or path.stat().st_size == 0:
                raise InstallError(
                    code="empty_output",
                    message=f"Installed file is missing or empty: {path}",
                    details={"domain": domain, "file": str(path)},
                )
        return result

    def artifact_dirs(self, domain: str) -> list[Path]:
        """Directories acme.sh keeps a domain's artifacts in (ECC first)."""
        return [self._home / f"{domain}_ecc", self._home / domain]

    def find_artifacts(self, domain: str) -> Optional[tuple[Path, Path]]:
        """Return the (certificate, key) pair acme.sh produced, if both are non-empty."""
        for directory in self.artifact_dirs(domain):
            cert = directory / f"{domain}.cer"
            key = directory / f"{domain}.key"
            if all(p.is_file() and p.stat().st_size > 0 for p in (cert, key)):
                return cert, key
        return None

    def _maintenance(self, args: list[str], label: str) -> bool:
        argv = [str(self._executable), *args]
        try:
            result = self._run(argv, timeout=MAINTENANCE_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            self._log(LogLevel.WARN, f"{label} did not complete: {e}")
            return False
        if result.returncode != 0:
            self._log(LogLevel.WARN, f"{label} failed", {"returncode": result.returncode})
            return False
        self._log(LogLevel.INFO, f"{label} done")
        return True

    def _run(
        self,
        argv: list[str],
        timeout: int,
        env: Optional[dict[str, str]] = None,
    ) -> CommandResult:
        self._log(LogLevel.INFO, "Running " + " ".join(argv))
        completed = self._runner(
            argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            env=env,
            check=False,
        )
        output = completed.stdout or ""
        level = LogLevel.DEBUG if completed.returncode in (0, RENEW_SKIPPED_EXIT) else LogLevel.ERROR
        for line in output.splitlines():
            if line.strip():
                self._log(level, line.rstrip())
        return CommandResult(argv=argv, returncode=completed.returncode, output=output)

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
