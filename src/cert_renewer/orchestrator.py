"""
Renewal Orchestrator for the certificate renewer.

Coordinates the components for one renewal run:
- Pre-scan of every domain line; missing providers or malformed domains
  abort the run before the ACME client is contacted
- Strictly sequential issue and install per domain, with credentials
  scoped to that domain's ACME call
- Matching and rewriting of web-server configuration files for every
  installed certificate, after confirmation
- Syntax check and reload of the web server
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .acme_client import AcmeClient
from .audit_logger import AuditLogger
from .config import DomainLine, RenewConfig
from .config_rewriter import TEMP_FILES, ConfigRewriter
from .credentials import CredentialResolver
from .domain_matcher import DomainMatcher
from .domain_parser import DomainSpecParser, is_wildcard_domain
from .enums import DomainStage, LogLevel
from .exceptions import (
    ConfigError,
    CredentialError,
    InstallError,
    InvalidProviderFormatError,
    IssuanceError,
    MatchError,
    ParseError,
    ReloadError,
    RewriteError,
    ToolNotFoundError,
)
from .models import DomainOutcome, DomainSpec, RunSummary, SuccessRecord
from .prompt import ask_yes_no
from .web_server import WebServer


EXIT_OK = 0
EXIT_FATAL = 1
EXIT_TOOL_MISSING = 2

SEPARATOR = "-" * 61


@dataclass
class LineReport:
    """Pre-scan outcome of one domain line."""

    line: DomainLine
    spec: Optional[DomainSpec] = None
    error: Optional[ParseError] = None

    @property
    def fatal(self) -> bool:
        return self.error is not None and not isinstance(self.error, InvalidProviderFormatError)


@dataclass
class PrevalidationReport:
    """Pre-scan outcome of the whole configuration file."""

    lines: list[LineReport] = field(default_factory=list)

    @property
    def specs(self) -> list[DomainSpec]:
        return [report.spec for report in self.lines if report.spec is not None]

    @property
    def fatal(self) -> list[LineReport]:
        return [report for report in self.lines if report.fatal]

    @property
    def deferred(self) -> list[LineReport]:
        return [
            report for report in self.lines
            if report.error is not None and not report.fatal
        ]

    @property
    def ok(self) -> bool:
        return not self.fatal


def ensure_directories(config: RenewConfig) -> None:
    """
    Create the log and certificate directories.

    Raises:
        ConfigError: A directory cannot be created
    """
    for directory in (config.logging.log_dir, config.cert_dir):
        if directory is None:
            continue
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(
                code="directory_failed",
                message=f"Cannot create directory {directory}: {e}",
                details={"directory": str(directory)},
            )


class RenewOrchestrator:
    """
    Main orchestrator for certificate renewal runs.

    Domains are processed one at a time to respect CA rate limits and to
    keep a single writer on the backup directory.
    """

    COMPONENT = "RenewOrchestrator"

    def __init__(
        self,
        config: RenewConfig,
        acme_client: Optional[AcmeClient] = None,
        logger: Optional[AuditLogger] = None,
        assume_yes: bool = False,
        confirm: Optional[Callable[[SuccessRecord, list[str]], bool]] = None,
        detect_web_server: Optional[Callable[[], Optional[WebServer]]] = None,
    ) -> None:
        """
        Initialize the renewal orchestrator.

        Args:
            config: Loaded renewal configuration
            acme_client: ACME client; located from the configuration when None
            logger: Optional audit logger
            assume_yes: Rewrite configuration files without asking
            confirm: Replaces the interactive prompt when given
            detect_web_server: Replaces web-server detection when given
        """
        self._config = config
        self._acme_client = acme_client
        self._logger = logger
        self._assume_yes = assume_yes
        self._confirm = confirm
        self._detect_web_server = detect_web_server or (lambda: WebServer.detect(logger=logger))

        self._parser = DomainSpecParser()
        self._matcher = DomainMatcher(
            str(config.nginx_conf_dir) if config.nginx_conf_dir else None
        )
        self._rewriter = ConfigRewriter(
            backup_dir=str(config.backup_dir) if config.backup_dir else None,
            logger=logger,
        )
        self._resolver = CredentialResolver(str(config.dns_credentials_file), logger=logger)

    @property
    def config(self) -> RenewConfig:
        return self._config

    @property
    def matcher(self) -> DomainMatcher:
        return self._matcher

    @property
    def rewriter(self) -> ConfigRewriter:
        return self._rewriter

    def prevalidate(self) -> PrevalidationReport:
        """Parse every domain line without side effects."""
        report = PrevalidationReport()
        for line in self._config.domain_lines:
            try:
                report.lines.append(LineReport(line=line, spec=self._parser.parse(line.text)))
            except ParseError as e:
                report.lines.append(LineReport(line=line, error=e))
        return report

    def run(self) -> RunSummary:
        """
        Perform a complete renewal run.

        Returns:
            RunSummary; ``exit_code`` is non-zero only for fatal conditions
        """
        summary = RunSummary(start_time=datetime.now().isoformat(timespec="seconds"))
        self._log_banner()

        try:
            report = self.prevalidate()
            if not report.ok:
                self._report_fatal_lines(report)
                summary.exit_code = EXIT_FATAL
                summary.fatal_error = "configuration contains invalid domain lines"
                return summary

            ensure_directories(self._config)
            acme = self._acme_client or self._build_acme_client()
            acme.upgrade()
            acme.set_default_ca(self._config.ca_provider)

            installed = self._process_domains(report, acme, summary)
            self._update_configs(installed)

            if summary.successes:
                summary.reloaded = self._reload()

        except ToolNotFoundError as e:
            self._log_error(str(e), e)
            summary.exit_code = EXIT_TOOL_MISSING
            summary.fatal_error = e.message
        except (ConfigError, CredentialError) as e:
            self._log_error(f"Aborting run: {e}", e)
            summary.exit_code = EXIT_FATAL
            summary.fatal_error = e.message
        finally:
            TEMP_FILES.purge()
            summary.end_time = datetime.now().isoformat(timespec="seconds")
            self._log_summary(summary)

        return summary

    def process_domain(
        self,
        spec: DomainSpec,
        acme: AcmeClient,
        position: str = "",
    ) -> DomainOutcome:
        """
        Issue and install the certificate for one domain.

        Raises:
            CredentialError: Credentials cannot be resolved (fatal to the run)
        """
        config = self._config
        self._log_info(SEPARATOR)
        self._log_info(
            f"{position} Processing {spec.domain}".strip(),
            {
                "certificate_type": spec.certificate_type.value,
                "main_domain": spec.main_domain,
                "dns_provider": spec.dns_provider,
                "account_id": spec.account_id,
            },
        )

        credentials = self._resolver.resolve(spec.dns_provider, spec.account_id)

        try:
            acme.issue(spec.dns_provider, spec.domain, config.dns_sleep, credentials=credentials)
        except IssuanceError as e:
            self._log_error(f"Issuance failed for {spec.domain}, skipping install", e)
            self._log_warn("Check the DNS provider and its API credentials")
            return DomainOutcome(domain=spec.domain, stage=DomainStage.ISSUE_FAILED, errors=[e.message])
        self._log_info(f"Certificate issued/renewed: {spec.domain}")

        try:
            acme.install(
                spec.domain,
                key_path=config.key_path(spec.main_domain),
                cert_path=config.cert_path(spec.main_domain),
            )
        except InstallError as e:
            self._log_error(f"Install failed for {spec.domain}", e)
            return DomainOutcome(domain=spec.domain, stage=DomainStage.INSTALL_FAILED, errors=[e.message])
        self._log_info(f"Certificate installed: {spec.domain}")

        return DomainOutcome(domain=spec.domain, stage=DomainStage.INSTALLED)

    def update_domain_configs(self, record: SuccessRecord, outcome: DomainOutcome) -> None:
        """Match, confirm and rewrite the configuration files of an installed domain."""
        try:
            match = self._matcher.match(record.main_domain, is_wildcard_domain(record.domain))
        except MatchError as e:
            self._log_info(f"No configuration update for {record.domain}: {e.message}")
            return

        self._log_info(f"Configuration files for {record.domain}:", {"files": match.files})
        if not self._confirmed(record, match.files):
            self._log_info(f"Configuration update skipped for {record.domain}")
            return

        cert_path = str(self._config.cert_path(record.main_domain))
        key_path = str(self._config.key_path(record.main_domain))
        for conf_file in match.files:
            try:
                outcome.rewrites.append(self._rewriter.rewrite(conf_file, cert_path, key_path))
            except RewriteError as e:
                outcome.errors.append(e.message)
                self._log_error(f"Rewrite failed for {conf_file}", e)

        updated = sum(1 for rewrite in outcome.rewrites if rewrite.modified)
        self._log_info(
            f"Configuration update done for {record.domain}: "
            f"{len(match.files)} file(s) found, {updated} updated"
        )

    def _process_domains(
        self,
        report: PrevalidationReport,
        acme: AcmeClient,
        summary: RunSummary,
    ) -> list[tuple[SuccessRecord, DomainOutcome]]:
        total = len(report.lines)
        self._log_info(f"{total} domain(s) to process")
        installed = []

        for index, line_report in enumerate(report.lines, start=1):
            position = f"[{index}/{total}]"
            if line_report.spec is None:
                error = line_report.error
                self._log_error(f"{position} Skipping line {line_report.line.line_number}", error)
                summary.outcomes.append(DomainOutcome(
                    domain=line_report.line.text,
                    stage=DomainStage.SKIPPED,
                    errors=[error.message],
                ))
                continue

            spec = line_report.spec
            outcome = self.process_domain(spec, acme, position)
            summary.outcomes.append(outcome)
            if outcome.stage is DomainStage.INSTALLED:
                record = SuccessRecord(domain=spec.domain, main_domain=spec.main_domain)
                summary.successes.append(record)
                installed.append((record, outcome))

        return installed

    def _update_configs(self, installed: list[tuple[SuccessRecord, DomainOutcome]]) -> None:
        if not installed:
            return
        self._log_info(SEPARATOR)
        self._log_info(f"{len(installed)} certificate(s) installed, updating web-server configuration")
        for record, outcome in installed:
            self.update_domain_configs(record, outcome)

    def _confirmed(self, record: SuccessRecord, files: list[str]) -> bool:
        if self._assume_yes:
            return True
        if self._confirm is not None:
            return self._confirm(record, files)
        return ask_yes_no(
            f"Point {len(files)} configuration file(s) at the new {record.main_domain} certificate?",
            timeout=self._config.prompt_timeout,
            default=False,
        )

    def _reload(self) -> bool:
        self._log_info(SEPARATOR)
        server = self._detect_web_server()
        if server is None:
            self._log_warn("No nginx or OpenResty found, skipping reload; reload manually")
            return False

        self._log_info(f"Detected web server: {server.server_type.value}")
        try:
            server.reload()
        except ReloadError as e:
            self._log_warn(f"{e.message}; check the server manually")
            return False
        self._log_info(f"{server.server_type.value} reloaded")
        return True

    def _build_acme_client(self) -> AcmeClient:
        executable = AcmeClient.locate(self._config.acme_sh_path)
        self._log_info(f"acme.sh found: {executable}")
        return AcmeClient(
            executable,
            home=self._config.acme_home,
            timeout=self._config.acme_timeout,
            logger=self._logger,
        )

    def _report_fatal_lines(self, report: PrevalidationReport) -> None:
        fatal = report.fatal
        self._log_error(f"{len(fatal)} domain line(s) are invalid, nothing was issued")
        for line_report in fatal:
            self._log_error(
                f"  line {line_report.line.line_number}: {line_report.line.text}",
                line_report.error,
            )
        self._log_info("Format: domain|dns_provider[|account], e.g. *.example.com|dns_gd")

    def _log_banner(self) -> None:
        config = self._config
        self._log_info("=" * 61)
        self._log_info(
            "Renewal run started",
            {
                "config_file": str(config.config_file),
                "cert_dir": str(config.cert_dir),
                "log_file": str(config.logging.log_file),
                "ca_provider": config.ca_provider,
                "dns_credentials_file": str(config.dns_credentials_file),
                "dns_sleep": config.dns_sleep,
                "nginx_conf_dir": str(config.nginx_conf_dir) if config.nginx_conf_dir else None,
            },
        )
        for warning in config.warnings:
            self._log_warn(warning)
        if config.nginx_conf_dir is None or not config.nginx_conf_dir.is_dir():
            self._log_info("Web-server configuration directory unset or missing")

    def _log_summary(self, summary: RunSummary) -> None:
        counts = {}
        for outcome in summary.outcomes:
            counts[outcome.stage.value] = counts.get(outcome.stage.value, 0) + 1
        self._log_info(SEPARATOR)
        self._log_info(
            "Renewal run finished",
            {
                "start_time": summary.start_time,
                "end_time": summary.end_time,
                "exit_code": summary.exit_code,
                "stages": counts,
                "files_updated": summary.files_updated,
                "reloaded": summary.reloaded,
            },
        )
        self._log_info("=" * 61)

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)

    def _log_warn(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.WARN, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Optional[Exception] = None) -> None:
        if self._logger:
            self._logger.log_error(self.COMPONENT, message, error=error)
