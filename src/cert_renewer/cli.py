"""
Command-line interface for the certificate renewer.

This module provides the main CLI entry point with commands for:
- run: Issue/renew every configured certificate and deploy it
- validate: Pre-scan the configuration file without side effects
- find-configs: Show the web-server configuration files of a domain
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .audit_logger import AuditLogger
from .config import RenewConfig, load_config
from .config_rewriter import TEMP_FILES
from .domain_matcher import DomainMatcher
from .domain_parser import extract_main_domain, is_wildcard_domain, validate_domain
from .exceptions import ConfigError, MatchError
from .orchestrator import EXIT_FATAL, RenewOrchestrator, ensure_directories


EXIT_INTERRUPTED = 130
DEFAULT_CONFIG_FILE = "config"


def _terminate(signum, frame) -> None:
    raise KeyboardInterrupt


def _load(args: argparse.Namespace) -> Optional[RenewConfig]:
    try:
        return load_config(Path(args.config))
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        hint = e.details.get("hint")
        if hint:
            print(f"Hint: {hint}", file=sys.stderr)
        return None


def create_logger(
    config: RenewConfig,
    output_format: Optional[str] = None,
    verbose: bool = False,
    to_file: bool = True,
) -> AuditLogger:
    """Build the audit logger for a run from configuration and CLI flags."""
    return AuditLogger(
        output_format=output_format or config.logging.output_format,
        output_stream=sys.stdout,
        log_file=config.logging.log_file if to_file else None,
        level="debug" if verbose else config.logging.level,
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    config = _load(args)
    if config is None:
        return EXIT_FATAL

    if args.prompt_timeout is not None:
        config.prompt_timeout = args.prompt_timeout

    try:
        ensure_directories(config)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FATAL

    logger = create_logger(config, args.log_format, args.verbose)
    orchestrator = RenewOrchestrator(config=config, logger=logger, assume_yes=args.yes)

    previous = signal.signal(signal.SIGTERM, _terminate)
    try:
        summary = orchestrator.run()
    except KeyboardInterrupt:
        TEMP_FILES.purge()
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED
    finally:
        signal.signal(signal.SIGTERM, previous)

    print(
        f"\nSummary: {len(summary.successes)}/{len(summary.outcomes)} certificate(s) "
        f"installed, {summary.files_updated} configuration file(s) updated"
    )
    if summary.fatal_error:
        print(f"Aborted: {summary.fatal_error}", file=sys.stderr)
    return summary.exit_code


def cmd_validate(args: argparse.Namespace) -> int:
    """Handle the 'validate' command."""
    config = _load(args)
    if config is None:
        return EXIT_FATAL

    for warning in config.warnings:
        print(f"Warning: {warning}")

    report = RenewOrchestrator(config=config).prevalidate()
    if not report.lines:
        print("No domain lines found.")

    for line_report in report.lines:
        number = line_report.line.line_number
        if line_report.spec is not None:
            spec = line_report.spec
            account = f", account {spec.account_id}" if spec.account_id else ""
            print(
                f"  line {number}: OK   {spec.domain} -> {spec.main_domain} "
                f"({spec.certificate_type.value}, {spec.dns_provider}{account})"
            )
        else:
            label = "FAIL" if line_report.fatal else "SKIP"
            print(f"  line {number}: {label} {line_report.line.text}: {line_report.error.message}")

    if not report.ok:
        print(f"\n{len(report.fatal)} invalid line(s): a run would abort before issuing anything.")
        return EXIT_FATAL

    print(f"\nConfiguration at {config.config_file} is valid.")
    return 0


def cmd_find_configs(args: argparse.Namespace) -> int:
    """Handle the 'find-configs' command."""
    config = _load(args)
    if config is None:
        return EXIT_FATAL

    result = validate_domain(args.domain)
    if not result.valid:
        print(f"Error: {result.error.message}", file=sys.stderr)
        return EXIT_FATAL

    matcher = DomainMatcher(str(config.nginx_conf_dir) if config.nginx_conf_dir else None)
    try:
        match = matcher.match(extract_main_domain(args.domain), is_wildcard_domain(args.domain))
    except MatchError as e:
        print(e.message)
        return EXIT_FATAL

    print(f"Configuration files for {args.domain}:")
    for conf_file in match.files:
        print(f"  - {conf_file}")
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="cert-renewer",
        description="Issue, renew and deploy TLS certificates with acme.sh",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    config_help = f"Path to configuration file (default: ./{DEFAULT_CONFIG_FILE})"

    # 'run' command
    run_parser = subparsers.add_parser(
        "run",
        help="Issue/renew all configured certificates and deploy them",
    )
    run_parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_FILE,
        help=config_help,
    )
    run_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Update web-server configuration files without asking",
    )
    run_parser.add_argument(
        "--prompt-timeout",
        type=int,
        default=None,
        help="Seconds to wait for an answer before skipping the update",
    )
    run_parser.add_argument(
        "--log-format",
        choices=["text", "json", "both"],
        default=None,
        help="Log output format (default: text)",
    )
    run_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug output, including acme.sh output",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'validate' command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Check every domain line without contacting the CA",
    )
    validate_parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_FILE,
        help=config_help,
    )
    validate_parser.set_defaults(func=cmd_validate)

    # 'find-configs' command
    find_parser = subparsers.add_parser(
        "find-configs",
        help="List the web-server configuration files belonging to a domain",
    )
    find_parser.add_argument(
        "domain",
        help="Domain, e.g. *.example.com or www.example.com",
    )
    find_parser.add_argument(
        "--config", "-c",
        default=DEFAULT_CONFIG_FILE,
        help=config_help,
    )
    find_parser.set_defaults(func=cmd_find_configs)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except KeyboardInterrupt:
        TEMP_FILES.purge()
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
