"""
Config Rewriter module.

Points the ``ssl_certificate`` / ``ssl_certificate_key`` directives of an
nginx-style vhost file at a new certificate/key pair. A directive is found at
the start of a line or after a ``;`` or ``{`` on the same line, so
``ssl_certificate a.pem; ssl_certificate_key a.key;`` on one line is handled.
Directives after a ``#`` are commented out and left alone.

Per file the rewriter:

1. Skips files without TLS directives.
2. Skips files whose first directives already name the target paths.
3. Substitutes every directive and checks that none still names an old path.
   A substitution that changes nothing stops here.
4. Copies the file into the backup directory.
5. Writes the substituted content to a temporary file beside the target and
   renames it over the original.

A backup therefore exists if and only if the file was modified.
"""

import atexit
import os
import re
import shutil
import tempfile
from datetime import datetime
from typing import Optional

from .audit_logger import AuditLogger
from .credentials import has_shell_metachars
from .enums import LogLevel, RewriteErrorCode, RewriteStatus
from .exceptions import RewriteError
from .models import RewriteResult


BACKUP_DIRNAME = "backup"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

CERT_DIRECTIVE = "ssl_certificate"
KEY_DIRECTIVE = "ssl_certificate_key"


def _directive_value(name: str) -> re.Pattern:
    return re.compile(rf"(?:^|(?<=[;{{]))([ \t]*){name}[ \t]+([^;\n]+);", re.MULTILINE)


CERT_VALUE_PATTERN = _directive_value(CERT_DIRECTIVE)
KEY_VALUE_PATTERN = _directive_value(KEY_DIRECTIVE)


def _is_commented(content: str, position: int) -> bool:
    line_start = content.rfind("\n", 0, position) + 1
    return "#" in content[line_start:position]


def _substitute(pattern: re.Pattern, content: str, directive: str, value: str) -> str:
    def replace(m: re.Match) -> str:
        if _is_commented(content, m.start()):
            return m.group(0)
        return f"{m.group(1)}{directive} {value};"

    return pattern.sub(replace, content)


def normalize_path(value: str) -> str:
    """Trim whitespace, surrounding quotes and a trailing slash from a directive value."""
    value = value.strip().strip("'\"").strip()
    if value.endswith("/"):
        value = value[:-1]
    return value.strip()


def directive_values(pattern: re.Pattern, content: str) -> list[str]:
    """Return the normalized values of every active directive matching ``pattern``."""
    return [
        normalize_path(m.group(2))
        for m in pattern.finditer(content)
        if not _is_commented(content, m.start())
    ]


def current_paths(content: str) -> tuple[Optional[str], Optional[str]]:
    """Return the normalized values of the first certificate and key directives."""
    certs = directive_values(CERT_VALUE_PATTERN, content)
    keys = directive_values(KEY_VALUE_PATTERN, content)
    return (certs[0] if certs else None), (keys[0] if keys else None)


class TempFileRegistry:
    """Temporary files that must not survive the process, whatever the exit path."""

    def __init__(self) -> None:
        self._paths: set[str] = set()

    def add(self, path: str) -> None:
        self._paths.add(path)

    def discard(self, path: str) -> None:
        """Forget a path and delete it if it is still on disk."""
        self._paths.discard(path)
        if os.path.exists(path):
            os.unlink(path)

    def purge(self) -> None:
        for path in list(self._paths):
            try:
                self.discard(path)
            except OSError:
                self._paths.discard(path)

    def __contains__(self, path: str) -> bool:
        return path in self._paths

    def __len__(self) -> int:
        return len(self._paths)


TEMP_FILES = TempFileRegistry()
atexit.register(TEMP_FILES.purge)


class ConfigRewriter:
    """Backs up and atomically rewrites TLS directives in vhost files."""

    COMPONENT = "ConfigRewriter"

    def __init__(
        self,
        backup_dir: Optional[str] = None,
        logger: Optional[AuditLogger] = None,
        temp_files: Optional[TempFileRegistry] = None,
    ) -> None:
        """
        Initialize the rewriter.

        Args:
            backup_dir: Directory receiving backups; defaults to a ``backup``
                directory beside each rewritten file
            logger: Optional audit logger
            temp_files: Registry of in-flight temporary files
        """
        self._backup_dir = backup_dir
        self._logger = logger
        self._temp_files = temp_files if temp_files is not None else TEMP_FILES

    def rewrite(self, conf_file: str, cert_path: str, key_path: str) -> RewriteResult:
        """
        Point a configuration file at a new certificate and key.

        Args:
            conf_file: Path of the vhost configuration file
            cert_path: New value for ``ssl_certificate``
            key_path: New value for ``ssl_certificate_key``

        Returns:
            RewriteResult; ``backup_path`` is set only when the file was modified

        Raises:
            RewriteError: Unsafe target path, a substitution that would leave
                an old path in place, or a file that could not be read, backed
                up, staged or renamed
        """
        for path in (cert_path, key_path):
            if has_shell_metachars(path) or "\n" in path:
                raise RewriteError(
                    code=RewriteErrorCode.UNSAFE_PATH.value,
                    message=f"Refusing to write unsafe path into {conf_file}: {path!r}",
                    details={"file": conf_file, "path": path},
                )

        content = self._read(conf_file)

        def result(status: RewriteStatus, backup_path: Optional[str] = None) -> RewriteResult:
            return RewriteResult(
                file=conf_file,
                modified=status is RewriteStatus.UPDATED,
                cert_path=cert_path,
                key_path=key_path,
                status=status,
                backup_path=backup_path,
            )

        current_cert, current_key = current_paths(content)
        if current_cert is None and current_key is None:
            self._log(LogLevel.INFO, f"No TLS directives, skipping: {conf_file}")
            return result(RewriteStatus.NO_TLS_DIRECTIVES)

        if current_cert == normalize_path(cert_path) and current_key == normalize_path(key_path):
            self._log(LogLevel.INFO, f"Certificate paths already current: {conf_file}")
            return result(RewriteStatus.ALREADY_CURRENT)

        new_content = _substitute(CERT_VALUE_PATTERN, content, CERT_DIRECTIVE, cert_path)
        new_content = _substitute(KEY_VALUE_PATTERN, new_content, KEY_DIRECTIVE, key_path)

        stale = sorted(
            set(directive_values(CERT_VALUE_PATTERN, new_content)) - {normalize_path(cert_path)}
        ) + sorted(
            set(directive_values(KEY_VALUE_PATTERN, new_content)) - {normalize_path(key_path)}
        )
        if stale:
            raise RewriteError(
                code=RewriteErrorCode.VERIFY_FAILED.value,
                message=f"Rewrite of {conf_file} would leave old paths in place: {', '.join(stale)}",
                details={"file": conf_file, "stale_paths": stale},
            )

        if new_content == content:
            self._log(LogLevel.INFO, f"Substitution changed nothing: {conf_file}")
            return result(RewriteStatus.NO_CHANGE)

        backup_path = self._backup(conf_file)
        self._replace(conf_file, new_content, backup_path)

        self._log(
            LogLevel.INFO,
            f"Updated {conf_file}",
            {
                "backup": backup_path,
                "cert_path": cert_path,
                "key_path": key_path,
                "previous_cert_path": current_cert,
                "previous_key_path": current_key,
            },
        )
        return result(RewriteStatus.UPDATED, backup_path)

    def backup_dir_for(self, conf_file: str) -> str:
        if self._backup_dir:
            return self._backup_dir
        return os.path.join(os.path.dirname(os.path.abspath(conf_file)), BACKUP_DIRNAME)

    def _read(self, conf_file: str) -> str:
        try:
            with open(conf_file, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
                return f.read()
        except OSError as e:
            raise RewriteError(
                code=RewriteErrorCode.READ_FAILED.value,
                message=f"Cannot read {conf_file}: {e}",
                details={"file": conf_file},
            )

    def _backup(self, conf_file: str) -> str:
        backup_dir = self.backup_dir_for(conf_file)
        stamp = datetime.now().strftime(BACKUP_TIMESTAMP_FORMAT)
        base = os.path.join(backup_dir, f"{os.path.basename(conf_file)}.backup.{stamp}")

        backup_path = base
        counter = 1
        while os.path.exists(backup_path):
            backup_path = f"{base}.{counter}"
            counter += 1

        try:
            os.makedirs(backup_dir, exist_ok=True)
            shutil.copy2(conf_file, backup_path)
        except OSError as e:
            raise RewriteError(
                code=RewriteErrorCode.BACKUP_FAILED.value,
                message=f"Cannot create backup of {conf_file}: {e}",
                details={"file": conf_file, "backup_path": backup_path},
            )
        return backup_path

    def _replace(self, conf_file: str, new_content: str, backup_path: str) -> None:
        # Same directory as the target so the rename stays on one filesystem
        directory = os.path.dirname(os.path.abspath(conf_file))
        try:
            fd, temp_path = tempfile.mkstemp(
                prefix=f".{os.path.basename(conf_file)}.", suffix=".tmp", dir=directory
            )
        except OSError as e:
            self._drop_backup(backup_path)
            raise RewriteError(
                code=RewriteErrorCode.TEMP_FILE_FAILED.value,
                message=f"Cannot create temporary file for {conf_file}: {e}",
                details={"file": conf_file},
            )

        self._temp_files.add(temp_path)
        try:
            try:
                with os.fdopen(fd, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
                    f.write(new_content)
                    f.flush()
                    os.fsync(f.fileno())
                shutil.copymode(conf_file, temp_path)
            except OSError as e:
                self._drop_backup(backup_path)
                raise RewriteError(
                    code=RewriteErrorCode.TEMP_FILE_FAILED.value,
                    message=f"Cannot write temporary file for {conf_file}: {e}",
                    details={"file": conf_file, "temp_path": temp_path},
                )

            try:
                os.replace(temp_path, conf_file)
            except OSError as e:
                self._drop_backup(backup_path)
                raise RewriteError(
                    code=RewriteErrorCode.RENAME_FAILED.value,
                    message=f"Cannot replace {conf_file}: {e}",
                    details={"file": conf_file, "temp_path": temp_path},
                )
        finally:
            self._temp_files.discard(temp_path)

    def _drop_backup(self, backup_path: str) -> None:
        try:
            os.unlink(backup_path)
        except OSError:
            self._log(LogLevel.WARN, f"Could not remove backup {backup_path}")

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
