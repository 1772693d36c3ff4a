"""
Web server collaborator.

Detects an installed OpenResty or nginx, checks its configuration syntax and
reloads it. A reload is only attempted after the syntax check passes.
"""

import shutil
import subprocess
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .enums import LogLevel, WebServerType
from .exceptions import ReloadError


COMMAND_TIMEOUT = 60


class WebServer:
    """Syntax check and reload for one detected web server."""

    COMPONENT = "WebServer"

    def __init__(
        self,
        server_type: WebServerType,
        binary: Optional[str] = None,
        logger: Optional[AuditLogger] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        self._server_type = server_type
        self._binary = binary or server_type.value
        self._logger = logger
        self._runner = runner

    @property
    def server_type(self) -> WebServerType:
        return self._server_type

    @property
    def binary(self) -> str:
        return self._binary

    @classmethod
    def detect(
        cls,
        logger: Optional[AuditLogger] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> Optional["WebServer"]:
        """
        Detect the installed web server.

        Executables on PATH are checked first (OpenResty before nginx), then
        running processes. Returns None when neither is found.
        """
        for server_type in WebServerType:
            binary = shutil.which(server_type.value)
            if binary:
                return cls(server_type, binary, logger=logger, runner=runner)

        for server_type in WebServerType:
            try:
                completed = runner(
                    ["pgrep", "-x", server_type.value],
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.DEVNULL,
                    timeout=COMMAND_TIMEOUT,
                    check=False,
                )
            except (OSError, subprocess.TimeoutExpired):
                continue
            if completed.returncode == 0:
                return cls(server_type, logger=logger, runner=runner)

        return None

    def test_config(self) -> bool:
        """Run ``<binary> -t``; True when the configuration is valid."""
        return self._call(["-t"], "configuration test")

    def reload(self) -> None:
        """
        Check the configuration, then reload.

        Raises:
            ReloadError: The syntax check or the reload failed
        """
        name = self._server_type.value
        if not self.test_config():
            raise ReloadError(
                code="config_test_failed",
                message=f"{name} configuration test failed; fix the configuration and reload manually",
                details={"server": name},
            )
        if not self._call(["-s", "reload"], "reload"):
            raise ReloadError(
                code="reload_failed",
                message=f"{name} reload failed; the new configuration stays on disk",
                details={"server": name},
            )

    def _call(self, args: list[str], label: str) -> bool:
        argv = [self._binary, *args]
        name = self._server_type.value
        self._log(LogLevel.INFO, f"Running {name} {label}: {' '.join(argv)}")
        try:
            completed = self._runner(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=COMMAND_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            self._log(LogLevel.ERROR, f"{name} {label} could not run: {e}")
            return False

        output_level = LogLevel.DEBUG if completed.returncode == 0 else LogLevel.ERROR
        for line in (completed.stdout or "").splitlines():
            if line.strip():
                self._log(output_level, line.rstrip())

        if completed.returncode != 0:
            self._log(LogLevel.ERROR, f"{name} {label} failed", {"returncode": completed.returncode})
            return False
        self._log(LogLevel.INFO, f"{name} {label} passed")
        return True

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)
