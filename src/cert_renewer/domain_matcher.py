"""
Domain Matcher module.

Finds the web-server configuration files that belong to a main domain.
A file belongs to ``example.com`` when its name without the ``.conf``
extension is ``example.com`` or ends with ``.example.com``. The same rule
serves wildcard and single-domain entries, since the wildcard prefix is
already gone from the main domain.
"""

import os
from typing import Optional

from .config_rewriter import BACKUP_DIRNAME
from .exceptions import MatchError
from .models import ConfigMatch


CONF_EXTENSION = ".conf"


def belongs_to(filename: str, main_domain: str) -> bool:
    """Return True if a config basename (extension removed) belongs to main_domain."""
    return filename == main_domain or filename.endswith("." + main_domain)


class DomainMatcher:
    """Scans a configuration directory tree for a domain's vhost files."""

    def __init__(self, conf_dir: Optional[str]) -> None:
        """
        Initialize the matcher.

        Args:
            conf_dir: Directory holding web-server ``*.conf`` files (may be unset)
        """
        self._conf_dir = conf_dir

    @property
    def conf_dir(self) -> Optional[str]:
        return self._conf_dir

    def candidates(self) -> list[str]:
        """
        List every ``*.conf`` file under the configuration directory, recursively.

        The top-level backup directory is not scanned.
        """
        found = []
        for root, dirs, files in os.walk(self._conf_dir):
            if root == self._conf_dir and BACKUP_DIRNAME in dirs:
                dirs.remove(BACKUP_DIRNAME)
            dirs.sort()
            for name in sorted(files):
                if name.endswith(CONF_EXTENSION):
                    found.append(os.path.abspath(os.path.join(root, name)))
        return found

    def match(self, main_domain: str, is_wildcard: bool = False) -> ConfigMatch:
        """
        Find the configuration files belonging to a main domain.

        Args:
            main_domain: Domain with any wildcard prefix stripped
            is_wildcard: Whether the entry was a wildcard (same predicate either way)

        Returns:
            ConfigMatch with at least one absolute file path

        Raises:
            MatchError: Directory unset or missing, or no file matched
        """
        if not self._conf_dir:
            raise MatchError(
                code="conf_dir_unset",
                message="NGINX_CONF_DIR is not configured",
                details={"main_domain": main_domain},
            )

        if not os.path.isdir(self._conf_dir):
            raise MatchError(
                code="conf_dir_missing",
                message=f"Configuration directory does not exist: {self._conf_dir}",
                details={"main_domain": main_domain, "conf_dir": self._conf_dir},
            )

        files = []
        for path in self.candidates():
            filename = os.path.basename(path)[: -len(CONF_EXTENSION)]
            if belongs_to(filename, main_domain) and path not in files:
                files.append(path)

        if not files:
            raise MatchError(
                code="no_match",
                message=f"No configuration file found for {main_domain} in {self._conf_dir}",
                details={
                    "main_domain": main_domain,
                    "conf_dir": self._conf_dir,
                    "wildcard": is_wildcard,
                },
            )

        return ConfigMatch(main_domain=main_domain, conf_dir=self._conf_dir, files=files)
