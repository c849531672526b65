"""Version information sent with every request."""

from typing import Optional

import requests
from loguru import logger

from .. import __version__

LATEST_VERSION_URL = 'https://raw.githubusercontent.com/github/gh-gei/main/LATEST-VERSION.txt'
PRODUCT_NAME = 'OctoshiftCLI'


def _parse_version(value: str) -> tuple:
    parts = []
    for part in value.strip().lstrip('v').split('.'):
        digits = ''.join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class VersionChecker:
    """Version provider used for the User-Agent header and update checks."""

    def __init__(
        self,
        root_command: Optional[str] = None,
        executing_command: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        """Initialize version checker.

        Args:
            root_command: CLI root command name (e.g. ``gei``)
            executing_command: Name of the command being run
            session: Optional requests session, created on demand
            timeout: Timeout for the latest version lookup
        """
        self.root_command = root_command
        self.executing_command = executing_command
        self.session = session
        self.timeout = timeout
        self._latest_version: Optional[str] = None

    def get_current_version(self) -> str:
        return __version__

    def get_version_comments(self) -> Optional[str]:
        if self.root_command and self.executing_command:
            return f'({self.root_command}/{self.executing_command})'
        return None

    def get_latest_version(self) -> str:
        """Fetch the latest released version, cached after the first call."""
        if not self._latest_version:
            if self.session is not None:
                self._latest_version = self._fetch_latest_version(self.session)
            else:
                with requests.Session() as session:
                    self._latest_version = self._fetch_latest_version(session)

        return self._latest_version

    def _fetch_latest_version(self, session: requests.Session) -> str:
        user_agent = f'{PRODUCT_NAME}/{self.get_current_version()}'
        comments = self.get_version_comments()
        if comments:
            user_agent = f'{user_agent} {comments}'

        logger.debug(f'HTTP GET: {LATEST_VERSION_URL}')
        response = session.get(
            LATEST_VERSION_URL,
            headers={'User-Agent': user_agent},
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.text.strip().lstrip('v')

    def is_latest(self) -> bool:
        return _parse_version(self.get_current_version()) >= _parse_version(
            self.get_latest_version()
        )
