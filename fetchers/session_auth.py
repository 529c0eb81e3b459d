"""Session authentication for the Confluence REST client."""

import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import requests

from .base_fetcher import UnauthorizedError

logger = logging.getLogger('confluence_extractor.fetcher.auth')

DEFAULT_COOKIE_FILE = '.cookies.json'


class SessionAuthenticator(ABC):
    """Puts credentials on a requests.Session."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('confluence_extractor.fetcher.auth')

    @abstractmethod
    def authenticate(self, session: requests.Session, force: bool = False) -> None:
        """
        Make the session carry valid credentials.

        Args:
            session: Session used for every request of the client
            force: Discard cached credentials and obtain fresh ones

        Raises:
            UnauthorizedError: If no credentials can be obtained
        """
        pass

    def rebind(self, base_url: str) -> None:
        """Point the authenticator at another site."""
        pass

    def saved_base_url(self) -> Optional[str]:
        """Base URL of a session cached by a previous run, if any."""
        return None


class BasicAuthenticator(SessionAuthenticator):
    """HTTP Basic authentication with username and password."""

    def __init__(self, username: str, password: str, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        if not username or not password:
            raise ValueError("Basic auth requires username and password")
        self.username = username
        self.password = password

    def authenticate(self, session: requests.Session, force: bool = False) -> None:
        session.auth = (self.username, self.password)


class BearerAuthenticator(SessionAuthenticator):
    """Personal access token sent as a Bearer Authorization header."""

    def __init__(self, api_token: str, logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        if not api_token:
            raise ValueError("Bearer auth requires api_token")
        self.api_token = api_token

    def authenticate(self, session: requests.Session, force: bool = False) -> None:
        session.headers['Authorization'] = f'Bearer {self.api_token}'


class CookieAuthenticator(SessionAuthenticator):
    """
    Browser session cookies, cached in a JSON file between runs.

    The cookie file holds ``{"cookieString", "baseUrl", "savedAt"}``. When the
    cached cookies are missing, belong to another site, or are rejected, the
    user is asked to paste the ``Cookie`` header of a logged-in browser tab.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        cookie_file: str = DEFAULT_COOKIE_FILE,
        prompt: Callable[[str], str] = input,
        logger: Optional[logging.Logger] = None
    ):
        super().__init__(logger)
        self.base_url = base_url.rstrip('/') if base_url else None
        self.cookie_file = cookie_file
        self.prompt = prompt

    def rebind(self, base_url: str) -> None:
        self.base_url = base_url.rstrip('/') if base_url else None

    def load(self) -> Optional[Dict[str, Any]]:
        """Read the cookie file, returning None if it is missing or unreadable."""
        if not os.path.exists(self.cookie_file):
            return None
        try:
            with open(self.cookie_file, 'r', encoding='utf-8') as f:
                saved = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.warning(f"Could not read cookie file {self.cookie_file}: {e}")
            return None
        if not isinstance(saved, dict) or not saved.get('cookieString'):
            return None
        self.logger.info(f"Loaded saved cookies from {self.cookie_file}")
        return saved

    def save(self, cookie_string: str) -> None:
        data = {
            'cookieString': cookie_string,
            'baseUrl': self.base_url,
            'savedAt': datetime.now(timezone.utc).isoformat()
        }
        with open(self.cookie_file, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        self.logger.info(f"Cookies saved to {self.cookie_file}")

    def saved_base_url(self) -> Optional[str]:
        """Base URL recorded in the cookie file, if any."""
        saved = self.load()
        return saved.get('baseUrl') if saved else None

    @staticmethod
    def apply(session: requests.Session, cookie_string: str) -> int:
        """Set every ``name=value`` pair of a Cookie header on the session."""
        session.cookies.clear()
        count = 0
        for pair in cookie_string.split(';'):
            if '=' not in pair:
                continue
            name, value = pair.split('=', 1)
            name = name.strip()
            if not name:
                continue
            session.cookies.set(name, value.strip())
            count += 1
        return count

    def authenticate(self, session: requests.Session, force: bool = False) -> None:
        if not force:
            saved = self.load()
            if saved and (not self.base_url or not saved.get('baseUrl')
                          or saved['baseUrl'].rstrip('/') == self.base_url):
                self.apply(session, saved['cookieString'])
                return

        self.logger.warning(f"A fresh session is needed for {self.base_url or 'Confluence'}")
        try:
            cookie_string = self.prompt(
                "Log in with your browser, then paste the request 'Cookie' header here: "
            ).strip()
        except EOFError:
            cookie_string = ''
        if cookie_string.lower().startswith('cookie:'):
            cookie_string = cookie_string[len('cookie:'):].strip()
        if not cookie_string:
            raise UnauthorizedError("No session cookies provided")

        count = self.apply(session, cookie_string)
        self.logger.info(f"Using {count} cookie(s) from the pasted header")
        self.save(cookie_string)


def create_authenticator(
    config: Dict[str, Any],
    prompt: Callable[[str], str] = input,
    logger: Optional[logging.Logger] = None
) -> SessionAuthenticator:
    """
    Build the authenticator selected by ``confluence.auth_type``.

    Args:
        config: Configuration dictionary
        prompt: Function used to ask the user for input (cookie mode)
        logger: Logger instance

    Returns:
        SessionAuthenticator instance

    Raises:
        ValueError: If auth_type is unknown or its credentials are missing
    """
    confluence_config = config.get('confluence', {})
    auth_type = confluence_config.get('auth_type', 'cookie')

    if auth_type == 'cookie':
        return CookieAuthenticator(
            base_url=confluence_config.get('base_url'),
            cookie_file=confluence_config.get('cookie_file', DEFAULT_COOKIE_FILE),
            prompt=prompt,
            logger=logger
        )
    elif auth_type == 'basic':
        return BasicAuthenticator(
            confluence_config.get('username'),
            confluence_config.get('password'),
            logger=logger
        )
    elif auth_type == 'bearer':
        return BearerAuthenticator(confluence_config.get('api_token'), logger=logger)
    else:
        raise ValueError(f"Unsupported auth_type: {auth_type}. Must be 'cookie', 'basic' or 'bearer'.")


__all__ = [
    'BasicAuthenticator',
    'BearerAuthenticator',
    'CookieAuthenticator',
    'SessionAuthenticator',
    'create_authenticator'
]
