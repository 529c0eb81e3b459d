"""Confluence REST API client with session re-authentication and error mapping."""

import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from fetchers.base_fetcher import (
    MalformedContentError,
    NotFoundError,
    TransportError,
    UnauthorizedError
)

logger = logging.getLogger('confluence_extractor.client')

UNAUTHORIZED_STATUSES = (401, 403)
CHILDREN_PAGE_SIZE = 200
ATTACHMENTS_PAGE_SIZE = 100


class ConfluenceClient:
    """Confluence REST API client with authentication, retry logic, and error handling."""

    def __init__(
        self,
        base_url: str,
        authenticator=None,
        verify_ssl: bool = True,
        timeout: int = 30,
        max_retries: int = 0,
        retry_backoff_factor: float = 2.0,
        rate_limit: float = 0.0,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize Confluence client.

        Args:
            base_url: Confluence base URL (e.g., "https://confluence.example.com")
            authenticator: SessionAuthenticator putting credentials on the session
            verify_ssl: Whether to verify SSL certificates
            timeout: HTTP request timeout in seconds
            max_retries: Transport retries for 429/5xx answers (0 = none)
            retry_backoff_factor: Exponential backoff factor
            rate_limit: Minimum seconds between requests (0.0 = no rate limiting)
            session: Pre-built session (tests)
        """
        if not base_url:
            raise ValueError("base_url is required")

        self.base_url = base_url.rstrip('/')
        self.authenticator = authenticator
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff_factor = retry_backoff_factor
        self.rate_limit = rate_limit
        self.last_request_time = 0.0
        self.reauthentications = 0
        self._auth_lock = threading.Lock()

        self.session = session if session is not None else requests.Session()

        # Configure SSL verification
        self.session.verify = verify_ssl
        if not verify_ssl:
            logger.warning("SSL verification disabled - this is insecure!")
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        if session is None:
            retry_strategy = Retry(
                total=max_retries,
                backoff_factor=retry_backoff_factor,
                status_forcelist=[429, 500, 502, 503, 504],
                allowed_methods=["HEAD", "GET", "OPTIONS"],
                raise_on_status=False
            )
            adapter = HTTPAdapter(max_retries=retry_strategy)
            self.session.mount("http://", adapter)
            self.session.mount("https://", adapter)

        logger.debug(f"Client configured for {self.base_url} with timeout={timeout}s, "
                     f"max_retries={max_retries}, rate_limit={rate_limit}s")

    def authenticate(self, force: bool = False) -> None:
        """Let the authenticator (re)establish the session."""
        if self.authenticator is not None:
            self.authenticator.authenticate(self.session, force=force)

    def ensure_session(self) -> None:
        """
        Authenticate at startup, falling back to fresh credentials when the cached
        ones are rejected.

        Raises:
            UnauthorizedError: If no valid session can be established
        """
        self.authenticate()
        if self.verify_session():
            logger.info("Session is valid")
            return

        logger.warning("Saved session is no longer valid, re-authenticating")
        self.authenticate(force=True)
        if not self.verify_session():
            raise UnauthorizedError(f"Could not establish a session with {self.base_url}")
        logger.info("Session is valid")

    def resolve_url(self, locator: str) -> str:
        """Absolute URL of an API path or download locator."""
        if locator.startswith(('http://', 'https://')):
            return locator
        if not locator.startswith('/'):
            locator = '/' + locator
        return f'{self.base_url}{locator}'

    def _enforce_rate_limit(self) -> None:
        """Enforce rate limiting if configured."""
        if self.rate_limit <= 0:
            return

        time_since_last = time.time() - self.last_request_time
        if time_since_last < self.rate_limit:
            sleep_time = self.rate_limit - time_since_last
            logger.debug(f"Rate limiting: sleeping for {sleep_time:.2f}s")
            time.sleep(sleep_time)

    def _send(self, method: str, url: str, **kwargs) -> requests.Response:
        self._enforce_rate_limit()
        start_time = time.time()
        logger.debug(f"API Request: {method} {url}")
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            logger.error(f"Request timeout after {self.timeout}s: {method} {url}")
            raise TransportError(f"Timeout after {self.timeout}s: {url}", url=url) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error: {method} {url} - {str(e)}")
            raise TransportError(f"Request failed: {url} - {e}", url=url) from e
        finally:
            self.last_request_time = time.time()

        elapsed = time.time() - start_time
        logger.debug(f"API Response: {response.status_code} {url} ({elapsed:.3f}s)")
        return response

    def _make_request(self, method: str, endpoint: str, **kwargs) -> requests.Response:
        """
        Make HTTP request to Confluence with a single re-authentication on 401/403.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API path, download locator or absolute URL
            **kwargs: Additional arguments for requests

        Returns:
            Response object with a 2xx status

        Raises:
            UnauthorizedError: Still rejected after re-authenticating
            NotFoundError: HTTP 404
            TransportError: Network failure or any other unexpected status
        """
        url = self.resolve_url(endpoint)
        generation = self.reauthentications
        response = self._send(method, url, **kwargs)

        if response.status_code in UNAUTHORIZED_STATUSES and self.authenticator is not None:
            response.close()
            with self._auth_lock:
                # Another worker may already have refreshed the session
                if self.reauthentications == generation:
                    logger.warning(f"Request rejected with {response.status_code}, re-authenticating: {url}")
                    self.authenticate(force=True)
                    self.reauthentications += 1
            response = self._send(method, url, **kwargs)

        status = response.status_code
        if 200 <= status < 300:
            return response

        if status in UNAUTHORIZED_STATUSES:
            raise UnauthorizedError(f"HTTP {status}: not authorized for {url}", status_code=status, url=url)
        if status == 404:
            raise NotFoundError(f"HTTP 404: not found {url}", status_code=status, url=url)

        logger.error(f"HTTP Error {status}: {method} {url}")
        try:
            logger.debug(f"Error details: {json.dumps(response.json(), indent=2)}")
        except ValueError:
            logger.debug(f"Error response: {response.text[:500]}")
        raise TransportError(f"HTTP {status}: {url}", status_code=status, url=url)

    def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._make_request('GET', endpoint, params=params)
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedContentError(f"Invalid JSON from {response.url}", url=endpoint) from e
        if not isinstance(data, dict):
            raise MalformedContentError(f"Unexpected JSON payload from {endpoint}", url=endpoint)
        return data

    def _get_paginated(self, endpoint: str, limit: int, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Collect every result of a paginated listing.

        Only a short batch ends the listing; `_links.next` is not relied on.
        """
        results = []
        start = 0

        while True:
            page_params = dict(params or {})
            page_params.update({'limit': limit, 'start': start})

            data = self._get_json(endpoint, params=page_params)
            batch = data.get('results')
            if not isinstance(batch, list):
                raise MalformedContentError(f"Listing without results from {endpoint}", url=endpoint)
            results.extend(batch)

            if len(batch) < limit:
                break
            start += limit

        return results

    def get_page(self, page_id: str, expand: Optional[List[str]] = None) -> Dict[str, Any]:
        """
        Fetch single page with specified expansions.

        Args:
            page_id: Confluence page ID
            expand: List of expansions (e.g., ['body.storage', 'version'])

        Returns:
            Page dictionary with expanded fields
        """
        params = {}
        if expand:
            params['expand'] = ','.join(expand)
        return self._get_json(f'/rest/api/content/{page_id}', params=params)

    def get_page_children(self, page_id: str, limit: int = CHILDREN_PAGE_SIZE) -> List[Dict[str, Any]]:
        """Get all child pages of a page, in the order the server lists them."""
        children = self._get_paginated(f'/rest/api/content/{page_id}/child/page', limit)
        logger.debug(f"Fetched {len(children)} children for page {page_id}")
        return children

    def get_attachments(self, page_id: str, limit: int = ATTACHMENTS_PAGE_SIZE) -> List[Dict[str, Any]]:
        """Get all attachments of a page."""
        attachments = self._get_paginated(f'/rest/api/content/{page_id}/child/attachment', limit)
        logger.debug(f"Fetched {len(attachments)} attachments for page {page_id}")
        return attachments

    def download_attachment(self, download_url: str) -> bytes:
        """
        Download binary content from Confluence or an external URL.

        Args:
            download_url: Absolute URL, or locator relative to the base URL

        Returns:
            Downloaded bytes
        """
        return self._make_request('GET', download_url).content

    def verify_session(self) -> bool:
        """Check whether the session belongs to a logged-in user."""
        try:
            response = self._send('GET', self.resolve_url('/rest/api/user/current'))
        except TransportError as e:
            logger.warning(f"Session check failed: {e}")
            return False
        if response.status_code != 200:
            return False
        try:
            data = response.json()
        except ValueError:
            return False
        return isinstance(data, dict) and bool(data.get('username'))

    def page_url(self, page_id: str) -> str:
        return f'{self.base_url}/pages/viewpage.action?pageId={page_id}'

    @classmethod
    def from_config(cls, config: Dict[str, Any], authenticator=None) -> 'ConfluenceClient':
        """
        Initialize Confluence client from configuration dictionary.

        Args:
            config: Configuration dictionary with confluence and advanced settings
            authenticator: SessionAuthenticator to use

        Returns:
            ConfluenceClient instance
        """
        confluence_config = config.get('confluence', {})
        advanced_config = config.get('advanced', {})

        return cls(
            base_url=confluence_config.get('base_url'),
            authenticator=authenticator,
            verify_ssl=confluence_config.get('verify_ssl', True),
            timeout=advanced_config.get('request_timeout', 30),
            max_retries=advanced_config.get('max_retries', 0),
            retry_backoff_factor=advanced_config.get('retry_backoff_factor', 2.0),
            rate_limit=advanced_config.get('rate_limit', 0.0)
        )


__all__ = ['ConfluenceClient']
