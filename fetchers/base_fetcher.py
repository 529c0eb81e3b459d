"""Abstract content source interface and the fetch error taxonomy."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from models import AttachmentRecord, ChildSummary, DocumentNode


class FetcherError(Exception):
    """Base exception for fetcher-related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class TransportError(FetcherError):
    """Network failure, timeout or unexpected HTTP status."""
    pass


class UnauthorizedError(FetcherError):
    """The remote system rejected the session (HTTP 401/403)."""
    pass


class NotFoundError(FetcherError):
    """The requested document does not exist (HTTP 404)."""
    pass


class MalformedContentError(FetcherError):
    """The remote system answered with a payload that cannot be interpreted."""
    pass


class BaseFetcher(ABC):
    """Abstract base class for page-tree content sources."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, logger=None):
        """
        Initialize base fetcher with configuration and logger.

        Args:
            config: Configuration dictionary
            logger: Logger instance (optional, uses module logger if not provided)
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_extractor.fetcher')

    @abstractmethod
    def fetch_document(self, page_id: str, depth: int = 0) -> DocumentNode:
        """
        Fetch a single page with its body and provenance metadata.

        Args:
            page_id: Confluence page ID
            depth: Distance of the page from the extraction root

        Returns:
            DocumentNode for the page

        Raises:
            NotFoundError, UnauthorizedError, TransportError, MalformedContentError
        """
        pass

    @abstractmethod
    def list_children(self, page_id: str) -> List[ChildSummary]:
        """Full, ordered list of the direct child pages of a page."""
        pass

    @abstractmethod
    def list_attachments(self, page_id: str) -> List[AttachmentRecord]:
        """All attachments registered against a page."""
        pass

    @abstractmethod
    def download(self, locator: str) -> bytes:
        """Binary content behind a download locator or external URL."""
        pass

    @abstractmethod
    def page_url(self, page_id: str) -> str:
        """Browser URL of a page, used as the source locator of written files."""
        pass

    def fetch_title(self, page_id: str) -> Optional[str]:
        """
        Look up the title of a page, or None if it cannot be fetched.

        Args:
            page_id: Confluence page ID

        Returns:
            Page title, or None when the page is unknown or unreachable
        """
        try:
            return self.fetch_document(page_id).title or None
        except FetcherError as e:
            self.logger.warning(f"Could not fetch title of page {page_id}: {e}")
            return None


__all__ = [
    'BaseFetcher',
    'FetcherError',
    'MalformedContentError',
    'NotFoundError',
    'TransportError',
    'UnauthorizedError'
]
