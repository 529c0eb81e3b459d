"""API fetcher implementation for retrieving Confluence page trees via REST API."""

import logging
import threading
import time
from typing import Any, Dict, List, Optional

from models import AttachmentRecord, ChildSummary, DocumentNode
from .base_fetcher import BaseFetcher, FetcherError, MalformedContentError


PAGE_EXPANSIONS = ['body.storage', 'version', 'history.createdBy']


class ApiFetcher(BaseFetcher):
    """Fetches pages, child listings and attachments through the Confluence REST API."""

    def __init__(self, config: Dict[str, Any], logger=None, client=None):
        """
        Initialize API fetcher with configuration.

        Args:
            config: Configuration dictionary with confluence and advanced settings
            logger: Logger instance (optional)
            client: ConfluenceClient to use; built from config when omitted
        """
        super().__init__(config, logger or logging.getLogger('confluence_extractor.fetcher.api'))

        if client is None:
            # Imported here: the client module itself depends on this package
            from confluence_client import ConfluenceClient
            from .session_auth import create_authenticator

            if not self.config.get('confluence', {}).get('base_url'):
                raise ValueError("confluence.base_url is required for API fetcher")
            client = ConfluenceClient.from_config(self.config, authenticator=create_authenticator(self.config))

        self.client = client
        self._page_fetch_counter = 0
        self._last_progress_log_time = 0.0
        self.stats = {
            'documents_fetched': 0,
            'child_listings': 0,
            'attachment_listings': 0,
            'downloads': 0,
            'download_bytes': 0
        }
        # download() runs on the crawler's worker threads
        self._stats_lock = threading.Lock()

        self.logger.info(f"Initialized ApiFetcher for {self.client.base_url}")

    def fetch_document(self, page_id: str, depth: int = 0) -> DocumentNode:
        """
        Fetch a page with its storage-format body.

        Args:
            page_id: Confluence page ID
            depth: Distance of the page from the extraction root

        Returns:
            DocumentNode for the page

        Raises:
            MalformedContentError: If the page has no title
        """
        api_response = self.client.get_page(page_id, expand=PAGE_EXPANSIONS)
        node = self._convert_api_page_to_model(api_response, page_id, depth)

        self.stats['documents_fetched'] += 1
        self._log_fetch_progress(page_id, depth)
        return node

    def fetch_title(self, page_id: str) -> Optional[str]:
        """Look up the title of a page without its body; None if unavailable."""
        try:
            api_response = self.client.get_page(page_id)
        except FetcherError as e:
            self.logger.warning(f"Could not fetch page {page_id}: {e}")
            return None
        title = api_response.get('title')
        return title if isinstance(title, str) and title.strip() else None

    def list_children(self, page_id: str) -> List[ChildSummary]:
        children = []
        for child in self.client.get_page_children(page_id):
            if not isinstance(child, dict) or 'id' not in child:
                self.logger.debug(f"Ignoring malformed child entry of page {page_id}: {child!r}")
                continue
            children.append(ChildSummary(id=str(child['id']), title=child.get('title') or ''))

        self.stats['child_listings'] += 1
        return children

    def list_attachments(self, page_id: str) -> List[AttachmentRecord]:
        attachments = []
        for api_attachment in self.client.get_attachments(page_id):
            record = self._convert_api_attachment_to_model(api_attachment)
            if record is not None:
                attachments.append(record)

        self.stats['attachment_listings'] += 1
        return attachments

    def download(self, locator: str) -> bytes:
        content = self.client.download_attachment(locator)
        with self._stats_lock:
            self.stats['downloads'] += 1
            self.stats['download_bytes'] += len(content)
        return content

    def page_url(self, page_id: str) -> str:
        return self.client.page_url(page_id)

    def verify_session(self) -> bool:
        return self.client.verify_session()

    def _convert_api_page_to_model(self, api_response: Dict[str, Any], page_id: str, depth: int) -> DocumentNode:
        """
        Convert API page response to DocumentNode.

        Args:
            api_response: API JSON response
            page_id: Requested page ID
            depth: Depth of the page in the extracted tree

        Returns:
            DocumentNode model
        """
        title = api_response.get('title')
        if not isinstance(title, str) or not title.strip():
            raise MalformedContentError(f"Page {page_id} has no title")

        body = api_response.get('body') or {}
        storage = body.get('storage') or {}
        content = storage.get('value') or ''
        if not content:
            self.logger.warning(f"Page {page_id} has no storage-format content")

        history = api_response.get('history') or {}
        author = (history.get('createdBy') or {}).get('displayName')
        last_modified = (api_response.get('version') or {}).get('when')

        return DocumentNode(
            id=str(page_id),
            title=title,
            depth=depth,
            body=content,
            author=author,
            last_modified=last_modified
        )

    def _convert_api_attachment_to_model(self, api_response: Dict[str, Any]) -> Optional[AttachmentRecord]:
        """
        Convert API attachment response to AttachmentRecord.

        Returns:
            AttachmentRecord, or None for entries without a title
        """
        if not isinstance(api_response, dict):
            return None
        title = api_response.get('title')
        if not title:
            return None

        download_path = (api_response.get('_links') or {}).get('download')
        media_type = (
            (api_response.get('metadata') or {}).get('mediaType')
            or (api_response.get('extensions') or {}).get('mediaType')
        )
        return AttachmentRecord(name=title, download_locator=download_path or None, media_type=media_type)

    def _log_fetch_progress(self, page_id: str, depth: int):
        """Log progress every 50 pages and every 10 seconds."""
        self._page_fetch_counter += 1
        current_time = time.time()

        if (self._page_fetch_counter % 50 == 0 or
                (current_time - self._last_progress_log_time) > 10):
            self._last_progress_log_time = current_time
            self.logger.debug(f"Fetched {self._page_fetch_counter} pages so far (current: {page_id}, depth: {depth})")


__all__ = ['ApiFetcher', 'PAGE_EXPANSIONS']
