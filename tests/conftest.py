"""Shared fixtures: an in-memory Confluence standing in for the REST API."""

import threading

import pytest

from fetchers.base_fetcher import BaseFetcher, NotFoundError, TransportError
from models import AttachmentRecord, ChildSummary, DocumentNode


class FakeFetcher(BaseFetcher):
    """
    Serves a page tree from dictionaries.

    pages maps a page id to a dict with 'title', 'body', 'children' (ids) and
    'attachments' (list of (name, locator) tuples).
    """

    def __init__(self, pages, downloads=None, failing_pages=(), failing_listings=(), failing_downloads=()):
        super().__init__({})
        self.pages = pages
        self.downloads = downloads or {}
        self.failing_pages = set(failing_pages)
        self.failing_listings = set(failing_listings)
        self.failing_downloads = set(failing_downloads)
        self.fetched = []
        self.downloaded = []
        self._lock = threading.Lock()

    def fetch_document(self, page_id, depth=0):
        self.fetched.append(page_id)
        if page_id in self.failing_pages:
            raise TransportError(f"connection reset while fetching {page_id}")
        if page_id not in self.pages:
            raise NotFoundError(f"HTTP 404: page {page_id}", status_code=404)
        page = self.pages[page_id]
        return DocumentNode(
            id=page_id,
            title=page['title'],
            depth=depth,
            body=page.get('body', ''),
            author=page.get('author'),
            last_modified=page.get('last_modified')
        )

    def list_children(self, page_id):
        if page_id in self.failing_listings:
            raise TransportError(f"listing children of {page_id} failed")
        children = self.pages.get(page_id, {}).get('children', [])
        return [ChildSummary(id=child_id, title=self.pages.get(child_id, {}).get('title', '')) for child_id in children]

    def list_attachments(self, page_id):
        return [
            AttachmentRecord(name=name, download_locator=locator)
            for name, locator in self.pages.get(page_id, {}).get('attachments', [])
        ]

    def download(self, locator):
        with self._lock:
            self.downloaded.append(locator)
        if locator in self.failing_downloads:
            raise TransportError(f"HTTP 500: {locator}", status_code=500)
        return self.downloads.get(locator, locator.encode('utf-8'))

    def page_url(self, page_id):
        return f'https://wiki.example.com/pages/viewpage.action?pageId={page_id}'


DIAGRAM_BODY = (
    '<p>Intro</p>'
    '<ac:structured-macro ac:name="drawio">'
    '<ac:parameter ac:name="diagramName">Flow</ac:parameter>'
    '</ac:structured-macro>'
    '<ac:image><ri:attachment ri:filename="pic.png" /></ac:image>'
)


def sample_tree():
    """Root with two leaves titled alike, a failing page and a nested section."""
    return {
        '1': {
            'title': 'Root',
            'body': DIAGRAM_BODY,
            'children': ['2', '3', '4', '6'],
            'author': 'Ann Author',
            'last_modified': '2024-03-05T10:20:30.000Z',
            'attachments': [
                ('pic.png', '/download/attachments/1/pic.png'),
                ('Flow.png', '/download/attachments/1/Flow.png'),
                ('Flow', '/download/attachments/1/Flow'),
                ('manual.pdf', '/download/attachments/1/manual.pdf')
            ]
        },
        '2': {'title': 'Notes', 'body': '<p>first</p>'},
        '3': {'title': 'Broken', 'body': '<p>never seen</p>'},
        '4': {'title': 'Notes', 'body': '<p>second</p>'},
        '6': {'title': 'Guide', 'body': '<h2>Guide</h2>', 'children': ['5']},
        '5': {
            'title': 'Deep',
            'body': '<ac:image><ri:attachment ri:filename="d.png" /></ac:image>',
            'attachments': [('d.png', '/download/attachments/5/d.png')]
        }
    }


@pytest.fixture
def fake_fetcher():
    """Factory building a FakeFetcher, by default over sample_tree() with page 3 failing."""
    def make(pages=None, **kwargs):
        if pages is None:
            pages = sample_tree()
            kwargs.setdefault('failing_pages', {'3'})
        return FakeFetcher(pages, **kwargs)
    return make


@pytest.fixture
def crawl_config(tmp_path):
    return {
        'export': {
            'output_directory': str(tmp_path / 'out'),
            'download_workers': 3,
            'progress_bars': False,
            'index_filename': 'INDEX.md'
        }
    }
