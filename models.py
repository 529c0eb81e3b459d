"""Data models for the Confluence page-tree extraction pipeline."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set
from datetime import datetime

logger = logging.getLogger('confluence_extractor')


class RefKind(Enum):
    """Kinds of resource references found inside a page body."""
    ATTACHMENT = "attachment"
    URL = "url"


class NodeState(Enum):
    """Processing states of a single page during a crawl."""
    UNVISITED = "unvisited"
    FETCHING = "fetching"
    LAYOUT_DECIDED = "layout_decided"
    RESOURCES_RESOLVED = "resources_resolved"
    WRITTEN = "written"
    RECURSING = "recursing"
    DONE = "done"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class DocumentNode:
    """A fetched Confluence page. Immutable once fetched."""

    id: str
    title: str
    depth: int
    body: str = ''
    author: Optional[str] = None
    last_modified: Optional[str] = None

    def is_root(self) -> bool:
        """Check if this node is the extraction root."""
        return self.depth == 0


@dataclass(frozen=True)
class ChildSummary:
    """Entry of a child page listing."""

    id: str
    title: str


@dataclass(frozen=True)
class ResourceRef:
    """Reference to binary content discovered in a page body."""

    kind: RefKind
    key: str

    @property
    def is_attachment(self) -> bool:
        return self.kind is RefKind.ATTACHMENT


@dataclass(frozen=True)
class AttachmentRecord:
    """Attachment registered against a page on the remote system."""

    name: str
    download_locator: Optional[str]
    media_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize attachment record to dictionary."""
        return {
            'name': self.name,
            'download_locator': self.download_locator,
            'media_type': self.media_type
        }


@dataclass(frozen=True)
class PlacementDecision:
    """Where a page's markdown file and its pooled resources live."""

    container_directory: str
    file_path: str
    resource_root_directory: str
    name_prefix: str = ''


@dataclass
class ResolvedResource:
    """A resource scheduled for download into the shared pool."""

    key: str
    download_locator: str
    target_path: str
    local_path: str
    source_name: str = ''
    downloaded: bool = False


@dataclass(frozen=True)
class VisitationRecord:
    """One successfully written page, in pre-order traversal order."""

    title: str
    depth: int
    file_path: str
    source_locator: str

    def to_dict(self) -> Dict[str, Any]:
        """Serialize record to dictionary."""
        return {
            'title': self.title,
            'depth': self.depth,
            'file_path': self.file_path,
            'source_locator': self.source_locator
        }


@dataclass
class CrawlContext:
    """
    Mutable state of one extraction run.

    Owned by the crawler and only mutated from its thread; download workers
    never touch it.
    """

    output_base: str
    visited: Set[str] = field(default_factory=set)
    records: List[VisitationRecord] = field(default_factory=list)
    node_states: Dict[str, NodeState] = field(default_factory=dict)
    reserved_paths: Set[str] = field(default_factory=set)
    skipped: List[Dict[str, str]] = field(default_factory=list)
    stats: Dict[str, int] = field(default_factory=dict)
    started_at: Optional[str] = None

    def __post_init__(self) -> None:
        """Initialize default statistics if empty."""
        if not self.stats:
            self.stats = {
                'pages_written': 0,
                'pages_skipped': 0,
                'images_downloaded': 0,
                'images_failed': 0,
                'attachments_downloaded': 0,
                'attachments_failed': 0
            }
        if self.started_at is None:
            self.started_at = datetime.now().isoformat()

    def mark(self, page_id: str, state: NodeState) -> None:
        """Record the state transition of a page."""
        self.node_states[page_id] = state
        logger.debug(f"Page {page_id} -> {state.value}")

    def state_of(self, page_id: str) -> NodeState:
        """Get current state of a page."""
        return self.node_states.get(page_id, NodeState.UNVISITED)

    def add_stat(self, name: str, amount: int = 1) -> None:
        """Increment a run statistic."""
        self.stats[name] = self.stats.get(name, 0) + amount


__all__ = [
    'AttachmentRecord',
    'ChildSummary',
    'CrawlContext',
    'DocumentNode',
    'NodeState',
    'PlacementDecision',
    'RefKind',
    'ResolvedResource',
    'ResourceRef',
    'VisitationRecord'
]
