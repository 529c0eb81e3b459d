"""
Page-tree crawler coordinating fetch, conversion, resource download and writing.

The crawl is a sequential depth-first pre-order walk. For each page:
Fetch → Layout → Convert → Resolve resources → Download → Write → Recurse.
Only the downloads of a single page run in parallel.
"""

import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from config_loader import get_nested
from converters import MarkdownConverter, find_diagram_names
from exporters import (
    IndexGenerator,
    LayoutPolicy,
    MarkdownExporter,
    ResourcePool,
    ResourceResolver,
    sanitize_filename
)
from fetchers.base_fetcher import BaseFetcher, FetcherError, NotFoundError
from logger import ProgressTracker
from models import CrawlContext, NodeState, ResolvedResource, VisitationRecord

logger = logging.getLogger('confluence_extractor.crawler')


class Crawler:
    """Extracts a Confluence page and all of its descendants into a Markdown archive."""

    def __init__(
        self,
        config: Dict[str, Any],
        fetcher: BaseFetcher,
        logger: Optional[logging.Logger] = None,
        converter: Optional[MarkdownConverter] = None,
        exporter: Optional[MarkdownExporter] = None
    ):
        """
        Initialize the crawler.

        Args:
            config: Configuration dictionary
            fetcher: Content source for pages, listings and downloads
            logger: Optional logger instance
            converter: Markup converter (built from config when omitted)
            exporter: Markdown exporter (built from config when omitted)
        """
        self.config = config or {}
        self.fetcher = fetcher
        self.logger = logger or logging.getLogger('confluence_extractor.crawler')
        self.converter = converter or MarkdownConverter(config=self.config)
        self.exporter = exporter or MarkdownExporter(self.config)
        self.index_generator = IndexGenerator()

        self.output_directory = Path(get_nested(self.config, 'export.output_directory', './docs'))
        self.download_workers = get_nested(self.config, 'export.download_workers', 5)
        self.progress_bars = get_nested(self.config, 'export.progress_bars', True)
        self.index_filename = get_nested(self.config, 'export.index_filename', 'INDEX.md')

        # Per-run collaborators, created by extract()
        self.layout: Optional[LayoutPolicy] = None
        self.resolver: Optional[ResourceResolver] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def extract(self, root_id: str, root_title: Optional[str] = None) -> CrawlContext:
        """
        Extract the tree below a root page.

        Args:
            root_id: ID of the extraction root
            root_title: Title of the root when already known

        Returns:
            CrawlContext holding the records, skipped pages and statistics of the run

        Raises:
            NotFoundError: If the root page cannot be found
            OSError: If a page file cannot be written
        """
        if root_title is None:
            root_title = self.fetcher.fetch_title(root_id)
            if root_title is None:
                raise NotFoundError(f"Page {root_id} not found or not accessible")

        output_base = self.output_directory / sanitize_filename(root_title)
        context = CrawlContext(output_base=str(output_base))

        self.layout = LayoutPolicy(
            output_base,
            reserved_paths=context.reserved_paths,
            index_filename=self.index_filename
        )
        self.resolver = ResourceResolver(ResourcePool(output_base))

        self.logger.info(f"Extracting '{root_title}' (page {root_id}) into {output_base}")
        start_time = time.time()

        with ThreadPoolExecutor(max_workers=self.download_workers) as executor:
            self._executor = executor
            try:
                self._visit(root_id, output_base, 0, context)
            finally:
                self._executor = None

        if context.records:
            content = self.index_generator.render(context.records, root_title)
            self.index_generator.write(output_base, content, self.index_filename)
        else:
            self.logger.error(f"No page of the tree below {root_id} could be written")

        context.stats['elapsed_seconds'] = round(time.time() - start_time, 2)
        self.logger.info(
            f"Extracted {len(context.records)} document(s) in "
            f"{context.stats['elapsed_seconds']:.1f}s to {output_base}"
        )
        return context

    def _visit(self, page_id: str, parent_directory: Path, depth: int, context: CrawlContext) -> None:
        """Process one page, then its children in listing order."""
        if page_id in context.visited:
            self.logger.debug(f"Page {page_id} already visited")
            return

        context.visited.add(page_id)
        context.mark(page_id, NodeState.FETCHING)

        try:
            node = self.fetcher.fetch_document(page_id, depth)
        except FetcherError as e:
            self._skip(page_id, str(e), context)
            return

        if not node.title or not node.title.strip():
            self._skip(page_id, "page has no title", context)
            return

        children = self._list_or_empty(self.fetcher.list_children, page_id, 'child pages')
        attachments = self._list_or_empty(self.fetcher.list_attachments, page_id, 'attachments')

        placement = self.layout.decide(node, parent_directory, has_children=bool(children))
        context.mark(page_id, NodeState.LAYOUT_DECIDED)

        markdown, refs = self.converter.convert_markup(node.body)
        diagram_names = find_diagram_names(node.body)

        images = self.resolver.resolve_images(refs, attachments, placement)
        context.mark(page_id, NodeState.RESOURCES_RESOLVED)

        downloaded_images = self._download_all(list(images.values()), 'images', node.title, context)
        for resource in downloaded_images:
            markdown = markdown.replace(f']({resource.key})', f']({resource.local_path})')

        attachment_keys = {ref.key for ref in refs if ref.is_attachment}
        satisfied = {
            resource.source_name
            for resource in downloaded_images
            if resource.key in attachment_keys
        }
        remaining = self.resolver.remaining_attachments(attachments, satisfied, diagram_names)
        planned = self.resolver.resolve_attachments(remaining, placement, diagram_names)
        downloaded_attachments = self._download_all(planned, 'attachments', node.title, context)

        source_locator = self.fetcher.page_url(page_id)
        content = self.exporter.render(node, markdown, downloaded_attachments, source_locator)
        self.exporter.write(Path(placement.file_path), content)
        context.mark(page_id, NodeState.WRITTEN)

        relative_path = Path(placement.file_path).relative_to(Path(context.output_base)).as_posix()
        context.records.append(VisitationRecord(
            title=node.title,
            depth=depth,
            file_path=relative_path,
            source_locator=source_locator
        ))
        context.add_stat('pages_written')

        self.logger.info(
            f"{'  ' * depth}Wrote '{node.title}' ({len(children)} children, "
            f"{len(downloaded_images)}/{len(images)} images, "
            f"{len(downloaded_attachments)}/{len(planned)} attachments)"
        )

        context.mark(page_id, NodeState.RECURSING)
        for child in children:
            self._visit(child.id, Path(placement.container_directory), depth + 1, context)
        context.mark(page_id, NodeState.DONE)

    def _skip(self, page_id: str, reason: str, context: CrawlContext) -> None:
        self.logger.warning(f"Skipping page {page_id} and its descendants: {reason}")
        context.mark(page_id, NodeState.SKIPPED)
        context.skipped.append({'id': page_id, 'reason': reason})
        context.add_stat('pages_skipped')

    def _list_or_empty(self, listing: Callable[[str], List[Any]], page_id: str, what: str) -> List[Any]:
        """Run a listing call, treating a failure as an empty listing."""
        try:
            return listing(page_id)
        except FetcherError as e:
            self.logger.warning(f"Could not list {what} of page {page_id}, assuming none: {e}")
            return []

    def _download_all(
        self,
        resources: List[ResolvedResource],
        item_type: str,
        page_title: str,
        context: CrawlContext
    ) -> List[ResolvedResource]:
        """
        Download a batch of resources on the worker pool.

        Results are collected in submission order, so the outcome does not
        depend on which worker finishes first.

        Returns:
            The resources that were downloaded, in their original order
        """
        if not resources:
            return []

        futures = [
            (resource, self._executor.submit(self._download_one, resource))
            for resource in resources
        ]

        iterator = futures
        if self._should_show_progress():
            iterator = tqdm(
                futures,
                desc=f"{item_type.capitalize()}: {page_title[:30]}",
                unit='file',
                leave=False
            )

        with ProgressTracker(len(resources), item_type, self.logger) as tracker:
            for resource, future in iterator:
                try:
                    future.result()
                except (FetcherError, OSError) as e:
                    tracker.increment(success=False)
                    context.add_stat(f'{item_type}_failed')
                    self.logger.debug(f"Failed to download '{resource.source_name or resource.key}': {e}")
                    continue
                resource.downloaded = True
                tracker.increment(success=True)
                context.add_stat(f'{item_type}_downloaded')

        return [resource for resource in resources if resource.downloaded]

    def _download_one(self, resource: ResolvedResource) -> Path:
        """Fetch one resource and store it at its reserved path (runs on a worker)."""
        content = self.fetcher.download(resource.download_locator)
        target = Path(resource.target_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return target

    def _should_show_progress(self) -> bool:
        """Progress bars only on an interactive terminal."""
        return bool(self.progress_bars) and sys.stderr.isatty()


__all__ = ['Crawler']
