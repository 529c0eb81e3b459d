"""Markdown document assembly and writing for extracted pages."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dateutil.parser import isoparse

from models import DocumentNode, ResolvedResource


class MarkdownExporter:
    """
    Renders and writes the Markdown file of one page.

    A document is made of:
    1. The page title as a level-1 heading
    2. An optional author / last-modified byline
    3. A horizontal rule followed by the converted body
    4. An optional section listing the downloaded attachments
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, logger: Optional[logging.Logger] = None):
        """
        Initialize the markdown exporter.

        Args:
            config: Configuration dictionary with export settings
            logger: Logger instance
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('confluence_extractor.exporters.markdown_exporter')

        export_config = self.config.get('export', {})
        self.front_matter = export_config.get('front_matter', False)

        self.stats = {
            'documents_written': 0,
            'bytes_written': 0
        }

    def render(
        self,
        node: DocumentNode,
        body: str,
        attachments: Optional[List[ResolvedResource]] = None,
        source_locator: Optional[str] = None
    ) -> str:
        """
        Assemble the final Markdown text of a page.

        Args:
            node: Page being written
            body: Converted Markdown body with local image paths
            attachments: Downloaded plain attachments, in download order
            source_locator: URL of the page on the remote system

        Returns:
            Markdown document text
        """
        parts = []
        if self.front_matter:
            parts.append(self._generate_frontmatter(node, source_locator))

        parts.append(f'# {node.title}\n\n')

        byline = self._byline(node)
        if byline:
            parts.append(f'{byline}\n\n')

        parts.append('---\n\n')
        parts.append(body)

        if attachments:
            parts.append('\n\n---\n\n## Attachments\n\n')
            for attachment in attachments:
                parts.append(f'- [{attachment.source_name}]({attachment.local_path})\n')

        parts.append('\n')
        return ''.join(parts)

    def write(self, file_path: Path, content: str) -> Path:
        """
        Write a document, creating its directory.

        Filesystem errors are not caught: a page that cannot be written
        aborts the run.
        """
        file_path = Path(file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding='utf-8')

        self.stats['documents_written'] += 1
        self.stats['bytes_written'] += len(content.encode('utf-8'))
        self.logger.debug(f"Wrote {file_path}")
        return file_path

    def _byline(self, node: DocumentNode) -> str:
        if not node.author and not node.last_modified:
            return ''

        byline = '>'
        if node.author:
            byline += f' Author: {node.author}'
        if node.last_modified:
            if node.author:
                byline += ' |'
            byline += f' Last modified: {self._format_timestamp(node.last_modified)}'
        return byline

    def _format_timestamp(self, value: str) -> str:
        """Render an ISO-8601 timestamp as 'YYYY-MM-DD HH:MM', leaving other text as is."""
        try:
            return isoparse(value).strftime('%Y-%m-%d %H:%M')
        except (ValueError, TypeError, OverflowError):
            return str(value)

    def _generate_frontmatter(self, node: DocumentNode, source_locator: Optional[str]) -> str:
        """Generate YAML front matter with the page's remote metadata."""
        frontmatter = {
            'confluence_page_id': node.id,
            'title': node.title
        }
        if source_locator:
            frontmatter['source_url'] = source_locator
        if node.author:
            frontmatter['author'] = node.author
        if node.last_modified:
            frontmatter['last_modified'] = node.last_modified

        yaml_str = yaml.safe_dump(
            frontmatter,
            allow_unicode=True,
            default_flow_style=False,
            sort_keys=False,
            width=1000
        )
        return f'---\n{yaml_str}---\n\n'


__all__ = ['MarkdownExporter']
