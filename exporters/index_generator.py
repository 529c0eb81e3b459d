"""Navigation index generation for an extracted page tree."""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from models import VisitationRecord


class IndexGenerator:
    """Renders the visitation records of a run as a nested Markdown list."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('confluence_extractor.exporters.index_generator')

    def render(
        self,
        records: List[VisitationRecord],
        root_title: str,
        generated_at: Optional[datetime] = None
    ) -> str:
        """
        Render the index document.

        Args:
            records: Written pages in pre-order
            root_title: Title of the extraction root
            generated_at: Timestamp shown in the header (defaults to now)

        Returns:
            Markdown text of the index
        """
        generated_at = generated_at or datetime.now()

        lines = [
            f'# {root_title}: Document Index',
            '',
            f'> Generated: {generated_at.strftime("%Y-%m-%d %H:%M:%S")}',
            f'> Documents: {len(records)}',
            '',
            '---',
            ''
        ]
        for record in records:
            indent = '  ' * max(record.depth, 0)
            link = Path(record.file_path).as_posix().replace(' ', '%20')
            lines.append(f'{indent}- [{record.title}]({link})')

        return '\n'.join(lines) + '\n'

    def write(self, output_base: Path, content: str, filename: str = 'INDEX.md') -> Path:
        """Write the rendered index at the root of the output directory."""
        index_path = Path(output_base) / filename
        index_path.parent.mkdir(parents=True, exist_ok=True)
        index_path.write_text(content, encoding='utf-8')
        self.logger.info(f"Index written: {index_path}")
        return index_path


__all__ = ['IndexGenerator']
