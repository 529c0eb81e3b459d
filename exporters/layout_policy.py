"""Directory layout policy for extracted pages."""

import logging
import re
from pathlib import Path
from typing import Optional, Set

from models import DocumentNode, PlacementDecision

logger = logging.getLogger('confluence_extractor.exporters.layout_policy')

MAX_NAME_LENGTH = 100
UNSAFE_CHARS_PATTERN = re.compile(r'[/\\:*?"<>|]')
WHITESPACE_PATTERN = re.compile(r'\s+')

IMAGES_DIRECTORY = 'images'
ATTACHMENTS_DIRECTORY = 'attachments'


def sanitize_filename(title: str) -> str:
    """
    Convert a page title to a filesystem-safe name.

    Path separators, characters reserved on common filesystems and
    whitespace runs become underscores; the result is cut to 100 characters.

    Args:
        title: Page title

    Returns:
        Sanitized filename (never empty)
    """
    if not title:
        return 'untitled'

    sanitized = UNSAFE_CHARS_PATTERN.sub('_', title)
    sanitized = WHITESPACE_PATTERN.sub('_', sanitized)
    sanitized = sanitized[:MAX_NAME_LENGTH]

    # "." and ".." would point at existing directories
    if not sanitized.strip('.'):
        sanitized = '_' * len(sanitized)

    return sanitized or 'untitled'


class LayoutPolicy:
    """
    Decides where each page of a run is written.

    The root page is written straight into the output base. Pages with
    children get their own directory, leaves are written next to their
    siblings. Every path handed out is reserved for the rest of the run so
    two pages can never be given the same file.
    """

    def __init__(
        self,
        output_base: Path,
        reserved_paths: Optional[Set[str]] = None,
        index_filename: str = 'INDEX.md',
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the layout policy.

        Args:
            output_base: Directory of the run (shared resource root)
            reserved_paths: Set used to record handed-out paths
            index_filename: Name of the index written at the output base
            logger: Logger instance
        """
        self.output_base = Path(output_base)
        self.reserved_paths = reserved_paths if reserved_paths is not None else set()
        self.logger = logger or logging.getLogger('confluence_extractor.exporters.layout_policy')

        for name in (index_filename, IMAGES_DIRECTORY, ATTACHMENTS_DIRECTORY):
            self.reserve(self.output_base / name)

    def reserve(self, path: Path) -> None:
        self.reserved_paths.add(str(Path(path)))

    def is_taken(self, path: Path) -> bool:
        """Check if a path exists on disk or was already handed out in this run."""
        return str(Path(path)) in self.reserved_paths or Path(path).exists()

    def decide(self, node: DocumentNode, parent_directory: Path, has_children: bool) -> PlacementDecision:
        """
        Compute the placement of a page.

        Args:
            node: Fetched page
            parent_directory: Directory of the parent page (output base for the root)
            has_children: Whether the page has child pages

        Returns:
            PlacementDecision for the page
        """
        parent_directory = Path(parent_directory)
        name = sanitize_filename(node.title)

        if node.is_root():
            # The root file of a previous run is overwritten, only run-reserved names are avoided
            container = parent_directory
            file_name = f'{name}.md'
            counter = 1
            while str(container / file_name) in self.reserved_paths:
                file_name = f'{name}_{counter}.md'
                counter += 1
            file_path = container / file_name
        elif has_children:
            directory_name = name
            counter = 1
            while self.is_taken(parent_directory / directory_name):
                directory_name = f'{name}_{counter}'
                counter += 1
            container = parent_directory / directory_name
            self.reserve(container)
            file_path = container / f'{name}.md'
        else:
            file_name = f'{name}.md'
            counter = 1
            while self.is_taken(parent_directory / file_name):
                file_name = f'{name}_{counter}.md'
                counter += 1
            container = parent_directory
            file_path = container / file_name

        self.reserve(file_path)
        name_prefix = '' if node.is_root() else f'{node.id}_'

        self.logger.debug(f"Placement for '{node.title}': {file_path}")
        return PlacementDecision(
            container_directory=str(container),
            file_path=str(file_path),
            resource_root_directory=str(self.output_base),
            name_prefix=name_prefix
        )


__all__ = [
    'LayoutPolicy',
    'sanitize_filename',
    'IMAGES_DIRECTORY',
    'ATTACHMENTS_DIRECTORY'
]
