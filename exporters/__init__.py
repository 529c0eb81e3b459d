"""Markdown export package for the Confluence page-tree extractor.

This package turns converted pages into a local Markdown archive.

Package Structure:
- layout_policy: Filesystem-safe names and the placement of each page
- resource_resolver: Collision-free names and relative paths for images and attachments
- markdown_exporter: Assembles and writes the Markdown file of a page
- index_generator: Renders INDEX.md from the visitation records of a run

Configuration Referenced:
- export.output_directory: Base output path for extracted trees
- export.index_filename: Name of the navigation index
- export.front_matter: Prepend YAML front matter to each page
"""

from .index_generator import IndexGenerator
from .layout_policy import LayoutPolicy, sanitize_filename
from .markdown_exporter import MarkdownExporter
from .resource_resolver import ResourcePool, ResourceResolver

__all__ = [
    'IndexGenerator',
    'LayoutPolicy',
    'MarkdownExporter',
    'ResourcePool',
    'ResourceResolver',
    'sanitize_filename'
]
