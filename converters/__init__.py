"""Converters package for Confluence storage-format to Markdown conversion."""

import logging

from .macro_handler import MacroHandler, ReferenceCollector, find_diagram_names
from .markdown_converter import MarkdownConverter

logger = logging.getLogger('confluence_extractor.converters')


def convert_markup(body, config=None, logger=None):
    """
    Convenience function to convert a page body to Markdown.

    This runs the full conversion pipeline:
    1. Storage-format macro passes (code, draw.io, images, page links)
    2. Generic HTML to Markdown rendering using markdownify
    3. Whitespace normalization

    Args:
        body: Storage-format markup of one page
        config: Optional configuration dictionary for converter behavior
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        Tuple of (markdown, list of ResourceRef)

    Example:
        >>> from converters import convert_markup
        >>> markdown, refs = convert_markup('<h1>Title</h1><p>Hello</p>')
        >>> print(markdown)
        # Title

        Hello
    """
    if logger is None:
        logger = logging.getLogger('confluence_extractor.converters')

    converter = MarkdownConverter(logger=logger, config=config)
    return converter.convert_markup(body)


__all__ = [
    'convert_markup',
    'MarkdownConverter',
    'MacroHandler',
    'ReferenceCollector',
    'find_diagram_names'
]
