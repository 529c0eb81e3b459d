"""
Orchestration package for extracting Confluence page trees.

This package provides the crawl layer that walks a page tree depth-first:
Fetch → Convert → Download → Write → Index, plus the run report.
"""

from .crawler import Crawler
from .extraction_report import ExtractionReport

__all__ = [
    'Crawler',
    'ExtractionReport'
]
