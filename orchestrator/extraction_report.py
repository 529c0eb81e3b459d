"""
Extraction report generator.

Builds a summary of one crawl from its CrawlContext, formatted for console
display and optional JSON export.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from models import CrawlContext


class ExtractionReport:
    """Aggregates the statistics of an extraction run into a report."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger('confluence_extractor.report')

    def generate_report(self, context: CrawlContext, root_id: str, root_title: str) -> Dict[str, Any]:
        """
        Generate the report of a finished crawl.

        Args:
            context: Context of the run
            root_id: ID of the extraction root
            root_title: Title of the extraction root

        Returns:
            Report dictionary
        """
        stats = context.stats
        elapsed = float(stats.get('elapsed_seconds', 0.0))

        return {
            'summary': {
                'root_id': root_id,
                'root_title': root_title,
                'output_base': context.output_base,
                'started_at': context.started_at,
                'finished_at': datetime.now().isoformat(),
                'duration_seconds': elapsed,
                'duration_formatted': self._format_duration(elapsed),
                'pages_written': stats.get('pages_written', 0),
                'pages_skipped': stats.get('pages_skipped', 0)
            },
            'resources': {
                'images_downloaded': stats.get('images_downloaded', 0),
                'images_failed': stats.get('images_failed', 0),
                'attachments_downloaded': stats.get('attachments_downloaded', 0),
                'attachments_failed': stats.get('attachments_failed', 0)
            },
            'skipped': list(context.skipped),
            'documents': [record.to_dict() for record in context.records]
        }

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            minutes = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{minutes}m {secs}s"
        else:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            secs = int(seconds % 60)
            return f"{hours}h {minutes}m {secs}s"

    def format_console_report(self, report: Dict[str, Any]) -> str:
        """
        Format report for console display.

        Args:
            report: Report dictionary from generate_report

        Returns:
            Formatted console string
        """
        summary = report.get('summary', {})
        resources = report.get('resources', {})

        sections = [
            "=" * 60,
            "EXTRACTION REPORT",
            "=" * 60,
            "",
            "Summary:",
            f"  Root:        {summary.get('root_title', '')} ({summary.get('root_id', '')})",
            f"  Output:      {summary.get('output_base', '')}",
            f"  Pages:       {summary.get('pages_written', 0)} written, "
            f"{summary.get('pages_skipped', 0)} skipped",
            f"  Images:      {resources.get('images_downloaded', 0)} downloaded, "
            f"{resources.get('images_failed', 0)} failed",
            f"  Attachments: {resources.get('attachments_downloaded', 0)} downloaded, "
            f"{resources.get('attachments_failed', 0)} failed",
            f"  Duration:    {summary.get('duration_formatted', '0s')}",
            ""
        ]

        skipped = report.get('skipped', [])
        if skipped:
            sections.append("Skipped Pages:")
            sections.append("-" * 60)
            for entry in skipped[:20]:
                sections.append(f"  {entry.get('id')}: {entry.get('reason')}")
            if len(skipped) > 20:
                sections.append(f"  ... and {len(skipped) - 20} more")
            sections.append("")

        sections.append("=" * 60)
        return "\n".join(sections)

    def export_json_report(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            report: Report dictionary
            filepath: Output file path
        """
        try:
            with open(filepath, 'w', encoding='utf-8') as f:
                json.dump(report, f, indent=2, ensure_ascii=False, default=str)
            self.logger.info(f"JSON report exported to {filepath}")
        except OSError as e:
            self.logger.error(f"Failed to export JSON report: {str(e)}")


__all__ = ['ExtractionReport']
