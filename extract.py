#!/usr/bin/env python3
"""
Confluence Page Tree Extractor - Main CLI Entry Point

Extracts a Confluence page and all of its descendants into a local Markdown
archive: one file per page, a shared images/ and attachments/ pool and an
INDEX.md navigation list.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import yaml

# Add project root to Python path for relative imports
current_dir = Path(__file__).parent
sys.path.insert(0, str(current_dir))

from config_loader import ConfigLoader, get_nested
from confluence_client import ConfluenceClient
from exporters import sanitize_filename
from fetchers import ApiFetcher, FetcherError, UnauthorizedError, create_authenticator
from logger import log_config, log_section, setup_logging
from orchestrator import Crawler, ExtractionReport

# Version
__version__ = "1.0.0"

DEFAULT_CONFIG_PATH = 'config.yaml'
QUIT_COMMANDS = ('q', 'quit', 'exit')


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for CLI."""
    parser = argparse.ArgumentParser(
        description="Extract a Confluence page tree into a local Markdown archive",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Extract a page and its children
  python extract.py "https://confluence.example.com/pages/viewpage.action?pageId=123456"

  # Bare page ID, base URL from config.yaml
  python extract.py 123456

  # Interactive prompt loop
  python extract.py

  # Custom output directory with verbose logging
  python extract.py 123456 -o ./archive -vv
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        'page',
        nargs='?',
        help='Page URL containing a pageId parameter, or a bare numeric page ID'
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help=f'Path to configuration YAML file (default: {DEFAULT_CONFIG_PATH}, optional)'
    )

    parser.add_argument(
        '-o', '--output-dir',
        type=str,
        help='Directory receiving the extracted trees (default: ./docs)'
    )

    parser.add_argument(
        '--base-url',
        type=str,
        help='Confluence base URL, needed for bare page IDs'
    )

    parser.add_argument(
        '--auth-type',
        choices=['cookie', 'basic', 'bearer'],
        help='Authentication mode (default: cookie)'
    )

    parser.add_argument(
        '--cookie-file',
        type=str,
        help='File caching the session cookies (default: .cookies.json)'
    )

    parser.add_argument(
        '--workers',
        type=int,
        help='Parallel downloads per page (default: 5)'
    )

    parser.add_argument(
        '--timeout',
        type=int,
        help='Per-request timeout in seconds (default: 30)'
    )

    parser.add_argument(
        '--front-matter',
        action='store_true',
        help='Prepend YAML front matter to every page'
    )

    parser.add_argument(
        '--report',
        type=str,
        help='Write a JSON extraction report to this path'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bars'
    )

    parser.add_argument(
        '--insecure',
        action='store_true',
        help='Disable SSL certificate verification'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write logs to this file'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=0,
        help='Increase verbosity (-v for INFO, -vv for DEBUG)'
    )

    return parser


def parse_page_input(text: str, known_base_url: Optional[str] = None) -> Tuple[str, str]:
    """
    Turn user input into a (base_url, page_id) pair.

    Args:
        text: Page URL with a numeric pageId query parameter, or a bare page ID
        known_base_url: Base URL to use for bare page IDs

    Returns:
        Tuple of (base_url, page_id)

    Raises:
        ValueError: If the input is neither a usable URL nor a usable page ID
    """
    text = (text or '').strip()
    if not text:
        raise ValueError("No page URL or ID given")

    if text.isdigit():
        if not known_base_url:
            raise ValueError(
                "A bare page ID needs a known base URL; enter a full page URL first "
                "or set confluence.base_url"
            )
        return known_base_url.rstrip('/'), text

    parsed = urlparse(text)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ValueError(f"Not a page URL or numeric page ID: {text}")

    page_ids = parse_qs(parsed.query).get('pageId', [])
    if not page_ids or not page_ids[0].isdigit():
        raise ValueError(f"URL has no numeric pageId parameter: {text}")

    return f'{parsed.scheme}://{parsed.netloc}', page_ids[0]


def confirm(question: str, prompt: Callable[[str], str] = input) -> bool:
    """Ask a Y/n question; an empty answer means yes."""
    answer = prompt(f"{question} [Y/n] ").strip().lower()
    return answer in ('', 'y', 'yes')


class ExtractionSession:
    """
    Connection state shared by the extractions of one CLI invocation.

    The client is rebuilt, and the session re-established, whenever a page
    from another Confluence instance is requested.
    """

    def __init__(
        self,
        config: Dict[str, Any],
        logger: Optional[logging.Logger] = None,
        prompt: Callable[[str], str] = input
    ):
        self.config = config
        self.logger = logger or logging.getLogger('confluence_extractor.cli')
        self.prompt = prompt
        self.authenticator = create_authenticator(config, prompt=prompt)
        self.base_url: Optional[str] = get_nested(config, 'confluence.base_url')
        if not self.base_url:
            self.base_url = self.authenticator.saved_base_url()
            if self.base_url:
                self.logger.info(f"Using base URL {self.base_url} of the saved session")
        self.client: Optional[ConfluenceClient] = None
        self.fetcher: Optional[ApiFetcher] = None
        self.report_generator = ExtractionReport(self.logger)

    def resume(self) -> None:
        """Check the session of the last used instance before the first prompt."""
        if self.base_url:
            self.connect(self.base_url)

    def connect(self, base_url: str) -> ApiFetcher:
        """
        Return a fetcher for the given instance, authenticating when the base URL changes.

        Raises:
            UnauthorizedError: If no valid session can be established
        """
        base_url = base_url.rstrip('/')
        if self.fetcher is not None and base_url == self.base_url:
            return self.fetcher

        if self.base_url and base_url != self.base_url:
            self.logger.info(f"Base URL changed from {self.base_url} to {base_url}")

        self.fetcher = None
        self.base_url = base_url
        self.config['confluence']['base_url'] = base_url
        self.authenticator.rebind(base_url)

        self.client = ConfluenceClient.from_config(self.config, authenticator=self.authenticator)
        self.client.ensure_session()
        self.fetcher = ApiFetcher(self.config, client=self.client)
        return self.fetcher

    def run(self, page_input: str, interactive: bool = False) -> int:
        """
        Extract one page tree.

        Args:
            page_input: Page URL or bare page ID
            interactive: Ask for confirmation before writing anything

        Returns:
            Exit code (0 success, 1 failure or skipped pages)
        """
        try:
            base_url, page_id = parse_page_input(page_input, self.base_url)
        except ValueError as e:
            self.logger.error(str(e))
            return 1

        fetcher = self.connect(base_url)

        title = fetcher.fetch_title(page_id)
        if title is None:
            self.logger.error(f"Page {page_id} not found on {base_url}")
            return 1

        output_base = Path(get_nested(self.config, 'export.output_directory', './docs')) / sanitize_filename(title)
        print(f"Page: {title}")
        if interactive and not confirm(f"Extract '{title}' and all its children into {output_base}?", self.prompt):
            print("Skipped.")
            return 0

        crawler = Crawler(self.config, fetcher, logger=logging.getLogger('confluence_extractor.crawler'))
        context = crawler.extract(page_id, root_title=title)

        report = self.report_generator.generate_report(context, page_id, title)
        print("\n" + self.report_generator.format_console_report(report))

        report_path = get_nested(self.config, 'export.report_path')
        if report_path:
            self.report_generator.export_json_report(report, report_path)

        if context.skipped or not context.records:
            self.logger.warning(f"Extraction finished with {len(context.skipped)} skipped page(s)")
            return 1
        return 0


def interactive_loop(session: ExtractionSession, prompt: Callable[[str], str] = input) -> int:
    """Prompt for pages until the user quits."""
    print("Enter a Confluence page URL or page ID ('q' to quit).")
    exit_code = 0
    while True:
        try:
            page_input = prompt("> ").strip()
        except EOFError:
            break
        if not page_input:
            continue
        if page_input.lower() in QUIT_COMMANDS:
            break

        try:
            exit_code = session.run(page_input, interactive=True)
        except FetcherError as e:
            session.logger.error(f"Extraction failed: {e}")
            exit_code = 1
    return exit_code


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    try:
        logger = setup_logging(verbosity=args.verbose, log_file=args.log_file)

        log_section("Confluence Page Tree Extractor")
        logger.info(f"Version: {__version__}")

        # An explicitly named config file must exist, the default one is optional
        config = ConfigLoader.load_with_defaults(
            args.config or DEFAULT_CONFIG_PATH,
            required=bool(args.config)
        )

        # Merge with CLI arguments (CLI takes precedence)
        config = ConfigLoader.merge_with_args(config, args)
        ConfigLoader.validate(config)

        # Reconfigure logging with config file settings
        logging_config = config.get('logging', {})
        if logging_config.get('level') or logging_config.get('file'):
            logger = setup_logging(
                verbosity=args.verbose,
                log_file=logging_config.get('file'),
                level=logging_config.get('level')
            )

        log_config(config)

        session = ExtractionSession(config, logger=logger)
        if args.page:
            return session.run(args.page)
        session.resume()
        return interactive_loop(session)

    except FileNotFoundError as e:
        print(f"ERROR: File not found: {e}", file=sys.stderr)
        return 2
    except ValueError as e:
        print(f"ERROR: Configuration error: {e}", file=sys.stderr)
        return 2
    except yaml.YAMLError as e:
        print(f"ERROR: Invalid configuration file: {e}", file=sys.stderr)
        return 2
    except UnauthorizedError as e:
        print(f"ERROR: Authentication failed: {e}", file=sys.stderr)
        return 1
    except FetcherError as e:
        print(f"ERROR: Extraction failed: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"ERROR: Could not write output: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nExtraction interrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
