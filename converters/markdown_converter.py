"""Markdown converter for Confluence storage-format page bodies."""

import html
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup
from markdownify import MarkdownConverter as MarkdownifyConverter

from models import RefKind, ResourceRef
from .macro_handler import MacroHandler, ReferenceCollector, RESOURCE_ATTR

logger = logging.getLogger('confluence_extractor.converters.markdownconverter')

# Table cells and rows are emitted with these marks and split again by
# convert_table. Both are stripped from input bodies beforehand.
CELL_MARK = '\x1f'
ROW_MARK = '\x1e'

CONTROL_CHARS_PATTERN = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f]')
TAG_PATTERN = re.compile(r'<[^>]*>')
IMG_TAG_PATTERN = re.compile(r'<img\b[^>]*>', re.IGNORECASE)
SRC_ATTR_PATTERN = re.compile(r'\bsrc="([^"]*)"', re.IGNORECASE)
FENCE_PATTERN = re.compile(r'^\s*(`{3,})')


def _chomp(text: str) -> Tuple[str, str, str]:
    """Split surrounding whitespace off inline text, keeping a single space."""
    prefix = ' ' if text and text[0] in ' \t\n' else ''
    suffix = ' ' if text and text[-1] in ' \t\n' else ''
    return prefix, suffix, text.strip()


class MarkdownConverter(MarkdownifyConverter):
    """
    Converts Confluence storage-format bodies to Markdown.

    The macro passes of MacroHandler run first on the raw markup; the
    remaining HTML is parsed with BeautifulSoup and rendered through the
    convert_* handlers below. Every image reference met along the way is
    collected so the caller can download it.
    """

    def __init__(self, logger: logging.Logger = None, config: Dict[str, Any] = None, **kwargs):
        """Initialize markdown converter with logger and configuration."""
        markdownify_options = {
            'heading_style': 'ATX',
            'bullets': '-',
            'escape_asterisks': False,
            'escape_underscores': False,
            'wrap': False
        }
        markdownify_options.update(kwargs)
        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('confluence_extractor.converters.markdownconverter')
        self.config = config or {}
        self.macro_handler = MacroHandler(self.logger)
        self._refs: Optional[ReferenceCollector] = None

    def convert_markup(self, body: str) -> Tuple[str, List[ResourceRef]]:
        """
        Convert a page body to Markdown.

        Never raises: when the HTML stage fails the body degrades to its
        plain text.

        Args:
            body: Storage-format markup of one page

        Returns:
            Tuple of (markdown, resource references in discovery order)
        """
        refs = ReferenceCollector()
        self._refs = refs
        content = CONTROL_CHARS_PATTERN.sub('', body or '')

        try:
            content, _ = self.macro_handler.convert(content, refs)
        except Exception as e:
            # Regex passes only fail on pathological input; keep going with the raw body
            self.logger.warning(f"Macro conversion failed, continuing with raw markup: {e}")

        try:
            soup = BeautifulSoup(content, 'lxml')
            markdown = self.convert_soup(soup)
        except Exception as e:
            self.logger.warning(f"HTML conversion failed, falling back to plain text: {e}")
            markdown = self._fallback_text(content, refs)
        finally:
            self._refs = None

        markdown = self._final_cleanup(markdown)
        self.logger.debug(f"Converted body: {len(markdown)} characters, {len(refs)} resource references")
        return markdown, refs.refs

    def _fallback_text(self, content: str, refs: ReferenceCollector) -> str:
        """Strip tags and decode entities, still registering generic images."""
        for tag in IMG_TAG_PATTERN.findall(content):
            if RESOURCE_ATTR in tag:
                continue
            src_match = SRC_ATTR_PATTERN.search(tag)
            if src_match:
                refs.add(RefKind.URL, html.unescape(src_match.group(1)).strip())
        return html.unescape(TAG_PATTERN.sub('', content))

    def _final_cleanup(self, markdown: str) -> str:
        """Normalize whitespace outside code fences and trim the result."""
        markdown = markdown.replace(CELL_MARK, '').replace(ROW_MARK, '')
        markdown = markdown.replace('\xa0', ' ').replace('\r\n', '\n').replace('\r', '\n')

        result = []
        fence = None
        blank_run = 0
        for line in markdown.split('\n'):
            fence_match = FENCE_PATTERN.match(line)
            if fence is not None:
                result.append(line)
                if fence_match and fence_match.group(1) == fence and not line.strip().strip('`'):
                    fence = None
                continue

            line = line.rstrip()
            if fence_match:
                fence = fence_match.group(1)
            if not line:
                blank_run += 1
                if blank_run > 1:
                    continue
            else:
                blank_run = 0
            result.append(line)

        return '\n'.join(result).strip()

    @staticmethod
    def _is_inline(parent_tags) -> bool:
        if isinstance(parent_tags, (set, frozenset)):
            return '_inline' in parent_tags
        return bool(parent_tags)

    def _convert_hn(self, n, el, text, parent_tags=None, **kwargs):
        """Render headings as ATX headings on a single line."""
        text = ' '.join((text or '').split())
        if not text:
            return ''
        if self._is_inline(parent_tags):
            return text
        level = max(1, min(6, int(n)))
        return f"\n\n{'#' * level} {text}\n\n"

    def _inline_markup(self, text: str, marker: str) -> str:
        prefix, suffix, text = _chomp(text or '')
        if not text:
            return prefix
        return f'{prefix}{marker}{text}{marker}{suffix}'

    def convert_b(self, el, text, parent_tags=None, **kwargs):
        return self._inline_markup(text, '**')

    convert_strong = convert_b

    def convert_i(self, el, text, parent_tags=None, **kwargs):
        return self._inline_markup(text, '*')

    convert_em = convert_i

    def convert_code(self, el, text, parent_tags=None, **kwargs):
        """Handle inline code; code inside pre is rendered by convert_pre."""
        if el.find_parent('pre') is not None:
            return text
        prefix, suffix, text = _chomp(text or '')
        if not text:
            return prefix
        ticks = '``' if '`' in text else '`'
        return f'{prefix}{ticks}{text}{ticks}{suffix}'

    def convert_pre(self, el, text, parent_tags=None, **kwargs):
        """Render preformatted blocks as fenced code, content verbatim."""
        code = el.get_text().strip('\n')
        language = ''
        code_el = el.find('code')
        if code_el is not None:
            for cls in code_el.get('class', []):
                if cls.startswith('language-'):
                    language = cls[len('language-'):]
                    break

        fence = '```'
        while fence in code:
            fence += '`'
        if self._is_inline(parent_tags):
            return f' {" ".join(code.split())} '
        return f'\n\n{fence}{language}\n{code}\n{fence}\n\n'

    def convert_a(self, el, text, parent_tags=None, **kwargs):
        href = (el.get('href') or '').strip()
        prefix, suffix, text = _chomp(text or '')
        if not href:
            return f'{prefix}{text}{suffix}'
        if not text:
            text = href
        return f'{prefix}[{text}]({href}){suffix}'

    def convert_img(self, el, text, parent_tags=None, **kwargs):
        """Render images, registering generic ones as external-url references."""
        src = (el.get('src') or '').strip()
        if not src:
            return el.get('alt') or ''
        alt = el.get('alt')
        if alt is None:
            alt = 'image'

        if not el.has_attr(RESOURCE_ATTR) and self._refs is not None:
            self._refs.add(RefKind.URL, src)
        return f'![{alt}]({src})'

    def convert_hr(self, el, text, parent_tags=None, **kwargs):
        return '\n\n---\n\n'

    def convert_br(self, el, text, parent_tags=None, **kwargs):
        if self._is_inline(parent_tags):
            return ' '
        return '\n'

    def convert_p(self, el, text, parent_tags=None, **kwargs):
        text = (text or '').strip()
        if not text:
            return ''
        if self._is_inline(parent_tags):
            return f' {text} '
        return f'\n\n{text}\n\n'

    convert_div = convert_p

    def convert_blockquote(self, el, text, parent_tags=None, **kwargs):
        """Prefix every line of the quoted block."""
        text = (text or '').strip('\n')
        if not text.strip():
            return ''
        if self._is_inline(parent_tags):
            return f' {" ".join(text.split())} '
        lines = [f'> {line}' if line.strip() else '>' for line in text.split('\n')]
        return '\n\n' + '\n'.join(lines) + '\n\n'

    def convert_list(self, el, text, parent_tags=None, **kwargs):
        """Handle ordered and unordered lists."""
        text = (text or '').strip('\n')
        if not text.strip():
            return ''
        if self._is_inline(parent_tags):
            return f' {" ".join(text.split())} '
        if el.find_parent('li') is not None:
            return '\n' + text + '\n'
        return '\n\n' + text + '\n\n'

    convert_ul = convert_list
    convert_ol = convert_list

    def convert_li(self, el, text, parent_tags=None, **kwargs):
        """Render a list item with a fresh marker, nested lines indented under it."""
        parent = el.parent
        if parent is not None and parent.name == 'ol':
            position = len(el.find_previous_siblings('li')) + 1
            marker = f'{position}.'
        else:
            marker = '-'

        lines = (text or '').strip().split('\n')
        indent = ' ' * (len(marker) + 1)
        rendered = [f'{marker} {lines[0].strip()}'.rstrip()]
        for line in lines[1:]:
            rendered.append(indent + line if line.strip() else '')
        return '\n'.join(rendered) + '\n'

    def convert_td(self, el, text, parent_tags=None, **kwargs):
        cell = ' '.join((text or '').split())
        return CELL_MARK + cell.replace('|', r'\|')

    convert_th = convert_td

    def convert_tr(self, el, text, parent_tags=None, **kwargs):
        return ROW_MARK + (text or '')

    def convert_table(self, el, text, parent_tags=None, **kwargs):
        """Render a table; the first row is the header, short rows are padded."""
        chunks = (text or '').split(ROW_MARK)
        caption = chunks[0].replace(CELL_MARK, '').strip()

        rows = []
        for chunk in chunks[1:]:
            cells = [cell.strip() for cell in chunk.split(CELL_MARK)[1:]]
            if cells:
                rows.append(cells)

        column_count = max((len(row) for row in rows), default=0)
        if column_count == 0:
            return f'\n\n{caption}\n\n' if caption else ''

        lines = []
        for index, row in enumerate(rows):
            row = row + [''] * (column_count - len(row))
            lines.append('| ' + ' | '.join(row) + ' |')
            if index == 0:
                lines.append('| ' + ' | '.join(['---'] * column_count) + ' |')

        table = '\n'.join(lines)
        if self._is_inline(parent_tags):
            return ' ' + ' '.join(' '.join(row) for row in rows) + ' '
        if caption:
            table = f'{caption}\n\n{table}'
        return f'\n\n{table}\n\n'


__all__ = ['MarkdownConverter', 'CELL_MARK', 'ROW_MARK']
