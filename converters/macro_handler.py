"""Confluence storage-format macro handler.

Rewrites the ``ac:``/``ri:`` namespaced markup of a page body into plain,
markdown-friendly HTML before the generic HTML to Markdown pass runs. The
passes are ordered: each one only sees what the previous ones left behind.
"""

import html
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from models import RefKind, ResourceRef

logger = logging.getLogger('confluence_extractor.converters.macrohandler')

# Marks images whose reference was already registered by a macro pass.
RESOURCE_ATTR = 'data-resource'

CDATA_PATTERN = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)
COMMENT_PATTERN = re.compile(r'<!--(.*?)-->', re.DOTALL)
DECLARATION_PATTERN = re.compile(r'<\?.*?\?>|<!DOCTYPE[^>]*>', re.DOTALL | re.IGNORECASE)

# Anything up to (but not across) the end of the current macro
_MACRO_INNER = r'(?:(?!</ac:structured-macro>).)*?'

CODE_MACRO_PATTERN = re.compile(
    r'<ac:structured-macro\b[^>]*\bac:name="code"[^>]*>'
    r'(' + _MACRO_INNER + r')'
    r'<ac:plain-text-body\b[^>]*>(.*?)</ac:plain-text-body>'
    r'.*?</ac:structured-macro>',
    re.DOTALL
)
DIAGRAM_MACRO_PATTERN = re.compile(
    r'<ac:structured-macro\b[^>]*\bac:name="drawio"[^>]*>'
    + _MACRO_INNER +
    r'<ac:parameter\b[^>]*\bac:name="diagramName"[^>]*>([^<]*)</ac:parameter>'
    r'.*?</ac:structured-macro>',
    re.DOTALL
)
PARAMETER_PATTERN = re.compile(
    r'<ac:parameter\b[^>]*/>|<ac:parameter\b[^>]*>.*?</ac:parameter>',
    re.DOTALL
)
PLAIN_TEXT_BODY_PATTERN = re.compile(
    r'<ac:plain-text-body\b[^>]*>(.*?)</ac:plain-text-body>',
    re.DOTALL
)
MACRO_WRAPPER_PATTERN = re.compile(r'</?ac:(?:structured-macro|rich-text-body)\b[^>]*>')

ATTACHMENT_IMAGE_PATTERN = re.compile(
    r'<ac:image\b[^>]*>\s*<ri:attachment\b[^>]*?\bri:filename="([^"]*)"[^>]*>.*?</ac:image>',
    re.DOTALL
)
URL_IMAGE_PATTERN = re.compile(
    r'<ac:image\b[^>]*>\s*<ri:url\b[^>]*?\bri:value="([^"]*)"[^>]*>.*?</ac:image>',
    re.DOTALL
)
PAGE_LINK_PATTERN = re.compile(
    r'<ac:link\b[^>]*>\s*<ri:page\b[^>]*?\bri:content-title="([^"]*)"[^>]*>\s*'
    r'(?:<ac:(?:plain-text-)?link-body>(.*?)</ac:(?:plain-text-)?link-body>\s*)?'
    r'</ac:link>',
    re.DOTALL
)
EMOTICON_PATTERN = re.compile(r'<ac:emoticon\b[^>]*?\bac:name="([^"]*)"[^>]*>')
NAMESPACED_TAG_PATTERN = re.compile(r'</?(?:ac|ri):[^>]*>')

LANGUAGE_PARAM_PATTERN = re.compile(r'<ac:parameter\b[^>]*\bac:name="language"[^>]*>([^<]*)</ac:parameter>')
TITLE_PARAM_PATTERN = re.compile(r'<ac:parameter\b[^>]*\bac:name="title"[^>]*>([^<]*)</ac:parameter>')

EMOTICON_MAP = {
    'smile': '😊',
    'sad': '😢',
    'wink': '😉',
    'laugh': '😄',
    'cheeky': '😏',
    'thumbs-up': '👍',
    'thumbs-down': '👎',
    'information': 'ℹ️',
    'warning': '⚠️',
    'error': '❌',
    'tick': '✅',
    'cross': '❌',
    'plus': '➕',
    'minus': '➖',
    'question': '❓',
    'light-on': '💡',
    'light-off': '💡',
    'yellow-star': '⭐',
    'red-star': '⭐',
    'green-star': '⭐',
    'blue-star': '⭐',
    'heart': '❤️',
    'broken-heart': '💔',
}


def find_diagram_names(content: str) -> List[str]:
    """Names of the draw.io diagrams embedded in a storage-format body, in order."""
    names = []
    for match in DIAGRAM_MACRO_PATTERN.finditer(content or ''):
        name = html.unescape(match.group(1)).strip()
        if name and name not in names:
            names.append(name)
    return names


class ReferenceCollector:
    """Ordered, de-duplicated list of resource references of one page body."""

    def __init__(self):
        self._refs: List[ResourceRef] = []
        self._seen = set()

    def add(self, kind: RefKind, key: str) -> Optional[ResourceRef]:
        """Register a reference; duplicates and embedded data URLs are ignored."""
        if not key:
            return None
        if kind is RefKind.URL and key.strip().lower().startswith('data:'):
            return None
        if key in self._seen:
            return None
        self._seen.add(key)
        ref = ResourceRef(kind=kind, key=key)
        self._refs.append(ref)
        return ref

    @property
    def refs(self) -> List[ResourceRef]:
        return list(self._refs)

    def __len__(self) -> int:
        return len(self._refs)


class MacroHandler:
    """Converts Confluence storage-format macros to markdown-friendly HTML."""

    def __init__(self, logger: logging.Logger = None):
        """Initialize macro handler with optional logger."""
        self.logger = logger or logging.getLogger('confluence_extractor.converters.macrohandler')

    def convert(self, content: str, refs: ReferenceCollector) -> Tuple[str, Dict[str, Any]]:
        """
        Run the storage-format passes over a page body.

        Args:
            content: Raw storage-format body
            refs: Collector receiving every resource reference found

        Returns:
            Tuple of (rewritten HTML, conversion stats)
        """
        stats = {
            'code_blocks': 0,
            'diagrams': 0,
            'images': 0,
            'page_links': 0,
            'emoticons': 0
        }

        content = self.unwrap_literal_sections(content)
        content = self.convert_code_macros(content, stats)
        content = self.convert_diagram_macros(content, refs, stats)
        content = self.strip_macro_wrappers(content)
        content = self.convert_images(content, refs, stats)
        content = self.convert_page_links(content, stats)
        content = self.strip_namespaced_tags(content, stats)

        self.logger.debug(
            f"Macro passes: {stats['code_blocks']} code blocks, {stats['diagrams']} diagrams, "
            f"{stats['images']} images, {stats['page_links']} page links"
        )
        return content, stats

    def unwrap_literal_sections(self, content: str) -> str:
        """Drop CDATA and comment markers but keep what they wrap."""
        # CDATA payload is literal text, so it is escaped to survive HTML parsing
        content = CDATA_PATTERN.sub(lambda m: html.escape(m.group(1), quote=False), content)
        content = COMMENT_PATTERN.sub(lambda m: m.group(1), content)
        return DECLARATION_PATTERN.sub('', content)

    def convert_code_macros(self, content: str, stats: Dict[str, Any]) -> str:
        """Turn code macros into <pre><code> blocks."""
        def replace(match):
            params, body = match.group(1), match.group(2)
            stats['code_blocks'] += 1

            language = ''
            language_match = LANGUAGE_PARAM_PATTERN.search(params)
            if language_match:
                language = re.sub(r'[^\w+#.-]', '', html.unescape(language_match.group(1)))

            code_attr = f' class="language-{language}"' if language else ''
            block = f'\n<pre><code{code_attr}>{body}</code></pre>\n'

            title_match = TITLE_PARAM_PATTERN.search(params)
            if title_match and title_match.group(1).strip():
                block = f'\n<p><strong>{title_match.group(1).strip()}</strong></p>{block}'
            return block

        return CODE_MACRO_PATTERN.sub(replace, content)

    def convert_diagram_macros(self, content: str, refs: ReferenceCollector, stats: Dict[str, Any]) -> str:
        """Replace draw.io macros with an image of their server-side PNG export."""
        def replace(match):
            diagram_name = html.unescape(match.group(1)).strip()
            if not diagram_name:
                return ''
            stats['diagrams'] += 1
            export_name = f'{diagram_name}.png'
            refs.add(RefKind.ATTACHMENT, export_name)
            return (
                f'\n<p><img {RESOURCE_ATTR}="diagram" '
                f'src="{html.escape(export_name)}" '
                f'alt="{html.escape("draw.io: " + diagram_name)}" /></p>\n'
            )

        return DIAGRAM_MACRO_PATTERN.sub(replace, content)

    def strip_macro_wrappers(self, content: str) -> str:
        """Remove remaining macro containers and their parameters."""
        content = PARAMETER_PATTERN.sub('', content)
        content = PLAIN_TEXT_BODY_PATTERN.sub(lambda m: f'\n<pre>{m.group(1)}</pre>\n', content)
        return MACRO_WRAPPER_PATTERN.sub('', content)

    def convert_images(self, content: str, refs: ReferenceCollector, stats: Dict[str, Any]) -> str:
        """Replace embedded attachment and URL images with <img> placeholders."""
        def replacer(kind: RefKind):
            def replace(match):
                key = html.unescape(match.group(1))
                stats['images'] += 1
                refs.add(kind, key)
                return f'<img {RESOURCE_ATTR}="{kind.value}" src="{html.escape(key)}" alt="image" />'
            return replace

        content = ATTACHMENT_IMAGE_PATTERN.sub(replacer(RefKind.ATTACHMENT), content)
        return URL_IMAGE_PATTERN.sub(replacer(RefKind.URL), content)

    def convert_page_links(self, content: str, stats: Dict[str, Any]) -> str:
        """Replace links to other pages (by title) with plain anchors."""
        def replace(match):
            title = html.unescape(match.group(1))
            body = match.group(2) or ''
            stats['page_links'] += 1
            if not body.strip():
                body = html.escape(title, quote=False)
            return f'<a href="{html.escape(title)}">{body.strip()}</a>'

        return PAGE_LINK_PATTERN.sub(replace, content)

    def strip_namespaced_tags(self, content: str, stats: Dict[str, Any]) -> str:
        """Convert emoticons, then drop every other ac:/ri: tag keeping its content."""
        def replace_emoticon(match):
            stats['emoticons'] += 1
            name = match.group(1)
            return EMOTICON_MAP.get(name, f':{name}:')

        content = EMOTICON_PATTERN.sub(replace_emoticon, content)
        return NAMESPACED_TAG_PATTERN.sub('', content)


__all__ = ['MacroHandler', 'ReferenceCollector', 'RESOURCE_ATTR', 'find_diagram_names']
