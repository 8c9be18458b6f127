"""
Compact structural outline of a parsed document.

Each element renders as ``tag[attr="value"]...`` with at most four
attributes; element children follow on new lines indented by the parent's
depth, text children are appended inline as ``{first 30 chars…}``.

    div[class="card"][data-id="7"]
     h2{Quarterly results}
     p{Revenue grew by twelve percent…}
"""

import re
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

MAX_ATTRS = 4
TEXT_PREVIEW = 30
LONG_TEXT = 120

_WS_RE = re.compile(r'\s+')


def _attr_rank(name: str) -> int:
    if name == 'class':
        return 0
    if name == 'src':
        return 1
    if name.startswith('data-'):
        return 2
    return 3


def _clean_value(value) -> str:
    if isinstance(value, (list, tuple)):
        value = ' '.join(value)
    return _WS_RE.sub(' ', str(value)).strip()


def render_attrs(tag: Tag) -> str:
    """Up to four attributes, class first, then src, then data-*."""
    names = sorted(tag.attrs, key=_attr_rank)
    return ''.join(f'[{name}="{_clean_value(tag.attrs[name])}"]' for name in names[:MAX_ATTRS])


def render_text(text: str) -> str:
    content = text.strip()
    if not content:
        return ''
    suffix = '…' if len(content) > TEXT_PREVIEW else ''
    if len(content) > LONG_TEXT:
        suffix += '…'
    return '{' + content[:TEXT_PREVIEW] + suffix + '}'


def _traverse(node, depth: int, max_depth: int) -> str:
    if isinstance(node, Tag):
        line = node.name + render_attrs(node)
        if max_depth == 0 or depth < max_depth:
            indent = ' ' * depth
            for child in node.children:
                rendered = _traverse(child, depth + 1, max_depth)
                if not rendered.strip():
                    continue
                if rendered.startswith('{'):
                    line += rendered
                else:
                    line += '\n' + indent + rendered
        return line

    if isinstance(node, NavigableString) and not isinstance(node, PreformattedString):
        return render_text(str(node))

    return ''


def _roots(soup: BeautifulSoup, body_only: bool) -> List:
    root = soup.find('body') if body_only else soup.find('html')
    if root is not None:
        return [root]
    # Fragments parsed without an <html>/<body> wrapper
    return [child for child in soup.children if isinstance(child, Tag)]


def generate_outline(soup: BeautifulSoup, max_depth: int = 0, body_only: bool = False) -> str:
    """
    Build the outline of a document.

    Args:
        soup: Parsed document
        max_depth: Deepest level whose children are rendered (0 = unlimited)
        body_only: Start at <body> instead of <html>

    Returns:
        The outline text, one element per line.
    """
    parts: Iterable[str] = (_traverse(root, 0, max_depth) for root in _roots(soup, body_only))
    return '\n'.join(part for part in parts if part)


def outline_html(html: str, max_depth: int = 0, body_only: bool = False,
                 soup: Optional[BeautifulSoup] = None) -> str:
    """Parse ``html`` (unless ``soup`` is given) and build its outline."""
    if soup is None:
        soup = BeautifulSoup(html or '', 'html.parser', multi_valued_attributes=None)
    return generate_outline(soup, max_depth=max_depth, body_only=body_only)
