"""
HTML Reduction Engine.

Two pure pipelines over a BeautifulSoup tree:

- ``reduce()`` shrinks a page for inspection: scripts and styles go, long
  text, attributes, comments, hrefs and SVGs are cut with visible markers,
  and a structural outline is produced alongside the reduced HTML.
- ``cleanup()`` is the configurable variant: every trim is opt-in and the
  result carries compression statistics.

Truncation helpers recognize their own markers, so reducing already
reduced HTML leaves it unchanged.
"""

import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import PreformattedString
from django.conf import settings
from soupsieve import SelectorSyntaxError

from apps.core.exceptions import ErrorCode, ValidationError
from apps.core.observability import get_logger, record_reduction_metrics

from .outline import generate_outline

logger = get_logger(__name__, component='reducer')

ELLIPSIS = '…'

OMIT_ATTRS = (
    'height', 'width', 'colspan', 'valign', 'align', 'style', 'cellspacing',
    'color', 'bgcolor', 'border', 'cellpadding', 'bordercolor',
)
INLINE_JS_ATTRS = ('onclick', 'onmouseover', 'onchange', 'onload')
IMPORTANT_ATTRS = ('class', 'id')

_WHITESPACE_RE = re.compile(r'\s{2,}')
_MORE_MARKER_RE = re.compile(r'… \[(\d+) chars more\]$')


class SelectorNotFound(ValidationError):
    """The scoping selector matched no element."""
    error_code = ErrorCode.SELECTOR_NOT_FOUND
    default_detail = "Selector not found"


@dataclass
class ReduceConfig:
    """Thresholds for ``reduce()``."""
    text_limit: int = 100
    svg_limit: int = 100
    href_limit: int = 30
    comment_limit: int = 30
    attr_limit: int = 30
    important_attr_limit: int = 70
    outline_depth: int = 6
    body_only: bool = False

    @classmethod
    def from_settings(cls, **overrides) -> 'ReduceConfig':
        config = cls(
            text_limit=getattr(settings, 'REDUCER_TEXT_LIMIT', 100),
            outline_depth=getattr(settings, 'REDUCER_OUTLINE_DEPTH', 6),
        )
        for key, value in overrides.items():
            setattr(config, key, value)
        return config


@dataclass
class CleanupConfig:
    """Options for ``cleanup()``; a zero limit disables that trim."""
    max_text_length: int = 0
    max_url_length: int = 0
    only_body: bool = False
    max_output_length: int = 0


@dataclass
class ReductionStats:
    input_length: int
    output_length: int
    compression_ratio: float
    compression_ratio_human: str
    html_elements: int
    max_nesting_level: int
    nodes_at_half_depth: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inputLength': self.input_length,
            'outputLength': self.output_length,
            'compressionRatio': self.compression_ratio,
            'compressionRatioHuman': self.compression_ratio_human,
            'htmlElements': self.html_elements,
            'maxNestingLevel': self.max_nesting_level,
            'nodesAtHalfDepth': self.nodes_at_half_depth,
        }


@dataclass
class ReductionResult:
    html: str
    outline: str
    outline_top_level: str
    stats: ReductionStats

    def to_dict(self) -> Dict[str, Any]:
        return {
            'html': self.html,
            'outline': self.outline,
            'outlineTopLevel': self.outline_top_level,
            'stats': self.stats.to_dict(),
        }


@dataclass
class CleanupResult:
    html: str
    stats: ReductionStats

    def to_dict(self) -> Dict[str, Any]:
        return {'html': self.html, 'stats': self.stats.to_dict()}


# =============================================================================
# Truncation helpers
# =============================================================================

def trim_with_count(text: str, limit: int) -> str:
    """Cut to ``limit`` chars and append ``… [N chars more]``."""
    if len(text) <= limit:
        return text
    match = _MORE_MARKER_RE.search(text)
    if match and match.start() <= limit:
        return text
    return f'{text[:limit]}{ELLIPSIS} [{len(text) - limit} chars more]'


def trim_with_ellipsis(value: str, limit: int) -> str:
    """Cut to ``limit`` chars and append a bare ellipsis."""
    if limit <= 0 or len(value) <= limit:
        return value
    if value.endswith(ELLIPSIS) and len(value) - 1 <= limit:
        return value
    return value[:limit] + ELLIPSIS


def _svg_cut(markup: str, limit: int) -> int:
    """
    Index to cut SVG inner markup at.

    Backs off to the start of a tag the limit falls inside, since the
    parser would drop a split tag. When that would leave nothing, the
    first opening tag is kept whole so the outline still shows what the
    SVG is made of.
    """
    cut = limit
    open_at = markup.rfind('<', 0, cut)
    if open_at > markup.rfind('>', 0, cut):
        cut = open_at
        if not markup[:cut].strip():
            cut = markup.find('>', open_at) + 1
    return cut


# =============================================================================
# Tree helpers
# =============================================================================

def parse(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or '', 'html.parser', multi_valued_attributes=None)


def _is_text(node) -> bool:
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def _text_nodes(root) -> List[NavigableString]:
    return [node for node in root.descendants if _is_text(node)]


def _comments(root) -> List[Comment]:
    return [node for node in root.descendants if isinstance(node, Comment)]


def _elements(root) -> List[Tag]:
    return root.find_all(True)


def _replace_text(node: NavigableString, value: str) -> None:
    if value != str(node):
        node.replace_with(NavigableString(value))


# =============================================================================
# Pipeline stages
# =============================================================================

def scope_to_selector(soup: BeautifulSoup, selector: str) -> None:
    """Keep only the first element matching ``selector``."""
    try:
        target = soup.select_one(selector)
    except SelectorSyntaxError as e:
        raise ValidationError(
            f"Invalid selector {selector!r}: {e}",
            code=ErrorCode.VALIDATION_ERROR,
            field='selector',
        )
    if target is None:
        raise SelectorNotFound(f"Selector not found: {selector}", field='selector')

    target.extract()
    body = soup.find('body')
    container = body if body is not None else soup
    container.clear()
    container.append(target)


def remove_scripts_and_styles(soup: BeautifulSoup) -> None:
    for tag in soup.find_all(['script', 'style']):
        tag.decompose()


def remove_inline_js(soup: BeautifulSoup) -> None:
    for tag in _elements(soup):
        for attr in INLINE_JS_ATTRS:
            if attr in tag.attrs:
                del tag.attrs[attr]


def trim_svgs(soup: BeautifulSoup, limit: int) -> None:
    for svg in soup.find_all('svg'):
        if _MORE_MARKER_RE.search(svg.get_text()):
            continue
        markup = svg.decode_contents()
        if len(markup) <= limit:
            continue
        cut = _svg_cut(markup, limit)
        if cut >= len(markup):
            continue
        trimmed = f'{markup[:cut]}{ELLIPSIS} [{len(markup) - cut} chars more]'
        svg.clear()
        fragment = BeautifulSoup(trimmed, 'html.parser', multi_valued_attributes=None)
        for child in list(fragment.contents):
            svg.append(child.extract())


def collapse_whitespace(soup: BeautifulSoup, strip: bool = False) -> None:
    for node in _text_nodes(soup):
        value = _WHITESPACE_RE.sub(' ', str(node))
        if strip:
            value = value.strip()
            if not value:
                node.extract()
                continue
        _replace_text(node, value)


def trim_anchor_hrefs(soup: BeautifulSoup, limit: int) -> None:
    for anchor in soup.find_all('a', href=True):
        anchor['href'] = trim_with_ellipsis(anchor['href'], limit)


def trim_url_attrs(soup: BeautifulSoup, limit: int) -> None:
    for tag in _elements(soup):
        for name, value in list(tag.attrs.items()):
            if name in ('href', 'src') or name.startswith('data-'):
                tag.attrs[name] = trim_with_ellipsis(value or '', limit)


def strip_presentational_attrs(soup: BeautifulSoup) -> None:
    for tag in _elements(soup):
        for attr in OMIT_ATTRS:
            if attr in tag.attrs:
                del tag.attrs[attr]


def trim_comments(soup: BeautifulSoup, limit: int) -> None:
    for comment in _comments(soup):
        trimmed = trim_with_ellipsis(str(comment), limit)
        if trimmed != str(comment):
            comment.replace_with(Comment(trimmed))


def trim_attr_values(soup: BeautifulSoup, limit: int, important_limit: int) -> None:
    for tag in _elements(soup):
        for name, value in list(tag.attrs.items()):
            if value is None:
                continue
            allowance = important_limit if name in IMPORTANT_ATTRS else limit
            tag.attrs[name] = trim_with_ellipsis(value, allowance)


def trim_text_nodes(soup: BeautifulSoup, limit: int, with_count: bool = True) -> None:
    for node in _text_nodes(soup):
        text = str(node)
        if with_count:
            _replace_text(node, trim_with_count(text, limit))
        else:
            _replace_text(node, trim_with_ellipsis(text, limit))


# =============================================================================
# Statistics
# =============================================================================

def compute_stats(original_html: str, processed_html: str) -> ReductionStats:
    """Length, compression and shape statistics of ``processed_html``."""
    input_length = len(original_html)
    output_length = len(processed_html)
    ratio = (input_length - output_length) / input_length if input_length else 0.0

    elements = _elements(parse(processed_html))
    # BeautifulSoup itself is the outermost parent of every element
    depths = [sum(1 for _ in el.parents) - 1 for el in elements]
    max_depth = max(depths, default=0)
    half_depth = max_depth // 2

    return ReductionStats(
        input_length=input_length,
        output_length=output_length,
        compression_ratio=round(ratio, 4),
        compression_ratio_human=f'{ratio * 100:.2f}%',
        html_elements=len(elements),
        max_nesting_level=max_depth,
        nodes_at_half_depth=sum(1 for depth in depths if depth == half_depth),
    )


def _serialize(soup: BeautifulSoup, body_only: bool) -> str:
    if body_only:
        body = soup.find('body')
        if body is not None:
            return body.decode_contents()
    return soup.decode()


# =============================================================================
# Entry points
# =============================================================================

def reduce(html: str, selector: Optional[str] = None, config: Optional[ReduceConfig] = None) -> ReductionResult:
    """
    Reduce an HTML document and outline its structure.

    Args:
        html: Raw HTML
        selector: Optional CSS selector; only the first match is kept
        config: Thresholds; defaults come from Django settings

    Returns:
        ReductionResult with the reduced HTML, the full outline, the
        depth-limited outline from <body> and statistics.

    Raises:
        SelectorNotFound: ``selector`` matched nothing.
        ValidationError: ``selector`` is not valid CSS.
    """
    config = config or ReduceConfig.from_settings()
    started = time.monotonic()
    soup = parse(html)

    if selector:
        scope_to_selector(soup, selector)

    remove_scripts_and_styles(soup)
    remove_inline_js(soup)
    trim_svgs(soup, config.svg_limit)
    collapse_whitespace(soup)
    trim_anchor_hrefs(soup, config.href_limit)
    strip_presentational_attrs(soup)
    trim_comments(soup, config.comment_limit)
    trim_attr_values(soup, config.attr_limit, config.important_attr_limit)
    trim_text_nodes(soup, config.text_limit)

    output = _serialize(soup, config.body_only)
    result = ReductionResult(
        html=output,
        outline=generate_outline(soup),
        outline_top_level=generate_outline(soup, max_depth=config.outline_depth, body_only=True),
        stats=compute_stats(html or '', output),
    )

    record_reduction_metrics('reduce', len(html or ''), len(output))
    logger.debug(
        "Reduced HTML document",
        input_length=result.stats.input_length,
        output_length=result.stats.output_length,
        selector=selector or None,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    return result


def cleanup(html: str, config: Optional[CleanupConfig] = None) -> CleanupResult:
    """
    Clean up an HTML document with opt-in trimming.

    Scripts, styles, inline handlers and presentational attributes are
    always removed and whitespace is collapsed; text, URL attribute and
    output trimming only apply when their limit is non-zero.
    """
    config = config or CleanupConfig()
    for name, value in asdict(config).items():
        if isinstance(value, int) and not isinstance(value, bool) and value < 0:
            raise ValidationError(f"{name} must be >= 0", code=ErrorCode.INVALID_VALUE, field=name)

    soup = parse(html)

    remove_scripts_and_styles(soup)
    remove_inline_js(soup)
    collapse_whitespace(soup, strip=True)
    if config.max_url_length > 0:
        trim_url_attrs(soup, config.max_url_length)
    if config.max_text_length > 0:
        trim_text_nodes(soup, config.max_text_length, with_count=False)
    trim_comments(soup, 30)
    strip_presentational_attrs(soup)

    output = _serialize(soup, config.only_body)
    if config.max_output_length > 0 and len(output) > config.max_output_length:
        output = output[:config.max_output_length] + ELLIPSIS

    stats = compute_stats(html or '', output)
    record_reduction_metrics('cleanup', stats.input_length, stats.output_length)
    logger.debug("Cleaned up HTML document", **stats.to_dict())
    return CleanupResult(html=output, stats=stats)
