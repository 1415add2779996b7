"""
Replacement-selector discovery for monitors whose selector stopped matching.

Given a rendered page and the last value a monitor accepted, scan the
visible elements of the page, keep those whose text still matches that
value, compute a stable selector for each and verify it resolves. The page
is reached only through the small PageEvaluator capability, so ranking,
de-duplication and matching do not depend on the browser protocol.

Stable selector priority:
1. data-testid / data-test / data-qa attribute
2. itemprop attribute
3. element id (unless long, numeric-looking or framework-generated)
4. up to two non-volatile classes, scoped under main/article/#content if present
5. aria-label attribute

Attribute selectors are always written with a scope ("body [itemprop=...]")
so that the bare-class-name rule applied at extraction time leaves them intact.

Usage:
    from watcher.extraction.selector_heal import discover_selectors, select_best_suggestion

    result = await discover_selectors(rendered_page, "$50.00")
    best = select_best_suggestion(result.suggestions)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from .normalization import normalize_value, text_matches

logger = logging.getLogger(__name__)

MAX_SCANNED_ELEMENTS = 300
MAX_SUGGESTIONS = 10
MAX_SAMPLE_LENGTH = 100
MAX_CANDIDATE_TEXT_LENGTH = 200

TEST_ID_ATTRIBUTES = ("data-testid", "data-test", "data-qa")

MAX_STABLE_ID_LENGTH = 40
MAX_STABLE_CLASS_LENGTH = 40

NUMERIC_LOOKING_RE = re.compile(r"\d{3,}|^\d|[0-9a-f]{8,}", re.IGNORECASE)

GENERATED_ID_RE = re.compile(
    r"^(?:ember\d|react-|radix-|headlessui-|mui-|ng-|vue-|svelte-|:r|__|yui_|ext-gen|gwt-)",
    re.IGNORECASE,
)

STATE_CLASSES = {
    "active",
    "hover",
    "focus",
    "focused",
    "selected",
    "open",
    "opened",
    "closed",
    "visible",
    "hidden",
    "show",
    "shown",
    "disabled",
    "enabled",
    "current",
    "loading",
    "loaded",
    "expanded",
    "collapsed",
    "checked",
    "in",
    "fade",
}

STATE_CLASS_PREFIXES = ("is-", "has-", "js-", "ng-", "css-", "sc-", "jsx-", "svelte-")

COMMON_VALUE_SELECTORS = [
    '[data-testid*="price"]',
    '[itemprop="price"]',
    ".price",
    ".product-price",
    ".price-current",
    ".sale-price",
    ".a-price .a-offscreen",
    "#priceblock_ourprice",
    '[class*="price"]',
    ".stock-status",
    ".availability",
]

# Collects visible elements with short text and the attributes used for selectors
SCAN_SCRIPT = """
(maxElements) => {
    const skip = new Set(['SCRIPT', 'STYLE', 'NOSCRIPT', 'IFRAME', 'SVG', 'PATH', 'TEMPLATE']);
    const results = [];
    if (!document.body) return results;
    let visible = 0;
    for (const el of document.body.querySelectorAll('*')) {
        if (visible >= maxElements) break;
        if (skip.has(el.tagName.toUpperCase())) continue;
        const rect = el.getBoundingClientRect();
        if (rect.width === 0 || rect.height === 0) continue;
        const style = window.getComputedStyle(el);
        if (style.visibility === 'hidden' || style.display === 'none') continue;
        visible += 1;
        const text = (el.innerText || el.textContent || '').trim();
        if (!text || text.length > 200) continue;
        const attributes = {};
        for (const name of ['data-testid', 'data-test', 'data-qa', 'itemprop', 'aria-label']) {
            const value = el.getAttribute(name);
            if (value) attributes[name] = value;
        }
        const scopeEl = el.parentElement ? el.parentElement.closest('main, article, #content') : null;
        let scope = null;
        if (scopeEl) scope = scopeEl.id === 'content' ? '#content' : scopeEl.tagName.toLowerCase();
        results.push({
            tag: el.tagName.toLowerCase(),
            id: el.id || null,
            classes: Array.from(el.classList),
            attributes: attributes,
            text: text,
            scope: scope,
        });
    }
    return results;
}
"""

SAMPLE_TEXT_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    return el ? (el.innerText || el.textContent || '').trim().slice(0, 100) : null;
}
"""


class PageEvaluator(Protocol):
    """What selector discovery needs from a rendered page."""

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        ...

    async def count(self, selector: str) -> int:
        ...

    async def title(self) -> str:
        ...


@dataclass
class ElementDescriptor:
    """Scanned element as reported by SCAN_SCRIPT."""

    tag: str
    text: str
    element_id: Optional[str] = None
    classes: List[str] = field(default_factory=list)
    attributes: Dict[str, str] = field(default_factory=dict)
    scope: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ElementDescriptor":
        return cls(
            tag=data.get("tag") or "",
            text=data.get("text") or "",
            element_id=data.get("id") or None,
            classes=list(data.get("classes") or []),
            attributes=dict(data.get("attributes") or {}),
            scope=data.get("scope") or None,
        )


@dataclass
class SelectorSuggestion:
    """A verified replacement selector."""

    selector: str
    match_count: int
    sample_text: str


@dataclass
class DiscoveryResult:
    """Suggestions found on a page, or debug context when there are none."""

    suggestions: List[SelectorSuggestion] = field(default_factory=list)
    debug: Optional[Dict[str, Any]] = None


def css_escape_identifier(value: str) -> str:
    """Escape an id/class for use after '#' or '.'."""
    return re.sub(r"([^a-zA-Z0-9_-])", r"\\\1", value)


def css_escape_string(value: str) -> str:
    """Escape an attribute value for a double-quoted selector string."""
    return value.replace("\\", "\\\\").replace('"', '\\"')


def is_stable_id(element_id: str) -> bool:
    if not element_id or len(element_id) > MAX_STABLE_ID_LENGTH:
        return False
    if NUMERIC_LOOKING_RE.search(element_id):
        return False
    return not GENERATED_ID_RE.match(element_id)


def is_stable_class(class_name: str) -> bool:
    if not class_name or len(class_name) > MAX_STABLE_CLASS_LENGTH:
        return False
    lowered = class_name.lower()
    if lowered in STATE_CLASSES or lowered.startswith(STATE_CLASS_PREFIXES):
        return False
    if NUMERIC_LOOKING_RE.search(class_name):
        return False
    # CSS-module style hashes: _3xK2p, Price_value__aB3dE
    if re.search(r"__[a-zA-Z0-9]{5}$|^_[a-zA-Z0-9]{4,}$", class_name):
        return False
    return True


def _scoped(scope: Optional[str], selector: str) -> str:
    return f"{scope or 'body'} {selector}"


def compute_stable_selector(element: ElementDescriptor) -> Optional[str]:
    """
    Compute the most stable selector for a scanned element.

    Returns:
        Selector string, or None when the element has no usable hook
    """
    for attribute in TEST_ID_ATTRIBUTES:
        value = element.attributes.get(attribute)
        if value:
            return _scoped(element.scope, f'[{attribute}="{css_escape_string(value)}"]')

    itemprop = element.attributes.get("itemprop")
    if itemprop:
        return _scoped(element.scope, f'[itemprop="{css_escape_string(itemprop)}"]')

    if element.element_id and is_stable_id(element.element_id):
        return f"#{css_escape_identifier(element.element_id)}"

    classes = [c for c in element.classes if is_stable_class(c)][:2]
    if classes:
        selector = "".join(f".{css_escape_identifier(c)}" for c in classes)
        if element.scope:
            return f"{element.scope} {selector}"
        return selector

    aria_label = element.attributes.get("aria-label")
    if aria_label:
        return _scoped(element.scope, f'[aria-label="{css_escape_string(aria_label)}"]')

    return None


def select_best_suggestion(
    suggestions: List[SelectorSuggestion],
) -> Optional[SelectorSuggestion]:
    """
    Pick the most specific suggestion.

    Fewest DOM matches first, then the shortest selector, then lexicographic order.
    """
    if not suggestions:
        return None
    return min(
        suggestions,
        key=lambda s: (s.match_count, len(s.selector), s.selector),
    )


async def discover_selectors(
    page: PageEvaluator,
    expected_text: str,
    max_suggestions: int = MAX_SUGGESTIONS,
) -> DiscoveryResult:
    """
    Find selectors whose element text matches expected_text.

    Args:
        page: Rendered page capability
        expected_text: Value the monitor last accepted
        max_suggestions: Cap on returned suggestions

    Returns:
        DiscoveryResult; debug is set only when no suggestion was found
    """
    raw_elements = await page.evaluate(SCAN_SCRIPT, MAX_SCANNED_ELEMENTS) or []

    suggestions: List[SelectorSuggestion] = []
    seen = set()
    for raw in raw_elements:
        element = ElementDescriptor.from_dict(raw)
        if len(element.text) > MAX_CANDIDATE_TEXT_LENGTH:
            continue
        if not text_matches(element.text, expected_text):
            continue

        selector = compute_stable_selector(element)
        if not selector or selector in seen:
            continue
        seen.add(selector)

        try:
            match_count = await page.count(selector)
        except Exception as e:
            logger.debug(f"Candidate selector {selector} did not resolve: {e}")
            continue
        if match_count <= 0:
            continue

        suggestions.append(
            SelectorSuggestion(
                selector=selector,
                match_count=match_count,
                sample_text=normalize_value(element.text)[:MAX_SAMPLE_LENGTH],
            )
        )
        if len(suggestions) >= max_suggestions:
            break

    if suggestions:
        suggestions.sort(key=lambda s: (s.match_count, len(s.selector), s.selector))
        return DiscoveryResult(suggestions=suggestions)

    logger.info(
        f"No element matched expected text among {len(raw_elements)} scanned elements"
    )
    return DiscoveryResult(debug=await _collect_debug_context(page, len(raw_elements)))


async def _collect_debug_context(page: PageEvaluator, scanned: int) -> Dict[str, Any]:
    """Describe the page when nothing matched, for the user fixing the selector."""
    debug: Dict[str, Any] = {
        "note": "no matching elements found",
        "scanned_elements": scanned,
        "common_selectors": [],
    }

    try:
        debug["page_title"] = await page.title()
    except Exception as e:
        debug["page_title"] = None
        logger.debug(f"Could not read page title: {e}")

    for selector in COMMON_VALUE_SELECTORS:
        try:
            count = await page.count(selector)
            if count <= 0:
                continue
            sample = await page.evaluate(SAMPLE_TEXT_SCRIPT, selector)
        except Exception as e:
            logger.debug(f"Common selector {selector} failed: {e}")
            continue
        debug["common_selectors"].append(
            {"selector": selector, "match_count": count, "sample_text": sample}
        )

    return debug
