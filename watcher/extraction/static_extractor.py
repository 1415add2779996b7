"""
Static extraction of a monitored value from delivered HTML.

Selector rule: a bare token with no leading "." or "#" and no embedded space
is a class name, so "price" means ".price". Bare attribute selectors such as
[itemprop="price"] become invalid under this rule and never match; monitors
must use an explicit or compound selector for attribute matches.

Usage:
    from watcher.extraction import extract_value_from_html, parse_html

    soup = parse_html(html)
    value = extract_value_from_html(soup, ".product-price")

Every helper takes either raw HTML or a document already returned by
parse_html, so one parse can serve extraction, match counting and block
detection.
"""

import logging
from typing import Optional, Tuple, Union

import soupsieve
from bs4 import BeautifulSoup

from .normalization import normalize_value

logger = logging.getLogger(__name__)

MAX_SELECTOR_LENGTH = 500

HtmlDocument = Union[str, BeautifulSoup]


def parse_html(document: HtmlDocument) -> BeautifulSoup:
    """Parse HTML with lxml; an already parsed document is returned as is."""
    if isinstance(document, BeautifulSoup):
        return document
    return BeautifulSoup(document, "lxml")


def normalize_selector(selector: str) -> str:
    """Apply the bare-class-name prefix rule to a selector."""
    selector = selector.strip()
    if not selector.startswith((".", "#")) and " " not in selector:
        return f".{selector}"
    return selector


def extract_value_from_html(html: HtmlDocument, selector: str) -> Optional[str]:
    """
    Extract the normalized value of the first element matching selector.

    Falls back to the element's content attribute when its text is empty.

    Args:
        html: Raw HTML or a parsed document
        selector: Monitor selector (bare-class rule applied)

    Returns:
        Normalized value, or None when nothing (non-empty) matched
    """
    if not html or not selector:
        return None

    soup = parse_html(html)
    try:
        element = soup.select_one(normalize_selector(selector))
    except soupsieve.SelectorSyntaxError as e:
        logger.debug(f"Unusable selector {selector!r}: {e}")
        return None

    if element is None:
        return None

    value = normalize_value(element.get_text())
    if not value:
        value = normalize_value(element.get("content") or "")

    return value or None


def count_matches(html: HtmlDocument, selector: str) -> int:
    """Number of elements matching selector (exact, no prefix rule)."""
    soup = parse_html(html)
    try:
        return len(soup.select(selector))
    except soupsieve.SelectorSyntaxError:
        return 0


def validate_css_selector(selector: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a user-supplied selector before it is saved on a monitor.

    Returns:
        (True, None) when usable, otherwise (False, error message)
    """
    if not selector or not selector.strip():
        return False, "Selector cannot be empty"

    if len(selector) > MAX_SELECTOR_LENGTH:
        return False, f"Selector is too long (max {MAX_SELECTOR_LENGTH} characters)"

    try:
        soupsieve.compile(normalize_selector(selector))
    except soupsieve.SelectorSyntaxError:
        return False, f"Invalid CSS selector syntax: {selector}"

    return True, None
