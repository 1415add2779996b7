"""
Block/interstitial page detection.

Classifies a document as an anti-bot challenge, consent gate or similar
interstitial instead of real content, using:
- Page title (always authoritative)
- Visible body text (guarded against incidental mentions on long pages)
- DOM markers of captcha/challenge widgets

Usage:
    from watcher.extraction import detect_page_block_reason

    result = detect_page_block_reason(html)
    if result.blocked:
        logger.info(f"Blocked: {result.reason}")
"""

import copy
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

from .static_extractor import HtmlDocument, parse_html

logger = logging.getLogger(__name__)


@dataclass
class BlockDetectionResult:
    """Result of block detection."""

    blocked: bool
    reason: Optional[str] = None


class BlockDetector:
    """
    Heuristics for recognising pages served instead of the real content.

    Pattern order matters: title matches are tried for every pattern before
    any body match, and the first hit wins.
    """

    TITLE_MAX_LENGTH = 120

    # Body matches on pages with this much visible text need repetition
    MAX_SHORT_PAGE_TEXT = 4000
    MIN_REPEATED_OCCURRENCES = 3

    NON_VISIBLE_TAGS = ["script", "style", "noscript", "iframe", "link", "meta"]

    BLOCK_PATTERNS: List[Tuple[str, "re.Pattern[str]"]] = [
        (
            "JavaScript required",
            re.compile(
                r"enable javascript|javascript is (?:required|disabled|not enabled)"
                r"|requires javascript|turn on javascript",
            ),
        ),
        (
            "Cookies required",
            re.compile(r"enable cookies|cookies are (?:required|disabled|not enabled)"),
        ),
        (
            "Access denied",
            re.compile(r"access denied|access to this page has been denied|403 forbidden"),
        ),
        (
            "Human verification",
            re.compile(
                r"verify (?:that )?you are (?:a )?human|are you a robot"
                r"|prove you(?:'re| are) (?:a )?human|not a robot",
            ),
        ),
        (
            "Browser check",
            re.compile(
                r"checking your browser|checking if the site connection is secure"
                r"|ddos protection by|attention required! \| cloudflare",
            ),
        ),
        ("Interstitial/Challenge", re.compile(r"just a moment")),
        (
            "Rate limited",
            re.compile(r"unusual traffic|too many requests|rate limit(?:ed)?"),
        ),
        ("Captcha", re.compile(r"captcha")),
    ]

    CHALLENGE_MARKERS = [
        '[id*="captcha"]',
        '[class*="captcha"]',
        '[id*="challenge"]',
        '[class*="challenge"]',
        '[class*="cf-"]',
        ".turnstile",
        ".h-captcha",
        ".g-recaptcha",
    ]

    @classmethod
    def detect(cls, html: HtmlDocument) -> BlockDetectionResult:
        """
        Classify a document.

        Args:
            html: Raw or rendered HTML, or a parsed document (left unmodified)

        Returns:
            BlockDetectionResult with blocked flag and a human readable reason
        """
        if not html:
            return BlockDetectionResult(blocked=False)

        soup = parse_html(html)

        title = cls._get_title(soup)
        if title:
            for label, pattern in cls.BLOCK_PATTERNS:
                if pattern.search(title):
                    return BlockDetectionResult(blocked=True, reason=f"{label} (title)")

        visible_text = cls._get_visible_text(soup)
        if visible_text:
            is_short_page = len(visible_text) < cls.MAX_SHORT_PAGE_TEXT
            for label, pattern in cls.BLOCK_PATTERNS:
                occurrences = len(pattern.findall(visible_text))
                if not occurrences:
                    continue
                if is_short_page or occurrences >= cls.MIN_REPEATED_OCCURRENCES:
                    return BlockDetectionResult(blocked=True, reason=label)
                logger.debug(
                    f"Ignoring incidental '{label}' mention on long page "
                    f"({len(visible_text)} chars, {occurrences} occurrences)"
                )

        for marker in cls.CHALLENGE_MARKERS:
            if soup.select_one(marker) is not None:
                return BlockDetectionResult(
                    blocked=True, reason="Challenge element detected"
                )

        return BlockDetectionResult(blocked=False)

    @classmethod
    def _get_title(cls, soup: BeautifulSoup) -> str:
        """Lowercased page title, cut to TITLE_MAX_LENGTH."""
        if soup.title is None:
            return ""
        return soup.title.get_text().strip().lower()[: cls.TITLE_MAX_LENGTH]

    @classmethod
    def _get_visible_text(cls, soup: BeautifulSoup) -> str:
        """Lowercased body text with non-visible elements removed."""
        if soup.body is None:
            return ""
        # Stripped on a copy; callers share the parsed document
        body = copy.copy(soup.body)
        for tag in body.find_all(cls.NON_VISIBLE_TAGS):
            tag.decompose()
        text = body.get_text(" ")
        return re.sub(r"\s+", " ", text).strip().lower()


def detect_page_block_reason(html: HtmlDocument) -> BlockDetectionResult:
    """Module-level shortcut for BlockDetector.detect()."""
    return BlockDetector.detect(html)
