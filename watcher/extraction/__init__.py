"""
Value extraction for monitored pages.

- normalization: whitespace/invisible-character cleanup and fuzzy matching
- static_extractor: selector resolution against delivered HTML
- block_detection: interstitial/challenge page classification
- selector_heal: replacement-selector discovery for broken selectors
"""

from .normalization import (
    extract_digits,
    normalize_text_for_match,
    normalize_value,
    text_matches,
)
from .static_extractor import (
    extract_value_from_html,
    normalize_selector,
    parse_html,
    validate_css_selector,
)
from .block_detection import BlockDetectionResult, BlockDetector, detect_page_block_reason

__all__ = [
    "extract_digits",
    "normalize_text_for_match",
    "normalize_value",
    "text_matches",
    "extract_value_from_html",
    "normalize_selector",
    "parse_html",
    "validate_css_selector",
    "BlockDetectionResult",
    "BlockDetector",
    "detect_page_block_reason",
]
