"""
Value normalization helpers.

Every extracted value goes through normalize_value() before it is compared
or stored. The match helpers are only used when hunting for a replacement
selector, where "$1,234.00" and "Price: 1234" should count as the same value.
"""

import re

# Zero-width spaces/joiners, word joiner, BOM, soft hyphen, Mongolian vowel separator
INVISIBLE_CHARS_RE = re.compile("[\u200b\u200c\u200d\u2060\ufeff\u00ad\u180e]")

WHITESPACE_RE = re.compile(r"\s+")

MATCH_STRIP_RE = re.compile(r"[\s,]")
CURRENCY_RE = re.compile("[$\u20ac\u00a3\u00a5\u20b9]")
NON_DIGIT_RE = re.compile(r"[^\d.]")

# Digit fallback only applies to reasonably long values
MIN_EXPECTED_LENGTH_FOR_DIGITS = 4
MIN_DIGITS_LENGTH = 3


def normalize_value(raw: str) -> str:
    """Strip invisible characters, collapse whitespace runs and trim."""
    if not raw:
        return ""
    cleaned = INVISIBLE_CHARS_RE.sub("", raw)
    return WHITESPACE_RE.sub(" ", cleaned).strip()


def normalize_text_for_match(text: str) -> str:
    """Lowercase and drop whitespace, commas and currency symbols."""
    if not text:
        return ""
    return CURRENCY_RE.sub("", MATCH_STRIP_RE.sub("", text.lower()))


def extract_digits(text: str) -> str:
    """Keep only digits and decimal points."""
    if not text:
        return ""
    return NON_DIGIT_RE.sub("", text)


def text_matches(candidate: str, expected: str) -> bool:
    """
    Check whether candidate text contains the expected value.

    Falls back to comparing digit-only forms when the plain comparison fails,
    so that formatting differences around a number do not prevent a match.

    Args:
        candidate: Text found on the page
        expected: Previously accepted value

    Returns:
        True if the candidate plausibly holds the expected value
    """
    normalized_expected = normalize_text_for_match(expected)
    if not normalized_expected:
        return False

    if normalized_expected in normalize_text_for_match(candidate):
        return True

    if len(expected) >= MIN_EXPECTED_LENGTH_FOR_DIGITS:
        expected_digits = extract_digits(expected)
        if len(expected_digits) >= MIN_DIGITS_LENGTH:
            return expected_digits in extract_digits(candidate)

    return False
