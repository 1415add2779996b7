"""
Cookie/consent banner dismissal for rendered sessions.

Consent overlays frequently cover or replace the value a monitor tracks.
The renderer probes a fixed list of common "accept" buttons in the main
frame and every sub-frame (CMPs such as OneTrust/Sourcepoint often live in
an iframe) and clicks the first visible one.
"""

import logging
from typing import List

logger = logging.getLogger(__name__)

CONSENT_CLICK_TIMEOUT_MS = 2000


def get_consent_button_selectors() -> List[str]:
    """
    Get selectors for common consent "accept" buttons.

    Returns:
        List of Playwright selector strings, most specific first
    """
    return [
        # Consent management platforms
        "#onetrust-accept-btn-handler",
        "#accept-recommended-btn-handler",
        "button#truste-consent-button",
        "#CybotCookiebotDialogBodyLevelButtonLevelOptinAllowAll",
        "#CybotCookiebotDialogBodyButtonAccept",
        "button.fc-cta-consent",
        'button[title="Accept"]',
        'button[title="Accept all"]',
        'button[aria-label="Accept all"]',
        'button[data-testid="uc-accept-all-button"]',
        "button.sp_choice_type_11",
        ".qc-cmp2-summary-buttons button[mode='primary']",
        # Generic ids/classes
        "#accept-cookies",
        "#acceptCookies",
        "button.cookie-accept",
        "button.accept-cookies",
        "button.js-accept-cookies",
        # Text-based selectors
        'button:has-text("Accept all")',
        'button:has-text("Accept All Cookies")',
        'button:has-text("Accept cookies")',
        'button:has-text("Allow all")',
        'button:has-text("I agree")',
        'button:has-text("Agree")',
        'button:has-text("Got it")',
        'button:has-text("Accept")',
        'a:has-text("Accept all")',
    ]


async def dismiss_consent_banners(page) -> bool:
    """
    Click the first visible consent button in any frame of the page.

    Args:
        page: Playwright page object

    Returns:
        True if a button was clicked, False otherwise
    """
    selectors = get_consent_button_selectors()

    for frame in page.frames:
        for selector in selectors:
            try:
                element = frame.locator(selector).first
                if await element.count() > 0 and await element.is_visible():
                    await element.click(timeout=CONSENT_CLICK_TIMEOUT_MS)
                    logger.info(f"Dismissed consent banner with selector: {selector}")
                    return True
            except Exception as e:
                # Detached frames and covered buttons are routine here
                logger.debug(f"Consent selector {selector} not clickable: {e}")
                continue

    return False
