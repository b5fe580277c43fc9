"""Bot challenge detection for competitor inventory pages.

Only consulted when a lightweight fetch parsed zero vehicles, to tell a
challenge page (BLOCKED) apart from a JavaScript-rendered page (NO_DATA_FOUND).
Dealer sites routinely embed reCAPTCHA on contact forms, so bare "captcha"
mentions are not treated as blocks.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from selectolax.parser import HTMLParser

logger = logging.getLogger(__name__)


@dataclass
class ContentAnalysis:
    """Result of content analysis."""

    is_blocked: bool
    block_type: Optional[str]        # captcha, cloudflare, access_denied, rate_limit, bot_detected
    page_title: Optional[str]
    content_length: int


BLOCK_PATTERNS = [
    # CAPTCHA walls
    (r'prove you\'?re not a robot', 'captcha'),
    (r'verify you are a human', 'captcha'),
    (r'robot check', 'captcha'),
    (r'unusual traffic', 'captcha'),

    # Cloudflare challenge
    (r'checking your browser', 'cloudflare'),
    (r'just a moment\.\.\.', 'cloudflare'),
    (r'please wait while we verify', 'cloudflare'),
    (r'attention required! \| cloudflare', 'cloudflare'),

    # Blocking / rate limiting
    (r'access denied', 'access_denied'),
    (r'request has been blocked', 'rate_limit'),
    (r'too many requests', 'rate_limit'),

    # Bot detection services
    (r'pardon our interruption', 'bot_detected'),
    (r'automation tools', 'bot_detected'),
    (r'incapsula incident', 'incapsula'),
]


class ContentAnalyzer:
    """Classifies fetched pages as challenge pages or real content."""

    def __init__(self):
        self._block_patterns = [
            (re.compile(pattern, re.IGNORECASE), block_type)
            for pattern, block_type in BLOCK_PATTERNS
        ]

    def analyze(self, html: str) -> ContentAnalysis:
        if not html:
            return ContentAnalysis(is_blocked=False, block_type=None, page_title=None, content_length=0)

        title_node = HTMLParser(html).css_first("title")
        page_title = title_node.text(strip=True) if title_node else None
        block_type = self._detect_block(html, page_title)
        return ContentAnalysis(
            is_blocked=block_type is not None,
            block_type=block_type,
            page_title=page_title,
            content_length=len(html),
        )

    def _detect_block(self, html: str, page_title: Optional[str]) -> Optional[str]:
        content = html.lower()
        if page_title:
            content = f"{page_title.lower()} {content}"

        for pattern, block_type in self._block_patterns:
            if pattern.search(content):
                logger.debug(f"Detected block type: {block_type}")
                return block_type
        return None


content_analyzer = ContentAnalyzer()
