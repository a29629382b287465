"""
One-time password extraction.

Patterns are tried in order and the first match wins.
"""
from __future__ import annotations

import re
from typing import List, Optional, Pattern

OTP_PATTERNS: List[Pattern[str]] = [
    # "code: 123-456", "OTP 4821", "PIN is 0042"
    re.compile(r"(?:code|otp|pin)\D{0,10}?(\d[\d-]*\d|\d)", re.IGNORECASE),
    re.compile(r"\b(\d{3}-\d{3})\b"),
    re.compile(r"\b(\d{6,8})\b"),
    re.compile(r"\b(\d{4,5})\b"),
]


def extract_otp(text: Optional[str]) -> Optional[str]:
    """Return the most likely OTP in text, or None."""
    if not text:
        return None
    for pattern in OTP_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None
