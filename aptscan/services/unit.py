# aptscan/services/unit.py
from __future__ import annotations

import re
from typing import List, Optional, Pattern

# =========================
# Patterns (priority order)
# =========================
# Group 1 is always the unit token: either it holds a digit or it is a single
# letter, so prose such as "unit info" or "apartment" never yields a unit.
_KEYWORD = r"(?:(?<![A-Z])(?:APT|UNIT)(?![A-Z])\.?|#)"

UNIT_PATTERNS: List[Pattern[str]] = [
    # "APT 4B", "Unit 12", "#7", "Apt. 3-C", "Apt B"
    re.compile(_KEYWORD + r"\s*([0-9A-Z-]*\d[0-9A-Z-]*|[A-Z](?![0-9A-Z-]))", re.IGNORECASE),
    # "4B APT", "12 #"
    re.compile(r"\b(\d+[A-Z]?)\s*" + _KEYWORD, re.IGNORECASE),
    # a line holding only "7", "#12", "4B"
    re.compile(r"^\s*#?(\d+[A-Z]?)\s*$", re.IGNORECASE),
]


def extract_unit(text: str) -> Optional[str]:
    """
    Pull an apartment/unit token out of free OCR text.

    Lines are scanned top to bottom and each line tries the patterns in
    priority order; the first non-empty capture wins. Returns None when
    nothing matches.
    """
    if not text:
        return None

    for line in text.splitlines():
        for pattern in UNIT_PATTERNS:
            m = pattern.search(line)
            if m and m.group(1):
                return m.group(1)
    return None
