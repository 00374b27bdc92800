# aptscan/services/address.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger("address")

# =========================
# Types / configuration
# =========================

@dataclass(frozen=True)
class AddressComponents:
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None

    def fields(self) -> List[str]:
        """Non-empty fields in street, city, state, zip order."""
        return [v for v in (self.street, self.city, self.state, self.zip) if v]


@dataclass
class AddressFilter:
    """
    Which detected addresses count as ours.
    A candidate qualifies when (city OR zip) AND street pass.
    City and street substrings compare case-insensitively; zip codes are literal.
    """
    city_substrings: Tuple[str, ...] = ("lauderdale",)
    zip_codes: Tuple[str, ...] = ("33301",)
    street_substrings: Tuple[str, ...] = ("419", "2nd")

    @classmethod
    def from_config(cls, cfg: Optional[Dict[str, Any]]) -> "AddressFilter":
        base = cls()
        if not cfg:
            return base
        return cls(
            city_substrings=_as_tuple(cfg.get("city_substrings"), base.city_substrings),
            zip_codes=_as_tuple(cfg.get("zip_codes"), base.zip_codes),
            street_substrings=_as_tuple(cfg.get("street_substrings"), base.street_substrings),
        )

    def city_or_zip_ok(self, c: AddressComponents) -> bool:
        city = (c.city or "").lower()
        zip_code = c.zip or ""
        return any(s.lower() in city for s in self.city_substrings) or any(z in zip_code for z in self.zip_codes)

    def street_ok(self, c: AddressComponents) -> bool:
        street = (c.street or "").lower()
        return any(s.lower() in street for s in self.street_substrings)

    def accepts(self, c: AddressComponents) -> bool:
        return self.city_or_zip_ok(c) and self.street_ok(c)


Detector = Callable[[str], List[AddressComponents]]


# =========================
# Address detection
# =========================

_STREET_SUFFIXES = (
    "STREET|ST|AVENUE|AVE|AV|BOULEVARD|BLVD|ROAD|RD|DRIVE|DR|LANE|LN|COURT|CT|PLACE|PL|"
    "TERRACE|TER|WAY|CIRCLE|CIR|PARKWAY|PKWY|HIGHWAY|HWY|TRAIL|TRL|PLAZA|PLZ|SQUARE|SQ"
)

# "419 2nd St", "419 SE 2nd Ave", "12 Las Olas Blvd" (+ optional trailing direction)
_STREET_RE = re.compile(
    r"\b\d{1,6}[A-Z]?"
    r"(?:\s+[A-Z0-9][\w.'-]*){0,4}?"
    r"\s+(?:" + _STREET_SUFFIXES + r")\.?"
    r"(?:[ \t]+(?:NE|NW|SE|SW|N|S|E|W)\.?)?"
    r"(?=[\s,]|$)",
    re.IGNORECASE,
)

# Unit designator glued to the street ("Apt 7", "Unit 4B", "#12", "Suite 300")
_UNIT_TAIL_RE = re.compile(r"^[\s,]*((?:(?:APT|UNIT|SUITE|STE)(?![A-Z])\.?|#)\s*[0-9A-Z-]+)", re.IGNORECASE)

_ZIP_RE = re.compile(r"(\d{5}(?:-\d{4})?)\s*$")
_STATE_RE = re.compile(r"(?:^|[\s,])([A-Z]{2})\s*$", re.IGNORECASE)


def detect_addresses(text: str) -> List[AddressComponents]:
    """
    Find postal-address-like spans in free text.

    Each street match is followed by its city/state/zip tail, taken from the
    rest of the same line, or from the next non-empty line when the street
    stands alone. Candidates are returned in text order.
    """
    if not text:
        return []

    lines = text.splitlines()
    found: List[AddressComponents] = []
    for idx, line in enumerate(lines):
        for m in _STREET_RE.finditer(line):
            street = _clean(m.group(0))
            rest = line[m.end():]

            unit = _UNIT_TAIL_RE.match(rest)
            if unit:
                street = f"{street} {_clean(unit.group(1))}"
                rest = rest[unit.end():]

            # stop the tail at the next street on the same line
            nxt = _STREET_RE.search(rest)
            if nxt:
                rest = rest[:nxt.start()]

            tail = _clean(rest)
            if not tail:
                tail = _next_non_empty(lines, idx + 1)
            city, state, zip_code = _split_tail(tail)
            found.append(AddressComponents(street=street, city=city, state=state, zip=zip_code))

    logger.debug("Detected %d address candidate(s)", len(found))
    return found


# =========================
# Matching
# =========================

class AddressMatcher:
    def __init__(self, address_filter: Optional[AddressFilter] = None, detector: Detector = detect_addresses):
        self.filter = address_filter or AddressFilter()
        self.detector = detector

    def match(self, text: str) -> Optional[str]:
        """
        Return the first detected address accepted by the filter, joined as
        "street, city, state, zip" (empty fields omitted), or None.
        """
        for candidate in self.detector(text or ""):
            if self.filter.accepts(candidate):
                return ", ".join(candidate.fields())
        return None


# =========================
# Helpers
# =========================

def _clean(s: Optional[str]) -> str:
    s = " ".join((s or "").split())
    return s.strip(" ,;")


def _next_non_empty(lines: List[str], start: int) -> str:
    for line in lines[start:]:
        cleaned = _clean(line)
        if cleaned:
            if _UNIT_TAIL_RE.fullmatch(cleaned):
                continue
            # a following street line is a different address
            if _STREET_RE.match(cleaned):
                return ""
            return cleaned
    return ""


def _split_tail(tail: str) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Split "Fort Lauderdale, FL 33301" into (city, state, zip)."""
    zip_code = state = None

    m = _ZIP_RE.search(tail)
    if m:
        zip_code = m.group(1)
        tail = _clean(tail[:m.start()])

    m = _STATE_RE.search(tail)
    if m:
        state = m.group(1).upper()
        tail = _clean(tail[:m.start()])

    city = tail or None
    return city, state, zip_code


def _as_tuple(value: Any, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if value is None:
        return default
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Iterable):
        return tuple(str(v) for v in value if str(v))
    return (str(value),)
