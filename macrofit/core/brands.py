"""Canonical brand identities and the synonym table used to recognise them.

Resolution is a plain substring test over normalized text. Entries are checked
in registration order and the first hit wins, so brands whose synonyms could
appear inside other names ("panda", "jack") must be registered after the
longer names that contain them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(text: Optional[str]) -> str:
    """Lower-case and drop every character outside ``[a-z0-9]``."""
    return _NON_ALNUM.sub("", (text or "").lower())


def _display_pattern(display_name: str) -> str:
    # Punctuation varies between OSM tags (', ’, -), so let any character stand in for it.
    return re.sub(r"[^A-Za-z0-9 ]", ".", display_name)


@dataclass(frozen=True)
class BrandEntry:
    key: str
    display_name: str
    synonyms: Tuple[str, ...]
    # Extra regex alternatives for map queries where tags vary in spacing/punctuation.
    patterns: Tuple[str, ...] = ()

    @classmethod
    def build(cls, key: str, display_name: str, synonyms: Iterable[str] = (), patterns: Iterable[str] = ()) -> "BrandEntry":
        synonyms = list(synonyms)
        normalized: List[str] = []
        for raw in (key, display_name, *synonyms):
            value = normalize(raw)
            if value and value not in normalized:
                normalized.append(value)
        # Written-out synonyms ("kentucky fried chicken") also go into the map query.
        regexes = list(patterns)
        for raw in synonyms:
            pattern = _display_pattern(raw)
            if pattern.strip() and pattern not in regexes:
                regexes.append(pattern)
        return cls(key=key, display_name=display_name, synonyms=tuple(normalized), patterns=tuple(regexes))


DEFAULT_BRANDS: Tuple[BrandEntry, ...] = (
    BrandEntry.build("jackinthebox", "Jack in the Box", ["jack in the box"]),
    BrandEntry.build("kfc", "KFC", ["kentucky fried chicken"]),
    BrandEntry.build("mcdonalds", "McDonald's", ["mcdonald", "mc donald", "mc donalds"], ["McDonald", "Mc Donald"]),
    BrandEntry.build("chipotle", "Chipotle Mexican Grill", ["chipotle"], ["Chipotle"]),
    BrandEntry.build("wingstop", "Wingstop", ["wing stop"]),
    BrandEntry.build("tacobell", "Taco Bell", [], ["Taco[ ]?Bell"]),
    BrandEntry.build("burgerking", "Burger King", [], ["Burger[ ]?King"]),
    BrandEntry.build("wendys", "Wendy's", ["wendy"], ["Wendy"]),
    BrandEntry.build("chickfila", "Chick-fil-A", ["chick fil a", "chickfil"], ["Chick[- ]?fil[- ]?A"]),
    BrandEntry.build("pandaexpress", "Panda Express", ["panda"], ["Panda"]),
    BrandEntry.build("fiveguys", "Five Guys", ["5 guys"], ["Five[ ]?Guys", "5[ ]?Guys"]),
    BrandEntry.build("panerabread", "Panera Bread", ["panera"], ["Panera"]),
    BrandEntry.build("popeyes", "Popeyes", ["popeye"]),
    BrandEntry.build("dominos", "Domino's Pizza", ["domino"], ["Domino"]),
    BrandEntry.build("pizzahut", "Pizza Hut", []),
    BrandEntry.build("raisingcanes", "Raising Cane's", ["raising cane"], ["Raising Cane"]),
    BrandEntry.build("shakeshack", "Shake Shack", []),
    BrandEntry.build("jimmyjohns", "Jimmy John's", ["jimmy john"], ["Jimmy John"]),
    BrandEntry.build("jerseymikes", "Jersey Mike's", ["jersey mike"], ["Jersey Mike"]),
    BrandEntry.build("whataburger", "Whataburger", []),
    BrandEntry.build("innout", "In-N-Out Burger", ["in n out", "in-n-out"], ["In-N-Out"]),
    BrandEntry.build("qdoba", "Qdoba", []),
    BrandEntry.build("subway", "Subway", []),
)


class BrandResolver:
    """Ordered synonym table mapping free-text names to canonical brands."""

    def __init__(self, entries: Iterable[BrandEntry] = DEFAULT_BRANDS) -> None:
        self._entries: List[BrandEntry] = []
        self._by_key: Dict[str, BrandEntry] = {}
        for entry in entries:
            self.register(entry)

    def register(self, entry: BrandEntry) -> None:
        if entry.key in self._by_key:
            raise ValueError(f"Brand with key='{entry.key}' is already registered")
        self._entries.append(entry)
        self._by_key[entry.key] = entry

    def get(self, key: str) -> Optional[BrandEntry]:
        return self._by_key.get((key or "").lower())

    def keys(self) -> List[str]:
        return [entry.key for entry in self._entries]

    def resolve(self, name: Optional[str], tag: Optional[str] = None) -> Optional[BrandEntry]:
        """Return the first brand whose synonym occurs in ``name`` + ``tag``."""
        text = normalize(f"{name or ''} {tag or ''}")
        if not text:
            return None
        for entry in self._entries:
            if any(synonym in text for synonym in entry.synonyms):
                return entry
        return None

    def select(self, keys: Optional[Iterable[str]]) -> List[BrandEntry]:
        """Known entries for ``keys`` in registration order; all entries when empty."""
        wanted = {key.lower() for key in keys or [] if key}
        if not wanted:
            return list(self._entries)
        unknown = wanted - set(self._by_key)
        if unknown:
            logger.debug("Ignoring unknown brand keys: %s", sorted(unknown))
        return [entry for entry in self._entries if entry.key in wanted]

    def name_patterns(self, keys: Optional[Iterable[str]] = None) -> List[str]:
        """Regex alternatives matching the display names of the selected brands."""
        patterns: List[str] = []
        for entry in self.select(keys):
            for pattern in (_display_pattern(entry.display_name), *entry.patterns):
                if pattern not in patterns:
                    patterns.append(pattern)
        return patterns


_default_resolver: Optional[BrandResolver] = None


def get_resolver() -> BrandResolver:
    """Return the process-wide resolver built from ``DEFAULT_BRANDS``."""
    global _default_resolver
    if _default_resolver is None:
        _default_resolver = BrandResolver()
    return _default_resolver
