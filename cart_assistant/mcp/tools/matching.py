"""Name normalization, catalog matching and cart-position parsing."""

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Any, Dict, List, Optional

FUZZY_THRESHOLD = 60.0

GENERIC_PREFIX = re.compile(r"^(specialty test of|test|specialty)\b[\s\-]*")
LINE_KEY_PATTERN = re.compile(r"^[a-f0-9]{32}$")


def normalize_name(value: str) -> str:
    """Lowercase, drop diacritics and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", value or "")
    ascii_only = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    ascii_only = ascii_only.encode("ascii", "ignore").decode("ascii").lower()
    ascii_only = re.sub(r"[^a-z0-9\s]", "", ascii_only)
    return re.sub(r"\s+", " ", ascii_only).strip()


def clean_name(value: str) -> str:
    """normalize_name() without the generic prefix words."""
    return GENERIC_PREFIX.sub("", normalize_name(value)).strip()


def similarity(a: str, b: str) -> float:
    """Percentage of matching characters between two strings.

    Counts characters in the recursively found common blocks and scales by
    the combined length. The score is taken in both argument orders and the
    higher one kept, so ``similarity(a, b) == similarity(b, a)``.
    """
    if not a and not b:
        return 100.0
    total = len(a) + len(b)

    def matched(x: str, y: str) -> int:
        blocks = SequenceMatcher(None, x, y, autojunk=False).get_matching_blocks()
        return sum(block.size for block in blocks)

    best = max(matched(a, b), matched(b, a))
    return 200.0 * best / total


# Cart positions

class PositionStrategy:
    """Turns a user reference such as "2", "second" or "ii" into a 1-based position."""

    name = "position"

    def try_parse(self, identifier: str) -> Optional[int]:
        raise NotImplementedError


class DecimalPosition(PositionStrategy):
    name = "decimal"
    pattern = re.compile(r"^\d+$")

    def try_parse(self, identifier: str) -> Optional[int]:
        if self.pattern.match(identifier):
            return int(identifier)
        return None


class OrdinalWordPosition(PositionStrategy):
    name = "ordinal_word"
    words = {
        "first": 1, "second": 2, "third": 3, "fourth": 4, "fifth": 5,
        "sixth": 6, "seventh": 7, "eighth": 8, "ninth": 9, "tenth": 10,
    }

    def try_parse(self, identifier: str) -> Optional[int]:
        return self.words.get(identifier.lower())


class RomanNumeralPosition(PositionStrategy):
    name = "roman"
    numerals = {
        "i": 1, "ii": 2, "iii": 3, "iv": 4, "v": 5,
        "vi": 6, "vii": 7, "viii": 8, "ix": 9, "x": 10,
    }

    def try_parse(self, identifier: str) -> Optional[int]:
        return self.numerals.get(identifier.lower())


class OrdinalMarkerPosition(PositionStrategy):
    name = "ordinal_marker"
    pattern = re.compile(r"^(\d+)\s*(st|nd|rd|th|º|°|ª)$", re.IGNORECASE)

    def try_parse(self, identifier: str) -> Optional[int]:
        match = self.pattern.match(identifier)
        if match:
            return int(match.group(1))
        return None


class ItemMarkerPosition(PositionStrategy):
    """References such as "item 3", "number 2", "#4" or "nº 2"."""

    name = "item_marker"
    pattern = re.compile(
        r"^(?:item|number|no\.?|position|#|número|numero|posição|posicao|n[°º])\s*(\d+)$",
        re.IGNORECASE,
    )

    def try_parse(self, identifier: str) -> Optional[int]:
        match = self.pattern.match(identifier)
        if match:
            return int(match.group(1))
        return None


POSITION_STRATEGIES: List[PositionStrategy] = [
    DecimalPosition(),
    OrdinalWordPosition(),
    RomanNumeralPosition(),
    OrdinalMarkerPosition(),
    ItemMarkerPosition(),
]


def parse_position(identifier: str, strategies: Optional[List[PositionStrategy]] = None) -> Optional[int]:
    """First position any strategy recognizes, in strategy order."""
    identifier = identifier.strip()
    for strategy in strategies or POSITION_STRATEGIES:
        position = strategy.try_parse(identifier)
        if position is not None:
            return position
    return None


# Catalog lookups

def match_catalog(requested: str, catalog: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Find the catalog product a free-text name refers to.

    Tries, across the whole catalog, cleaned query inside cleaned name, then
    cleaned name inside cleaned query, then the raw lowercased query inside
    the raw lowercased name. The first hit wins, so a query contained in any catalog name
    beats a catalog name contained in the query on an earlier product.
    """
    query = clean_name(requested)
    raw_query = (requested or "").strip().lower()
    cleaned = [(product, clean_name(product.get("name", ""))) for product in catalog]

    if query:
        for product, name in cleaned:
            if name and query in name:
                return product
        for product, name in cleaned:
            if name and name in query:
                return product
    if raw_query:
        for product, _ in cleaned:
            if raw_query in product.get("name", "").lower():
                return product
    return None


def pick_variant(product: Dict[str, Any], model_preference: Optional[str]) -> Optional[Dict[str, Any]]:
    """Variation whose attribute values mention the preferred model.

    Falls back to the first in-stock variation, then to the first one.
    """
    variations = product.get("variations") or []
    if not variations:
        return None

    preference = normalize_name(model_preference or "")
    if preference:
        for variation in variations:
            values = (variation.get("attributes") or {}).values()
            if variation.get("in_stock", True) and any(
                preference in normalize_name(str(value)) for value in values
            ):
                return variation

    for variation in variations:
        if variation.get("in_stock", True):
            return variation
    return variations[0]


def resolve_line(product: Dict[str, Any], model_preference: Optional[str]) -> Optional[Dict[str, Any]]:
    """Concrete cart line (product + variation) for a matched catalog product.

    Returns None for a variable product without any variation.
    """
    if product.get("type") == "variable":
        variation = pick_variant(product, model_preference)
        if variation is None:
            return None
        attributes = variation.get("attributes") or {}
        variation_name = next(iter(attributes.values()), None) or model_preference or ""
        return {
            "product_id": product["id"],
            "variation_id": variation["id"],
            "name": product["name"],
            "variation_name": str(variation_name),
            "quantity": 1,
        }
    return {
        "product_id": product["id"],
        "variation_id": 0,
        "name": product["name"],
        "variation_name": "Simple",
        "quantity": 1,
    }
