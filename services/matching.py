"""Fuzzy name matching used to reconcile spreadsheet rows with database rows."""

from __future__ import annotations

import re
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

DEFAULT_THRESHOLD = 0.65
MEDIUM_CONFIDENCE = 0.85

# ASCII word characters only, so "Café" normalises to "caf"
_PUNCTUATION = re.compile(r'[^\w\s]', re.ASCII)
_WHITESPACE = re.compile(r'\s+')


def normalize_name(name) -> str:
    value = _PUNCTUATION.sub('', str(name or '').lower())
    return _WHITESPACE.sub(' ', value).strip()


def similarity(a: str, b: str) -> float:
    """(max_len - edit_distance) / max_len; two empty strings are identical."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


def abbreviation_bonus(new_name: str, existing_name: str, pairs) -> float:
    """0.1 when one name contains an abbreviation and the other its long form.

    Plain substring checks: "harbor cove" contains "co".
    """
    for short, long in pairs:
        if (short in new_name and long in existing_name) or (
            short in existing_name and long in new_name
        ):
            return 0.1
    return 0.0


@dataclass
class Match:
    item: dict
    exact_match: bool
    similarity: float
    same_code: bool = False

    @property
    def confidence(self) -> str:
        if self.exact_match:
            return 'HIGH'
        return 'MEDIUM' if self.similarity > MEDIUM_CONFIDENCE else 'LOW'


def find_potential_matches(new_item, existing_items, config, threshold=DEFAULT_THRESHOLD):
    """Existing rows that look like ``new_item``, exact matches first then by score."""
    matches = []
    new_raw = (new_item.get('name') or '').strip().lower()
    new_normalized = config.normalize_name(new_item.get('name'))

    for existing in existing_items:
        existing_normalized = config.normalize_name(existing.get('name'))
        exact = new_raw == (existing.get('name') or '').strip().lower()
        score = similarity(new_normalized, existing_normalized)
        score = min(1.0, score + config.abbreviation_bonus(new_normalized, existing_normalized))

        if exact or score >= threshold:
            matches.append(Match(item=existing, exact_match=exact, similarity=score))

    matches.sort(key=lambda m: (not m.exact_match, -m.similarity))
    return matches
