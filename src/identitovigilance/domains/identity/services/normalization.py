"""
Trait normalization and string similarity
"""

import unicodedata
from typing import Optional

from fuzzywuzzy import fuzz


def normalize(value: Optional[str]) -> str:
    """Fold diacritics and case so 'Hélène ' and 'HELENE' compare equal"""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.upper().strip()


def similarity(first: Optional[str], second: Optional[str]) -> float:
    """
    Bounded similarity in [0, 1] between two names.

    Identical normalized strings score 1.0 (two blanks included), a single
    empty side scores 0.0, and
    everything else uses the edit-distance ratio of the normalized strings
    (so 'JEAN' / 'JEHAN' is 8/9 and 'ABC' / 'XYZ' is 0.0).

    The ratio comes from the matcher behind ``fuzz.ratio`` but is not
    rounded to a whole percent, so thresholds compare the exact value.
    """
    a = normalize(first)
    b = normalize(second)

    if a == b:
        return 1.0
    if not a or not b:
        return 0.0

    return fuzz.SequenceMatcher(None, a, b).ratio()
