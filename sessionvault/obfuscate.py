"""Reversible title substitution.

Titles are stored with a handful of Latin vowels swapped for look-alike Greek
letters. This only keeps titles from being skimmed in a hex dump or a plain
grep of the bundle; it is not a security control.
"""

from __future__ import annotations

from typing import Dict


TITLE_SUBSTITUTIONS: Dict[str, str] = {
    "a": "α",
    "e": "ε",
    "i": "ι",
    "o": "ω",
    "u": "υ",
    "A": "Α",
    "E": "Ε",
    "I": "Ι",
    "O": "Ω",
    "U": "Υ",
}

_FORWARD = str.maketrans(TITLE_SUBSTITUTIONS)
_REVERSE = str.maketrans({v: k for k, v in TITLE_SUBSTITUTIONS.items()})


def obfuscate_title(title: str) -> str:
    return title.translate(_FORWARD)


def deobfuscate_title(title: str) -> str:
    # Exact inverse for titles that do not already contain the substitute glyphs.
    return title.translate(_REVERSE)
