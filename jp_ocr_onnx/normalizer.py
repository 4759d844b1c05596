"""
Display normalization for recognized Japanese text.

Single pass over code points: whitespace is dropped, the ellipsis becomes
three dots, runs of two or more `.`/`・` become that many ASCII dots, and
remaining ASCII is widened to its full-width form.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

TABLE_SIZE = 127
ELLIPSIS = "…"
MIDDLE_DOT = "・"
DOTS = frozenset({".", MIDDLE_DOT})

# Quotes keep their ASCII form; the backtick becomes an apostrophe.
_SPECIAL_CASES = {'"': '"', "'": "'", "`": "'"}


def build_conversion_table() -> Mapping[int, str]:
    table = {cp: chr(cp) for cp in range(TABLE_SIZE)}
    for cp in range(ord("!"), ord("~") + 1):
        ch = chr(cp)
        table[cp] = _SPECIAL_CASES.get(ch, chr(cp - 0x21 + 0xFF01))
    return MappingProxyType(table)


CONVERSION_TABLE = build_conversion_table()


class TextNormalizer:
    def __init__(self, table: Mapping[int, str] = CONVERSION_TABLE):
        self.table = table

    def normalize(self, text: str) -> str:
        out = []
        i = 0
        n = len(text)
        while i < n:
            c = text[i]
            if c.isspace():
                i += 1
                continue
            if c == ELLIPSIS:
                out.append("...")
                i += 1
                continue
            if c in DOTS:
                j = i + 1
                while j < n and text[j] in DOTS:
                    j += 1
                if j - i >= 2:
                    out.append("." * (j - i))
                    i = j
                    continue
            cp = ord(c)
            if cp < TABLE_SIZE:
                out.append(self.table.get(cp, c))
            else:
                out.append(c)
            i += 1
        return "".join(out)

    __call__ = normalize
