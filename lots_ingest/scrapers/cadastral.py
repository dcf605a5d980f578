"""Cadastral number extraction from free text."""
from __future__ import annotations

import re
from typing import Optional

# region:district:block:parcel, e.g. 50:10:0010203:45
CADASTRAL_RE = re.compile(r"(?<![\d:])\d{2}:\d{2}:\d{6,7}:\d{1,4}(?![\d:])")


def extract_cadastral_numbers(text: Optional[str]) -> list[str]:
    """Distinct cadastral numbers in order of first appearance."""
    if not text:
        return []
    seen: dict[str, None] = {}
    for m in CADASTRAL_RE.finditer(text):
        seen.setdefault(m.group(0), None)
    return list(seen)


__all__ = ["CADASTRAL_RE", "extract_cadastral_numbers"]
