"""
Table banner extraction.

Authors often put section titles inside a table as merged leading rows
("1 | Montage du connecteur", "Collage MO 1336 ind :") instead of a paragraph
above it. This peels those rows off so the remaining rows are header + body.
"""
import re
from typing import List, Sequence, Tuple

from fsop_text import (
    clean_spaces,
    has_operation_marker,
    is_short_colon_heading,
    looks_like_heading,
    match_checkbox,
    match_numbered_heading,
    match_pass_fail,
)

MAX_BANNER_PASSES = 3
BANNER_COLON_MAX = 80
TITLE_MAX = 120

BARE_NUMBER_RE = re.compile(r"^\d{1,2}[A-Za-z]?\.?$")
_LETTERS_RE = re.compile(r"[^\W\d_]")


def cell_text(cell) -> str:
    if isinstance(cell, dict):
        return clean_spaces(cell.get("text", ""))
    if isinstance(cell, str):
        return clean_spaces(cell)
    return ""

def _non_empty_texts(row) -> List[str]:
    if not isinstance(row, (list, tuple)):
        return []
    return [t for t in (cell_text(c) for c in row) if t]

def is_banner_text(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return False
    if match_numbered_heading(t) or looks_like_heading(t) or has_operation_marker(t):
        return True
    return is_short_colon_heading(t, BANNER_COLON_MAX)

def _title_like(text: str) -> bool:
    t = (text or "").strip()
    if not t or len(t) > TITLE_MAX:
        return False
    if t[0].isdigit() or len(_LETTERS_RE.findall(t)) < 3:
        return False
    if match_pass_fail(t) or match_checkbox(t):
        return False
    return True

def _numbered_pair(row):
    """(number, text) for a two-cell row whose one cell is a bare step number."""
    texts = _non_empty_texts(row)
    if len(texts) != 2:
        return None
    first, second = texts
    for num, title in ((first, second), (second, first)):
        if BARE_NUMBER_RE.match(num):
            return num.rstrip("."), title
    return None

def _row_banner(row, next_row=None) -> str:
    texts = _non_empty_texts(row)
    if len(texts) == 1 and is_banner_text(texts[0]):
        return texts[0]
    pair = _numbered_pair(row)
    if pair:
        num, title = pair
        if is_banner_text(title):
            return f"{num}- {title}"
        # "1 | Dénuder", "2 | Cliver", ... is a numbered step list, not a title
        if _title_like(title) and not _numbered_pair(next_row):
            return f"{num}- {title}"
    return ""

def extract_banners(rows: Sequence, max_passes: int = MAX_BANNER_PASSES) -> Tuple[List[str], List]:
    """
    Returns (banner strings in order, remaining rows).
    A table without banner rows comes back unchanged.
    """
    remaining = list(rows or [])
    banners: List[str] = []
    for _ in range(max_passes):
        if not remaining:
            break
        banner = _row_banner(remaining[0], remaining[1] if len(remaining) > 1 else None)
        if not banner:
            break
        banners.append(banner)
        remaining = remaining[1:]
    return banners, remaining
