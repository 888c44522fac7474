"""
Column kinds and cell heuristics for FSOP tables.

A header's text decides how the cells below it are edited:
date picker, time picker, operator selector or free text.
"""
import re
from typing import Iterable, List, Optional

from fsop_text import normalize_text, clean_spaces

DATE = "date"
TIME = "time"
OPERATOR = "operator"
TEXT = "text"

OPERATOR_MARKERS = ("operateur", "operatrice", "operator", "visa")

# A first row counts as a header when at least two of its cells carry one of these words.
HEADER_KEYWORDS = (
    "date", "heure", "time", "operateur", "operator", "visa",
    "lot", "composant", "reference", "designation", "quantite",
    "mesure", "valeur", "resultat", "observation", "commentaire",
    "conforme", "numero", "etape", "controle", "n°",
)
HEADER_MIN_HITS = 2

# Columns where a "Label (unit)" cell is still data, not a fixed label.
DATA_ENTRY_HEADER_RE = re.compile(r"(date|heure|operateur|lot|mesure)")

UNDERS_RE = re.compile(r"^_{3,}$")
DATE_PLACEHOLDER_RE = re.compile(r"^(jj|dd)\s*[/-]\s*mm\s*[/-]\s*(aaaa|yyyy)$", re.IGNORECASE)
TIME_PLACEHOLDER_RE = re.compile(r"^hh\s*[:h]\s*mm$", re.IGNORECASE)

_FIXED_COLON_UNIT_RE = re.compile(r"\d+\s*(h|min|°C|°F)", re.IGNORECASE)
_FIXED_PAREN_RE = re.compile(r"^[A-Za-zÀ-ÿ\s]+\([^)]+\)")
_FIXED_ORDINAL_RE = re.compile(r"^\d+\s*(er|ère|ere|ème|eme|e)\s+[a-zà-ÿ]", re.IGNORECASE)
_FIXED_OPERATION_RE = re.compile(r"MO\s+\d+\s*ind", re.IGNORECASE)

_TIME_COLON_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_TIME_H_RE = re.compile(r"^(\d{1,2})\s*h\s*(\d{2})$", re.IGNORECASE)
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_FR_DATE_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


def column_kind(header: str) -> str:
    h = normalize_text(header)
    if not h:
        return TEXT
    if "date" in h:
        return DATE
    if "heure" in h or "time" in h:
        return TIME
    if any(marker in h for marker in OPERATOR_MARKERS):
        return OPERATOR
    return TEXT

def column_kinds(header_texts: Iterable[str], width: int = 0) -> List[str]:
    kinds = [column_kind(t) for t in header_texts]
    while len(kinds) < width:
        kinds.append(TEXT)
    return kinds

def is_header_row(texts: Iterable[str]) -> bool:
    hits = 0
    for t in texts:
        n = normalize_text(t)
        if n and any(k in n for k in HEADER_KEYWORDS):
            hits += 1
    return hits >= HEADER_MIN_HITS

def is_blank_cell(text: str) -> bool:
    t = (text or "").strip()
    return not t or bool(UNDERS_RE.match(t))

def is_fixed_label(text: str, header: str = "", col_idx: int = 0) -> bool:
    """
    Descriptive static text inside a body row, rendered read-only:
      - "1ère polymérisation: 1h / 80°C"   (colon + unit or slash)
      - "Colle (353 ND)"                   (outside date/heure/opérateur/lot/mesure columns)
      - "2ème passage fibre" in column 0   (ordinal prefix)
      - "MO 1080 ind"                      (operation reference)
    """
    value = (text or "").strip()
    if not value:
        return False
    if ":" in value and ("/" in value or _FIXED_COLON_UNIT_RE.search(value)):
        return True
    if _FIXED_PAREN_RE.match(value) and not DATA_ENTRY_HEADER_RE.search(normalize_text(header)):
        return True
    if col_idx == 0 and _FIXED_ORDINAL_RE.match(value):
        return True
    if _FIXED_OPERATION_RE.search(value):
        return True
    return False


# =========================
# Date / time values
# =========================
def _clamp(v: int, lo: int, hi: int) -> int:
    return min(hi, max(lo, v))

def normalize_time(value: str) -> str:
    v = clean_spaces(value)
    if not v:
        return ""
    m = _TIME_COLON_RE.match(v) or _TIME_H_RE.match(v)
    if m:
        return f"{_clamp(int(m.group(1)), 0, 23):02d}:{_clamp(int(m.group(2)), 0, 59):02d}"
    return v

def normalize_date_to_iso(value: str) -> str:
    v = clean_spaces(value)
    if not v:
        return ""
    if _ISO_DATE_RE.match(v):
        return v
    m = _FR_DATE_RE.match(v)
    if m:
        dd = _clamp(int(m.group(1)), 1, 31)
        mm = _clamp(int(m.group(2)), 1, 12)
        return f"{int(m.group(3)):04d}-{mm:02d}-{dd:02d}"
    return ""

def iso_to_display(value: str) -> str:
    """ISO dates go back into the document as DD/MM/YYYY."""
    m = _ISO_DATE_RE.match((value or "").strip())
    if not m:
        return value
    return f"{m.group(3)}/{m.group(2)}/{m.group(1)}"

def initial_date(saved: str, cell_text: str) -> str:
    if saved:
        return normalize_date_to_iso(saved) or saved
    if DATE_PLACEHOLDER_RE.match((cell_text or "").strip()):
        return ""
    return normalize_date_to_iso(cell_text)

def initial_time(saved: str, cell_text: str) -> str:
    if saved:
        return normalize_time(saved)
    if TIME_PLACEHOLDER_RE.match((cell_text or "").strip()):
        return ""
    return normalize_time(cell_text) if not is_blank_cell(cell_text) else ""

def header_placeholder(header: str) -> str:
    h = normalize_text(header)
    if "date" in h:
        return "JJ/MM/AAAA"
    if "heure" in h or "time" in h:
        return "HH:MM"
    if "mm" in h.split() or "(mm)" in h:
        return "mm"
    if "db" in h:
        return "dB"
    return ""

def header_text(cell: Optional[dict]) -> str:
    if not isinstance(cell, dict):
        return clean_spaces(cell) if isinstance(cell, str) else ""
    return clean_spaces(cell.get("text", ""))
