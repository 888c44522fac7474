"""
Text pattern library for FSOP templates.

Pure classifiers over paragraph / cell text:
- numbered headings ("1- Préparation", "3b. Contrôle")
- heading-like lines without a number ("Général :", "Tir puissance MO 1114 ind")
- PASS/FAIL prompts ("Mesure perte : PASS FAIL")
- checkbox items ("☐ Vérification OK", "[x] Nettoyage")
- inline tag tokens ("{{LT}}")
- operation codes ("MO 01336" -> "MO 1336")

Every function is total: bad input gives a no-match, never an exception.
"""
import re
import unicodedata
from typing import Dict, List, Optional, Tuple

# =========================
# Patterns & constants
# =========================
SHORT_HEADING_MAX = 60
OPERATION_HEADING_MAX = 130

NUMBERED_HEADING_RE = re.compile(r"^\s*(?P<num>\d{1,2}[A-Za-z]?)\s*[-–.]\s*(?P<title>[^\d\s].*?)\s*$", re.DOTALL)
PASS_FAIL_RE = re.compile(r"^\s*(?P<label>.+?)\s*:\s*PASS\s*FAIL\s*$", re.IGNORECASE | re.DOTALL)
CHECKBOX_RE = re.compile(r"^\s*(?P<box>[☐□☑☒✓]|\[[ xX]\])\s+(?P<label>.+?)\s*$", re.DOTALL)
CHECKED_GLYPHS = {"☑", "☒", "✓", "[x]", "[X]"}
TAG_TOKEN_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")
OPERATION_CODE_RE = re.compile(r"\bMO\s*[-:]?\s*(\d{3,5})(?!\d)")
IND_WORD_RE = re.compile(r"\bind\b", re.IGNORECASE)
COLON_END_RE = re.compile(r"[:：﹕]\s*$")
_SPACES_RE = re.compile(r"\s+")


# =========================
# Normalization helpers
# =========================
def _text(s) -> str:
    return s if isinstance(s, str) else ("" if s is None else str(s))

def strip_accents(s: str) -> str:
    t = unicodedata.normalize("NFKD", _text(s))
    return "".join(ch for ch in t if not unicodedata.combining(ch))

def normalize_text(s: str) -> str:
    """Comparison form: no accents, lower case, single spaces."""
    return _SPACES_RE.sub(" ", strip_accents(s).lower()).strip()

def clean_spaces(s: str) -> str:
    return _SPACES_RE.sub(" ", _text(s)).strip()


# =========================
# Classifiers
# =========================
def match_numbered_heading(text: str) -> Optional[Tuple[str, str]]:
    m = NUMBERED_HEADING_RE.match(_text(text))
    if not m:
        return None
    title = clean_spaces(m.group("title"))
    if not title:
        return None
    return m.group("num"), title

def heading_number(num: str) -> int:
    """'3b' -> 3."""
    m = re.match(r"\d+", _text(num))
    return int(m.group(0)) if m else 0

def extract_operation_code(text: str) -> str:
    m = OPERATION_CODE_RE.search(_text(text))
    if not m:
        return ""
    return f"MO {int(m.group(1))}"

def has_operation_marker(text: str) -> bool:
    t = _text(text)
    return bool(OPERATION_CODE_RE.search(t)) and bool(IND_WORD_RE.search(t))

def is_short_colon_heading(text: str, max_len: int = SHORT_HEADING_MAX) -> bool:
    t = _text(text).strip()
    return bool(t) and len(t) <= max_len and bool(COLON_END_RE.search(t))

def looks_like_heading(text: str) -> bool:
    t = _text(text).strip()
    if not t:
        return False
    if is_short_colon_heading(t):
        return True
    return len(t) <= OPERATION_HEADING_MAX and has_operation_marker(t)

def match_pass_fail(text: str) -> Optional[str]:
    m = PASS_FAIL_RE.match(_text(text))
    if not m:
        return None
    label = clean_spaces(m.group("label"))
    return label or None

def match_checkbox(text: str) -> Optional[Tuple[bool, str]]:
    m = CHECKBOX_RE.match(_text(text))
    if not m:
        return None
    label = clean_spaces(m.group("label"))
    if not label:
        return None
    return m.group("box") in CHECKED_GLYPHS, label

def find_tag_tokens(text: str) -> List[str]:
    return ["{{%s}}" % tag for tag in TAG_TOKEN_RE.findall(_text(text))]

def strip_heading_colon(text: str) -> str:
    return COLON_END_RE.sub("", _text(text)).strip()


# =========================
# Paragraph rule engine
# =========================
def _rule_numbered_heading(text: str, hint: bool) -> Optional[Dict]:
    hit = match_numbered_heading(text)
    if not hit:
        return None
    num, title = hit
    return {"rule": "numbered_heading", "number": num, "title": title}

def _rule_operation_heading(text: str, hint: bool) -> Optional[Dict]:
    t = text.strip()
    if len(t) <= OPERATION_HEADING_MAX and has_operation_marker(t):
        return {"rule": "operation_heading", "title": strip_heading_colon(t)}
    return None

def _rule_colon_heading(text: str, hint: bool) -> Optional[Dict]:
    if is_short_colon_heading(text):
        return {"rule": "colon_heading", "title": strip_heading_colon(text)}
    return None

def _rule_pass_fail(text: str, hint: bool) -> Optional[Dict]:
    # the upstream hint is only a shortcut; the pattern decides
    label = match_pass_fail(text)
    if label:
        return {"rule": "pass_fail", "label": label}
    return None

def _rule_checkbox(text: str, hint: bool) -> Optional[Dict]:
    hit = match_checkbox(text)
    if not hit:
        return None
    checked, label = hit
    return {"rule": "checkbox", "label": label, "checked": checked}

# First match wins; order is the heading/prompt precedence.
PARAGRAPH_RULES = (
    ("numbered_heading", _rule_numbered_heading),
    ("operation_heading", _rule_operation_heading),
    ("colon_heading", _rule_colon_heading),
    ("pass_fail", _rule_pass_fail),
    ("checkbox", _rule_checkbox),
)

def classify_paragraph(text: str, pass_fail_hint: bool = False) -> Dict:
    t = _text(text).strip()
    if not t:
        return {"rule": "empty"}
    for _name, rule in PARAGRAPH_RULES:
        hit = rule(t, bool(pass_fail_hint))
        if hit:
            return hit
    return {"rule": "text", "text": t}
