"""
Inline tag tokens ({{LT}}, {{SN}}, ...) and launch-number cells.
"""
import re
from typing import Dict, List, Optional

from fsop_text import TAG_TOKEN_RE, normalize_text

LAUNCH_TOKEN = "{{LT}}"
SERIAL_TOKEN = "{{SN}}"

# Keys a value for the token may have been stored under by older savers.
TOKEN_ALIASES = {
    LAUNCH_TOKEN: ("LT", "NUMERO_LANCEMENT", "launchNumber"),
    SERIAL_TOKEN: ("SN", "NUMERO_SERIE", "serialNumber"),
}

PLACEHOLDER_LABELS = {
    "LT": "Numéro de lancement",
    "SN": "Numéro de série",
    "N_CORDON": "Numéro de cordon",
    "REF_SILOG": "Référence SILOG",
}

LAUNCH_LABEL_RE = re.compile(r"\b(?:numero|num|n°|no|n)\.?\s*(?:de\s+|du\s+)?lancement\b")


def token_name(token: str) -> str:
    """'{{LT}}' -> 'LT'"""
    m = TAG_TOKEN_RE.fullmatch((token or "").strip())
    return m.group(1) if m else (token or "").strip("{} ")

def as_token(name: str) -> str:
    name = (name or "").strip()
    if TAG_TOKEN_RE.fullmatch(name):
        return name
    return "{{%s}}" % name.strip("{} ")

def placeholder_label(token: str) -> str:
    name = token_name(token)
    return PLACEHOLDER_LABELS.get(name, name.replace("_", " ").title())

def placeholder_value(placeholders: Optional[Dict[str, str]], token: str, recorded: Optional[Dict[str, str]] = None) -> str:
    """
    Value for a token: the token key itself, then its aliases, then any value
    recorded for it from other contexts (launch-number cells).
    """
    placeholders = placeholders or {}
    token = as_token(token)
    v = placeholders.get(token)
    if v:
        return str(v)
    for alias in TOKEN_ALIASES.get(token, ()):
        v = placeholders.get(alias) or placeholders.get(as_token(alias))
        if v:
            return str(v)
    if recorded and recorded.get(token):
        return str(recorded[token])
    return ""

def substitute_tokens(text: str, placeholders: Optional[Dict[str, str]] = None, recorded: Optional[Dict[str, str]] = None) -> List[Dict]:
    """
    'Lot {{LT}} / SN {{SN}}' ->
      [{"kind": "text", "text": "Lot "},
       {"kind": "placeholder", "token": "{{LT}}", "value": "..."}, ...]
    """
    text = text if isinstance(text, str) else ""
    segments: List[Dict] = []
    pos = 0
    for m in TAG_TOKEN_RE.finditer(text):
        if m.start() > pos:
            segments.append({"kind": "text", "text": text[pos:m.start()]})
        token = m.group(0)
        segments.append({"kind": "placeholder", "token": token, "value": placeholder_value(placeholders, token, recorded)})
        pos = m.end()
    if pos < len(text):
        segments.append({"kind": "text", "text": text[pos:]})
    return segments

def has_tokens(text: str) -> bool:
    return bool(TAG_TOKEN_RE.search(text or ""))

def is_launch_number_label(text: str) -> bool:
    return bool(LAUNCH_LABEL_RE.search(normalize_text(text)))

def is_launch_number_cell(header: str, previous_cell: str) -> bool:
    return is_launch_number_label(header) or is_launch_number_label(previous_cell)
