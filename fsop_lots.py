"""
Lot inference for component/lot tables.

Reference data comes from the ERP association service:
    {"lines": [{"codeOperation", "codeRubrique", "uniqueLot"}],
     "items": [{"codeRubrique", "lots"}],
     "uniqueLots": [...]}

For each row of an eligible table the resolver tries an ordered list of
strategies; the first one that yields a lot wins. Rows it cannot settle
stay blank, or get a choice list when several candidate lots exist.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from rapidfuzz import fuzz, process

from fsop_text import extract_operation_code, normalize_text, strip_accents

logger = logging.getLogger(__name__)

# Eligibility of a table for auto-fill, by header text (normalized).
LOT_TABLE_POLICY = {
    "require": ("composant", "lot"),
    "exclude": ("collage",),
}
FUZZY_MIN_LEN = 8
HINT_MIN_LEN = 3
CHANNEL_COUNT = 3
CHANNEL_JOIN = " / "

_PAREN_RE = re.compile(r"\(([^()]*)\)")
_KEY_STRIP_RE = re.compile(r"[^A-Z0-9]+")
_CHANNEL_SPLIT_RE = re.compile(r"\s*(?:\n|/|;)\s*")


# =========================
# Normalization helpers
# =========================
def norm_key(s: str) -> str:
    """'Connecteur (LC-PC)' -> 'CONNECTEURLCPC'"""
    return _KEY_STRIP_RE.sub("", strip_accents(str(s or "")).upper())

def parenthetical_hints(text: str) -> List[str]:
    hints = []
    for raw in _PAREN_RE.findall(str(text or "")):
        k = norm_key(raw)
        if k and k not in hints:
            hints.append(k)
    return hints

def is_lot_table(header_text: str, policy: Dict[str, Tuple[str, ...]] = LOT_TABLE_POLICY) -> bool:
    h = normalize_text(header_text)
    if not h:
        return False
    if any(word in h for word in policy.get("exclude", ())):
        return False
    return all(word in h for word in policy.get("require", ()))

def split_channels(component_text: str) -> List[str]:
    parts = [p.strip() for p in _CHANNEL_SPLIT_RE.split(str(component_text or "")) if p.strip()]
    return parts if len(parts) == CHANNEL_COUNT else []

def _as_list(v) -> List[str]:
    if v is None:
        return []
    if isinstance(v, str):
        return [v.strip()] if v.strip() else []
    if isinstance(v, Iterable):
        return [str(x).strip() for x in v if str(x or "").strip()]
    return []


# =========================
# Index
# =========================
class LotIndex:
    """Lookup tables built from one snapshot of the ERP lot data."""

    def __init__(self):
        self.unique_lots: List[str] = []
        self.by_operation: Dict[str, Dict[str, Set[str]]] = {}
        self.direct: Dict[str, str] = {}
        self.catalogue: Dict[str, List[str]] = {}

    @classmethod
    def from_data(cls, data: Optional[Dict[str, Any]]) -> "LotIndex":
        idx = cls()
        data = data or {}
        for lot in _as_list(data.get("uniqueLots")):
            if lot not in idx.unique_lots:
                idx.unique_lots.append(lot)

        for line in data.get("lines") or []:
            if not isinstance(line, dict):
                continue
            op = extract_operation_code(line.get("codeOperation", "")) or str(line.get("codeOperation") or "").strip()
            item = norm_key(line.get("codeRubrique", ""))
            lot = str(line.get("uniqueLot") or "").strip()
            if not (op and item and lot):
                continue
            idx.by_operation.setdefault(op, {}).setdefault(item, set()).add(lot)

        for it in data.get("items") or []:
            if not isinstance(it, dict):
                continue
            item = norm_key(it.get("codeRubrique", ""))
            if not item:
                continue
            lots = idx.catalogue.setdefault(item, [])
            for lot in _as_list(it.get("lots")):
                if lot not in lots:
                    lots.append(lot)

        # ambiguous items never enter the direct map
        idx.direct = {item: lots[0] for item, lots in idx.catalogue.items() if len(lots) == 1}
        logger.debug(
            "Lot index: %d unique lot(s), %d operation(s), %d direct item(s)",
            len(idx.unique_lots), len(idx.by_operation), len(idx.direct),
        )
        return idx

    def operation_lots(self, operation_code: str, key: str) -> Set[str]:
        return self.by_operation.get(operation_code or "", {}).get(key, set())


# =========================
# Strategies
# =========================
def _only(lots: Iterable[str]) -> Optional[str]:
    distinct = sorted(set(lots))
    return distinct[0] if len(distinct) == 1 else None

def _longest_inclusion(query: str, keys: Iterable[str], min_len: int = 0) -> Optional[str]:
    best, best_len = None, 0
    for key in sorted(keys):
        if not query or not key:
            continue
        shorter = min(len(query), len(key))
        if shorter < min_len:
            continue
        if query in key or key in query:
            if shorter > best_len:
                best, best_len = key, shorter
    return best

def _by_unique_lot(index: LotIndex, component: str, operation_code: str) -> Optional[str]:
    if len(index.unique_lots) == 1:
        return index.unique_lots[0]
    return None

def _by_operation(index: LotIndex, component: str, operation_code: str) -> Optional[str]:
    if not operation_code:
        return None
    for key in parenthetical_hints(component) + [norm_key(component)]:
        lot = _only(index.operation_lots(operation_code, key))
        if lot:
            return lot
    return None

def _by_exact_item(index: LotIndex, component: str, operation_code: str) -> Optional[str]:
    for key in [norm_key(component)] + parenthetical_hints(component):
        if key in index.direct:
            return index.direct[key]
    return None

def _by_hint_inclusion(index: LotIndex, component: str, operation_code: str) -> Optional[str]:
    best_key, best_len = None, 0
    for hint in parenthetical_hints(component):
        if len(hint) < HINT_MIN_LEN:
            continue
        key = _longest_inclusion(hint, index.direct.keys())
        if key and min(len(key), len(hint)) > best_len:
            best_key, best_len = key, min(len(key), len(hint))
    return index.direct[best_key] if best_key else None

def _by_fuzzy_inclusion(index: LotIndex, component: str, operation_code: str) -> Optional[str]:
    query = norm_key(component)
    if len(query) < FUZZY_MIN_LEN or not index.direct:
        return None
    # partial_ratio == 100 means one side is contained in the other
    hits = process.extract(query, list(index.direct.keys()), scorer=fuzz.partial_ratio, score_cutoff=100, limit=None)
    key = _longest_inclusion(query, [h[0] for h in hits], min_len=FUZZY_MIN_LEN)
    return index.direct[key] if key else None

LOT_STRATEGIES = (
    ("unique_lot", _by_unique_lot),
    ("operation_index", _by_operation),
    ("exact_item", _by_exact_item),
    ("hint_inclusion", _by_hint_inclusion),
    ("fuzzy_inclusion", _by_fuzzy_inclusion),
)


# =========================
# Resolver
# =========================
class LotResolver:
    """Resolves a prefill lot for a component cell under the current operation code."""

    def __init__(self, index: LotIndex, strategies=LOT_STRATEGIES):
        self.index = index
        self.strategies = strategies

    @classmethod
    def from_data(cls, data: Optional[Dict[str, Any]]) -> "LotResolver":
        return cls(LotIndex.from_data(data))

    def resolve(self, component_text: str, operation_code: str = "") -> Optional[str]:
        for name, strategy in self.strategies:
            lot = strategy(self.index, component_text or "", operation_code or "")
            if lot:
                logger.debug("Lot %s for %r via %s", lot, component_text, name)
                return lot
        return None

    def candidates(self, component_text: str, operation_code: str = "") -> List[str]:
        """All lots a row could plausibly take, in a stable order."""
        idx = self.index
        found: List[str] = []

        def _add(lots):
            for lot in sorted(set(lots)):
                if lot not in found:
                    found.append(lot)

        if len(idx.unique_lots) == 1:
            return list(idx.unique_lots)
        keys = [norm_key(component_text)] + parenthetical_hints(component_text)
        if operation_code:
            for key in keys:
                _add(idx.operation_lots(operation_code, key))
        for key in keys:
            _add(idx.catalogue.get(key, []))
        for hint in parenthetical_hints(component_text):
            if len(hint) < HINT_MIN_LEN:
                continue
            for item, lots in idx.catalogue.items():
                if hint in item or item in hint:
                    _add(lots)
        query = norm_key(component_text)
        if len(query) >= FUZZY_MIN_LEN:
            for item, lots in idx.catalogue.items():
                if min(len(item), len(query)) >= FUZZY_MIN_LEN and (item in query or query in item):
                    _add(lots)
        if not found:
            _add(idx.unique_lots)
        return found

    def resolve_cell(self, component_text: str, operation_code: str = "") -> Dict[str, Any]:
        """
        Field seed for one lot cell:
          {"value": lot or "", "options": [...], "channels": [...]}
        Multi-channel rows get one entry per channel sharing the candidate set.
        """
        options = self.candidates(component_text, operation_code)
        channels = split_channels(component_text)
        if channels:
            # every channel shares the candidate set: one candidate fills it, several give a choice
            single = len(options) == 1
            out = [{"channel": label, "value": options[0] if single else "", "options": [] if single else list(options)}
                   for label in channels]
            return {"value": "", "options": options, "channels": out}
        value = self.resolve(component_text, operation_code) or ""
        return {"value": value, "options": [] if (value or len(options) < 2) else options, "channels": []}
