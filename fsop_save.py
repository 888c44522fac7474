"""
Save projection: live field values -> Form State.

Table values keep the table-index/row/column addressing of the layout,
starred measures (**12,5**) are unwrapped and re-keyed under a tag built from
their column header, and the result is merged over what was saved before so
columns the operator did not touch survive.
"""
import logging
import math
import re
from typing import Any, Dict, Optional

from fsop_columns import DATE, iso_to_display
from fsop_lots import CHANNEL_JOIN
from fsop_placeholders import LAUNCH_TOKEN
from fsop_state import FormState
from fsop_text import strip_accents

logger = logging.getLogger(__name__)

# Units kept in generated tags when found inside parentheses.
UNIT_TOKENS = {
    "mm", "cm", "m", "db", "°c", "°f", "°", "kg", "g", "mg", "µm", "um", "nm",
    "w", "mw", "ms", "s", "min", "h", "v", "a", "%", "bar",
}

STARRED_RE = re.compile(r"^\*\*(?P<value>.+)\*\*$", re.DOTALL)
ORDINAL_WORD_RE = re.compile(r"(\d+)\s*(?:ères?|eres?|ers?|èmes?|emes?|e)\s+([^\W\d_]+)", re.IGNORECASE)
ORDINAL_SUFFIX_RE = re.compile(r"(\d+)\s*(?:ères?|eres?|ers?|èmes?|emes?)\b", re.IGNORECASE)
PAREN_RE = re.compile(r"\(([^)]*)\)")
_NON_WORD_RE = re.compile(r"[^\w\s]")
_UNIT_SPLIT_RE = re.compile(r"\s*/\s*")


# =========================
# Tags
# =========================
def _is_unit(content: str) -> bool:
    parts = [p for p in _UNIT_SPLIT_RE.split(content.strip().lower()) if p]
    return bool(parts) and all(p in UNIT_TOKENS for p in parts)

def generate_tag(header: str) -> str:
    """
    '1ère jonction (mm)'  -> 'JONCTION1_MM'
    'Température (°C)'    -> 'TEMPERATURE_C'
    'Observation (libre)' -> 'OBSERVATION'
    """
    tag = (header or "").strip()
    if not tag:
        return ""
    tag = ORDINAL_WORD_RE.sub(lambda m: f"{m.group(2)}{m.group(1)}", tag)
    tag = ORDINAL_SUFFIX_RE.sub(r"\1", tag)
    tag = PAREN_RE.sub(lambda m: f" {m.group(1).strip().upper()} " if _is_unit(m.group(1)) else " ", tag)
    tag = strip_accents(tag).upper()
    tag = _NON_WORD_RE.sub("", tag)
    tag = re.sub(r"\s+", "_", tag.strip())
    tag = re.sub(r"_+", "_", tag)
    return tag.strip("_")


# =========================
# Starred measures
# =========================
def clean_starred(value: str) -> Optional[str]:
    """'**12,5**' -> '12.5'; None when the value is not starred."""
    m = STARRED_RE.match((value or "").strip())
    if not m:
        return None
    return m.group("value").strip().replace(",", ".", 1)

def is_finite_number(value: str) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


# =========================
# Projection
# =========================
def _segment_fields(segments):
    for seg in segments or []:
        if seg.get("kind") == "placeholder" and seg.get("address"):
            yield seg

def iter_fields(layout: Dict[str, Any]):
    """Every editable field of a layout, in document order."""
    for node in (layout or {}).get("nodes", []):
        ntype = node.get("type")
        if node.get("address"):
            yield node
        yield from _segment_fields(node.get("segments"))
        if ntype == "table":
            for cell in node.get("header") or []:
                yield from _segment_fields(cell.get("segments"))
            for row in node.get("rows", []):
                for cell in row:
                    if cell.get("address"):
                        yield cell
                    yield from _segment_fields(cell.get("segments"))

def _truthy(val) -> bool:
    if isinstance(val, str):
        return val.strip().lower() in {"1", "true", "yes", "y", "x", "✓", "checked", "on"}
    return bool(val)

def _field_value(field: Dict[str, Any], live: Any) -> str:
    if isinstance(live, (list, tuple)):
        parts = [str(v).strip() for v in live]
        return CHANNEL_JOIN.join(parts) if any(parts) else ""
    if live is None:
        return ""
    return str(live).strip()

def merge_tables(prior: Dict[str, Dict[str, Dict[str, str]]], fresh: Dict[str, Dict[str, Dict[str, str]]]) -> Dict:
    merged = {ti: {ri: dict(cols) for ri, cols in rows.items()} for ti, rows in (prior or {}).items()}
    for ti, rows in fresh.items():
        table = merged.setdefault(ti, {})
        for ri, cols in rows.items():
            table.setdefault(ri, {}).update(cols)
    return merged

def project_snapshot(layout: Dict[str, Any], snapshot: Optional[Dict[tuple, Any]] = None,
                     prior_state: Optional[FormState] = None) -> FormState:
    """
    Builds the Form State to save from a layout and the live values of its
    fields (snapshot keyed by field address; missing addresses keep the
    layout's initial value).
    """
    snapshot = snapshot or {}
    state = prior_state.copy() if prior_state is not None else FormState()
    tables: Dict[str, Dict[str, Dict[str, str]]] = {}
    measures: Dict[str, str] = {}
    launch_value = ""

    for field in iter_fields(layout):
        address = tuple(field["address"])
        live = snapshot.get(address, field.get("value"))
        kind = address[0]

        if kind == "cell":
            _, ti, ri, ci = address
            value = _field_value(field, live)
            if not value:
                continue
            if field.get("kind") == DATE:
                value = iso_to_display(value)
            unwrapped = clean_starred(value)
            if unwrapped is not None:
                value = unwrapped
                if is_finite_number(unwrapped):
                    tag = generate_tag(field.get("header", ""))
                    if tag:
                        if tag in measures and measures[tag] != unwrapped:
                            logger.debug("Tag %s overwritten: %s -> %s", tag, measures[tag], unwrapped)
                        measures[tag] = unwrapped
            tables.setdefault(str(ti), {}).setdefault(str(ri), {})[str(ci)] = value
            if field.get("bindsTo") == LAUNCH_TOKEN:
                launch_value = value

        elif kind == "placeholder":
            value = _field_value(field, live)
            if value or address[1] in state.placeholders:
                state.placeholders[address[1]] = value

        elif kind == "pass_fail":
            _, group, label = address
            value = _field_value(field, live).upper()
            if value in ("PASS", "FAIL"):
                state.pass_fail.setdefault(str(group), {})[label] = value

        elif kind == "checkbox":
            _, group, cb_id = address
            state.checkboxes.setdefault(str(group), {})[str(cb_id)] = _truthy(live)

        elif kind == "text_field":
            _, group, idx = address
            value = _field_value(field, live)
            if value or str(idx) in state.text_fields.get(str(group), {}):
                state.text_fields.setdefault(str(group), {})[str(idx)] = value

        elif kind == "reference":
            state.reference = _field_value(field, live)

    # an explicit edit of the token itself wins over the cell
    if launch_value and ("placeholder", LAUNCH_TOKEN) not in snapshot:
        state.placeholders[LAUNCH_TOKEN] = launch_value
    state.tables = merge_tables(state.tables, tables)
    state.tagged_measures.update(measures)
    logger.info("Projected %d table(s), %d tagged measure(s)", len(tables), len(measures))
    return state
