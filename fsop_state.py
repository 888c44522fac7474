"""
Form State aggregate, structure loading and validation.

Form State is what the operator fills in and what the Word injection service
consumes. Everything in `tables` is addressed as
    tables["<table index>"]["<row>"]["<col>"] = value
with string keys, the table index being the ordinal of the table among all
tables of the document.
"""
import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from fsop_placeholders import LAUNCH_TOKEN, SERIAL_TOKEN, placeholder_label, placeholder_value
from fsop_text import find_tag_tokens

logger = logging.getLogger(__name__)

REQUIRED_PLACEHOLDERS = (LAUNCH_TOKEN, SERIAL_TOKEN)


# =========================
# Errors
# =========================
class StructureLoadError(RuntimeError):
    """The document structure could not be obtained or parsed."""


class StructureShapeWarning(UserWarning):
    """Structure present but without blocks or sections."""


class ValidationError(Exception):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "invalid form")


# =========================
# Form State
# =========================
def _str_map(d: Any) -> Dict[str, str]:
    if not isinstance(d, dict):
        return {}
    return {str(k): ("" if v is None else str(v)) for k, v in d.items()}

def _group_map(d: Any) -> Dict[str, Dict[str, Any]]:
    if not isinstance(d, dict):
        return {}
    out: Dict[str, Dict[str, Any]] = {}
    for group, entries in d.items():
        if isinstance(entries, dict):
            out[str(group)] = {str(k): v for k, v in entries.items()}
    return out

def _tables_map(d: Any) -> Dict[str, Dict[str, Dict[str, str]]]:
    # JSON transports may have turned keys into ints or lists into dicts; normalize to str keys
    out: Dict[str, Dict[str, Dict[str, str]]] = {}
    if not isinstance(d, dict):
        return out
    for ti, rows in d.items():
        if isinstance(rows, list):
            rows = dict(enumerate(rows))
        if not isinstance(rows, dict):
            continue
        table = out.setdefault(str(ti), {})
        for ri, cols in rows.items():
            if isinstance(cols, list):
                cols = dict(enumerate(cols))
            if not isinstance(cols, dict):
                continue
            row = table.setdefault(str(ri), {})
            for ci, v in cols.items():
                if v is None:
                    continue
                row[str(ci)] = str(v)
    return out


class FormState:
    """Value map of one document-editing session."""

    def __init__(self):
        self.placeholders: Dict[str, str] = {}
        self.tables: Dict[str, Dict[str, Dict[str, str]]] = {}
        self.pass_fail: Dict[str, Dict[str, str]] = {}
        self.checkboxes: Dict[str, Dict[str, bool]] = {}
        self.text_fields: Dict[str, Dict[str, str]] = {}
        self.reference: str = ""
        self.tagged_measures: Dict[str, str] = {}
        self.operator_options: List[Dict[str, str]] = []

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "FormState":
        state = cls()
        data = data or {}
        state.placeholders = _str_map(data.get("placeholders"))
        state.tables = _tables_map(data.get("tables"))
        state.pass_fail = {g: _str_map(v) for g, v in _group_map(data.get("passFail")).items()}
        state.checkboxes = {g: {k: bool(v) for k, v in m.items()} for g, m in _group_map(data.get("checkboxes")).items()}
        state.text_fields = {g: _str_map(v) for g, v in _group_map(data.get("textFields")).items()}
        state.reference = str(data.get("reference") or "")
        state.tagged_measures = _str_map(data.get("taggedMeasures"))
        state.operator_options = [
            {"initials": str(o.get("initials", "")), "label": str(o.get("label", o.get("initials", "")))}
            for o in (data.get("operatorOptions") or []) if isinstance(o, dict)
        ]
        return state

    def to_dict(self) -> Dict[str, Any]:
        return {
            "placeholders": dict(self.placeholders),
            "tables": copy.deepcopy(self.tables),
            "passFail": copy.deepcopy(self.pass_fail),
            "checkboxes": copy.deepcopy(self.checkboxes),
            "textFields": copy.deepcopy(self.text_fields),
            "reference": self.reference,
            "taggedMeasures": dict(self.tagged_measures),
            "operatorOptions": copy.deepcopy(self.operator_options),
        }

    def copy(self) -> "FormState":
        return FormState.from_dict(self.to_dict())

    # --- cells ---
    def get_cell(self, table_idx: int, row: int, col: int) -> str:
        return self.tables.get(str(table_idx), {}).get(str(row), {}).get(str(col), "")

    def set_cell(self, table_idx: int, row: int, col: int, value: str) -> None:
        self.tables.setdefault(str(table_idx), {}).setdefault(str(row), {})[str(col)] = str(value)

    def clear_cell(self, table_idx: int, row: int, col: int) -> None:
        row_map = self.tables.get(str(table_idx), {}).get(str(row))
        if row_map is not None:
            row_map.pop(str(col), None)

    def __eq__(self, other):
        return isinstance(other, FormState) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return (f"FormState(placeholders={len(self.placeholders)}, tables={len(self.tables)}, "
                f"taggedMeasures={len(self.tagged_measures)})")


# =========================
# Structure loading
# =========================
def load_structure(source: Union[str, Path, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Accepts a structure mapping, a .json file or a .docx template.
    Raises StructureLoadError when nothing usable comes back.
    """
    if isinstance(source, dict):
        data = source
    else:
        path = Path(source)
        if not path.exists():
            raise StructureLoadError(f"Structure file not found: {path}")
        if path.suffix.lower() == ".docx":
            from docx_blocks import extract_blocks
            try:
                data = {"blocks": extract_blocks(path), "metadata": {"source": path.name}}
            except Exception as e:
                raise StructureLoadError(f"Cannot read DOCX {path}: {e}") from e
        else:
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
                raise StructureLoadError(f"Cannot parse structure {path}: {e}") from e

    if not isinstance(data, dict):
        raise StructureLoadError(f"Structure must be a mapping, got {type(data).__name__}")
    # API responses sometimes wrap the payload
    if isinstance(data.get("structure"), dict):
        data = data["structure"]
    return data

def structure_shape(structure: Optional[Dict[str, Any]]) -> Tuple[str, List]:
    """('blocks', [...]) | ('sections', [...]) | ('empty', [])"""
    structure = structure or {}
    blocks = structure.get("blocks")
    if isinstance(blocks, list) and blocks:
        return "blocks", blocks
    sections = structure.get("sections")
    if isinstance(sections, list) and sections:
        return "sections", sections
    logger.warning("%s: structure has no blocks or sections, rendering an empty form",
                   StructureShapeWarning.__name__)
    return "empty", []

def _block_texts(blocks: List) -> List[str]:
    texts = []
    for b in blocks:
        if not isinstance(b, dict):
            continue
        if b.get("type") == "paragraph":
            texts.append(str(b.get("text") or ""))
        elif b.get("type") == "table":
            for row in b.get("rows") or []:
                for cell in row or []:
                    texts.append(str(cell.get("text", "") if isinstance(cell, dict) else cell or ""))
    return texts

def structure_placeholders(structure: Optional[Dict[str, Any]]) -> List[str]:
    """Tokens the template declares, or those found in its blocks."""
    structure = structure or {}
    declared = structure.get("placeholders")
    if isinstance(declared, list) and declared:
        return [str(p) for p in declared]
    found: List[str] = []
    for text in _block_texts(structure.get("blocks") or []):
        for token in find_tag_tokens(text):
            if token not in found:
                found.append(token)
    return found


# =========================
# Validation
# =========================
def validate(state: FormState, structure: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Required tokens ({{LT}}, {{SN}}) that the template uses must carry a value.
    Without a structure every required token is checked.
    """
    if structure is None:
        required = list(REQUIRED_PLACEHOLDERS)
    else:
        used = structure_placeholders(structure)
        required = [t for t in REQUIRED_PLACEHOLDERS if t in used]

    errors = []
    for token in required:
        if not placeholder_value(state.placeholders, token).strip():
            errors.append(f"{placeholder_label(token)} est requis")
    return {"valid": not errors, "errors": errors}
