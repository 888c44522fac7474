"""
Tabular export of a Form State (one row per saved value) and of its
tagged measures, for the Excel transfer of measurements.

write_tagged_measures() pushes tagged measures into an existing measurement
workbook: the row is found by serial number, the column by the header whose
tag matches, and workbook-level named ranges are the fallback.
"""
import logging
import re
import shutil
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from fsop_placeholders import SERIAL_TOKEN, placeholder_value
from fsop_save import generate_tag, is_finite_number
from fsop_state import FormState
from fsop_text import normalize_text

logger = logging.getLogger(__name__)

STATE_COLUMNS = ["Kind", "Group", "Key", "Row", "Column", "Value"]
MEASURE_COLUMNS = ["Reference", "Tag", "Value"]

HEADER_SCAN_ROWS = 10
HEADER_MIN_CELLS = 3
TAG_MATCH_MIN_LEN = 4

SERIAL_HEADER_RE = re.compile(r"s/?n|num.*serie|no.*serie|\b(?:sn|serial)\b")
MEASURE_TAG_HEADER_RE = re.compile(r"\*\*[ilr][l_].*\*\*|il_|rl_|pi_")
_DIGITS_RE = re.compile(r"\D+")


class WorkbookError(RuntimeError):
    """The measurement workbook cannot be opened as an .xlsx file."""


def _sort_key(k: str):
    return (0, int(k), "") if str(k).isdigit() else (1, 0, str(k))

def form_state_frame(state: Union[FormState, Dict[str, Any]]) -> pd.DataFrame:
    if not isinstance(state, FormState):
        state = FormState.from_dict(state)
    rows: List[Dict[str, Any]] = []

    for token, value in state.placeholders.items():
        rows.append({"Kind": "placeholder", "Group": "", "Key": token, "Row": "", "Column": "", "Value": value})
    for ti in sorted(state.tables, key=_sort_key):
        for ri in sorted(state.tables[ti], key=_sort_key):
            for ci in sorted(state.tables[ti][ri], key=_sort_key):
                rows.append({"Kind": "table", "Group": ti, "Key": "", "Row": ri, "Column": ci,
                             "Value": state.tables[ti][ri][ci]})
    for group, entries in state.pass_fail.items():
        for label, value in entries.items():
            rows.append({"Kind": "pass_fail", "Group": group, "Key": label, "Row": "", "Column": "", "Value": value})
    for group, entries in state.checkboxes.items():
        for cb_id, checked in entries.items():
            rows.append({"Kind": "checkbox", "Group": group, "Key": cb_id, "Row": "", "Column": "",
                         "Value": "true" if checked else "false"})
    for group, entries in state.text_fields.items():
        for idx, value in entries.items():
            rows.append({"Kind": "text_field", "Group": group, "Key": idx, "Row": "", "Column": "", "Value": value})
    if state.reference:
        rows.append({"Kind": "reference", "Group": "", "Key": "", "Row": "", "Column": "", "Value": state.reference})
    for tag, value in state.tagged_measures.items():
        rows.append({"Kind": "measure", "Group": "", "Key": tag, "Row": "", "Column": "", "Value": value})

    return pd.DataFrame(rows, columns=STATE_COLUMNS)

def tagged_measures_frame(state: Union[FormState, Dict[str, Any]]) -> pd.DataFrame:
    if not isinstance(state, FormState):
        state = FormState.from_dict(state)
    rows = [{"Reference": state.reference, "Tag": tag, "Value": value}
            for tag, value in sorted(state.tagged_measures.items())]
    return pd.DataFrame(rows, columns=MEASURE_COLUMNS)

def write_frame(df: pd.DataFrame, path: Union[str, Path]) -> Path:
    """Writes .xlsx (or .csv); an Excel write that fails falls back to a .csv next to it."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = df.fillna("")
    if path.suffix.lower() in (".xlsx", ".xls"):
        try:
            df.to_excel(path.with_suffix(".xlsx"), index=False)
            return path.with_suffix(".xlsx")
        except (ImportError, ValueError, OSError) as e:
            fallback = path.with_suffix(".csv")
            logger.warning("Excel export failed (%s); writing %s instead", e, fallback)
            df.to_csv(fallback, index=False, encoding="utf-8-sig")
            return fallback
    df.to_csv(path, index=False, encoding="utf-8-sig")
    return path


# =========================
# Measurement workbook transfer
# =========================
def _cell_str(value) -> str:
    return "" if value is None else str(value).strip()

def _serial_digits(value) -> str:
    return _DIGITS_RE.sub("", _cell_str(value))

def _is_serial_header(text: str) -> bool:
    return bool(SERIAL_HEADER_RE.search(normalize_text(text)))

def detect_header_row(ws, max_scan_rows: int = HEADER_SCAN_ROWS) -> int:
    """
    1-based index of the header row: a row with measure-tag headers beats a
    row with serial/launch headers. Title rows above the header are skipped.
    """
    best_row, best_score = None, 0
    for r in range(1, min(max_scan_rows, ws.max_row) + 1):
        texts = [normalize_text(_cell_str(ws.cell(r, c).value)) for c in range(1, ws.max_column + 1)]
        texts = [t for t in texts if t]
        if len(texts) < HEADER_MIN_CELLS:
            continue
        if any(MEASURE_TAG_HEADER_RE.search(t) for t in texts):
            score = 100
        elif any(SERIAL_HEADER_RE.search(t) or "lancement" in t for t in texts):
            score = 50
        else:
            score = 0
        if score > best_score:
            best_row, best_score = r, score
    return best_row or 1

def find_tag_column(ws, tag: str, header_row: int = 1) -> Optional[int]:
    wanted = generate_tag(tag)
    if not wanted:
        return None
    for c in range(1, ws.max_column + 1):
        have = generate_tag(_cell_str(ws.cell(header_row, c).value))
        if not have:
            continue
        if have == wanted:
            return c
        if min(len(have), len(wanted)) >= TAG_MATCH_MIN_LEN and (have in wanted or wanted in have):
            return c
    return None

def find_serial_row(ws, serial_number: str, header_row: int = 1) -> Optional[int]:
    target = _serial_digits(serial_number)
    if not target:
        return None
    cols = [c for c in range(1, ws.max_column + 1) if _is_serial_header(_cell_str(ws.cell(header_row, c).value))]
    for r in range(header_row + 1, ws.max_row + 1):
        for c in cols:
            if _serial_digits(ws.cell(r, c).value) == target:
                return r
    return None

def _named_cell(wb, tag: str):
    defined = wb.defined_names.get(tag)
    if defined is None:
        return None
    for sheet, coord in defined.destinations:
        if sheet in wb.sheetnames:
            return wb[sheet][coord.replace("$", "").split(":")[0]]
    return None

def _excel_value(value: str):
    text = _cell_str(value).replace(",", ".", 1)
    return float(text) if is_finite_number(text) else value

def write_tagged_measures(workbook_path: Union[str, Path], state: Union[FormState, Dict[str, Any]],
                          serial_number: Optional[str] = None, force_replace: bool = False,
                          backup: bool = True) -> Dict[str, Any]:
    """
    Writes every tagged measure of the state into the measurement workbook.

    The row is the one holding the serial number (default: the {{SN}} value
    of the state) under the detected header row; the column is the header
    whose tag matches. Tags without such a column go to the workbook-level
    named range of the same name. Cells that already hold a value are left
    alone unless force_replace is set.

    Returns {"updated": [...], "missing": [...], "existing": {tag: {...}},
             "sheet": str, "row": int | None, "backup": str}.
    """
    if not isinstance(state, FormState):
        state = FormState.from_dict(state)
    path = Path(workbook_path)
    result: Dict[str, Any] = {"updated": [], "missing": [], "existing": {}, "sheet": "", "row": None, "backup": ""}
    if not state.tagged_measures:
        return result
    if not path.exists():
        raise FileNotFoundError(f"Workbook not found: {path}")
    try:
        wb = load_workbook(str(path))
    except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
        raise WorkbookError(f"Cannot open workbook {path}: {e}") from e

    serial = serial_number or placeholder_value(state.placeholders, SERIAL_TOKEN)
    ws, row, header_row = None, None, 1
    if serial:
        for sheet in wb.worksheets:
            hdr = detect_header_row(sheet)
            r = find_serial_row(sheet, serial, hdr)
            if r is not None:
                ws, row, header_row = sheet, r, hdr
                logger.info("Serial %s found in sheet %r (header row %d, row %d)", serial, sheet.title, hdr, r)
                break
        else:
            logger.warning("No row for serial number %s in %s; using named ranges only", serial, path.name)
    if ws is not None:
        result["sheet"], result["row"] = ws.title, row

    for tag, value in state.tagged_measures.items():
        cell, where = None, ""
        if ws is not None:
            col = find_tag_column(ws, tag, header_row)
            if col is not None:
                cell, where = ws.cell(row, col), f"{ws.title}!{ws.cell(row, col).coordinate}"
        if cell is None:
            cell = _named_cell(wb, tag)
            if cell is not None:
                where = f"{cell.parent.title}!{cell.coordinate}"
        if cell is None:
            result["missing"].append(tag)
            continue
        current = _cell_str(cell.value)
        if current and not force_replace:
            result["existing"][tag] = {"existing": current, "new": value, "location": where}
            logger.info("Kept existing value for %s at %s: %s (new %s)", tag, where, current, value)
            continue
        cell.value = _excel_value(value)
        result["updated"].append(tag)
        logger.debug("%s = %s at %s", tag, value, where)

    if result["updated"]:
        if backup:
            copy = path.with_name(f"{path.name}.backup.{datetime.now():%Y%m%d%H%M%S}")
            shutil.copy2(path, copy)
            result["backup"] = str(copy)
        wb.save(str(path))
    wb.close()
    logger.info("Tagged measures into %s: %d updated, %d missing, %d kept",
                path.name, len(result["updated"]), len(result["missing"]), len(result["existing"]))
    return result
