# docx_blocks.py
"""
.docx template -> ordered block list (paragraphs, tables, page breaks).

Tables come out as cell matrices in Word's own table order, which is the
order the injection service counts tables in:
    {"type": "table", "id": <1-based>, "rows": [[{"text", "colspan"?, "rowspan"?, "fill"?}, ...]]}
Vertically merged continuation cells are left out of their row.
"""
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Union

from docx import Document
from docx.oxml.ns import qn
from docx.oxml.table import CT_Tbl
from docx.oxml.text.paragraph import CT_P
from docx.table import Table, _Cell
from docx.text.paragraph import Paragraph

from fsop_text import CHECKBOX_RE, PASS_FAIL_RE

logger = logging.getLogger(__name__)

CHECKBOX_GLYPHS = ("☐", "□", "☑", "☒", "✓")


# =========================
# Body iteration
# =========================
def _iter_block_items(doc) -> Iterator[Union[Paragraph, Table]]:
    parent_elm = doc.element.body
    for child in parent_elm.iterchildren():
        if isinstance(child, CT_P):
            yield Paragraph(child, doc)
        elif isinstance(child, CT_Tbl):
            yield Table(child, doc)

def _has_page_break(par: Paragraph) -> bool:
    for br in par._p.iter(qn("w:br")):
        if br.get(qn("w:type")) == "page":
            return True
    return False


# =========================
# Cells
# =========================
def _cell_text(tc, table: Table) -> str:
    cell = _Cell(tc, table)
    return "\n".join(p.text for p in cell.paragraphs).strip()

def _cell_fill(tc) -> str:
    tcPr = tc.tcPr
    if tcPr is None:
        return ""
    shd = tcPr.find(qn("w:shd"))
    if shd is None:
        return ""
    fill = shd.get(qn("w:fill")) or ""
    return "" if fill.lower() in ("", "auto", "ffffff") else f"#{fill}"

def _grid_rows(table: Table) -> List[List[Dict]]:
    """Per row: [{"grid", "tc", "span", "vmerge"}] in grid order."""
    rows = []
    for tr in table._tbl.tr_lst:
        grid = 0
        cells = []
        for tc in tr.tc_lst:
            span = tc.grid_span or 1
            cells.append({"grid": grid, "tc": tc, "span": span, "vmerge": tc.vMerge})
            grid += span
        rows.append(cells)
    return rows

def _rowspan(rows: List[List[Dict]], ri: int, grid: int) -> int:
    n = 1
    for below in rows[ri + 1:]:
        hit = next((c for c in below if c["grid"] == grid), None)
        if hit is None or hit["vmerge"] != "continue":
            break
        n += 1
    return n

def table_rows(table: Table) -> List[List[Dict]]:
    grid_rows = _grid_rows(table)
    out = []
    for ri, cells in enumerate(grid_rows):
        row = []
        for c in cells:
            if c["vmerge"] == "continue":
                continue
            cell = {"text": _cell_text(c["tc"], table)}
            if c["span"] > 1:
                cell["colspan"] = c["span"]
            if c["vmerge"] == "restart":
                span = _rowspan(grid_rows, ri, c["grid"])
                if span > 1:
                    cell["rowspan"] = span
            fill = _cell_fill(c["tc"])
            if fill:
                cell["fill"] = fill
            row.append(cell)
        out.append(row)
    return out


# =========================
# Document
# =========================
def _paragraph_block(par: Paragraph) -> Dict:
    text = par.text or ""
    stripped = text.strip()
    return {
        "type": "paragraph",
        "text": stripped,
        "hasCheckbox": bool(CHECKBOX_RE.match(stripped)) or any(g in stripped for g in CHECKBOX_GLYPHS),
        "hasPassFail": bool(PASS_FAIL_RE.match(stripped)),
    }

def extract_blocks(path: Union[str, Path]) -> List[Dict]:
    doc = Document(str(path))
    blocks: List[Dict] = []
    table_id = 0
    for item in _iter_block_items(doc):
        if isinstance(item, Paragraph):
            blocks.append(_paragraph_block(item))
            if _has_page_break(item):
                blocks.append({"type": "page_break"})
        else:
            table_id += 1
            blocks.append({"type": "table", "id": table_id, "rows": table_rows(item)})
    logger.info("Extracted %d block(s), %d table(s) from %s", len(blocks), table_id, Path(path).name)
    return blocks
