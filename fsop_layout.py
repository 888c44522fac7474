"""
Block classifier / layout synthesizer.

One forward pass over the document blocks turns them into layout nodes:

    {"type": "heading", "number", "title", "display", "auto"}
    {"type": "subheading", "text"}
    {"type": "pass_fail", "address", "label", "value", "options"}
    {"type": "checkbox", "address", "label", "value"}
    {"type": "text", "segments"}
    {"type": "table", "tableIndex", "header", "rows", ...}
    {"type": "spacer"}

Every editable thing carries an `address` tuple; fsop_save walks the layout
by those addresses to build the Form State back.

The pass keeps its running state (heading counter, current operation code,
checkbox sequence, table ordinal) in an explicit ScanContext.
"""
import logging
from typing import Any, Dict, List, Optional

from fsop_banner import cell_text, extract_banners
from fsop_columns import (
    DATE, OPERATOR, TIME,
    column_kind, column_kinds, header_placeholder, initial_date, initial_time,
    is_blank_cell, is_fixed_label, is_header_row,
)
from fsop_lots import CHANNEL_JOIN, LotResolver, is_lot_table
from fsop_placeholders import (
    LAUNCH_TOKEN, is_launch_number_cell, is_launch_number_label,
    placeholder_label, placeholder_value, substitute_tokens,
)
from fsop_state import FormState, structure_placeholders, structure_shape
from fsop_text import (
    classify_paragraph, extract_operation_code, has_operation_marker,
    heading_number, looks_like_heading, match_numbered_heading, normalize_text,
    strip_heading_colon,
)

logger = logging.getLogger(__name__)

LOT = "lot"
LAUNCH = "launch"
WORDLIKE_GROUP = "wordlike"
PASS_FAIL_OPTIONS = ("PASS", "FAIL")
DEFAULT_TITLE = "Formulaire FSOP"


# =========================
# Scan context
# =========================
class ScanContext:
    """Running state of one render pass."""

    def __init__(self):
        self.counter = 0
        self.operation_code = ""
        self.checkbox_seq = 0
        self.table_ordinal = 0
        self.numbers: List[int] = []
        self.recorded: Dict[str, str] = {}

    def bump_to(self, n: int) -> int:
        self.counter = max(self.counter, n)
        self.numbers.append(self.counter)
        return self.counter

    def next_number(self) -> int:
        self.counter += 1
        self.numbers.append(self.counter)
        return self.counter

    def next_checkbox_id(self) -> str:
        self.checkbox_seq += 1
        return f"cb_{self.checkbox_seq}"

    def next_table(self) -> int:
        idx = self.table_ordinal
        self.table_ordinal += 1
        return idx

    def note_operation(self, text: str) -> None:
        code = extract_operation_code(text)
        if code and code != self.operation_code:
            logger.debug("Operation context %s -> %s", self.operation_code or "-", code)
            self.operation_code = code


# =========================
# Small helpers
# =========================
def _span_attrs(cell) -> Dict[str, Any]:
    if not isinstance(cell, dict):
        return {}
    out = {}
    for key in ("colspan", "rowspan"):
        try:
            n = int(cell.get(key) or 1)
        except (TypeError, ValueError):
            n = 1
        if n > 1:
            out[key] = n
    fill = cell.get("fill") or cell.get("fillColor")
    if fill:
        out["fill"] = str(fill)
    return out

def _find_col(header_texts: List[str], word: str, exclude: str = "") -> Optional[int]:
    for i, h in enumerate(header_texts):
        n = normalize_text(h)
        if word in n and not (exclude and exclude in n):
            return i
    return None

def _raw_text(cell) -> str:
    # keeps line breaks; multi-channel component cells are split on them
    if isinstance(cell, dict):
        return str(cell.get("text") or "").strip()
    return str(cell or "").strip() if isinstance(cell, str) else ""

def _fallback_text(text: str) -> Dict[str, Any]:
    return {"type": "text", "segments": [{"kind": "text", "text": text}]}

def _block_text(block) -> str:
    if not isinstance(block, dict):
        return ""
    if block.get("type") == "table":
        return " | ".join(cell_text(c) for row in block.get("rows") or [] for c in (row or []))
    return str(block.get("text") or "")


# =========================
# Builder
# =========================
class LayoutBuilder:
    """
    Turns a document structure into an editable layout seeded from the saved
    Form State, lot data and operator list.
    """

    def __init__(self, state: Optional[FormState] = None, lot_data: Optional[Dict[str, Any]] = None,
                 operator_options: Optional[List[Dict[str, str]]] = None,
                 positional_launch_fallback: bool = False):
        self.state = state or FormState()
        self.lot_data = lot_data or {}
        self.operator_options = list(operator_options if operator_options is not None else self.state.operator_options)
        self.positional_launch_fallback = positional_launch_fallback
        self._lots: Optional[LotResolver] = None

    # ---- entry points ----
    def build(self, structure) -> Dict[str, Any]:
        """Accepts a structure mapping or a bare block list."""
        ctx = ScanContext()
        # lot index is rebuilt on every render
        self._lots = LotResolver.from_data(self.lot_data)

        if isinstance(structure, list):
            structure = {"blocks": structure}
        structure = structure or {}
        mode, items = structure_shape(structure)

        nodes: List[Dict[str, Any]] = [self._reference_node(structure)]
        if mode == "blocks":
            nodes.extend(self.build_blocks(items, ctx))
        elif mode == "sections":
            nodes.extend(build_legacy_layout(self, structure, ctx))

        layout = {
            "mode": mode,
            "title": document_title(structure),
            "nodes": nodes,
            "numbers": list(ctx.numbers),
            "tableCount": ctx.table_ordinal,
            "placeholders": structure_placeholders(structure),
        }
        logger.info("Rendered %s layout: %d node(s), %d table(s)", mode, len(nodes), ctx.table_ordinal)
        return layout

    def build_blocks(self, blocks: List, ctx: Optional[ScanContext] = None) -> List[Dict[str, Any]]:
        ctx = ctx or ScanContext()
        if self._lots is None:
            self._lots = LotResolver.from_data(self.lot_data)
        nodes: List[Dict[str, Any]] = []
        for pos, block in enumerate(blocks or []):
            btype = block.get("type") if isinstance(block, dict) else None
            if btype == "page_break":
                continue
            try:
                if btype == "paragraph":
                    nodes.append(self._paragraph_node(block, ctx))
                elif btype == "table":
                    nodes.extend(self._table_nodes(block, ctx))
                else:
                    logger.debug("Block %d ignored (type=%r)", pos, btype)
            except Exception:
                logger.warning("Block %d could not be classified; rendered as text", pos, exc_info=True)
                nodes.append(_fallback_text(_block_text(block)))
        return nodes

    # ---- shared node makers ----
    def segments(self, text: str, ctx: Optional[ScanContext] = None) -> List[Dict[str, Any]]:
        recorded = ctx.recorded if ctx else None
        segs = substitute_tokens(text, self.state.placeholders, recorded)
        for seg in segs:
            if seg["kind"] == "placeholder":
                seg["address"] = ("placeholder", seg["token"])
        return segs

    def _reference_node(self, structure: Dict[str, Any]) -> Dict[str, Any]:
        ref = structure.get("reference") if isinstance(structure.get("reference"), dict) else {}
        value = self.state.reference or str(ref.get("value") or "") or str(ref.get("placeholder") or "")
        return {"type": "reference", "address": ("reference",), "label": "Référence", "value": value}

    def _numbered_heading(self, num: str, title: str, ctx: ScanContext) -> Dict[str, Any]:
        ctx.bump_to(heading_number(num))
        return {
            "type": "heading", "number": num, "title": title, "auto": False,
            "display": f"{num}. {title}", "segments": self.segments(title, ctx),
        }

    def _auto_heading(self, title: str, ctx: ScanContext) -> Dict[str, Any]:
        n = ctx.next_number()
        return {
            "type": "heading", "number": str(n), "title": title, "auto": True,
            "display": f"{n}. {title}", "segments": self.segments(title, ctx),
        }

    # ---- paragraphs ----
    def _paragraph_node(self, block: Dict[str, Any], ctx: ScanContext) -> Dict[str, Any]:
        text = str(block.get("text") or "")
        if not text.strip():
            return {"type": "spacer"}
        ctx.note_operation(text)
        hint = bool(block.get("hasPassFail") or block.get("hasPassFailHint"))
        hit = classify_paragraph(text, hint)
        rule = hit["rule"]

        if rule == "numbered_heading":
            return self._numbered_heading(hit["number"], hit["title"], ctx)
        if rule in ("operation_heading", "colon_heading"):
            return self._auto_heading(hit["title"], ctx)
        if rule == "pass_fail":
            label = hit["label"]
            saved = self.state.pass_fail.get(WORDLIKE_GROUP, {}).get(label, "")
            return {
                "type": "pass_fail", "address": ("pass_fail", WORDLIKE_GROUP, label),
                "label": label, "options": list(PASS_FAIL_OPTIONS),
                "value": saved if saved in PASS_FAIL_OPTIONS else "",
            }
        if rule == "checkbox":
            cb_id = ctx.next_checkbox_id()
            saved = self.state.checkboxes.get(WORDLIKE_GROUP, {}).get(cb_id)
            return {
                "type": "checkbox", "address": ("checkbox", WORDLIKE_GROUP, cb_id),
                "id": cb_id, "label": hit["label"],
                "value": bool(saved) if saved is not None else hit["checked"],
            }
        return {"type": "text", "segments": self.segments(text.strip(), ctx)}

    # ---- tables ----
    def _banner_node(self, text: str, ctx: ScanContext) -> Dict[str, Any]:
        ctx.note_operation(text)
        hit = match_numbered_heading(text)
        if hit:
            return self._numbered_heading(hit[0], hit[1], ctx)
        if looks_like_heading(text) or has_operation_marker(text):
            return self._auto_heading(strip_heading_colon(text), ctx)
        return {"type": "subheading", "text": text, "segments": self.segments(text, ctx)}

    def _table_nodes(self, block: Dict[str, Any], ctx: ScanContext) -> List[Dict[str, Any]]:
        table_idx = ctx.next_table()
        rows = [r for r in (block.get("rows") or []) if isinstance(r, (list, tuple))]
        banners, rest = extract_banners(rows)
        nodes = [self._banner_node(b, ctx) for b in banners]
        # step rows such as "Collage MO 1336 ind A" set the operation for this table and the next ones
        for row in rest:
            for cell in row:
                ctx.note_operation(cell_text(cell))

        header_row, body = None, rest
        if rest and is_header_row([cell_text(c) for c in rest[0]]):
            header_row, body = rest[0], rest[1:]
        header_texts = [cell_text(c) for c in header_row] if header_row else []
        width = max((len(r) for r in rest), default=0)
        kinds = column_kinds(header_texts, width)

        lot_table = bool(header_texts) and is_lot_table(" ".join(header_texts))
        lot_cols = {
            "component": _find_col(header_texts, "composant"),
            "lot": _find_col(header_texts, "lot", exclude="composant"),
        } if lot_table else None

        table = {
            "type": "table",
            "tableIndex": table_idx,
            "blockId": block.get("id"),
            "banners": banners,
            "header": [
                dict(text=t, kind=kinds[i], segments=self.segments(t, ctx), **_span_attrs(header_row[i]))
                for i, t in enumerate(header_texts)
            ] if header_row else None,
            "columnKinds": kinds,
            "lotTable": lot_table,
            "operationCode": ctx.operation_code,
            "rows": [],
        }
        for r, row in enumerate(body):
            row_texts = [cell_text(c) for c in row]
            cells = []
            for c, cell in enumerate(row):
                header = header_texts[c] if c < len(header_texts) else ""
                try:
                    cells.append(self._cell_node(cell, ctx, table_idx, r, c, header, kinds[c], row, row_texts, lot_cols))
                except Exception:
                    logger.warning("Table %d cell (%d, %d) could not be classified; blank field",
                                   table_idx, r, c, exc_info=True)
                    cells.append(self._text_field(table_idx, r, c, header, cell, ""))
            table["rows"].append(cells)
        nodes.append(table)
        logger.debug("Table %d: %d banner(s), header=%s, %d body row(s), lot=%s",
                     table_idx, len(banners), bool(header_row), len(body), lot_table)
        return nodes

    def _text_field(self, t: int, r: int, c: int, header: str, cell, value: str) -> Dict[str, Any]:
        node = {
            "role": "field", "kind": "text", "address": ("cell", t, r, c),
            "row": r, "col": c, "header": header, "text": cell_text(cell),
            "value": value, "placeholder": header_placeholder(header),
        }
        node.update(_span_attrs(cell))
        return node

    def _positional_launch(self, t: int, r: int, c: int) -> bool:
        return self.positional_launch_fallback and (t, r, c) == (0, 0, 1)

    def _cell_node(self, cell, ctx: ScanContext, t: int, r: int, c: int, header: str, kind: str,
                   row: List, row_texts: List[str], lot_cols: Optional[Dict[str, Optional[int]]]) -> Dict[str, Any]:
        text = cell_text(cell)
        saved = self.state.get_cell(t, r, c)
        if text and not saved and is_fixed_label(text, header, c):
            node = {"role": "label", "row": r, "col": c, "header": header, "text": text}
            node.update(_span_attrs(cell))
            return node

        node = self._text_field(t, r, c, header, cell, saved)
        prev = row_texts[c - 1] if c > 0 else ""
        own_label = is_launch_number_label(text)

        if not own_label and (is_launch_number_cell(header, prev) or self._positional_launch(t, r, c)):
            if saved:
                ctx.recorded[LAUNCH_TOKEN] = saved
            node.update(kind=LAUNCH, bindsTo=LAUNCH_TOKEN,
                        value=saved or placeholder_value(self.state.placeholders, LAUNCH_TOKEN, ctx.recorded))
            return node

        if kind == DATE:
            node.update(kind=DATE, value=initial_date(saved, text), placeholder="JJ/MM/AAAA")
            return node
        if kind == TIME:
            node.update(kind=TIME, value=initial_time(saved, text), placeholder="HH:MM")
            return node
        if kind == OPERATOR:
            node.update(kind=OPERATOR, value=saved or ("" if is_blank_cell(text) else text),
                        options=list(self.operator_options))
            return node

        if lot_cols and lot_cols.get("lot") == c:
            comp_col = lot_cols.get("component")
            component = _raw_text(row[comp_col]) if comp_col is not None and comp_col < len(row) else ""
            return self._lot_field(node, component, text, saved, ctx)

        if is_blank_cell(text) or saved:
            return node

        static = {"role": "static", "row": r, "col": c, "header": header, "text": text,
                  "segments": self.segments(text, ctx)}
        static.update(_span_attrs(cell))
        return static

    def _lot_field(self, node: Dict[str, Any], component: str, text: str, saved: str, ctx: ScanContext) -> Dict[str, Any]:
        seed = self._lots.resolve_cell(component, ctx.operation_code)
        channels = seed["channels"]
        if channels:
            saved_parts = [p.strip() for p in saved.split(CHANNEL_JOIN.strip())] if saved else []
            for i, ch in enumerate(channels):
                if i < len(saved_parts):
                    ch["value"] = saved_parts[i]
            value = saved or CHANNEL_JOIN.join(ch["value"] for ch in channels if ch["value"])
            if not saved and any(not ch["value"] for ch in channels):
                value = ""
        else:
            value = saved or ("" if is_blank_cell(text) else text) or seed["value"]
        node.update(kind=LOT, value=value, options=seed["options"], channels=channels,
                    component=component, inferred=seed["value"] if not channels else "")
        return node


# =========================
# Legacy "sections" structures
# =========================
def document_title(structure: Dict[str, Any]) -> str:
    title = str(structure.get("documentTitle") or "").strip()
    if title:
        return title
    source = str((structure.get("metadata") or {}).get("source") or "").strip()
    if source.lower().endswith(".docx"):
        source = source[:-5]
    return source or DEFAULT_TITLE

def section_display_title(section: Dict[str, Any]) -> str:
    sid = section.get("id")
    title = str(section.get("title") or "").strip()
    if not title or (normalize_text(title).startswith("section ") and title.split()[-1].isdigit()):
        return "Général : Composant" if sid == 0 else f"Section {sid}"
    if sid != 0 and not title[:1].isdigit():
        return f"{sid}- {title}"
    return title

def _legacy_column_kind(column: Dict[str, Any]) -> str:
    ctype = str(column.get("type") or "").lower()
    if ctype in (DATE, TIME, OPERATOR):
        return ctype
    return column_kind(column.get("name", ""))

def _legacy_table(builder: LayoutBuilder, table: Dict[str, Any], ctx: ScanContext) -> Dict[str, Any]:
    t = ctx.next_table()
    state = builder.state
    columns = [c if isinstance(c, dict) else {"name": str(c)} for c in table.get("columns") or []]
    if not columns:
        columns = [{"name": str(h)} for h in table.get("headers") or []]
    headers = [str(h) for h in (table.get("headers") or [c.get("name", "") for c in columns])]
    kinds = [_legacy_column_kind(c) for c in columns]
    data_rows = table.get("rows") or []

    rows = []
    for r in range(max(len(data_rows), 1)):
        row_data = data_rows[r] if r < len(data_rows) and isinstance(data_rows[r], dict) else {}
        by_col = {c.get("columnIndex"): c.get("value", "") for c in row_data.get("cells") or [] if isinstance(c, dict)}
        cells = []
        for c, column in enumerate(columns):
            header = column.get("name", headers[c] if c < len(headers) else "")
            saved = state.get_cell(t, r, c)
            value = saved or str(by_col.get(c) or "")
            if value and not saved and is_fixed_label(value, header, c):
                cells.append({"role": "label", "row": r, "col": c, "header": header, "text": value})
                continue
            kind = kinds[c]
            if kind == DATE:
                value = initial_date(saved, value)
            elif kind == TIME:
                value = initial_time(saved, value)
            cell = {
                "role": "field", "kind": kind, "address": ("cell", t, r, c),
                "row": r, "col": c, "header": header, "value": value,
                "placeholder": header_placeholder(header),
            }
            if kind == OPERATOR:
                cell["options"] = list(builder.operator_options)
            cells.append(cell)
        rows.append(cells)

    return {
        "type": "table", "tableIndex": t, "blockId": None, "banners": [],
        "header": [{"text": h, "kind": kinds[i] if i < len(kinds) else "text", "segments": []} for i, h in enumerate(headers)],
        "columnKinds": kinds, "lotTable": False, "operationCode": ctx.operation_code, "rows": rows,
    }

def _placeholder_field(builder: LayoutBuilder, token: str, label: str, key: str = "") -> Dict[str, Any]:
    placeholders = builder.state.placeholders
    value = placeholder_value(placeholders, token) or str(placeholders.get(key) or "")
    return {"type": "placeholder_field", "address": ("placeholder", token), "token": token,
            "label": label, "value": value}

def build_legacy_layout(builder: LayoutBuilder, structure: Dict[str, Any], ctx: ScanContext) -> List[Dict[str, Any]]:
    """Header fields, remaining placeholders, then one block of fields per section."""
    state = builder.state
    nodes: List[Dict[str, Any]] = [{"type": "title", "text": document_title(structure)}]

    header_tokens = []
    for f in structure.get("headerFields") or []:
        if not isinstance(f, dict):
            continue
        token = f.get("placeholder") or f.get("key") or ""
        if not token:
            continue
        header_tokens.append(token)
        nodes.append(_placeholder_field(builder, token, f.get("label") or placeholder_label(token), f.get("key", "")))

    remaining = [p for p in structure_placeholders(structure) if p not in header_tokens]
    for token in remaining:
        nodes.append(_placeholder_field(builder, token, placeholder_label(token)))

    for section in structure.get("sections") or []:
        if not isinstance(section, dict):
            continue
        try:
            nodes.extend(_legacy_section(builder, section, ctx, state))
        except Exception:
            logger.warning("Section %r could not be rendered", section.get("id"), exc_info=True)
            nodes.append(_fallback_text(str(section.get("title") or "")))
    return nodes

def _legacy_section(builder: LayoutBuilder, section: Dict[str, Any], ctx: ScanContext, state: FormState) -> List[Dict[str, Any]]:
    sid = section.get("id")
    group = str(sid)
    display = section_display_title(section)
    ctx.note_operation(display)
    if isinstance(sid, int):
        ctx.bump_to(sid)
    nodes: List[Dict[str, Any]] = [{
        "type": "heading", "number": group, "title": display, "auto": False,
        "display": display, "segments": builder.segments(display, ctx),
    }]

    for field in section.get("fields") or []:
        label = str(field).strip()
        if label.upper().startswith("FAIL "):
            label = label[5:].strip()
        saved = state.pass_fail.get(group, {}).get(label, "")
        nodes.append({
            "type": "pass_fail", "address": ("pass_fail", group, label), "label": label,
            "options": list(PASS_FAIL_OPTIONS), "value": saved if saved in PASS_FAIL_OPTIONS else "",
        })

    tables = section.get("tables") or ([section["table"]] if section.get("table") else [])
    for table in tables:
        if isinstance(table, dict):
            nodes.append(_legacy_table(builder, table, ctx))

    for idx, tf in enumerate(section.get("textFields") or []):
        tf = tf if isinstance(tf, dict) else {"label": str(tf)}
        nodes.append({
            "type": "text_field", "address": ("text_field", group, str(idx)),
            "label": tf.get("label", ""), "placeholder": tf.get("placeholder", ""),
            "value": state.text_fields.get(group, {}).get(str(idx), ""),
        })

    for cb in section.get("checkboxes") or []:
        if not isinstance(cb, dict):
            continue
        cb_id = str(cb.get("id", ""))
        saved = state.checkboxes.get(group, {}).get(cb_id)
        nodes.append({
            "type": "checkbox", "address": ("checkbox", group, cb_id), "id": cb_id,
            "label": cb.get("label", ""), "value": bool(saved) if saved is not None else bool(cb.get("checked")),
        })
    return nodes
