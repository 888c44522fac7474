# fsop_cli.py
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fsop_export import WorkbookError, form_state_frame, tagged_measures_frame, write_frame, write_tagged_measures
from fsop_form import FsopSession
from fsop_save import iter_fields
from fsop_state import FormState, StructureLoadError, ValidationError

EXIT_INPUT = 2
EXIT_OUTPUT = 3


# =========================
# JSON helpers
# =========================
def _read_json(path: Optional[str], default=None):
    if not path:
        return default
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)

def _write_json(data: Any, out: Optional[str]) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if not out:
        print(text)
        return
    Path(out).parent.mkdir(parents=True, exist_ok=True)
    Path(out).write_text(text, encoding="utf-8")

def _read_edits(path: Optional[str]) -> List[Dict[str, Any]]:
    """[{"address": ["cell", 0, 0, 0], "value": "..."}, ...]"""
    edits = _read_json(path, default=[]) or []
    if isinstance(edits, dict):
        edits = edits.get("edits", [])
    return [e for e in edits if isinstance(e, dict) and "address" in e]

def _session(args) -> FsopSession:
    return FsopSession.load(
        args.structure,
        saved=_read_json(getattr(args, "saved", None), default={}),
        lot_data=_read_json(getattr(args, "lots", None), default={}),
        operator_options=_read_json(getattr(args, "operators", None)),
        positional_launch_fallback=getattr(args, "positional_launch", False),
    )


# =========================
# Commands
# =========================
def cmd_render(args) -> Any:
    session = _session(args)
    layout = session.render()
    fields = len({tuple(f["address"]) for f in iter_fields(layout)})
    return layout, f"✅ Rendered {layout['mode']} layout: {len(layout['nodes'])} node(s), {layout['tableCount']} table(s), {fields} field(s)"

def cmd_save(args) -> Any:
    session = _session(args)
    session.render()
    for e in _read_edits(args.edits):
        session.edit(e["address"], e.get("value"))
    data = session.get_form_data()
    report = session.validate()
    msg = f"✅ Saved form data ({len(data['tables'])} table(s), {len(data['taggedMeasures'])} tagged measure(s))"
    if not report["valid"]:
        msg += "\n⚠️  " + "\n⚠️  ".join(report["errors"])
    return data, msg

def cmd_validate(args) -> Any:
    session = _session(args)
    session.render()
    for e in _read_edits(args.edits):
        session.edit(e["address"], e.get("value"))
    try:
        session.submit()
    except ValidationError as e:
        return {"valid": False, "errors": e.errors}, "❌ " + "\n❌ ".join(e.errors)
    return {"valid": True, "errors": []}, "✅ Form is complete"


def _transfer_measures(args, state: FormState) -> None:
    try:
        report = write_tagged_measures(args.into, state, serial_number=args.serial, force_replace=args.force)
    except (FileNotFoundError, WorkbookError) as e:
        print(f"[Excel] {e}", file=sys.stderr); sys.exit(EXIT_INPUT)
    except OSError as e:
        print(f"[Excel] {e}", file=sys.stderr); sys.exit(EXIT_OUTPUT)
    where = f" (sheet {report['sheet']}, row {report['row']})" if report["row"] else ""
    print(f"📤 Transferred {len(report['updated'])} measure(s) into {args.into}{where}")
    for tag, info in report["existing"].items():
        print(f"⚠️  {tag}: kept {info['existing']} at {info['location']} (new {info['new']}, use --force)")
    if report["missing"]:
        print("⚠️  No column or named range for: " + ", ".join(report["missing"]))


def main(argv: Optional[List[str]] = None):
    ap = argparse.ArgumentParser(description="Render FSOP templates as editable forms and project edits back to saved data.")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = ap.add_subparsers(dest="command", required=True)

    def _common(p, edits=False):
        p.add_argument("--structure", required=True, help="Structure JSON ({blocks} or legacy {sections}) or a .docx template")
        p.add_argument("--saved", default=None, help="Previously saved form data (JSON)")
        p.add_argument("--lots", default=None, help="Lot association data {lines, items, uniqueLots} (JSON)")
        p.add_argument("--operators", default=None, help="Operator options [{initials, label}] (JSON)")
        p.add_argument("--positional-launch", action="store_true",
                       help="Also treat table 0, row 0, column 1 as the launch number cell")
        if edits:
            p.add_argument("--edits", default=None, help='Edits JSON: [{"address": [...], "value": ...}]')
        p.add_argument("--out", default=None, help="Output JSON (stdout when omitted)")

    _common(sub.add_parser("render", help="Build the editable layout"))
    _common(sub.add_parser("save", help="Apply edits and write the form data"), edits=True)
    _common(sub.add_parser("validate", help="Check required fields ({{LT}}, {{SN}})"), edits=True)

    p_exp = sub.add_parser("export", help="Export saved form data to xlsx/csv")
    p_exp.add_argument("--saved", required=True, help="Saved form data (JSON)")
    p_exp.add_argument("--out", default=None, help="Output .xlsx or .csv")
    p_exp.add_argument("--measures", action="store_true", help="Export only the tagged measures")
    p_exp.add_argument("--into", default=None, help="Existing measurement workbook (.xlsx) to write the tagged measures into")
    p_exp.add_argument("--serial", default=None, help="Serial number of the workbook row (default: the saved {{SN}})")
    p_exp.add_argument("--force", action="store_true", help="Overwrite cells that already hold a value")

    args = ap.parse_args(argv)
    if args.command == "export" and not (args.out or args.into):
        ap.error("export needs --out and/or --into")
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if args.command == "export":
        try:
            state = FormState.from_dict(_read_json(args.saved, default={}))
        except (OSError, json.JSONDecodeError) as e:
            print(f"[JSON] {e}", file=sys.stderr); sys.exit(EXIT_INPUT)
        if args.into:
            _transfer_measures(args, state)
        if args.out:
            df = tagged_measures_frame(state) if args.measures else form_state_frame(state)
            try:
                written = write_frame(df, args.out)
            except OSError as e:
                print(f"[Export] {e}", file=sys.stderr); sys.exit(EXIT_OUTPUT)
            print(f"📤 Wrote {written} with {len(df)} rows.")
        return

    handlers = {"render": cmd_render, "save": cmd_save, "validate": cmd_validate}
    try:
        result, message = handlers[args.command](args)
    except StructureLoadError as e:
        print(f"[Structure] {e}", file=sys.stderr); sys.exit(EXIT_INPUT)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[JSON] {e}", file=sys.stderr); sys.exit(EXIT_INPUT)
    except (KeyError, ValueError) as e:
        print(f"[Edits] {e}", file=sys.stderr); sys.exit(EXIT_INPUT)

    try:
        _write_json(result, args.out)
    except OSError as e:
        print(f"[Output] {e}", file=sys.stderr); sys.exit(EXIT_OUTPUT)
    if args.out:
        print(message)
        print(f"✅ Wrote {args.out}")
    else:
        print(message, file=sys.stderr)
    if args.command == "validate" and not result["valid"]:
        sys.exit(1)


if __name__ == "__main__":
    main()
