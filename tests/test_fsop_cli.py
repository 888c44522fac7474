import json
from pathlib import Path

import pytest
from openpyxl import Workbook, load_workbook

from fsop_cli import main

STRUCTURE = {
    "blocks": [
        {"type": "paragraph", "text": "Lancement {{LT}}"},
        {"type": "table", "id": 1, "rows": [
            [{"text": "Date"}, {"text": "Opérateur"}],
            [{"text": ""}, {"text": ""}],
        ]},
    ],
}


def _write(path: Path, data) -> str:
    path.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
    return str(path)


def test_render_writes_layout(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    structure = _write(tmp_path / "structure.json", STRUCTURE)
    out = tmp_path / "layout.json"
    main(["render", "--structure", structure, "--out", str(out)])
    layout = json.loads(out.read_text(encoding="utf-8"))
    assert layout["mode"] == "blocks"
    assert layout["tableCount"] == 1
    assert "Rendered blocks layout" in capsys.readouterr().out


def test_save_applies_edits(tmp_path: Path) -> None:
    structure = _write(tmp_path / "structure.json", STRUCTURE)
    edits = _write(tmp_path / "edits.json", [
        {"address": ["cell", 0, 0, 0], "value": "2024-01-01"},
        {"address": ["placeholder", "{{LT}}"], "value": "LT2401"},
    ])
    out = tmp_path / "saved.json"
    main(["save", "--structure", structure, "--edits", edits, "--out", str(out)])
    data = json.loads(out.read_text(encoding="utf-8"))
    assert data["tables"] == {"0": {"0": {"0": "01/01/2024"}}}
    assert data["placeholders"] == {"{{LT}}": "LT2401"}


def test_validate_exit_codes(tmp_path: Path) -> None:
    structure = _write(tmp_path / "structure.json", STRUCTURE)
    with pytest.raises(SystemExit) as exc:
        main(["validate", "--structure", structure, "--out", str(tmp_path / "report.json")])
    assert exc.value.code == 1
    report = json.loads((tmp_path / "report.json").read_text(encoding="utf-8"))
    assert report == {"valid": False, "errors": ["Numéro de lancement est requis"]}

    saved = _write(tmp_path / "saved.json", {"placeholders": {"{{LT}}": "LT1"}})
    main(["validate", "--structure", structure, "--saved", saved, "--out", str(tmp_path / "ok.json")])
    assert json.loads((tmp_path / "ok.json").read_text(encoding="utf-8"))["valid"] is True


def test_bad_inputs_exit_2(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc:
        main(["render", "--structure", str(tmp_path / "missing.json")])
    assert exc.value.code == 2

    structure = _write(tmp_path / "structure.json", STRUCTURE)
    edits = _write(tmp_path / "edits.json", [{"address": ["cell", 9, 9, 9], "value": "x"}])
    with pytest.raises(SystemExit) as exc:
        main(["save", "--structure", structure, "--edits", edits])
    assert exc.value.code == 2


def test_export_csv(tmp_path: Path) -> None:
    saved = _write(tmp_path / "saved.json", {"reference": "RETA-697", "taggedMeasures": {"PERTE_DB": "0.3"}})
    out = tmp_path / "mesures.csv"
    main(["export", "--saved", saved, "--out", str(out), "--measures"])
    text = out.read_text(encoding="utf-8-sig")
    assert text.splitlines() == ["Reference,Tag,Value", "RETA-697,PERTE_DB,0.3"]


def test_export_into_measurement_workbook(tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    wb = Workbook()
    ws = wb.active
    for c, header in enumerate(["Numéro de série", "Lancement", "IL_940_A"], start=1):
        ws.cell(1, c, header)
    ws.cell(2, 1, "SN-0007")
    book = tmp_path / "mesures.xlsx"
    wb.save(str(book))
    saved = _write(tmp_path / "saved.json", {
        "placeholders": {"{{SN}}": "SN-0007"},
        "taggedMeasures": {"IL_940_A": "0.25", "RL_COEUR": "55"},
    })
    main(["export", "--saved", saved, "--into", str(book)])
    out = capsys.readouterr().out
    assert "Transferred 1 measure(s)" in out
    assert "RL_COEUR" in out
    assert load_workbook(str(book)).active.cell(2, 3).value == 0.25


def test_export_into_missing_workbook_exit_2(tmp_path: Path) -> None:
    saved = _write(tmp_path / "saved.json", {"taggedMeasures": {"IL_940_A": "0.25"}})
    with pytest.raises(SystemExit) as exc:
        main(["export", "--saved", saved, "--into", str(tmp_path / "absent.xlsx")])
    assert exc.value.code == 2
