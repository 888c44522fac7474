import json
from pathlib import Path

import pytest

from fsop_form import FsopSession, normalize_address
from fsop_state import StructureLoadError, ValidationError

STRUCTURE = {
    "blocks": [
        {"type": "paragraph", "text": "Lancement {{LT}} / Série {{SN}}"},
        {"type": "paragraph", "text": "Mesure perte : PASS FAIL"},
        {"type": "table", "id": 1, "rows": [
            [{"text": "1"}, {"text": "Montage du connecteur"}],
            [{"text": "Date"}, {"text": "Opérateur"}],
            [{"text": ""}, {"text": ""}],
        ]},
    ],
}


def _table(layout):
    return next(n for n in layout["nodes"] if n["type"] == "table")


def test_edit_then_form_data() -> None:
    session = FsopSession(STRUCTURE)
    session.render()
    session.edit(("cell", 0, 0, 0), "2024-01-01")
    data = session.get_form_data()
    assert data["tables"] == {"0": {"0": {"0": "01/01/2024"}}}
    assert data["placeholders"] == {}
    assert data["passFail"] == {}


def test_rerender_shows_edits() -> None:
    session = FsopSession(STRUCTURE)
    session.edit(("cell", 0, 0, 0), "2024-01-01")
    layout = session.render()
    assert _table(layout)["rows"][0][0]["value"] == "2024-01-01"


def test_saved_values_and_live_edits() -> None:
    ops = [{"initials": "JD", "label": "J. Dupont"}]
    session = FsopSession(STRUCTURE, saved={"tables": {"0": {"0": {"1": "JD"}}}}, operator_options=ops)
    layout = session.render()
    assert _table(layout)["rows"][0][1]["options"] == ops
    assert session.snapshot()[("cell", 0, 0, 1)] == "JD"
    session.edit(("cell", 0, 0, 1), "AB")
    assert session.snapshot()[("cell", 0, 0, 1)] == "AB"
    assert session.get_form_data()["tables"]["0"]["0"]["1"] == "AB"


def test_validate_and_submit() -> None:
    session = FsopSession(STRUCTURE)
    session.render()
    assert session.validate() == {
        "valid": False,
        "errors": ["Numéro de lancement est requis", "Numéro de série est requis"],
    }
    with pytest.raises(ValidationError) as exc:
        session.submit()
    assert len(exc.value.errors) == 2

    session.edit(["placeholder", "{{LT}}"], "LT1")
    session.edit(("placeholder", "{{SN}}"), "SN1")
    data = session.submit()
    assert data["placeholders"] == {"{{LT}}": "LT1", "{{SN}}": "SN1"}


def test_pass_fail_edits() -> None:
    session = FsopSession(STRUCTURE)
    session.edit(("pass_fail", "wordlike", "Mesure perte"), "pass")
    assert session.get_form_data()["passFail"] == {"wordlike": {"Mesure perte": "PASS"}}
    with pytest.raises(ValueError):
        session.edit(("pass_fail", "wordlike", "Mesure perte"), "maybe")


def test_unknown_address() -> None:
    session = FsopSession(STRUCTURE)
    with pytest.raises(KeyError):
        session.edit(("cell", 5, 0, 0), "x")


def test_normalize_address() -> None:
    assert normalize_address(["cell", "0", "1", "2"]) == ("cell", 0, 1, 2)
    assert normalize_address("reference") == ("reference",)
    assert normalize_address(("checkbox", 3, "cb_1")) == ("checkbox", "3", "cb_1")
    with pytest.raises(ValueError):
        normalize_address(("nope",))
    with pytest.raises(ValueError):
        normalize_address(("cell", 0, 0))


def test_state_before_render_is_saved_copy() -> None:
    session = FsopSession(STRUCTURE, saved={"reference": "RETA-697"})
    state = session.state()
    assert state.reference == "RETA-697"
    state.reference = "autre"
    assert session.saved.reference == "RETA-697"


def test_load_from_file(tmp_path: Path) -> None:
    path = tmp_path / "structure.json"
    path.write_text(json.dumps({"structure": STRUCTURE}), encoding="utf-8")
    session = FsopSession.load(path, saved={"placeholders": {"LT": "LT7"}})
    layout = session.render()
    text = layout["nodes"][1]
    assert text["segments"][1]["value"] == "LT7"
    with pytest.raises(StructureLoadError):
        FsopSession.load(tmp_path / "absent.json")
