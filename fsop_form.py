"""
FsopSession: one document-editing session.

    session = FsopSession.load("template.json", saved=..., lot_data=..., operator_options=...)
    layout = session.render()
    session.edit(("cell", 0, 0, 0), "2024-01-01")
    data = session.get_form_data()
    session.submit()          # raises ValidationError when {{LT}}/{{SN}} are missing
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from fsop_layout import PASS_FAIL_OPTIONS, LayoutBuilder
from fsop_save import iter_fields, project_snapshot
from fsop_state import FormState, ValidationError, load_structure, validate

logger = logging.getLogger(__name__)

ADDRESS_KINDS = {
    "cell": 4,
    "placeholder": 2,
    "pass_fail": 3,
    "checkbox": 3,
    "text_field": 3,
    "reference": 1,
}


def normalize_address(address: Sequence) -> Tuple:
    """
    ["cell", "0", "1", "2"] -> ("cell", 0, 1, 2); other kinds keep string keys.
    Raises ValueError on an unknown kind or a wrong arity.
    """
    if isinstance(address, str):
        address = (address,)
    address = tuple(address)
    if not address or address[0] not in ADDRESS_KINDS:
        raise ValueError(f"Unknown field address: {address!r}")
    kind = address[0]
    if len(address) != ADDRESS_KINDS[kind]:
        raise ValueError(f"Address {address!r} must have {ADDRESS_KINDS[kind]} part(s)")
    if kind == "cell":
        return ("cell",) + tuple(int(p) for p in address[1:])
    return (kind,) + tuple(str(p) for p in address[1:])


class FsopSession:
    def __init__(self, structure: Dict[str, Any], saved: Optional[Union[FormState, Dict[str, Any]]] = None,
                 lot_data: Optional[Dict[str, Any]] = None,
                 operator_options: Optional[List[Dict[str, str]]] = None,
                 positional_launch_fallback: bool = False):
        self.structure = structure
        if isinstance(saved, FormState):
            self.saved = saved.copy()
        else:
            self.saved = FormState.from_dict(saved)
        if operator_options is not None:
            self.saved.operator_options = list(operator_options)
        self.lot_data = lot_data or {}
        self.positional_launch_fallback = positional_launch_fallback
        self.layout: Optional[Dict[str, Any]] = None
        self.values: Dict[Tuple, Any] = {}

    @classmethod
    def load(cls, source, **kwargs) -> "FsopSession":
        """Fail-fast: StructureLoadError propagates, nothing is built."""
        return cls(load_structure(source), **kwargs)

    # ---- render ----
    def render(self) -> Dict[str, Any]:
        """Rebuild the layout; live edits made so far are shown over saved values."""
        state = self.state()
        builder = LayoutBuilder(state, self.lot_data, state.operator_options,
                                positional_launch_fallback=self.positional_launch_fallback)
        self.layout = builder.build(self.structure)
        self.values = {addr: v for addr, v in self.values.items() if addr in self._addresses()}
        return self.layout

    def _ensure_layout(self) -> Dict[str, Any]:
        if self.layout is None:
            self.render()
        return self.layout

    def _addresses(self) -> set:
        return {tuple(f["address"]) for f in iter_fields(self.layout or {})}

    # ---- edits ----
    def edit(self, address: Sequence, value: Any) -> None:
        """One edit event; last write wins per address."""
        self._ensure_layout()
        addr = normalize_address(address)
        if addr not in self._addresses():
            raise KeyError(f"No field at {addr!r}")
        if addr[0] == "pass_fail":
            value = str(value or "").strip().upper()
            if value and value not in PASS_FAIL_OPTIONS:
                raise ValueError(f"PASS/FAIL field accepts PASS or FAIL, got {value!r}")
        self.values[addr] = value
        logger.debug("Edit %r = %r", addr, value)

    def snapshot(self) -> Dict[Tuple, Any]:
        """Live value of every field: the edit when there is one, else the rendered value."""
        layout = self._ensure_layout()
        snap = {}
        for field in iter_fields(layout):
            addr = tuple(field["address"])
            snap.setdefault(addr, self.values.get(addr, field.get("value")))
        return snap

    # ---- save ----
    def state(self) -> FormState:
        if self.layout is None:
            return self.saved.copy()
        return project_snapshot(self.layout, dict(self.values), self.saved)

    def get_form_data(self) -> Dict[str, Any]:
        return self.state().to_dict()

    def validate(self) -> Dict[str, Any]:
        return validate(self.state(), self.structure)

    def submit(self) -> Dict[str, Any]:
        result = self.validate()
        if not result["valid"]:
            raise ValidationError(result["errors"])
        return self.get_form_data()
