from fsop_columns import (
    DATE,
    OPERATOR,
    TEXT,
    TIME,
    column_kind,
    column_kinds,
    initial_date,
    initial_time,
    is_blank_cell,
    is_fixed_label,
    is_header_row,
    iso_to_display,
    normalize_date_to_iso,
    normalize_time,
)


def test_column_kind_mapping() -> None:
    assert column_kind("Date") == DATE
    assert column_kind("Date de contrôle") == DATE
    assert column_kind("HEURE") == TIME
    assert column_kind("Opérateur") == OPERATOR
    assert column_kind("Visa") == OPERATOR
    assert column_kind("Composant") == TEXT
    assert column_kind("") == TEXT


def test_column_kinds_pads_to_width() -> None:
    assert column_kinds(["Date", "Heure"], 4) == [DATE, TIME, TEXT, TEXT]


def test_header_row_needs_two_keyword_cells() -> None:
    assert is_header_row(["Date", "Opérateur"])
    assert is_header_row(["Composant", "N° de lot", "Remarque"])
    assert not is_header_row(["Date", "Montage"])
    assert not is_header_row([])


def test_blank_cells() -> None:
    assert is_blank_cell("")
    assert is_blank_cell("   ")
    assert is_blank_cell("______")
    assert not is_blank_cell("OK")


def test_fixed_label_heuristics() -> None:
    assert is_fixed_label("1ère polymérisation: 1h / 80°C")
    assert is_fixed_label("Colle (353 ND)", header="Produit")
    assert not is_fixed_label("Colle (353 ND)", header="N° de lot")
    assert is_fixed_label("2ème passage fibre", col_idx=0)
    assert not is_fixed_label("2ème passage fibre", col_idx=2)
    assert is_fixed_label("Voir MO 1080 ind B")
    assert not is_fixed_label("")
    assert not is_fixed_label("12.5")


def test_time_normalization() -> None:
    assert normalize_time("8:05") == "08:05"
    assert normalize_time("14h30") == "14:30"
    assert normalize_time("27:75") == "23:59"
    assert normalize_time("bientôt") == "bientôt"


def test_date_normalization() -> None:
    assert normalize_date_to_iso("01/02/2024") == "2024-02-01"
    assert normalize_date_to_iso("1-2-2024") == "2024-02-01"
    assert normalize_date_to_iso("2024-02-01") == "2024-02-01"
    assert normalize_date_to_iso("demain") == ""
    assert iso_to_display("2024-02-01") == "01/02/2024"
    assert iso_to_display("hier") == "hier"


def test_initial_values_prefer_saved_and_skip_placeholders() -> None:
    assert initial_date("01/01/2024", "") == "2024-01-01"
    assert initial_date("", "JJ/MM/AAAA") == ""
    assert initial_time("", "hh:mm") == ""
    assert initial_time("9h00", "10:00") == "09:00"
    assert initial_time("", "____") == ""
