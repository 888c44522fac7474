from fsop_banner import extract_banners, is_banner_text


def _row(*texts):
    return [{"text": t} for t in texts]


def test_number_and_title_cells_become_one_banner() -> None:
    rows = [_row("1", "Montage du connecteur"), _row("Date", "Opérateur"), _row("", "")]
    banners, rest = extract_banners(rows)
    assert banners == ["1- Montage du connecteur"]
    assert rest == rows[1:]


def test_single_merged_cell_banners_stack_up_to_three() -> None:
    rows = [
        _row("2- Collage", ""),
        _row("Collage MO 1336 ind A"),
        _row("Conditions :"),
        _row("Remarque :"),
        _row("Date", "Heure"),
    ]
    banners, rest = extract_banners(rows)
    assert banners == ["2- Collage", "Collage MO 1336 ind A", "Conditions :"]
    assert rest == rows[3:]


def test_no_banner_returns_rows_unchanged() -> None:
    rows = [_row("Date", "Opérateur"), _row("", "")]
    banners, rest = extract_banners(rows)
    assert banners == []
    assert rest == rows


def test_second_pass_finds_nothing() -> None:
    rows = [_row("3", "Contrôle final"), _row("Composant", "Lot"), _row("Férule", "")]
    _, rest = extract_banners(rows)
    banners_again, rest_again = extract_banners(rest)
    assert banners_again == []
    assert rest_again == rest


def test_input_is_not_mutated() -> None:
    rows = [_row("Général :"), _row("Date", "Visa")]
    snapshot = [list(r) for r in rows]
    extract_banners(rows)
    assert rows == snapshot


def test_long_colon_banner_accepted_up_to_eighty_chars() -> None:
    text = "Conditions de polymérisation de la colle avant contrôle :"
    assert len(text) <= 80
    assert is_banner_text(text)
    assert not is_banner_text("Valeur libre")
    assert not is_banner_text("")


def test_data_rows_are_not_banners() -> None:
    rows = [_row("12.5", "OK"), _row("", "")]
    banners, rest = extract_banners(rows)
    assert banners == []
    assert rest == rows


def test_numbered_step_list_is_not_peeled() -> None:
    rows = [_row("1", "Dénuder la fibre"), _row("2", "Cliver la fibre"), _row("3", "Insérer"), _row("4", "Coller")]
    banners, rest = extract_banners(rows)
    assert banners == []
    assert rest == rows


def test_numbered_title_above_header_is_still_a_banner() -> None:
    rows = [_row("1", "Dénuder la fibre"), _row("Date", "Opérateur"), _row("", "")]
    banners, rest = extract_banners(rows)
    assert banners == ["1- Dénuder la fibre"]
    assert rest == rows[1:]
