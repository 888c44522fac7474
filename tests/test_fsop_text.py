from fsop_text import (
    PARAGRAPH_RULES,
    classify_paragraph,
    extract_operation_code,
    find_tag_tokens,
    has_operation_marker,
    heading_number,
    looks_like_heading,
    match_checkbox,
    match_numbered_heading,
    match_pass_fail,
    normalize_text,
)


def test_numbered_heading_variants() -> None:
    assert match_numbered_heading("1- Préparation") == ("1", "Préparation")
    assert match_numbered_heading("3b. Contrôle visuel") == ("3b", "Contrôle visuel")
    assert match_numbered_heading("12 – Emballage") == ("12", "Emballage")


def test_numbered_heading_rejects_numbers_and_plain_text() -> None:
    assert match_numbered_heading("12.5 mm") is None
    assert match_numbered_heading("Montage du connecteur") is None
    assert match_numbered_heading("") is None
    assert match_numbered_heading(None) is None


def test_heading_number_drops_letter() -> None:
    assert heading_number("3b") == 3
    assert heading_number("10") == 10
    assert heading_number("") == 0


def test_looks_like_heading() -> None:
    assert looks_like_heading("Général :")
    assert looks_like_heading("Tir puissance MO 1114 ind B")
    assert not looks_like_heading("Une phrase ordinaire sans deux-points")
    assert not looks_like_heading("x" * 70 + " :")


def test_operation_code_extraction() -> None:
    assert extract_operation_code("Collage MO 01336 ind A") == "MO 1336"
    assert extract_operation_code("MO-2040") == "MO 2040"
    assert extract_operation_code("MO 12") == ""
    assert extract_operation_code("pas de code") == ""
    assert has_operation_marker("Collage MO 1336 ind")
    assert not has_operation_marker("Collage MO 1336")


def test_pass_fail_prompt() -> None:
    assert match_pass_fail("Mesure perte : PASS FAIL") == "Mesure perte"
    assert match_pass_fail("Aspect fibre: pass fail   ") == "Aspect fibre"
    assert match_pass_fail("Mesure perte : PASS") is None


def test_checkbox_items() -> None:
    assert match_checkbox("☐ Vérification OK") == (False, "Vérification OK")
    assert match_checkbox("☑ Vérification OK") == (True, "Vérification OK")
    assert match_checkbox("[x] Nettoyage") == (True, "Nettoyage")
    assert match_checkbox("[ ] Nettoyage") == (False, "Nettoyage")
    assert match_checkbox("Vérification OK") is None


def test_tag_tokens() -> None:
    assert find_tag_tokens("Lot {{LT}} / SN {{SN}}") == ["{{LT}}", "{{SN}}"]
    assert find_tag_tokens("{{lower}}") == []


def test_normalize_text_is_accent_and_case_insensitive() -> None:
    assert normalize_text("  Opérateur   VISA ") == "operateur visa"


def test_rule_order_is_explicit() -> None:
    names = [name for name, _ in PARAGRAPH_RULES]
    assert names == ["numbered_heading", "operation_heading", "colon_heading", "pass_fail", "checkbox"]


def test_classify_paragraph_precedence() -> None:
    assert classify_paragraph("2- Collage MO 1336 ind :")["rule"] == "numbered_heading"
    assert classify_paragraph("Collage MO 1336 ind :")["rule"] == "operation_heading"
    assert classify_paragraph("Général :") == {"rule": "colon_heading", "title": "Général"}
    assert classify_paragraph("Mesure perte : PASS FAIL") == {"rule": "pass_fail", "label": "Mesure perte"}
    assert classify_paragraph("☐ Vérification OK") == {"rule": "checkbox", "label": "Vérification OK", "checked": False}
    assert classify_paragraph("Texte libre") == {"rule": "text", "text": "Texte libre"}
    assert classify_paragraph("   ") == {"rule": "empty"}
