from fsop_lots import (
    LOT_STRATEGIES,
    LotIndex,
    LotResolver,
    is_lot_table,
    norm_key,
    parenthetical_hints,
    split_channels,
)


def _data(**overrides):
    data = {
        "lines": [
            {"codeOperation": "MO 1336", "codeRubrique": "FERULE-LC", "uniqueLot": "L-100"},
            {"codeOperation": "MO 1336", "codeRubrique": "COLLE-353ND", "uniqueLot": "L-200"},
            {"codeOperation": "MO 1336", "codeRubrique": "GAINE", "uniqueLot": "L-300"},
            {"codeOperation": "MO 1336", "codeRubrique": "GAINE", "uniqueLot": "L-301"},
        ],
        "items": [
            {"codeRubrique": "FERULE-LC", "lots": ["L-100"]},
            {"codeRubrique": "CONNECTEUR38999", "lots": ["L-400"]},
            {"codeRubrique": "GAINE", "lots": ["L-300", "L-301"]},
            {"codeRubrique": "TUBEPROTECTIONLONG", "lots": ["L-500"]},
        ],
        "uniqueLots": ["L-100", "L-200", "L-300"],
    }
    data.update(overrides)
    return data


def test_keys_and_hints() -> None:
    assert norm_key("Férule (LC-PC)") == "FERULELCPC"
    assert parenthetical_hints("Colle (353 ND) (lot)") == ["353ND", "LOT"]


def test_lot_table_policy() -> None:
    assert is_lot_table("Composant N° de lot Date")
    assert not is_lot_table("Composant Quantité")
    assert not is_lot_table("Collage : Composant N° de lot")
    assert not is_lot_table("")


def test_index_direct_map_skips_ambiguous_items() -> None:
    idx = LotIndex.from_data(_data())
    assert idx.direct["FERULELC"] == "L-100"
    assert "GAINE" not in idx.direct
    assert idx.catalogue["GAINE"] == ["L-300", "L-301"]
    assert idx.operation_lots("MO 1336", "GAINE") == {"L-300", "L-301"}


def test_unique_lot_wins_over_everything() -> None:
    resolver = LotResolver.from_data(_data(uniqueLots=["L-999"]))
    assert resolver.resolve("Férule (LC)", "MO 1336") == "L-999"
    assert resolver.resolve("", "") == "L-999"
    assert resolver.candidates("n'importe quoi") == ["L-999"]


def test_operation_index_by_hint() -> None:
    resolver = LotResolver.from_data(_data())
    assert resolver.resolve("Colle (COLLE-353ND)", "MO 1336") == "L-200"


def test_operation_index_ambiguous_falls_through() -> None:
    resolver = LotResolver.from_data(_data())
    # two lots for GAINE under MO 1336 and no single-lot item to fall back on
    assert resolver.resolve("Gaine", "MO 1336") is None
    assert resolver.candidates("Gaine", "MO 1336") == ["L-300", "L-301"]


def test_exact_direct_key_without_operation() -> None:
    resolver = LotResolver.from_data(_data())
    assert resolver.resolve("Férule-LC", "") == "L-100"


def test_hint_inclusion() -> None:
    resolver = LotResolver.from_data(_data())
    assert resolver.resolve("Embase (38999)", "") == "L-400"


def test_fuzzy_inclusion_needs_eight_chars() -> None:
    resolver = LotResolver.from_data(_data())
    assert resolver.resolve("Tube protection", "") == "L-500"
    assert resolver.resolve("Tube", "") is None


def test_strategy_order() -> None:
    assert [name for name, _ in LOT_STRATEGIES] == [
        "unique_lot", "operation_index", "exact_item", "hint_inclusion", "fuzzy_inclusion",
    ]


def test_split_channels_requires_three_paths() -> None:
    assert split_channels("Voie A / Voie B / Voie C") == ["Voie A", "Voie B", "Voie C"]
    assert split_channels("Voie A\nVoie B\nVoie C") == ["Voie A", "Voie B", "Voie C"]
    assert split_channels("Voie A / Voie B") == []


def test_multi_channel_cell_with_single_candidate() -> None:
    resolver = LotResolver.from_data(_data(uniqueLots=["L-1"]))
    seed = resolver.resolve_cell("Voie A / Voie B / Voie C")
    assert [ch["value"] for ch in seed["channels"]] == ["L-1", "L-1", "L-1"]
    assert all(ch["options"] == [] for ch in seed["channels"])


def test_multi_channel_cell_with_choice() -> None:
    resolver = LotResolver.from_data(_data())
    seed = resolver.resolve_cell("Gaine A; Gaine B; Gaine C", "MO 1336")
    assert len(seed["channels"]) == 3
    assert all(ch["options"] for ch in seed["channels"])


def test_multi_channel_channels_share_the_choice() -> None:
    data = _data()
    data["items"].append({"codeRubrique": "COLLE", "lots": ["L-600"]})
    resolver = LotResolver.from_data(data)
    # "Colle" alone resolves to L-600, but the row as a whole has three candidates
    assert resolver.resolve("Colle") == "L-600"
    seed = resolver.resolve_cell("Gaine / Colle / Embout")
    assert seed["options"] == ["L-100", "L-200", "L-300"]
    assert [ch["value"] for ch in seed["channels"]] == ["", "", ""]
    assert all(ch["options"] == seed["options"] for ch in seed["channels"])
