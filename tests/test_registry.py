"""Tests for CardRegistry: address assignment, rejection and output-card lookup."""

import random

import pytest

from pybk9100.errors import InvalidSettingsError, UnknownCardError, UnknownCardTypeError
from pybk9100.registry import CardRegistry, resolve_model
from pybk9100.types import CARD_MODELS, CardFamily, Direction, ModbusTable


@pytest.fixture
def mixed_cards() -> list[dict]:
    return [
        {"type": "KL1808", "label": "doors"},
        {"type": "KL3208", "label": "boiler"},
        {"type": "KL2408", "label": "relays", "filter": "plant/relays"},
        {"type": "KL3468", "label": "valves"},
        {"type": "KL1804", "label": "alarms"},
        {"type": "KL2404", "label": "lamps", "filter": "lights/*"},
    ]


class TestAddressAssignment:
    def test_each_table_has_its_own_counter(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        spans = {c.label: (c.table, c.start, c.quantity) for c in registry}

        assert spans["doors"] == (ModbusTable.DISCRETE_INPUT, 0, 8)
        assert spans["alarms"] == (ModbusTable.DISCRETE_INPUT, 8, 4)
        assert spans["boiler"] == (ModbusTable.INPUT_REGISTER, 0, 16)
        assert spans["valves"] == (ModbusTable.INPUT_REGISTER, 16, 16)
        assert spans["relays"] == (ModbusTable.COIL, 0, 8)
        assert spans["lamps"] == (ModbusTable.COIL, 8, 4)

    def test_next_address(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert registry.next_address(ModbusTable.DISCRETE_INPUT) == 12
        assert registry.next_address(ModbusTable.INPUT_REGISTER) == 32
        assert registry.next_address(ModbusTable.COIL) == 12

    @pytest.mark.parametrize("seed", range(10))
    def test_ranges_are_contiguous_and_disjoint(self, seed: int) -> None:
        rng = random.Random(seed)
        names = list(CARD_MODELS)
        entries = [{"type": rng.choice(names)} for _ in range(rng.randint(1, 20))]
        registry = CardRegistry(entries)

        for table in ModbusTable:
            expected = 0
            for card in (c for c in registry if c.table == table):
                assert card.start == expected
                expected = card.end
            assert registry.next_address(table) == expected

    def test_channel_override_changes_quantity(self) -> None:
        registry = CardRegistry([{"type": "KL3208", "channels": 4}, {"type": "KL3468"}])
        temp, volt = registry.cards
        assert temp.quantity == 8
        assert volt.start == 8

    def test_base_addresses(self) -> None:
        registry = CardRegistry(
            [{"type": "KL1808"}, {"type": "KL3204"}],
            base_addresses={ModbusTable.DISCRETE_INPUT: 100},
        )
        assert registry.cards[0].start == 100
        assert registry.cards[1].start == 0

    def test_slots_follow_config_order(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert [c.slot for c in registry] == [1, 2, 3, 4, 5, 6]


class TestRejection:
    def test_unknown_type_is_excluded_without_using_space(self) -> None:
        registry = CardRegistry([{"type": "KL1808"}, {"type": "KL9999"}, {"type": "KL1804"}])

        assert len(registry) == 2
        assert registry.cards[1].start == 8
        slot, entry, err = registry.rejected[0]
        assert slot == 2
        assert entry == {"type": "KL9999"}
        assert isinstance(err, UnknownCardTypeError)
        assert err.slot == 2

    def test_bad_settings_are_excluded(self) -> None:
        registry = CardRegistry(
            [
                {"type": "KL3468", "settings": {"range": "4-20mA"}},
                {"type": "KL3208", "channels": 0},
                {"type": "KL3208", "settings": {"sensors": "pt9999"}},
                "KL1808",
                {"type": "KL3468"},
            ]
        )
        assert len(registry) == 1
        assert registry.cards[0].start == 0
        assert [slot for slot, _, _ in registry.rejected] == [1, 2, 3, 4]
        assert all(isinstance(err, InvalidSettingsError) for _, _, err in registry.rejected)

    def test_missing_type(self) -> None:
        registry = CardRegistry([{"label": "nothing"}])
        assert len(registry) == 0
        assert isinstance(registry.rejected[0][2], UnknownCardTypeError)


class TestResolveModel:
    @pytest.mark.parametrize(
        ("tag", "model"),
        [
            ("KL3208", "KL3208"),
            ("kl1804", "KL1804"),
            (" KL2404 ", "KL2404"),
            ("digital-input", "KL1808"),
            ("Analog-Temperature", "KL3208"),
            ("analog-voltage", "KL3468"),
            ("digital-output", "KL2408"),
        ],
    )
    def test_known_tags(self, tag: str, model: str) -> None:
        assert resolve_model(tag).name == model

    def test_unknown_tag(self) -> None:
        with pytest.raises(UnknownCardTypeError, match="KL4001"):
            resolve_model("KL4001")

    def test_model_properties(self) -> None:
        assert resolve_model("KL2408").direction == Direction.OUTPUT
        assert resolve_model("KL2408").family == CardFamily.DIGITAL_OUTPUT
        assert resolve_model("KL1808").bit_based
        assert not resolve_model("KL3464").bit_based
        assert resolve_model("KL3464").words_per_channel == 2


class TestCardSelection:
    def test_pollable_cards(self) -> None:
        registry = CardRegistry(
            [
                {"type": "KL1808"},
                {"type": "KL2408", "label": "quiet"},
                {"type": "KL2408", "label": "watched", "pollable": True},
                {"type": "KL3208"},
            ]
        )
        assert [c.name for c in registry.pollable_cards()] == ["KL1808#1", "watched", "KL3208#4"]
        assert [c.name for c in registry.output_cards()] == ["quiet", "watched"]
        assert len(registry.input_cards()) == 2

    def test_topic_and_name_defaults(self) -> None:
        registry = CardRegistry([{"type": "KL1808"}, {"type": "KL1808", "label": "doors"}])
        assert registry.cards[0].name == "KL1808#1"
        assert registry.cards[0].topic == "slot/1/KL1808"
        assert registry.cards[1].topic == "doors"


class TestResolveOutput:
    def test_by_label(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert registry.resolve_output("lamps").label == "lamps"

    def test_by_filter(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert registry.resolve_output("plant/relays").label == "relays"
        assert registry.resolve_output("lights/hall").label == "lamps"

    def test_by_type_name(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert registry.resolve_output("kl2404").label == "lamps"
        assert registry.resolve_output("digital-output").label == "relays"

    def test_by_index(self, mixed_cards: list[dict]) -> None:
        registry = CardRegistry(mixed_cards)
        assert registry.resolve_output(0).label == "relays"
        assert registry.resolve_output(1).label == "lamps"
        assert registry.resolve_output("1").label == "lamps"

    @pytest.mark.parametrize("target", ["doors", "KL1808", 2, -1, "", None, True, "missing"])
    def test_unknown_targets(self, mixed_cards: list[dict], target: object) -> None:
        registry = CardRegistry(mixed_cards)
        with pytest.raises(UnknownCardError):
            registry.resolve_output(target)


def test_layout_rows(mixed_cards: list[dict]) -> None:
    registry = CardRegistry(mixed_cards)
    rows = {row["label"]: row for row in registry.layout()}

    assert rows["doors"]["fc"] == 2
    assert rows["doors"]["function_used"] == "read_discrete_inputs"
    assert rows["boiler"]["fc"] == 4
    assert rows["boiler"]["quantity"] == 16
    assert rows["relays"]["fc"] == 1
    assert rows["relays"]["direction"] == "output"
    assert rows["valves"]["start"] == 16
