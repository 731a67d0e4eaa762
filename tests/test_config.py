"""Tests for card-file loading, coupler config and per-card settings."""

import json
from pathlib import Path

import pytest

from pybk9100.config import (
    CouplerConfig,
    build_settings,
    load_card_file,
    parse_bool,
    parse_word_order,
)
from pybk9100.errors import ConfigError, InvalidSettingsError
from pybk9100.types import CARD_MODELS, ModbusTable, VoltageBand, WordOrder


def write_json(tmp_path: Path, data: object) -> Path:
    path = tmp_path / "cards.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


class TestParseBool:
    """Test boolean value parsing."""

    def test_true_variants(self) -> None:
        for val in ["true", "True", "TRUE", "1", "on", "ON", "yes", "YES", "  true  "]:
            assert parse_bool(val) is True

    def test_false_variants(self) -> None:
        for val in ["false", "False", "0", "off", "OFF", "no", " no "]:
            assert parse_bool(val) is False

    def test_invalid_values(self) -> None:
        with pytest.raises(ValueError, match="Invalid boolean value"):
            parse_bool("maybe")
        with pytest.raises(ValueError):
            parse_bool("2")
        with pytest.raises(ValueError):
            parse_bool("")


def test_parse_word_order() -> None:
    assert parse_word_order("status-data") == WordOrder.STATUS_FIRST
    assert parse_word_order("Data-First") == WordOrder.DATA_FIRST
    assert parse_word_order(WordOrder.DATA_FIRST) == WordOrder.DATA_FIRST
    with pytest.raises(ValueError, match="word order"):
        parse_word_order("little-endian")


class TestCouplerConfig:
    def test_defaults(self) -> None:
        cfg = CouplerConfig.from_dict({})
        assert cfg.host is None
        assert cfg.port == 502
        assert cfg.unit_id == 1
        assert cfg.reconnect_delay == 5.0
        assert cfg.poll_rate_ms == 1000
        assert cfg.min_tick_ms == 50
        assert cfg.word_order == WordOrder.STATUS_FIRST
        assert cfg.base_addresses == {}

    def test_camel_case_keys(self) -> None:
        cfg = CouplerConfig.from_dict(
            {
                "host": "192.168.1.20",
                "port": "1502",
                "unitId": 3,
                "reconnectDelay": 2.5,
                "pollRate": 250,
                "wordOrder": "data-status",
                "baseAddresses": {"inputRegisters": 32},
            }
        )
        assert cfg.host == "192.168.1.20"
        assert cfg.port == 1502
        assert cfg.unit_id == 3
        assert cfg.reconnect_delay == 2.5
        assert cfg.poll_rate_ms == 250
        assert cfg.word_order == WordOrder.DATA_FIRST
        assert cfg.base_addresses == {ModbusTable.INPUT_REGISTER: 32}

    def test_single_base_address_applies_to_all_tables(self) -> None:
        cfg = CouplerConfig.from_dict({"baseAddress": 10, "baseAddresses": {"coils": 0}})
        assert cfg.base_addresses[ModbusTable.DISCRETE_INPUT] == 10
        assert cfg.base_addresses[ModbusTable.COIL] == 0

    @pytest.mark.parametrize(
        "raw",
        [
            {"port": "abc"},
            {"reconnectDelay": 0},
            {"pollRate": -5},
            {"wordOrder": "sideways"},
            {"baseAddress": -1},
        ],
    )
    def test_invalid(self, raw: dict) -> None:
        with pytest.raises(ConfigError):
            CouplerConfig.from_dict(raw)

    def test_with_overrides_skips_none(self) -> None:
        cfg = CouplerConfig(host="a", port=502)
        out = cfg.with_overrides(host=None, port=1502)
        assert out.host == "a"
        assert out.port == 1502
        assert cfg.port == 502


class TestLoadCardFile:
    def test_bare_list(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, [{"type": "KL1808"}, {"type": "KL3208"}])
        cfg, entries = load_card_file(path)
        assert cfg.host is None
        assert len(entries) == 2

    def test_object_with_coupler(self, tmp_path: Path) -> None:
        path = write_json(tmp_path, {"coupler": {"host": "10.0.0.9"}, "cards": [{"type": "KL2408"}]})
        cfg, entries = load_card_file(path)
        assert cfg.host == "10.0.0.9"
        assert entries == [{"type": "KL2408"}]

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_card_file(tmp_path / "nope.json")

    def test_bad_json(self, tmp_path: Path) -> None:
        path = tmp_path / "cards.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigError, match="not valid JSON"):
            load_card_file(path)

    @pytest.mark.parametrize("data", ["cards", {"cards": {"type": "KL1808"}}, {"cards": [], "coupler": "x"}])
    def test_wrong_shape(self, tmp_path: Path, data: object) -> None:
        with pytest.raises(ConfigError):
            load_card_file(write_json(tmp_path, data))


class TestBuildSettings:
    def test_common_fields(self) -> None:
        s = build_settings(
            {"type": "KL2408", "pollRate": 200, "pollable": "yes", "readOnWrite": True, "units": "state"},
            CARD_MODELS["KL2408"],
            8,
        )
        assert s.poll_rate_ms == 200
        assert s.pollable is True
        assert s.read_on_write is True
        assert s.units == "state"

    def test_settings_block_wins_over_entry(self) -> None:
        s = build_settings(
            {"type": "KL3208", "pollRate": 200, "settings": {"pollRate": 500}},
            CARD_MODELS["KL3208"],
            8,
        )
        assert s.poll_rate_ms == 500

    @pytest.mark.parametrize("rate", [0, -10, "fast", 1.5])
    def test_invalid_poll_rate(self, rate: object) -> None:
        with pytest.raises(InvalidSettingsError):
            build_settings({"pollRate": rate}, CARD_MODELS["KL1808"], 8)

    def test_temperature_defaults(self) -> None:
        s = build_settings({}, CARD_MODELS["KL3204"], 4)
        assert s.sensors == ("pt1000",) * 4
        assert s.custom_min == (None,) * 4
        assert s.decimals == 2

    def test_per_channel_forms(self) -> None:
        model = CARD_MODELS["KL3204"]
        assert build_settings({"sensors": "ni1000"}, model, 4).sensors == ("ni1000",) * 4
        assert build_settings({"sensors": ["pt100", "Ni100"]}, model, 4).sensors == (
            "pt100",
            "ni100",
            "pt1000",
            "pt1000",
        )
        assert build_settings({"customMax": {"3": 90}}, model, 4).custom_max == (None, None, 90.0, None)

    @pytest.mark.parametrize(
        "entry",
        [
            {"sensors": "pt9999"},
            {"sensors": ["pt100"] * 5},
            {"customMin": {"5": 0}},
            {"customMin": {"x": 0}},
            {"sensors": "custom", "customMin": 0},
            {"customMin": 50, "customMax": 10},
            {"customMin": "cold"},
            {"decimals": -1},
        ],
    )
    def test_invalid_temperature_settings(self, entry: dict) -> None:
        with pytest.raises(InvalidSettingsError):
            build_settings(entry, CARD_MODELS["KL3204"], 4)

    def test_voltage_defaults(self) -> None:
        s = build_settings({}, CARD_MODELS["KL3468"], 8)
        assert s.band == VoltageBand.V05_10
        assert (s.min_v, s.max_v) == (0.5, 10.0)
        assert s.adapt_detect is True
        assert (s.adapt_raw, s.adapt_tol) == (1648, 80)
        assert s.decimals == 1

    def test_voltage_band_limits(self) -> None:
        model = CARD_MODELS["KL3464"]
        two = build_settings({"range": "2-10V"}, model, 4)
        assert (two.min_v, two.max_v) == (2.0, 10.0)
        assert two.adapt_detect is False
        custom = build_settings({"range": "custom", "minV": 1, "maxV": 4}, model, 4)
        assert (custom.min_v, custom.max_v) == (1.0, 4.0)

    @pytest.mark.parametrize(
        "entry",
        [
            {"range": "4-20mA"},
            {"range": "custom", "minV": 5, "maxV": 5},
            {"adaptTol": -1},
            {"adaptDetect": "sometimes"},
            {"fullScaleV": 0},
        ],
    )
    def test_invalid_voltage_settings(self, entry: dict) -> None:
        with pytest.raises(InvalidSettingsError):
            build_settings(entry, CARD_MODELS["KL3464"], 4)

    def test_word_order_override(self) -> None:
        s = build_settings({"wordOrder": "data-status"}, CARD_MODELS["KL3204"], 4, WordOrder.STATUS_FIRST)
        assert s.word_order == WordOrder.DATA_FIRST
        s = build_settings({}, CARD_MODELS["KL3204"], 4, WordOrder.DATA_FIRST)
        assert s.word_order == WordOrder.DATA_FIRST
        with pytest.raises(InvalidSettingsError):
            build_settings({"wordOrder": "odd"}, CARD_MODELS["KL3204"], 4)

    def test_settings_must_be_object(self) -> None:
        with pytest.raises(InvalidSettingsError):
            build_settings({"settings": [1, 2]}, CARD_MODELS["KL1808"], 8)
