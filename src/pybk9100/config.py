"""Coupler configuration, card-file loading, and per-card settings construction."""

import json
import logging
import math
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError, InvalidSettingsError
from .types import CardFamily, CardModel, CardSettings, ModbusTable, VoltageBand, WordOrder

logger = logging.getLogger(__name__)

DEFAULT_PORT = 502
DEFAULT_POLL_RATE_MS = 1000
MIN_TICK_MS = 50
DEFAULT_RECONNECT_DELAY_S = 5.0

# Temperature sensor presets: valid measuring range in °C, or ohms for res_* presets.
SENSOR_PRESETS: dict[str, tuple[float, float]] = {
    "pt100": (-200.0, 850.0),
    "pt200": (-200.0, 850.0),
    "pt500": (-200.0, 850.0),
    "pt1000": (-200.0, 850.0),
    "ni100": (-60.0, 250.0),
    "ni120": (-60.0, 320.0),
    "ni1000": (-60.0, 250.0),
    "ntc10k": (-40.0, 150.0),
    "ntc20k": (-40.0, 150.0),
    "res_10_1200": (10.0, 1200.0),
    "res_10_5000": (10.0, 5000.0),
}
CUSTOM_SENSOR = "custom"
DEFAULT_SENSOR = "pt1000"

_BAND_LIMITS: dict[VoltageBand, tuple[float, float]] = {
    VoltageBand.V0_10: (0.0, 10.0),
    VoltageBand.V05_10: (0.5, 10.0),
    VoltageBand.V2_10: (2.0, 10.0),
}

_WORD_ORDER_ALIASES: dict[str, WordOrder] = {
    "status-data": WordOrder.STATUS_FIRST,
    "status-first": WordOrder.STATUS_FIRST,
    "interleaved-status-data": WordOrder.STATUS_FIRST,
    "data-status": WordOrder.DATA_FIRST,
    "data-first": WordOrder.DATA_FIRST,
}

# Card-file keys for the base address of each table.
_BASE_KEYS: dict[str, ModbusTable] = {
    "coils": ModbusTable.COIL,
    "discreteInputs": ModbusTable.DISCRETE_INPUT,
    "inputRegisters": ModbusTable.INPUT_REGISTER,
}


def parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    v = value.lower().strip()
    if v in ("true", "1", "on", "yes"):
        return True
    if v in ("false", "0", "off", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def parse_word_order(value: str | WordOrder) -> WordOrder:
    if isinstance(value, WordOrder):
        return value
    order = _WORD_ORDER_ALIASES.get(str(value).strip().lower())
    if order is None:
        raise ValueError(f"Invalid word order: {value!r} (expected status-data or data-status)")
    return order


@dataclass
class CouplerConfig:
    """Connection and scheduling parameters for one coupler."""

    host: str | None = None
    port: int = DEFAULT_PORT
    unit_id: int = 1
    timeout: float = 3.0
    retries: int = 3
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY_S
    poll_rate_ms: int = DEFAULT_POLL_RATE_MS
    min_tick_ms: int = MIN_TICK_MS
    word_order: WordOrder = WordOrder.STATUS_FIRST
    base_addresses: dict[ModbusTable, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "CouplerConfig":
        """Build from a card file's ``coupler`` block (camelCase keys)."""
        try:
            cfg = cls(
                host=raw.get("host"),
                port=int(raw.get("port", DEFAULT_PORT)),
                unit_id=int(raw.get("unitId", 1)),
                timeout=float(raw.get("timeout", 3.0)),
                retries=int(raw.get("retries", 3)),
                reconnect_delay=float(raw.get("reconnectDelay", DEFAULT_RECONNECT_DELAY_S)),
                poll_rate_ms=int(raw.get("pollRate", DEFAULT_POLL_RATE_MS)),
                min_tick_ms=int(raw.get("minTick", MIN_TICK_MS)),
                word_order=parse_word_order(raw.get("wordOrder", WordOrder.STATUS_FIRST)),
                base_addresses=_parse_bases(raw),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid coupler settings: {e}") from e
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.reconnect_delay <= 0:
            raise ConfigError(f"Reconnect delay must be positive, got {self.reconnect_delay}")
        if self.poll_rate_ms <= 0:
            raise ConfigError(f"Poll rate must be positive, got {self.poll_rate_ms}")
        if self.min_tick_ms <= 0:
            raise ConfigError(f"Minimum tick must be positive, got {self.min_tick_ms}")

    def with_overrides(self, **overrides: Any) -> "CouplerConfig":
        """Copy with every non-None override applied (CLI options over file values)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _parse_bases(raw: dict[str, Any]) -> dict[ModbusTable, int]:
    bases: dict[ModbusTable, int] = {}
    if "baseAddress" in raw:
        base = int(raw["baseAddress"])
        bases = {table: base for table in ModbusTable}
    block = raw.get("baseAddresses") or {}
    for key, table in _BASE_KEYS.items():
        if key in block:
            bases[table] = int(block[key])
    for table, base in bases.items():
        if base < 0:
            raise ValueError(f"Base address for {table.value} must be >= 0, got {base}")
    return bases


def load_card_file(path: str | Path) -> tuple[CouplerConfig, list[dict[str, Any]]]:
    """
    Load a JSON card file.

    Accepts a bare list of card entries, or an object with ``cards`` and an
    optional ``coupler`` block. Returns (coupler config, card entries).
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"Card file not found: {path}") from None
    except json.JSONDecodeError as e:
        raise ConfigError(f"Card file {path} is not valid JSON: {e}") from e

    if isinstance(data, list):
        coupler_raw: dict[str, Any] = {}
        entries = data
    elif isinstance(data, dict):
        coupler_raw = data.get("coupler") or {}
        entries = data.get("cards", [])
    else:
        raise ConfigError(f"Card file {path} must hold a list or an object with 'cards'")

    if not isinstance(entries, list):
        raise ConfigError(f"'cards' in {path} must be a list")
    if not isinstance(coupler_raw, dict):
        raise ConfigError(f"'coupler' in {path} must be an object")

    logger.debug("Loaded %d card entries from %s", len(entries), path)
    return CouplerConfig.from_dict(coupler_raw), entries


# ---------------------------------------------------------------------------
# Per-card settings
# ---------------------------------------------------------------------------


def _merged(entry: dict[str, Any]) -> dict[str, Any]:
    """Entry-level keys with the ``settings`` block layered on top."""
    merged = {k: v for k, v in entry.items() if k != "settings"}
    settings = entry.get("settings")
    if settings is None:
        return merged
    if not isinstance(settings, dict):
        raise InvalidSettingsError(f"'settings' must be an object, got {type(settings).__name__}")
    merged.update(settings)
    return merged


def _number(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidSettingsError(f"{key} must be a number, got {value!r}")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise InvalidSettingsError(f"{key} must be a number, got {value!r}") from None
    if not math.isfinite(num):
        raise InvalidSettingsError(f"{key} must be finite, got {value!r}")
    return num


def _integer(raw: dict[str, Any], key: str, default: int) -> int:
    num = _number(raw, key, default)
    if num != int(num):
        raise InvalidSettingsError(f"{key} must be an integer, got {raw.get(key)!r}")
    return int(num)


def _flag(raw: dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        try:
            return parse_bool(value)
        except ValueError:
            raise InvalidSettingsError(f"{key} must be a boolean, got {value!r}") from None
    raise InvalidSettingsError(f"{key} must be a boolean, got {value!r}")


def _per_channel(value: Any, channels: int, key: str) -> list[Any]:
    """
    Expand a per-channel setting: a scalar applies to all channels, a list is
    positional, a dict maps 1-based channel numbers to values.
    """
    if value is None:
        return [None] * channels
    if isinstance(value, list):
        if len(value) > channels:
            raise InvalidSettingsError(f"{key} has {len(value)} entries for {channels} channels")
        return list(value) + [None] * (channels - len(value))
    if isinstance(value, dict):
        out: list[Any] = [None] * channels
        for ch_key, v in value.items():
            try:
                ch = int(ch_key)
            except (TypeError, ValueError):
                raise InvalidSettingsError(f"{key} has non-numeric channel key {ch_key!r}") from None
            if not 1 <= ch <= channels:
                raise InvalidSettingsError(f"{key} channel {ch} outside 1..{channels}")
            out[ch - 1] = v
        return out
    return [value] * channels


def _channel_limits(raw: dict[str, Any], channels: int, key: str) -> tuple[float | None, ...]:
    out: list[float | None] = []
    for v in _per_channel(raw.get(key), channels, key):
        if v is None or v == "":
            out.append(None)
            continue
        out.append(_number({key: v}, key, 0.0))
    return tuple(out)


def _temperature_fields(raw: dict[str, Any], channels: int) -> dict[str, Any]:
    sensors_raw = raw.get("sensors", raw.get("sensor"))
    sensors: list[str] = []
    for ch, name in enumerate(_per_channel(sensors_raw, channels, "sensors"), start=1):
        sensor = str(name).strip().lower() if name else DEFAULT_SENSOR
        if sensor != CUSTOM_SENSOR and sensor not in SENSOR_PRESETS:
            raise InvalidSettingsError(f"Unknown sensor {name!r} on channel {ch}")
        sensors.append(sensor)

    custom_min = _channel_limits(raw, channels, "customMin")
    custom_max = _channel_limits(raw, channels, "customMax")
    for ch in range(channels):
        lo, hi = custom_min[ch], custom_max[ch]
        if sensors[ch] == CUSTOM_SENSOR and (lo is None or hi is None):
            raise InvalidSettingsError(f"Channel {ch + 1}: custom sensor needs customMin and customMax")
        if lo is not None and hi is not None and hi <= lo:
            raise InvalidSettingsError(f"Channel {ch + 1}: customMax {hi} must exceed customMin {lo}")
    return {
        "sensors": tuple(sensors),
        "custom_min": custom_min,
        "custom_max": custom_max,
        "decimals": _integer(raw, "decimals", 2),
    }


def _voltage_fields(raw: dict[str, Any]) -> dict[str, Any]:
    band_raw = raw.get("range", VoltageBand.V05_10.value)
    try:
        band = VoltageBand(str(band_raw).strip())
    except ValueError:
        raise InvalidSettingsError(f"Unknown range {band_raw!r}") from None
    if band == VoltageBand.CUSTOM:
        min_v = _number(raw, "minV", 0.5)
        max_v = _number(raw, "maxV", 10.0)
    else:
        min_v, max_v = _BAND_LIMITS[band]
    if max_v <= min_v:
        raise InvalidSettingsError(f"maxV {max_v} must exceed minV {min_v}")

    full_scale = _number(raw, "fullScaleV", 10.0)
    raw_max = _integer(raw, "rawMax", 32767)
    if full_scale <= 0 or raw_max <= 0:
        raise InvalidSettingsError("fullScaleV and rawMax must be positive")
    adapt_tol = _integer(raw, "adaptTol", 80)
    if adapt_tol < 0:
        raise InvalidSettingsError(f"adaptTol must be >= 0, got {adapt_tol}")
    return {
        "band": band,
        "min_v": min_v,
        "max_v": max_v,
        "adapt_detect": _flag(raw, "adaptDetect", band == VoltageBand.V05_10),
        "adapt_raw": _integer(raw, "adaptRaw", 1648),
        "adapt_tol": adapt_tol,
        "full_scale_v": full_scale,
        "raw_max": raw_max,
        "decimals": _integer(raw, "decimals", 1),
    }


def build_settings(
    entry: dict[str, Any],
    model: CardModel,
    channels: int,
    default_word_order: WordOrder = WordOrder.STATUS_FIRST,
) -> CardSettings:
    """
    Build the immutable settings of one card entry.

    Values from the entry's ``settings`` block win over entry-level keys;
    custom ranges win over sensor/band presets. Raises InvalidSettingsError.
    """
    raw = _merged(entry)

    poll_rate: int | None = None
    if raw.get("pollRate") not in (None, ""):
        poll_rate = _integer(raw, "pollRate", 0)
        if poll_rate <= 0:
            raise InvalidSettingsError(f"pollRate must be positive, got {poll_rate}")

    try:
        word_order = parse_word_order(raw.get("wordOrder", default_word_order))
    except ValueError as e:
        raise InvalidSettingsError(str(e)) from None

    fields: dict[str, Any] = {
        "poll_rate_ms": poll_rate,
        "pollable": _flag(raw, "pollable", False),
        "read_on_write": _flag(raw, "readOnWrite", False),
        "units": str(raw.get("units") or ""),
        "word_order": word_order,
    }
    if model.family == CardFamily.ANALOG_TEMPERATURE:
        fields.update(_temperature_fields(raw, channels))
    elif model.family == CardFamily.ANALOG_VOLTAGE:
        fields.update(_voltage_fields(raw))

    if fields.get("decimals", 2) < 0:
        raise InvalidSettingsError(f"decimals must be >= 0, got {fields['decimals']}")
    return CardSettings(**fields)
