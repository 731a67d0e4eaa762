"""Core data model: register kinds, card models, per-card settings, descriptors and readings."""

import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping


class ModbusTable(str, Enum):
    """Modbus tables a coupler exposes its terminals in."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    INPUT_REGISTER = "input_register"


# Modbus function code used to read each table.
READ_FUNCTION_CODE: Mapping[ModbusTable, int] = MappingProxyType(
    {
        ModbusTable.COIL: 1,
        ModbusTable.DISCRETE_INPUT: 2,
        ModbusTable.INPUT_REGISTER: 4,
    }
)

READ_FUNCTION_NAME: Mapping[ModbusTable, str] = MappingProxyType(
    {
        ModbusTable.COIL: "read_coils",
        ModbusTable.DISCRETE_INPUT: "read_discrete_inputs",
        ModbusTable.INPUT_REGISTER: "read_input_registers",
    }
)

WRITE_COIL_FUNCTION_CODE = 5


class CardFamily(str, Enum):
    """Decoder family of a terminal."""

    DIGITAL_INPUT = "digital-input"
    DIGITAL_OUTPUT = "digital-output"
    ANALOG_TEMPERATURE = "analog-temperature"
    ANALOG_VOLTAGE = "analog-voltage"


class Direction(str, Enum):
    INPUT = "input"
    OUTPUT = "output"


class WordOrder(str, Enum):
    """Order of the two words that make up one analog channel."""

    STATUS_FIRST = "status-data"
    DATA_FIRST = "data-status"


class ChannelState(str, Enum):
    """Outcome of decoding one channel."""

    OK = "ok"
    INVALID = "invalid"
    MISSING = "missing"
    OUT_OF_RANGE = "out_of_range"
    ADAPTING = "adapting"


class ConnectionState(str, Enum):
    """Transport session state, owned by ConnectionManager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_PENDING = "reconnect_pending"


class VoltageBand(str, Enum):
    """Signal band used to scale volts into percent."""

    V0_10 = "0-10V"
    V05_10 = "0.5-10V"
    V2_10 = "2-10V"
    CUSTOM = "custom"


@dataclass(frozen=True)
class CardModel:
    """Fixed layout of one terminal model."""

    name: str
    family: CardFamily
    channels: int
    words_per_channel: int
    table: ModbusTable
    readback_table: ModbusTable | None = None

    @property
    def direction(self) -> Direction:
        if self.family == CardFamily.DIGITAL_OUTPUT:
            return Direction.OUTPUT
        return Direction.INPUT

    @property
    def bit_based(self) -> bool:
        return self.table in (ModbusTable.COIL, ModbusTable.DISCRETE_INPUT)


def _model(name: str, family: CardFamily, channels: int) -> CardModel:
    if family == CardFamily.DIGITAL_INPUT:
        return CardModel(name, family, channels, 1, ModbusTable.DISCRETE_INPUT)
    if family == CardFamily.DIGITAL_OUTPUT:
        return CardModel(name, family, channels, 1, ModbusTable.COIL, readback_table=ModbusTable.COIL)
    return CardModel(name, family, channels, 2, ModbusTable.INPUT_REGISTER)


CARD_MODELS: Mapping[str, CardModel] = MappingProxyType(
    {
        m.name: m
        for m in (
            _model("KL1804", CardFamily.DIGITAL_INPUT, 4),
            _model("KL1808", CardFamily.DIGITAL_INPUT, 8),
            _model("KL2404", CardFamily.DIGITAL_OUTPUT, 4),
            _model("KL2408", CardFamily.DIGITAL_OUTPUT, 8),
            _model("KL3204", CardFamily.ANALOG_TEMPERATURE, 4),
            _model("KL3208", CardFamily.ANALOG_TEMPERATURE, 8),
            _model("KL3464", CardFamily.ANALOG_VOLTAGE, 4),
            _model("KL3468", CardFamily.ANALOG_VOLTAGE, 8),
        )
    }
)

# A bare family tag resolves to the 8-channel model of that family.
FAMILY_DEFAULT_MODEL: Mapping[CardFamily, str] = MappingProxyType(
    {
        CardFamily.DIGITAL_INPUT: "KL1808",
        CardFamily.DIGITAL_OUTPUT: "KL2408",
        CardFamily.ANALOG_TEMPERATURE: "KL3208",
        CardFamily.ANALOG_VOLTAGE: "KL3468",
    }
)


@dataclass(frozen=True)
class CardSettings:
    """
    Per-card settings, built once at registry time.

    Per-channel tuples hold one entry per channel; a custom min/max of None
    means the sensor preset range applies.
    """

    poll_rate_ms: int | None = None
    pollable: bool = False
    read_on_write: bool = False
    units: str = ""
    decimals: int = 2
    word_order: WordOrder = WordOrder.STATUS_FIRST
    # temperature
    sensors: tuple[str, ...] = ()
    custom_min: tuple[float | None, ...] = ()
    custom_max: tuple[float | None, ...] = ()
    # voltage
    band: VoltageBand = VoltageBand.V05_10
    min_v: float = 0.5
    max_v: float = 10.0
    adapt_detect: bool = True
    adapt_raw: int = 1648
    adapt_tol: int = 80
    full_scale_v: float = 10.0
    raw_max: int = 32767


@dataclass(eq=False)
class CardDescriptor:
    """One registered card with its address range. Only last_poll changes after build."""

    slot: int
    model: CardModel
    label: str
    filter: str
    channels: int
    start: int
    quantity: int
    settings: CardSettings = field(default_factory=CardSettings)
    last_poll: float | None = None

    @property
    def family(self) -> CardFamily:
        return self.model.family

    @property
    def direction(self) -> Direction:
        return self.model.direction

    @property
    def table(self) -> ModbusTable:
        return self.model.table

    @property
    def read_table(self) -> ModbusTable:
        """Table polled for this card (outputs are read back from coils)."""
        return self.model.readback_table or self.model.table

    @property
    def words_per_channel(self) -> int:
        return self.model.words_per_channel

    @property
    def end(self) -> int:
        """One past the last address of the card."""
        return self.start + self.quantity

    @property
    def topic(self) -> str:
        return self.filter or self.label or f"slot/{self.slot}/{self.model.name}"

    @property
    def name(self) -> str:
        return self.label or f"{self.model.name}#{self.slot}"


@dataclass(frozen=True)
class ChannelReading:
    """Decoded value of one channel; an outbound event, never stored."""

    card: str
    model: str
    slot: int
    topic: str
    channel: int
    state: ChannelState
    value: bool | float | None = None
    raw: Any = None
    address: int | None = None
    units: str = ""
    celsius: float | None = None
    fahrenheit: float | None = None
    resistance: float | None = None
    volts: float | None = None
    percent: float | None = None
    sensor: str | None = None
    status_word: int | None = None
    status_text: str | None = None
    error: str | None = None
    timestamp: float = field(default_factory=time.time, compare=False)

    @property
    def ok(self) -> bool:
        return self.state == ChannelState.OK

    def to_dict(self) -> dict[str, Any]:
        """Event shape; family-specific fields are present only when set."""
        out: dict[str, Any] = {
            "card": self.card,
            "model": self.model,
            "slot": self.slot,
            "topic": f"{self.topic}/{self.channel}",
            "channel": self.channel,
            "state": self.state.value,
            "value": self.value,
            "raw": self.raw,
            "address": self.address,
        }
        for key in (
            "units",
            "celsius",
            "fahrenheit",
            "resistance",
            "volts",
            "percent",
            "sensor",
            "status_word",
            "status_text",
            "error",
        ):
            val = getattr(self, key)
            if val is not None and val != "":
                out[key] = val
        if self.state == ChannelState.ADAPTING:
            out["percent"] = None
        out["timestamp"] = self.timestamp
        return out
