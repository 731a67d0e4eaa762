"""pybk9100: Beckhoff BK9100 Bus Terminal polling, decoding and writes via pymodbus."""

__version__ = "0.1.0"

from .config import CouplerConfig, load_card_file
from .connection import ConnectionManager
from .decode import decode_card, decode_digital, decode_temperature, decode_voltage
from .dispatch import WriteCommand, WriteDispatcher, coerce_bool
from .engine import CouplerEngine
from .errors import (
    ChannelRangeError,
    ConfigError,
    InvalidSettingsError,
    ModbusIOError,
    PyBK9100Error,
    UnknownCardError,
    UnknownCardTypeError,
    WriteRejectedError,
)
from .registry import CardRegistry
from .scheduler import PollScheduler
from .types import (
    CardDescriptor,
    CardFamily,
    CardSettings,
    ChannelReading,
    ChannelState,
    ConnectionState,
    ModbusTable,
    WordOrder,
)

__all__ = [
    "__version__",
    "CouplerConfig",
    "load_card_file",
    "ConnectionManager",
    "decode_card",
    "decode_digital",
    "decode_temperature",
    "decode_voltage",
    "WriteCommand",
    "WriteDispatcher",
    "coerce_bool",
    "CouplerEngine",
    "ChannelRangeError",
    "ConfigError",
    "InvalidSettingsError",
    "ModbusIOError",
    "PyBK9100Error",
    "UnknownCardError",
    "UnknownCardTypeError",
    "WriteRejectedError",
    "CardRegistry",
    "PollScheduler",
    "CardDescriptor",
    "CardFamily",
    "CardSettings",
    "ChannelReading",
    "ChannelState",
    "ConnectionState",
    "ModbusTable",
    "WordOrder",
]
