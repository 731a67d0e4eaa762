"""WriteDispatcher: validated single-coil writes to output cards with optional read-back."""

import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable

from .config import parse_bool
from .connection import ConnectionManager
from .decode import decode_readback, readback_error
from .errors import ChannelRangeError, ModbusIOError, UnknownCardError, WriteRejectedError
from .registry import CardRegistry
from .types import CardDescriptor, ChannelReading

logger = logging.getLogger(__name__)

# "<card>/<channel>" or "<card>:<channel>"
_ROUTED_TARGET = re.compile(r"^(?P<card>.+?)[/:](?P<channel>\d+)$")


def coerce_bool(value: Any) -> bool:
    """Coerce a write value: bool, number (non-zero is on) or a true/false string."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            raise ValueError("Invalid boolean value: nan")
        return value != 0
    if isinstance(value, str):
        return parse_bool(value)
    raise ValueError(f"Invalid boolean value: {value!r}")


@dataclass(frozen=True)
class WriteCommand:
    """One coil write: target card, 1-based channel, value."""

    card: Any
    channel: int
    value: bool

    @classmethod
    def parse(cls, command: Any, value: Any = None) -> "WriteCommand":
        """
        Build a command from ``{"card", "channel", "value"}`` or from a routed
        target string such as ``"relays/3"`` plus a separate value.
        Raises WriteRejectedError.
        """
        if isinstance(command, WriteCommand):
            return command
        if isinstance(command, dict):
            if "card" not in command or "channel" not in command:
                raise WriteRejectedError(f"Write command needs 'card' and 'channel': {command!r}")
            target = command["card"]
            channel = command["channel"]
            raw_value = command.get("value", value)
        elif isinstance(command, str):
            m = _ROUTED_TARGET.match(command.strip())
            if not m:
                raise WriteRejectedError(f"Write target {command!r} has no channel suffix", target=command)
            target = m.group("card")
            channel = m.group("channel")
            raw_value = value
        else:
            raise WriteRejectedError(f"Unsupported write command: {command!r}")

        try:
            channel_num = int(channel)
        except (TypeError, ValueError):
            raise WriteRejectedError(f"Invalid channel {channel!r}", target=target) from None
        if isinstance(channel, bool) or (isinstance(channel, float) and channel != channel_num):
            raise WriteRejectedError(f"Invalid channel {channel!r}", target=target)
        if raw_value is None:
            raise WriteRejectedError("Write command has no value", target=target, channel=channel_num)
        try:
            coerced = coerce_bool(raw_value)
        except ValueError as e:
            raise WriteRejectedError(str(e), target=target, channel=channel_num) from None
        return cls(card=target, channel=channel_num, value=coerced)


class WriteDispatcher:
    """
    Resolves write commands to coil addresses and issues them.

    Validation happens before anything reaches the coupler. Cards with
    ``read_on_write`` get an immediate single-coil read at the same address;
    the resulting reading reflects what the device actually holds.
    """

    def __init__(
        self,
        registry: CardRegistry,
        connection: ConnectionManager,
        sink: Callable[[ChannelReading], None] | None = None,
    ) -> None:
        self._registry = registry
        self._connection = connection
        self._sink = sink

    def resolve(self, command: WriteCommand) -> tuple[CardDescriptor, int]:
        """Return (card, absolute coil address) for a command. Raises WriteRejectedError."""
        try:
            card = self._registry.resolve_output(command.card)
        except UnknownCardError:
            logger.warning("Write rejected: unknown output card %r", command.card)
            raise
        if not 1 <= command.channel <= card.channels:
            logger.warning(
                "Write rejected: channel %d outside 1..%d on %s",
                command.channel,
                card.channels,
                card.name,
            )
            raise ChannelRangeError(command.card, command.channel, card.channels)
        return card, card.start + (command.channel - 1)

    def write(self, command: Any, value: Any = None) -> ChannelReading | None:
        """
        Validate and send one write. Returns the read-back reading when the
        card reads on write, else None. Raises WriteRejectedError for invalid
        commands and ModbusIOError when the write itself fails.
        """
        try:
            cmd = WriteCommand.parse(command, value)
        except WriteRejectedError as e:
            logger.warning("Write rejected: %s", e)
            raise
        card, address = self.resolve(cmd)

        self._connection.write_coil(address, cmd.value, tag=f"{card.name}/{cmd.channel}")
        logger.info("Wrote %s channel %d (coil %d) = %s", card.name, cmd.channel, address, cmd.value)

        if not card.settings.read_on_write:
            return None
        return self._read_back(card, cmd.channel, address)

    def _read_back(self, card: CardDescriptor, channel: int, address: int) -> ChannelReading:
        table = card.read_table
        try:
            bits = self._connection.read_bits(table, address, 1, tag=f"{card.name}/{channel}")
        except ModbusIOError as e:
            logger.error("Read-back of %s channel %d failed: %s", card.name, channel, e)
            reading = readback_error(card, channel, str(e))
        else:
            reading = decode_readback(card, channel, bits)
        if self._sink is not None:
            try:
                self._sink(reading)
            except Exception:
                logger.exception("Reading sink failed for %s/%d", reading.card, reading.channel)
        return reading
