"""Exceptions for pybk9100: card configuration, Modbus I/O and write validation."""


class PyBK9100Error(Exception):
    """Base exception for pybk9100."""

    pass


class ConfigError(PyBK9100Error):
    """Raised when a card entry or coupler setting cannot be used."""

    def __init__(self, message: str, *, slot: int | None = None, entry: dict | None = None) -> None:
        self.slot = slot
        self.entry = entry
        super().__init__(message)


class UnknownCardTypeError(ConfigError):
    """Raised when a card entry names a type that is not in the model table."""

    def __init__(self, card_type: str, *, slot: int | None = None, entry: dict | None = None) -> None:
        self.card_type = card_type
        super().__init__(f"Unknown card type: {card_type!r}", slot=slot, entry=entry)


class InvalidSettingsError(ConfigError):
    """Raised when a card's settings are malformed (bad range, bad sensor, bad number)."""

    pass


class ModbusIOError(PyBK9100Error):
    """Raised when a Modbus read/write fails (wraps pymodbus or connection errors)."""

    def __init__(
        self,
        message: str,
        *,
        tag: str | None = None,
        table: str | None = None,
        offset: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.tag = tag
        self.table = table
        self.offset = offset
        self.cause = cause
        super().__init__(message)


class WriteRejectedError(PyBK9100Error):
    """Raised when a write command fails validation; nothing was sent to the coupler."""

    def __init__(self, message: str, *, target: object = None, channel: int | None = None) -> None:
        self.target = target
        self.channel = channel
        super().__init__(message)


class UnknownCardError(WriteRejectedError):
    """Raised when a write command names no known output card."""

    def __init__(self, target: object, message: str | None = None) -> None:
        super().__init__(message or f"Unknown output card: {target!r}", target=target)


class ChannelRangeError(WriteRejectedError):
    """Raised when a write command's channel is outside 1..channels of the card."""

    def __init__(self, target: object, channel: int, channels: int) -> None:
        self.channels = channels
        super().__init__(
            f"Channel {channel} out of range 1..{channels} for {target!r}",
            target=target,
            channel=channel,
        )
