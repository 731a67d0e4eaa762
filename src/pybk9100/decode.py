"""
Channel decoders: raw coil/register windows to per-channel readings.

Every decoder is a pure function of (card, window) and returns one
ChannelReading per channel. Bad data never raises: a window shorter than the
card needs yields ``missing`` readings, a word that is not a 16-bit number
yields ``invalid``.
"""

import math
from types import MappingProxyType
from typing import Any, Mapping, Sequence

from .config import DEFAULT_SENSOR, SENSOR_PRESETS
from .types import (
    CardDescriptor,
    CardFamily,
    ChannelReading,
    ChannelState,
    WordOrder,
)

# Status word of an analog temperature channel.
STATE_MESSAGES: Mapping[int, str] = MappingProxyType(
    {
        0: "OK - Sensor connected",
        65: "No sensor connected",
        66: "Unconfigured",
    }
)

TEMPERATURE_UNITS = "°C / °F"
RESISTANCE_UNITS = "Ω"
VOLTAGE_UNITS = "V"


def to_signed(value: int) -> int:
    """Convert unsigned 16-bit to signed."""
    if value > 32767:
        return value - 65536
    return value


def from_signed(value: int) -> int:
    """Convert signed 16-bit to unsigned."""
    if value < 0:
        return value + 65536
    return value


def coerce_word(word: Any) -> int | None:
    """Return the word as an int in 0..65535, or None if it is not one."""
    if isinstance(word, bool):
        return int(word)
    if isinstance(word, int):
        num = word
    elif isinstance(word, float):
        if not math.isfinite(word) or word != int(word):
            return None
        num = int(word)
    elif isinstance(word, str):
        try:
            num = int(word.strip(), 0)
        except ValueError:
            return None
    else:
        return None
    if not 0 <= num <= 0xFFFF:
        return None
    return num


def status_message(code: int) -> str:
    return STATE_MESSAGES.get(code, f"Unknown state: {code}")


def sensor_range(card: CardDescriptor, channel: int) -> tuple[float, float]:
    """Valid range for a 1-based channel: custom min/max win over the sensor preset."""
    s = card.settings
    idx = channel - 1
    sensor = s.sensors[idx] if idx < len(s.sensors) else DEFAULT_SENSOR
    lo, hi = SENSOR_PRESETS.get(sensor, (-math.inf, math.inf))
    if idx < len(s.custom_min) and s.custom_min[idx] is not None:
        lo = s.custom_min[idx]
    if idx < len(s.custom_max) and s.custom_max[idx] is not None:
        hi = s.custom_max[idx]
    return lo, hi


def _reading(card: CardDescriptor, channel: int, state: ChannelState, **fields: Any) -> ChannelReading:
    return ChannelReading(
        card=card.name,
        model=card.model.name,
        slot=card.slot,
        topic=card.topic,
        channel=channel,
        state=state,
        **fields,
    )


def error_readings(card: CardDescriptor, message: str) -> list[ChannelReading]:
    """One ``missing`` reading per channel carrying an error (failed read)."""
    return [
        _reading(card, ch, ChannelState.MISSING, address=_address(card, ch), error=message)
        for ch in range(1, card.channels + 1)
    ]


def _address(card: CardDescriptor, channel: int) -> int:
    """Absolute address of a channel's data word or bit."""
    return card.start + (channel - 1) * card.words_per_channel + _data_offset(card)


def _data_offset(card: CardDescriptor) -> int:
    if card.words_per_channel < 2:
        return 0
    return 1 if card.settings.word_order == WordOrder.STATUS_FIRST else 0


def _status_offset(card: CardDescriptor) -> int | None:
    if card.words_per_channel < 2:
        return None
    return 0 if card.settings.word_order == WordOrder.STATUS_FIRST else 1


# ---------------------------------------------------------------------------
# Digital
# ---------------------------------------------------------------------------


def _digital_channel(card: CardDescriptor, ch: int, raw: Any) -> ChannelReading:
    address = card.start + ch - 1
    word = coerce_word(raw)
    if word is None:
        return _reading(card, ch, ChannelState.INVALID, raw=raw, address=address)
    return _reading(card, ch, ChannelState.OK, value=word != 0, raw=word, address=address)


def decode_digital(card: CardDescriptor, window: Sequence[Any]) -> list[ChannelReading]:
    """One bit per channel, value = raw != 0."""
    out: list[ChannelReading] = []
    for ch in range(1, card.channels + 1):
        if ch - 1 >= len(window):
            out.append(_reading(card, ch, ChannelState.MISSING, address=card.start + ch - 1))
            continue
        out.append(_digital_channel(card, ch, window[ch - 1]))
    return out


def decode_readback(card: CardDescriptor, channel: int, window: Sequence[Any]) -> ChannelReading:
    """Decode a single-bit read-back of one output channel."""
    if not window:
        return _reading(card, channel, ChannelState.MISSING, address=card.start + channel - 1)
    return _digital_channel(card, channel, window[0])


def readback_error(card: CardDescriptor, channel: int, message: str) -> ChannelReading:
    """``missing`` reading for an output channel whose read-back failed."""
    return _reading(card, channel, ChannelState.MISSING, address=card.start + channel - 1, error=message)


# ---------------------------------------------------------------------------
# Analog temperature
# ---------------------------------------------------------------------------


def _temperature_channel(card: CardDescriptor, ch: int, data: Any, status: Any) -> ChannelReading:
    s = card.settings
    idx = ch - 1
    sensor = s.sensors[idx] if idx < len(s.sensors) else DEFAULT_SENSOR
    address = _address(card, ch)

    status_word = coerce_word(status)
    status_fields: dict[str, Any] = {}
    if status_word is not None:
        status_fields = {"status_word": status_word, "status_text": status_message(status_word)}

    word = coerce_word(data)
    if word is None:
        return _reading(card, ch, ChannelState.INVALID, raw=data, address=address, sensor=sensor, **status_fields)

    signed = to_signed(word)
    lo, hi = sensor_range(card, ch)
    if sensor.startswith("res_"):
        ohms = round(signed / 100, s.decimals)
        state = ChannelState.OK if lo <= ohms <= hi else ChannelState.OUT_OF_RANGE
        return _reading(
            card,
            ch,
            state,
            value=ohms,
            raw=signed,
            address=address,
            units=s.units or RESISTANCE_UNITS,
            resistance=ohms,
            sensor=sensor,
            **status_fields,
        )

    celsius = signed / 100
    fahrenheit = celsius * 9 / 5 + 32
    state = ChannelState.OK if lo <= celsius <= hi else ChannelState.OUT_OF_RANGE
    celsius = round(celsius, s.decimals)
    fahrenheit = round(fahrenheit, s.decimals)
    value = fahrenheit if s.units.upper() in ("F", "°F") else celsius
    return _reading(
        card,
        ch,
        state,
        value=value,
        raw=signed,
        address=address,
        units=s.units or TEMPERATURE_UNITS,
        celsius=celsius,
        fahrenheit=fahrenheit,
        sensor=sensor,
        **status_fields,
    )


def decode_temperature(card: CardDescriptor, window: Sequence[Any]) -> list[ChannelReading]:
    """
    Two words per channel: a status word and a signed data word in hundredths
    of a degree (or of an ohm for ``res_*`` sensors), ordered per the card's
    word order. The status word is reported next to the range-based state.
    """
    data_off = _data_offset(card)
    status_off = _status_offset(card)
    step = card.words_per_channel
    out: list[ChannelReading] = []
    for ch in range(1, card.channels + 1):
        base = (ch - 1) * step
        data_idx = base + data_off
        if data_idx >= len(window):
            out.append(_reading(card, ch, ChannelState.MISSING, address=_address(card, ch)))
            continue
        status = None
        if status_off is not None and base + status_off < len(window):
            status = window[base + status_off]
        out.append(_temperature_channel(card, ch, window[data_idx], status))
    return out


# ---------------------------------------------------------------------------
# Analog voltage / position
# ---------------------------------------------------------------------------


def raw_to_volts(raw: int, full_scale_v: float = 10.0, raw_max: int = 32767) -> float:
    """Signed raw word to volts; raw_max maps to full scale."""
    return to_signed(raw) / raw_max * full_scale_v


def to_percent(volts: float, min_v: float, max_v: float, decimals: int = 1) -> float | None:
    """Position of volts within [min_v, max_v] in percent, clamped to 0..100."""
    if max_v <= min_v:
        return None
    p = (volts - min_v) / (max_v - min_v) * 100.0
    p = max(0.0, min(100.0, p))
    return round(p, decimals)


def is_adapting(raw: int, adapt_raw: int, adapt_tol: int) -> bool:
    """True if raw is within the closed tolerance window around the adaptation value."""
    return abs(raw - adapt_raw) <= adapt_tol


def _voltage_channel(card: CardDescriptor, ch: int, data: Any, status: Any) -> ChannelReading:
    s = card.settings
    address = _address(card, ch)
    status_word = coerce_word(status)
    word = coerce_word(data)
    if word is None:
        return _reading(card, ch, ChannelState.INVALID, raw=data, address=address, status_word=status_word)

    volts = raw_to_volts(word, s.full_scale_v, s.raw_max)
    adapting = s.adapt_detect and is_adapting(word, s.adapt_raw, s.adapt_tol)
    percent = None if adapting else to_percent(volts, s.min_v, s.max_v, s.decimals)
    return _reading(
        card,
        ch,
        ChannelState.ADAPTING if adapting else ChannelState.OK,
        value=percent,
        raw=word,
        address=address,
        units=s.units or VOLTAGE_UNITS,
        volts=round(volts, 3),
        percent=percent,
        status_word=status_word,
    )


def decode_voltage(card: CardDescriptor, window: Sequence[Any]) -> list[ChannelReading]:
    """
    One signed data word per channel (plus a status word on two-word cards),
    scaled to volts and to percent of the configured band. A raw word near
    the adaptation value marks the channel ``adapting`` with no percent.
    """
    data_off = _data_offset(card)
    status_off = _status_offset(card)
    step = card.words_per_channel
    out: list[ChannelReading] = []
    for ch in range(1, card.channels + 1):
        base = (ch - 1) * step
        data_idx = base + data_off
        if data_idx >= len(window):
            out.append(_reading(card, ch, ChannelState.MISSING, address=_address(card, ch)))
            continue
        status = None
        if status_off is not None and base + status_off < len(window):
            status = window[base + status_off]
        out.append(_voltage_channel(card, ch, window[data_idx], status))
    return out


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def decode_card(card: CardDescriptor, window: Sequence[Any]) -> list[ChannelReading]:
    """Decode a card's full window with the decoder of its family."""
    family = card.family
    if family in (CardFamily.DIGITAL_INPUT, CardFamily.DIGITAL_OUTPUT):
        return decode_digital(card, window)
    if family == CardFamily.ANALOG_TEMPERATURE:
        return decode_temperature(card, window)
    if family == CardFamily.ANALOG_VOLTAGE:
        return decode_voltage(card, window)
    raise ValueError(f"No decoder for card family {family!r}")
