"""PollScheduler: one background loop reading due cards in order and emitting per-channel readings."""

import logging
import threading
import time
from typing import Callable

from .config import DEFAULT_POLL_RATE_MS, MIN_TICK_MS
from .connection import ConnectionManager
from .decode import decode_card, error_readings
from .errors import ModbusIOError
from .registry import CardRegistry
from .types import CardDescriptor, ChannelReading, ConnectionState

logger = logging.getLogger(__name__)

ReadingSink = Callable[[ChannelReading], None]


class PollScheduler:
    """
    Periodic reader for all pollable cards of one coupler.

    The loop ticks at the smallest card poll rate (floored at the minimum
    tick). On every tick each due card gets exactly one read, in
    configuration order, and every channel's reading goes to the sink as its
    own event. Reads go through the ConnectionManager, so they never overlap
    with each other or with writes. The loop idles while the connection is
    down and resumes when it is told the connection is back.
    """

    def __init__(
        self,
        registry: CardRegistry,
        connection: ConnectionManager,
        sink: ReadingSink,
        default_poll_rate_ms: int = DEFAULT_POLL_RATE_MS,
        min_tick_ms: int = MIN_TICK_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._connection = connection
        self._sink = sink
        self._default_rate_ms = default_poll_rate_ms
        self._clock = clock
        self._cards = registry.pollable_cards()

        rates = [self._rate_ms(card) for card in self._cards] or [default_poll_rate_ms]
        self._tick = max(min_tick_ms, min(rates)) / 1000.0

        self._stop = threading.Event()
        self._resume = threading.Event()
        self._thread: threading.Thread | None = None
        connection.add_listener(self._on_connection_state)
        if connection.connected:
            self._resume.set()

    @property
    def tick(self) -> float:
        """Loop period in seconds."""
        return self._tick

    @property
    def cards(self) -> list[CardDescriptor]:
        return list(self._cards)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _rate_ms(self, card: CardDescriptor) -> int:
        return card.settings.poll_rate_ms or self._default_rate_ms

    def poll_rate(self, card: CardDescriptor) -> float:
        """Poll period of a card in seconds."""
        return self._rate_ms(card) / 1000.0

    def is_due(self, card: CardDescriptor, now: float) -> bool:
        return card.last_poll is None or now - card.last_poll >= self.poll_rate(card)

    def _on_connection_state(self, state: ConnectionState) -> None:
        if state == ConnectionState.CONNECTED:
            self._resume.set()
        else:
            self._resume.clear()

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def run_cycle(self, now: float | None = None, force: bool = False) -> list[ChannelReading]:
        """
        Read every due card once, in configuration order. ``force`` reads all
        cards regardless of their poll rate. Stops early if the connection drops.
        """
        emitted: list[ChannelReading] = []
        for card in self._cards:
            if self._stop.is_set() or not self._connection.connected:
                logger.debug("Poll cycle interrupted (%s)", self._connection.state.value)
                break
            t = self._clock() if now is None else now
            if not force and not self.is_due(card, t):
                continue
            emitted.extend(self.poll_card(card, t))
        return emitted

    def poll_card(self, card: CardDescriptor, now: float | None = None) -> list[ChannelReading]:
        """Read and decode one card, emit its readings, and return them."""
        try:
            window = self._connection.read(card.read_table, card.start, card.quantity, tag=card.name)
            readings = decode_card(card, window)
        except ModbusIOError as e:
            logger.warning(
                "Read of card %s (%s %d+%d) failed: %s",
                card.name,
                card.read_table.value,
                card.start,
                card.quantity,
                e,
            )
            readings = error_readings(card, str(e))
        except Exception as e:
            logger.exception("Unexpected error reading card %s", card.name)
            readings = error_readings(card, str(e) or type(e).__name__)
        card.last_poll = self._clock() if now is None else now
        for reading in readings:
            self._emit(reading)
        return readings

    def _emit(self, reading: ChannelReading) -> None:
        try:
            self._sink(reading)
        except Exception:
            logger.exception("Reading sink failed for %s/%d", reading.card, reading.channel)

    # ------------------------------------------------------------------
    # Thread
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the poll loop in a daemon thread (no-op if already running)."""
        if self.running:
            return
        self._stop.clear()
        if self._connection.connected:
            self._resume.set()
        else:
            self._resume.clear()
        self._thread = threading.Thread(target=self._run, name="PollScheduler", daemon=True)
        self._thread.start()

    def request_stop(self) -> None:
        """Tell the loop to exit after the current request, without waiting."""
        self._stop.set()
        self._resume.set()

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None

    def stop(self, timeout: float | None = None) -> None:
        """Stop the loop and wait for it to exit. Safe to call repeatedly."""
        self.request_stop()
        self.join(timeout)

    def _run(self) -> None:
        logger.info("Polling %d cards every %.3fs", len(self._cards), self._tick)
        while not self._stop.is_set():
            if not self._resume.is_set():
                self._resume.wait(self._tick)
                continue
            started = self._clock()
            self.run_cycle()
            elapsed = self._clock() - started
            self._stop.wait(max(0.0, self._tick - elapsed))
        logger.debug("Poll loop stopped")
