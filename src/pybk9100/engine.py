"""CouplerEngine: registry, connection, poll loop and write path for one BK9100 coupler."""

import logging
import queue
from typing import Any, Callable, Iterator

from .config import CouplerConfig
from .connection import ConnectionManager
from .dispatch import WriteDispatcher
from .errors import ConfigError
from .registry import CardRegistry
from .scheduler import PollScheduler
from .types import ChannelReading, ConnectionState

logger = logging.getLogger(__name__)

# Readings kept for events(); the oldest is dropped when full
EVENT_QUEUE_SIZE = 10000


class CouplerEngine:
    """
    High-level handle for one coupler: build the card map, keep the session
    up, poll, and accept writes.

    Readings from polling and from write read-backs land on one bounded queue
    that ``events()`` drains; once ``queue_size`` readings are waiting, the
    oldest is dropped for each new one. Pass ``sink`` to receive them
    directly instead.
    The card list is fixed for the engine's lifetime.
    """

    def __init__(
        self,
        config: CouplerConfig,
        cards: list[dict[str, Any]],
        sink: Callable[[ChannelReading], None] | None = None,
        client_factory: Callable[..., Any] | None = None,
        timer_factory: Callable[..., Any] | None = None,
        queue_size: int = EVENT_QUEUE_SIZE,
    ) -> None:
        if not config.host:
            raise ConfigError("Coupler host is required")
        config.validate()
        self._config = config
        self._queue: queue.Queue[ChannelReading] = queue.Queue(maxsize=queue_size)
        self._sink = sink or self._enqueue

        self.registry = CardRegistry(
            cards,
            base_addresses=config.base_addresses,
            word_order=config.word_order,
        )
        conn_kwargs: dict[str, Any] = {}
        if client_factory is not None:
            conn_kwargs["client_factory"] = client_factory
        if timer_factory is not None:
            conn_kwargs["timer_factory"] = timer_factory
        self.connection = ConnectionManager(
            host=config.host,
            port=config.port,
            unit_id=config.unit_id,
            timeout=config.timeout,
            retries=config.retries,
            reconnect_delay=config.reconnect_delay,
            **conn_kwargs,
        )
        self.scheduler = PollScheduler(
            self.registry,
            self.connection,
            self._sink,
            default_poll_rate_ms=config.poll_rate_ms,
            min_tick_ms=config.min_tick_ms,
        )
        self.dispatcher = WriteDispatcher(self.registry, self.connection, self._sink)

    @property
    def config(self) -> CouplerConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    def connect(self) -> bool:
        """Open the session without starting the poll loop."""
        return self.connection.connect()

    def start(self) -> None:
        """Connect (a failed connect retries in the background) and start polling."""
        if not self.connection.connected:
            self.connection.connect()
        self.scheduler.start()

    def close(self) -> None:
        """Stop polling, cancel the reconnect timer and close the session. Idempotent."""
        self.scheduler.request_stop()
        # Closing the socket first fails a request that is still in flight.
        self.connection.close()
        self.scheduler.join()

    def __enter__(self) -> "CouplerEngine":
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _enqueue(self, reading: ChannelReading) -> None:
        while True:
            try:
                self._queue.put_nowait(reading)
                return
            except queue.Full:
                try:
                    dropped = self._queue.get_nowait()
                except queue.Empty:
                    continue
                logger.debug("Event queue full, dropped %s/%d", dropped.card, dropped.channel)

    def poll_once(self) -> list[ChannelReading]:
        """Read every pollable card once, now, and return the readings."""
        return self.scheduler.run_cycle(force=True)

    def write(self, command: Any, value: Any = None) -> ChannelReading | None:
        """Send one write command; see WriteDispatcher.write."""
        return self.dispatcher.write(command, value)

    def events(self, timeout: float | None = None) -> Iterator[ChannelReading]:
        """
        Yield queued readings as they arrive. With a timeout, stop once no
        reading arrives within it.
        """
        while True:
            try:
                yield self._queue.get(timeout=timeout)
            except queue.Empty:
                return
