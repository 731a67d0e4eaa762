"""ConnectionManager: one pymodbus TCP session per coupler, serialized requests, fixed-delay reconnect."""

import logging
import threading
from typing import Any, Callable

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException as PymodbusException

from .config import DEFAULT_PORT, DEFAULT_RECONNECT_DELAY_S
from .errors import ModbusIOError
from .types import ConnectionState, ModbusTable

logger = logging.getLogger(__name__)

StateListener = Callable[[ConnectionState], None]


class ConnectionManager:
    """
    Owns the transport session to one coupler.

    Modbus TCP to the coupler is strictly request/response, so every read and
    write holds ``_io_lock`` for its whole round trip. Losing the session
    (failed connect, transport exception) closes the client and schedules a
    single reconnect after ``reconnect_delay`` seconds; the delay does not grow.
    Listeners are told about every state change.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        unit_id: int = 1,
        timeout: float = 3.0,
        retries: int = 3,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_S,
        client_factory: Callable[..., Any] = ModbusTcpClient,
        timer_factory: Callable[..., Any] = threading.Timer,
    ) -> None:
        self._host = host
        self._port = port
        self._unit_id = unit_id
        self._timeout = timeout
        self._retries = retries
        self._reconnect_delay = reconnect_delay
        self._client_factory = client_factory
        self._timer_factory = timer_factory

        self._io_lock = threading.RLock()
        self._state_lock = threading.Lock()
        self._state = ConnectionState.DISCONNECTED
        self._client: Any = None
        self._timer: Any = None
        self._closed = False
        self._listeners: list[StateListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def unit_id(self) -> int:
        return self._unit_id

    @property
    def reconnect_delay(self) -> float:
        return self._reconnect_delay

    @property
    def address(self) -> str:
        return f"{self._host}:{self._port}"

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        with self._state_lock:
            if self._closed and state != ConnectionState.DISCONNECTED:
                return
            if self._state == state:
                return
            self._state = state
        logger.debug("Connection %s: %s", self.address, state.value)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Connection state listener failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> bool:
        """
        Open the transport. Returns True when connected; on failure a
        reconnect is scheduled and False is returned.
        """
        with self._state_lock:
            if self._closed:
                return False
            self._cancel_timer_locked()
        self._set_state(ConnectionState.CONNECTING)

        with self._io_lock:
            if self._client is None:
                self._client = self._client_factory(
                    host=self._host,
                    port=self._port,
                    timeout=self._timeout,
                    retries=self._retries,
                )
            client = self._client
            try:
                ok = bool(client.connect())
            except (PymodbusException, OSError) as e:
                logger.warning("Connect to %s failed: %s", self.address, e)
                ok = False

        if not ok:
            self._on_loss(f"Failed to connect to {self.address}")
            return False
        if self._closed:
            # close() ran while we were connecting
            self._drop_client()
            return False
        logger.info("Connected to %s (unit %d)", self.address, self._unit_id)
        self._set_state(ConnectionState.CONNECTED)
        return True

    def close(self) -> None:
        """Cancel any pending reconnect and close the transport. Idempotent."""
        with self._state_lock:
            self._closed = True
            self._cancel_timer_locked()
        # Not under _io_lock: closing the socket is what unblocks a hung request.
        self._drop_client()
        self._set_state(ConnectionState.DISCONNECTED)

    def __enter__(self) -> "ConnectionManager":
        self.connect()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _drop_client(self) -> None:
        with self._state_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.warning("Error closing Modbus client: %s", e)

    def _on_loss(self, reason: str) -> None:
        if self._closed:
            return
        logger.warning("Connection to %s lost: %s", self.address, reason)
        self._drop_client()
        self._set_state(ConnectionState.DISCONNECTED)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._state_lock:
            if self._closed or self._timer is not None:
                return
            timer = self._timer_factory(self._reconnect_delay, self._reconnect)
            timer.daemon = True
            self._timer = timer
        self._set_state(ConnectionState.RECONNECT_PENDING)
        logger.info("Reconnecting to %s in %.1fs", self.address, self._reconnect_delay)
        timer.start()

    def _reconnect(self) -> None:
        with self._state_lock:
            self._timer = None
            if self._closed:
                return
        self.connect()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def execute(
        self,
        request: Callable[[Any], Any],
        *,
        table: ModbusTable | None = None,
        offset: int | None = None,
        tag: str | None = None,
    ) -> Any:
        """
        Run one request against the client while holding the in-flight slot.

        Transport failures drop the session (and schedule a reconnect);
        exception responses from the coupler only fail this request.
        """
        table_name = table.value if table is not None else None
        with self._io_lock:
            client = self._client
            if client is None or self._state != ConnectionState.CONNECTED:
                raise ModbusIOError(
                    f"Not connected to {self.address} ({self._state.value})",
                    tag=tag,
                    table=table_name,
                    offset=offset,
                )
            try:
                rr = request(client)
            except (PymodbusException, OSError) as e:
                self._on_loss(str(e))
                raise ModbusIOError(str(e), tag=tag, table=table_name, offset=offset, cause=e) from e

        if rr.isError():
            raise ModbusIOError(
                str(rr),
                tag=tag,
                table=table_name,
                offset=offset,
                cause=getattr(rr, "exception", None),
            )
        return rr

    def read_bits(self, table: ModbusTable, start: int, count: int, tag: str | None = None) -> list[bool]:
        """Read coils or discrete inputs. A short response is returned as-is."""
        if table == ModbusTable.COIL:
            rr = self.execute(
                lambda c: c.read_coils(start, count=count, device_id=self._unit_id),
                table=table,
                offset=start,
                tag=tag,
            )
        elif table == ModbusTable.DISCRETE_INPUT:
            rr = self.execute(
                lambda c: c.read_discrete_inputs(start, count=count, device_id=self._unit_id),
                table=table,
                offset=start,
                tag=tag,
            )
        else:
            raise ModbusIOError(f"Bit read not supported for table {table.value}", table=table.value, offset=start)
        logger.debug("%s %d+%d: %s", table.value, start, count, rr)
        bits = getattr(rr, "bits", None)
        if bits is None:
            raise ModbusIOError("Empty bit response", tag=tag, table=table.value, offset=start)
        return [bool(b) for b in list(bits)[:count]]

    def read_registers(self, table: ModbusTable, start: int, count: int, tag: str | None = None) -> list[int]:
        """Read input registers. A short response is returned as-is."""
        if table != ModbusTable.INPUT_REGISTER:
            raise ModbusIOError(f"Register read not supported for table {table.value}", table=table.value, offset=start)
        rr = self.execute(
            lambda c: c.read_input_registers(start, count=count, device_id=self._unit_id),
            table=table,
            offset=start,
            tag=tag,
        )
        logger.debug("%s %d+%d: %s", table.value, start, count, rr)
        registers = getattr(rr, "registers", None)
        if registers is None:
            raise ModbusIOError("Empty register response", tag=tag, table=table.value, offset=start)
        return [int(r) for r in list(registers)[:count]]

    def read(self, table: ModbusTable, start: int, count: int, tag: str | None = None) -> list[Any]:
        """Read a window from any table the coupler exposes."""
        if table == ModbusTable.INPUT_REGISTER:
            return self.read_registers(table, start, count, tag=tag)
        return self.read_bits(table, start, count, tag=tag)

    def write_coil(self, address: int, value: bool, tag: str | None = None) -> None:
        """Write a single coil (function code 5)."""
        self.execute(
            lambda c: c.write_coil(address, bool(value), device_id=self._unit_id),
            table=ModbusTable.COIL,
            offset=address,
            tag=tag,
        )
        logger.debug("coil %d <- %s", address, bool(value))
