"""Shared fixtures: a mocked pymodbus client and a manual reconnect timer."""

from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from pybk9100.connection import ConnectionManager


class FakeTimer:
    """Stand-in for threading.Timer that only fires when told to."""

    def __init__(self, interval: float, function: Callable[[], Any]) -> None:
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.function()


def ok_response(**fields: Any) -> MagicMock:
    return MagicMock(isError=lambda: False, **fields)


def error_response(text: str = "Exception Response(130, 2, IllegalAddress)") -> MagicMock:
    rr = MagicMock(isError=lambda: True)
    rr.__str__ = lambda self: text
    return rr


@pytest.fixture
def mock_modbus_client() -> MagicMock:
    client = MagicMock()
    client.connect.return_value = True
    client.read_coils.return_value = ok_response(bits=[True] * 8)
    client.read_discrete_inputs.return_value = ok_response(bits=[True, False, True, True, False, False, False, False])
    client.read_input_registers.return_value = ok_response(registers=[0, 2400] * 8)
    client.write_coil.return_value = ok_response()
    return client


@pytest.fixture
def timers() -> list[FakeTimer]:
    return []


@pytest.fixture
def timer_factory(timers: list[FakeTimer]) -> Callable[..., FakeTimer]:
    def factory(interval: float, function: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(interval, function)
        timers.append(timer)
        return timer

    return factory


@pytest.fixture
def client_factory(mock_modbus_client: MagicMock) -> MagicMock:
    return MagicMock(return_value=mock_modbus_client)


@pytest.fixture
def connection(client_factory: MagicMock, timer_factory: Callable[..., FakeTimer]) -> ConnectionManager:
    """A connected ConnectionManager over the mocked client."""
    conn = ConnectionManager(
        host="127.0.0.1",
        reconnect_delay=5.0,
        client_factory=client_factory,
        timer_factory=timer_factory,
    )
    assert conn.connect()
    return conn
