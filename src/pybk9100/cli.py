#!/usr/bin/env python3
"""Command-line interface for pybk9100 using Typer."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .config import CouplerConfig, load_card_file, parse_word_order
from .engine import CouplerEngine
from .errors import ConfigError, ModbusIOError, WriteRejectedError
from .registry import CardRegistry
from .types import ChannelReading

app = typer.Typer(
    name="pybk9100",
    help="Poll and write Beckhoff Bus Terminals behind a BK9100 Modbus TCP coupler.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

CardsArgument = Annotated[
    Path,
    typer.Argument(help="JSON card file (list of cards, or {coupler, cards})", envvar="PYBK9100_CARDS"),
]
HostOption = Annotated[
    Optional[str],
    typer.Option("--host", "-h", help="Coupler hostname or IP address", envvar="PYBK9100_HOST"),
]
PortOption = Annotated[
    Optional[int],
    typer.Option("--port", "-p", help="Modbus TCP port", envvar="PYBK9100_PORT"),
]
UnitIdOption = Annotated[
    Optional[int],
    typer.Option("--unit-id", "-u", help="Modbus unit ID", envvar="PYBK9100_UNIT_ID"),
]
TimeoutOption = Annotated[
    Optional[float],
    typer.Option("--timeout", "-t", help="Request timeout in seconds", envvar="PYBK9100_TIMEOUT"),
]
ReconnectOption = Annotated[
    Optional[float],
    typer.Option("--reconnect-delay", help="Seconds to wait before reconnecting", envvar="PYBK9100_RECONNECT_DELAY"),
]
WordOrderOption = Annotated[
    Optional[str],
    typer.Option("--word-order", help="Analog word order: status-data or data-status", envvar="PYBK9100_WORD_ORDER"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def load_config(
    cards_path: Path,
    host: Optional[str] = None,
    port: Optional[int] = None,
    unit_id: Optional[int] = None,
    timeout: Optional[float] = None,
    reconnect_delay: Optional[float] = None,
    word_order: Optional[str] = None,
) -> tuple[CouplerConfig, list[dict[str, Any]]]:
    """Load the card file and apply command-line overrides to its coupler block."""
    config, entries = load_card_file(cards_path)
    try:
        order = parse_word_order(word_order) if word_order else None
    except ValueError as e:
        raise ConfigError(str(e)) from None
    config = config.with_overrides(
        host=host,
        port=port,
        unit_id=unit_id,
        timeout=timeout,
        reconnect_delay=reconnect_delay,
        word_order=order,
    )
    config.validate()
    return config, entries


def create_engine(config: CouplerConfig, entries: list[dict[str, Any]]) -> CouplerEngine:
    """Create a CouplerEngine, requiring a host."""
    if not config.host:
        typer.echo("Error: --host is required (or set coupler.host in the card file)", err=True)
        raise typer.Exit(2)
    return CouplerEngine(config, entries)


def format_value(value: Any) -> str:
    """Format value for display."""
    if value is None:
        return "-"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value)


def format_reading(reading: ChannelReading) -> str:
    """One text line per reading: topic, state, value and family extras."""
    parts = [f"{reading.topic}/{reading.channel}", reading.state.value, format_value(reading.value)]
    if reading.volts is not None:
        parts.append(f"{reading.volts:.3f}V")
    if reading.celsius is not None:
        parts.append(f"{reading.celsius:.2f}C")
    if reading.status_text:
        parts.append(f"[{reading.status_text}]")
    if reading.error:
        parts.append(f"error={reading.error}")
    return " ".join(parts)


def emit_reading(reading: ChannelReading, fmt: str) -> None:
    if fmt == "json":
        typer.echo(json.dumps(reading.to_dict()))
    else:
        stamp = datetime.fromtimestamp(reading.timestamp, timezone.utc).isoformat()
        typer.echo(f"{stamp} {format_reading(reading)}")


# ============================================================================
# Commands
# ============================================================================


@app.command()
def info(
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """Show package version and the supported card models."""
    setup_logging(verbose)
    from .types import CARD_MODELS

    info_data = {
        "version": __version__,
        "models": {
            name: {
                "family": m.family.value,
                "channels": m.channels,
                "words_per_channel": m.words_per_channel,
                "table": m.table.value,
            }
            for name, m in CARD_MODELS.items()
        },
    }
    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        typer.echo(f"pybk9100 version: {info_data['version']}")
        for name, m in info_data["models"].items():
            typer.echo(f"  {name:<8} {m['family']:<20} {m['channels']}ch  {m['table']}")


@app.command()
def layout(
    cards: CardsArgument,
    word_order: WordOrderOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show the address map of every card in the card file.

    Does not require a connection.
    """
    setup_logging(verbose)

    try:
        config, entries = load_config(cards, word_order=word_order)
        registry = CardRegistry(entries, base_addresses=config.base_addresses, word_order=config.word_order)
        rows = registry.layout()
        rejected = [{"slot": slot, "error": str(err)} for slot, _entry, err in registry.rejected]

        if json_output:
            typer.echo(json.dumps({"cards": rows, "rejected": rejected}, indent=2))
        else:
            for row in rows:
                typer.echo(
                    f"{row['slot']:>3}  {row['model']:<7} {row['label'] or '-':<16} "
                    f"{row['table']:<15} fc={row['fc']} start={row['start']:<5} quantity={row['quantity']}"
                )
            for item in rejected:
                typer.echo(f"{item['slot']:>3}  rejected: {item['error']}")
    except ConfigError as e:
        typer.echo(f"Error: Configuration error: {e}", err=True)
        raise typer.Exit(2)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


@app.command()
def poll(
    cards: CardsArgument,
    host: HostOption = None,
    port: PortOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    reconnect_delay: ReconnectOption = None,
    word_order: WordOrderOption = None,
    verbose: VerboseOption = False,
    once: Annotated[bool, typer.Option("--once", help="Poll every card once and exit")] = False,
    count: Annotated[Optional[int], typer.Option("--count", "-n", help="Exit after this many readings")] = None,
    format: Annotated[str, typer.Option("--format", "-f", help="Output format: text, json")] = "text",
) -> None:
    """
    Continuously poll the cards and print one line per channel reading.

    Outputs format:
    - text: timestamp, topic/channel, state, value (default)
    - json: NDJSON, one reading object per line

    Use --once to poll once and exit.
    Press Ctrl+C to stop gracefully.
    """
    setup_logging(verbose)

    if format not in ("text", "json"):
        typer.echo(f"Error: Invalid format '{format}'. Must be text or json.", err=True)
        raise typer.Exit(2)
    if count is not None and count <= 0:
        typer.echo(f"Error: Count must be positive, got {count}", err=True)
        raise typer.Exit(2)

    try:
        config, entries = load_config(cards, host, port, unit_id, timeout, reconnect_delay, word_order)
        engine = create_engine(config, entries)

        try:
            if once:
                if not engine.connect():
                    raise ModbusIOError(f"Failed to connect to {config.host}:{config.port}")
                for reading in engine.poll_once():
                    emit_reading(reading, format)
                return

            engine.start()
            seen = 0
            for reading in engine.events():
                emit_reading(reading, format)
                seen += 1
                if count is not None and seen >= count:
                    break
        finally:
            engine.close()

    except ConfigError as e:
        typer.echo(f"Error: Configuration error: {e}", err=True)
        raise typer.Exit(2)
    except ModbusIOError as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


@app.command()
def write(
    cards: CardsArgument,
    target: Annotated[str, typer.Argument(help="Output card (label, filter, type or index), optionally with /channel")],
    value: Annotated[str, typer.Argument(help="Value to write: true/false, 1/0, on/off, yes/no")],
    channel: Annotated[Optional[int], typer.Option("--channel", "-c", help="1-based channel (else taken from TARGET/channel)")] = None,
    host: HostOption = None,
    port: PortOption = None,
    unit_id: UnitIdOption = None,
    timeout: TimeoutOption = None,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Write one digital output channel.

    TARGET is either "card/channel" (e.g. relays/3) or a card plus --channel.
    Cards configured with readOnWrite print the value read back from the coupler.
    """
    setup_logging(verbose)

    command: Any = target if channel is None else {"card": target, "channel": channel}
    try:
        config, entries = load_config(cards, host, port, unit_id, timeout)
        engine = create_engine(config, entries)
        try:
            if not engine.connect():
                raise ModbusIOError(f"Failed to connect to {config.host}:{config.port}")
            reading = engine.write(command, value)
        finally:
            engine.close()

        if json_output:
            out: dict[str, Any] = {"target": target, "channel": channel, "value": value, "ok": True}
            if reading is not None:
                out["readback"] = reading.to_dict()
            typer.echo(json.dumps(out))
        else:
            typer.echo(f"OK: Wrote {target}{'' if channel is None else f'/{channel}'} = {value}")
            if reading is not None:
                typer.echo(f"Read-back: {format_reading(reading)}")
    except WriteRejectedError as e:
        typer.echo(f"Error: Write rejected: {e}", err=True)
        raise typer.Exit(2)
    except ConfigError as e:
        typer.echo(f"Error: Configuration error: {e}", err=True)
        raise typer.Exit(2)
    except ModbusIOError as e:
        typer.echo(f"Error: Connection/Modbus error: {e}", err=True)
        raise typer.Exit(3)
    except typer.Exit:
        raise
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pybk9100 {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """pybk9100 - Beckhoff BK9100 Bus Terminal I/O via Modbus TCP."""
    pass


if __name__ == "__main__":
    app()
