#!/usr/bin/env python3
"""Example: read every card once, then switch a relay channel and show the read-back."""

import sys
from pathlib import Path

from pybk9100 import CouplerEngine, load_card_file
from pybk9100.errors import ConfigError, ModbusIOError, WriteRejectedError


def main() -> None:
    cards_path = Path(__file__).with_name("cards.json")

    try:
        config, cards = load_card_file(cards_path)
        engine = CouplerEngine(config, cards)
        try:
            if not engine.connect():
                print(f"Could not connect to {config.host}:{config.port}", file=sys.stderr)
                sys.exit(1)

            for row in engine.registry.layout():
                print(f"slot {row['slot']}: {row['model']} {row['table']} {row['start']}+{row['quantity']}")

            for reading in engine.poll_once():
                print(f"{reading.topic}/{reading.channel}: {reading.state.value} {reading.value}")

            # Channel 3 of the card labelled "relays"; it has readOnWrite set
            readback = engine.write("relays/3", True)
            if readback is not None:
                print(f"relays/3 now reads {readback.value}")

            # Same write as a command object
            engine.write({"card": "relays", "channel": 3, "value": "off"})
        finally:
            engine.close()
    except WriteRejectedError as e:
        print(f"Write rejected: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ModbusIOError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
