#!/usr/bin/env python3
"""Example: poll every card in cards.json and print readings; graceful shutdown on Ctrl+C."""

import sys
from pathlib import Path

from pybk9100 import CouplerEngine, load_card_file
from pybk9100.errors import ConfigError, ModbusIOError


def main() -> None:
    cards_path = Path(__file__).with_name("cards.json")

    try:
        config, cards = load_card_file(cards_path)
        config = config.with_overrides(host=config.host or "192.168.1.10")  # change to your coupler IP
        with CouplerEngine(config, cards) as engine:
            print(f"Polling {len(engine.registry)} cards on {config.host} (Ctrl+C to stop)...")
            for reading in engine.events():
                print(reading.to_dict())
    except KeyboardInterrupt:
        print("\nStopped.")
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ModbusIOError as e:
        print(f"Modbus/connection error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
