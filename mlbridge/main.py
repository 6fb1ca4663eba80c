"""mlbridge entry point.

Runs bridge passes forever (or a single one with --once). Usage:
mlbridge --config config.yaml [--check] [--once].
"""

import argparse
import logging
import sys
from pathlib import Path

from mlbridge.config import load_config
from mlbridge.errors import BridgeError


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="mlbridge",
        description="mlbridge - bridge pull request activity to mailing lists",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Only load and validate config, then exit",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single bridge pass and exit",
    )
    return parser.parse_args(argv if argv is not None else sys.argv[1:])


def main(argv: list[str] | None = None) -> int:
    """Entry point: validate config, then run the bridge loop."""
    args = parse_args(argv)

    config_path = args.config
    if not config_path.is_file() and config_path == Path("config.yaml"):
        if Path("config.example.yaml").is_file():
            config_path = Path("config.example.yaml")
            logging.basicConfig(level=logging.INFO)
            logging.getLogger("mlbridge").warning("config.yaml not found, using config.example.yaml")

    log = logging.getLogger("mlbridge")
    try:
        config = load_config(config_path)
        config.validate_identity()
    except BridgeError as e:
        logging.basicConfig(level=logging.INFO)
        log.error("Invalid configuration: %s", e)
        return 2

    if args.check:
        print("Config OK:", config.repository.name, ", ".join(ml.address for ml in config.mail.lists))
        return 0

    from mlbridge.bridge import Bridge
    from mlbridge.logging import BridgeLogging
    from mlbridge.scheduler import run_bridge_loop

    BridgeLogging(config.logging).setup()
    try:
        bridge = Bridge.from_config(config)
        if args.once:
            bridge.run_pass()
        else:
            run_bridge_loop(bridge, config.scheduler.interval_seconds)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        log.exception("Fatal error: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
