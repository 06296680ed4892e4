from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from functools import partial
from pathlib import Path

import dotenv
import uvloop

from homekit_bridge.config_file import apply_config_file
from homekit_bridge.const import HKB_DEBUG, HKB_VERSION
from homekit_bridge.controller import BridgeController
from homekit_bridge.correlation import correlation_context
from homekit_bridge.logging_abstraction import get_logger, set_global_level
from homekit_bridge.persistence import JsonFileStore
from homekit_bridge.sources import JsonLinesEventSource, open_event_stream
from homekit_bridge.structs import BridgeEnv

logger = get_logger(__name__)

# Suppress verbose MQTT library warnings
for _name in ("aiomqtt", "mqtt", "paho"):
    _lib_logger = logging.getLogger(_name)
    _lib_logger.setLevel(logging.ERROR)
    _lib_logger.propagate = False


def signal_handler(signum: int, stop_event: asyncio.Event) -> None:
    logger.info("Intercepted signal: %s (%s)", signal.Signals(signum).name, signum)
    stop_event.set()


def parse_cli(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HomeKit to MQTT bridge")
    _ = parser.add_argument("-D", "--debug", action="store_true", help="Enable debug mode")
    _ = parser.add_argument("--env", help="Path to an environment file", default=None, type=Path)
    _ = parser.add_argument(
        "--config",
        help="YAML file with broker settings and subscriptions to provision at startup",
        default=None,
        type=Path,
    )
    _ = parser.add_argument(
        "--events",
        help="JSON-lines file of events to replay (default: read from stdin)",
        default=None,
        type=Path,
    )
    _ = parser.add_argument(
        "--keep-running",
        action="store_true",
        help="Keep running after the event stream ends (until SIGINT/SIGTERM)",
    )
    args = parser.parse_args(argv)

    if args.debug or HKB_DEBUG:
        set_global_level(logging.DEBUG)
        logger.info("Debug logging enabled")

    return args


def load_env(env: BridgeEnv, env_file: Path | None) -> None:
    """Apply an optional .env file on top of the process environment."""
    if env_file is not None:
        env_path = env_file.expanduser().resolve()
        if not env_path.exists():
            logger.error("Environment file not found", extra={"path": str(env_path)})
        elif dotenv.load_dotenv(env_path, override=True):
            logger.info("Environment variables loaded", extra={"source": str(env_path)})
        else:
            logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    env.reload()


async def run(args: argparse.Namespace) -> BridgeController:
    """Serve events until the stream ends (or a signal arrives). Returns the stopped controller."""
    env = BridgeEnv()
    load_env(env, args.env)

    controller = BridgeController(JsonFileStore(env.persistent_base_dir), env)
    if args.config is not None:
        added = apply_config_file(controller, args.config.expanduser().resolve())
        logger.info("Configuration file applied", extra={"path": str(args.config), "added": added})
    await controller.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    stream_ended = False
    loop.add_signal_handler(signal.SIGINT, partial(signal_handler, signal.SIGINT, stop_event))
    loop.add_signal_handler(signal.SIGTERM, partial(signal_handler, signal.SIGTERM, stop_event))

    def _on_eof() -> None:
        nonlocal stream_ended
        stream_ended = True
        if not args.keep_running:
            _ = loop.call_soon_threadsafe(stop_event.set)

    stream = open_event_stream(args.events)
    source = JsonLinesEventSource(stream, on_eof=_on_eof)
    source.start(controller.submit)
    logger.info(
        "Reading events",
        extra={"source": str(args.events) if args.events else "stdin", "prefix": controller.broker_config.prefix},
    )

    try:
        _ = await stop_event.wait()
        if stream_ended:
            # let publishes triggered by the tail of the stream finish
            await controller.drain()
    finally:
        source.stop()
        await controller.stop()
        loop.remove_signal_handler(signal.SIGINT)
        loop.remove_signal_handler(signal.SIGTERM)
        if args.events:
            stream.close()
    return controller


def main() -> None:
    """Main entry point for the HomeKit bridge."""
    with correlation_context():
        logger.info("Starting HomeKit bridge", extra={"version": HKB_VERSION})
        args = parse_cli()
        try:
            uvloop.run(run(args))
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logger.exception("Fatal error in main loop", extra={"error": str(e)})
            sys.exit(1)
        else:
            logger.info("HomeKit bridge stopped gracefully")


if __name__ == "__main__":
    main()
