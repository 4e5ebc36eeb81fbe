#!/usr/bin/env python3
"""
Robot Control Panel - Main Entry Point

Serves the PIN-gated control panel. The panel connects to rosbridge on the
operator's request and sends joint moves, gripper strokes and scripts.

Configuration comes from the environment (see robot_panel.config); the
command line overrides the bind address, port and robot namespace.

Usage:
    export PANEL_PIN=4321
    python -m robot_panel.main --port 8000
"""

import argparse
import asyncio
import logging
import signal
import sys

import uvicorn

from .config import PanelConfig
from .panel_server import PanelServer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def run_server(server: PanelServer) -> None:
    """Run the panel with uvicorn."""
    config = uvicorn.Config(
        server.app,
        host=server.config.host,
        port=server.config.port,
        log_level=server.config.log_level.lower(),
        access_log=True,
    )
    await uvicorn.Server(config).serve()


async def main_async(config: PanelConfig) -> None:
    """Async main entry point."""
    server = PanelServer(config)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    logger.info(f"Robot Control Panel on {config.host}:{config.port}")
    try:
        server_task = asyncio.create_task(run_server(server))
        shutdown_task = asyncio.create_task(shutdown_event.wait())

        done, pending = await asyncio.wait(
            [server_task, shutdown_task],
            return_when=asyncio.FIRST_COMPLETED,
        )

        # Cancel pending tasks
        for task in pending:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
    finally:
        await server.bridge.disconnect()
        logger.info("Robot Control Panel stopped")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Robot Control Panel",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    config = PanelConfig.from_env()

    parser.add_argument(
        "--host",
        type=str,
        default=config.host,
        help="HTTP bind address",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=config.port,
        help="HTTP port",
    )
    parser.add_argument(
        "--namespace",
        type=str,
        default=config.robot_namespace,
        help="Robot topic namespace",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    config.host = args.host
    config.port = args.port
    config.robot_namespace = args.namespace

    if args.debug:
        config.log_level = "DEBUG"
    logging.getLogger().setLevel(config.log_level)

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
