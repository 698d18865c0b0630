#!/usr/bin/env python3
"""
Base Daemon Infrastructure

Provides the foundation for the long-running services:
- BaseDaemon: Base class with CLI, signals, logging and lifecycle management

Usage:
    from services.base import BaseDaemon

    class MyDaemon(BaseDaemon):
        name = "my-service"
        description = "My service daemon"

        async def run_daemon(self) -> int:
            await self._shutdown_event.wait()
            return 0

    if __name__ == "__main__":
        MyDaemon.main()
"""

import argparse
import asyncio
import logging
import signal
import sys
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


class BaseDaemon(ABC):
    """
    Base class for service daemons.

    Provides:
    - Standard CLI arguments (--verbose)
    - Signal handling for graceful shutdown
    - Logging configuration
    - Exit status propagation from run_daemon()

    Subclasses must:
    - Set `name` and `description` class attributes
    - Implement `run_daemon()` async method
    - Implement `from_args()` to build an instance from parsed arguments
    """

    # Subclasses must set these
    name: str = ""
    description: str = ""

    def __init__(self, verbose: bool = False):
        """
        Initialize the daemon.

        Args:
            verbose: Enable verbose logging
        """
        if not self.name:
            raise ValueError("Daemon 'name' must be set")

        self.verbose = verbose
        self._shutdown_event = asyncio.Event()

    @abstractmethod
    async def run_daemon(self) -> int:
        """
        Main daemon logic. Override this in subclasses.

        Returns the process exit status.
        """

    async def startup(self):
        """Called before run_daemon(). Override for initialization."""

    async def shutdown(self):
        """Called after run_daemon() exits. Override for cleanup."""

    def request_shutdown(self, reason: str = "requested"):
        """Request graceful shutdown of the daemon."""
        logger.info(f"Shutdown requested for {self.name} ({reason})")
        self._shutdown_event.set()

    def _setup_signal_handlers(self):
        """Set up signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(sig):
            logger.info(f"Received signal {sig.name}")
            self.request_shutdown(f"signal {sig.name}")

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

    async def _run(self) -> int:
        """Internal run method that handles lifecycle."""
        self._setup_signal_handlers()

        try:
            await self.startup()
            logger.info(f"Daemon ready: {self.name}")
            return await self.run_daemon()
        except asyncio.CancelledError:
            logger.info("Daemon cancelled")
            return EXIT_OK
        except Exception as e:
            logger.exception(f"Daemon error: {e}")
            raise
        finally:
            await self.shutdown()

    def run(self) -> int:
        """Run the daemon (blocking) and return its exit status."""
        return asyncio.run(self._run())

    @classmethod
    def configure_logging(cls, verbose: bool = False):
        """Configure logging to stderr."""
        level = logging.DEBUG if verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(name)s - %(levelname)s - %(message)s",
            handlers=[logging.StreamHandler(sys.stderr)],
        )

    @classmethod
    def create_argument_parser(cls) -> argparse.ArgumentParser:
        """
        Create the argument parser with standard daemon arguments.

        Subclasses can override to add custom arguments.
        """
        parser = argparse.ArgumentParser(
            prog=f"python -m services.{cls.name.replace('-', '_')}",
            description=cls.description or f"{cls.name} daemon",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable verbose output",
        )
        return parser

    @classmethod
    @abstractmethod
    def from_args(cls, parsed: argparse.Namespace) -> "BaseDaemon":
        """Build a daemon instance from parsed arguments."""

    @classmethod
    def validate_args(cls, parser: argparse.ArgumentParser, parsed: argparse.Namespace) -> Optional[int]:
        """Return an exit status to abort startup, or None to continue."""
        return None

    @classmethod
    def main(cls, args: Optional[list] = None):
        """
        Main entry point for the daemon.

        Handles CLI arguments and runs the daemon.

        Args:
            args: Command line arguments (defaults to sys.argv)
        """
        parser = cls.create_argument_parser()
        parsed = parser.parse_args(args)

        status = cls.validate_args(parser, parsed)
        if status is not None:
            sys.exit(status)

        cls.configure_logging(verbose=parsed.verbose)

        daemon = cls.from_args(parsed)
        sys.exit(daemon.run())
