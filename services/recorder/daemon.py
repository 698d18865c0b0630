#!/usr/bin/env python3
"""
Google Meet Recorder Daemon

Joins one Google Meet room, records the mixed audio/video of the session to
a local .webm file, and exits once the bot is the only participant left.

Usage:
    python -m services.recorder <google-meet-url> [your-name] [--headless]
    python -m services.recorder https://meet.google.com/abc-defg-hij "Note Taker" --headless
    python -m services.recorder <url> --no-auto-exit      # stay until Ctrl+C
    python -m services.recorder <url> --no-profile        # fresh browser context

Exit status:
    0  graceful shutdown (signal, browser closed, or alone in meeting)
    1  startup failure (missing room URL, browser could not be started)
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

from services.base.daemon import EXIT_STARTUP_FAILURE, BaseDaemon
from tool_modules.aa_meet_recorder.src.automation import AutomationStartError, PlaywrightAutomation
from tool_modules.aa_meet_recorder.src.config import RecorderConfig, get_config
from tool_modules.aa_meet_recorder.src.lifecycle import SessionController
from tool_modules.aa_meet_recorder.src.session import Session

logger = logging.getLogger(__name__)

USAGE = "Usage: python -m services.recorder <google-meet-url> [your-name] [--headless]"


class MeetRecorderDaemon(BaseDaemon):
    """Single-session Google Meet recorder."""

    name = "recorder"
    description = "Google Meet Recorder"

    def __init__(
        self,
        room_url: str,
        display_name: Optional[str] = None,
        verbose: bool = False,
        config: Optional[RecorderConfig] = None,
    ):
        super().__init__(verbose=verbose)
        self.config = config or get_config()
        self.room_url = room_url
        self.display_name = display_name or self.config.default_display_name
        self.controller: Optional[SessionController] = None
        self.automation: Optional[PlaywrightAutomation] = None

    def request_shutdown(self, reason: str = "requested"):
        super().request_shutdown(reason)
        if self.controller is not None:
            self.controller.request_shutdown(reason)

    def create_automation(self) -> PlaywrightAutomation:
        return PlaywrightAutomation(self.config.browser, keep_profile=self.config.keep_profile)

    async def run_daemon(self) -> int:
        if self.config.browser.headless:
            logger.info("Running in HEADLESS mode")

        self.automation = self.create_automation()
        try:
            await self.automation.start()
        except AutomationStartError as e:
            logger.error(f"Browser automation could not be started: {e}")
            return EXIT_STARTUP_FAILURE

        session = Session(
            room_url=self.room_url,
            display_name=self.display_name,
            headless=self.config.browser.headless,
            recordings_dir=self.config.recordings_dir,
            auto_exit=self.config.auto_exit,
            keep_profile=self.config.keep_profile,
        )
        self.controller = SessionController(session, self.automation, self.config)
        self.controller.install_signal_handlers()

        # A signal may have arrived while the browser was starting
        if self._shutdown_event.is_set():
            self.controller.request_shutdown("signal during startup")

        return await self.controller.run()

    @classmethod
    def create_argument_parser(cls) -> argparse.ArgumentParser:
        parser = super().create_argument_parser()
        parser.add_argument("room_url", nargs="?", help="Google Meet URL to join")
        parser.add_argument("display_name", nargs="?", help="Name to use when joining as a guest")
        parser.add_argument("--headless", action="store_true", help="Run the browser headless")
        parser.add_argument(
            "--no-auto-exit",
            action="store_false",
            dest="auto_exit",
            default=None,
            help="Stay in the meeting even when alone",
        )
        parser.add_argument(
            "--no-profile",
            action="store_false",
            dest="keep_profile",
            default=None,
            help="Use a fresh browser context instead of the persistent profile",
        )
        parser.add_argument("--recordings-dir", type=Path, help="Directory for recording files")
        parser.add_argument("--profile-dir", type=Path, help="Persistent browser profile directory")
        return parser

    @classmethod
    def validate_args(cls, parser: argparse.ArgumentParser, parsed: argparse.Namespace) -> Optional[int]:
        if not parsed.room_url:
            print(USAGE)
            return EXIT_STARTUP_FAILURE
        return None

    @classmethod
    def apply_args(cls, config: RecorderConfig, parsed: argparse.Namespace) -> RecorderConfig:
        """Command line flags win over config.json values."""
        if parsed.headless:
            config.browser.headless = True
        if parsed.auto_exit is not None:
            config.auto_exit = parsed.auto_exit
        if parsed.keep_profile is not None:
            config.keep_profile = parsed.keep_profile
        if parsed.recordings_dir:
            config.recordings_dir = parsed.recordings_dir
        if parsed.profile_dir:
            config.browser.profile_dir = parsed.profile_dir
        return config

    @classmethod
    def from_args(cls, parsed: argparse.Namespace) -> "MeetRecorderDaemon":
        config = cls.apply_args(get_config(), parsed)
        config.ensure_directories()
        return cls(
            room_url=parsed.room_url,
            display_name=parsed.display_name,
            verbose=parsed.verbose,
            config=config,
        )


def main(args: Optional[list] = None):
    """Console script entry point."""
    MeetRecorderDaemon.main(args)
