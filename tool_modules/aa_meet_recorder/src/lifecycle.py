"""
Session lifecycle controller.

Drives one recording session end to end:

    navigate -> (wait for login) -> join -> admission -> record -> monitor

and owns the single shutdown path. Shutdown can be requested by a
termination signal, by the page/browser being closed externally, by the
presence monitor, or by an unexpected error in the driving flow. Only the
first request counts; the teardown runs each step best-effort so that a
failure in one step never skips the next (in particular, the recording
file is always closed).
"""

import asyncio
import logging
import signal
import time
from typing import Awaitable, Callable, Optional

from tool_modules.aa_meet_recorder.src.automation import AutomationCapability
from tool_modules.aa_meet_recorder.src.capture import InPageCapture
from tool_modules.aa_meet_recorder.src.config import RecorderConfig
from tool_modules.aa_meet_recorder.src.join import JoinOrchestrator
from tool_modules.aa_meet_recorder.src.presence import PresenceMonitor
from tool_modules.aa_meet_recorder.src.recording_sink import RecordingSink
from tool_modules.aa_meet_recorder.src.session import LifecycleState, Session, is_room_url

logger = logging.getLogger(__name__)

LEAVE_SELECTOR = 'button[aria-label="Leave call"], button:has-text("Leave call")'


class SessionController:
    """Owns the session state machine and its teardown."""

    def __init__(
        self,
        session: Session,
        automation: AutomationCapability,
        config: RecorderConfig,
        sink: Optional[RecordingSink] = None,
    ):
        self.session = session
        self.automation = automation
        self.config = config
        self.sink = sink or RecordingSink(session.output_path)
        self.capture = InPageCapture(automation, self.sink, config.capture)
        self.join = JoinOrchestrator(automation, session, config.join)
        self.monitor: Optional[PresenceMonitor] = None

        self._shutdown_requested = asyncio.Event()
        self._closed = asyncio.Event()
        self._drive_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._shutdown_started = False
        self._started_monotonic = time.monotonic()

    # ==================== Shutdown triggers ====================

    def request_shutdown(self, reason: str) -> None:
        """Ask for shutdown. Safe from signal handlers and event callbacks."""
        if self._shutdown_requested.is_set():
            logger.debug(f"Shutdown already requested, ignoring '{reason}'")
            return
        logger.info(f"Shutdown requested: {reason}")
        self.session.shutdown_reason = reason
        self._shutdown_requested.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM into request_shutdown()."""
        loop = asyncio.get_running_loop()

        def signal_handler(sig):
            logger.info(f"Received signal {sig.name}")
            self.request_shutdown(f"signal {sig.name}")

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

    def _on_page_closed(self) -> None:
        self.request_shutdown("page closed")

    # ==================== Driving flow ====================

    async def _wait_for_room(self) -> None:
        """Wait (no timeout) for an external login to land back in the room."""
        if is_room_url(self.automation.url, self.config.room_domain):
            return

        self.session.advance(LifecycleState.AWAITING_AUTH)
        logger.warning("------------------------------------------------------------")
        logger.warning("ACTION REQUIRED: Please sign in to your Google Account.")
        if self.session.keep_profile:
            logger.warning("Authentication will be saved for future runs.")
        logger.warning("------------------------------------------------------------")

        domain = self.config.room_domain
        # Match on the host only; sign-in URLs carry the room URL in their query
        await self.automation.wait_for_url(lambda url: is_room_url(url, domain), None)
        logger.info(f"Returned to {self.config.room_domain}: {self.automation.url}")

    async def _start_recording(self) -> None:
        try:
            self.sink.open()
        except Exception as e:
            logger.error(f"[CAPTURE] Recording disabled, sink unavailable: {e}")
            return

        if await self.capture.start():
            logger.info("Audio and video recording initialized.")
        else:
            logger.warning("Session continues without recording")

    async def _drive(self) -> None:
        await self.automation.grant_permissions(["camera", "microphone"], self.config.browser.permission_origin)

        logger.info(f"Navigating to {self.session.room_url}...")
        await self.automation.navigate(self.session.room_url)

        await self._wait_for_room()

        await self.join.join()
        if not await self.join.wait_for_admission():
            logger.error("Not admitted to the meeting; recording will not start.")
            return

        if not self.session.advance(LifecycleState.IN_MEETING):
            return

        await asyncio.sleep(self.config.join.admission_buffer)
        await self._start_recording()

        if self.session.auto_exit and not self._shutdown_requested.is_set():
            self.monitor = PresenceMonitor(
                self.automation, self.session, self.request_shutdown, self.config.presence
            )
            self._monitor_task = asyncio.create_task(self.monitor.run())

        logger.info("Meeting script is running. Keep this window open.")

    async def _drive_guarded(self) -> None:
        try:
            await self._drive()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Session error: {e}")
            self.request_shutdown("error")

    async def run(self) -> int:
        """Run the session until shutdown completes.

        Returns:
            Process exit status (0 after a graceful shutdown).
        """
        self.automation.on_close(self._on_page_closed)
        self._drive_task = asyncio.create_task(self._drive_guarded())

        await self._shutdown_requested.wait()
        await self.shutdown()
        return 0

    # ==================== Teardown ====================

    async def _cancel(self, task: Optional[asyncio.Task], name: str) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Suppressed error in shutdown ({name} task): {e}")

    async def _best_effort(self, step: str, action: Callable[[], Awaitable[None]]) -> bool:
        try:
            await action()
            return True
        except Exception as e:
            logger.error(f"[SHUTDOWN] Step '{step}' failed: {e}")
            return False

    async def _stop_capture(self) -> None:
        if await self.capture.stop():
            # Let trailing chunks reach the sink
            await asyncio.sleep(self.config.shutdown.drain_delay)

    async def _leave_call(self) -> None:
        leave_button = self.automation.locate(LEAVE_SELECTOR)
        if await leave_button.is_visible(self.config.shutdown.leave_probe_timeout_ms):
            await leave_button.click()
            logger.info('[SHUTDOWN] Clicked "Leave call" button.')
            await asyncio.sleep(self.config.shutdown.signaling_delay)
        else:
            logger.info("[SHUTDOWN] Could not find leave button, closing directly.")

    async def _close_sink(self) -> None:
        self.sink.close()

    async def shutdown(self, reason: Optional[str] = None) -> None:
        """Ordered, idempotent teardown. Ends in CLOSED."""
        self.request_shutdown(reason or "shutdown")
        if self._shutdown_started:
            await self._closed.wait()
            return
        self._shutdown_started = True

        self.session.advance(LifecycleState.SHUTTING_DOWN)
        logger.info(f"[SHUTDOWN] Leaving meeting and saving recording ({self.session.shutdown_reason})...")

        await self._cancel(self._monitor_task, "presence monitor")
        await self._cancel(self._drive_task, "session")

        await self._best_effort("stop capture", self._stop_capture)
        await self._best_effort("leave call", self._leave_call)
        await self._best_effort("close recording", self._close_sink)
        await self._best_effort("close browser", self.automation.close)

        self.session.advance(LifecycleState.CLOSED)
        self._closed.set()

        duration = time.monotonic() - self._started_monotonic
        logger.info(
            f"Session closed after {duration:.0f}s (reason: {self.session.shutdown_reason}, "
            f"chunks: {self.sink.chunk_count}, bytes: {self.sink.bytes_written}, file: {self.sink.path})"
        )
