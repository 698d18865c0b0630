"""
Google Meet join flow.

Polls the pre-join screen until a join control can be clicked:
1. Dismiss optional overlays ("Dismiss", "Got it", "OK")
2. Force microphone and camera off
3. Fill the display name only when the field is empty (guest join)
4. Click the first visible "Join now" / "Ask to join" control

Then waits for admission: an in-meeting indicator must appear and the
"waiting for the host" message must be gone. Every failure here is
non-fatal; the session just never reaches IN_MEETING.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from tool_modules.aa_meet_recorder.src.automation import AutomationCapability
from tool_modules.aa_meet_recorder.src.config import JoinConfig
from tool_modules.aa_meet_recorder.src.session import LifecycleState, Session

logger = logging.getLogger(__name__)


# CSS selectors for Google Meet elements (may need updates as Meet UI changes)
DISMISS_SELECTORS = [
    'button:has-text("Dismiss")',
    'button:has-text("Got it")',
    'button:has-text("OK")',
]

MIC_SELECTOR = '[aria-label*="microphone"][aria-label*="off"], [aria-label*="microphone"][data-is-muted="false"]'
CAMERA_SELECTOR = '[aria-label*="camera"][aria-label*="off"], [aria-label*="camera"][data-is-muted="false"]'

# Label fragments that mean the control is currently ON (clicking turns it off)
MIC_ON_HINTS = ("turn off", "mute")
CAMERA_ON_HINTS = ("turn off", "disable")

NAME_INPUT_SELECTOR = 'input[placeholder*="name"], input[aria-label*="name"]'

JOIN_SELECTORS = [
    'span:has-text("Join now")',
    'span:has-text("Ask to join")',
    'button:has-text("Join now")',
    'button:has-text("Ask to join")',
    '[aria-label="Join now"]',
]

IN_MEETING_SELECTORS = [
    'button[aria-label="Chat with everyone"]',
    'button[aria-label="Show everyone"]',
    'button[aria-label="Meeting details"]',
]

WAITING_FOR_HOST_SELECTOR = 'text="Please wait until a meeting host brings you into the call"'


def label_says_on(label: str, hints: tuple[str, ...]) -> bool:
    """Return True if a toggle's accessible label says the device is on."""
    label = label.lower()
    if "unmute" in label or "turn on" in label:
        return False
    return any(hint in label for hint in hints)


@dataclass
class JoinAttempt:
    """Result of one probe of the pre-join screen."""

    overlays_dismissed: list[str] = field(default_factory=list)
    mic_muted: bool = False
    camera_disabled: bool = False
    name_filled: bool = False
    join_selector: Optional[str] = None

    @property
    def entered(self) -> bool:
        return self.join_selector is not None


class JoinOrchestrator:
    """Polls and mutates the pre-join page until the session is entered."""

    def __init__(
        self,
        automation: AutomationCapability,
        session: Session,
        config: Optional[JoinConfig] = None,
    ):
        self.automation = automation
        self.session = session
        self.config = config or JoinConfig()

    async def _dismiss_overlays(self, attempt: JoinAttempt) -> None:
        for selector in DISMISS_SELECTORS:
            try:
                button = self.automation.locate(selector)
                if await button.is_visible(self.config.overlay_probe_timeout_ms):
                    await button.click()
                    attempt.overlays_dismissed.append(selector)
                    logger.info(f"[JOIN] Dismissed overlay using selector: {selector}")
            except Exception as e:
                logger.debug(f"Suppressed error in _dismiss_overlays ({selector}): {e}")

    async def _turn_off(self, selector: str, hints: tuple[str, ...], device: str) -> bool:
        try:
            control = self.automation.locate(selector)
            label = await control.get_attribute("aria-label", self.config.media_label_timeout_ms) or ""
            if label_says_on(label, hints):
                await control.click()
                logger.info(f"[JOIN] Turned off {device} (label was {label!r})")
                return True
        except Exception as e:
            # Control missing or label changed: assume it is already off
            logger.debug(f"Suppressed error in _turn_off ({device}, {selector}): {e}")
        return False

    async def _fill_name(self) -> bool:
        try:
            name_input = self.automation.locate(NAME_INPUT_SELECTOR)
            if not await name_input.is_visible(self.config.name_probe_timeout_ms):
                return False
            current = await name_input.input_value()
            if current:
                logger.debug(f"[JOIN] Name field already set to {current!r}, leaving it")
                return False
            await name_input.fill(self.session.display_name)
            logger.info(f"[JOIN] Entered name: {self.session.display_name}")
            return True
        except Exception as e:
            logger.debug(f"Suppressed error in _fill_name: {e}")
            return False

    async def _click_join(self) -> Optional[str]:
        for selector in JOIN_SELECTORS:
            try:
                button = self.automation.locate(selector)
                if await button.is_visible(self.config.join_probe_timeout_ms):
                    await button.click()
                    logger.info(f"[JOIN] Clicked join button using selector: {selector}")
                    return selector
            except Exception as e:
                logger.debug(f"Suppressed error in _click_join ({selector}): {e}")
        return None

    async def attempt_entry(self) -> JoinAttempt:
        """Run one probe of the pre-join screen, in order."""
        attempt = JoinAttempt()
        await self._dismiss_overlays(attempt)
        attempt.mic_muted = await self._turn_off(MIC_SELECTOR, MIC_ON_HINTS, "microphone")
        attempt.camera_disabled = await self._turn_off(CAMERA_SELECTOR, CAMERA_ON_HINTS, "camera")
        attempt.name_filled = await self._fill_name()
        attempt.join_selector = await self._click_join()
        return attempt

    async def join(self) -> bool:
        """Poll attempt_entry() on a fixed interval until a join control is clicked.

        Returns:
            True if a join control was clicked. False means the polling budget
            ran out and entry is left to a human (not an error).
        """
        self.session.advance(LifecycleState.JOINING)
        logger.info("[JOIN] Waiting for meeting room to be ready...")

        started = time.monotonic()
        max_attempts = self.config.max_attempts
        for attempt_number in range(1, max_attempts + 1):
            attempt = await self.attempt_entry()
            if attempt.entered:
                logger.info(
                    f"[JOIN] Join requested on attempt {attempt_number} "
                    f"after {time.monotonic() - started:.1f}s"
                )
                return True
            logger.debug(f"[JOIN] Attempt {attempt_number}/{max_attempts}: no join control visible")
            if attempt_number < max_attempts:
                await asyncio.sleep(self.config.poll_interval)

        logger.warning(
            f"[JOIN] Join button not found after {max_attempts} attempts "
            f"({time.monotonic() - started:.1f}s) or already in meeting. "
            "Manual intervention required: please join manually if not joined."
        )
        return False

    async def wait_for_admission(self) -> bool:
        """Block until the in-meeting UI is visible and the host has admitted us.

        Returns:
            True once admitted, False on timeout (logged, not raised).
        """
        self.session.advance(LifecycleState.WAITING_ADMISSION)
        timeout_ms = self.config.admission_timeout_ms
        started = time.monotonic()

        logger.info("[JOIN] Waiting for in-meeting UI to appear (Chat/People buttons)...")
        indicator = await self.automation.wait_for_any(IN_MEETING_SELECTORS, timeout_ms)
        if indicator is None:
            logger.error(
                f"[JOIN] Timed out after {time.monotonic() - started:.0f}s waiting for in-meeting UI "
                f"(probed: {', '.join(IN_MEETING_SELECTORS)})"
            )
            return False
        logger.info(f"[JOIN] In-meeting indicator visible: {indicator}")

        try:
            waiting = self.automation.locate(WAITING_FOR_HOST_SELECTOR)
            still_waiting = await waiting.is_visible(self.config.waiting_message_probe_timeout_ms)
        except Exception as e:
            logger.debug(f"Suppressed error in wait_for_admission (waiting message probe): {e}")
            still_waiting = False

        if still_waiting:
            logger.info('[JOIN] Still in the "Asking to join" state. Waiting for admission...')
            if not await self.automation.wait_for_hidden(WAITING_FOR_HOST_SELECTOR, timeout_ms):
                logger.error(
                    f"[JOIN] Host did not admit the bot within {time.monotonic() - started:.0f}s"
                )
                return False

        logger.info("[JOIN] Bot has been admitted to the meeting.")
        return True
