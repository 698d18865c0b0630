"""
Presence-based auto-exit.

Samples the participant count from the meeting page and decides when the
bot has been the only participant long enough to leave.

Two independent heuristics are combined by taking the maximum:
- numeric controls: a button whose visible text is just a number (the
  People badge), or whose aria-label reads "(N)" / "N participants"
- video tiles: distinct elements tagged with a participant id

Decisions go through ``PresenceTracker``, a small state machine:

    UNKNOWN -> ACCOMPANIED -> ALONE(since) -> EXIT

Missing data never counts as being alone, and the alone timer has to run
for the full exit delay before EXIT is reached.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from tool_modules.aa_meet_recorder.src.automation import AutomationCapability, is_browser_closed_error
from tool_modules.aa_meet_recorder.src.config import PresenceConfig
from tool_modules.aa_meet_recorder.src.session import LifecycleState, Session

logger = logging.getLogger(__name__)

PRESENCE_SCRIPT = """
() => {
    const observations = [];
    let buttonCount = 0;

    const controls = document.querySelectorAll('button, [role="button"]');
    controls.forEach(el => {
        const text = (el.innerText || el.textContent || '').trim();
        if (/^\\d+$/.test(text)) {
            const n = parseInt(text, 10);
            observations.push(`control text "${text}"`);
            buttonCount = Math.max(buttonCount, n);
        }
        const label = el.getAttribute('aria-label') || '';
        const match = label.match(/\\((\\d+)\\)/) || label.match(/(\\d+)\\s+participants?/i);
        if (match) {
            const n = parseInt(match[1], 10);
            observations.push(`control label "${label}"`);
            buttonCount = Math.max(buttonCount, n);
        }
    });

    const tileIds = new Set();
    document.querySelectorAll('[data-participant-id], [data-requested-participant-id]').forEach(el => {
        const id = el.getAttribute('data-participant-id') || el.getAttribute('data-requested-participant-id');
        if (id) tileIds.add(id);
    });
    if (tileIds.size > 0) {
        observations.push(`${tileIds.size} participant tile(s)`);
    }

    return {
        count: Math.max(buttonCount, tileIds.size),
        buttonCount: buttonCount,
        tileCount: tileIds.size,
        observations: observations,
    };
}
"""


class PresenceState(Enum):
    """Auto-exit decision state."""

    UNKNOWN = "unknown"
    ACCOMPANIED = "accompanied"
    ALONE = "alone"
    EXIT = "exit"


@dataclass
class PresenceSample:
    """One reading of the participant-count signal."""

    count: int
    timestamp: float
    observations: list[str] = field(default_factory=list)

    @property
    def inconclusive(self) -> bool:
        return self.count <= 0


class PresenceTracker:
    """Debounced alone-detection state machine (no I/O)."""

    def __init__(
        self,
        entered_at: float,
        config: Optional[PresenceConfig] = None,
    ):
        self.config = config or PresenceConfig()
        self.entered_at = entered_at
        self.state = PresenceState.UNKNOWN
        self.alone_since: Optional[float] = None
        self.last_sample: Optional[PresenceSample] = None

    def observe(self, sample: PresenceSample) -> PresenceState:
        """Feed one sample and return the resulting state."""
        if self.state == PresenceState.EXIT:
            return self.state

        if sample.timestamp - self.entered_at < self.config.grace_period:
            logger.debug(f"[PRESENCE] Ignoring sample {sample.count} inside grace window")
            return self.state

        self.last_sample = sample

        if sample.inconclusive:
            if self.alone_since is not None:
                logger.info("[PRESENCE] Inconclusive sample, resetting alone timer")
            self.alone_since = None
            self._set_state(PresenceState.UNKNOWN)
        elif sample.count <= 1:
            if self.alone_since is None:
                self.alone_since = sample.timestamp
                self._set_state(PresenceState.ALONE)
            elif sample.timestamp - self.alone_since >= self.config.exit_delay:
                self._set_state(PresenceState.EXIT)
        else:
            self.alone_since = None
            self._set_state(PresenceState.ACCOMPANIED)

        return self.state

    def _set_state(self, state: PresenceState) -> None:
        if state != self.state:
            logger.info(f"[PRESENCE] {self.state.value} -> {state.value}")
            self.state = state


ExitCallback = Callable[[str], Union[None, Awaitable[None]]]


class PresenceMonitor:
    """Samples the page while IN_MEETING and requests exit when alone."""

    def __init__(
        self,
        automation: AutomationCapability,
        session: Session,
        on_exit: ExitCallback,
        config: Optional[PresenceConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.automation = automation
        self.session = session
        self.on_exit = on_exit
        self.config = config or PresenceConfig()
        self.clock = clock
        entered_at = session.entered_at if session.entered_at is not None else clock()
        self.tracker = PresenceTracker(entered_at, self.config)

    async def sample(self) -> PresenceSample:
        """Query the page for the participant count. Errors give an inconclusive sample."""
        now = self.clock()
        try:
            result = await self.automation.evaluate(PRESENCE_SCRIPT)
        except Exception as e:
            if is_browser_closed_error(e):
                logger.debug(f"[PRESENCE] Page closed while sampling: {e}")
            else:
                logger.warning(f"[PRESENCE] Sampling failed: {e}")
            return PresenceSample(count=0, timestamp=now, observations=[f"error: {e}"])

        if not isinstance(result, dict):
            return PresenceSample(count=0, timestamp=now, observations=["no result"])

        try:
            count = int(result.get("count") or 0)
        except (TypeError, ValueError):
            count = 0
        return PresenceSample(count=count, timestamp=now, observations=list(result.get("observations") or []))

    async def tick(self) -> PresenceState:
        sample = await self.sample()
        logger.debug(f"[PRESENCE] Sample: {sample.count} ({'; '.join(sample.observations) or 'no signal'})")
        return self.tracker.observe(sample)

    async def run(self) -> None:
        """Tick on a fixed interval while the session is in the meeting."""
        logger.info(
            f"[PRESENCE] Monitoring participants every {self.config.sample_interval:.0f}s "
            f"(grace {self.config.grace_period:.0f}s, exit after {self.config.exit_delay:.0f}s alone)"
        )
        while self.session.state == LifecycleState.IN_MEETING:
            state = await self.tick()
            if state == PresenceState.EXIT:
                logger.info(
                    f"[PRESENCE] Bot has been the only participant for at least "
                    f"{self.config.exit_delay:.0f}s, leaving"
                )
                result = self.on_exit("alone in meeting")
                if asyncio.iscoroutine(result):
                    await result
                return
            await asyncio.sleep(self.config.sample_interval)
