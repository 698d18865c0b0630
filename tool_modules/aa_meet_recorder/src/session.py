"""
Recording session state.

One Session exists per process run. Its lifecycle state only ever moves
forward; the controller and the join orchestrator are the only writers.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


class LifecycleState(Enum):
    """Session lifecycle, in transition order."""

    INITIALIZING = 0
    AWAITING_AUTH = 1
    JOINING = 2
    WAITING_ADMISSION = 3
    IN_MEETING = 4
    SHUTTING_DOWN = 5
    CLOSED = 6

    def __ge__(self, other: "LifecycleState") -> bool:
        return self.value >= other.value

    def __gt__(self, other: "LifecycleState") -> bool:
        return self.value > other.value

    def __le__(self, other: "LifecycleState") -> bool:
        return self.value <= other.value

    def __lt__(self, other: "LifecycleState") -> bool:
        return self.value < other.value


def is_room_url(url: str, room_domain: str) -> bool:
    """Return True if url is hosted on the room domain (or a subdomain of it)."""
    host = (urlparse(url).hostname or "").lower()
    domain = room_domain.lower()
    return host == domain or host.endswith("." + domain)


@dataclass
class Session:
    """A single recording session."""

    room_url: str
    display_name: str
    headless: bool = False
    recordings_dir: Path = Path("recordings")
    auto_exit: bool = True
    keep_profile: bool = True
    started_at: datetime = field(default_factory=datetime.now)
    state: LifecycleState = LifecycleState.INITIALIZING
    entered_at: Optional[float] = None  # monotonic, set on IN_MEETING
    shutdown_reason: Optional[str] = None

    @property
    def output_path(self) -> Path:
        """Artifact path, named after the session start time in epoch millis."""
        millis = int(self.started_at.timestamp() * 1000)
        return self.recordings_dir / f"meet-record-{millis}.webm"

    @property
    def is_shutting_down(self) -> bool:
        return self.state >= LifecycleState.SHUTTING_DOWN

    def advance(self, state: LifecycleState) -> bool:
        """Move the session forward to state.

        Returns:
            True if the transition happened, False if it would regress
            (or stay put), in which case the state is left untouched.
        """
        if state <= self.state:
            if state != self.state:
                logger.warning(f"Ignoring lifecycle regression {self.state.name} -> {state.name}")
            return False

        logger.info(f"Session state: {self.state.name} -> {state.name}")
        self.state = state
        if state == LifecycleState.IN_MEETING:
            self.entered_at = time.monotonic()
        return True
