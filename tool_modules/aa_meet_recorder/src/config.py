"""
Meet Recorder Configuration.

Centralizes all configuration for the meeting recorder including:
- Join polling and admission timings
- In-page capture settings
- Presence (auto-exit) thresholds
- Shutdown delays
- Browser launch settings

Defaults can be overridden from the ``meet_recorder`` section of config.json
and then from command line flags.
"""

import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Optional

from tool_modules.common import PROJECT_ROOT, get_config_section

__project_root__ = PROJECT_ROOT

logger = logging.getLogger(__name__)

CONFIG_SECTION = "meet_recorder"


@dataclass
class JoinConfig:
    """Join polling and admission settings."""

    # Polling loop: one attempt every interval, for at most budget seconds
    poll_interval: float = 2.0
    poll_budget: float = 60.0

    # Probe timeouts (milliseconds)
    overlay_probe_timeout_ms: int = 500
    media_label_timeout_ms: int = 1000
    name_probe_timeout_ms: int = 1000
    join_probe_timeout_ms: int = 2000
    waiting_message_probe_timeout_ms: int = 2000

    # Admission waits (milliseconds)
    admission_timeout_ms: int = 300000

    # Settle time after admission before recording starts
    admission_buffer: float = 3.0

    @property
    def max_attempts(self) -> int:
        return max(1, int(self.poll_budget // self.poll_interval))


@dataclass
class CaptureConfig:
    """In-page capture settings."""

    settle_delay: float = 5.0
    chunk_interval_ms: int = 1000
    discovery_interval_ms: int = 3000
    mime_type: str = "video/webm"
    callback_name: str = "saveRecordingChunk"


@dataclass
class PresenceConfig:
    """Presence monitor (auto-exit) settings."""

    sample_interval: float = 3.0
    grace_period: float = 10.0
    exit_delay: float = 15.0


@dataclass
class ShutdownConfig:
    """Shutdown sequence delays and probes."""

    drain_delay: float = 2.0
    leave_probe_timeout_ms: int = 2000
    signaling_delay: float = 1.0


@dataclass
class BrowserConfig:
    """Browser launch settings."""

    headless: bool = False
    profile_dir: Path = Path.cwd() / "user_data"
    viewport_width: int = 1280
    viewport_height: int = 720
    navigation_wait_until: str = "networkidle"
    permission_origin: str = "https://meet.google.com"
    tab_capture_title: str = "Meet"


@dataclass
class RecorderConfig:
    """Main configuration for the Meet Recorder."""

    join: JoinConfig = field(default_factory=JoinConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    shutdown: ShutdownConfig = field(default_factory=ShutdownConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)

    # Room settings
    room_domain: str = "meet.google.com"
    default_display_name: str = "Assistant"

    # Session variants
    auto_exit: bool = True
    keep_profile: bool = True

    recordings_dir: Path = Path.cwd() / "recordings"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        dirs = [self.recordings_dir]
        if self.keep_profile:
            dirs.append(self.browser.profile_dir)
        for dir_path in dirs:
            dir_path.mkdir(parents=True, exist_ok=True)


def _coerce(current: Any, value: Any) -> Any:
    """Convert a JSON value to the type of the field it replaces."""
    if isinstance(current, Path):
        return Path(value).expanduser()
    if isinstance(current, bool):
        return bool(value)
    if isinstance(current, int) and not isinstance(value, bool):
        return int(value)
    if isinstance(current, float) and not isinstance(value, bool):
        return float(value)
    return value


def apply_overrides(target: Any, overrides: dict[str, Any], prefix: str = "") -> None:
    """Apply a (possibly nested) dict of overrides to a config dataclass.

    Unknown keys and values of the wrong shape are logged and skipped.
    """
    known = {f.name for f in fields(target)}
    for key, value in overrides.items():
        name = f"{prefix}{key}"
        if key not in known:
            logger.warning(f"Unknown config key '{name}' ignored")
            continue
        current = getattr(target, key)
        if is_dataclass(current):
            if isinstance(value, dict):
                apply_overrides(current, value, prefix=f"{name}.")
            else:
                logger.warning(f"Config key '{name}' must be an object, ignored")
            continue
        try:
            setattr(target, key, _coerce(current, value))
        except (TypeError, ValueError) as e:
            logger.warning(f"Invalid value for config key '{name}': {e}")


def load_overrides(config: RecorderConfig, paths: Optional[list[Path]] = None) -> RecorderConfig:
    """Apply the config.json ``meet_recorder`` section to a config instance."""
    section = get_config_section(CONFIG_SECTION, paths)
    if section:
        apply_overrides(config, section)
        logger.debug(f"Applied {len(section)} config override(s) from config.json")
    return config


# Global config instance
_config: Optional[RecorderConfig] = None


def get_config() -> RecorderConfig:
    """Get the global config instance."""
    global _config
    if _config is None:
        _config = load_overrides(RecorderConfig())
    return _config


def update_config(**kwargs) -> RecorderConfig:
    """Update config with new values."""
    global _config
    if _config is None:
        _config = load_overrides(RecorderConfig())
    for key, value in kwargs.items():
        if hasattr(_config, key):
            setattr(_config, key, value)
        else:
            logger.warning(f"Unknown config attribute '{key}' ignored")
    return _config


def reset_config() -> None:
    """Drop the global config instance (used by tests and re-entry)."""
    global _config
    _config = None
