"""
Google Meet Recorder - unattended meeting recording agent.

This module provides:
- Browser automation seam (Protocol + Playwright implementation)
- Join state machine with overlay, mute, name and admission handling
- In-page composite audio/video capture streamed to a local file
- Presence-based auto-exit when the bot is the last participant
- Ordered, idempotent session shutdown
"""

from tool_modules.common import PROJECT_ROOT

__project_root__ = PROJECT_ROOT
__version__ = "0.1.0"
