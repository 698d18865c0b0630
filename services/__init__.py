"""
Meet Recorder Services

This package contains the runnable service entry points.

Services:
- recorder: join a Google Meet room, record it, leave when alone
"""

__version__ = "0.1.0"
