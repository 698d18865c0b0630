"""Pytest configuration and shared fixtures."""

import asyncio
import os
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

# Add project paths
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tool_modules.aa_meet_recorder.src.config import (  # noqa: E402
    CaptureConfig,
    JoinConfig,
    PresenceConfig,
    RecorderConfig,
    ShutdownConfig,
)

ROOM_URL = "https://meet.google.com/abc-defg-hij"


@pytest.fixture(autouse=True)
def setup_env():
    """Set up environment variables for testing."""
    original_env = dict(os.environ)
    os.environ.setdefault("TESTING", "1")

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Scripted browser automation
# ============================================================================


class FakeElement:
    """ElementHandle whose behaviour is scripted on the owning FakeAutomation."""

    def __init__(self, automation: "FakeAutomation", selector: str):
        self.automation = automation
        self.selector = selector

    async def is_visible(self, timeout_ms: int = 0) -> bool:
        self.automation.log.append(("visible?", self.selector, timeout_ms))
        return self.automation.is_visible(self.selector)

    async def click(self, force: bool = False) -> None:
        self.automation.log.append(("click", self.selector))
        self.automation.clicks.append(self.selector)
        error = self.automation.click_errors.get(self.selector)
        if error is not None:
            raise error

    async def fill(self, text: str) -> None:
        self.automation.log.append(("fill", self.selector, text))
        self.automation.fills.append((self.selector, text))
        self.automation.values[self.selector] = text

    async def get_attribute(self, name: str, timeout_ms: int = 1000) -> Optional[str]:
        self.automation.log.append(("attribute", self.selector, name))
        key = (self.selector, name)
        if key not in self.automation.attributes:
            raise TimeoutError(f"Timeout {timeout_ms}ms exceeded waiting for {self.selector}")
        return self.automation.attributes[key]

    async def input_value(self) -> str:
        return self.automation.values.get(self.selector, "")


class FakeAutomation:
    """In-memory AutomationCapability with scripted visibility and results.

    visible[selector] is either a bool or a list of bools consumed one per
    probe (the last value sticks). scripts maps a page script to its result
    (an Exception instance is raised instead); anything else goes through
    evaluate_handler.
    """

    def __init__(self, url: str = ROOM_URL):
        self._url = url
        self.visible: dict[str, Any] = {}
        self.attributes: dict[tuple[str, str], Optional[str]] = {}
        self.values: dict[str, str] = {}
        self.click_errors: dict[str, Exception] = {}
        self.clicks: list[str] = []
        self.fills: list[tuple[str, str]] = []
        self.log: list[tuple] = []
        self.evaluations: list[tuple[str, Any]] = []
        self.scripts: dict[str, Any] = {}
        self.evaluate_handler: Callable[[str, Any], Any] = lambda script, arg: None
        self.callbacks: dict[str, Callable[..., Any]] = {}
        self.callback_error: Optional[Exception] = None
        self.permissions: list[tuple[list[str], str]] = []
        self.navigated: list[str] = []
        self.navigate_error: Optional[Exception] = None
        self.auth_redirects: list[str] = [ROOM_URL]
        self.url_waits: list[Callable[[str], bool]] = []
        self.hidden_result = True
        self.close_handlers: list[Callable[[], None]] = []
        self.close_calls = 0
        self.close_error: Optional[Exception] = None
        self.started = False

    @property
    def url(self) -> str:
        return self._url

    def is_visible(self, selector: str) -> bool:
        value = self.visible.get(selector, False)
        if isinstance(value, list):
            if len(value) > 1:
                return value.pop(0)
            return value[0] if value else False
        return bool(value)

    async def start(self) -> None:
        self.started = True

    async def navigate(self, url: str) -> None:
        self.log.append(("navigate", url))
        self.navigated.append(url)
        if self.navigate_error is not None:
            raise self.navigate_error

    def locate(self, selector: str) -> FakeElement:
        return FakeElement(self, selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.evaluations.append((script, arg))
        self.log.append(("evaluate", script))
        if script in self.scripts:
            result = self.scripts[script]
            if isinstance(result, Exception):
                raise result
            return result
        return self.evaluate_handler(script, arg)

    async def register_host_callback(self, name: str, handler: Callable[..., Any]) -> None:
        if self.callback_error is not None:
            raise self.callback_error
        self.callbacks[name] = handler

    async def grant_permissions(self, permissions: list[str], origin: str) -> None:
        self.permissions.append((permissions, origin))

    async def wait_for_any(self, selectors: list[str], timeout_ms: int) -> Optional[str]:
        self.log.append(("wait_for_any", tuple(selectors), timeout_ms))
        for selector in selectors:
            if self.is_visible(selector):
                return selector
        return None

    async def wait_for_hidden(self, selector: str, timeout_ms: int) -> bool:
        self.log.append(("wait_for_hidden", selector, timeout_ms))
        return self.hidden_result

    async def wait_for_url(self, predicate: Callable[[str], bool], timeout_ms: Optional[int] = None) -> None:
        # Walk the scripted redirects; with no match the wait never resolves
        self.url_waits.append(predicate)
        for url in self.auth_redirects:
            self._url = url
            if predicate(url):
                return
        await asyncio.Event().wait()

    def on_close(self, handler: Callable[[], None]) -> None:
        self.close_handlers.append(handler)

    def fire_close(self) -> None:
        for handler in list(self.close_handlers):
            handler()

    async def close(self) -> None:
        self.log.append(("close",))
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


@pytest.fixture
def fake_automation():
    """A scripted AutomationCapability sitting on the meeting room URL."""
    return FakeAutomation()


@pytest.fixture
def fast_config(tmp_path):
    """RecorderConfig with every delay collapsed so tests run instantly."""
    return RecorderConfig(
        join=JoinConfig(poll_interval=0.001, poll_budget=0.05, admission_buffer=0.0),
        capture=CaptureConfig(settle_delay=0.0),
        presence=PresenceConfig(sample_interval=0.0, grace_period=0.0, exit_delay=0.0),
        shutdown=ShutdownConfig(drain_delay=0.0, signaling_delay=0.0),
        recordings_dir=tmp_path / "recordings",
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.001)
