"""
Tests for the Google Meet join flow.

Run with: pytest tests/test_meet_recorder_join.py -v
"""

import sys
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tool_modules.aa_meet_recorder.src.config import JoinConfig  # noqa: E402
from tool_modules.aa_meet_recorder.src.join import (  # noqa: E402
    CAMERA_ON_HINTS,
    CAMERA_SELECTOR,
    DISMISS_SELECTORS,
    IN_MEETING_SELECTORS,
    JOIN_SELECTORS,
    MIC_ON_HINTS,
    MIC_SELECTOR,
    NAME_INPUT_SELECTOR,
    WAITING_FOR_HOST_SELECTOR,
    JoinOrchestrator,
    label_says_on,
)
from tool_modules.aa_meet_recorder.src.session import LifecycleState, Session  # noqa: E402


@pytest.fixture
def session():
    return Session(room_url="https://meet.google.com/abc-defg-hij", display_name="Note Taker")


@pytest.fixture
def orchestrator(fake_automation, session):
    return JoinOrchestrator(fake_automation, session, JoinConfig(poll_interval=2.0, poll_budget=10.0))


class TestLabelSaysOn:
    @pytest.mark.parametrize(
        "label,hints,expected",
        [
            ("Turn off microphone (ctrl + d)", MIC_ON_HINTS, True),
            ("Mute microphone", MIC_ON_HINTS, True),
            ("Turn on microphone (ctrl + d)", MIC_ON_HINTS, False),
            ("Unmute microphone", MIC_ON_HINTS, False),
            ("Turn off camera (ctrl + e)", CAMERA_ON_HINTS, True),
            ("Disable camera", CAMERA_ON_HINTS, True),
            ("Turn on camera (ctrl + e)", CAMERA_ON_HINTS, False),
            ("", CAMERA_ON_HINTS, False),
        ],
    )
    def test_labels(self, label, hints, expected):
        assert label_says_on(label, hints) is expected


class TestAttemptEntry:
    @pytest.mark.asyncio
    async def test_steps_run_in_order(self, fake_automation, orchestrator):
        fake_automation.visible = {
            DISMISS_SELECTORS[1]: True,
            NAME_INPUT_SELECTOR: True,
            JOIN_SELECTORS[0]: True,
        }
        fake_automation.attributes = {
            (MIC_SELECTOR, "aria-label"): "Turn off microphone",
            (CAMERA_SELECTOR, "aria-label"): "Turn off camera",
        }

        attempt = await orchestrator.attempt_entry()

        assert fake_automation.clicks == [DISMISS_SELECTORS[1], MIC_SELECTOR, CAMERA_SELECTOR, JOIN_SELECTORS[0]]
        assert fake_automation.fills == [(NAME_INPUT_SELECTOR, "Note Taker")]
        fill_index = next(i for i, entry in enumerate(fake_automation.log) if entry[0] == "fill")
        join_index = fake_automation.log.index(("click", JOIN_SELECTORS[0]))
        assert fill_index < join_index
        assert attempt.overlays_dismissed == [DISMISS_SELECTORS[1]]
        assert attempt.mic_muted and attempt.camera_disabled and attempt.name_filled
        assert attempt.entered

    @pytest.mark.asyncio
    async def test_devices_already_off_are_not_clicked(self, fake_automation, orchestrator):
        fake_automation.attributes = {
            (MIC_SELECTOR, "aria-label"): "Turn on microphone",
            (CAMERA_SELECTOR, "aria-label"): "Turn on camera",
        }

        attempt = await orchestrator.attempt_entry()

        assert MIC_SELECTOR not in fake_automation.clicks
        assert CAMERA_SELECTOR not in fake_automation.clicks
        assert not attempt.mic_muted and not attempt.camera_disabled

    @pytest.mark.asyncio
    async def test_missing_device_controls_tolerated(self, fake_automation, orchestrator):
        fake_automation.visible = {JOIN_SELECTORS[2]: True}

        attempt = await orchestrator.attempt_entry()

        assert attempt.join_selector == JOIN_SELECTORS[2]
        assert not attempt.mic_muted

    @pytest.mark.asyncio
    async def test_prefilled_name_is_not_overwritten(self, fake_automation, orchestrator):
        fake_automation.visible = {NAME_INPUT_SELECTOR: True}
        fake_automation.values = {NAME_INPUT_SELECTOR: "Signed In User"}

        attempt = await orchestrator.attempt_entry()

        assert fake_automation.fills == []
        assert not attempt.name_filled

    @pytest.mark.asyncio
    async def test_hidden_name_field_is_skipped(self, fake_automation, orchestrator):
        attempt = await orchestrator.attempt_entry()

        assert fake_automation.fills == []
        assert not attempt.name_filled
        assert not attempt.entered

    @pytest.mark.asyncio
    async def test_only_first_visible_join_control_clicked(self, fake_automation, orchestrator):
        fake_automation.visible = {selector: True for selector in JOIN_SELECTORS}

        await orchestrator.attempt_entry()

        join_clicks = [c for c in fake_automation.clicks if c in JOIN_SELECTORS]
        assert join_clicks == [JOIN_SELECTORS[0]]

    @pytest.mark.asyncio
    async def test_failed_join_click_falls_through_to_next(self, fake_automation, orchestrator):
        fake_automation.visible = {JOIN_SELECTORS[0]: True, JOIN_SELECTORS[1]: True}
        fake_automation.click_errors = {JOIN_SELECTORS[0]: RuntimeError("Element is detached")}

        attempt = await orchestrator.attempt_entry()

        assert attempt.join_selector == JOIN_SELECTORS[1]


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_moves_session_to_joining(self, fake_automation, orchestrator, session):
        fake_automation.visible = {JOIN_SELECTORS[0]: True}

        assert await orchestrator.join() is True
        assert session.state == LifecycleState.JOINING

    @pytest.mark.asyncio
    async def test_join_polls_until_control_appears(self, fake_automation, orchestrator):
        # Each attempt probes the first selector once before falling through
        fake_automation.visible = {JOIN_SELECTORS[0]: [False, False, True]}

        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await orchestrator.join() is True

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(2.0)
        assert fake_automation.clicks.count(JOIN_SELECTORS[0]) == 1

    @pytest.mark.asyncio
    async def test_join_gives_up_after_budget(self, fake_automation, orchestrator):
        with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await orchestrator.join() is False

        # 10s budget / 2s interval = 5 attempts, no sleep after the last
        attempts = [e for e in fake_automation.log if e == ("visible?", JOIN_SELECTORS[0], 2000)]
        assert len(attempts) == 5
        assert mock_sleep.await_count == 4

    def test_default_budget_is_thirty_attempts(self):
        assert JoinConfig().max_attempts == 30


class TestWaitForAdmission:
    @pytest.mark.asyncio
    async def test_admitted_without_lobby(self, fake_automation, orchestrator, session):
        fake_automation.visible = {IN_MEETING_SELECTORS[1]: True}

        assert await orchestrator.wait_for_admission() is True
        assert session.state == LifecycleState.WAITING_ADMISSION
        assert not any(entry[0] == "wait_for_hidden" for entry in fake_automation.log)

    @pytest.mark.asyncio
    async def test_in_meeting_ui_never_appears(self, fake_automation, orchestrator):
        assert await orchestrator.wait_for_admission() is False
        assert ("wait_for_any", tuple(IN_MEETING_SELECTORS), 300000) in fake_automation.log

    @pytest.mark.asyncio
    async def test_waits_for_lobby_message_to_clear(self, fake_automation, orchestrator):
        fake_automation.visible = {IN_MEETING_SELECTORS[0]: True, WAITING_FOR_HOST_SELECTOR: True}
        fake_automation.hidden_result = True

        assert await orchestrator.wait_for_admission() is True
        assert ("wait_for_hidden", WAITING_FOR_HOST_SELECTOR, 300000) in fake_automation.log

    @pytest.mark.asyncio
    async def test_host_never_admits(self, fake_automation, orchestrator):
        fake_automation.visible = {IN_MEETING_SELECTORS[0]: True, WAITING_FOR_HOST_SELECTOR: True}
        fake_automation.hidden_result = False

        assert await orchestrator.wait_for_admission() is False
