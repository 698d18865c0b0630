"""
In-page composite capture.

Installs one capture object inside the meeting page that:
- grabs a video track of the current tab (getDisplayMedia, preferCurrentTab)
- mixes every <audio>/<video> element into one WebAudio destination,
  re-discovering elements on an interval as participants come and go
- records [video track + mixed audio track] with MediaRecorder and hands
  each non-empty chunk to the host through an exposed function

All bookkeeping (connected elements, timers, graph) lives on that single
instance, so installing the script again on the same page is harmless.
"""

import asyncio
import logging
from typing import Optional

from tool_modules.aa_meet_recorder.src.automation import AutomationCapability
from tool_modules.aa_meet_recorder.src.config import CaptureConfig
from tool_modules.aa_meet_recorder.src.recording_sink import RecordingSink

logger = logging.getLogger(__name__)

WINDOW_KEY = "__meetRecorderCapture"

CAPTURE_SCRIPT = """
(windowKey) => {
    if (window[windowKey]) {
        return false;
    }

    class MeetRecorderCapture {
        constructor() {
            this.connected = new WeakSet();
            this.audioCtx = null;
            this.destination = null;
            this.recorder = null;
            this.delivery = Promise.resolve();
            this.stream = null;
            this.discoveryTimer = null;
            this.stopped = false;
        }

        connectElements() {
            if (!this.audioCtx || !this.destination) return 0;
            const elements = [
                ...document.querySelectorAll('video'),
                ...document.querySelectorAll('audio'),
            ];
            let added = 0;
            for (const el of elements) {
                if (this.connected.has(el)) continue;
                try {
                    let source;
                    if (el.srcObject) {
                        const tracks = el.srcObject.getAudioTracks ? el.srcObject.getAudioTracks() : [];
                        if (tracks.length === 0) {
                            // Stream without audio yet, retry on the next pass
                            continue;
                        }
                        source = this.audioCtx.createMediaStreamSource(el.srcObject);
                    } else if (el.src && el.src !== '') {
                        source = this.audioCtx.createMediaElementSource(el);
                    } else {
                        continue;
                    }
                    source.connect(this.destination);
                    source.connect(this.audioCtx.destination);
                    this.connected.add(el);
                    added += 1;
                    console.log(`[MeetRecorder] Connected audio from <${el.tagName}>`);
                } catch (e) {
                    console.warn('[MeetRecorder] Failed to connect source:', e);
                }
            }
            return added;
        }

        async start(opts) {
            if (this.recorder) {
                return { ok: true, alreadyRunning: true };
            }
            try {
                const displayStream = await navigator.mediaDevices.getDisplayMedia({
                    video: { displaySurface: 'browser' },
                    preferCurrentTab: true,
                    audio: false,
                });
                const videoTrack = displayStream.getVideoTracks()[0];
                if (!videoTrack) throw new Error('No video track');

                const Ctx = window.AudioContext || window.webkitAudioContext;
                this.audioCtx = new Ctx();
                if (this.audioCtx.state === 'suspended') {
                    await this.audioCtx.resume();
                }
                this.destination = this.audioCtx.createMediaStreamDestination();

                const connected = this.connectElements();
                this.discoveryTimer = setInterval(() => this.connectElements(), opts.discoveryIntervalMs);

                this.stream = new MediaStream([videoTrack]);
                const audioTracks = this.destination.stream.getAudioTracks();
                if (audioTracks[0]) {
                    this.stream.addTrack(audioTracks[0]);
                }

                const callback = window[opts.callbackName];
                this.recorder = new MediaRecorder(this.stream, { mimeType: opts.mimeType });
                this.recorder.ondataavailable = (e) => {
                    if (!e.data || e.data.size === 0) return;
                    const blob = e.data;
                    // Deliver in recorder order even when buffering resolves out of order
                    this.delivery = this.delivery
                        .then(async () => callback(new Uint8Array(await blob.arrayBuffer())))
                        .catch(err => console.warn('[MeetRecorder] Chunk delivery failed:', err));
                };
                this.recorder.onstop = () => this.release();
                this.recorder.start(opts.chunkIntervalMs);

                return {
                    ok: true,
                    videoLabel: videoTrack.label,
                    audioTrack: Boolean(audioTracks[0]),
                    connectedElements: connected,
                };
            } catch (err) {
                this.release();
                return { ok: false, error: String(err && err.message ? err.message : err) };
            }
        }

        release() {
            if (this.discoveryTimer) {
                clearInterval(this.discoveryTimer);
                this.discoveryTimer = null;
            }
            if (this.audioCtx) {
                const ctx = this.audioCtx;
                this.audioCtx = null;
                this.destination = null;
                if (ctx.state !== 'closed') {
                    ctx.close().catch(() => {});
                }
            }
        }

        stop() {
            const wasRecording = Boolean(this.recorder && this.recorder.state !== 'inactive');
            if (wasRecording) {
                this.recorder.stop();
            }
            this.recorder = null;
            if (this.stream) {
                this.stream.getTracks().forEach(t => t.stop());
                this.stream = null;
            }
            this.release();
            this.stopped = true;
            return wasRecording;
        }
    }

    window[windowKey] = new MeetRecorderCapture();
    return true;
}
"""

START_SCRIPT = """
async ([windowKey, opts]) => {
    const capture = window[windowKey];
    if (!capture) return { ok: false, error: 'capture script not installed' };
    return await capture.start(opts);
}
"""

STOP_SCRIPT = """
(windowKey) => {
    const capture = window[windowKey];
    if (!capture) return false;
    return capture.stop();
}
"""


class InPageCapture:
    """Drives the in-page capture object and feeds its chunks to the sink."""

    def __init__(
        self,
        automation: AutomationCapability,
        sink: RecordingSink,
        config: Optional[CaptureConfig] = None,
    ):
        self.automation = automation
        self.sink = sink
        self.config = config or CaptureConfig()
        self._callback_registered = False
        self._installed = False
        self.running = False

    def _on_chunk(self, data) -> None:
        self.sink.write(data)

    async def start(self) -> bool:
        """Start recording inside the page.

        Returns:
            True if the in-page recorder started. Failures are logged and
            leave the session running without a recording.
        """
        if self.running:
            return True

        logger.info("[CAPTURE] Attempting to start browser-side recording (composite mode)...")
        await asyncio.sleep(self.config.settle_delay)

        try:
            await self.automation.locate("body").click(force=True)
        except Exception as e:
            logger.debug(f"Suppressed error in capture start (user gesture click): {e}")

        try:
            if not self._callback_registered:
                await self.automation.register_host_callback(self.config.callback_name, self._on_chunk)
                self._callback_registered = True

            self._installed = True
            await self.automation.evaluate(CAPTURE_SCRIPT, WINDOW_KEY)
            result = await self.automation.evaluate(
                START_SCRIPT,
                [
                    WINDOW_KEY,
                    {
                        "callbackName": self.config.callback_name,
                        "mimeType": self.config.mime_type,
                        "chunkIntervalMs": self.config.chunk_interval_ms,
                        "discoveryIntervalMs": self.config.discovery_interval_ms,
                    },
                ],
            )
        except Exception as e:
            logger.error(f"[CAPTURE] Failed to set up composite recording: {e}")
            return False

        if not isinstance(result, dict) or not result.get("ok"):
            error = result.get("error") if isinstance(result, dict) else result
            logger.error(f"[CAPTURE] Browser failed composite recording: {error}")
            # The page already released whatever it had set up
            self._installed = False
            return False

        self.running = True
        if result.get("alreadyRunning"):
            logger.info("[CAPTURE] In-page recorder was already running")
        else:
            logger.info(
                f"[CAPTURE] Recording started (video: {result.get('videoLabel')!r}, "
                f"audio track: {result.get('audioTrack')}, "
                f"media elements connected: {result.get('connectedElements')})"
            )
        return True

    async def stop(self) -> bool:
        """Stop the in-page recorder. Safe to call when never started.

        Returns:
            True if a recorder was stopped (trailing chunks may still arrive).
        """
        was_running, self.running = self.running, False
        installed, self._installed = self._installed, False
        if not installed:
            return False

        stopped = await self.automation.evaluate(STOP_SCRIPT, WINDOW_KEY)
        logger.info(f"[CAPTURE] In-page recorder stopped (was recording: {bool(stopped)})")
        return was_running or bool(stopped)
