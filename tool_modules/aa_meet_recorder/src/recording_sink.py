"""
Recording Sink.

Appends recorder chunks, in arrival order, to a single output file.

Chunks are delivered from the page through Playwright's exposed-function
bridge. Depending on how the page serialises its Uint8Array they arrive
either as raw bytes or as a sparse ``{index: byte}`` mapping, so every
payload is normalised to a contiguous byte string before it is appended.
"""

import logging
import os
from pathlib import Path
from typing import Any, BinaryIO, Optional

logger = logging.getLogger(__name__)


class RecordingSinkError(Exception):
    """Raised when the sink cannot open or finalise its output file."""


def normalize_chunk(data: Any) -> bytes:
    """Convert a delivered chunk into bytes.

    Accepts bytes-like objects, a list of ints, or a mapping of
    index -> byte value (keys may be strings or ints).
    """
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data)

    try:
        if isinstance(data, dict):
            ordered = sorted(data.items(), key=lambda item: int(item[0]))
            return bytes(int(value) for _, value in ordered)
        if isinstance(data, (list, tuple)):
            return bytes(int(value) for value in data)
    except (TypeError, ValueError) as e:
        raise RecordingSinkError(f"Malformed chunk payload: {e}") from e

    raise RecordingSinkError(f"Unsupported chunk payload type: {type(data).__name__}")


class RecordingSink:
    """Append-only writer for one session's recording artifact."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._file: Optional[BinaryIO] = None
        self._opened = False
        self._closed = False
        self._created = False
        self.chunk_count = 0
        self.bytes_written = 0

    @property
    def is_open(self) -> bool:
        return self._file is not None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Create the output file. Only one open per sink is allowed."""
        if self._opened:
            raise RecordingSinkError(f"Recording sink already opened: {self.path}")
        self._opened = True

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._created = not self.path.exists()
            self._file = open(self.path, "ab")
        except OSError as e:
            raise RecordingSinkError(f"Cannot open recording file {self.path}: {e}") from e

        logger.info(f"[SINK] Recording to {self.path}")

    def write(self, chunk: Any) -> None:
        """Append one delivered chunk. Never raises on I/O failure."""
        if self._file is None:
            state = "closed" if self._closed else "not open"
            logger.warning(f"[SINK] Dropping chunk, sink is {state}")
            return

        try:
            data = normalize_chunk(chunk)
        except RecordingSinkError as e:
            logger.error(f"[SINK] Dropping chunk #{self.chunk_count + 1}: {e}")
            return

        if not data:
            return

        try:
            self._file.write(data)
        except OSError as e:
            logger.error(f"[SINK] Failed to write chunk #{self.chunk_count + 1} ({len(data)} bytes): {e}")
            return

        self.chunk_count += 1
        self.bytes_written += len(data)
        logger.debug(f"[SINK] Saved chunk #{self.chunk_count}. Current file size: {self.bytes_written} bytes")

    def close(self) -> None:
        """Flush, sync and close the file. Safe to call more than once.

        A file this sink created but never wrote a chunk to is removed.
        """
        if self._closed:
            return
        self._closed = True

        handle, self._file = self._file, None
        if handle is None:
            return

        try:
            handle.flush()
            os.fsync(handle.fileno())
        except OSError as e:
            raise RecordingSinkError(f"Failed to flush recording file {self.path}: {e}") from e
        finally:
            try:
                handle.close()
            except OSError as e:
                logger.error(f"[SINK] Error closing {self.path}: {e}")

        if self.chunk_count == 0 and self._created:
            try:
                self.path.unlink()
                logger.info(f"[SINK] No chunks recorded, removed empty {self.path}")
            except OSError as e:
                logger.warning(f"[SINK] Could not remove empty recording {self.path}: {e}")
            return

        logger.info(f"[SINK] Closed {self.path} ({self.chunk_count} chunks, {self.bytes_written} bytes)")
