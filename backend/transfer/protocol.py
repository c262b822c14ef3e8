"""
Chunked transfer protocol over an ordered, reliable data channel.

The sender streams a file as raw binary frames of CHUNK_SIZE bytes (the
last one short) and then one text control message, {"type": "done"}.
There is no sequence numbering or retransmission: the channel must
deliver every message exactly once and in order.

Receiver classification rule: a text message that parses as JSON with
type "done" is the completion signal. Everything else is file data,
including text that fails to parse. Binary messages are never parsed.
"""

import asyncio
import logging
import math
import time
from typing import AsyncIterator, Awaitable, Callable, Union

from pydantic import ValidationError

from config import CHUNK_SIZE
from errors import TransportFailure
from transfer.models import DONE_TYPE, ControlMessage

logger = logging.getLogger(__name__)

DONE_MESSAGE = ControlMessage(type=DONE_TYPE).model_dump_json()

Message = Union[bytes, str]


def is_done_message(message: Message) -> bool:
    """True only for the completion control message."""
    if not isinstance(message, str):
        return False
    try:
        control = ControlMessage.model_validate_json(message)
    except ValidationError:
        return False
    return control.type == DONE_TYPE


async def read_frames(
    file_path: str, file_size: int, chunk_size: int = CHUNK_SIZE
) -> AsyncIterator[bytes]:
    """
    Yield the first `file_size` bytes of a file in order, one frame at a time.

    The next read is only issued once the caller asks for the next frame,
    so at most one read is ever in flight.
    """
    remaining = file_size
    with open(file_path, "rb") as f:
        while remaining > 0:
            chunk = await asyncio.to_thread(f.read, min(chunk_size, remaining))
            if not chunk:
                raise OSError(
                    f"{file_path} ended after {file_size - remaining} of {file_size} bytes"
                )
            remaining -= len(chunk)
            yield chunk


async def send_file(
    file_path: str,
    file_size: int,
    send: Callable[[Message], Awaitable[None]],
    on_frame: Callable[[int], None],
    chunk_size: int = CHUNK_SIZE,
) -> int:
    """
    Stream a file followed by the completion signal.

    Args:
        file_path: Local path of the file to send.
        file_size: Size announced in the offer; never read past it.
        send: async fn(message) that hands one message to the channel.
        on_frame: fn(byte_count) called after each frame is sent.

    Returns:
        Number of file bytes sent.
    """
    sent = 0
    async for frame in read_frames(file_path, file_size, chunk_size):
        await send(frame)
        sent += len(frame)
        on_frame(len(frame))

    await send(DONE_MESSAGE)
    logger.info(f"Sent {sent} bytes of {file_path} and completion signal")
    return sent


def percent(done: int, total: int) -> int:
    """round(100 * done / total), halves rounded up."""
    if total <= 0:
        return 0
    return math.floor(100 * done / total + 0.5)


class ReceiveBuffer:
    """
    Receiver-side reassembly of one file.

    Frames are kept in memory, in arrival order, until the session ends;
    there is no back-pressure, so the file has to fit in memory.
    """

    def __init__(self, file_size: int):
        self.file_size = file_size
        self.frames: list[bytes] = []
        self.bytes_received = 0
        self.complete = False

    @property
    def progress_percent(self) -> int:
        if self.file_size == 0:
            return 100 if self.complete else 0
        return percent(self.bytes_received, self.file_size)

    def accept(self, message: Message) -> bool:
        """
        Take one inbound message. Returns True once the completion signal
        arrives with every announced byte received.

        Raises TransportFailure if the peer overruns the announced size or
        signals completion early.
        """
        if self.complete:
            return True

        if is_done_message(message):
            if self.bytes_received != self.file_size:
                raise TransportFailure(
                    f"Transfer ended after {self.bytes_received} of {self.file_size} bytes."
                )
            self.complete = True
            return True

        frame = message.encode("utf-8") if isinstance(message, str) else bytes(message)
        if self.bytes_received + len(frame) > self.file_size:
            raise TransportFailure("Peer sent more data than announced.")

        self.frames.append(frame)
        self.bytes_received += len(frame)
        return False

    def assemble(self) -> bytes:
        return b"".join(self.frames)


class SpeedTracker:
    """Rolling average speed calculator."""

    def __init__(self, window: float = 2.0):
        self._window = window
        self._samples: list[tuple[float, int]] = []

    def record(self, byte_count: int) -> None:
        now = time.monotonic()
        self._samples.append((now, byte_count))
        cutoff = now - self._window
        self._samples = [(t, b) for t, b in self._samples if t >= cutoff]

    def get_speed(self) -> float:
        """Returns speed in bytes/sec."""
        if len(self._samples) < 2:
            return 0.0
        total_bytes = sum(b for _, b in self._samples[1:])
        elapsed = self._samples[-1][0] - self._samples[0][0]
        if elapsed <= 0:
            return 0.0
        return total_bytes / elapsed

    def reset(self) -> None:
        self._samples = []
