"""
Transfer Manager: runs one session at a time.

Feeds user actions and transport events through the connection state
machine on a single worker task, and carries out the effects the machine
asks for. Slow transport work (description creation, the send loop) runs
in tracked background tasks that report back through the same queue.
"""

import asyncio
import logging
import os
import time
from typing import Awaitable, Callable

from config import DEFAULT_SAVE_DIR, PROGRESS_INTERVAL, PUBLIC_URL
from errors import InvalidHandshake, SessionError, StorageFailure, TransportFailure
from handshake.codec import build_link
from handshake.pending import PendingSlot
from transfer.events import (
    AcceptRemoteDescription,
    AnswerSubmitted,
    ClearPendingPayload,
    CreateChannel,
    CreateLocalDescription,
    Effect,
    Event,
    ExposeToken,
    FileSaved,
    FrameSent,
    LinkRequested,
    LocalDescriptionReady,
    MessageReceived,
    OfferLinkOpened,
    OpenTransport,
    OperationFailed,
    PromptSecret,
    RemoteDescriptionAccepted,
    Reset,
    SaveReceivedFile,
    SecretSubmitted,
    SendFinished,
    StartSending,
    StorePendingPayload,
    SurfaceError,
    TearDown,
)
from transfer.machine import ConnectionStateMachine
from transfer.models import AppState, SessionInfo, TransferDirection
from transfer.protocol import SpeedTracker, send_file
from transport.base import ChannelTransport, Listener

logger = logging.getLogger(__name__)

TransportFactory = Callable[[Listener], ChannelTransport]


def _default_transport_factory(listener: Listener) -> ChannelTransport:
    from transport.rtc import RTCTransport
    return RTCTransport(listener)


def _unique_path(save_dir: str, file_name: str) -> str:
    """Pick a free path in save_dir, keeping only the base name of file_name."""
    name = os.path.basename(file_name) or "download"
    stem, ext = os.path.splitext(name)
    candidate = os.path.join(save_dir, name)
    counter = 1
    while os.path.exists(candidate):
        candidate = os.path.join(save_dir, f"{stem} ({counter}){ext}")
        counter += 1
    return candidate


class TransferManager:
    """Owns the current session, its transport and its background tasks."""

    def __init__(
        self,
        transport_factory: TransportFactory | None = None,
        pending_slot: PendingSlot | None = None,
        save_dir: str = DEFAULT_SAVE_DIR,
        public_url: str = PUBLIC_URL,
    ) -> None:
        self._machine = ConnectionStateMachine()
        self._transport_factory = transport_factory or _default_transport_factory
        self._transport: ChannelTransport | None = None
        self._pending = pending_slot or PendingSlot()
        self._save_dir = save_dir
        self._public_url = public_url
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._event_callbacks: list = []  # async fn(event_type, data)
        self._tracker = SpeedTracker()
        self._last_progress_time = 0.0

    @property
    def state(self) -> AppState:
        return self._machine.state

    @property
    def saved_path(self) -> str | None:
        return self._machine.session.saved_path

    def on_event(self, callback: Callable[[str, dict], Awaitable[None]]) -> None:
        """Register callback: async fn(event_type: str, data: dict)."""
        self._event_callbacks.append(callback)

    async def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all registered callbacks."""
        for cb in self._event_callbacks:
            try:
                await cb(event_type, data)
            except Exception as e:
                logger.error(f"Event callback error: {e}")

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the worker that serializes every state transition."""
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._run())
        logger.info("Transfer manager started")

    async def stop(self) -> None:
        """Stop background work and close the transport."""
        self._cancel_tasks()
        if self._worker:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        await self._close_transport()
        logger.info("Transfer manager stopped")

    def post(self, event: Event) -> None:
        """Queue an event. Safe to call from transport callbacks."""
        self._queue.put_nowait(event)

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def settle(self) -> None:
        """Wait until the queue is empty and no background task is running."""
        while True:
            await self._queue.join()
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.wait(pending)

    # --- User actions ---

    async def create_link(self, file_path: str, secret: str = "") -> SessionInfo:
        """Start a session as the sender of file_path."""
        if not os.path.isfile(file_path):
            raise FileNotFoundError(file_path)

        self.post(LinkRequested(
            file_path=file_path,
            file_name=os.path.basename(file_path),
            file_size=os.path.getsize(file_path),
            secret=secret,
        ))
        await self.drain()
        return self.snapshot()

    async def open_link(self, link: str) -> SessionInfo:
        """Start a session as the receiver of an offer link or token."""
        self.post(OfferLinkOpened(link))
        await self.drain()
        return self.snapshot()

    async def submit_secret(self, secret: str) -> SessionInfo:
        self.post(SecretSubmitted(secret, self._pending.load()))
        await self.drain()
        return self.snapshot()

    async def submit_answer(self, token: str) -> SessionInfo:
        self.post(AnswerSubmitted(token))
        await self.drain()
        return self.snapshot()

    async def reset(self) -> SessionInfo:
        self.post(Reset())
        await self.drain()
        return self.snapshot()

    def snapshot(self) -> SessionInfo:
        """Return the current session as seen by the frontend."""
        session = self._machine.session
        state = self._machine.state
        error = session.error.message if session.error else None
        progress = 100 if state == AppState.TRANSFER_COMPLETE else session.progress_percent
        link = None
        if session.token and session.direction == TransferDirection.SENDING:
            link = build_link(self._public_url, session.token)
        return SessionInfo(
            state=state,
            direction=session.direction,
            file_name=session.file_name,
            file_size=session.file_size,
            transferred_bytes=session.transferred_bytes,
            progress_percent=progress,
            speed_bps=self._tracker.get_speed() if state == AppState.TRANSFERRING else 0.0,
            token=session.token,
            link=link,
            error_message=error,
            saved_path=session.saved_path,
        )

    # --- Worker ---

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except Exception as e:
                logger.error(f"Failed to handle {type(event).__name__}: {e}", exc_info=True)
                if not isinstance(event, OperationFailed):
                    self.post(OperationFailed(TransportFailure()))
            finally:
                self._queue.task_done()

    async def _handle(self, event: Event) -> None:
        before = self._machine.state
        effects = self._machine.dispatch(event)

        for effect in effects:
            await self._apply(effect)

        if isinstance(event, (FrameSent, MessageReceived)):
            size = event.size if isinstance(event, FrameSent) else len(event.data)
            self._tracker.record(size)

        if self._machine.state != before or effects:
            await self._on_state_change(before)
        elif isinstance(event, (FrameSent, MessageReceived)):
            await self._maybe_emit_progress()

    async def _apply(self, effect: Effect) -> None:
        if isinstance(effect, OpenTransport):
            await self._close_transport()
            self._transport = self._transport_factory(self.post)
            await self._transport.open()
        elif isinstance(effect, CreateChannel):
            self._transport.create_channel()
        elif isinstance(effect, CreateLocalDescription):
            self._spawn(self._create_local_description(self._transport, effect.kind))
        elif isinstance(effect, AcceptRemoteDescription):
            self._spawn(self._accept_remote_description(self._transport, effect))
        elif isinstance(effect, ExposeToken):
            logger.info("Handshake token ready")
            if self._machine.session.direction == TransferDirection.SENDING:
                message = "Link generated. Send it to your peer and paste their reply."
            else:
                message = "Reply ready. Send it back to the sender."
            await self._emit("notification", {"type": "info", "message": message})
        elif isinstance(effect, StorePendingPayload):
            self._pending.save(effect.payload)
        elif isinstance(effect, ClearPendingPayload):
            self._pending.clear()
        elif isinstance(effect, PromptSecret):
            await self._emit("notification", {
                "type": "info",
                "message": "This transmission is protected. Enter the secret code.",
            })
        elif isinstance(effect, StartSending):
            self._tracker.reset()
            self._spawn(self._send_task(self._transport, effect))
        elif isinstance(effect, SaveReceivedFile):
            await self._save_received_file(effect)
        elif isinstance(effect, SurfaceError):
            await self._emit("notification", {
                "type": "error",
                "message": effect.error.message,
            })
        elif isinstance(effect, TearDown):
            self._cancel_tasks()
            await self._close_transport()
            self._tracker.reset()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._tasks.clear()

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Error while closing transport: {e}")

    # --- Background work ---

    async def _create_local_description(self, transport: ChannelTransport, kind: str) -> None:
        try:
            description = await transport.create_local_description(kind)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Could not create local {kind} description: {e}")
            self.post(OperationFailed(TransportFailure()))
            return
        self.post(LocalDescriptionReady(description))

    async def _accept_remote_description(
        self, transport: ChannelTransport, effect: AcceptRemoteDescription
    ) -> None:
        try:
            await transport.set_remote_description(effect.description)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Could not apply remote description: {e}")
            message = (
                "Failed to process transmission. The link might be invalid."
                if effect.create_answer
                else "Invalid counter-signal format. Please try again."
            )
            self.post(OperationFailed(InvalidHandshake(message)))
            return

        if effect.create_answer:
            self.post(RemoteDescriptionAccepted())
            await self._create_local_description(transport, "answer")

    async def _send_task(self, transport: ChannelTransport, effect: StartSending) -> None:
        try:
            await send_file(
                file_path=effect.file_path,
                file_size=effect.file_size,
                send=transport.send,
                on_frame=lambda size: self.post(FrameSent(size)),
            )
        except asyncio.CancelledError:
            raise
        except SessionError as e:
            self.post(OperationFailed(e))
            return
        except Exception as e:
            logger.error(f"Send error for {effect.file_path}: {e}")
            self.post(OperationFailed(TransportFailure(f"Sending failed: {e}")))
            return
        self.post(SendFinished())

    async def _save_received_file(self, effect: SaveReceivedFile) -> None:
        try:
            os.makedirs(self._save_dir, exist_ok=True)
            path = _unique_path(self._save_dir, effect.file_name)
            with open(path, "wb") as f:
                await asyncio.to_thread(f.write, effect.content)
        except OSError as e:
            logger.error(f"Could not save '{effect.file_name}' to {self._save_dir}: {e}")
            self.post(OperationFailed(StorageFailure()))
            return
        logger.info(f"Saved '{effect.file_name}' to {path}")
        self.post(FileSaved(path))

    # --- Notifications ---

    async def _maybe_emit_progress(self) -> None:
        now = time.monotonic()
        if now - self._last_progress_time >= PROGRESS_INTERVAL:
            self._last_progress_time = now
            await self._emit("session_progress", self.snapshot().model_dump(mode="json"))

    async def _on_state_change(self, before: AppState) -> None:
        info = self.snapshot()
        await self._emit("session_state", info.model_dump(mode="json"))

        state = self._machine.state
        if state == before:
            return

        notification = None
        if state == AppState.TRANSFER_COMPLETE:
            direction = "sent" if info.direction == TransferDirection.SENDING else "received"
            notification = {
                "type": "success",
                "message": f"'{info.file_name}' {direction} successfully!",
            }
        elif state == AppState.IDLE:
            notification = {
                "type": "info",
                "message": "Session reset.",
            }

        if notification:
            await self._emit("notification", notification)
