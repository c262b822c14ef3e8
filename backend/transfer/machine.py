"""
Connection state machine.

Owns the AppState and the session record, and decides what happens next
for every event. It never touches the network, the disk or the clock:
`dispatch` returns a list of effects for the session driver to carry out,
so the whole handshake and transfer flow can be exercised without a live
transport.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from errors import (
    InvalidHandshake,
    IncorrectSecret,
    PendingPayloadMissing,
    SessionError,
    TransportFailure,
)
from handshake import codec
from handshake.models import OfferPayload
from security.fingerprint import fingerprint as default_fingerprint
from security.fingerprint import matches
from transfer.events import (
    AcceptRemoteDescription,
    AnswerSubmitted,
    ChannelOpened,
    ClearPendingPayload,
    ConnectionStateChanged,
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
from transfer.models import AppState, TERMINAL_STATES, TransferDirection
from transfer.protocol import ReceiveBuffer, percent

logger = logging.getLogger(__name__)

# Transport connection states that end the session
FAILED_CONNECTION_STATES = ("failed", "disconnected", "closed")

# States in which a dropped connection is a failure worth reporting
_LIVE_STATES = (
    AppState.PROCESSING_OFFER,
    AppState.GENERATING_ANSWER,
    AppState.CONNECTING,
    AppState.TRANSFERRING,
)


@dataclass
class Session:
    """Everything that lives for exactly one session."""
    direction: Optional[TransferDirection] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: int = 0
    secret_digest: Optional[str] = None
    token: Optional[str] = None
    bytes_sent: int = 0
    receive: Optional[ReceiveBuffer] = None
    channel_open: bool = False
    sending_started: bool = False
    saved_path: Optional[str] = None
    error: Optional[SessionError] = None

    @property
    def transferred_bytes(self) -> int:
        if self.receive is not None:
            return self.receive.bytes_received
        return self.bytes_sent

    @property
    def progress_percent(self) -> int:
        if self.receive is not None:
            return self.receive.progress_percent
        return percent(self.bytes_sent, self.file_size)


class ConnectionStateMachine:
    """Drives one session from idle to a terminal state."""

    def __init__(self, fingerprint: Callable[[str], str] = default_fingerprint) -> None:
        self._fingerprint = fingerprint
        self.state = AppState.IDLE
        self.session = Session()
        self._handlers = {
            LinkRequested: self._on_link_requested,
            LocalDescriptionReady: self._on_local_description_ready,
            OfferLinkOpened: self._on_offer_link_opened,
            SecretSubmitted: self._on_secret_submitted,
            RemoteDescriptionAccepted: self._on_remote_description_accepted,
            AnswerSubmitted: self._on_answer_submitted,
            ConnectionStateChanged: self._on_connection_state_changed,
            ChannelOpened: self._on_channel_opened,
            MessageReceived: self._on_message_received,
            FrameSent: self._on_frame_sent,
            SendFinished: self._on_send_finished,
            FileSaved: self._on_file_saved,
            OperationFailed: self._on_operation_failed,
            Reset: self._on_reset,
        }

    def dispatch(self, event: Event) -> list[Effect]:
        """Apply one event and return the effects it calls for."""
        before = self.state
        effects = self._handlers[type(event)](event)
        if self.state != before:
            logger.info(f"{before.value} -> {self.state.value} on {type(event).__name__}")
        return effects

    def _ignore(self, event: Event) -> list[Effect]:
        logger.debug(f"Ignoring {type(event).__name__} in state {self.state.value}")
        return []

    def _move(self, state: AppState) -> None:
        self.state = state

    def _fail(self, error: SessionError) -> list[Effect]:
        logger.warning(f"Session failed in {self.state.value}: {error}")
        self.session.error = error
        self._move(AppState.ERROR)
        return [TearDown(), SurfaceError(error)]

    # --- Initiator ---

    def _on_link_requested(self, event: LinkRequested) -> list[Effect]:
        if self.state != AppState.IDLE:
            return self._ignore(event)

        self.session = Session(
            direction=TransferDirection.SENDING,
            file_path=event.file_path,
            file_name=event.file_name,
            file_size=event.file_size,
            secret_digest=self._fingerprint(event.secret) if event.secret else None,
        )
        self._move(AppState.GENERATING_OFFER)
        return [OpenTransport(), CreateChannel(), CreateLocalDescription("offer")]

    def _on_local_description_ready(self, event: LocalDescriptionReady) -> list[Effect]:
        if self.state == AppState.GENERATING_OFFER:
            payload = OfferPayload(
                sdp=event.description,
                file_name=self.session.file_name,
                file_size=self.session.file_size,
                password_hash=self.session.secret_digest,
            )
            self.session.token = codec.encode(payload)
            self._move(AppState.AWAITING_ANSWER)
            return [ExposeToken(self.session.token)]

        if self.state == AppState.GENERATING_ANSWER:
            self.session.token = codec.encode(event.description)
            return [ExposeToken(self.session.token)]

        return self._ignore(event)

    def _on_answer_submitted(self, event: AnswerSubmitted) -> list[Effect]:
        if self.state != AppState.AWAITING_ANSWER:
            return self._ignore(event)

        try:
            description = codec.decode_answer(codec.token_from_link(event.token))
        except InvalidHandshake as e:
            return self._fail(e)

        self._move(AppState.CONNECTING)
        return [AcceptRemoteDescription(description)]

    def _on_channel_opened(self, event: ChannelOpened) -> list[Effect]:
        self.session.channel_open = True
        if self.session.direction != TransferDirection.SENDING:
            return []
        if self.state not in (AppState.CONNECTING, AppState.TRANSFERRING):
            return self._ignore(event)

        self._move(AppState.TRANSFERRING)
        return self._start_sending()

    def _start_sending(self) -> list[Effect]:
        if self.session.sending_started:
            return []
        self.session.sending_started = True
        return [StartSending(self.session.file_path, self.session.file_size)]

    def _on_frame_sent(self, event: FrameSent) -> list[Effect]:
        if self.state != AppState.TRANSFERRING:
            return self._ignore(event)
        self.session.bytes_sent = min(
            self.session.bytes_sent + event.size, self.session.file_size
        )
        return []

    def _on_send_finished(self, event: SendFinished) -> list[Effect]:
        if self.state != AppState.TRANSFERRING:
            return self._ignore(event)
        self._move(AppState.TRANSFER_COMPLETE)
        return []

    # --- Responder ---

    def _on_offer_link_opened(self, event: OfferLinkOpened) -> list[Effect]:
        if self.state != AppState.IDLE:
            return self._ignore(event)

        try:
            payload = codec.decode_offer(codec.token_from_link(event.token))
        except InvalidHandshake as e:
            return self._fail(e)

        self.session = Session(
            direction=TransferDirection.RECEIVING,
            file_name=payload.file_name,
            file_size=payload.file_size,
            secret_digest=payload.password_hash,
        )
        self._move(AppState.PROCESSING_OFFER)

        if payload.requires_secret:
            self._move(AppState.AWAITING_PASSWORD)
            return [StorePendingPayload(payload), PromptSecret()]

        return self._accept_offer(payload)

    def _accept_offer(self, payload: OfferPayload) -> list[Effect]:
        self.session.receive = ReceiveBuffer(payload.file_size)
        return [OpenTransport(), AcceptRemoteDescription(payload.sdp, create_answer=True)]

    def _on_secret_submitted(self, event: SecretSubmitted) -> list[Effect]:
        if self.state != AppState.AWAITING_PASSWORD:
            return self._ignore(event)

        if event.pending is None:
            return self._fail(PendingPayloadMissing())

        if not matches(self._fingerprint(event.secret), event.pending.password_hash):
            error = IncorrectSecret()
            self.session.error = error
            return [SurfaceError(error)]

        self.session.error = None
        self.session.file_name = event.pending.file_name
        self.session.file_size = event.pending.file_size
        self._move(AppState.PROCESSING_OFFER)
        return [ClearPendingPayload()] + self._accept_offer(event.pending)

    def _on_remote_description_accepted(self, event: RemoteDescriptionAccepted) -> list[Effect]:
        if self.state != AppState.PROCESSING_OFFER:
            return self._ignore(event)
        self._move(AppState.GENERATING_ANSWER)
        return []

    def _on_message_received(self, event: MessageReceived) -> list[Effect]:
        if (
            self.state != AppState.TRANSFERRING
            or self.session.direction != TransferDirection.RECEIVING
        ):
            return self._ignore(event)

        buffer = self.session.receive
        if buffer.complete:
            return self._ignore(event)
        try:
            done = buffer.accept(event.data)
        except TransportFailure as e:
            return self._fail(e)

        if not done:
            return []
        # Complete only once the file is on disk
        return [SaveReceivedFile(self.session.file_name, buffer.assemble())]

    def _on_file_saved(self, event: FileSaved) -> list[Effect]:
        receive = self.session.receive
        if (
            self.state != AppState.TRANSFERRING
            or receive is None
            or not receive.complete
        ):
            return self._ignore(event)
        self.session.saved_path = event.path
        self._move(AppState.TRANSFER_COMPLETE)
        return []

    # --- Both sides ---

    def _on_connection_state_changed(self, event: ConnectionStateChanged) -> list[Effect]:
        if event.state in FAILED_CONNECTION_STATES and self.state in _LIVE_STATES:
            return self._fail(TransportFailure())

        if event.state == "connected" and self.state in (
            AppState.GENERATING_ANSWER,
            AppState.CONNECTING,
        ):
            self._move(AppState.TRANSFERRING)
            if (
                self.session.direction == TransferDirection.SENDING
                and self.session.channel_open
            ):
                return self._start_sending()
            return []

        return self._ignore(event)

    def _on_operation_failed(self, event: OperationFailed) -> list[Effect]:
        if self.state == AppState.IDLE or self.state in TERMINAL_STATES:
            return self._ignore(event)
        return self._fail(event.error)

    def _on_reset(self, event: Reset) -> list[Effect]:
        self.session = Session()
        self._move(AppState.IDLE)
        return [TearDown(), ClearPendingPayload()]
