from __future__ import annotations

from handshake.codec import decode_answer, decode_offer, encode
from handshake.models import OfferPayload, SessionDescription
from errors import (
    IncorrectSecret,
    InvalidHandshake,
    PendingPayloadMissing,
    StorageFailure,
    TransportFailure,
)
from security.fingerprint import fingerprint
from transfer.events import (
    AcceptRemoteDescription,
    AnswerSubmitted,
    ChannelOpened,
    ClearPendingPayload,
    ConnectionStateChanged,
    CreateChannel,
    CreateLocalDescription,
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
from transfer.models import AppState, TransferDirection
from transfer.protocol import DONE_MESSAGE

OFFER_SDP = SessionDescription(type="offer", sdp="v=0 offer")
ANSWER_SDP = SessionDescription(type="answer", sdp="v=0 answer")


def _types(effects):
    return [type(e) for e in effects]


def _offer(secret: str | None = None, size: int = 40000) -> OfferPayload:
    return OfferPayload(
        sdp=OFFER_SDP,
        file_name="recipe.bin",
        file_size=size,
        password_hash=fingerprint(secret) if secret else None,
    )


def _sender(secret: str = "") -> ConnectionStateMachine:
    machine = ConnectionStateMachine()
    machine.dispatch(LinkRequested("/tmp/recipe.bin", "recipe.bin", 40000, secret))
    return machine


def _sender_transferring() -> ConnectionStateMachine:
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    machine.dispatch(AnswerSubmitted(encode(ANSWER_SDP)))
    machine.dispatch(ChannelOpened())
    assert machine.state == AppState.TRANSFERRING
    return machine


def _receiver_transferring(size: int = 40000) -> ConnectionStateMachine:
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(encode(_offer(size=size))))
    machine.dispatch(RemoteDescriptionAccepted())
    machine.dispatch(ConnectionStateChanged("connected"))
    assert machine.state == AppState.TRANSFERRING
    return machine


# --- Initiator ---

def test_link_request_opens_transport_and_channel():
    machine = ConnectionStateMachine()
    effects = machine.dispatch(LinkRequested("/tmp/recipe.bin", "recipe.bin", 40000))

    assert machine.state == AppState.GENERATING_OFFER
    assert effects == [OpenTransport(), CreateChannel(), CreateLocalDescription("offer")]
    assert machine.session.direction == TransferDirection.SENDING


def test_offer_token_without_secret_has_no_digest():
    machine = _sender()
    effects = machine.dispatch(LocalDescriptionReady(OFFER_SDP))

    assert machine.state == AppState.AWAITING_ANSWER
    assert _types(effects) == [ExposeToken]
    payload = decode_offer(effects[0].token)
    assert payload.file_size == 40000
    assert payload.file_name == "recipe.bin"
    assert payload.password_hash is None
    assert payload.sdp == OFFER_SDP


def test_offer_token_with_secret_carries_its_fingerprint():
    machine = _sender(secret="swordfish")
    effects = machine.dispatch(LocalDescriptionReady(OFFER_SDP))

    payload = decode_offer(effects[0].token)
    assert payload.password_hash == fingerprint("swordfish")


def test_answer_moves_to_connecting():
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    effects = machine.dispatch(AnswerSubmitted(encode(ANSWER_SDP)))

    assert machine.state == AppState.CONNECTING
    assert effects == [AcceptRemoteDescription(ANSWER_SDP, create_answer=False)]


def test_invalid_answer_is_an_error():
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    effects = machine.dispatch(AnswerSubmitted("garbage"))

    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert isinstance(machine.session.error, InvalidHandshake)


def test_sending_starts_once_whichever_event_comes_first():
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    machine.dispatch(AnswerSubmitted(encode(ANSWER_SDP)))

    first = machine.dispatch(ConnectionStateChanged("connected"))
    second = machine.dispatch(ChannelOpened())
    third = machine.dispatch(ChannelOpened())

    assert first == []
    assert second == [StartSending("/tmp/recipe.bin", 40000)]
    assert third == []
    assert machine.state == AppState.TRANSFERRING


def test_channel_open_before_connected_starts_sending():
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    machine.dispatch(AnswerSubmitted(encode(ANSWER_SDP)))

    opened = machine.dispatch(ChannelOpened())
    connected = machine.dispatch(ConnectionStateChanged("connected"))

    assert _types(opened) == [StartSending]
    assert connected == []
    assert machine.state == AppState.TRANSFERRING


def test_sender_counts_frames_and_completes():
    machine = _sender_transferring()
    seen = []
    for size in (16384, 16384, 7232):
        machine.dispatch(FrameSent(size))
        seen.append(machine.session.bytes_sent)

    assert seen == [16384, 32768, 40000]
    assert machine.session.progress_percent == 100
    assert machine.state == AppState.TRANSFERRING

    machine.dispatch(SendFinished())
    assert machine.state == AppState.TRANSFER_COMPLETE


def test_bytes_sent_never_exceeds_file_size():
    machine = _sender_transferring()
    machine.dispatch(FrameSent(40000))
    machine.dispatch(FrameSent(10))
    assert machine.session.bytes_sent == 40000


def test_link_request_outside_idle_is_ignored():
    machine = _sender()
    effects = machine.dispatch(LinkRequested("/tmp/other.bin", "other.bin", 1))

    assert effects == []
    assert machine.session.file_name == "recipe.bin"


# --- Responder ---

def test_offer_without_digest_skips_password_prompt():
    machine = ConnectionStateMachine()
    effects = machine.dispatch(OfferLinkOpened(encode(_offer())))

    assert machine.state == AppState.PROCESSING_OFFER
    assert effects == [OpenTransport(), AcceptRemoteDescription(OFFER_SDP, create_answer=True)]
    assert PromptSecret not in _types(effects)

    machine.dispatch(RemoteDescriptionAccepted())
    assert machine.state == AppState.GENERATING_ANSWER

    effects = machine.dispatch(LocalDescriptionReady(ANSWER_SDP))
    assert machine.state == AppState.GENERATING_ANSWER
    assert decode_answer(effects[0].token) == ANSWER_SDP


def test_offer_link_may_be_a_full_url():
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(f"http://localhost:8765/#{encode(_offer())}"))
    assert machine.state == AppState.PROCESSING_OFFER


def test_offer_with_digest_waits_for_secret():
    payload = _offer(secret="swordfish")
    machine = ConnectionStateMachine()
    effects = machine.dispatch(OfferLinkOpened(encode(payload)))

    assert machine.state == AppState.AWAITING_PASSWORD
    assert effects == [StorePendingPayload(payload), PromptSecret()]


def test_wrong_secret_keeps_waiting_then_right_secret_proceeds():
    payload = _offer(secret="swordfish")
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(encode(payload)))

    effects = machine.dispatch(SecretSubmitted("wrong", payload))
    assert machine.state == AppState.AWAITING_PASSWORD
    assert _types(effects) == [SurfaceError]
    assert isinstance(effects[0].error, IncorrectSecret)
    assert ClearPendingPayload not in _types(effects)

    effects = machine.dispatch(SecretSubmitted("swordfish", payload))
    assert machine.state == AppState.PROCESSING_OFFER
    assert effects == [
        ClearPendingPayload(),
        OpenTransport(),
        AcceptRemoteDescription(OFFER_SDP, create_answer=True),
    ]
    assert machine.session.error is None

    machine.dispatch(RemoteDescriptionAccepted())
    assert machine.state == AppState.GENERATING_ANSWER


def test_missing_pending_payload_is_terminal():
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(encode(_offer(secret="swordfish"))))
    effects = machine.dispatch(SecretSubmitted("swordfish", None))

    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert isinstance(machine.session.error, PendingPayloadMissing)


def test_invalid_offer_link_is_an_error():
    machine = ConnectionStateMachine()
    effects = machine.dispatch(OfferLinkOpened("definitely-not-a-token"))

    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert machine.session.error.message == "Invalid transmission link."
    assert machine.session.file_name is None


def test_receiver_reassembles_after_done():
    machine = _receiver_transferring(size=40000)
    data = bytes(range(256)) * 156 + bytes(64)
    frames = [data[:16384], data[16384:32768], data[32768:]]

    for frame in frames:
        assert machine.dispatch(MessageReceived(frame)) == []
    assert machine.session.transferred_bytes == 40000
    assert machine.state == AppState.TRANSFERRING

    effects = machine.dispatch(MessageReceived(DONE_MESSAGE))
    assert machine.state == AppState.TRANSFERRING
    assert effects == [SaveReceivedFile("recipe.bin", data)]

    assert machine.dispatch(FileSaved("/downloads/recipe.bin")) == []
    assert machine.state == AppState.TRANSFER_COMPLETE
    assert machine.session.saved_path == "/downloads/recipe.bin"
    assert machine.session.progress_percent == 100


def test_messages_after_done_do_not_save_twice():
    machine = _receiver_transferring(size=3)
    machine.dispatch(MessageReceived(b"abc"))
    machine.dispatch(MessageReceived(DONE_MESSAGE))

    assert machine.dispatch(MessageReceived(DONE_MESSAGE)) == []
    assert machine.dispatch(MessageReceived(b"more")) == []
    assert machine.state == AppState.TRANSFERRING


def test_failed_save_is_an_error_not_a_completion():
    machine = _receiver_transferring(size=3)
    machine.dispatch(MessageReceived(b"abc"))
    machine.dispatch(MessageReceived(DONE_MESSAGE))

    effects = machine.dispatch(OperationFailed(StorageFailure()))
    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert machine.session.error.message == "Could not save the received file."
    assert machine.session.saved_path is None


def test_file_saved_before_done_is_ignored():
    machine = _receiver_transferring(size=3)
    machine.dispatch(MessageReceived(b"abc"))

    assert machine.dispatch(FileSaved("/downloads/recipe.bin")) == []
    assert machine.state == AppState.TRANSFERRING


def test_receiver_overrun_fails_the_session():
    machine = _receiver_transferring(size=10)
    effects = machine.dispatch(MessageReceived(b"x" * 11))

    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert isinstance(machine.session.error, TransportFailure)


def test_messages_before_transferring_are_ignored():
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(encode(_offer())))
    machine.dispatch(RemoteDescriptionAccepted())

    assert machine.dispatch(MessageReceived(b"early")) == []
    assert machine.session.transferred_bytes == 0


# --- Failures and reset ---

def test_disconnect_while_transferring_then_reset():
    machine = _receiver_transferring()
    machine.dispatch(MessageReceived(b"x" * 100))

    effects = machine.dispatch(ConnectionStateChanged("disconnected"))
    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert isinstance(machine.session.error, TransportFailure)
    assert machine.session.error.message == "Connection failed. Please try again."

    effects = machine.dispatch(Reset())
    assert machine.state == AppState.IDLE
    assert effects == [TearDown(), ClearPendingPayload()]
    assert machine.session.error is None
    assert machine.session.file_name is None
    assert machine.session.transferred_bytes == 0
    assert machine.session.receive is None


def test_remote_close_while_transferring_is_a_failure():
    machine = _receiver_transferring()
    machine.dispatch(MessageReceived(b"x" * 100))

    effects = machine.dispatch(ConnectionStateChanged("closed"))
    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]
    assert isinstance(machine.session.error, TransportFailure)


def test_failed_connection_while_connecting():
    machine = _sender()
    machine.dispatch(LocalDescriptionReady(OFFER_SDP))
    machine.dispatch(AnswerSubmitted(encode(ANSWER_SDP)))

    machine.dispatch(ConnectionStateChanged("failed"))
    assert machine.state == AppState.ERROR


def test_disconnect_after_completion_is_ignored():
    machine = _sender_transferring()
    machine.dispatch(FrameSent(40000))
    machine.dispatch(SendFinished())

    assert machine.dispatch(ConnectionStateChanged("disconnected")) == []
    assert machine.state == AppState.TRANSFER_COMPLETE


def test_operation_failure_tears_down():
    machine = _sender()
    effects = machine.dispatch(OperationFailed(TransportFailure()))

    assert machine.state == AppState.ERROR
    assert _types(effects) == [TearDown, SurfaceError]


def test_operation_failure_in_idle_is_ignored():
    machine = ConnectionStateMachine()
    assert machine.dispatch(OperationFailed(TransportFailure())) == []
    assert machine.state == AppState.IDLE


def test_reset_from_password_prompt_clears_pending():
    machine = ConnectionStateMachine()
    machine.dispatch(OfferLinkOpened(encode(_offer(secret="swordfish"))))

    effects = machine.dispatch(Reset())
    assert ClearPendingPayload() in effects
    assert machine.state == AppState.IDLE
