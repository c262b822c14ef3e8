"""
Events consumed and effects produced by the connection state machine.

Events come from user actions, from the transport, and from the session
driver's own background work. Effects are requests for the driver to do
something with the outside world (transport, storage, the user).
"""

from dataclasses import dataclass
from typing import Literal, Optional, Union

from errors import SessionError
from handshake.models import OfferPayload, SessionDescription


# --- Events ---

@dataclass(frozen=True)
class LinkRequested:
    """Initiator picked a file and asked for a link."""
    file_path: str
    file_name: str
    file_size: int
    secret: str = ""


@dataclass(frozen=True)
class LocalDescriptionReady:
    """Local description is final: candidate gathering has completed."""
    description: SessionDescription


@dataclass(frozen=True)
class OfferLinkOpened:
    """Responder opened a link (or pasted an offer token)."""
    token: str


@dataclass(frozen=True)
class SecretSubmitted:
    """Responder typed a secret; `pending` is whatever the slot held."""
    secret: str
    pending: Optional[OfferPayload]


@dataclass(frozen=True)
class RemoteDescriptionAccepted:
    pass


@dataclass(frozen=True)
class AnswerSubmitted:
    """Initiator pasted the responder's answer token."""
    token: str


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: str


@dataclass(frozen=True)
class ChannelOpened:
    pass


@dataclass(frozen=True)
class MessageReceived:
    data: Union[bytes, str]


@dataclass(frozen=True)
class FrameSent:
    size: int


@dataclass(frozen=True)
class SendFinished:
    pass


@dataclass(frozen=True)
class FileSaved:
    """Received file is on disk at `path`."""
    path: str


@dataclass(frozen=True)
class OperationFailed:
    error: SessionError


@dataclass(frozen=True)
class Reset:
    pass


Event = Union[
    LinkRequested,
    LocalDescriptionReady,
    OfferLinkOpened,
    SecretSubmitted,
    RemoteDescriptionAccepted,
    AnswerSubmitted,
    ConnectionStateChanged,
    ChannelOpened,
    MessageReceived,
    FrameSent,
    SendFinished,
    FileSaved,
    OperationFailed,
    Reset,
]


# --- Effects ---

@dataclass(frozen=True)
class OpenTransport:
    pass


@dataclass(frozen=True)
class CreateChannel:
    pass


@dataclass(frozen=True)
class CreateLocalDescription:
    kind: Literal["offer", "answer"]


@dataclass(frozen=True)
class AcceptRemoteDescription:
    description: SessionDescription
    # Responder follows up with its own answer description
    create_answer: bool = False


@dataclass(frozen=True)
class ExposeToken:
    token: str


@dataclass(frozen=True)
class StorePendingPayload:
    payload: OfferPayload


@dataclass(frozen=True)
class ClearPendingPayload:
    pass


@dataclass(frozen=True)
class PromptSecret:
    pass


@dataclass(frozen=True)
class StartSending:
    file_path: str
    file_size: int


@dataclass(frozen=True)
class SaveReceivedFile:
    file_name: str
    content: bytes


@dataclass(frozen=True)
class SurfaceError:
    error: SessionError


@dataclass(frozen=True)
class TearDown:
    pass


Effect = Union[
    OpenTransport,
    CreateChannel,
    CreateLocalDescription,
    AcceptRemoteDescription,
    ExposeToken,
    StorePendingPayload,
    ClearPendingPayload,
    PromptSecret,
    StartSending,
    SaveReceivedFile,
    SurfaceError,
    TearDown,
]
