"""The transport capability the session driver consumes."""

from abc import ABC, abstractmethod
from typing import Callable, Literal, Union

from handshake.models import SessionDescription
from transfer.events import Event

# Receives ConnectionStateChanged, ChannelOpened and MessageReceived
Listener = Callable[[Event], None]


class ChannelTransport(ABC):
    """
    One peer connection carrying one ordered, reliable data channel.

    Implementations report transport activity by calling `listener` with
    events; they never touch session state themselves.
    """

    def __init__(self, listener: Listener) -> None:
        self._listener = listener

    def _emit(self, event: Event) -> None:
        self._listener(event)

    @abstractmethod
    async def open(self) -> None:
        """Create the underlying peer connection."""

    @abstractmethod
    def create_channel(self) -> None:
        """Create the outgoing data channel (initiator only)."""

    @abstractmethod
    async def create_local_description(
        self, kind: Literal["offer", "answer"]
    ) -> SessionDescription:
        """Create and apply a local description.

        Returns only once candidate gathering has completed, so the
        description already lists every candidate.
        """

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Apply the peer's description."""

    @abstractmethod
    async def send(self, data: Union[bytes, str]) -> None:
        """Queue one message on the data channel."""

    @abstractmethod
    async def close(self) -> None:
        """Tear down the channel and the connection."""
