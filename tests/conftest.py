from __future__ import annotations

import asyncio

import pytest

from errors import TransportFailure
from handshake.models import SessionDescription
from transfer.events import ChannelOpened, ConnectionStateChanged, MessageReceived
from transport.base import ChannelTransport


class LoopbackNetwork:
    """Pairs in-memory transports by the descriptions they hand out."""

    def __init__(self) -> None:
        self.endpoints: list[LoopbackTransport] = []
        self.descriptions: dict[str, LoopbackTransport] = {}
        # When set, every send waits on it
        self.gate: asyncio.Event | None = None

    def factory(self, listener) -> LoopbackTransport:
        transport = LoopbackTransport(self, listener)
        self.endpoints.append(transport)
        return transport


class LoopbackTransport(ChannelTransport):
    def __init__(self, network: LoopbackNetwork, listener) -> None:
        super().__init__(listener)
        self.network = network
        self.peer: LoopbackTransport | None = None
        self.opened = False
        self.has_channel = False
        self.closed = False
        self.remote: SessionDescription | None = None
        self.sent: list = []

    async def open(self) -> None:
        self.opened = True

    def create_channel(self) -> None:
        self.has_channel = True

    async def create_local_description(self, kind):
        description = SessionDescription(
            type=kind, sdp=f"v=0\r\no=- {len(self.network.descriptions)} 2 IN IP4 127.0.0.1\r\n"
        )
        self.network.descriptions[description.sdp] = self
        return description

    async def set_remote_description(self, description) -> None:
        if description.sdp not in self.network.descriptions:
            raise ValueError("unknown session description")
        self.remote = description
        self.peer = self.network.descriptions[description.sdp]
        if description.type == "answer":
            self.peer.peer = self
            self._emit(ConnectionStateChanged("connected"))
            self.peer._emit(ConnectionStateChanged("connected"))
            if self.has_channel:
                self._emit(ChannelOpened())

    async def send(self, data) -> None:
        if self.network.gate is not None:
            await self.network.gate.wait()
        if self.closed or self.peer is None:
            raise TransportFailure("Data channel is not open.")
        self.sent.append(data)
        self.peer._emit(MessageReceived(data))

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.peer is not None and not self.peer.closed:
            self.peer._emit(ConnectionStateChanged("disconnected"))


@pytest.fixture
def loopback() -> LoopbackNetwork:
    return LoopbackNetwork()
