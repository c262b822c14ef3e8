"""
WebRTC transport built on aiortc.

ICE and DTLS are handled by aiortc; this module only adapts its
callbacks to session events.
"""

import asyncio
import logging
from typing import Literal, Union

from aiortc import (
    RTCConfiguration,
    RTCDataChannel,
    RTCIceServer,
    RTCPeerConnection,
    RTCSessionDescription,
)

from config import (
    BUFFERED_AMOUNT_HIGH,
    BUFFERED_AMOUNT_LOW,
    CHANNEL_LABEL,
    STUN_SERVERS,
)
from errors import TransportFailure
from handshake.models import SessionDescription
from transfer.events import ChannelOpened, ConnectionStateChanged, MessageReceived
from transport.base import ChannelTransport, Listener

logger = logging.getLogger(__name__)


def _get_rtc_config(urls: list[str]) -> RTCConfiguration:
    return RTCConfiguration(iceServers=[RTCIceServer(urls=url) for url in urls])


class RTCTransport(ChannelTransport):
    """ChannelTransport over an aiortc RTCPeerConnection."""

    def __init__(self, listener: Listener, stun_servers: list[str] | None = None) -> None:
        super().__init__(listener)
        self._stun_servers = stun_servers if stun_servers is not None else STUN_SERVERS
        self._pc: RTCPeerConnection | None = None
        self._channel: RTCDataChannel | None = None
        self._drained = asyncio.Event()
        self._drained.set()
        self._closing = False

    async def open(self) -> None:
        pc = RTCPeerConnection(configuration=_get_rtc_config(self._stun_servers))

        @pc.on("connectionstatechange")
        def on_connection_state_change():
            logger.info(f"Connection state: {pc.connectionState}")
            if not self._closing:
                self._emit(ConnectionStateChanged(pc.connectionState))

        @pc.on("datachannel")
        def on_datachannel(channel: RTCDataChannel):
            logger.info(f"Remote opened data channel '{channel.label}'")
            self._attach(channel)

        self._pc = pc

    def create_channel(self) -> None:
        self._attach(self._pc.createDataChannel(CHANNEL_LABEL, ordered=True))

    def _attach(self, channel: RTCDataChannel) -> None:
        self._channel = channel
        channel.bufferedAmountLowThreshold = BUFFERED_AMOUNT_LOW

        @channel.on("open")
        def on_open():
            logger.info(f"Data channel '{channel.label}' open")
            self._emit(ChannelOpened())

        @channel.on("message")
        def on_message(message):
            self._emit(MessageReceived(message))

        @channel.on("bufferedamountlow")
        def on_buffered_amount_low():
            self._drained.set()

        # aiortc keeps the peer connection "connected" after the remote end
        # shuts down, so a channel closed from the other side is the drop signal
        @channel.on("close")
        def on_close():
            self._drained.set()
            if not self._closing:
                logger.warning(f"Data channel '{channel.label}' closed by peer")
                self._emit(ConnectionStateChanged("disconnected"))

    async def create_local_description(
        self, kind: Literal["offer", "answer"]
    ) -> SessionDescription:
        if kind == "offer":
            description = await self._pc.createOffer()
        else:
            description = await self._pc.createAnswer()
        # aiortc gathers every candidate inside setLocalDescription
        await self._pc.setLocalDescription(description)
        local = self._pc.localDescription
        return SessionDescription(type=local.type, sdp=local.sdp)

    async def set_remote_description(self, description: SessionDescription) -> None:
        await self._pc.setRemoteDescription(
            RTCSessionDescription(sdp=description.sdp, type=description.type)
        )

    async def send(self, data: Union[bytes, str]) -> None:
        channel = self._channel
        if channel is None or channel.readyState != "open":
            raise TransportFailure("Data channel is not open.")

        if channel.bufferedAmount > BUFFERED_AMOUNT_HIGH:
            self._drained.clear()
            await self._drained.wait()
            if channel.readyState != "open":
                raise TransportFailure("Data channel closed while sending.")
        channel.send(data)

    async def close(self) -> None:
        self._closing = True
        if self._channel:
            self._channel.close()
            self._channel = None
        if self._pc:
            await self._pc.close()
            self._pc = None
        self._drained.set()
