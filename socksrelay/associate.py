"""The UDP ASSOCIATE command and the relay socket that speaks the SOCKS5 UDP header."""

from __future__ import annotations

import asyncio
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Optional, Tuple, Union

from .address import Address
from .codes import Reply
from .connect import SocksStream
from .messages import Response, UdpHeader

_Target = Union[Address, Tuple[Any, ...]]


def build_packet(payload: bytes, frag: int, address: Address) -> bytes:
    """Prefix ``payload`` with a SOCKS5 UDP header naming ``address``."""
    return UdpHeader(frag, address).to_bytes() + bytes(payload)


def parse_packet(data: bytes) -> Tuple[bytes, int, Address]:
    """Split a relayed datagram into payload, fragment number and address."""
    data = bytes(data)
    header = UdpHeader.from_bytes(data)
    return data[len(header) :], header.frag, header.address


def _socket_target(target: _Target) -> Tuple[str, int]:
    if isinstance(target, Address):
        if target.is_domain():
            return str(target.host), target.port
        return target.to_socket_address()
    host, port = target[0], target[1]
    if isinstance(host, (IPv4Address, IPv6Address)):
        host = str(host)
    return host, port


class UdpAssociate(SocksStream):
    """The TCP control stream of a UDP association."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__(reader, writer)
        self._ready = False

    def is_ready(self) -> bool:
        """Whether the reply has been sent."""
        return self._ready

    async def reply(self, reply: Reply, address: Address) -> UdpAssociate:
        """Send the reply naming the relay address to the client."""
        if self._ready:
            raise RuntimeError("UDP ASSOCIATE reply has already been sent")
        await self._send(Response(reply, address).to_bytes())
        self._ready = True
        return self

    async def wait_until_closed(self) -> None:
        """Wait until the client closes the control connection.

        The association ends when the client closes the TCP stream that
        requested it; anything the client sends meanwhile is discarded.
        """
        if not self._ready:
            raise RuntimeError("UDP ASSOCIATE reply has not been sent yet")
        while await self.reader.read(4096):
            pass


class _RelayProtocol(asyncio.DatagramProtocol):
    def __init__(self) -> None:
        self.queue: asyncio.Queue = asyncio.Queue()

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self.queue.put_nowait(ConnectionError("relay socket closed"))


class AssociatedUdpSocket:
    """A UDP socket that adds and strips the SOCKS5 UDP header."""

    def __init__(
        self,
        transport: asyncio.DatagramTransport,
        protocol: _RelayProtocol,
        max_packet_size: int,
    ) -> None:
        self._transport = transport
        self._protocol = protocol
        self._max_packet_size = 0
        self.set_max_packet_size(max_packet_size)

    @classmethod
    async def bind(cls, local_addr: _Target, max_packet_size: int) -> AssociatedUdpSocket:
        """Open a relay socket bound to ``local_addr``."""
        loop = asyncio.get_running_loop()
        transport, protocol = await loop.create_datagram_endpoint(
            _RelayProtocol, local_addr=_socket_target(local_addr)
        )
        return cls(transport, protocol, max_packet_size)

    def local_addr(self) -> Address:
        """The address the relay socket is bound to."""
        return Address.from_socket_address(self._transport.get_extra_info("sockname"))

    def max_packet_size(self) -> int:
        """The largest datagram read, SOCKS5 header included."""
        return self._max_packet_size

    def set_max_packet_size(self, size: int) -> None:
        """Change the largest datagram read; longer ones are cut short."""
        if isinstance(size, bool) or not isinstance(size, int):
            raise TypeError(f"packet size must be an int, not {type(size).__name__}")
        if size < 0:
            raise ValueError(f"packet size must not be negative: {size}")
        self._max_packet_size = size

    async def recv_from(self) -> Tuple[bytes, int, Address, Address]:
        """Receive the next well-formed relay datagram.

        Returns the payload, the fragment number, the destination address
        from the header and the sender's address. Datagrams whose header
        cannot be parsed are dropped.
        """
        while True:
            item = await self._protocol.queue.get()
            if isinstance(item, Exception):
                raise item
            data, src = item
            data = data[: self._max_packet_size]
            try:
                payload, frag, address = parse_packet(data)
            except (EOFError, OSError, ValueError):
                continue
            return payload, frag, address, Address.from_socket_address(src)

    async def send_to(
        self, payload: bytes, frag: int, from_addr: Address, to_addr: _Target
    ) -> int:
        """Send ``payload`` to ``to_addr`` with a header naming ``from_addr``.

        Returns the number of payload bytes sent.
        """
        header = UdpHeader(frag, from_addr)
        packet = header.to_bytes() + bytes(payload)
        self._transport.sendto(packet, _socket_target(to_addr))
        return len(packet) - len(header)

    def close(self) -> None:
        """Close the relay socket."""
        self._transport.close()