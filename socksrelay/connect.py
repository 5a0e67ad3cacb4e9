"""The CONNECT command: a client stream that becomes a plain tunnel after one reply."""

from __future__ import annotations

import asyncio
import socket
import struct
import sys
from typing import Any, Optional

from .address import Address
from .codes import Reply
from .messages import Response

_LINGER_FORMAT = "HH" if sys.platform == "win32" else "ii"


class SocksStream:
    """An accepted client TCP stream with socket option helpers."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    def _socket(self) -> Any:
        sock = self.writer.get_extra_info("socket")
        if sock is None:
            raise OSError("stream has no underlying socket")
        return sock

    def local_addr(self) -> Address:
        """The address this stream is bound to."""
        return Address.from_socket_address(self._socket().getsockname())

    def peer_addr(self) -> Address:
        """The address of the remote end of this stream."""
        return Address.from_socket_address(self._socket().getpeername())

    async def _send(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def shutdown(self) -> None:
        """Close the write direction so the peer reads end of stream."""
        await self.writer.drain()
        if self.writer.can_write_eof():
            self.writer.write_eof()
        else:
            self.writer.close()

    async def close(self) -> None:
        """Close the stream in both directions."""
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    def nodelay(self) -> bool:
        """Whether TCP_NODELAY is set."""
        return bool(self._socket().getsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY))

    def set_nodelay(self, nodelay: bool) -> None:
        """Enable or disable the Nagle algorithm."""
        self._socket().setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, int(bool(nodelay)))

    def _ttl_option(self) -> tuple:
        if self._socket().family == socket.AF_INET6:
            return socket.IPPROTO_IPV6, socket.IPV6_UNICAST_HOPS
        return socket.IPPROTO_IP, socket.IP_TTL

    def ttl(self) -> int:
        """The time-to-live of outgoing packets."""
        level, option = self._ttl_option()
        return self._socket().getsockopt(level, option)

    def set_ttl(self, ttl: int) -> None:
        """Set the time-to-live of outgoing packets."""
        level, option = self._ttl_option()
        self._socket().setsockopt(level, option, ttl)

    def linger(self) -> Optional[float]:
        """The SO_LINGER timeout in seconds, or None when lingering is off."""
        size = struct.calcsize(_LINGER_FORMAT)
        raw = self._socket().getsockopt(socket.SOL_SOCKET, socket.SO_LINGER, size)
        onoff, seconds = struct.unpack(_LINGER_FORMAT, raw)
        return float(seconds) if onoff else None

    def set_linger(self, duration: Optional[float]) -> None:
        """Set the SO_LINGER timeout in seconds; None turns lingering off."""
        if duration is None:
            value = struct.pack(_LINGER_FORMAT, 0, 0)
        else:
            if duration < 0:
                raise ValueError(f"linger duration must not be negative: {duration}")
            value = struct.pack(_LINGER_FORMAT, 1, int(duration))
        self._socket().setsockopt(socket.SOL_SOCKET, socket.SO_LINGER, value)


class Connect(SocksStream):
    """A CONNECT request awaiting its reply; afterwards a plain TCP tunnel."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__(reader, writer)
        self._ready = False

    def is_ready(self) -> bool:
        """Whether the reply has been sent."""
        return self._ready

    async def reply(self, reply: Reply, address: Address) -> Connect:
        """Send the reply to the client; the stream is then ready for relaying."""
        if self._ready:
            raise RuntimeError("CONNECT reply has already been sent")
        await self._send(Response(reply, address).to_bytes())
        self._ready = True
        return self