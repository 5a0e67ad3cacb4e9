"""SOCKS5 handshake, request, reply and UDP relay header messages."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterable, Tuple

from .address import Address, WireParser, _drive_async, _drive_sync
from .codes import Command, Method, Reply
from .errors import InvalidInputError, UnsupportedError

SOCKS_VERSION = 0x05


def _expect_version() -> WireParser[None]:
    version = (yield 1)[0]
    if version != SOCKS_VERSION:
        raise UnsupportedError(f"Unsupported SOCKS version {version:#x}")


def _sync_from_bytes(parser: WireParser[Any], data: bytes) -> Any:
    return _drive_sync(parser, io.BytesIO(bytes(data)))


@dataclass(frozen=True)
class Request:
    """A client request: VER, CMD, RSV, then the destination address."""

    command: Command
    address: Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "command", Command.from_code(int(self.command)))

    @classmethod
    def _wire_parser(cls) -> WireParser[Request]:
        yield from _expect_version()
        head = yield 2
        command = Command.from_code(head[0])
        address = yield from Address._wire_parser()
        return cls(command, address)

    @classmethod
    async def read_from(cls, stream: Any) -> Request:
        """Read the request from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> Request:
        """Read the request from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> Request:
        """Decode the request from the start of ``data``."""
        return _sync_from_bytes(cls._wire_parser(), data)

    def to_bytes(self) -> bytes:
        return bytes([SOCKS_VERSION, self.command, 0x00]) + self.address.to_bytes()

    def __len__(self) -> int:
        return 3 + len(self.address)


@dataclass(frozen=True)
class Response:
    """A server reply: VER, REP, RSV, then the bound address."""

    reply: Reply
    address: Address

    def __post_init__(self) -> None:
        object.__setattr__(self, "reply", Reply.from_code(int(self.reply)))

    @classmethod
    def _wire_parser(cls) -> WireParser[Response]:
        yield from _expect_version()
        head = yield 2
        reply = Reply.from_code(head[0])
        address = yield from Address._wire_parser()
        return cls(reply, address)

    @classmethod
    async def read_from(cls, stream: Any) -> Response:
        """Read the reply from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> Response:
        """Read the reply from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> Response:
        """Decode the reply from the start of ``data``."""
        return _sync_from_bytes(cls._wire_parser(), data)

    def to_bytes(self) -> bytes:
        return bytes([SOCKS_VERSION, self.reply, 0x00]) + self.address.to_bytes()

    def __len__(self) -> int:
        return 3 + len(self.address)


@dataclass(frozen=True)
class UdpHeader:
    """The header in front of every relayed UDP datagram: RSV, FRAG, address."""

    frag: int
    address: Address

    def __post_init__(self) -> None:
        if isinstance(self.frag, bool) or not isinstance(self.frag, int):
            raise TypeError(f"frag must be an int, not {type(self.frag).__name__}")
        if not 0 <= self.frag <= 0xFF:
            raise ValueError(f"frag out of range: {self.frag}")

    @staticmethod
    def max_serialized_len() -> int:
        """Longest possible header, with a 255-byte domain name."""
        return 3 + Address.max_serialized_len()

    @classmethod
    def _wire_parser(cls) -> WireParser[UdpHeader]:
        head = yield 3
        address = yield from Address._wire_parser()
        return cls(head[2], address)

    @classmethod
    async def read_from(cls, stream: Any) -> UdpHeader:
        """Read the header from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> UdpHeader:
        """Read the header from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> UdpHeader:
        """Decode the header from the start of ``data``."""
        return _sync_from_bytes(cls._wire_parser(), data)

    def to_bytes(self) -> bytes:
        return bytes([0x00, 0x00, self.frag]) + self.address.to_bytes()

    def __len__(self) -> int:
        return 3 + len(self.address)


@dataclass(frozen=True)
class HandshakeRequest:
    """The client greeting: VER, NMETHODS, METHODS."""

    methods: Tuple[Method, ...]

    def __init__(self, methods: Iterable[Any]) -> None:
        converted = tuple(m if isinstance(m, Method) else Method(m) for m in methods)
        object.__setattr__(self, "methods", converted)

    def evaluate_method(self, method: Method) -> bool:
        """Whether the client offered ``method``."""
        return method in self.methods

    @classmethod
    def _wire_parser(cls) -> WireParser[HandshakeRequest]:
        yield from _expect_version()
        count = (yield 1)[0]
        raw = (yield count) if count else b""
        return cls(Method(code) for code in raw)

    @classmethod
    async def read_from(cls, stream: Any) -> HandshakeRequest:
        """Read the greeting from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> HandshakeRequest:
        """Read the greeting from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> HandshakeRequest:
        """Decode the greeting from the start of ``data``."""
        return _sync_from_bytes(cls._wire_parser(), data)

    def to_bytes(self) -> bytes:
        if len(self.methods) > 0xFF:
            raise InvalidInputError(f"too many methods: {len(self.methods)}")
        return bytes([SOCKS_VERSION, len(self.methods), *(int(m) for m in self.methods)])

    def __len__(self) -> int:
        return 2 + len(self.methods)


@dataclass(frozen=True)
class HandshakeResponse:
    """The server's choice of authentication method: VER, METHOD."""

    method: Method

    @classmethod
    def _wire_parser(cls) -> WireParser[HandshakeResponse]:
        yield from _expect_version()
        code = (yield 1)[0]
        return cls(Method(code))

    @classmethod
    async def read_from(cls, stream: Any) -> HandshakeResponse:
        """Read the method choice from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> HandshakeResponse:
        """Read the method choice from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> HandshakeResponse:
        """Decode the method choice from the start of ``data``."""
        return _sync_from_bytes(cls._wire_parser(), data)

    def to_bytes(self) -> bytes:
        return bytes([SOCKS_VERSION, int(self.method)])

    def __len__(self) -> int:
        return 2