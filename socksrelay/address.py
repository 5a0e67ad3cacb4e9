"""The SOCKS5 address field: ATYP, DST.ADDR and DST.PORT."""

from __future__ import annotations

import io
import re
from dataclasses import dataclass
from enum import IntEnum
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Any, BinaryIO, Generator, Optional, Tuple, TypeVar, Union

from .errors import InvalidDataError, InvalidInputError, UnsupportedError

IPAddress = Union[IPv4Address, IPv6Address]

_T = TypeVar("_T")
# A wire parser yields the number of bytes it needs and receives them back.
WireParser = Generator[int, bytes, _T]

_DIGITS = re.compile(r"[0-9]+")


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    data = reader.read(size)
    if data is None or len(data) < size:
        got = 0 if data is None else len(data)
        raise EOFError(f"unexpected end of data: expected {size} bytes, got {got}")
    return data


def _drive_sync(parser: WireParser[_T], reader: BinaryIO) -> _T:
    try:
        size = next(parser)
        while True:
            size = parser.send(_read_exact(reader, size))
    except StopIteration as stop:
        return stop.value


async def _drive_async(parser: WireParser[_T], stream: Any) -> _T:
    try:
        size = next(parser)
        while True:
            size = parser.send(await stream.readexactly(size))
    except StopIteration as stop:
        return stop.value


def _port_bytes(port: int) -> bytes:
    return port.to_bytes(2, "big")


def _parse_port(text: str) -> int:
    if not text:
        raise InvalidInputError("ParseIntError: cannot parse integer from empty string")
    digits = text[1:] if text.startswith("+") else text
    if not _DIGITS.fullmatch(digits):
        raise InvalidInputError("ParseIntError: invalid digit found in string")
    value = int(digits)
    if value > 0xFFFF:
        raise InvalidInputError("ParseIntError: number too large to fit in target type")
    return value


def _parse_socket_address(text: str) -> Optional[Tuple[IPAddress, int]]:
    host: IPAddress
    if text.startswith("["):
        close = text.find("]:")
        if close < 0:
            return None
        host_text, port_text = text[1:close], text[close + 2 :]
        try:
            host = IPv6Address(host_text)
        except ValueError:
            return None
    else:
        host_text, sep, port_text = text.rpartition(":")
        if not sep:
            return None
        try:
            host = IPv4Address(host_text)
        except ValueError:
            return None
    if not _DIGITS.fullmatch(port_text):
        return None
    port = int(port_text)
    if port > 0xFFFF:
        return None
    return host, port


class AddressType(IntEnum):
    """The ATYP byte."""

    IPV4 = 0x01
    DOMAIN = 0x03
    IPV6 = 0x04

    @classmethod
    def from_code(cls, code: int) -> AddressType:
        """Decode an address type byte."""
        try:
            return cls(code)
        except ValueError:
            raise InvalidInputError(f"Unsupported address type code {code:#x}") from None


@dataclass(frozen=True)
class Address:
    """A socket address (IP host) or a domain name with a port."""

    host: Union[IPv4Address, IPv6Address, str]
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.host, (IPv4Address, IPv6Address, str)):
            raise TypeError(f"unsupported host type: {type(self.host).__name__}")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise TypeError(f"port must be an int, not {type(self.port).__name__}")
        if not 0 <= self.port <= 0xFFFF:
            raise ValueError(f"port out of range: {self.port}")

    @classmethod
    def unspecified(cls) -> Address:
        """The all-zero IPv4 address with port 0."""
        return cls(IPv4Address(0), 0)

    @staticmethod
    def max_serialized_len() -> int:
        """Longest possible encoding: a 255-byte domain name."""
        return 1 + 1 + 0xFF + 2

    def address_type(self) -> AddressType:
        if isinstance(self.host, IPv4Address):
            return AddressType.IPV4
        if isinstance(self.host, IPv6Address):
            return AddressType.IPV6
        return AddressType.DOMAIN

    def is_domain(self) -> bool:
        return isinstance(self.host, str)

    def domain(self) -> str:
        """The host as text, whether it is an IP address or a name."""
        return str(self.host)

    @classmethod
    def from_socket_address(cls, addr: Tuple[Any, ...]) -> Address:
        """Build from a socket-module address tuple such as ``(host, port)``."""
        host, port = addr[0], addr[1]
        if not isinstance(host, (IPv4Address, IPv6Address)):
            host = ip_address(host)
        return cls(host, port)

    @classmethod
    def parse(cls, text: str) -> Address:
        """Parse ``ip:port``, ``[ipv6]:port``, ``name:port`` or a bare name."""
        sock = _parse_socket_address(text)
        if sock is not None:
            return cls(*sock)
        host, sep, port_text = text.rpartition(":")
        if not sep:
            host, port_text = text, "0"
        return cls(host, _parse_port(port_text))

    def to_socket_address(self) -> Tuple[str, int]:
        """Return ``(ip, port)``; a domain is accepted only if it is a literal IP."""
        if isinstance(self.host, str):
            try:
                ip = ip_address(self.host)
            except ValueError:
                raise UnsupportedError(
                    f"domain address {self.host} is not supported"
                ) from None
            return str(ip), self.port
        return str(self.host), self.port

    @classmethod
    def _wire_parser(cls) -> WireParser[Address]:
        atyp = AddressType.from_code((yield 1)[0])
        if atyp is AddressType.IPV4:
            raw = yield 6
            return cls(IPv4Address(raw[:4]), int.from_bytes(raw[4:], "big"))
        if atyp is AddressType.IPV6:
            raw = yield 18
            return cls(IPv6Address(raw[:16]), int.from_bytes(raw[16:], "big"))
        length = (yield 1)[0]
        raw = yield length + 2
        try:
            name = raw[:length].decode("utf-8")
        except UnicodeDecodeError as err:
            raise InvalidDataError(f"Invalid address encoding: {err}") from err
        return cls(name, int.from_bytes(raw[length:], "big"))

    @classmethod
    async def read_from(cls, stream: Any) -> Address:
        """Read an address from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> Address:
        """Read an address from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> Address:
        """Decode an address from the start of ``data``."""
        return cls.read(io.BytesIO(bytes(data)))

    def to_bytes(self) -> bytes:
        host = self.host
        if isinstance(host, IPv4Address):
            return bytes([AddressType.IPV4]) + host.packed + _port_bytes(self.port)
        if isinstance(host, IPv6Address):
            return bytes([AddressType.IPV6]) + host.packed + _port_bytes(self.port)
        name = host.encode("utf-8")
        if len(name) > 0xFF:
            raise InvalidInputError(f"domain name too long: {len(name)} bytes")
        return bytes([AddressType.DOMAIN, len(name)]) + name + _port_bytes(self.port)

    def __len__(self) -> int:
        if isinstance(self.host, IPv4Address):
            return 1 + 4 + 2
        if isinstance(self.host, IPv6Address):
            return 1 + 16 + 2
        return 1 + 1 + len(self.host.encode("utf-8")) + 2

    def __str__(self) -> str:
        if isinstance(self.host, IPv6Address):
            return f"[{self.host}]:{self.port}"
        return f"{self.host}:{self.port}"