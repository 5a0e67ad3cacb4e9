"""Username/password sub-negotiation of SOCKS5 authentication."""

from __future__ import annotations

import io
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, BinaryIO

from .address import WireParser, _drive_async, _drive_sync
from .errors import InvalidDataError, UnsupportedError

SUBNEGOTIATION_VERSION = 0x01


def _percent_encode(text: str) -> str:
    return "".join(
        chr(byte) if chr(byte).isascii() and chr(byte).isalnum() else f"%{byte:02X}"
        for byte in text.encode("utf-8")
    )


@dataclass(frozen=True)
class UsernamePassword:
    """Credentials for username/password authentication."""

    username: str = ""
    password: str = ""

    def __str__(self) -> str:
        user = _percent_encode(self.username)
        secret = _percent_encode(self.password)
        if not self.username and not self.password:
            return ""
        if not self.username:
            return f":{secret}"
        if not self.password:
            return user
        return f"{user}:{secret}"

    def username_bytes(self) -> bytes:
        return self.username.encode("utf-8")

    def password_bytes(self) -> bytes:
        return self.password.encode("utf-8")


class Status(IntEnum):
    """Outcome of the username/password sub-negotiation."""

    SUCCEEDED = 0x00
    FAILED = 0xFF

    @classmethod
    def from_code(cls, code: int) -> Status:
        """Decode a status byte."""
        try:
            return cls(code)
        except ValueError:
            raise InvalidDataError(f"Invalid sub-negotiation status {code:#x}") from None

    def __str__(self) -> str:
        return "Succeeded" if self is Status.SUCCEEDED else "Failed"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


@dataclass(frozen=True)
class PasswordResponse:
    """The server's answer to a username/password request: VER, STATUS."""

    status: Status

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", Status.from_code(int(self.status)))

    @classmethod
    def _wire_parser(cls) -> WireParser[PasswordResponse]:
        version = (yield 1)[0]
        if version != SUBNEGOTIATION_VERSION:
            raise UnsupportedError(f"Unsupported sub-negotiation version {version:#x}")
        status = Status.from_code((yield 1)[0])
        return cls(status)

    @classmethod
    async def read_from(cls, stream: Any) -> PasswordResponse:
        """Read the response from an asyncio stream reader."""
        return await _drive_async(cls._wire_parser(), stream)

    @classmethod
    def read(cls, reader: BinaryIO) -> PasswordResponse:
        """Read the response from a binary file-like object."""
        return _drive_sync(cls._wire_parser(), reader)

    @classmethod
    def from_bytes(cls, data: bytes) -> PasswordResponse:
        """Decode the response from the start of ``data``."""
        return cls.read(io.BytesIO(bytes(data)))

    def to_bytes(self) -> bytes:
        return bytes([SUBNEGOTIATION_VERSION, self.status])

    def __len__(self) -> int:
        return 2