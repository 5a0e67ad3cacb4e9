"""SOCKS5 command, reply and authentication method codes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import ClassVar

from .errors import InvalidInputError


class Command(IntEnum):
    """The command a client asks the proxy to carry out."""

    CONNECT = 0x01
    BIND = 0x02
    UDP_ASSOCIATE = 0x03

    @classmethod
    def from_code(cls, code: int) -> Command:
        """Decode a command byte."""
        try:
            return cls(code)
        except ValueError:
            raise InvalidInputError(f"Unsupported command code {code:#x}") from None


class Reply(IntEnum):
    """The status field of a reply sent to the client."""

    SUCCEEDED = 0x00
    GENERAL_FAILURE = 0x01
    CONNECTION_NOT_ALLOWED = 0x02
    NETWORK_UNREACHABLE = 0x03
    HOST_UNREACHABLE = 0x04
    CONNECTION_REFUSED = 0x05
    TTL_EXPIRED = 0x06
    COMMAND_NOT_SUPPORTED = 0x07
    ADDRESS_TYPE_NOT_SUPPORTED = 0x08

    @classmethod
    def from_code(cls, code: int) -> Reply:
        """Decode a reply byte."""
        try:
            return cls(code)
        except ValueError:
            raise InvalidInputError(f"Unsupported reply code {code:#x}") from None

    def __str__(self) -> str:
        camel = "".join(part.capitalize() for part in self.name.split("_"))
        return f"Reply::{camel}"

    def __format__(self, spec: str) -> str:
        return format(str(self), spec)


class MethodKind(Enum):
    """The family an authentication method code belongs to."""

    NO_AUTH = "no_auth"
    GSS_API = "gss_api"
    PASSWORD = "password"
    IANA_RESERVED = "iana_reserved"
    PRIVATE = "private"
    NO_ACCEPTABLE_METHODS = "no_acceptable_methods"


@dataclass(frozen=True)
class Method:
    """An authentication method; every byte value is a valid method."""

    code: int

    NO_AUTH: ClassVar[Method]
    GSS_API: ClassVar[Method]
    PASSWORD: ClassVar[Method]
    NO_ACCEPTABLE_METHODS: ClassVar[Method]

    def __post_init__(self) -> None:
        if isinstance(self.code, bool) or not isinstance(self.code, int):
            raise TypeError(f"method code must be an int, not {type(self.code).__name__}")
        if not 0 <= self.code <= 0xFF:
            raise ValueError(f"method code out of range: {self.code}")

    def kind(self) -> MethodKind:
        """Return the family this method code belongs to."""
        code = self.code
        if code == 0x00:
            return MethodKind.NO_AUTH
        if code == 0x01:
            return MethodKind.GSS_API
        if code == 0x02:
            return MethodKind.PASSWORD
        if code <= 0x7F:
            return MethodKind.IANA_RESERVED
        if code <= 0xFE:
            return MethodKind.PRIVATE
        return MethodKind.NO_ACCEPTABLE_METHODS

    def __int__(self) -> int:
        return self.code

    __index__ = __int__

    def __str__(self) -> str:
        kind = self.kind()
        if kind is MethodKind.NO_AUTH:
            return "NoAuth"
        if kind is MethodKind.GSS_API:
            return "GssApi"
        if kind is MethodKind.PASSWORD:
            return "UserPass"
        if kind is MethodKind.IANA_RESERVED:
            return f"IanaReserved({self.code:#x})"
        if kind is MethodKind.PRIVATE:
            return f"Private({self.code:#x})"
        return "NoAcceptableMethods"


Method.NO_AUTH = Method(0x00)
Method.GSS_API = Method(0x01)
Method.PASSWORD = Method(0x02)
Method.NO_ACCEPTABLE_METHODS = Method(0xFF)