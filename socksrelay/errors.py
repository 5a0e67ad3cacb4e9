"""Exception hierarchy for the SOCKS5 protocol layer."""

from __future__ import annotations

from typing import Any


class SocksError(OSError):
    """Base class for every SOCKS protocol error."""


class InvalidInputError(SocksError):
    """A value handed to the protocol layer cannot be used."""


class InvalidDataError(SocksError):
    """Data received from a peer is malformed."""


class UnsupportedError(SocksError):
    """The peer asked for something this server does not support."""


class _CodeError(InvalidDataError):
    """An error that carries the offending protocol byte."""

    _template = "{code:x}"

    def __init__(self, code: int) -> None:
        self.code = code
        super().__init__(self._template.format(code=code))


class InvalidVersion(_CodeError):
    _template = "Invalid SOCKS version: {code:x}"


class InvalidCommand(_CodeError):
    _template = "Invalid command: {code:x}"


class InvalidAtyp(_CodeError):
    _template = "Invalid address type: {code:x}"


class InvalidReserved(_CodeError):
    _template = "Invalid reserved bytes: {code:x}"


class InvalidAuthStatus(_CodeError):
    _template = "Invalid authentication status: {code:x}"


class InvalidAuthSubnegotiation(_CodeError):
    _template = "Invalid authentication version of subnegotiation: {code:x}"


class InvalidFragmentId(_CodeError):
    _template = "Invalid fragment id: {code:x}"


class InvalidAuthMethod(UnsupportedError):
    """The client picked an authentication method the server cannot use."""

    def __init__(self, method: Any) -> None:
        self.method = method
        super().__init__(f"Invalid authentication method: {method}")


class WrongVersion(UnsupportedError):
    """A SOCKS4 message arrived where SOCKS5 was expected."""

    def __init__(self) -> None:
        super().__init__("SOCKS version is 4 when 5 is expected")