"""SOCKS5 authentication methods: none, or username and password."""

from __future__ import annotations

import asyncio
from typing import Any, Optional

from .codes import Method
from .errors import InvalidDataError, SocksError, UnsupportedError
from .password import (
    SUBNEGOTIATION_VERSION,
    PasswordResponse,
    Status,
    UsernamePassword,
)


class AuthenticationError(SocksError):
    """The client failed to authenticate."""


async def _read_field(reader: asyncio.StreamReader, what: str) -> str:
    length = (await reader.readexactly(1))[0]
    raw = await reader.readexactly(length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as err:
        raise InvalidDataError(f"Invalid {what} encoding: {err}") from err


async def _read_credentials(reader: asyncio.StreamReader) -> UsernamePassword:
    """Read a username/password request: VER, ULEN, UNAME, PLEN, PASSWD."""
    version = (await reader.readexactly(1))[0]
    if version != SUBNEGOTIATION_VERSION:
        raise UnsupportedError(f"Unsupported sub-negotiation version {version:#x}")
    username = await _read_field(reader, "username")
    secret = await _read_field(reader, "password")
    return UsernamePassword(username, secret)


class NoAuth:
    """Accept every client without authentication."""

    def method(self) -> Method:
        return Method.NO_AUTH

    async def execute(
        self, reader: asyncio.StreamReader, writer: Any
    ) -> Optional[str]:
        """Nothing to exchange; there is never an extension."""
        return None

    def __repr__(self) -> str:
        return "NoAuth()"


class PasswordAuth:
    """Username and password authentication.

    The client's username must start with the configured username; whatever
    follows it is handed back as the connection's extension text.
    """

    def __init__(self, username: str, password: str) -> None:
        self.credentials = UsernamePassword(username, password)

    def method(self) -> Method:
        return Method.PASSWORD

    async def execute(
        self, reader: asyncio.StreamReader, writer: Any
    ) -> Optional[str]:
        """Run the sub-negotiation; return the extension text, or None if empty.

        Raises AuthenticationError when the credentials do not match.
        """
        offered = await _read_credentials(reader)
        accepted = offered.username.startswith(
            self.credentials.username
        ) and offered.password == self.credentials.password

        status = Status.SUCCEEDED if accepted else Status.FAILED
        writer.write(PasswordResponse(status).to_bytes())
        await writer.drain()

        if not accepted:
            raise AuthenticationError("username or password is incorrect")
        extension = offered.username[len(self.credentials.username) :]
        return extension or None

    def __repr__(self) -> str:
        return f"PasswordAuth(username={self.credentials.username!r})"