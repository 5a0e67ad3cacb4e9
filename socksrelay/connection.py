"""An accepted client connection, from greeting to the request it carries."""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Tuple, Union

from .address import Address
from .associate import UdpAssociate
from .auth import NoAuth, PasswordAuth
from .bind import Bind
from .codes import Command, Method
from .connect import Connect, SocksStream
from .errors import UnsupportedError
from .messages import HandshakeRequest, HandshakeResponse, Request

Auth = Union[NoAuth, PasswordAuth]
ClientConnection = Union[Connect, Bind, UdpAssociate]

_COMMANDS = {
    Command.CONNECT: Connect,
    Command.BIND: Bind,
    Command.UDP_ASSOCIATE: UdpAssociate,
}


class IncomingConnection(SocksStream):
    """A freshly accepted stream that has not yet done the SOCKS5 greeting."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        auth: Optional[Auth] = None,
    ) -> None:
        super().__init__(reader, writer)
        self.auth: Auth = auth if auth is not None else NoAuth()

    def _evaluate_request(self, request: HandshakeRequest) -> Optional[Method]:
        method = self.auth.method()
        return method if request.evaluate_method(method) else None

    async def authenticate(self) -> AuthenticatedStream:
        """Perform the greeting and authentication.

        Raises UnsupportedError when the client offers no usable method, and
        whatever the authentication method raises when it fails. The stream
        is never closed here; the caller decides what to do with it.
        """
        request = await HandshakeRequest.read_from(self.reader)
        method = self._evaluate_request(request)
        if method is None:
            await self._send(HandshakeResponse(Method.NO_ACCEPTABLE_METHODS).to_bytes())
            raise UnsupportedError("No available handshake method provided by client")
        await self._send(HandshakeResponse(method).to_bytes())
        extension = await self.auth.execute(self.reader, self.writer)
        return AuthenticatedStream(self.reader, self.writer, extension)


class AuthenticatedStream(SocksStream):
    """A stream whose client has authenticated and will now send a request."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        extension: Optional[str] = None,
    ) -> None:
        super().__init__(reader, writer)
        self.extension = extension

    async def wait_request(self) -> Tuple[ClientConnection, Address]:
        """Read the client's request; return the command's connection and its address.

        The stream is not closed if the request is invalid.
        """
        request = await Request.read_from(self.reader)
        connection_type = _COMMANDS[request.command]
        return connection_type(self.reader, self.writer), request.address