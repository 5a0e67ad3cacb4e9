"""The BIND command: two replies, then a plain tunnel."""

from __future__ import annotations

import asyncio
from enum import Enum

from .address import Address
from .codes import Reply
from .connect import SocksStream
from .messages import Response


class BindState(Enum):
    """How far a BIND exchange has progressed."""

    NEED_FIRST_REPLY = "need_first_reply"
    NEED_SECOND_REPLY = "need_second_reply"
    READY = "ready"


class Bind(SocksStream):
    """A BIND request: first reply names the listener, second the accepted peer."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        super().__init__(reader, writer)
        self._state = BindState.NEED_FIRST_REPLY

    def state(self) -> BindState:
        return self._state

    async def reply(self, reply: Reply, address: Address) -> Bind:
        """Send the next reply; after the second one the stream is ready."""
        if self._state is BindState.READY:
            raise RuntimeError("both BIND replies have already been sent")
        await self._send(Response(reply, address).to_bytes())
        if self._state is BindState.NEED_FIRST_REPLY:
            self._state = BindState.NEED_SECOND_REPLY
        else:
            self._state = BindState.READY
        return self