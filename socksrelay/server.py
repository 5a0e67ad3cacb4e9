"""A SOCKS5 proxy server handling CONNECT, BIND and UDP ASSOCIATE."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import socket
from ipaddress import IPv4Address, IPv6Address
from typing import Any, Optional, Sequence, Set, Tuple, Union

from .address import Address
from .associate import AssociatedUdpSocket, UdpAssociate
from .auth import AuthenticationError, NoAuth, PasswordAuth
from .bind import Bind
from .codes import Reply
from .connect import Connect
from .connection import IncomingConnection
from .messages import UdpHeader

logger = logging.getLogger(__name__)

MAX_UDP_RELAY_PACKET_SIZE = 1500
UDP_BUF_SIZE = MAX_UDP_RELAY_PACKET_SIZE - UdpHeader.max_serialized_len()
DEFAULT_BACKLOG = 1024
_CHUNK = 65536

IPAddress = Union[IPv4Address, IPv6Address]


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> int:
    total = 0
    while True:
        data = await reader.read(_CHUNK)
        if not data:
            break
        writer.write(data)
        await writer.drain()
        total += len(data)
    if writer.can_write_eof():
        with contextlib.suppress(OSError):
            writer.write_eof()
    return total


async def _copy_bidirectional(
    a_reader: asyncio.StreamReader,
    a_writer: asyncio.StreamWriter,
    b_reader: asyncio.StreamReader,
    b_writer: asyncio.StreamWriter,
) -> Tuple[int, int]:
    """Relay both ways until both sides finish; return bytes sent a->b and b->a."""
    forward = asyncio.create_task(_pipe(a_reader, b_writer))
    backward = asyncio.create_task(_pipe(b_reader, a_writer))
    try:
        sent, received = await asyncio.gather(forward, backward)
    except BaseException:
        forward.cancel()
        backward.cancel()
        await asyncio.gather(forward, backward, return_exceptions=True)
        raise
    return sent, received


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()


def _ip_matches(src: IPAddress, expected: IPAddress) -> bool:
    """Compare addresses, treating IPv4-mapped IPv6 as its IPv4 address."""
    if src == expected:
        return True
    if isinstance(src, IPv4Address) and isinstance(expected, IPv6Address):
        return expected.ipv4_mapped == src
    if isinstance(src, IPv6Address) and isinstance(expected, IPv4Address):
        return src.ipv4_mapped == expected
    return False


class _OutboundProtocol(asyncio.DatagramProtocol):
    def __init__(self, queue: asyncio.Queue) -> None:
        self.queue = queue

    def datagram_received(self, data: bytes, addr: Tuple[Any, ...]) -> None:
        self.queue.put_nowait((data, addr))

    def error_received(self, exc: Exception) -> None:
        self.queue.put_nowait(exc)


class _UdpOutbound:
    """Outbound UDP sockets: IPv4 always, IPv6 where the host supports it."""

    def __init__(
        self,
        v4: asyncio.DatagramTransport,
        v6: Optional[asyncio.DatagramTransport],
        queue: asyncio.Queue,
    ) -> None:
        self._v4 = v4
        self._v6 = v6
        self._queue = queue

    @classmethod
    async def open(cls) -> _UdpOutbound:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        v4, _ = await loop.create_datagram_endpoint(
            lambda: _OutboundProtocol(queue), local_addr=("0.0.0.0", 0)
        )
        v6: Optional[asyncio.DatagramTransport]
        try:
            v6, _ = await loop.create_datagram_endpoint(
                lambda: _OutboundProtocol(queue),
                local_addr=("::", 0),
                family=socket.AF_INET6,
            )
        except OSError:
            v6 = None
        return cls(v4, v6, queue)

    def _transport_for(self, family: int) -> Optional[asyncio.DatagramTransport]:
        return self._v6 if family == socket.AF_INET6 else self._v4

    async def send(self, payload: bytes, target: Address) -> None:
        if target.is_domain():
            loop = asyncio.get_running_loop()
            infos = await loop.getaddrinfo(str(target.host), target.port, type=socket.SOCK_DGRAM)
            for family, _, _, _, sockaddr in infos:
                transport = self._transport_for(family)
                if transport is not None:
                    transport.sendto(payload, sockaddr[:2])
                    return
            raise OSError(f"no usable address for {target}")
        family = socket.AF_INET6 if isinstance(target.host, IPv6Address) else socket.AF_INET
        transport = self._transport_for(family)
        if transport is None:
            raise OSError(f"no outbound socket for {target}")
        transport.sendto(payload, target.to_socket_address())

    async def recv(self) -> Tuple[bytes, Tuple[Any, ...]]:
        item = await self._queue.get()
        if isinstance(item, Exception):
            raise item
        data, addr = item
        return data[:MAX_UDP_RELAY_PACKET_SIZE], addr

    def close(self) -> None:
        self._v4.close()
        if self._v6 is not None:
            self._v6.close()


async def _handle(conn: IncomingConnection, peer: Any) -> None:
    try:
        stream = await conn.authenticate()
    except AuthenticationError as err:
        logger.debug(
            "[SOCKS5] authentication failed: %s, closing connection from %s", err, peer
        )
        await conn.shutdown()
        return

    connection, address = await stream.wait_request()
    if isinstance(connection, UdpAssociate):
        await _handle_udp(connection, address)
    elif isinstance(connection, Connect):
        await _handle_connect(connection, address)
    else:
        await _handle_bind(connection, address)


async def _handle_connect(connect: Connect, address: Address) -> None:
    logger.info(
        "[SOCKS5][CONNECT] %s -> %s forwarding connection", connect.peer_addr(), address
    )
    try:
        if address.is_domain():
            out_reader, out_writer = await asyncio.open_connection(
                str(address.host), address.port
            )
        else:
            out_reader, out_writer = await asyncio.open_connection(
                *address.to_socket_address()
            )
    except OSError:
        await connect.reply(Reply.HOST_UNREACHABLE, Address.unspecified())
        await connect.shutdown()
        raise

    try:
        await connect.reply(Reply.SUCCEEDED, Address.unspecified())
        try:
            from_client, from_server = await _copy_bidirectional(
                connect.reader, connect.writer, out_reader, out_writer
            )
            logger.info(
                "[SOCKS5][CONNECT] client wrote %d bytes and received %d bytes",
                from_client,
                from_server,
            )
        except OSError as err:
            logger.debug("[SOCKS5][CONNECT] tunnel error: %s", err)
    finally:
        await _close_writer(out_writer)


async def _handle_udp(associate: UdpAssociate, address: Address) -> None:
    local = associate.local_addr()
    inbound = await AssociatedUdpSocket.bind(Address(local.host, 0), UDP_BUF_SIZE)
    outbound: Optional[_UdpOutbound] = None
    try:
        listen_addr = inbound.local_addr()
        logger.info("[SOCKS5][UDP] listening on: %s", listen_addr)
        await associate.reply(Reply.SUCCEEDED, listen_addr)
        outbound = await _UdpOutbound.open()
        relay = outbound

        # Without an explicit client IP in the request, only the IP of the
        # TCP control connection may use the relay (RFC 1928, section 7).
        src_ip: IPAddress
        if not address.is_domain() and not address.host.is_unspecified:  # type: ignore[union-attr]
            src_ip = address.host  # type: ignore[assignment]
        else:
            src_ip = associate.peer_addr().host  # type: ignore[assignment]
        src_port = 0

        async def client_to_remote() -> None:
            nonlocal src_port
            while True:
                try:
                    payload, frag, dst, src = await inbound.recv_from()
                    if frag != 0:
                        logger.debug("[SOCKS5][UDP] packet fragment is not supported")
                        continue
                    if not _ip_matches(src.host, src_ip):  # type: ignore[arg-type]
                        logger.debug(
                            "[SOCKS5][UDP] packet from unauthorized IP: %s, expected: %s. Dropped.",
                            src.host,
                            src_ip,
                        )
                        continue
                    src_port = src.port
                    logger.info(
                        "[SOCKS5][UDP] %s -> %s forwarding packet, size %d",
                        src,
                        dst,
                        len(payload),
                    )
                    await relay.send(payload, dst)
                except Exception as err:  # noqa: BLE001
                    logger.debug("[SOCKS5][UDP] proxy error: %s", err)

        async def remote_to_client() -> None:
            while True:
                try:
                    data, remote = await relay.recv()
                    remote_addr = Address.from_socket_address(remote)
                    client = Address(src_ip, src_port)
                    logger.info(
                        "[SOCKS5][UDP] %s <- %s feedback to incoming, packet size %d",
                        client,
                        remote_addr,
                        len(data),
                    )
                    await inbound.send_to(data, 0, remote_addr, client)
                except Exception as err:  # noqa: BLE001
                    logger.debug("[SOCKS5][UDP] proxy error: %s", err)

        pumps = [
            asyncio.create_task(client_to_remote()),
            asyncio.create_task(remote_to_client()),
        ]
        try:
            try:
                await associate.wait_until_closed()
            except OSError as err:
                logger.debug("[SOCKS5][UDP] control connection error: %s", err)
        finally:
            for pump in pumps:
                pump.cancel()
            await asyncio.gather(*pumps, return_exceptions=True)

        await associate.shutdown()
        logger.info("[SOCKS5][UDP] %s listener closed", listen_addr)
    finally:
        inbound.close()
        if outbound is not None:
            outbound.close()


async def _handle_bind(bind: Bind, address: Address) -> None:
    loop = asyncio.get_running_loop()
    accepted: asyncio.Future = loop.create_future()

    def on_connect(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if accepted.done():
            writer.close()
            return
        accepted.set_result((reader, writer))

    local = bind.local_addr()
    listener = await asyncio.start_server(on_connect, str(local.host), 0)
    try:
        listen_addr = Address.from_socket_address(listener.sockets[0].getsockname())
        logger.info("[SOCKS5][BIND] listening on %s", listen_addr)
        await bind.reply(Reply.SUCCEEDED, listen_addr)
        out_reader, out_writer = await accepted
    finally:
        listener.close()

    try:
        outbound_addr = Address.from_socket_address(out_writer.get_extra_info("peername"))
        logger.info("[SOCKS5][BIND] accepted connection from %s", outbound_addr)
        try:
            await bind.reply(Reply.SUCCEEDED, outbound_addr)
        except OSError:
            with contextlib.suppress(OSError):
                await bind.shutdown()
            raise
        try:
            from_client, from_server = await _copy_bidirectional(
                bind.reader, bind.writer, out_reader, out_writer
            )
            logger.info(
                "[SOCKS5][BIND] client wrote %d bytes and received %d bytes",
                from_client,
                from_server,
            )
        except OSError as err:
            logger.debug("[SOCKS5][BIND] tunnel error: %s", err)
        await bind.shutdown()
    finally:
        await _close_writer(out_writer)


class Socks5Server:
    """A SOCKS5 proxy listening on one TCP address.

    With both a username and a password the server requires
    username/password authentication; otherwise it requires none.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 1080,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        backlog: int = DEFAULT_BACKLOG,
    ) -> None:
        self.host = host
        self.port = port
        self.backlog = backlog
        if username is not None and password is not None:
            self._auth: Union[NoAuth, PasswordAuth] = PasswordAuth(username, password)
        else:
            self._auth = NoAuth()
        self._server: Optional[asyncio.base_events.Server] = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self) -> Socks5Server:
        """Bind the listening socket and begin accepting clients."""
        if self._server is not None:
            raise RuntimeError("server is already started")
        self._server = await asyncio.start_server(
            self._accept,
            self.host,
            self.port,
            backlog=self.backlog,
            reuse_address=True,
        )
        logger.info("Socks5 proxy server listening on %s", self.address())
        return self

    async def serve_forever(self) -> None:
        """Start if needed, then accept clients until cancelled."""
        if self._server is None:
            await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    def address(self) -> Address:
        """The address the server listens on."""
        if self._server is None or not self._server.sockets:
            raise RuntimeError("server is not started")
        return Address.from_socket_address(self._server.sockets[0].getsockname())

    async def close(self) -> None:
        """Stop listening and drop every client connection."""
        server, self._server = self._server, None
        if server is None:
            return
        server.close()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await server.wait_closed()

    async def __aenter__(self) -> Socks5Server:
        if self._server is None:
            await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _accept(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._tasks.add(task)
        peer = writer.get_extra_info("peername")
        try:
            sock = writer.get_extra_info("socket")
            if sock is not None:
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            await _handle(IncomingConnection(reader, writer, self._auth), peer)
        except Exception as err:  # noqa: BLE001
            logger.debug("[SOCKS5] error: %s", err)
        finally:
            if task is not None:
                self._tasks.discard(task)
            writer.close()


def _parse_bind(text: str) -> Tuple[str, int]:
    try:
        return Address.parse(text).to_socket_address()
    except (OSError, ValueError) as err:
        raise argparse.ArgumentTypeError(str(err)) from None


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="socksrelay", description="SOCKS5 proxy server")
    parser.add_argument(
        "-b",
        "--bind",
        type=_parse_bind,
        default="127.0.0.1:1080",
        help="listen address, ip:port (default: %(default)s)",
    )
    parser.add_argument("-u", "--username", help="username required from clients")
    parser.add_argument("-p", "--password", help="password required from clients")
    parser.add_argument(
        "-c",
        "--concurrent",
        type=int,
        default=DEFAULT_BACKLOG,
        help="listen backlog (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="logging level (default: %(default)s)",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the proxy server from the command line."""
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    host, port = args.bind
    server = Socks5Server(
        host,
        port,
        username=args.username,
        password=args.password,
        backlog=args.concurrent,
    )
    try:
        asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        return 0
    except OSError as err:
        logger.error("server failed: %s", err)
        return 1
    return 0