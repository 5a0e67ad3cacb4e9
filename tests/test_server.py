import asyncio
import socket
from contextlib import asynccontextmanager
from ipaddress import IPv4Address

import pytest

from socksrelay.address import Address
from socksrelay.associate import build_packet, parse_packet
from socksrelay.codes import Command, Reply
from socksrelay.messages import Request, Response
from socksrelay.server import Socks5Server, main

TIMEOUT = 5
LOCALHOST = IPv4Address("127.0.0.1")


@asynccontextmanager
async def running_server(**kwargs):
    server = Socks5Server("127.0.0.1", 0, **kwargs)
    await server.start()
    try:
        yield server
    finally:
        await server.close()


@asynccontextmanager
async def echo_server():
    async def handle(reader, writer):
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    break
                writer.write(data)
                await writer.drain()
        finally:
            writer.close()

    srv = await asyncio.start_server(handle, "127.0.0.1", 0)
    try:
        yield srv.sockets[0].getsockname()[1]
    finally:
        srv.close()


class _EchoUdp(asyncio.DatagramProtocol):
    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.transport.sendto(data, addr)


class _Collector(asyncio.DatagramProtocol):
    def __init__(self):
        self.queue = asyncio.Queue()

    def datagram_received(self, data, addr):
        self.queue.put_nowait(data)


async def open_client(server):
    return await asyncio.open_connection(*server.address().to_socket_address())


async def read(reader, size):
    return await asyncio.wait_for(reader.readexactly(size), TIMEOUT)


async def read_all(reader):
    return await asyncio.wait_for(reader.read(), TIMEOUT)


async def greet(reader, writer, methods=b"\x00"):
    writer.write(bytes([0x05, len(methods)]) + methods)
    await writer.drain()
    return await read(reader, 2)


async def send_credentials(reader, writer, user, secret):
    user_raw = user.encode()
    secret_raw = secret.encode()
    writer.write(
        bytes([0x01, len(user_raw)]) + user_raw + bytes([len(secret_raw)]) + secret_raw
    )
    await writer.drain()
    return await read(reader, 2)


def closed_port():
    sock = socket.socket()
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.mark.asyncio
async def test_address_reports_bound_port():
    async with running_server() as server:
        addr = server.address()
        assert addr.host == LOCALHOST
        assert addr.port > 0


def test_address_before_start_raises():
    with pytest.raises(RuntimeError):
        Socks5Server("127.0.0.1", 0).address()


@pytest.mark.asyncio
async def test_connect_relays_data():
    async with echo_server() as echo_port, running_server() as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer) == b"\x05\x00"
        writer.write(Request(Command.CONNECT, Address(LOCALHOST, echo_port)).to_bytes())
        await writer.drain()
        reply = await read(reader, 10)
        assert reply == Response(Reply.SUCCEEDED, Address.unspecified()).to_bytes()
        writer.write(b"hello through proxy")
        writer.write_eof()
        assert await read_all(reader) == b"hello through proxy"
        writer.close()


@pytest.mark.asyncio
async def test_connect_with_domain_address():
    async with echo_server() as echo_port, running_server() as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer) == b"\x05\x00"
        writer.write(Request(Command.CONNECT, Address("127.0.0.1", echo_port)).to_bytes())
        await writer.drain()
        response = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
        assert response.reply == Reply.SUCCEEDED
        writer.write(b"abc")
        writer.write_eof()
        assert await read_all(reader) == b"abc"
        writer.close()


@pytest.mark.asyncio
async def test_connect_unreachable_replies_host_unreachable():
    port = closed_port()
    async with running_server() as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer) == b"\x05\x00"
        writer.write(Request(Command.CONNECT, Address(LOCALHOST, port)).to_bytes())
        await writer.drain()
        response = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
        assert response.reply == Reply.HOST_UNREACHABLE
        assert response.address == Address.unspecified()
        assert await read_all(reader) == b""
        writer.close()


@pytest.mark.asyncio
async def test_no_acceptable_method_is_refused():
    async with running_server() as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer, b"\x02") == b"\x05\xff"
        assert await read_all(reader) == b""
        writer.close()


@pytest.mark.asyncio
async def test_password_auth_accepts_prefixed_username():
    password = "password"
    async with echo_server() as echo_port, running_server(
        username="user", password=password
    ) as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer, b"\x02") == b"\x05\x02"
        assert await send_credentials(reader, writer, "user-extra", "password") == b"\x01\x00"
        writer.write(Request(Command.CONNECT, Address(LOCALHOST, echo_port)).to_bytes())
        await writer.drain()
        response = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
        assert response.reply == Reply.SUCCEEDED
        writer.write(b"ok")
        writer.write_eof()
        assert await read_all(reader) == b"ok"
        writer.close()


@pytest.mark.asyncio
async def test_password_auth_rejects_wrong_password():
    password = "password"
    async with running_server(username="user", password=password) as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer, b"\x02") == b"\x05\x02"
        assert await send_credentials(reader, writer, "user", "secret") == b"\x01\xff"
        assert await read_all(reader) == b""
        writer.close()


@pytest.mark.asyncio
async def test_password_server_refuses_no_auth_client():
    password = "password"
    async with running_server(username="user", password=password) as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer, b"\x00") == b"\x05\xff"
        writer.close()


@pytest.mark.asyncio
async def test_udp_associate_relays_datagrams():
    loop = asyncio.get_running_loop()
    echo_transport, _ = await loop.create_datagram_endpoint(
        _EchoUdp, local_addr=("127.0.0.1", 0)
    )
    client_transport, collector = await loop.create_datagram_endpoint(
        _Collector, local_addr=("127.0.0.1", 0)
    )
    target = Address.from_socket_address(echo_transport.get_extra_info("sockname"))
    try:
        async with running_server() as server:
            reader, writer = await open_client(server)
            assert await greet(reader, writer) == b"\x05\x00"
            writer.write(Request(Command.UDP_ASSOCIATE, Address.unspecified()).to_bytes())
            await writer.drain()
            response = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
            assert response.reply == Reply.SUCCEEDED
            relay = response.address
            assert relay.host == LOCALHOST
            assert relay.port > 0

            relay_target = relay.to_socket_address()
            client_transport.sendto(build_packet(b"dropped", 1, target), relay_target)
            client_transport.sendto(build_packet(b"ping", 0, target), relay_target)

            data = await asyncio.wait_for(collector.queue.get(), TIMEOUT)
            payload, frag, source = parse_packet(data)
            assert payload == b"ping"
            assert frag == 0
            assert source == target

            writer.write_eof()
            assert await read_all(reader) == b""
            writer.close()
    finally:
        echo_transport.close()
        client_transport.close()


@pytest.mark.asyncio
async def test_bind_sends_two_replies_and_relays():
    async with running_server() as server:
        reader, writer = await open_client(server)
        assert await greet(reader, writer) == b"\x05\x00"
        writer.write(Request(Command.BIND, Address.unspecified()).to_bytes())
        await writer.drain()

        first = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
        assert first.reply == Reply.SUCCEEDED
        assert first.address.host == LOCALHOST

        target_reader, target_writer = await asyncio.open_connection(
            *first.address.to_socket_address()
        )
        second = await asyncio.wait_for(Response.read_from(reader), TIMEOUT)
        assert second.reply == Reply.SUCCEEDED
        assert second.address == Address.from_socket_address(
            target_writer.get_extra_info("sockname")
        )

        writer.write(b"to-target")
        await writer.drain()
        assert await read(target_reader, 9) == b"to-target"

        target_writer.write(b"to-client")
        await target_writer.drain()
        assert await read(reader, 9) == b"to-client"

        writer.close()
        target_writer.close()


@pytest.mark.asyncio
async def test_close_stops_accepting():
    server = Socks5Server("127.0.0.1", 0)
    await server.start()
    host, port = server.address().to_socket_address()
    await server.close()
    with pytest.raises(OSError):
        await asyncio.wait_for(asyncio.open_connection(host, port), TIMEOUT)
    with pytest.raises(RuntimeError):
        server.address()


@pytest.mark.asyncio
async def test_start_twice_raises():
    async with running_server() as server:
        with pytest.raises(RuntimeError):
            await server.start()


def test_main_rejects_bad_bind_address():
    with pytest.raises(SystemExit) as excinfo:
        main(["--bind", "not-an-address"])
    assert excinfo.value.code == 2