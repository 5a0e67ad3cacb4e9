import asyncio

import pytest

from socksrelay.auth import AuthenticationError, NoAuth, PasswordAuth
from socksrelay.codes import Method
from socksrelay.errors import InvalidDataError, UnsupportedError
from socksrelay.password import PasswordResponse, Status


class _Writer:
    def __init__(self):
        self.data = bytearray()

    def write(self, data):
        self.data += data

    async def drain(self):
        pass


def _reader(data):
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    reader.feed_eof()
    return reader


def _credentials(username, secret):
    user = username.encode("utf-8")
    pw = secret.encode("utf-8")
    return bytes([0x01, len(user)]) + user + bytes([len(pw)]) + pw


def test_methods():
    password = "password"
    assert NoAuth().method() == Method.NO_AUTH
    assert PasswordAuth("user", password).method() == Method.PASSWORD


@pytest.mark.asyncio
async def test_no_auth_reads_and_writes_nothing():
    writer = _Writer()
    reader = _reader(b"rest")
    assert await NoAuth().execute(reader, writer) is None
    assert writer.data == b""
    assert await reader.read() == b"rest"


@pytest.mark.asyncio
async def test_password_success_without_extension():
    password = "password"
    auth = PasswordAuth("user", password)
    writer = _Writer()
    result = await auth.execute(_reader(_credentials("user", "password")), writer)
    assert result is None
    assert bytes(writer.data) == b"\x01\x00"
    assert PasswordResponse.from_bytes(writer.data).status is Status.SUCCEEDED


@pytest.mark.asyncio
async def test_password_success_with_extension():
    password = "password"
    auth = PasswordAuth("user", password)
    writer = _Writer()
    result = await auth.execute(
        _reader(_credentials("user-session-abc", "password")), writer
    )
    assert result == "-session-abc"
    assert bytes(writer.data) == b"\x01\x00"


@pytest.mark.asyncio
async def test_wrong_password_fails():
    password = "password"
    auth = PasswordAuth("user", password)
    writer = _Writer()
    with pytest.raises(AuthenticationError):
        await auth.execute(_reader(_credentials("user", "secret")), writer)
    assert bytes(writer.data) == b"\x01\xff"


@pytest.mark.asyncio
async def test_username_must_start_with_configured_one():
    password = "password"
    auth = PasswordAuth("user", password)
    writer = _Writer()
    with pytest.raises(AuthenticationError):
        await auth.execute(_reader(_credentials("use", "password")), writer)
    assert PasswordResponse.from_bytes(writer.data).status is Status.FAILED


@pytest.mark.asyncio
async def test_bad_subnegotiation_version():
    password = "password"
    auth = PasswordAuth("user", password)
    writer = _Writer()
    data = b"\x05" + _credentials("user", "password")[1:]
    with pytest.raises(UnsupportedError):
        await auth.execute(_reader(data), writer)
    assert writer.data == b""


@pytest.mark.asyncio
async def test_truncated_request():
    password = "password"
    auth = PasswordAuth("user", password)
    with pytest.raises(EOFError):
        await auth.execute(_reader(b"\x01\x04us"), _Writer())


@pytest.mark.asyncio
async def test_invalid_utf8_username():
    password = "password"
    auth = PasswordAuth("user", password)
    data = bytes([0x01, 2, 0xFF, 0xFE, 1]) + b"x"
    with pytest.raises(InvalidDataError):
        await auth.execute(_reader(data), _Writer())


def test_repr_hides_secret():
    password = "password"
    assert "password" not in repr(PasswordAuth("user", password))