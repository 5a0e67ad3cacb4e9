# socksrelay

A SOCKS5 proxy server built on `asyncio`, with no third-party dependencies.

It speaks SOCKS5 (RFC 1928) with the username/password sub-negotiation
(RFC 1929):

- method negotiation with either no authentication or username/password
  authentication. Username/password is required when both a username and a
  password are configured; otherwise no authentication is required;
- the `CONNECT` command, relaying a TCP stream to the requested host. If the
  host cannot be reached the client gets a "host unreachable" reply;
- the `BIND` command, listening on a fresh port for one inbound connection,
  sending the client two replies (the listening address, then the address of
  the peer that connected) and relaying the connection;
- the `UDP ASSOCIATE` command, relaying datagrams in both directions for as
  long as the controlling TCP connection stays open. Only datagrams from the
  IP named in the request are accepted, or, when the request names no IP,
  from the IP of the control connection. Fragmented datagrams are dropped.

## Installation

```
pip install .
```

Python 3.10 or later is required.

## Running the server

Installing the package provides the `socksrelay` command, which starts the
server and runs until it is interrupted:

```
socksrelay
```

Options:

- `-b`, `--bind` — listen address as `ip:port` or `[ipv6]:port`
  (default `127.0.0.1:1080`);
- `-u`, `--username` and `-p`, `--password` — credentials clients must
  present; both must be given for authentication to be required;
- `-c`, `--concurrent` — listen backlog (default 1024);
- `--log-level` — one of `DEBUG`, `INFO`, `WARNING`, `ERROR` (default `INFO`).

The command returns 0 when interrupted and 1 if the server fails with an
operating-system error, such as the address already being in use.

## Using it from Python

`socksrelay.server.Socks5Server(host, port, *, username=None, password=None,
backlog=1024)` is the server. `start()` opens the listening socket,
`serve_forever()` starts it if needed and accepts clients until cancelled,
`address()` reports the bound address and `close()` stops listening and drops
every client. It can also be used as an async context manager:

```python
import asyncio

from socksrelay.server import Socks5Server


async def run() -> None:
    async with Socks5Server("127.0.0.1", 0) as server:
        print(server.address())
        await asyncio.sleep(60)


asyncio.run(run())
```

The wire format lives in its own modules and can be used on its own, for
example to build or inspect SOCKS5 messages in tests or in a client:

```python
from socksrelay.address import Address

target = Address.parse("example.com:443")
print(target)              # example.com:443
print(target.is_domain())  # True

encoded = target.to_bytes()
assert Address.from_bytes(encoded) == target
assert len(target) == len(encoded)
```

- `socksrelay.address` — `Address` and `AddressType`, the `ATYP`/address/port
  triple used throughout the protocol.
- `socksrelay.codes` — `Command`, `Reply` and `Method` codes.
- `socksrelay.messages` — `HandshakeRequest`, `HandshakeResponse`, `Request`,
  `Response` and `UdpHeader`.
- `socksrelay.password` — `UsernamePassword`, `Status` and `PasswordResponse`
  for the username/password sub-negotiation.
- `socksrelay.errors` — the `SocksError` hierarchy raised on malformed input.

Every message class can be decoded from a byte string with `from_bytes()`,
from a binary file-like object with `read()`, or from an
`asyncio.StreamReader` with `await read_from(...)`, and serialised back with
`to_bytes()`.

The connection-level pieces the server is built from are also public:
`socksrelay.connection` (`IncomingConnection`, `AuthenticatedStream`),
`socksrelay.auth` (`NoAuth`, `PasswordAuth`), `socksrelay.connect`
(`SocksStream`, `Connect`), `socksrelay.bind` (`Bind`, `BindState`) and
`socksrelay.associate` (`UdpAssociate`, `AssociatedUdpSocket`,
`build_packet`, `parse_packet`).

## What it does not do

- It is a SOCKS5 server only; there is no HTTP or HTTPS proxy.
- With username/password authentication, a client username only has to
  start with the configured username. Whatever follows is kept as
  `AuthenticatedStream.extension`, but the server does not act on it:
  outbound connections always use the system's default source address and
  resolver.
- There is no daemon mode, no self-update and no choice of outbound address
  range.

## Tests

```
pip install ".[test]"
pytest
```