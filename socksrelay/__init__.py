"""An asyncio SOCKS5 proxy server and the SOCKS5 wire format."""

__version__ = "2.5.5"