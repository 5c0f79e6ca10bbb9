"""
UDP transport for mDNS: the passive multicast socket and one-shot queries.
"""
import asyncio
import random
import socket
import struct

import structlog  # type: ignore[import-not-found]

from .wire import Answer, decode_message, encode_query

logger = structlog.get_logger(__name__)


def open_multicast_socket(group: str, port: int, interface_address: str | None = None) -> socket.socket:
    """Create a non-blocking socket bound to `port` and joined to `group`.

    The group is joined on `interface_address` when given, on any interface
    otherwise. Raises OSError if the socket cannot be bound or the group
    cannot be joined.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if hasattr(socket, "SO_REUSEPORT"):
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)
        sock.bind(("", port))
        local = socket.inet_aton(interface_address) if interface_address else struct.pack("=I", socket.INADDR_ANY)
        mreq = socket.inet_aton(group) + local
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        sock.setblocking(False)
    except OSError:
        sock.close()
        raise
    return sock


class _ExchangeProtocol(asyncio.DatagramProtocol):
    """Collects the responses carrying one query id."""

    def __init__(self, query_id: int):
        self.query_id = query_id
        self.answers: list[Answer] = []
        self.first_response: asyncio.Future = asyncio.get_running_loop().create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        answers = decode_message(data, query_id=self.query_id)
        if answers is None:
            return
        self.answers.extend(answers)
        if not self.first_response.done():
            self.first_response.set_result(None)

    def error_received(self, exc: Exception) -> None:
        logger.debug("Query socket error", error=str(exc))


class QueryClient:
    """
    Sends legacy unicast queries to the mDNS group.

    Queries go out from an ephemeral port, so responders answer directly to
    that port with the query id echoed back.
    """

    def __init__(self, group: str, port: int, interface_address: str | None = None, default_timeout: float = 1.0):
        self.group = group
        self.port = port
        self.interface_address = interface_address
        self.default_timeout = default_timeout
        self.logger = logger.bind(group=group, interface_address=interface_address)

    def _open_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 255)
            if self.interface_address:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_IF, socket.inet_aton(self.interface_address))
            sock.bind(("", 0))
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock

    async def exchange(self, name: str, record_type: int, *, timeout: float | None = None, collect: bool = False) -> list[Answer]:
        """
        Query `name` for `record_type` and return the decoded answers.

        Without `collect` the first matching response is returned; with it,
        answers from every response arriving within `timeout` are merged.
        A timeout or socket error yields an empty list.
        """
        timeout = timeout if timeout is not None else self.default_timeout
        query_id = random.randint(1, 0xFFFF)
        loop = asyncio.get_running_loop()
        log = self.logger.bind(name=name, record_type=int(record_type))
        transport = None
        try:
            sock = self._open_socket()
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _ExchangeProtocol(query_id), sock=sock
            )
            transport.sendto(encode_query(name, record_type, query_id), (self.group, self.port))
            if collect:
                await asyncio.sleep(timeout)
            else:
                await asyncio.wait_for(protocol.first_response, timeout=timeout)
            return list(protocol.answers)
        except TimeoutError:
            log.debug("Query timed out", timeout=timeout)
            return []
        except OSError as e:
            log.debug("Query failed", error=str(e))
            return []
        finally:
            if transport is not None:
                transport.close()
