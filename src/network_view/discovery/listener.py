"""
Passive receiver for unsolicited mDNS traffic.
"""
import asyncio
import socket

import structlog  # type: ignore[import-not-found]

from ..models.discovery import ServiceRecord
from .resolver import RecordResolver
from .session import Session
from .wire import AnswerHints, LocationAnswer, PointerAnswer, decode_message

logger = structlog.get_logger(__name__)


class MulticastListener:
    """
    Receives datagrams on the discovery group and resolves every pointer and
    location answer they carry.

    Each datagram is resolved in its own task so a slow chain does not hold
    up the receive loop; the loop checks the session's cancellation token
    after every receive or read deadline.
    """

    def __init__(
        self,
        session: Session,
        resolver: RecordResolver,
        sock: socket.socket,
        *,
        read_timeout: float = 1.0,
        buffer_size: int = 9000,
        max_concurrency: int = 16,
    ):
        self.session = session
        self.resolver = resolver
        self.sock = sock
        self.read_timeout = read_timeout
        self.buffer_size = buffer_size
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.logger = session.logger.bind(component="MulticastListener")

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self.logger.info("Listening to mDNS multicast traffic")
        try:
            while self.session.active:
                try:
                    data, source = await asyncio.wait_for(
                        loop.sock_recvfrom(self.sock, self.buffer_size), timeout=self.read_timeout
                    )
                except TimeoutError:
                    continue
                except OSError as e:
                    self.logger.debug("Error reading from mDNS socket", error=str(e))
                    if not await self.session.wait_stopped(self.read_timeout):
                        continue
                    break
                if not self.session.active:
                    break
                self.session.spawn(self._process(data, source), name="datagram")
        finally:
            self.sock.close()
            self.logger.info("Multicast listener stopped")

    async def _process(self, data: bytes, source) -> None:
        async with self._semaphore:
            await self.handle_datagram(data, source)

    async def handle_datagram(self, data: bytes, source=None) -> list[ServiceRecord]:
        """Resolve the answers of one datagram. Returns the records admitted."""
        answers = decode_message(data)
        if answers is None:
            return []

        hints = AnswerHints.from_answers(answers)
        admitted = []
        for answer in answers:
            if not self.session.active:
                break
            if not isinstance(answer, (PointerAnswer, LocationAnswer)):
                continue
            record = await self.resolver.resolve_answer(answer, hints)
            if record is not None and self.session.offer(record):
                admitted.append(record)
        if admitted:
            self.logger.debug("Datagram produced services", source=source, count=len(admitted))
        return admitted
