"""
Periodic active queries for the service catalog.
"""
import asyncio
from collections.abc import Sequence

import structlog  # type: ignore[import-not-found]

from ..models.discovery import ServiceRecord
from .resolver import Exchanger, RecordResolver, is_service_pointer
from .session import Session
from .wire import AnswerHints, PointerAnswer, RecordType, name_key

logger = structlog.get_logger(__name__)


class ActiveQueryScheduler:
    """
    Re-queries every service category on a fixed interval to provoke
    responses from quiet devices.

    The first round runs immediately. Categories within a round are queried
    concurrently; a round with no answers is the common case.
    """

    def __init__(
        self,
        session: Session,
        resolver: RecordResolver,
        client: Exchanger,
        categories: Sequence[str],
        *,
        interval: float = 5.0,
        pointer_timeout: float = 0.5,
    ):
        self.session = session
        self.resolver = resolver
        self.client = client
        self.categories = list(categories)
        self.interval = interval
        self.pointer_timeout = pointer_timeout
        self.logger = session.logger.bind(component="ActiveQueryScheduler")

    async def run(self) -> None:
        self.logger.info("Active query scheduler started", categories=len(self.categories), interval=self.interval)
        try:
            while self.session.active:
                await self.tick()
                if await self.session.wait_stopped(self.interval):
                    break
        finally:
            self.logger.info("Active query scheduler stopped")

    async def tick(self) -> list[ServiceRecord]:
        """Run one query round. Returns the records admitted."""
        results = await asyncio.gather(*(self.query_category(category) for category in self.categories))
        return [record for admitted in results for record in admitted]

    async def query_category(self, category: str) -> list[ServiceRecord]:
        if not self.session.active:
            return []
        answers = await self.client.exchange(category, RecordType.PTR, timeout=self.pointer_timeout, collect=True)
        if not answers:
            return []

        hints = AnswerHints.from_answers(answers)
        admitted = []
        for answer in answers:
            if not isinstance(answer, PointerAnswer) or not is_service_pointer(answer):
                continue
            if name_key(answer.name) != name_key(category):
                continue
            if not self.session.active:
                break
            record = await self.resolver.resolve_instance(answer.target, category, hints)
            if record is not None and self.session.offer(record):
                admitted.append(record)
        return admitted
