"""
Resolution of PTR -> SRV -> A record chains into ServiceRecords.
"""
import asyncio
import ipaddress
import socket
from typing import Protocol

import structlog  # type: ignore[import-not-found]

from ..models.discovery import ServiceRecord
from .wire import (
    AddressAnswer,
    Answer,
    AnswerHints,
    LocationAnswer,
    OtherAnswer,
    PointerAnswer,
    RecordType,
    category_of,
    instance_label,
    name_key,
)

logger = structlog.get_logger(__name__)

SERVICE_ENUMERATION = "_services._dns-sd._udp.local."


def is_service_pointer(answer: PointerAnswer) -> bool:
    """True for category -> instance pointers (not reverse lookups or type enumeration)."""
    return answer.name.startswith("_") and name_key(answer.name) != name_key(SERVICE_ENUMERATION)


class Exchanger(Protocol):
    async def exchange(self, name: str, record_type: int, *, timeout: float | None = None, collect: bool = False) -> list[Answer]:
        ...


class RecordResolver:
    """
    Turns pointer and location answers into complete ServiceRecords.

    None of the public coroutines raise: a timed-out exchange, a missing
    record or an unresolvable host all come back as None.
    """

    def __init__(
        self,
        client: Exchanger,
        *,
        resolve_timeout: float = 1.0,
        unicast_lookup_timeout: float = 2.0,
    ):
        self.client = client
        self.resolve_timeout = resolve_timeout
        self.unicast_lookup_timeout = unicast_lookup_timeout

    async def resolve_answer(self, answer: Answer, hints: AnswerHints | None = None) -> ServiceRecord | None:
        """Follow the chain starting at an unsolicited answer."""
        hints = hints if hints is not None else AnswerHints()
        match answer:
            case PointerAnswer(name=category, target=instance_name):
                if not is_service_pointer(answer):
                    return None
                return await self.resolve_instance(instance_name, category, hints)
            case LocationAnswer():
                category = category_of(answer.name)
                if not category:
                    return None
                return await self._complete(answer, category, hints)
            case AddressAnswer() | OtherAnswer():
                # Address answers only feed the hints of their message.
                return None

    async def resolve_instance(self, instance_name: str, category: str, hints: AnswerHints | None = None) -> ServiceRecord | None:
        """Query the location of `instance_name` and resolve its host address."""
        hints = hints if hints is not None else AnswerHints()
        location = hints.location_for(instance_name)
        if location is None:
            answers = await self.client.exchange(instance_name, RecordType.SRV, timeout=self.resolve_timeout)
            hints.add(answers)
            location = hints.location_for(instance_name)
        if location is None:
            logger.debug("No location record for instance", instance=instance_name, category=category)
            return None
        return await self._complete(location, category, hints)

    async def resolve_address(self, hostname: str, hints: AnswerHints | None = None) -> str | None:
        """
        Resolve a hostname: records already at hand first, then an mDNS A
        query, then the system resolver.
        """
        if hints is not None:
            hinted = hints.address_for(hostname)
            if hinted:
                return hinted

        answers = await self.client.exchange(hostname, RecordType.A, timeout=self.resolve_timeout)
        address = AnswerHints.from_answers(
            [a for a in answers if isinstance(a, AddressAnswer) and name_key(a.name) == name_key(hostname)]
        ).address_for(hostname)
        if address:
            return address

        # Many responders only answer generic address lookups outside multicast.
        return await self._lookup_unicast(hostname)

    async def _complete(self, location: LocationAnswer, category: str, hints: AnswerHints) -> ServiceRecord | None:
        address = await self.resolve_address(location.host, hints)
        if not address:
            logger.debug("Host address unresolved, dropping candidate", host=location.host, instance=location.name)
            return None
        return ServiceRecord(
            name=instance_label(location.name),
            category=category,
            host=location.host,
            address=address,
            port=location.port,
        )

    async def _lookup_unicast(self, hostname: str) -> str | None:
        loop = asyncio.get_running_loop()
        host = hostname.rstrip(".")
        if not host:
            return None
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, None, type=socket.SOCK_STREAM),
                timeout=self.unicast_lookup_timeout,
            )
        except (TimeoutError, OSError, UnicodeError) as e:
            logger.debug("Unicast lookup failed", host=host, error=str(e))
            return None

        addresses = []
        for family, _, _, _, sockaddr in infos:
            if family in (socket.AF_INET, socket.AF_INET6):
                addresses.append(ipaddress.ip_address(sockaddr[0].split("%")[0]))
        addresses.sort(key=lambda a: a.version)
        return str(addresses[0]) if addresses else None
