"""
DNS wire codec for mDNS traffic.

Packets are parsed and built with zeroconf's DNSIncoming/DNSOutgoing; every
resource record is then mapped onto a closed set of answer variants so that
the resolver can match on record kind exhaustively.
"""
import ipaddress
import re
from dataclasses import dataclass, field
from enum import IntEnum

import structlog  # type: ignore[import-not-found]
from zeroconf import (  # type: ignore[import-not-found]
    DNSAddress,
    DNSIncoming,
    DNSOutgoing,
    DNSPointer,
    DNSQuestion,
    DNSService,
)

logger = structlog.get_logger(__name__)

CLASS_IN = 1
FLAGS_QUERY = 0x0000
FLAGS_RESPONSE = 0x8000
FLAGS_AUTHORITATIVE = 0x0400

# "<label>._<service>._tcp|_udp.<domain>", label matched lazily so dots in it survive
_SERVICE_SUFFIX = re.compile(r"^(?P<label>.+?)\.(?P<category>_[^.]+\._(?:tcp|udp)(?:\..*)?)$", re.DOTALL | re.IGNORECASE)


class RecordType(IntEnum):
    A = 1
    PTR = 12
    TXT = 16
    AAAA = 28
    SRV = 33


@dataclass(frozen=True)
class PointerAnswer:
    """Service type -> instance name."""
    name: str
    target: str


@dataclass(frozen=True)
class LocationAnswer:
    """Instance name -> host and port."""
    name: str
    host: str
    port: int


@dataclass(frozen=True)
class AddressAnswer:
    """Hostname -> IPv4/IPv6 literal."""
    name: str
    address: str
    version: int = 4


@dataclass(frozen=True)
class OtherAnswer:
    name: str
    record_type: int


Answer = PointerAnswer | LocationAnswer | AddressAnswer | OtherAnswer


def name_key(name: str) -> str:
    """Case-insensitive comparison key for a DNS name, ignoring the root dot."""
    return name.lower().rstrip(".")


def _split_instance(instance_name: str) -> tuple[str, str] | None:
    match = _SERVICE_SUFFIX.match(instance_name)
    if match is None:
        return None
    return match.group("label"), match.group("category")


def instance_label(instance_name: str) -> str:
    """
    Human readable label of an instance name.

    The label may itself contain dots, so the split happens at the service
    type suffix: "Printer v2.1._ipp._tcp.local." -> "Printer v2.1".
    """
    parts = _split_instance(instance_name)
    if parts is None:
        return instance_name.split(".", 1)[0]
    return parts[0]


def category_of(instance_name: str) -> str:
    """Service type an instance name belongs to ("box._ssh._tcp.local." -> "_ssh._tcp.local.")."""
    parts = _split_instance(instance_name)
    return parts[1] if parts is not None else ""


def _to_answer(record) -> Answer:
    if isinstance(record, DNSPointer):
        return PointerAnswer(name=record.name, target=record.alias)
    if isinstance(record, DNSService):
        return LocationAnswer(name=record.name, host=record.server, port=record.port)
    if isinstance(record, DNSAddress):
        parsed = ipaddress.ip_address(record.address)
        return AddressAnswer(name=record.name, address=str(parsed), version=parsed.version)
    return OtherAnswer(name=record.name, record_type=record.type)


def decode_message(data: bytes, query_id: int | None = None) -> list[Answer] | None:
    """Parse a datagram into answer variants.

    Returns None when the datagram is not a valid DNS message, or when
    `query_id` is given and the message does not carry it. Records from the
    answer, authority and additional sections are all returned.
    """
    try:
        incoming = DNSIncoming(data)
        if not incoming.valid:
            return None
        if query_id is not None and incoming.id != query_id:
            return None
        return [_to_answer(record) for record in incoming.answers()]
    except Exception as e:
        # Foreign traffic on the shared group is expected.
        logger.debug("Discarding undecodable datagram", size=len(data), error=str(e))
        return None


def encode_query(name: str, record_type: int, query_id: int = 0) -> bytes:
    """Build a single-question query packet."""
    out = DNSOutgoing(FLAGS_QUERY, multicast=False, id_=query_id)
    out.add_question(DNSQuestion(name, record_type, CLASS_IN))
    return out.packets()[0]


@dataclass
class AnswerHints:
    """Location and address answers indexed by name.

    Lets a resolution chain use records that arrived in the same message
    before issuing another exchange.
    """
    locations: dict[str, LocationAnswer] = field(default_factory=dict)
    addresses: dict[str, list[AddressAnswer]] = field(default_factory=dict)

    @classmethod
    def from_answers(cls, answers: list[Answer]) -> "AnswerHints":
        hints = cls()
        hints.add(answers)
        return hints

    def add(self, answers: list[Answer]) -> None:
        for answer in answers:
            match answer:
                case LocationAnswer():
                    self.locations.setdefault(name_key(answer.name), answer)
                case AddressAnswer():
                    self.addresses.setdefault(name_key(answer.name), []).append(answer)
                case PointerAnswer() | OtherAnswer():
                    pass

    def location_for(self, instance_name: str) -> LocationAnswer | None:
        return self.locations.get(name_key(instance_name))

    def address_for(self, hostname: str) -> str | None:
        """Preferred address of a host: the first IPv4, else the first IPv6."""
        candidates = self.addresses.get(name_key(hostname), [])
        for answer in candidates:
            if answer.version == 4:
                return answer.address
        return candidates[0].address if candidates else None
