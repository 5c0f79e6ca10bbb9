import json
from datetime import datetime, timezone
from typing import Any

from pydantic import Field

from .common import BasePydanticModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ServiceRecord(BasePydanticModel):
    """A fully resolved service instance.

    Only `address`, `category` and `port` make up the identity of a record;
    `name` and `host` are descriptive.
    """
    name: str # First label of the instance name, e.g. "box" for "box._ssh._tcp.local."
    category: str # Service type, e.g. "_ssh._tcp.local."
    host: str # Advertised hostname of the owning device
    address: str # IPv4 or IPv6 literal
    port: int = Field(..., ge=0, le=65535)
    discovered_at: datetime = Field(default_factory=_utcnow)

    @property
    def identity_key(self) -> str:
        return f"{self.address}:{self.category}:{self.port}"

    def to_wire(self) -> dict[str, Any]:
        """Serialise in the shape consumed by event-stream clients."""
        return {
            "name": self.name,
            "type": self.category,
            "host": self.host,
            "ip": self.address,
            "port": self.port,
            "timestamp": int(self.discovered_at.timestamp()),
        }


class DiscoveryEvent(BasePydanticModel):
    record: ServiceRecord
    # Never set: services are only ever added, there is no retraction path.
    removed: bool = False

    def to_wire(self) -> dict[str, Any]:
        return {"service": self.record.to_wire(), "removed": self.removed}

    def to_sse(self) -> str:
        """Render as a single server-sent event frame."""
        return f"data: {json.dumps(self.to_wire())}\n\n"


class InterfaceDescriptor(BasePydanticModel):
    """Snapshot of one local network interface."""
    name: str
    mtu: int = 0
    flags: list[str] = Field(default_factory=list)
    is_up: bool = True

    def to_wire(self) -> dict[str, Any]:
        # mtu is rendered as a string, as existing clients expect.
        return {"name": self.name, "mtu": str(self.mtu)}
