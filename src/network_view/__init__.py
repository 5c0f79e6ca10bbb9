"""Network View - live mDNS/DNS-SD service discovery streamed to subscribers.

Listens to multicast DNS traffic, actively queries a catalog of service types,
resolves PTR -> SRV -> A chains into complete service descriptions and fans them
out to any number of concurrent subscribers.
"""

__version__ = "0.4.0"

from .config import Config

__all__ = ["Config"]
