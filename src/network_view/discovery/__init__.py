"""
mDNS/DNS-SD discovery engine.

The controller lives in `network_view.discovery.controller`; it is not
re-exported here because it depends on the configuration module, which in
turn imports the service catalog from this package.
"""

from .cache import DeduplicationCache
from .exceptions import DiscoveryError, SessionStartError, UnknownInterfaceError
from .hub import BroadcastHub, Subscriber
from .resolver import RecordResolver

__all__ = [
    "BroadcastHub",
    "DeduplicationCache",
    "DiscoveryError",
    "RecordResolver",
    "SessionStartError",
    "Subscriber",
    "UnknownInterfaceError",
]
