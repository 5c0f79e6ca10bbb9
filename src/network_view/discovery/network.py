"""Network interface enumeration for Network View."""

from typing import List, Optional

import netifaces
import psutil
import structlog

from ..models.discovery import InterfaceDescriptor

logger = structlog.get_logger(__name__)


def _is_loopback(name: str) -> bool:
    return name.lower().startswith(("lo", "loopback"))


def list_interfaces(up_only: bool = True) -> List[InterfaceDescriptor]:
    """Snapshot of local interfaces, by default only those administratively up.

    Returns:
        List[InterfaceDescriptor]: Interfaces sorted by name.
    """
    try:
        stats = psutil.net_if_stats()
    except OSError as e:
        logger.error("Failed to enumerate network interfaces", error=str(e))
        return []

    descriptors = []
    for name, stat in sorted(stats.items()):
        if up_only and not stat.isup:
            continue
        descriptors.append(
            InterfaceDescriptor(
                name=name,
                mtu=stat.mtu,
                flags=[flag for flag in stat.flags.split(",") if flag],
                is_up=stat.isup,
            )
        )
    return descriptors


def interface_exists(name: str) -> bool:
    return any(descriptor.name == name for descriptor in list_interfaces())


def get_interface_ipv4(interface: str) -> Optional[str]:
    """Get the first IPv4 address of an interface.

    Args:
        interface: Network interface name.

    Returns:
        Optional[str]: The address, or None if the interface has none.
    """
    try:
        addr_info = netifaces.ifaddresses(interface)
    except (ValueError, KeyError, OSError) as e:
        logger.debug("Failed to get addresses for interface", interface=interface, error=str(e))
        return None
    for addr in addr_info.get(netifaces.AF_INET, []):
        if addr.get("addr"):
            return addr["addr"]
    return None


def default_interface() -> Optional[str]:
    """First up, non-loopback interface that has an IPv4 address."""
    for descriptor in list_interfaces():
        if _is_loopback(descriptor.name):
            continue
        if get_interface_ipv4(descriptor.name):
            return descriptor.name
    return None
