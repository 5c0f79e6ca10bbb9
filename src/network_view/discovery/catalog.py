"""Service types queried and browsed by default."""

DEFAULT_SERVICE_CATEGORIES = (
    "_http._tcp.local.",
    "_https._tcp.local.",
    "_ssh._tcp.local.",
    "_sftp-ssh._tcp.local.",
    "_ftp._tcp.local.",
    "_smb._tcp.local.",
    "_afpovertcp._tcp.local.",
    "_nfs._tcp.local.",
    "_ldap._tcp.local.",
    "_sip._tcp.local.",
    "_xmpp-client._tcp.local.",
    "_workstation._tcp.local.",
    "_device-info._tcp.local.",
    "_airplay._tcp.local.",
    "_raop._tcp.local.",
    "_googlecast._tcp.local.",
    "_rtsp._tcp.local.",
)


def normalize_category(category: str) -> str:
    """Return the fully qualified form of a service type.

    >>> normalize_category("_ssh._tcp")
    '_ssh._tcp.local.'
    """
    category = category.strip()
    if not category.endswith("."):
        category += "."
    if not category.endswith(".local."):
        category += "local."
    return category
