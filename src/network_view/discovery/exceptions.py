"""
Exceptions raised across the discovery engine boundary.
"""


class DiscoveryError(Exception):
    """Base class for all discovery engine errors."""
    pass


class UnknownInterfaceError(DiscoveryError):
    """Raised when a network interface is not among the currently enumerated ones."""
    def __init__(self, interface: str):
        super().__init__(f"interface {interface} not found")
        self.interface = interface


class SessionStartError(DiscoveryError):
    """Raised when a discovery session cannot join the multicast group.

    The previous session, if any, keeps running.
    """
    def __init__(self, interface: str, reason: str):
        super().__init__(f"could not start discovery on {interface}: {reason}")
        self.interface = interface
        self.reason = reason


class SubscriberClosed(DiscoveryError):
    """Raised when reading from a subscriber that has been detached."""
    def __init__(self, subscriber_id: int):
        super().__init__(f"subscriber {subscriber_id} is detached")
        self.subscriber_id = subscriber_id
