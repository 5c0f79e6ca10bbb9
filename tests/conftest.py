import pytest

from network_view.discovery.cache import DeduplicationCache
from network_view.discovery.hub import BroadcastHub
from network_view.discovery.session import Session
from network_view.discovery.wire import AddressAnswer, LocationAnswer, PointerAnswer, RecordType

from mdns_fixtures import FakeQueryClient


@pytest.fixture
def ssh_box_client():
    """Client that knows the PTR, SRV and A records of box._ssh._tcp.local."""
    client = FakeQueryClient()
    client.add("_ssh._tcp.local.", RecordType.PTR, PointerAnswer("_ssh._tcp.local.", "box._ssh._tcp.local."))
    client.add("box._ssh._tcp.local.", RecordType.SRV, LocationAnswer("box._ssh._tcp.local.", "box.local.", 22))
    client.add("box.local.", RecordType.A, AddressAnswer("box.local.", "10.0.0.5"))
    return client


@pytest.fixture
def hub():
    return BroadcastHub(queue_capacity=100)


@pytest.fixture
def cache():
    return DeduplicationCache()


@pytest.fixture
def session(cache, hub):
    return Session("eth0", "10.0.0.2", cache, hub)
