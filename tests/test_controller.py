"""
Tests for DiscoveryController lifecycle: start, restart, interface switch.
"""
import asyncio
import socket
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from network_view.config import DiscoveryConfig
from network_view.discovery.controller import ControllerState, DiscoveryController
from network_view.discovery.exceptions import SessionStartError, UnknownInterfaceError
from network_view.discovery.hub import BroadcastHub
from network_view.discovery.resolver import RecordResolver
from network_view.models.discovery import InterfaceDescriptor

INTERFACES = [InterfaceDescriptor(name="eth0", mtu=1500), InterfaceDescriptor(name="wlan0", mtu=1500)]
ADDRESSES = {"eth0": "10.0.0.2", "wlan0": "10.0.1.2"}


@pytest.fixture(autouse=True)
def no_unicast():
    with patch.object(RecordResolver, "_lookup_unicast", new=AsyncMock(return_value=None)) as mock_lookup:
        yield mock_lookup


def loopback_socket_factory(group, port, interface_address):
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    sock.setblocking(False)
    return sock


@pytest.fixture
def discovery_config():
    return DiscoveryConfig(
        interface="eth0",
        service_categories=["_ssh._tcp.local."],
        query_interval_seconds=0.05,
        read_timeout_seconds=0.05,
        shutdown_grace_seconds=0.5,
        enable_browser=False,
    )


@pytest.fixture
def make_controller(discovery_config, ssh_box_client):
    def factory(socket_factory=loopback_socket_factory, **overrides):
        for key, value in overrides.items():
            setattr(discovery_config, key, value)
        controller = DiscoveryController(
            discovery_config,
            BroadcastHub(),
            socket_factory=socket_factory,
            client_factory=lambda address: ssh_box_client,
            interface_lister=lambda: list(INTERFACES),
            address_lookup=ADDRESSES.get,
        )
        return controller

    return factory


@pytest.mark.asyncio
async def test_start_reports_services(make_controller):
    controller = make_controller()
    subscriber = controller.hub.attach()

    bound = await controller.start()
    try:
        event = await asyncio.wait_for(subscriber.get(), timeout=2)
        assert bound == "eth0"
        assert controller.state == ControllerState.RUNNING
        assert controller.current_interface == "eth0"
        assert controller.session_id is not None
        assert event.record.identity_key == "10.0.0.5:_ssh._tcp.local.:22"
        # Subsequent rounds do not repeat it
        await asyncio.sleep(0.2)
        assert subscriber.pending == 0
    finally:
        await controller.stop()

    assert controller.state == ControllerState.STOPPED
    assert controller.session_id is None


@pytest.mark.asyncio
async def test_restart_reports_services_again(make_controller):
    controller = make_controller()
    subscriber = controller.hub.attach()

    await controller.start()
    try:
        first = await asyncio.wait_for(subscriber.get(), timeout=2)
        old_session = controller.session_id

        await controller.restart()
        second = await asyncio.wait_for(subscriber.get(), timeout=2)
    finally:
        await controller.stop()

    assert controller.current_interface == "eth0"
    assert second.record.identity_key == first.record.identity_key
    assert second.record.discovered_at >= first.record.discovered_at
    assert old_session is not None


@pytest.mark.asyncio
async def test_restart_creates_a_new_session(make_controller):
    controller = make_controller(enable_scheduler=False)
    await controller.start()
    try:
        old_session = controller.session_id
        await controller.restart()
        assert controller.session_id != old_session
        assert controller.state == ControllerState.RUNNING
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_set_interface_switches_and_clears_cache(make_controller):
    controller = make_controller()
    subscriber = controller.hub.attach()
    await controller.start()
    try:
        await asyncio.wait_for(subscriber.get(), timeout=2)
        assert len(controller.cache) == 1

        bound = await controller.set_interface("wlan0")
        assert bound == "wlan0"
        assert controller.current_interface == "wlan0"

        # The same service is reported again on the new session
        event = await asyncio.wait_for(subscriber.get(), timeout=2)
        assert event.record.address == "10.0.0.5"
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_set_unknown_interface_keeps_binding(make_controller):
    controller = make_controller(enable_scheduler=False)
    await controller.start()
    try:
        session_id = controller.session_id
        with pytest.raises(UnknownInterfaceError) as exc_info:
            await controller.set_interface("nonexistent0")

        assert exc_info.value.interface == "nonexistent0"
        assert controller.current_interface == "eth0"
        assert controller.session_id == session_id
        assert controller.state == ControllerState.RUNNING
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_bind_failure_keeps_previous_session(make_controller):
    def flaky_factory(group, port, interface_address):
        if interface_address == ADDRESSES["wlan0"]:
            raise OSError(98, "Address already in use")
        return loopback_socket_factory(group, port, interface_address)

    controller = make_controller(socket_factory=flaky_factory, enable_scheduler=False)
    await controller.start()
    try:
        session_id = controller.session_id
        with pytest.raises(SessionStartError) as exc_info:
            await controller.set_interface("wlan0")

        assert exc_info.value.interface == "wlan0"
        assert controller.current_interface == "eth0"
        assert controller.session_id == session_id
        assert controller.state == ControllerState.RUNNING
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_start_failure_leaves_controller_stopped(make_controller):
    failing = MagicMock(side_effect=OSError(19, "No such device"))
    controller = make_controller(socket_factory=failing)

    with pytest.raises(SessionStartError):
        await controller.start()

    assert controller.state == ControllerState.STOPPED
    failing.assert_called_once_with("224.0.0.251", 5353, "10.0.0.2")


@pytest.mark.asyncio
async def test_client_failure_closes_socket_and_keeps_previous_session(discovery_config, ssh_box_client):
    opened = []

    def recording_factory(group, port, interface_address):
        sock = loopback_socket_factory(group, port, interface_address)
        opened.append(sock)
        return sock

    def client_factory(address):
        if address == ADDRESSES["wlan0"]:
            raise RuntimeError("resolver unavailable")
        return ssh_box_client

    discovery_config.enable_scheduler = False
    controller = DiscoveryController(
        discovery_config,
        BroadcastHub(),
        socket_factory=recording_factory,
        client_factory=client_factory,
        interface_lister=lambda: list(INTERFACES),
        address_lookup=ADDRESSES.get,
    )
    await controller.start()
    try:
        session_id = controller.session_id
        with pytest.raises(SessionStartError) as exc_info:
            await controller.set_interface("wlan0")

        assert exc_info.value.interface == "wlan0"
        assert "resolver unavailable" in exc_info.value.reason
        assert len(opened) == 2
        assert opened[1].fileno() == -1
        assert opened[0].fileno() != -1
        assert controller.current_interface == "eth0"
        assert controller.session_id == session_id
    finally:
        await controller.stop()
    assert opened[0].fileno() == -1


@pytest.mark.asyncio
async def test_launch_failure_closes_socket(make_controller):
    opened = []

    def recording_factory(group, port, interface_address):
        sock = loopback_socket_factory(group, port, interface_address)
        opened.append(sock)
        return sock

    controller = make_controller(socket_factory=recording_factory)
    with patch(
        "network_view.discovery.controller.ActiveQueryScheduler", side_effect=ValueError("bad interval")
    ):
        with pytest.raises(ValueError):
            await controller.start()

    assert controller.state == ControllerState.STOPPED
    assert opened[0].fileno() == -1


@pytest.mark.asyncio
async def test_start_without_any_interface(make_controller):
    controller = make_controller(interface=None)
    with patch("network_view.discovery.network.default_interface", return_value=None):
        with pytest.raises(SessionStartError):
            await controller.start()
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_start_falls_back_to_default_interface(make_controller):
    controller = make_controller(interface=None, enable_scheduler=False)
    with patch("network_view.discovery.network.default_interface", return_value="wlan0"):
        bound = await controller.start()
    try:
        assert bound == "wlan0"
        assert controller.current_interface == "wlan0"
    finally:
        await controller.stop()


@pytest.mark.asyncio
async def test_stop_is_idempotent(make_controller):
    controller = make_controller(enable_scheduler=False)
    await controller.stop()
    await controller.start()
    await controller.stop()
    await controller.stop()
    assert controller.state == ControllerState.STOPPED


@pytest.mark.asyncio
async def test_concurrent_restarts_are_serialised(make_controller):
    controller = make_controller(enable_scheduler=False)
    await controller.start()
    try:
        results = await asyncio.gather(controller.restart(), controller.restart(), controller.set_interface("wlan0"))
        assert results == ["eth0", "eth0", "wlan0"]
        assert controller.current_interface == "wlan0"
        assert controller.state == ControllerState.RUNNING
    finally:
        await controller.stop()


def test_list_interfaces_is_recomputed(discovery_config):
    calls = []

    def lister():
        calls.append(1)
        return list(INTERFACES)

    controller = DiscoveryController(discovery_config, interface_lister=lister)
    assert [i.name for i in controller.list_interfaces()] == ["eth0", "wlan0"]
    controller.list_interfaces()
    assert len(calls) == 2
