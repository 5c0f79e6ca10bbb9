"""
Tests for ActiveQueryScheduler.
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from network_view.discovery.resolver import RecordResolver
from network_view.discovery.scheduler import ActiveQueryScheduler
from network_view.discovery.wire import AddressAnswer, LocationAnswer, PointerAnswer, RecordType

from mdns_fixtures import FakeQueryClient


@pytest.fixture(autouse=True)
def no_unicast():
    with patch.object(RecordResolver, "_lookup_unicast", new=AsyncMock(return_value=None)) as mock_lookup:
        yield mock_lookup


def _scheduler(session, client, categories, **kwargs):
    kwargs.setdefault("interval", 0.05)
    return ActiveQueryScheduler(session, RecordResolver(client), client, categories, **kwargs)


@pytest.mark.asyncio
async def test_tick_queries_every_category(session, ssh_box_client):
    categories = ["_ssh._tcp.local.", "_http._tcp.local.", "_smb._tcp.local."]
    scheduler = _scheduler(session, ssh_box_client, categories)

    admitted = await scheduler.tick()

    assert [record.address for record in admitted] == ["10.0.0.5"]
    ptr_queries = [name for name, record_type in ssh_box_client.calls if record_type == RecordType.PTR]
    assert sorted(ptr_queries) == sorted(categories)


@pytest.mark.asyncio
async def test_round_without_answers_is_quiet(session, hub):
    subscriber = hub.attach()
    client = FakeQueryClient()
    scheduler = _scheduler(session, client, ["_ssh._tcp.local."])

    assert await scheduler.tick() == []
    assert subscriber.pending == 0
    assert client.calls == [("_ssh._tcp.local.", RecordType.PTR)]


@pytest.mark.asyncio
async def test_repeated_rounds_report_once(session, hub, ssh_box_client):
    subscriber = hub.attach()
    scheduler = _scheduler(session, ssh_box_client, ["_ssh._tcp.local."])

    await scheduler.tick()
    await scheduler.tick()

    assert subscriber.pending == 1


@pytest.mark.asyncio
async def test_pointers_for_other_categories_are_skipped(session):
    client = FakeQueryClient()
    client.add(
        "_ssh._tcp.local.",
        RecordType.PTR,
        PointerAnswer("_http._tcp.local.", "web._http._tcp.local."),
        PointerAnswer("_ssh._tcp.local.", "box._ssh._tcp.local."),
    )
    client.add("box._ssh._tcp.local.", RecordType.SRV, LocationAnswer("box._ssh._tcp.local.", "box.local.", 22))
    client.add("box.local.", RecordType.A, AddressAnswer("box.local.", "10.0.0.5"))
    scheduler = _scheduler(session, client, ["_ssh._tcp.local."])

    admitted = await scheduler.query_category("_ssh._tcp.local.")

    assert [record.name for record in admitted] == ["box"]
    assert ("web._http._tcp.local.", RecordType.SRV) not in client.calls


@pytest.mark.asyncio
async def test_answers_in_ptr_response_are_used_as_hints(session):
    client = FakeQueryClient()
    client.add(
        "_ssh._tcp.local.",
        RecordType.PTR,
        PointerAnswer("_ssh._tcp.local.", "box._ssh._tcp.local."),
        LocationAnswer("box._ssh._tcp.local.", "box.local.", 22),
        AddressAnswer("box.local.", "10.0.0.5"),
    )
    scheduler = _scheduler(session, client, ["_ssh._tcp.local."])

    admitted = await scheduler.query_category("_ssh._tcp.local.")

    assert len(admitted) == 1
    assert client.calls == [("_ssh._tcp.local.", RecordType.PTR)]


@pytest.mark.asyncio
async def test_run_queries_immediately_and_stops_promptly(session, hub, ssh_box_client):
    subscriber = hub.attach()
    scheduler = _scheduler(session, ssh_box_client, ["_ssh._tcp.local."], interval=60)
    task = session.spawn(scheduler.run(), name="scheduler")

    event = await asyncio.wait_for(subscriber.get(), timeout=2)
    assert event.record.port == 22

    await session.stop(grace_seconds=1)
    assert task.done()
    assert not task.cancelled()


@pytest.mark.asyncio
async def test_run_repeats_on_interval(session, ssh_box_client):
    scheduler = _scheduler(session, ssh_box_client, ["_ssh._tcp.local."], interval=0.02)
    session.spawn(scheduler.run(), name="scheduler")

    await asyncio.sleep(0.2)
    await session.stop(grace_seconds=1)

    ptr_queries = [call for call in ssh_box_client.calls if call[1] == RecordType.PTR]
    assert len(ptr_queries) >= 2
