import asyncio
from datetime import date

import pytest

from tracking_fakes import FakeLocationClient, sample, settle, ts

from location_client import BackendFetchFailed
from location_models import Agent
from location_store import LocationStore


D1 = date(2024, 5, 1)
D2 = date(2024, 5, 2)


async def test_load_replaces_samples_wholesale():
    client = FakeLocationClient(samples_by_day={D1: [sample("A", ts(10, 0), 1, 1)]})
    store = LocationStore(client, D1)
    assert store.loading is True
    await store.load(D1)
    assert [s.agent_id for s in store.samples] == ["A"]
    assert store.loading is False

    client.samples_by_day[D1] = [sample("B", ts(10, 1), 2, 2)]
    version = store.version
    await store.load(D1)
    assert [s.agent_id for s in store.samples] == ["B"]
    assert store.version == version + 1


async def test_failed_load_keeps_previous_samples():
    client = FakeLocationClient(samples_by_day={D1: [sample("A", ts(10, 0), 1, 1)]})
    store = LocationStore(client, D1)
    await store.load(D1)
    before = store.samples

    client.fail_locations = True
    with pytest.raises(BackendFetchFailed):
        await store.load(D1)
    assert store.samples is before
    assert store.last_error == "locations unavailable"

    client.fail_locations = False
    await store.load(D1)
    assert store.last_error is None


async def test_response_for_previous_day_is_discarded():
    client = FakeLocationClient(
        samples_by_day={
            D1: [sample("A", ts(10, 0, day=D1), 1, 1)],
            D2: [sample("B", ts(11, 0, day=D2), 2, 2)],
        }
    )
    client.gates[D1] = asyncio.Event()
    store = LocationStore(client, D1)

    pending = asyncio.create_task(store.load(D1))
    await settle()
    store.set_day(D2)
    await store.load(D2)
    client.gates[D1].set()

    assert await pending is None
    assert store.day == D2
    assert [s.agent_id for s in store.samples] == ["B"]


async def test_older_response_for_same_day_does_not_overwrite_newer():
    client = FakeLocationClient(samples_by_day={D1: [sample("A", ts(10, 0), 1, 1)]})
    gate = asyncio.Event()
    client.gates[D1] = gate
    store = LocationStore(client, D1)

    slow = asyncio.create_task(store.load(D1))
    await settle()
    del client.gates[D1]
    client.samples_by_day[D1] = [sample("A", ts(10, 5), 2, 2)]
    await store.load(D1)
    gate.set()

    assert await slow is None
    assert store.samples[0].timestamp == ts(10, 5)


async def test_invalidate_turns_in_flight_load_into_noop():
    client = FakeLocationClient(samples_by_day={D1: [sample("A", ts(10, 0), 1, 1)]})
    client.gates[D1] = asyncio.Event()
    store = LocationStore(client, D1)
    pending = asyncio.create_task(store.load(D1))
    await settle()
    store.invalidate()
    client.gates[D1].set()
    assert await pending is None
    assert store.samples == ()


async def test_roster_is_cached_and_filtered_to_active():
    client = FakeLocationClient(
        agents=[Agent("A", "Ana"), Agent("B", "Bruno", active=False), Agent("C", "Carla")]
    )
    store = LocationStore(client, D1)
    results = await asyncio.gather(store.roster(), store.roster())
    assert [a.id for a in results[0]] == ["A", "C"]
    assert results[0] == results[1]
    assert client.agent_calls == 1


async def test_failed_roster_fetch_is_not_cached():
    client = FakeLocationClient(agents=[Agent("A", "Ana")])
    client.fail_agents = True
    store = LocationStore(client, D1)
    with pytest.raises(BackendFetchFailed):
        await store.roster()
    client.fail_agents = False
    assert [a.id for a in await store.roster()] == ["A"]
