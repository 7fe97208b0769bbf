from __future__ import annotations

import pytest

from guestsync.application.connectivity import ConnectivityMonitor
from guestsync.domain.models import EntityKind, is_temp_id
from tests.sync_fakes import FakeGuestServer, FakeProbe


@pytest.fixture
def fake_server() -> FakeGuestServer:
    return FakeGuestServer(first_guest_number=42)


async def _queue_guest_then_edit(harness) -> str:
    harness.go_offline()
    created = await harness.service.add_guest({"name": "Asha", "phone": "555-1"})
    temp_id = created.entity.id
    assert is_temp_id(temp_id)
    assert await harness.queue.count() == 1

    await harness.service.update_guest(temp_id, {"name": "Asha K"})
    assert await harness.queue.count() == 2
    [cached] = await harness.cache.get_all(EntityKind.GUESTS)
    assert (cached.id, cached.name, cached.pending_sync) == (temp_id, "Asha K", True)
    return temp_id


async def test_edit_of_unsynced_guest_stays_queued_after_create_confirms(make_harness) -> None:
    harness = make_harness()
    temp_id = await _queue_guest_then_edit(harness)
    harness.go_online()

    report = await harness.coordinator.drain()

    assert report.succeeded == 1
    [failure] = report.failures
    assert failure.category == "rejected"
    assert failure.status_code == 404
    assert ("PUT", f"/guests/{temp_id}") in [(method, path) for method, path, _ in harness.server.data_requests()]
    assert await harness.queue.count() == 1
    [cached] = await harness.cache.get_all(EntityKind.GUESTS)
    assert (cached.id, cached.name, cached.phone, cached.pending_sync) == ("g_42", "Asha", "555-1", False)
    assert (await harness.aliases.all_aliases())[temp_id] == "g_42"
    assert harness.notifier.notifications == [1]


async def test_edit_of_unsynced_guest_follows_alias_when_resolution_enabled(make_harness) -> None:
    harness = make_harness(resolve_temporary_ids=True)
    await _queue_guest_then_edit(harness)
    harness.go_online()

    report = await harness.coordinator.drain()

    assert report.succeeded == 2
    assert report.failures == ()
    assert await harness.queue.count() == 0
    assert harness.server.guests["g_42"]["name"] == "Asha K"
    [cached] = await harness.cache.get_all(EntityKind.GUESTS)
    assert (cached.id, cached.name) == ("g_42", "Asha K")


async def test_reconnect_reported_by_monitor_drains_queue(make_harness) -> None:
    harness = make_harness(online=False)
    harness.server.online = False
    probe = FakeProbe(reachable=False)
    monitor = ConnectivityMonitor(probe, probe_interval_seconds=3600)
    harness.coordinator.attach(monitor)
    await monitor.check_now()
    await harness.service.create_group({"name": "Family"})

    harness.go_online()
    probe.reachable = True
    await monitor.check_now()
    report = await harness.coordinator.wait_idle()

    assert report is not None and report.succeeded == 1
    assert [group["name"] for group in harness.server.groups.values()] == ["Family"]
    assert await harness.queue.count() == 0
    harness.coordinator.detach()
