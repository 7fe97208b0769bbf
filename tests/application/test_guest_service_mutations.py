from __future__ import annotations

import pytest

from guestsync.core.errors import ValidationError
from guestsync.domain.actions import ActionKind
from guestsync.domain.models import CachedGroup, CachedGuest, EntityKind, is_temp_id
from guestsync.domain.sync_errors import ServerRejectedError, StorageUnavailableError


async def test_online_add_goes_straight_to_server(make_harness) -> None:
    harness = make_harness()

    result = await harness.service.add_guest({"name": "Asha", "phone": "555-1", "pending_sync": True})

    assert result.queued is False
    assert result.entity.id == "g_1"
    assert result.entity.pending_sync is False
    assert harness.server.data_requests() == [("POST", "/guests", {"name": "Asha", "phone": "555-1"})]
    assert await harness.queue.count() == 0
    assert await harness.cache.get(EntityKind.GUESTS, "g_1") == result.entity


async def test_offline_add_writes_optimistic_record_and_queues(make_harness) -> None:
    harness = make_harness(online=False)

    result = await harness.service.add_guest({"name": "Asha", "phone": "555-1"})

    assert result.queued is True
    assert is_temp_id(result.entity.id)
    assert result.entity.pending_sync is True
    [action] = await harness.queue.list_pending()
    assert action.seq == result.seq
    assert action.kind is ActionKind.ADD_GUEST
    assert action.payload == {"name": "Asha", "phone": "555-1", "tempId": result.entity.id}
    assert await harness.cache.get_all(EntityKind.GUESTS) == [result.entity]
    assert harness.server.requests == []
    assert harness.metrics.counter("actions_queued") == 1


async def test_network_failure_during_online_call_falls_back_to_queue(make_harness) -> None:
    harness = make_harness()
    harness.server.online = False

    result = await harness.service.create_group({"name": "Family"})

    assert result.queued is True
    assert isinstance(result.entity, CachedGroup)
    assert (await harness.queue.list_pending())[0].kind is ActionKind.CREATE_GROUP
    assert harness.connectivity.unreachable_reports == 1
    assert harness.connectivity.is_online is False


async def test_rejection_propagates_with_haptic_error(make_harness) -> None:
    harness = make_harness()

    with pytest.raises(ServerRejectedError):
        await harness.service.update_guest("g_missing", {"invited": True})

    assert harness.haptics.events == ["error"]
    assert await harness.queue.count() == 0


async def test_names_are_required(make_harness) -> None:
    harness = make_harness()

    with pytest.raises(ValidationError) as excinfo:
        await harness.service.add_guest({"name": "  "})
    assert excinfo.value.field == "name"
    with pytest.raises(ValidationError):
        await harness.service.create_group({})
    with pytest.raises(ValidationError) as excinfo:
        await harness.service.bulk_update_guests([], {"invited": True})
    assert excinfo.value.field == "ids"


async def test_offline_update_patches_cached_guest(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_guest("g_1", name="Asha")
    await harness.service.fetch_guests()
    harness.go_offline()

    result = await harness.service.update_guest("g_1", {"invited": True, "group_id": "grp_1"})

    assert result.queued is True
    assert result.entity == CachedGuest(id="g_1", name="Asha", invited=True, group_id="grp_1", pending_sync=True)
    [action] = await harness.queue.list_pending()
    assert action.payload == {"id": "g_1", "data": {"invited": True, "groupId": "grp_1"}}


async def test_offline_delete_leaves_tombstone_hidden_from_fetch(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_guest("g_1", name="Asha")
    harness.server.seed_guest("g_2", name="Ravi")
    await harness.service.fetch_guests()
    harness.go_offline()

    result = await harness.service.delete_guest("g_2")

    assert result.entity.deleted is True
    assert [guest.id for guest in await harness.service.fetch_guests()] == ["g_1"]
    assert (await harness.cache.get(EntityKind.GUESTS, "g_2")).deleted is True


async def test_online_delete_group_removes_cache_entry(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_group("grp_1", "Family")
    await harness.service.fetch_groups()

    result = await harness.service.delete_group("grp_1")

    assert result.queued is False
    assert await harness.cache.get_all(EntityKind.GROUPS) == []


async def test_offline_group_delete_stays_hidden_after_online_fetch(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_group("grp_1", "Family")
    harness.server.seed_group("grp_2", "Work")
    await harness.service.fetch_groups()
    harness.go_offline()

    result = await harness.service.delete_group("grp_1")
    harness.go_online()
    groups = await harness.service.fetch_groups()

    assert result.queued is True
    assert result.entity == CachedGroup(id="grp_1", name="Family", deleted=True, pending_sync=True)
    assert [group.id for group in groups] == ["grp_2"]
    assert (await harness.cache.get(EntityKind.GROUPS, "grp_1")).deleted is True

    await harness.coordinator.drain()

    assert [group.id for group in await harness.service.fetch_groups()] == ["grp_2"]
    assert [group.id for group in await harness.cache.get_all(EntityKind.GROUPS)] == ["grp_2"]
    assert "grp_1" not in harness.server.groups


async def test_online_bulk_update_uses_server_response(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_guest("g_1", name="Asha")
    harness.server.seed_guest("g_2", name="Ravi")

    result = await harness.service.bulk_update_guests(["g_1", "g_2"], {"invited": True})

    assert result.queued is False
    assert all(guest.invited for guest in await harness.cache.get_all(EntityKind.GUESTS))


async def test_fetch_falls_back_to_cache_when_unreachable(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_group("grp_1", "Family")
    assert [group.name for group in await harness.service.fetch_groups()] == ["Family"]
    harness.server.online = False

    groups = await harness.service.fetch_groups()

    assert groups == [CachedGroup(id="grp_1", name="Family")]


async def test_fetch_keeps_pending_local_changes(make_harness) -> None:
    harness = make_harness()
    harness.server.seed_guest("g_1", name="Asha")
    await harness.service.fetch_guests()
    harness.go_offline()
    await harness.service.update_guest("g_1", {"invited": True})
    queued = await harness.service.add_guest({"name": "Ravi"})
    harness.go_online()

    guests = await harness.service.fetch_guests()

    assert [(guest.id, guest.invited, guest.pending_sync) for guest in guests] == [
        ("g_1", True, True),
        (queued.entity.id, False, True),
    ]


async def test_cache_failure_does_not_block_online_mutation(make_harness, executor) -> None:
    harness = make_harness()
    await executor.close()

    result = await harness.service.create_group({"name": "Family"})

    assert result.queued is False
    assert result.entity.id == "grp_1"


async def test_enqueue_failure_propagates(make_harness, executor) -> None:
    harness = make_harness(online=False)
    await executor.close()

    with pytest.raises(StorageUnavailableError):
        await harness.service.add_guest({"name": "Asha"})
