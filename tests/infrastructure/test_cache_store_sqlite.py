from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from guestsync.domain.models import CachedGroup, CachedGuest, EntityKind
from guestsync.domain.sync_errors import StorageUnavailableError
from guestsync.infrastructure.cache_store_sqlite import LocalCacheStoreSQLite
from guestsync.infrastructure.db import get_connection
from guestsync.infrastructure.migrations import run_migrations
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor


async def test_get_all_is_empty_before_any_write(cache_store: LocalCacheStoreSQLite) -> None:
    assert await cache_store.get_all(EntityKind.GUESTS) == []
    assert await cache_store.get_all(EntityKind.GROUPS) == []


async def test_replace_all_clears_previous_content(cache_store: LocalCacheStoreSQLite) -> None:
    await cache_store.replace_all(EntityKind.GUESTS, [CachedGuest(id="g_1", name="Old")])

    await cache_store.replace_all(
        EntityKind.GUESTS,
        [CachedGuest(id="g_2", name="Asha"), CachedGuest(id="g_3", name="Ravi")],
    )

    assert [guest.id for guest in await cache_store.get_all(EntityKind.GUESTS)] == ["g_2", "g_3"]


async def test_upsert_overwrites_in_place_and_keeps_order(cache_store: LocalCacheStoreSQLite) -> None:
    await cache_store.upsert(EntityKind.GUESTS, CachedGuest(id="g_1", name="Asha"))
    await cache_store.upsert(EntityKind.GUESTS, CachedGuest(id="g_2", name="Ravi"))

    await cache_store.upsert(EntityKind.GUESTS, CachedGuest(id="g_1", name="Asha K", invited=True))

    guests = await cache_store.get_all(EntityKind.GUESTS)
    assert [guest.id for guest in guests] == ["g_1", "g_2"]
    assert guests[0] == CachedGuest(id="g_1", name="Asha K", invited=True)


async def test_remove_is_noop_for_unknown_id(cache_store: LocalCacheStoreSQLite) -> None:
    await cache_store.upsert(EntityKind.GROUPS, CachedGroup(id="grp_1", name="Family"))

    await cache_store.remove(EntityKind.GROUPS, "missing")
    await cache_store.remove(EntityKind.GROUPS, "grp_1")
    await cache_store.remove(EntityKind.GROUPS, "grp_1")

    assert await cache_store.get_all(EntityKind.GROUPS) == []


async def test_kinds_are_isolated(cache_store: LocalCacheStoreSQLite) -> None:
    await cache_store.upsert(EntityKind.GUESTS, CachedGuest(id="shared", name="Guest"))
    await cache_store.upsert(EntityKind.GROUPS, CachedGroup(id="shared", name="Group"))

    assert await cache_store.get(EntityKind.GUESTS, "shared") == CachedGuest(id="shared", name="Guest")
    assert await cache_store.get(EntityKind.GROUPS, "shared") == CachedGroup(id="shared", name="Group")
    assert await cache_store.get(EntityKind.GROUPS, "absent") is None


async def test_legacy_rows_are_migrated_on_read(cache_store: LocalCacheStoreSQLite, connection: sqlite3.Connection) -> None:
    legacy = {"_id": "g_9", "name": "Legacy", "contact": "legacy@example.com", "_pendingSync": True}
    connection.execute(
        "INSERT INTO cached_guests (id, payload, pending_sync, cached_at) VALUES (?, ?, ?, ?)",
        ("g_9", json.dumps(legacy), 1, "2024-01-01T00:00:00Z"),
    )

    guest = await cache_store.get(EntityKind.GUESTS, "g_9")

    assert guest == CachedGuest(id="g_9", name="Legacy", email="legacy@example.com", pending_sync=True)


async def test_unreadable_rows_are_skipped(cache_store: LocalCacheStoreSQLite, connection: sqlite3.Connection) -> None:
    connection.execute(
        "INSERT INTO cached_groups (id, payload, pending_sync, cached_at) VALUES ('bad', '{not json', 0, 'now')"
    )
    await cache_store.upsert(EntityKind.GROUPS, CachedGroup(id="grp_1", name="Family"))

    assert [group.id for group in await cache_store.get_all(EntityKind.GROUPS)] == ["grp_1"]


async def test_cache_survives_reopen(db_path: Path) -> None:
    first = get_connection(db_path)
    run_migrations(first)
    writer = SQLiteExecutor(first)
    await LocalCacheStoreSQLite(writer).upsert(EntityKind.GUESTS, CachedGuest(id="g_1", name="Asha", phone="555-1"))
    await writer.close()

    second = get_connection(db_path)
    run_migrations(second)
    reader = SQLiteExecutor(second)
    try:
        guests = await LocalCacheStoreSQLite(reader).get_all(EntityKind.GUESTS)
    finally:
        await reader.close()

    assert guests == [CachedGuest(id="g_1", name="Asha", phone="555-1")]


async def test_closed_storage_raises_storage_unavailable(
    executor: SQLiteExecutor, cache_store: LocalCacheStoreSQLite
) -> None:
    await executor.close()

    with pytest.raises(StorageUnavailableError):
        await cache_store.get_all(EntityKind.GUESTS)
