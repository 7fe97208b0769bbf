from __future__ import annotations

import sqlite3
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from guestsync.application.action_dispatch import ActionDispatcher
from guestsync.application.cache_writeback import CacheWriteBack
from guestsync.application.guest_service import GuestSyncService
from guestsync.application.sync_coordinator import SyncCoordinator
from guestsync.core.metrics import MetricsRegistry
from guestsync.infrastructure.api_client import GuestApiClient
from guestsync.infrastructure.cache_store_sqlite import LocalCacheStoreSQLite
from guestsync.infrastructure.db import get_connection
from guestsync.infrastructure.id_alias_sqlite import IdAliasStoreSQLite
from guestsync.infrastructure.migrations import run_migrations
from guestsync.infrastructure.pending_queue_sqlite import PendingActionQueueSQLite
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor
from tests.sync_fakes import FakeConnectivity, FakeGuestServer, RecordingHaptics, RecordingNotifier, SyncHarness

API_BASE_URL = "http://guests.test/api"


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "guest-manager.db"


@pytest.fixture
def connection(db_path: Path) -> sqlite3.Connection:
    conn = get_connection(db_path)
    run_migrations(conn)
    yield conn
    conn.close()


@pytest.fixture
async def executor(connection: sqlite3.Connection) -> SQLiteExecutor:
    sqlite_executor = SQLiteExecutor(connection)
    yield sqlite_executor
    await sqlite_executor.close()


@pytest.fixture
def cache_store(executor: SQLiteExecutor) -> LocalCacheStoreSQLite:
    return LocalCacheStoreSQLite(executor)


@pytest.fixture
def pending_queue(executor: SQLiteExecutor) -> PendingActionQueueSQLite:
    return PendingActionQueueSQLite(executor)


@pytest.fixture
def alias_store(executor: SQLiteExecutor) -> IdAliasStoreSQLite:
    return IdAliasStoreSQLite(executor)


@pytest.fixture
def fake_server() -> FakeGuestServer:
    return FakeGuestServer()


@pytest.fixture
async def api_client(fake_server: FakeGuestServer) -> GuestApiClient:
    client = GuestApiClient(API_BASE_URL, transport=fake_server.transport())
    yield client
    await client.aclose()


@pytest.fixture
def make_harness(
    fake_server: FakeGuestServer,
    api_client: GuestApiClient,
    cache_store: LocalCacheStoreSQLite,
    pending_queue: PendingActionQueueSQLite,
    alias_store: IdAliasStoreSQLite,
):
    def _factory(*, online: bool = True, resolve_temporary_ids: bool = False) -> SyncHarness:
        connectivity = FakeConnectivity(online)
        notifier = RecordingNotifier()
        haptics = RecordingHaptics()
        metrics = MetricsRegistry()
        writeback = CacheWriteBack(cache_store)
        coordinator = SyncCoordinator(
            pending_queue,
            ActionDispatcher(api_client, writeback, alias_store),
            notifier=notifier,
            haptics=haptics,
            resolve_temporary_ids=resolve_temporary_ids,
            metrics=metrics,
        )
        service = GuestSyncService(
            api_client,
            writeback,
            pending_queue,
            connectivity=connectivity,
            haptics=haptics,
            metrics=metrics,
        )
        return SyncHarness(
            server=fake_server,
            connectivity=connectivity,
            cache=cache_store,
            queue=pending_queue,
            aliases=alias_store,
            coordinator=coordinator,
            service=service,
            notifier=notifier,
            haptics=haptics,
            metrics=metrics,
        )

    return _factory
