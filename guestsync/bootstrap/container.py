from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from guestsync.application.action_dispatch import ActionDispatcher
from guestsync.application.cache_writeback import CacheWriteBack
from guestsync.application.connectivity import ConnectivityMonitor
from guestsync.application.guest_service import GuestSyncService
from guestsync.application.health_check import HealthCheckUseCase
from guestsync.application.notifications import LoggingSyncNotifier, NullHaptics
from guestsync.application.sync_coordinator import SyncCoordinator
from guestsync.bootstrap.exception_handler import LoopExceptionHandler, install_asyncio_exception_handler
from guestsync.bootstrap.settings import SyncSettings
from guestsync.domain.ports import HapticFeedback, SyncNotifier
from guestsync.infrastructure.api_client import DEFAULT_API_BASE_URL, ForcedOfflineTransport, GuestApiClient
from guestsync.infrastructure.cache_store_sqlite import LocalCacheStoreSQLite
from guestsync.infrastructure.db import default_db_path, get_connection
from guestsync.infrastructure.health_probes import HttpHealthProbe, SQLiteLocalDbProbe
from guestsync.infrastructure.id_alias_sqlite import IdAliasStoreSQLite
from guestsync.infrastructure.local_config import ClientConfig, ClientConfigStore
from guestsync.infrastructure.migrations import MigrationRunner
from guestsync.infrastructure.pending_queue_sqlite import PendingActionQueueSQLite
from guestsync.infrastructure.sqlite_executor import SQLiteExecutor

logger = logging.getLogger(__name__)


@dataclass
class OfflineSyncRuntime:
    settings: SyncSettings
    client_config: ClientConfig
    db_path: Path
    executor: SQLiteExecutor
    api: GuestApiClient
    probe: HttpHealthProbe
    monitor: ConnectivityMonitor
    cache: LocalCacheStoreSQLite
    queue: PendingActionQueueSQLite
    aliases: IdAliasStoreSQLite
    coordinator: SyncCoordinator
    guest_service: GuestSyncService
    health_check_use_case: HealthCheckUseCase
    _loop: asyncio.AbstractEventLoop | None = field(default=None, init=False, repr=False)
    _previous_exception_handler: LoopExceptionHandler | None = field(default=None, init=False, repr=False)

    async def start(self) -> None:
        """Subscribes the coordinator, then probes; a first successful probe starts a drain.

        Exceptions from background tasks nobody awaits are logged with an
        incident id until `stop()` restores the loop's previous handler.
        """
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
            self._previous_exception_handler = install_asyncio_exception_handler(self._loop)
        self.coordinator.attach(self.monitor)
        await self.monitor.start()
        logger.info("runtime_started online=%s api=%s", self.monitor.is_online, self.api.base_url)

    async def stop(self) -> None:
        self.coordinator.detach()
        await self.monitor.stop()
        await self.coordinator.wait_idle()
        await self.api.aclose()
        await self.probe.aclose()
        await self.executor.close()
        if self._loop is not None:
            self._loop.set_exception_handler(self._previous_exception_handler)
            self._loop = None
            self._previous_exception_handler = None
        logger.info("runtime_stopped")


def _resolve_api_base_url(settings: SyncSettings, client_config: ClientConfig) -> str:
    if settings.api_base_url != DEFAULT_API_BASE_URL:
        return settings.api_base_url
    return client_config.api_base_url or settings.api_base_url


async def build_runtime(
    settings: SyncSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    notifier: SyncNotifier | None = None,
    haptics: HapticFeedback | None = None,
) -> OfflineSyncRuntime:
    client_config = ClientConfigStore(settings.config_dir).load()
    db_path = settings.db_path or default_db_path()

    connection = await asyncio.to_thread(get_connection, db_path)
    runner = MigrationRunner(connection)
    await asyncio.to_thread(runner.apply_all)
    executor = SQLiteExecutor(connection)

    if settings.force_offline:
        logger.warning("force_offline_enabled")
        transport = ForcedOfflineTransport()
    api_base_url = _resolve_api_base_url(settings, client_config)
    api = GuestApiClient(
        api_base_url,
        timeout_seconds=settings.request_timeout_seconds,
        auth_token=client_config.auth_token,
        transport=transport,
    )
    probe = HttpHealthProbe(api_base_url, timeout_seconds=settings.probe_timeout_seconds, transport=transport)
    monitor = ConnectivityMonitor(probe, probe_interval_seconds=settings.probe_interval_seconds)

    cache = LocalCacheStoreSQLite(executor)
    queue = PendingActionQueueSQLite(executor)
    aliases = IdAliasStoreSQLite(executor)
    writeback = CacheWriteBack(cache)
    haptics = haptics or NullHaptics()
    coordinator = SyncCoordinator(
        queue,
        ActionDispatcher(api, writeback, aliases),
        notifier=notifier or LoggingSyncNotifier(),
        haptics=haptics,
        resolve_temporary_ids=settings.resolve_temporary_ids,
    )
    guest_service = GuestSyncService(api, writeback, queue, connectivity=monitor, haptics=haptics)
    health_check_use_case = HealthCheckUseCase(
        probe,
        SQLiteLocalDbProbe(lambda: get_connection(db_path), migrations_total=runner.latest_version),
    )

    return OfflineSyncRuntime(
        settings=settings,
        client_config=client_config,
        db_path=db_path,
        executor=executor,
        api=api,
        probe=probe,
        monitor=monitor,
        cache=cache,
        queue=queue,
        aliases=aliases,
        coordinator=coordinator,
        guest_service=guest_service,
        health_check_use_case=health_check_use_case,
    )
