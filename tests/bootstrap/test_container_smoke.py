from __future__ import annotations

import asyncio
from pathlib import Path

from guestsync.bootstrap.container import build_runtime
from guestsync.bootstrap.exception_handler import asyncio_exception_handler
from guestsync.bootstrap.settings import SyncSettings
from guestsync.domain.models import EntityKind
from tests.sync_fakes import FakeGuestServer, RecordingNotifier


def _settings(tmp_path: Path, **overrides) -> SyncSettings:
    values = {
        "api_base_url": "http://guests.test/api",
        "db_path": tmp_path / "guest-manager.db",
        "config_dir": tmp_path / "config",
        "probe_interval_seconds": 3600.0,
    }
    values.update(overrides)
    return SyncSettings(**values)


async def test_runtime_queues_offline_and_drains_on_start(tmp_path: Path) -> None:
    server = FakeGuestServer()
    server.online = False
    notifier = RecordingNotifier()
    runtime = await build_runtime(_settings(tmp_path), transport=server.transport(), notifier=notifier)
    try:
        await runtime.start()
        assert runtime.monitor.is_online is False

        queued = await runtime.guest_service.add_guest({"name": "Asha"})
        assert queued.queued is True

        server.online = True
        await runtime.monitor.check_now()
        report = await runtime.coordinator.wait_idle()
    finally:
        await runtime.stop()

    assert report.succeeded == 1
    assert notifier.notifications == [1]
    assert [guest["name"] for guest in server.guests.values()] == ["Asha"]


async def test_pending_work_survives_restart(tmp_path: Path) -> None:
    server = FakeGuestServer()
    server.online = False
    first = await build_runtime(_settings(tmp_path), transport=server.transport())
    await first.start()
    await first.guest_service.create_group({"name": "Family"})
    await first.stop()

    server.online = True
    second = await build_runtime(_settings(tmp_path), transport=server.transport())
    try:
        await second.start()
        await second.coordinator.wait_idle()
        groups = await second.cache.get_all(EntityKind.GROUPS)
        pending = await second.queue.count()
    finally:
        await second.stop()

    assert pending == 0
    assert [(group.id, group.name) for group in groups] == [("grp_1", "Family")]


async def test_force_offline_blocks_api_and_probe(tmp_path: Path) -> None:
    server = FakeGuestServer()
    runtime = await build_runtime(_settings(tmp_path, force_offline=True), transport=server.transport())
    try:
        await runtime.start()
        result = await runtime.guest_service.add_guest({"name": "Asha"})
        report = await runtime.health_check_use_case.run()
    finally:
        await runtime.stop()

    assert runtime.monitor.is_online is False
    assert result.queued is True
    assert server.requests == []
    statuses = {check.key: check.status for check in report.checks}
    assert statuses["api_reachable"] == "WARN"
    assert statuses["local_db"] == "OK"
    assert statuses["migrations"] == "OK"


async def test_stop_is_clean_without_start(tmp_path: Path) -> None:
    runtime = await build_runtime(_settings(tmp_path), transport=FakeGuestServer().transport())

    await runtime.stop()
    await asyncio.sleep(0)

    assert runtime.coordinator.last_report is None


async def test_runtime_installs_incident_handler_while_running(tmp_path: Path) -> None:
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    runtime = await build_runtime(_settings(tmp_path), transport=FakeGuestServer().transport())

    await runtime.start()
    installed = loop.get_exception_handler()
    await runtime.stop()

    assert installed is asyncio_exception_handler
    assert loop.get_exception_handler() is previous


async def test_failing_notifier_does_not_break_shutdown(tmp_path: Path) -> None:
    class _BrokenNotifier:
        def notify_sync_completed(self, changes: int) -> None:
            raise RuntimeError("toast failed")

    server = FakeGuestServer()
    server.online = False
    runtime = await build_runtime(_settings(tmp_path), transport=server.transport(), notifier=_BrokenNotifier())
    await runtime.start()
    await runtime.guest_service.create_group({"name": "Family"})
    server.online = True
    await runtime.monitor.check_now()

    await runtime.stop()

    assert runtime.coordinator.last_report is not None
    assert runtime.coordinator.last_report.succeeded == 1
    assert [group["name"] for group in server.groups.values()] == ["Family"]
