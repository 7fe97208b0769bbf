from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Callable, Coroutine

from guestsync.core.operational_logging import log_operational_error
from guestsync.domain.ports import ConnectivityProbe

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]

DEFAULT_PROBE_INTERVAL_SECONDS = 30.0
DEFAULT_SETTLE_DELAY_SECONDS = 1.0


class ConnectivityMonitor:
    """Owns the process-wide online/offline signal.

    Platform events move `is_online` right away; the value subscribers see
    only changes once a settle step (a probe for "online", nothing for
    "offline") has confirmed it. A newer platform event cancels the settle
    step still waiting, so a burst of toggles publishes once.
    """

    def __init__(
        self,
        probe: ConnectivityProbe,
        *,
        probe_interval_seconds: float = DEFAULT_PROBE_INTERVAL_SECONDS,
        settle_delay_seconds: float = DEFAULT_SETTLE_DELAY_SECONDS,
        initially_online: bool = False,
    ) -> None:
        self._probe = probe
        self._probe_interval_seconds = probe_interval_seconds
        self._settle_delay_seconds = settle_delay_seconds
        self._online = initially_online
        self._published = initially_online
        self._platform_online = True
        self._listeners: list[ConnectivityListener] = []
        self._settle_task: asyncio.Task[None] | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def platform_online(self) -> bool:
        return self._platform_online

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners.remove(listener)

    async def check_now(self) -> bool:
        try:
            reachable = bool(await self._probe.check())
        except Exception as exc:  # noqa: BLE001
            logger.warning("connectivity_probe_error error=%s", exc)
            reachable = False
        self._online = reachable
        self._publish(reachable)
        return reachable

    def report_unreachable(self) -> None:
        """Marks the API unreachable after a failed call so the next good probe publishes a flip."""
        self._online = False
        self._publish(False)

    def notify_platform_online(self) -> None:
        self._platform_online = True
        self._online = True
        self._schedule_settle(self._settle_online())

    def notify_platform_offline(self) -> None:
        self._platform_online = False
        self._online = False
        self._schedule_settle(self._settle_offline())

    async def start(self) -> None:
        if self.running:
            return
        await self.check_now()
        self._loop_task = asyncio.create_task(self._probe_loop(), name="guestsync-connectivity-probe")
        logger.info("connectivity_monitor_started interval_s=%s online=%s", self._probe_interval_seconds, self._online)

    async def stop(self) -> None:
        for task in (self._settle_task, self._loop_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._settle_task = None
        self._loop_task = None
        logger.info("connectivity_monitor_stopped")

    async def wait_settled(self) -> None:
        if self._settle_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._settle_task

    def _schedule_settle(self, step: Coroutine[Any, Any, None]) -> None:
        if self._settle_task is not None and not self._settle_task.done():
            self._settle_task.cancel()
        self._settle_task = asyncio.create_task(step, name="guestsync-connectivity-settle")

    async def _settle_online(self) -> None:
        if self._settle_delay_seconds > 0:
            await asyncio.sleep(self._settle_delay_seconds)
        await self.check_now()

    async def _settle_offline(self) -> None:
        if self._settle_delay_seconds > 0:
            await asyncio.sleep(self._settle_delay_seconds)
        self._publish(False)

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self._probe_interval_seconds)
            if not self._platform_online:
                continue
            await self.check_now()

    def _publish(self, online: bool) -> None:
        if online == self._published:
            return
        self._published = online
        logger.info("connectivity_changed online=%s", online)
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception as exc:  # noqa: BLE001
                log_operational_error("Connectivity listener failed", exc=exc, extra={"online": online})
