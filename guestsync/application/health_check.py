from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from guestsync.domain.ports import ConnectivityProbe, LocalDbProbe
from guestsync.domain.sync_models import HealthCheckItem, HealthReport


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class HealthCheckUseCase:
    def __init__(self, connectivity_probe: ConnectivityProbe, local_db_probe: LocalDbProbe) -> None:
        self._connectivity_probe = connectivity_probe
        self._local_db_probe = local_db_probe

    async def run(self) -> HealthReport:
        checks: list[HealthCheckItem] = []

        api_reachable = await self._connectivity_probe.check()
        checks.append(
            HealthCheckItem(
                key="api_reachable",
                status="OK" if api_reachable else "WARN",
                message="Guest API reachable." if api_reachable else "Guest API unreachable; changes will be queued.",
                action_id="open_sync_settings",
                category="Connectivity",
            )
        )
        latency_ms = getattr(self._connectivity_probe, "last_latency_ms", None)
        if api_reachable and latency_ms is not None:
            checks.append(
                HealthCheckItem(
                    key="api_latency",
                    status="OK" if latency_ms < 1500 else "WARN",
                    message=f"Approximate API latency: {latency_ms:.0f} ms.",
                    action_id="open_sync_settings",
                    category="Connectivity",
                )
            )

        local_checks = await asyncio.to_thread(self._local_db_probe.check)
        checks.extend(self._build_checks("Local integrity", local_checks))
        return HealthReport(generated_at=_now_iso(), checks=tuple(checks))

    @staticmethod
    def _build_checks(category: str, checks: dict[str, tuple[bool, str, str]]) -> list[HealthCheckItem]:
        mapped: list[HealthCheckItem] = []
        for key, (ok, message, action_id) in checks.items():
            mapped.append(
                HealthCheckItem(
                    key=key,
                    status="OK" if ok else "ERROR",
                    message=message,
                    action_id=action_id,
                    category=category,
                )
            )
        return mapped
