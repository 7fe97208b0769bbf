from __future__ import annotations

import asyncio
import contextvars
import logging
from types import SimpleNamespace

from guestsync.bootstrap import exception_handler


def _raise_and_capture() -> BaseException:
    try:
        raise RuntimeError("background task crashed")
    except RuntimeError as exc:
        return exc


def test_incident_ids_are_prefixed_and_unique() -> None:
    first = exception_handler.generate_incident_id()

    assert first.startswith("INC-")
    assert len(first) == 16
    assert first != exception_handler.generate_incident_id()


def test_handle_unexpected_exception_logs_incident(caplog) -> None:
    exc = _raise_and_capture()

    with caplog.at_level(logging.ERROR, logger="guestsync.global_exception"):
        incident_id = contextvars.copy_context().run(
            exception_handler.handle_unexpected_exception, type(exc), exc, exc.__traceback__
        )

    [record] = [r for r in caplog.records if r.name == "guestsync.global_exception"]
    assert record.incident_id == incident_id
    assert record.correlation_id
    assert record.exc_info[1] is exc


def test_fallback_crash_log_when_logging_fails(monkeypatch, tmp_path) -> None:
    class _BrokenLogger:
        def error(self, *args, **kwargs) -> None:
            raise OSError("disk full")

    monkeypatch.setattr(exception_handler, "logging", SimpleNamespace(getLogger=lambda _name: _BrokenLogger()))
    exc = _raise_and_capture()

    incident_id = contextvars.copy_context().run(
        exception_handler.handle_unexpected_exception,
        type(exc),
        exc,
        exc.__traceback__,
        log_dir=tmp_path,
    )

    content = (tmp_path / "crash.log").read_text(encoding="utf-8")
    assert incident_id in content
    assert "background task crashed" in content


async def test_loop_handler_reports_unawaited_task_errors(monkeypatch) -> None:
    seen: list[BaseException] = []
    monkeypatch.setattr(
        exception_handler,
        "handle_unexpected_exception",
        lambda exc_type, exc, tb: seen.append(exc) or "INC-1",
    )
    exception_handler.install_asyncio_exception_handler()
    loop = asyncio.get_running_loop()
    exc = _raise_and_capture()

    loop.call_exception_handler({"message": "Task exception was never retrieved", "exception": exc})
    loop.call_exception_handler({"message": "plain loop error"})

    assert seen == [exc]
    assert loop.get_exception_handler() is exception_handler.asyncio_exception_handler
