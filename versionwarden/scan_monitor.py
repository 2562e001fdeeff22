"""Scan Monitor — starts scans and polls them until they settle."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from versionwarden.engines.base import ScanEngine
from versionwarden.engines.models import Scan, ScanConfig, ScanHistoryEntry
from versionwarden.services import NotFoundError, TransientPollError, ValidationError

log = structlog.get_logger("versionwarden.scan")

DEFAULT_POLL_INTERVAL = 3.0

ScanCallback = Callable[[Scan], Awaitable[None]]
ErrorCallback = Callable[[TransientPollError], Awaitable[None]]


class PollHandle:
    """Cancellable handle on one running poll loop."""

    def __init__(self, scan_id: str, task: asyncio.Task[None]) -> None:
        self.scan_id = scan_id
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        if self._task is not asyncio.current_task():
            self._task.cancel()

    async def wait(self) -> None:
        """Wait for the loop to exit, whether it finished or was cancelled."""
        if self._task is asyncio.current_task():
            return
        await asyncio.gather(self._task, return_exceptions=True)


class ScanMonitor:
    """Owns at most one poll loop at a time."""

    def __init__(self, engine: ScanEngine, *, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        self._engine = engine
        self.interval = interval
        self._handle: PollHandle | None = None

    @property
    def active(self) -> PollHandle | None:
        if self._handle is not None and self._handle.done:
            self._handle = None
        return self._handle

    @property
    def is_polling(self) -> bool:
        return self.active is not None

    # ── commands ───────────────────────────────────────────────────────────

    async def start_scan(self, config: ScanConfig) -> str:
        """Queue a scan with *config* and return its id.

        Raises :class:`ValidationError` without contacting the engine when no
        artifact types are selected.
        """
        if not config.types:
            raise ValidationError("select at least one artifact type to scan")
        scan_id = await self._engine.start_scan(config)
        log.info("scan.started", scan_id=scan_id, types=list(config.types))
        return scan_id

    async def poll_status(self, scan_id: str) -> Scan | None:
        try:
            return await self._engine.get_scan_status(scan_id)
        except NotFoundError:
            return None

    async def recent_scans(self, limit: int = 10) -> list[ScanHistoryEntry]:
        return await self._engine.get_recent_scans(limit)

    async def cancel_scan(self, scan_id: str) -> None:
        """Stop polling, then ask the engine to cancel.

        Polling stays stopped even if the remote cancel fails; that failure
        propagates as :class:`RemoteExecutionError`.
        """
        await self.stop()
        await self._engine.cancel_scan(scan_id)
        log.info("scan.cancelled", scan_id=scan_id)

    # ── polling ────────────────────────────────────────────────────────────

    def watch(
        self,
        scan_id: str,
        *,
        on_update: ScanCallback | None = None,
        on_terminal: ScanCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> PollHandle:
        """Start polling *scan_id*, replacing any loop already running."""
        previous = self._handle
        if previous is not None:
            previous.cancel()
        task = asyncio.create_task(
            self._loop(scan_id, on_update, on_terminal, on_error), name=f"scan-poll-{scan_id}"
        )
        self._handle = PollHandle(scan_id, task)
        log.info("scan.poll_started", scan_id=scan_id, interval=self.interval)
        return self._handle

    async def stop(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.cancel()
        await handle.wait()
        log.info("scan.poll_stopped", scan_id=handle.scan_id)

    async def _loop(
        self,
        scan_id: str,
        on_update: ScanCallback | None,
        on_terminal: ScanCallback | None,
        on_error: ErrorCallback | None,
    ) -> None:
        while True:
            try:
                scan = await self._engine.get_scan_status(scan_id)
            except NotFoundError:
                scan = None
            except Exception as exc:
                log.warning("scan.poll_failed", scan_id=scan_id, exc_info=True)
                if on_error is not None:
                    await on_error(TransientPollError(f"failed to poll scan {scan_id}: {exc}"))
                return

            if scan is None:
                log.info("scan.poll_not_found", scan_id=scan_id)
                return

            if on_update is not None:
                await on_update(scan)
            if scan.status.is_terminal:
                log.info("scan.poll_terminal", scan_id=scan_id, status=scan.status.value)
                if on_terminal is not None:
                    await on_terminal(scan)
                return

            await asyncio.sleep(self.interval)
