"""
Scan cycle for the process and port monitor.

One cycle acquires fresh process and port tables, reconciles them against
the store, publishes transitions, classifies every current process and
checks watched ports. A fixed-interval timer starts cycles; at most one is
ever in flight and a tick that finds one running is dropped, not queued.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple

from ..utils.errors import AcquisitionError, HostwatchError, ErrorContext
from ..utils.logging import get_logger
from ..utils.notifications import EventBus
from .acquisition import TableSource
from .classifier import GhostClassifier
from .collaborators import ApplicationRegistry, SettingsProvider, application_for_port
from .events import (
    ProcessStarted, ProcessTerminated, PortOpened, PortClosed, GhostProcessDetected,
    ScanError, ScanSkipped, MonitoringStarted, MonitoringStopped,
    WatchedPortClaimed, WatchedPortReleased
)
from .models import (
    GhostReason, GhostVerdict, ParseResult, PortRecord, ProcessRecord, ProcessStatus, SocketState
)
from .remediator import Remediator
from .store import ReconcileResult, SnapshotStore, collapse_ports

logger = get_logger("hostwatch.monitor")


class ScanState(str, Enum):
    """Scan cycle states."""
    IDLE = "idle"
    SCANNING = "scanning"
    RECONCILING = "reconciling"


@dataclass
class ScanReport:
    """What one scan cycle observed and did."""
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    processes: Optional[ReconcileResult[ProcessRecord]] = None
    ports: Optional[ReconcileResult[PortRecord]] = None
    ghosts: List[Tuple[ProcessRecord, GhostVerdict]] = field(default_factory=list)
    cleaned: List[int] = field(default_factory=list)
    errors: List[HostwatchError] = field(default_factory=list)
    skipped_lines: int = 0

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processes": self.processes.summary() if self.processes else None,
            "ports": self.ports.summary() if self.ports else None,
            "ghosts": [
                {"pid": p.pid, "reason": v.reason.value if v.reason else None}
                for p, v in self.ghosts
            ],
            "cleaned": self.cleaned,
            "errors": [e.code for e in self.errors],
            "skipped_lines": self.skipped_lines,
        }


class ScanCycle:
    """Drives acquisition, reconciliation and classification."""

    def __init__(
        self,
        store: SnapshotStore,
        source: TableSource,
        classifier: GhostClassifier,
        bus: EventBus,
        settings: SettingsProvider,
        registry: ApplicationRegistry,
        remediator: Optional[Remediator] = None,
        watched_ports: Iterable[int] = ()
    ):
        self.store = store
        self.source = source
        self.classifier = classifier
        self.bus = bus
        self.settings = settings
        self.registry = registry
        self.remediator = remediator

        self.state = ScanState.IDLE
        self.scan_count = 0
        self.last_report: Optional[ScanReport] = None

        # pid -> consecutive saturated scans
        self._saturation_streaks: Dict[int, int] = {}
        # pids already auto-cleaned during their current lifetime
        self._cleaned_pids: Set[int] = set()
        # watched port -> owner pid seen last cycle (0 when free)
        self._watched: Dict[int, int] = {port: 0 for port in watched_ports}

        self._timer_task: Optional[asyncio.Task] = None
        self._scan_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    # Watched ports

    def watch_port(self, port: int) -> None:
        self._watched.setdefault(port, 0)

    def unwatch_port(self, port: int) -> bool:
        return self._watched.pop(port, None) is not None

    def watched_ports(self) -> List[int]:
        return sorted(self._watched)

    def saturation_streak(self, pid: int) -> int:
        """Consecutive scans ``pid`` has been above both thresholds."""
        return self._saturation_streaks.get(pid, 0)

    # Entry points

    async def tick(self) -> Optional[asyncio.Task]:
        """
        Start a scan in the background unless one is in flight.

        Returns:
            The scan task, or None if the tick was skipped
        """
        if not await self._enter():
            return None
        self._scan_task = asyncio.create_task(self._run_scan())
        return self._scan_task

    async def scan_once(self) -> Optional[ScanReport]:
        """Run one scan to completion; None if another scan is in flight."""
        if not await self._enter():
            return None
        return await self._run_scan()

    async def _enter(self) -> bool:
        if self.state is not ScanState.IDLE:
            logger.info("scan_skipped", state=self.state.value)
            await self.bus.publish(ScanSkipped(state=self.state.value))
            return False
        # Claimed before any await so a concurrent tick sees it
        self.state = ScanState.SCANNING
        return True

    # Cycle

    async def _run_scan(self) -> ScanReport:
        report = ScanReport()
        try:
            processes = await self._acquire(self.source.processes, "processes", report)
            ports = await self._acquire(self.source.ports, "ports", report)

            self.state = ScanState.RECONCILING

            if ports is not None:
                port_table = list(collapse_ports(ports.records).values())
            else:
                port_table = self.store.ports()
            ports_by_pid = self._listening_ports_by_pid(port_table)

            verdicts: List[Tuple[ProcessRecord, GhostVerdict]] = []
            if processes is not None:
                verdicts = self._classify(processes.records, ports_by_pid)
                report.processes = self.store.reconcile_processes(processes.records)
                for removed in report.processes.removed:
                    self._cleaned_pids.discard(removed.pid)

            if ports is not None:
                report.ports = self.store.reconcile_ports(ports.records)

            await self._publish_transitions(report)
            await self._publish_ghosts(verdicts, ports_by_pid, report)

            if ports is not None:
                await self._check_watched_ports()

        except Exception as e:
            error = e if isinstance(e, HostwatchError) else HostwatchError(
                message=str(e) or type(e).__name__,
                context=ErrorContext(component="scanner", operation="scan"),
                cause=e
            )
            report.errors.append(error)
            logger.error("scan_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
            await self.bus.publish(ScanError(
                error=error.to_dict(),
                notify=self.settings.notifications_enabled
            ))
        finally:
            report.finished_at = datetime.now(timezone.utc)
            self.scan_count += 1
            self.last_report = report
            self.state = ScanState.IDLE

        logger.info("scan_completed", **report.to_dict())
        return report

    async def _acquire(
        self,
        fetch: Callable[[], Awaitable[ParseResult]],
        table: str,
        report: ScanReport
    ) -> Optional[ParseResult]:
        """Fetch one table; on failure publish ScanError and keep the old snapshot."""
        try:
            result = await fetch()
        except AcquisitionError as e:
            report.errors.append(e)
            logger.warning("acquisition_failed", table=table, error=e.message)
            await self.bus.publish(ScanError(
                error=e.to_dict(),
                table=table,
                notify=self.settings.notifications_enabled
            ))
            return None

        report.skipped_lines += result.skipped
        return result

    def _listening_ports_by_pid(self, port_table: Iterable[PortRecord]) -> Dict[int, List[int]]:
        ports_by_pid: Dict[int, List[int]] = {}
        for record in port_table:
            if record.state is SocketState.LISTEN and record.owning_pid > 0:
                ports_by_pid.setdefault(record.owning_pid, []).append(record.port)
        for ports in ports_by_pid.values():
            ports.sort()
        return ports_by_pid

    def _classify(
        self,
        records: List[ProcessRecord],
        ports_by_pid: Dict[int, List[int]]
    ) -> List[Tuple[ProcessRecord, GhostVerdict]]:
        """
        Correlate fresh records with listening ports and classify them.

        Fresh records are owned by this cycle until reconciled, so derived
        status is written onto them here.
        """
        streaks: Dict[int, int] = {}
        ghosts: List[Tuple[ProcessRecord, GhostVerdict]] = []

        for record in records:
            listening = ports_by_pid.get(record.pid)
            if listening:
                record.associated_port = listening[0]
                if record.status is not ProcessStatus.ZOMBIE:
                    record.status = ProcessStatus.LISTENING

            if self.classifier.is_saturated(record):
                streaks[record.pid] = self._saturation_streaks.get(record.pid, 0) + 1

            verdict = self.classifier.classify(record, streaks.get(record.pid, 0))
            if not verdict.is_ghost:
                continue

            if verdict.reason is GhostReason.ZOMBIE:
                record.status = ProcessStatus.ZOMBIE
            elif verdict.reason is GhostReason.ORPHANED:
                record.status = ProcessStatus.ORPHANED
            ghosts.append((record, verdict))

        self._saturation_streaks = streaks
        return ghosts

    async def _publish_transitions(self, report: ScanReport) -> None:
        if report.processes:
            for record in report.processes.added:
                await self.bus.publish(ProcessStarted(process=record))
            for record in report.processes.removed:
                await self.bus.publish(ProcessTerminated(process=record))

        if report.ports:
            for port in report.ports.added:
                await self.bus.publish(PortOpened(port=port))
            for port in report.ports.removed:
                await self.bus.publish(PortClosed(port=port))

    async def _publish_ghosts(
        self,
        verdicts: List[Tuple[ProcessRecord, GhostVerdict]],
        ports_by_pid: Dict[int, List[int]],
        report: ScanReport
    ) -> None:
        notify = self.settings.notifications_enabled
        auto_cleanup = self.settings.ghost_auto_cleanup

        for record, verdict in verdicts:
            app = None
            for port in ports_by_pid.get(record.pid, []):
                app = application_for_port(self.registry, port)
                if app:
                    break

            snapshot = record.snapshot()
            report.ghosts.append((snapshot, verdict))
            logger.warning(
                "ghost_process_detected",
                pid=record.pid,
                reason=verdict.reason.value if verdict.reason else None,
                detail=verdict.detail,
                application_id=app.id if app else None
            )
            await self.bus.publish(GhostProcessDetected(
                process=snapshot,
                verdict=verdict,
                application_id=app.id if app else None,
                notify=notify
            ))

            if (
                auto_cleanup
                and self.remediator is not None
                and app is not None
                and app.ghost_detection
                and record.pid not in self._cleaned_pids
            ):
                self._cleaned_pids.add(record.pid)
                report.cleaned.append(record.pid)
                logger.info("ghost_auto_cleanup", pid=record.pid, application_id=app.id)
                await self.remediator.kill_process(record.pid)

    async def _check_watched_ports(self) -> None:
        for port, previous_pid in list(self._watched.items()):
            records = self.store.ports_numbered(port)
            owner = next((r for r in records if r.state is SocketState.LISTEN), None)
            owner = owner or next(iter(records), None)
            current_pid = owner.owning_pid if owner else 0

            if current_pid == previous_pid:
                continue

            self._watched[port] = current_pid
            if previous_pid:
                logger.info("watched_port_released", port=port, pid=previous_pid)
                await self.bus.publish(WatchedPortReleased(port=port, previous_pid=previous_pid))
            if current_pid:
                logger.info("watched_port_claimed", port=port, pid=current_pid)
                await self.bus.publish(WatchedPortClaimed(port=port, owner=owner))

    # Timer

    async def start(self) -> None:
        """Start periodic scanning. The first scan starts immediately."""
        if self.is_running:
            logger.warning("monitoring_already_running")
            return

        self._stop_event.clear()
        self._timer_task = asyncio.create_task(self._timer_loop())
        interval = self.settings.check_frequency
        logger.info("monitoring_started", interval=interval)
        await self.bus.publish(MonitoringStarted(interval=interval))

    async def stop(self) -> None:
        """Stop the timer and let an in-flight scan finish."""
        if self._timer_task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(self._timer_task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("timer_stop_timeout")
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
        self._timer_task = None

        if self._scan_task is not None and not self._scan_task.done():
            await self._scan_task

        logger.info("monitoring_stopped", scans=self.scan_count)
        await self.bus.publish(MonitoringStopped())

    async def _timer_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("tick_failed", error=str(e), exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self.settings.check_frequency
                )
            except asyncio.TimeoutError:
                pass


__all__ = [
    'ScanState',
    'ScanReport',
    'ScanCycle',
]
