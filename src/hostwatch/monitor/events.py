"""
Typed events published by the monitor.

Events are immutable and carry snapshots, never live store records.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

from .models import ProcessRecord, PortRecord, GhostVerdict


class MonitorEventKind(str, Enum):
    """Event kind tags."""
    PROCESS_STARTED = "process_started"
    PROCESS_TERMINATED = "process_terminated"
    PORT_OPENED = "port_opened"
    PORT_CLOSED = "port_closed"
    GHOST_PROCESS_DETECTED = "ghost_process_detected"
    SCAN_ERROR = "scan_error"
    SCAN_SKIPPED = "scan_skipped"
    PROCESS_KILLED = "process_killed"
    MONITORING_STARTED = "monitoring_started"
    MONITORING_STOPPED = "monitoring_stopped"
    WATCHED_PORT_CLAIMED = "watched_port_claimed"
    WATCHED_PORT_RELEASED = "watched_port_released"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MonitorEvent:
    """Base class for all monitor events."""
    kind: ClassVar[MonitorEventKind]
    timestamp: datetime = field(default_factory=_utcnow, kw_only=True)

    def payload(self) -> Dict[str, Any]:
        return {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
            **self.payload(),
        }


@dataclass(frozen=True)
class ProcessStarted(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.PROCESS_STARTED
    process: ProcessRecord

    def payload(self) -> Dict[str, Any]:
        return {"process": self.process.to_dict()}


@dataclass(frozen=True)
class ProcessTerminated(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.PROCESS_TERMINATED
    process: ProcessRecord

    def payload(self) -> Dict[str, Any]:
        return {"process": self.process.to_dict()}


@dataclass(frozen=True)
class PortOpened(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.PORT_OPENED
    port: PortRecord

    def payload(self) -> Dict[str, Any]:
        return {"port": self.port.to_dict()}


@dataclass(frozen=True)
class PortClosed(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.PORT_CLOSED
    port: PortRecord

    def payload(self) -> Dict[str, Any]:
        return {"port": self.port.to_dict()}


@dataclass(frozen=True)
class GhostProcessDetected(MonitorEvent):
    """
    A process classified as a ghost in the current cycle.

    ``application_id`` is set when the process owns a port of a tracked
    application. ``notify`` mirrors the notifications setting at publish time.
    """
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.GHOST_PROCESS_DETECTED
    process: ProcessRecord
    verdict: GhostVerdict
    application_id: Optional[str] = None
    notify: bool = True

    def payload(self) -> Dict[str, Any]:
        return {
            "process": self.process.to_dict(),
            "reason": self.verdict.reason.value if self.verdict.reason else None,
            "detail": self.verdict.detail,
            "application_id": self.application_id,
            "notify": self.notify,
        }


@dataclass(frozen=True)
class ScanError(MonitorEvent):
    """A scan step failed. ``table`` names the table that was not refreshed."""
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.SCAN_ERROR
    error: Dict[str, Any]
    table: Optional[str] = None
    notify: bool = True

    def payload(self) -> Dict[str, Any]:
        return {"error": self.error, "table": self.table, "notify": self.notify}


@dataclass(frozen=True)
class ScanSkipped(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.SCAN_SKIPPED
    state: str

    def payload(self) -> Dict[str, Any]:
        return {"state": self.state}


@dataclass(frozen=True)
class ProcessKilled(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.PROCESS_KILLED
    pid: int
    signal: str
    success: bool
    port: Optional[int] = None

    def payload(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "signal": self.signal,
            "success": self.success,
            "port": self.port,
        }


@dataclass(frozen=True)
class MonitoringStarted(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.MONITORING_STARTED
    interval: float

    def payload(self) -> Dict[str, Any]:
        return {"interval": self.interval}


@dataclass(frozen=True)
class MonitoringStopped(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.MONITORING_STOPPED


@dataclass(frozen=True)
class WatchedPortClaimed(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.WATCHED_PORT_CLAIMED
    port: int
    owner: PortRecord

    def payload(self) -> Dict[str, Any]:
        return {"port": self.port, "owner": self.owner.to_dict()}


@dataclass(frozen=True)
class WatchedPortReleased(MonitorEvent):
    kind: ClassVar[MonitorEventKind] = MonitorEventKind.WATCHED_PORT_RELEASED
    port: int
    previous_pid: int

    def payload(self) -> Dict[str, Any]:
        return {"port": self.port, "previous_pid": self.previous_pid}


__all__ = [
    'MonitorEventKind',
    'MonitorEvent',
    'ProcessStarted',
    'ProcessTerminated',
    'PortOpened',
    'PortClosed',
    'GhostProcessDetected',
    'ScanError',
    'ScanSkipped',
    'ProcessKilled',
    'MonitoringStarted',
    'MonitoringStopped',
    'WatchedPortClaimed',
    'WatchedPortReleased',
]
