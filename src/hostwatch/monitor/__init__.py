"""
Process and port monitor.

This module provides:
- Table parsers for ps, ss, netstat and lsof output
- A snapshot store reconciled once per scan
- Ghost classification and remediation
- The scan cycle and the MonitorEngine facade
"""

from .models import (
    ProcessRecord, PortRecord, ProcessStatus, Protocol, SocketState,
    GhostReason, GhostVerdict, ParseResult
)
from .events import (
    MonitorEventKind, MonitorEvent, ProcessStarted, ProcessTerminated,
    PortOpened, PortClosed, GhostProcessDetected, ScanError, ScanSkipped,
    ProcessKilled, MonitoringStarted, MonitoringStopped,
    WatchedPortClaimed, WatchedPortReleased
)
from .store import SnapshotStore, ReconcileResult
from .classifier import GhostClassifier, LivenessProbe, PsutilProbe
from .remediator import Remediator, SocketPortProbe, PsutilSignalSender
from .acquisition import CommandRunner, SystemTableSource, TableSource
from .collaborators import (
    TrackedApplication, ApplicationRegistry, SettingsProvider,
    ConfigSettingsProvider, ConfigApplicationRegistry
)
from .scanner import ScanCycle, ScanState, ScanReport
from .engine import MonitorEngine, PortUsage

__all__ = [
    # Models
    'ProcessRecord',
    'PortRecord',
    'ProcessStatus',
    'Protocol',
    'SocketState',
    'GhostReason',
    'GhostVerdict',
    'ParseResult',

    # Events
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

    # Components
    'SnapshotStore',
    'ReconcileResult',
    'GhostClassifier',
    'LivenessProbe',
    'PsutilProbe',
    'Remediator',
    'SocketPortProbe',
    'PsutilSignalSender',
    'CommandRunner',
    'SystemTableSource',
    'TableSource',

    # Collaborators
    'TrackedApplication',
    'ApplicationRegistry',
    'SettingsProvider',
    'ConfigSettingsProvider',
    'ConfigApplicationRegistry',

    # Engine
    'ScanCycle',
    'ScanState',
    'ScanReport',
    'MonitorEngine',
    'PortUsage',
]
