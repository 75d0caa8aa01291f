"""
Test fixtures for hostwatch.

Provides canned command output and fakes for the OS-facing seams.
"""

from .monitor_fixtures import (
    PS_OUTPUT,
    SS_OUTPUT,
    NETSTAT_OUTPUT,
    MonitorFixtures,
    FakeTableSource,
    FakeProbe,
    FakePortProbe,
    FakeSignalSender,
    EventRecorder,
)

__all__ = [
    "PS_OUTPUT",
    "SS_OUTPUT",
    "NETSTAT_OUTPUT",
    "MonitorFixtures",
    "FakeTableSource",
    "FakeProbe",
    "FakePortProbe",
    "FakeSignalSender",
    "EventRecorder",
]
