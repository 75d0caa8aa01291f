"""
State store for the monitor.

Holds the last observed process and port tables. reconcile_* is the only
way to mutate them and is only ever called by the scan cycle, one scan at
a time. Readers always get copies.
"""

from dataclasses import dataclass, field
from typing import Dict, Generic, Iterable, List, Optional, TypeVar

from ..utils.logging import get_logger
from .models import ProcessRecord, PortRecord, PortKey, Protocol, SocketState

logger = get_logger(__name__)

R = TypeVar("R")


@dataclass
class ReconcileResult(Generic[R]):
    """Difference between the stored table and a fresh one."""
    added: List[R] = field(default_factory=list)
    removed: List[R] = field(default_factory=list)
    updated: List[R] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)

    def summary(self) -> Dict[str, int]:
        return {
            "added": len(self.added),
            "removed": len(self.removed),
            "updated": len(self.updated),
        }


def collapse_ports(records: Iterable[PortRecord]) -> Dict[PortKey, PortRecord]:
    """
    Reduce socket rows to one record per (port, protocol).

    A LISTEN row replaces any earlier non-LISTEN row for the same key;
    otherwise the first row seen wins.
    """
    collapsed: Dict[PortKey, PortRecord] = {}
    for record in records:
        current = collapsed.get(record.key)
        if current is None:
            collapsed[record.key] = record
        elif record.state is SocketState.LISTEN and current.state is not SocketState.LISTEN:
            collapsed[record.key] = record
    return collapsed


class SnapshotStore:
    """pid -> ProcessRecord and (port, protocol) -> PortRecord."""

    def __init__(self):
        self._processes: Dict[int, ProcessRecord] = {}
        self._ports: Dict[PortKey, PortRecord] = {}
        self.process_scans = 0
        self.port_scans = 0

    # Mutation

    def reconcile_processes(self, records: Iterable[ProcessRecord]) -> ReconcileResult[ProcessRecord]:
        """
        Replace the process table with a fresh observation.

        A pid missing from ``records`` is removed; a pid that reappears later
        is reported as added again.
        """
        fresh: Dict[int, ProcessRecord] = {}
        for record in records:
            # First row wins if ps ever repeats a pid
            fresh.setdefault(record.pid, record)

        result: ReconcileResult[ProcessRecord] = ReconcileResult()

        for pid, record in self._processes.items():
            if pid not in fresh:
                result.removed.append(record.snapshot())

        for pid, record in fresh.items():
            if pid in self._processes:
                result.updated.append(record.snapshot())
            else:
                result.added.append(record.snapshot())

        self._processes = fresh
        self.process_scans += 1

        logger.debug("processes_reconciled", total=len(fresh), **result.summary())
        return result

    def reconcile_ports(self, records: Iterable[PortRecord]) -> ReconcileResult[PortRecord]:
        """Replace the port table with a fresh observation."""
        fresh = collapse_ports(records)
        result: ReconcileResult[PortRecord] = ReconcileResult()

        for key, record in self._ports.items():
            if key not in fresh:
                result.removed.append(record.snapshot())

        for key, record in fresh.items():
            if key in self._ports:
                result.updated.append(record.snapshot())
            else:
                result.added.append(record.snapshot())

        self._ports = fresh
        self.port_scans += 1

        logger.debug("ports_reconciled", total=len(fresh), **result.summary())
        return result

    # Reads

    def processes(self) -> List[ProcessRecord]:
        return [record.snapshot() for record in self._processes.values()]

    def process(self, pid: int) -> Optional[ProcessRecord]:
        record = self._processes.get(pid)
        return record.snapshot() if record else None

    def has_process(self, pid: int) -> bool:
        return pid in self._processes

    def ports(self) -> List[PortRecord]:
        return [record.snapshot() for record in self._ports.values()]

    def port(self, port: int, protocol: Protocol = Protocol.TCP) -> Optional[PortRecord]:
        record = self._ports.get((port, protocol))
        return record.snapshot() if record else None

    def ports_numbered(self, port: int) -> List[PortRecord]:
        """Every record for a port number, any protocol."""
        return [r.snapshot() for key, r in self._ports.items() if key[0] == port]

    def is_port_known(self, port: int) -> bool:
        return any(key[0] == port for key in self._ports)

    def clear(self) -> None:
        self._processes.clear()
        self._ports.clear()


__all__ = [
    'SnapshotStore',
    'ReconcileResult',
    'collapse_ports',
]
