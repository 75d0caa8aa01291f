"""
Remediation actions: signal processes and find free ports.

Remediation reads live OS state and the cached port table, and never
writes to the store. A failed action is reported as False, never raised;
invalid arguments raise ValidationError.
"""

import signal as signal_module
import socket
from typing import List, Optional, Protocol, Union

import psutil

from ..utils.errors import (
    AcquisitionError, NoAvailablePortError, RemediationError, ValidationError
)
from ..utils.logging import get_logger
from ..utils.notifications import EventBus
from .acquisition import TableSource
from .events import ProcessKilled
from .models import PortRecord, SocketState
from .store import SnapshotStore

logger = get_logger("hostwatch.remediation")

MAX_PORT = 65535


def validate_pid(pid: int) -> int:
    if isinstance(pid, bool) or not isinstance(pid, int) or pid <= 0:
        raise ValidationError("pid", pid, "must be a positive integer")
    return pid


def validate_port(port: int) -> int:
    if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= MAX_PORT:
        raise ValidationError("port", port, f"must be an integer between 1 and {MAX_PORT}")
    return port


def resolve_signal(value: Union[str, int, signal_module.Signals]) -> signal_module.Signals:
    """Accept TERM, SIGTERM, 15 or a Signals member."""
    if isinstance(value, signal_module.Signals):
        return value
    try:
        if isinstance(value, int) or str(value).isdigit():
            return signal_module.Signals(int(value))
        name = str(value).upper()
        if not name.startswith("SIG"):
            name = f"SIG{name}"
        return signal_module.Signals[name]
    except (KeyError, ValueError):
        raise ValidationError("signal", value, "unknown signal")


class PortProbe(Protocol):
    def is_free(self, port: int) -> bool:
        ...


class SocketPortProbe:
    """Checks a port by binding a TCP socket to it."""

    def __init__(self, host: str = "0.0.0.0"):
        self.host = host

    def is_free(self, port: int) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            try:
                sock.bind((self.host, port))
            except OSError:
                return False
        return True


class SignalSender(Protocol):
    def send(self, pid: int, sig: signal_module.Signals) -> None:
        """Deliver ``sig`` to ``pid``; raise RemediationError on failure."""
        ...


class PsutilSignalSender:
    """SignalSender backed by psutil."""

    def send(self, pid: int, sig: signal_module.Signals) -> None:
        try:
            psutil.Process(pid).send_signal(sig)
        except psutil.NoSuchProcess as e:
            raise RemediationError(f"Process {pid} does not exist", cause=e)
        except psutil.AccessDenied as e:
            raise RemediationError(f"Not permitted to signal process {pid}", cause=e)
        except OSError as e:
            raise RemediationError(f"Failed to signal process {pid}: {e}", cause=e)


class Remediator:
    """Kill processes, kill whatever holds a port, and find free ports."""

    def __init__(
        self,
        store: SnapshotStore,
        source: TableSource,
        bus: Optional[EventBus] = None,
        port_probe: Optional[PortProbe] = None,
        sender: Optional[SignalSender] = None
    ):
        self.store = store
        self.source = source
        self.bus = bus
        self.port_probe = port_probe or SocketPortProbe()
        self.sender = sender or PsutilSignalSender()

    async def kill_process(
        self,
        pid: int,
        signal: Union[str, int, signal_module.Signals] = "TERM",
        port: Optional[int] = None
    ) -> bool:
        """
        Send a signal to a process.

        Args:
            pid: Target process
            signal: Signal name or number, SIGTERM by default
            port: Port the kill was issued for, recorded on the event

        Returns:
            True if the signal was delivered
        """
        validate_pid(pid)
        sig = resolve_signal(signal)

        try:
            self.sender.send(pid, sig)
            success = True
            logger.info("process_signalled", pid=pid, signal=sig.name, port=port)
        except RemediationError as e:
            success = False
            logger.warning("process_signal_failed", pid=pid, signal=sig.name, error=e.message)

        if self.bus:
            await self.bus.publish(ProcessKilled(pid=pid, signal=sig.name, success=success, port=port))

        return success

    async def owners_of_port(self, port: int) -> List[int]:
        """
        Pids holding ``port`` right now.

        Reads a fresh port table; lsof is consulted when the table has no
        resolvable owner (sockets of other users show no pid without root).
        """
        pids: List[int] = []
        try:
            table = await self.source.ports()
            pids = sorted({
                pid
                for record in table if record.port == port
                for pid in (record.owner_pids or (record.owning_pid,))
                if pid > 0
            })
        except AcquisitionError as e:
            logger.warning("port_owner_lookup_failed", port=port, error=e.message)

        if not pids:
            try:
                pids = await self.source.pids_on_port(port)
            except AcquisitionError as e:
                logger.debug("lsof_lookup_failed", port=port, error=e.message)

        return pids

    async def kill_process_on_port(
        self,
        port: int,
        signal: Union[str, int, signal_module.Signals] = "TERM"
    ) -> bool:
        """
        Signal every process holding ``port``.

        Returns:
            False when no owner resolves (nothing is signalled), otherwise
            True only if every signal was delivered
        """
        validate_port(port)
        pids = await self.owners_of_port(port)

        if not pids:
            logger.info("no_process_on_port", port=port)
            return False

        results = [await self.kill_process(pid, signal, port=port) for pid in pids]
        return all(results)

    def check_port_availability(self, port: int) -> bool:
        """A port is available if the last scan did not see it and it binds now."""
        validate_port(port)
        if self.store.is_port_known(port):
            return False
        return self.port_probe.is_free(port)

    def find_available_port(self, start_port: int = 3000, search_width: int = 100) -> int:
        """
        First available port in ``[start_port, start_port + search_width)``.

        Raises:
            NoAvailablePortError: if every candidate is taken
        """
        validate_port(start_port)
        if search_width < 1:
            raise ValidationError("search_width", search_width, "must be at least 1")

        end = min(start_port + search_width, MAX_PORT + 1)
        for port in range(start_port, end):
            if self.store.is_port_known(port):
                continue
            if self.port_probe.is_free(port):
                logger.debug("available_port_found", port=port)
                return port

        raise NoAvailablePortError(start_port, search_width)

    async def find_process_by_port(self, port: int) -> Optional[PortRecord]:
        """
        Live lookup of the socket on ``port``, the LISTEN one when present.

        Returns:
            PortRecord, or None when nothing holds the port
        """
        validate_port(port)
        table = await self.source.ports()
        matches = [r for r in table if r.port == port]
        if not matches:
            return None
        listening = [r for r in matches if r.state is SocketState.LISTEN]
        return (listening or matches)[0]


__all__ = [
    'Remediator',
    'PortProbe',
    'SocketPortProbe',
    'SignalSender',
    'PsutilSignalSender',
    'resolve_signal',
    'validate_pid',
    'validate_port',
]
