"""
Monitor engine.

The engine is an explicit object that owns the store, the event bus, the
classifier, the remediator and the scan cycle. Everything it depends on
can be injected, so tests build engines over canned tables and fake
probes. Collaborators talk to the engine; none of them touch the store.
"""

import signal as signal_module
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..utils.config import HostwatchConfig
from ..utils.errors import RemediationError, ValidationError, error_context
from ..utils.logging import get_logger, log_function_call
from ..utils.notifications import EventBus, Subscription
from .acquisition import CommandRunner, SystemTableSource, TableSource
from .classifier import GhostClassifier, LivenessProbe
from .collaborators import (
    ApplicationRegistry, ConfigApplicationRegistry, ConfigSettingsProvider, SettingsProvider
)
from .events import MonitorEventKind
from .models import PortRecord, ProcessRecord
from .remediator import PortProbe, Remediator, SignalSender, validate_pid, validate_port
from .scanner import ScanCycle, ScanReport, ScanState
from .store import SnapshotStore

logger = get_logger("hostwatch.monitor")

# Range reported by get_port_usage()
USAGE_RANGE_START = 3000
USAGE_RANGE_WIDTH = 100
USAGE_MAX_AVAILABLE = 50


@dataclass
class PortUsage:
    """Ports in use, free ports in the default range and declared conflicts."""
    used: List[int] = field(default_factory=list)
    available: List[int] = field(default_factory=list)
    conflicts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used": self.used,
            "available": self.available,
            "conflicts": self.conflicts,
        }


class MonitorEngine:
    """Process and port monitoring engine."""

    def __init__(
        self,
        config: Optional[HostwatchConfig] = None,
        source: Optional[TableSource] = None,
        probe: Optional[LivenessProbe] = None,
        port_probe: Optional[PortProbe] = None,
        sender: Optional[SignalSender] = None,
        settings: Optional[SettingsProvider] = None,
        registry: Optional[ApplicationRegistry] = None,
        bus: Optional[EventBus] = None
    ):
        self.config = config or HostwatchConfig()
        monitor = self.config.monitor

        self.store = SnapshotStore()
        self.bus = bus or EventBus()
        self.source = source or SystemTableSource(CommandRunner(timeout=monitor.command_timeout))
        self.settings = settings or ConfigSettingsProvider(lambda: self.config)
        self.registry = registry or ConfigApplicationRegistry(lambda: self.config)

        self.classifier = GhostClassifier(
            probe=probe,
            cpu_threshold=monitor.cpu_threshold,
            memory_threshold=monitor.memory_threshold,
            saturation_cycles=monitor.saturation_cycles
        )
        self.remediator = Remediator(
            store=self.store,
            source=self.source,
            bus=self.bus,
            port_probe=port_probe,
            sender=sender
        )
        self.scanner = ScanCycle(
            store=self.store,
            source=self.source,
            classifier=self.classifier,
            bus=self.bus,
            settings=self.settings,
            registry=self.registry,
            remediator=self.remediator,
            watched_ports=monitor.watched_ports
        )
        # watched ports that came from configuration, not from watch_port()
        self._config_watched: Set[int] = set(monitor.watched_ports)
        self._runtime_watched: Set[int] = set()

    # Configuration

    def apply_config(self, config: HostwatchConfig) -> None:
        """
        Apply a reloaded configuration.

        Settings read through the provider change on the next scan;
        classifier thresholds are updated in place.
        """
        self.config = config
        monitor = config.monitor
        self.classifier.cpu_threshold = monitor.cpu_threshold
        self.classifier.memory_threshold = monitor.memory_threshold
        self.classifier.saturation_cycles = monitor.saturation_cycles
        if isinstance(self.source, SystemTableSource):
            self.source.runner.timeout = monitor.command_timeout
        self._sync_watched_ports(monitor.watched_ports)
        logger.info("engine_config_applied", check_frequency=monitor.check_frequency)

    def _sync_watched_ports(self, ports: Iterable[int]) -> None:
        configured = set(ports)
        for port in self._config_watched - configured - self._runtime_watched:
            self.scanner.unwatch_port(port)
        for port in configured:
            self.scanner.watch_port(port)
        self._config_watched = configured

    # Lifecycle

    @property
    def is_monitoring(self) -> bool:
        return self.scanner.is_running

    @property
    def scan_state(self) -> ScanState:
        return self.scanner.state

    async def start(self) -> None:
        await self.scanner.start()

    async def stop(self) -> None:
        await self.scanner.stop()

    async def scan_once(self) -> Optional[ScanReport]:
        return await self.scanner.scan_once()

    async def shutdown(self) -> None:
        await self.stop()
        await self.bus.shutdown()

    async def __aenter__(self) -> "MonitorEngine":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # Events

    def subscribe(
        self,
        handler: Callable,
        kinds: Optional[Union[MonitorEventKind, Iterable[MonitorEventKind]]] = None,
        filter_func: Optional[Callable] = None
    ) -> Subscription:
        return self.bus.subscribe(handler, kinds=kinds, filter_func=filter_func)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.bus.unsubscribe(subscription)

    # Processes

    def list_processes(self) -> List[ProcessRecord]:
        return sorted(self.store.processes(), key=lambda p: p.pid)

    def get_process(self, pid: int) -> Optional[ProcessRecord]:
        validate_pid(pid)
        return self.store.process(pid)

    @log_function_call(logger)
    async def kill_process(
        self,
        pid: int,
        signal: Union[str, int, signal_module.Signals] = "TERM"
    ) -> bool:
        return await self.remediator.kill_process(pid, signal)

    @log_function_call(logger)
    async def terminate_ghost_processes(self, app_id: str) -> List[int]:
        """
        Classify the processes holding a tracked application's ports and
        signal the ghosts among them.

        Raises:
            ValidationError: unknown application
            RemediationError: ghost detection is disabled for the application

        Returns:
            Pids that were signalled successfully
        """
        app = self.registry.get_application(app_id)
        if app is None:
            raise ValidationError("app_id", app_id, "unknown application")
        if not app.ghost_detection:
            raise RemediationError(f"Ghost detection is not enabled for application {app_id}")

        pids = sorted({
            record.owning_pid
            for port in app.ports
            for record in self.store.ports_numbered(port)
            if record.owning_pid > 0
        })

        terminated: List[int] = []
        with error_context("monitor_engine", "terminate_ghost_processes", application_id=app_id):
            for pid in pids:
                process = self.store.process(pid)
                if process is None:
                    continue
                streak = self.scanner.saturation_streak(pid)
                verdict = self.classifier.classify(process, streak)
                if verdict.is_ghost and await self.remediator.kill_process(pid):
                    terminated.append(pid)

        logger.info(
            "ghost_processes_terminated",
            application_id=app_id,
            candidates=len(pids),
            terminated=len(terminated)
        )
        return terminated

    # Ports

    def list_ports(self, app_id: Optional[str] = None) -> List[PortRecord]:
        """
        Cached port table, optionally limited to one tracked application's ports.

        Raises:
            ValidationError: unknown application
        """
        ports = self.store.ports()
        if app_id is not None:
            app = self.registry.get_application(app_id)
            if app is None:
                raise ValidationError("app_id", app_id, "unknown application")
            ports = [p for p in ports if p.port in app.ports]
        return sorted(ports, key=lambda p: (p.port, p.protocol.value))

    def check_port_availability(self, port: int) -> bool:
        return self.remediator.check_port_availability(port)

    @log_function_call(logger)
    async def kill_process_on_port(self, port: int) -> bool:
        return await self.remediator.kill_process_on_port(port)

    def find_available_port(
        self,
        start_port: Optional[int] = None,
        search_width: Optional[int] = None
    ) -> int:
        monitor = self.config.monitor
        return self.remediator.find_available_port(
            start_port if start_port is not None else monitor.port_search_start,
            search_width if search_width is not None else monitor.port_search_width
        )

    async def find_process_by_port(self, port: int) -> Optional[PortRecord]:
        return await self.remediator.find_process_by_port(port)

    def get_port_usage(self) -> PortUsage:
        """
        Summary of port usage.

        ``available`` lists up to 50 free ports in 3000-3099. ``conflicts``
        lists ports declared by more than one tracked application.
        """
        usage = PortUsage(used=sorted({p.port for p in self.store.ports()}))

        for port in range(USAGE_RANGE_START, USAGE_RANGE_START + USAGE_RANGE_WIDTH):
            if len(usage.available) >= USAGE_MAX_AVAILABLE:
                break
            if self.remediator.check_port_availability(port):
                usage.available.append(port)

        declared: Dict[int, List[str]] = {}
        for app in self.registry.applications():
            for port in app.ports:
                declared.setdefault(port, []).append(app.id)

        usage.conflicts = [
            {"port": port, "applications": apps, "in_use": self.store.is_port_known(port)}
            for port, apps in sorted(declared.items())
            if len(apps) > 1
        ]
        return usage

    # Watched ports

    def watch_port(self, port: int) -> None:
        validate_port(port)
        self._runtime_watched.add(port)
        self.scanner.watch_port(port)

    def unwatch_port(self, port: int) -> bool:
        self._runtime_watched.discard(port)
        self._config_watched.discard(port)
        return self.scanner.unwatch_port(port)

    def watched_ports(self) -> List[int]:
        return self.scanner.watched_ports()


__all__ = [
    'MonitorEngine',
    'PortUsage',
]
