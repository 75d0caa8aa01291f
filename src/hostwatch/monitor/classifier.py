"""
Ghost process classification.

A ghost is a process that is dead or stuck but still occupies a slot in
the process table: a zombie, a process in uninterruptible sleep, an
orphan whose parent is gone, or a process pinning both CPU and memory.
"""

from typing import Optional, Protocol

import psutil

from ..utils.logging import get_logger
from .models import GhostReason, GhostVerdict, ProcessRecord

logger = get_logger(__name__)


class LivenessProbe(Protocol):
    """Live per-pid signals, read at classification time."""

    def status(self, pid: int) -> Optional[str]:
        """psutil status string, "" if unreadable, None if the pid is gone."""
        ...

    def is_alive(self, pid: int) -> bool:
        ...


class PsutilProbe:
    """LivenessProbe backed by psutil."""

    def status(self, pid: int) -> Optional[str]:
        try:
            return psutil.Process(pid).status()
        except psutil.NoSuchProcess:
            return None
        except psutil.AccessDenied:
            return ""

    def is_alive(self, pid: int) -> bool:
        return psutil.pid_exists(pid)


class GhostClassifier:
    """
    Classifies processes as healthy or ghost.

    Rules are checked in order and the first match wins:

    1. live status is zombie or uninterruptible disk sleep
    2. parent pid above 1 that no longer exists (orphaned)
    3. CPU and memory both at or above their thresholds for at least
       ``saturation_cycles`` consecutive scans

    The classifier is stateless. The caller tracks saturation streaks and
    passes the current one in.
    """

    def __init__(
        self,
        probe: Optional[LivenessProbe] = None,
        cpu_threshold: float = 90.0,
        memory_threshold: float = 90.0,
        saturation_cycles: int = 1
    ):
        self.probe = probe or PsutilProbe()
        self.cpu_threshold = cpu_threshold
        self.memory_threshold = memory_threshold
        self.saturation_cycles = saturation_cycles

    def is_saturated(self, process: ProcessRecord) -> bool:
        return (
            process.cpu_percent >= self.cpu_threshold
            and process.memory_percent >= self.memory_threshold
        )

    def classify(self, process: ProcessRecord, saturation_streak: int = 1) -> GhostVerdict:
        """
        Classify one process against live signals.

        Args:
            process: Record from the current scan, not modified
            saturation_streak: Consecutive scans this process has been saturated

        Returns:
            GhostVerdict, healthy when the process vanished before probing
        """
        status = self.probe.status(process.pid)
        if status is None:
            # Gone since the scan; the next cycle reports the termination
            return GhostVerdict.healthy()

        if status == psutil.STATUS_ZOMBIE:
            return GhostVerdict(True, GhostReason.ZOMBIE, "process is a zombie")

        if status == psutil.STATUS_DISK_SLEEP:
            return GhostVerdict(True, GhostReason.UNINTERRUPTIBLE, "uninterruptible disk sleep")

        if process.parent_pid > 1 and not self.probe.is_alive(process.parent_pid):
            return GhostVerdict(
                True,
                GhostReason.ORPHANED,
                f"parent {process.parent_pid} no longer exists"
            )

        if self.is_saturated(process) and saturation_streak >= self.saturation_cycles:
            return GhostVerdict(
                True,
                GhostReason.SATURATED,
                f"cpu {process.cpu_percent:.1f}% and memory "
                f"{process.memory_percent:.1f}% for {saturation_streak} scan(s)"
            )

        return GhostVerdict.healthy()


__all__ = [
    'LivenessProbe',
    'PsutilProbe',
    'GhostClassifier',
]
