"""
Record types for the process and port monitor.
"""

from dataclasses import dataclass, field, replace, asdict
from enum import Enum
from typing import Optional, Dict, Any, Tuple, List, Generic, TypeVar


T = TypeVar("T")


class ProcessStatus(str, Enum):
    """Observed status of a process."""
    RUNNING = "running"
    ZOMBIE = "zombie"
    ORPHANED = "orphaned"
    LISTENING = "listening"


class Protocol(str, Enum):
    """Socket protocol."""
    TCP = "tcp"
    UDP = "udp"


class SocketState(str, Enum):
    """Socket states tracked by the monitor."""
    LISTEN = "LISTEN"
    ESTABLISHED = "ESTABLISHED"
    TIME_WAIT = "TIME_WAIT"
    CLOSE_WAIT = "CLOSE_WAIT"


class GhostReason(str, Enum):
    """Why a process was classified as a ghost."""
    ZOMBIE = "zombie"
    UNINTERRUPTIBLE = "uninterruptible"
    ORPHANED = "orphaned"
    SATURATED = "saturated"


PortKey = Tuple[int, Protocol]


@dataclass
class ProcessRecord:
    """One observed OS process."""
    pid: int
    parent_pid: int
    user: str
    command: str
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    status: ProcessStatus = ProcessStatus.RUNNING
    stat: str = ""
    associated_port: Optional[int] = None

    def snapshot(self) -> "ProcessRecord":
        """Detached copy safe to hand to other components."""
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class PortRecord:
    """One observed socket, keyed by (port, protocol)."""
    port: int
    protocol: Protocol
    state: SocketState
    owning_pid: int = 0
    process_name: str = ""
    bind_address: str = ""
    # every pid sharing the socket, owning_pid first
    owner_pids: Tuple[int, ...] = ()

    @property
    def key(self) -> PortKey:
        return (self.port, self.protocol)

    def snapshot(self) -> "PortRecord":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "port": self.port,
            "protocol": self.protocol.value,
            "state": self.state.value,
            "owning_pid": self.owning_pid,
            "process_name": self.process_name,
            "bind_address": self.bind_address,
            "owner_pids": list(self.owner_pids),
        }


@dataclass(frozen=True)
class GhostVerdict:
    """Result of classifying one process. Computed fresh every cycle."""
    is_ghost: bool
    reason: Optional[GhostReason] = None
    detail: str = ""

    @classmethod
    def healthy(cls) -> "GhostVerdict":
        return cls(is_ghost=False)


@dataclass
class ParseResult(Generic[T]):
    """Records parsed from one command output, plus the count of dropped lines."""
    records: List[T] = field(default_factory=list)
    skipped: int = 0

    def __iter__(self):
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)
