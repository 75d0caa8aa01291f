"""
Table parsers for OS introspection output.

Every function here is pure: text in, typed records out. A line that does
not match the expected layout is dropped and counted in
``ParseResult.skipped``; it never fails the whole table.

Supported layouts:

- ``ps -eo user,pid,ppid,pcpu,pmem,stat,args``
- ``ss -tunap`` (with or without the header line)
- ``netstat -tunap`` (Linux net-tools)
- ``lsof -t`` pid lists
"""

import re
from typing import Optional, Tuple

from ..utils.errors import ParseError
from ..utils.logging import get_logger
from .models import (
    ProcessRecord, PortRecord, ProcessStatus, Protocol, SocketState, ParseResult
)

logger = get_logger(__name__)


# user, pid, ppid, %cpu, %mem, stat; the command is everything after
PS_FIXED_COLUMNS = 6

_SS_STATES = {
    "LISTEN": SocketState.LISTEN,
    "UNCONN": SocketState.LISTEN,  # bound UDP socket
    "ESTAB": SocketState.ESTABLISHED,
    "TIME-WAIT": SocketState.TIME_WAIT,
    "CLOSE-WAIT": SocketState.CLOSE_WAIT,
}

_NETSTAT_STATES = {
    "LISTEN": SocketState.LISTEN,
    "ESTABLISHED": SocketState.ESTABLISHED,
    "TIME_WAIT": SocketState.TIME_WAIT,
    "CLOSE_WAIT": SocketState.CLOSE_WAIT,
}

# Any state either tool can print; used to tell a UDP state column from a
# program column in netstat output.
_KNOWN_NETSTAT_STATE_WORDS = set(_NETSTAT_STATES) | {
    "SYN_SENT", "SYN_RECV", "FIN_WAIT1", "FIN_WAIT2", "CLOSE", "LAST_ACK",
    "CLOSING", "UNKNOWN",
}

_SS_PID_RE = re.compile(r"pid=(\d+)")
_SS_NAME_RE = re.compile(r'\(\("([^"]+)"')
_NETSTAT_PROGRAM_RE = re.compile(r"^(\d+)/(.+)$")


def _parse_int(value: str, line: str, what: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ParseError(line, f"invalid {what} '{value}'")


def _parse_float(value: str, line: str, what: str) -> float:
    try:
        return float(value.replace(",", "."))
    except ValueError:
        raise ParseError(line, f"invalid {what} '{value}'")


def _parse_protocol(value: str, line: str) -> Protocol:
    value = value.lower()
    if value.startswith("tcp"):
        return Protocol.TCP
    if value.startswith("udp"):
        return Protocol.UDP
    raise ParseError(line, f"unknown protocol '{value}'")


def split_address(address: str, line: str = "") -> Tuple[str, int]:
    """
    Split ``host:port`` into its parts.

    Handles ``0.0.0.0:80``, ``[::]:80``, ``:::80``, ``*:80`` and scoped
    addresses like ``127.0.0.53%lo:53`` or ``[fe80::1]%eth0:546``.
    """
    if ":" not in address:
        raise ParseError(line or address, f"address without port '{address}'")

    host, _, port_text = address.rpartition(":")
    port = _parse_int(port_text, line or address, "port")
    if not 0 <= port <= 65535:
        raise ParseError(line or address, f"port out of range {port}")

    if "%" in host:
        host = host.split("%", 1)[0]
    host = host.strip("[]")
    return host or "*", port


# Processes

def _is_ps_header(parts) -> bool:
    return len(parts) >= 2 and parts[0].upper() == "USER" and parts[1].upper() == "PID"


def parse_process_line(line: str) -> ProcessRecord:
    """
    Parse one ``ps -eo user,pid,ppid,pcpu,pmem,stat,args`` row.

    Raises:
        ParseError: when the row does not have the expected columns
    """
    parts = line.split(None, PS_FIXED_COLUMNS)
    if len(parts) <= PS_FIXED_COLUMNS:
        raise ParseError(line, f"expected {PS_FIXED_COLUMNS + 1} columns, got {len(parts)}")

    user, pid_text, ppid_text, cpu_text, mem_text, stat, command = parts

    pid = _parse_int(pid_text, line, "pid")
    if pid <= 0:
        raise ParseError(line, f"invalid pid {pid}")

    stat = stat.strip()
    return ProcessRecord(
        pid=pid,
        parent_pid=_parse_int(ppid_text, line, "ppid"),
        user=user,
        command=command.strip(),
        cpu_percent=_parse_float(cpu_text, line, "cpu"),
        memory_percent=_parse_float(mem_text, line, "memory"),
        status=ProcessStatus.ZOMBIE if "Z" in stat else ProcessStatus.RUNNING,
        stat=stat,
    )


def parse_process_table(text: str) -> ParseResult[ProcessRecord]:
    """Parse a full ps table, skipping the header and malformed rows."""
    result: ParseResult[ProcessRecord] = ParseResult()

    for line in text.splitlines():
        if not line.strip():
            continue
        if _is_ps_header(line.split()):
            continue
        try:
            result.records.append(parse_process_line(line))
        except ParseError as e:
            result.skipped += 1
            logger.debug("process_line_skipped", reason=e.reason, line=line)

    return result


# Sockets (ss)

def parse_ss_line(line: str) -> PortRecord:
    """
    Parse one ``ss -tunap`` row.

    The process column is optional; without it the owning pid is 0. A
    socket shared by several processes (prefork workers) lists them all;
    the first becomes ``owning_pid``.
    """
    parts = line.split(None, 6)
    if len(parts) < 6:
        raise ParseError(line, f"expected at least 6 columns, got {len(parts)}")

    netid, state_text, _recv_q, _send_q, local, _peer = parts[:6]
    process_field = parts[6] if len(parts) > 6 else ""

    protocol = _parse_protocol(netid, line)
    state = _SS_STATES.get(state_text.upper())
    if state is None:
        raise ParseError(line, f"untracked socket state '{state_text}'")

    bind_address, port = split_address(local, line)

    pids = tuple(int(pid) for pid in _SS_PID_RE.findall(process_field))
    name_match = _SS_NAME_RE.search(process_field)

    return PortRecord(
        port=port,
        protocol=protocol,
        state=state,
        owning_pid=pids[0] if pids else 0,
        process_name=name_match.group(1) if name_match else "",
        bind_address=bind_address,
        owner_pids=pids,
    )


def parse_ss_table(text: str) -> ParseResult[PortRecord]:
    """Parse a full ss table."""
    result: ParseResult[PortRecord] = ParseResult()

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("Netid"):
            continue
        try:
            result.records.append(parse_ss_line(line))
        except ParseError as e:
            result.skipped += 1
            logger.debug("socket_line_skipped", tool="ss", reason=e.reason, line=line)

    return result


# Sockets (netstat)

def parse_netstat_line(line: str) -> PortRecord:
    """
    Parse one ``netstat -tunap`` row.

    UDP rows usually have no state column; a bound UDP socket is reported as
    LISTEN. A ``-`` program column means the owner could not be resolved.
    """
    parts = line.split()
    if len(parts) < 5:
        raise ParseError(line, f"expected at least 5 columns, got {len(parts)}")

    protocol = _parse_protocol(parts[0], line)
    bind_address, port = split_address(parts[3], line)
    rest = parts[5:]

    if rest and rest[0].upper() in _KNOWN_NETSTAT_STATE_WORDS:
        state_text, program_parts = rest[0].upper(), rest[1:]
    elif protocol is Protocol.UDP:
        state_text, program_parts = "LISTEN", rest
    else:
        raise ParseError(line, "missing socket state")

    state = _NETSTAT_STATES.get(state_text)
    if state is None:
        raise ParseError(line, f"untracked socket state '{state_text}'")

    owning_pid, process_name = 0, ""
    program = " ".join(program_parts)
    match = _NETSTAT_PROGRAM_RE.match(program)
    if match:
        owning_pid = int(match.group(1))
        process_name = match.group(2).split()[0].rstrip(":")

    return PortRecord(
        port=port,
        protocol=protocol,
        state=state,
        owning_pid=owning_pid,
        process_name=process_name,
        bind_address=bind_address,
        owner_pids=(owning_pid,) if owning_pid else (),
    )


def parse_netstat_table(text: str) -> ParseResult[PortRecord]:
    """Parse a full netstat table."""
    result: ParseResult[PortRecord] = ParseResult()

    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("Active", "Proto")):
            continue
        try:
            result.records.append(parse_netstat_line(line))
        except ParseError as e:
            result.skipped += 1
            logger.debug("socket_line_skipped", tool="netstat", reason=e.reason, line=line)

    return result


# Pid lists (lsof -t, pgrep)

def parse_pid_list(text: str) -> ParseResult[int]:
    """Parse one pid per line."""
    result: ParseResult[int] = ParseResult()

    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.isdigit() and int(line) > 0:
            result.records.append(int(line))
        else:
            result.skipped += 1

    return result


def parse_port_argument(value: str) -> Optional[int]:
    """Parse a user supplied port number, None when it is not a valid port."""
    try:
        port = int(value)
    except (TypeError, ValueError):
        return None
    return port if 1 <= port <= 65535 else None
