"""
Acquisition of the raw process and socket tables.

Runs the OS introspection tools asynchronously with a bounded timeout and
hands their output to the table parsers. A failed invocation raises
AcquisitionError; it never returns a partial table.
"""

import asyncio
import os
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from ..utils.errors import AcquisitionError
from ..utils.logging import get_logger
from .models import ProcessRecord, PortRecord, ParseResult
from .parsers import (
    parse_process_table, parse_ss_table, parse_netstat_table, parse_pid_list
)

logger = get_logger(__name__)


PS_COMMAND = ("ps", "-eo", "user,pid,ppid,pcpu,pmem,stat,args")
SS_COMMAND = ("ss", "-tunap")
NETSTAT_COMMAND = ("netstat", "-tunap")

# Parsers expect "." decimals and untranslated headers
_COMMAND_ENV = {"LC_ALL": "C", "LANG": "C"}


class TableSource(Protocol):
    """Anything that can produce fresh process and port tables."""

    async def processes(self) -> ParseResult[ProcessRecord]:
        ...

    async def ports(self) -> ParseResult[PortRecord]:
        ...

    async def pids_on_port(self, port: int) -> List[int]:
        ...


class CommandRunner:
    """Runs a command and returns its stdout, or raises AcquisitionError."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    async def run(
        self,
        argv: Sequence[str],
        ok_codes: Tuple[int, ...] = (0,),
        timeout: Optional[float] = None
    ) -> str:
        command = " ".join(argv)
        timeout = timeout or self.timeout
        env = {**os.environ, **_COMMAND_ENV}

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env
            )
        except FileNotFoundError:
            raise AcquisitionError(command, "command not found")
        except PermissionError:
            raise AcquisitionError(command, "permission denied")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise AcquisitionError(command, f"timed out after {timeout}s")

        if process.returncode not in ok_codes:
            reason = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise AcquisitionError(command, reason)

        return stdout.decode(errors="replace")


class SystemTableSource:
    """
    Table source backed by ps, ss/netstat and lsof.

    Port tables come from ss when available and fall back to netstat. The
    tool that last succeeded is tried first on the next call.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()
        self._port_commands: List[Tuple[Tuple[str, ...], object]] = [
            (SS_COMMAND, parse_ss_table),
            (NETSTAT_COMMAND, parse_netstat_table),
        ]

    async def processes(self) -> ParseResult[ProcessRecord]:
        output = await self.runner.run(PS_COMMAND)
        result = parse_process_table(output)
        logger.debug("process_table_acquired", records=len(result), skipped=result.skipped)
        return result

    async def ports(self) -> ParseResult[PortRecord]:
        failures: Dict[str, str] = {}

        for index, (argv, parser) in enumerate(self._port_commands):
            try:
                output = await self.runner.run(argv)
            except AcquisitionError as e:
                failures[argv[0]] = e.reason
                logger.debug("port_tool_failed", tool=argv[0], reason=e.reason)
                continue

            if index:
                # Remember the working tool
                self._port_commands.insert(0, self._port_commands.pop(index))

            result = parser(output)
            logger.debug(
                "port_table_acquired",
                tool=argv[0],
                records=len(result),
                skipped=result.skipped
            )
            return result

        raise AcquisitionError(
            " | ".join(" ".join(argv) for argv, _ in self._port_commands),
            "; ".join(f"{tool}: {reason}" for tool, reason in failures.items())
        )

    async def pids_on_port(self, port: int) -> List[int]:
        """Pids holding ``port`` according to lsof. lsof exits 1 when none do."""
        output = await self.runner.run(("lsof", "-t", f"-i:{port}"), ok_codes=(0, 1))
        return sorted(set(parse_pid_list(output).records))


__all__ = [
    'TableSource',
    'CommandRunner',
    'SystemTableSource',
    'PS_COMMAND',
    'SS_COMMAND',
    'NETSTAT_COMMAND',
]
