"""
Tests for remediation: signalling processes and finding free ports.
"""

import signal
import socket

import pytest

from hostwatch.monitor.events import MonitorEventKind
from hostwatch.monitor.models import SocketState
from hostwatch.monitor.parsers import parse_ss_line
from hostwatch.monitor.remediator import (
    Remediator, SocketPortProbe, resolve_signal, validate_pid, validate_port
)
from hostwatch.monitor.store import SnapshotStore
from hostwatch.utils.errors import AcquisitionError, NoAvailablePortError, ValidationError

from tests.fixtures import MonitorFixtures, FakeTableSource


PORT = MonitorFixtures.port


@pytest.fixture
def store() -> SnapshotStore:
    return SnapshotStore()


@pytest.fixture
def remediator(store, source, bus, port_probe, sender) -> Remediator:
    return Remediator(store=store, source=source, bus=bus, port_probe=port_probe, sender=sender)


class TestSignalResolution:
    """Test signal name and number handling."""

    @pytest.mark.parametrize("value", ["TERM", "term", "SIGTERM", 15, "15", signal.SIGTERM])
    def test_term_spellings(self, value):
        assert resolve_signal(value) == signal.SIGTERM

    def test_kill(self):
        assert resolve_signal("KILL") == signal.SIGKILL

    @pytest.mark.parametrize("value", ["NOPE", 999, "SIGWHATEVER"])
    def test_unknown_signal(self, value):
        with pytest.raises(ValidationError):
            resolve_signal(value)


class TestValidation:
    """Test argument validation."""

    @pytest.mark.parametrize("pid", [0, -1, "500", True, None])
    def test_invalid_pid(self, pid):
        with pytest.raises(ValidationError):
            validate_pid(pid)

    @pytest.mark.parametrize("port", [0, 65536, -80, "8080", False])
    def test_invalid_port(self, port):
        with pytest.raises(ValidationError):
            validate_port(port)

    def test_valid_values(self):
        assert validate_pid(1) == 1
        assert validate_port(65535) == 65535


class TestKillProcess:
    """Test kill_process."""

    @pytest.mark.asyncio
    async def test_success_publishes_event(self, remediator, sender, recorder):
        assert await remediator.kill_process(500)

        assert sender.sent == [(500, signal.SIGTERM)]
        event = recorder.of(MonitorEventKind.PROCESS_KILLED)[0]
        assert event.pid == 500
        assert event.signal == "SIGTERM"
        assert event.success
        assert event.port is None

    @pytest.mark.asyncio
    async def test_failure_returns_false(self, remediator, sender, recorder):
        sender.fail.add(500)

        assert not await remediator.kill_process(500, "KILL")

        event = recorder.of(MonitorEventKind.PROCESS_KILLED)[0]
        assert not event.success
        assert event.signal == "SIGKILL"

    @pytest.mark.asyncio
    async def test_invalid_pid_raises(self, remediator, sender):
        with pytest.raises(ValidationError):
            await remediator.kill_process(0)

        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_bad_signal_raises(self, remediator, sender):
        with pytest.raises(ValidationError):
            await remediator.kill_process(500, "BOGUS")

        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_without_bus(self, store, source, sender):
        remediator = Remediator(store=store, source=source, sender=sender)

        assert await remediator.kill_process(500)


class TestKillProcessOnPort:
    """Test kill_process_on_port."""

    @pytest.mark.asyncio
    async def test_nothing_bound(self, remediator, source, sender):
        source.port_rows = []

        assert not await remediator.kill_process_on_port(8080)

        assert sender.sent == []

    @pytest.mark.asyncio
    async def test_single_owner(self, remediator, sender, recorder):
        assert await remediator.kill_process_on_port(8080)

        assert sender.pids == [500]
        assert recorder.of(MonitorEventKind.PROCESS_KILLED)[0].port == 8080

    @pytest.mark.asyncio
    async def test_every_owner_is_signalled(self, remediator, source, sender):
        source.port_rows.append(PORT(8080, pid=501, state=SocketState.ESTABLISHED))

        assert await remediator.kill_process_on_port(8080)

        assert sender.pids == [500, 501]

    @pytest.mark.asyncio
    async def test_shared_socket_signals_every_worker(self, remediator, source, sender):
        source.port_rows = [parse_ss_line(
            'tcp LISTEN 0 511 0.0.0.0:80 0.0.0.0:* '
            'users:(("nginx",pid=101,fd=6),("nginx",pid=100,fd=6))'
        )]
        source.lsof_pids[80] = [4321]

        assert await remediator.kill_process_on_port(80)

        assert sender.pids == [100, 101]

    @pytest.mark.asyncio
    async def test_one_failure_fails_the_call(self, remediator, source, sender):
        source.port_rows.append(PORT(8080, pid=501, state=SocketState.ESTABLISHED))
        sender.fail.add(501)

        assert not await remediator.kill_process_on_port(8080)

        assert sender.pids == [500]

    @pytest.mark.asyncio
    async def test_lsof_fallback(self, remediator, source, sender):
        source.port_rows = [PORT(8080, pid=0)]
        source.lsof_pids[8080] = [4321]

        assert await remediator.kill_process_on_port(8080)

        assert sender.pids == [4321]

    @pytest.mark.asyncio
    async def test_reads_live_table_not_cache(self, remediator, store, source, sender):
        store.reconcile_ports([PORT(8080, pid=999)])

        await remediator.kill_process_on_port(8080)

        assert sender.pids == [500]

    @pytest.mark.asyncio
    async def test_table_failure_falls_back_to_lsof(self, remediator, source, sender):
        source.port_error = AcquisitionError("ss -tunap", "command not found")
        source.lsof_pids[8080] = [777]

        assert await remediator.kill_process_on_port(8080)

        assert sender.pids == [777]

    @pytest.mark.asyncio
    async def test_invalid_port(self, remediator):
        with pytest.raises(ValidationError):
            await remediator.kill_process_on_port(70000)


class TestPortSearch:
    """Test availability checks and free port search."""

    def test_cached_port_is_unavailable(self, remediator, store, port_probe):
        store.reconcile_ports([PORT(3000, pid=500)])

        assert not remediator.check_port_availability(3000)
        assert port_probe.checked == []

    def test_bindable_port_is_available(self, remediator, port_probe):
        assert remediator.check_port_availability(3000)
        assert port_probe.checked == [3000]

    def test_busy_port_is_unavailable(self, remediator, port_probe):
        port_probe.busy.add(3000)

        assert not remediator.check_port_availability(3000)

    def test_find_skips_cached_and_busy(self, remediator, store, port_probe):
        store.reconcile_ports([PORT(3001, pid=500)])
        port_probe.busy.add(3000)

        assert remediator.find_available_port(3000, 10) == 3002
        assert 3001 not in port_probe.checked

    def test_find_exhausted(self, remediator, port_probe):
        port_probe.busy.update(range(3000, 3005))

        with pytest.raises(NoAvailablePortError) as exc_info:
            remediator.find_available_port(3000, 5)

        assert exc_info.value.start_port == 3000
        assert port_probe.checked == [3000, 3001, 3002, 3003, 3004]

    def test_search_stops_at_last_port(self, remediator, port_probe):
        port_probe.busy.update(range(65530, 65536))

        with pytest.raises(NoAvailablePortError):
            remediator.find_available_port(65530, 100)

        assert max(port_probe.checked) == 65535

    def test_invalid_width(self, remediator):
        with pytest.raises(ValidationError):
            remediator.find_available_port(3000, 0)


class TestFindProcessByPort:
    """Test find_process_by_port."""

    @pytest.mark.asyncio
    async def test_prefers_listen_row(self, remediator, source):
        source.port_rows = [
            PORT(8080, pid=9, state=SocketState.ESTABLISHED),
            PORT(8080, pid=500),
        ]

        record = await remediator.find_process_by_port(8080)

        assert record.owning_pid == 500

    @pytest.mark.asyncio
    async def test_non_listen_row(self, remediator, source):
        source.port_rows = [PORT(41000, pid=9, state=SocketState.TIME_WAIT)]

        record = await remediator.find_process_by_port(41000)

        assert record.state == SocketState.TIME_WAIT

    @pytest.mark.asyncio
    async def test_nothing_found(self, remediator):
        assert await remediator.find_process_by_port(5555) is None

    @pytest.mark.asyncio
    async def test_acquisition_error_propagates(self):
        source = FakeTableSource()
        source.port_error = AcquisitionError("ss -tunap", "boom")
        remediator = Remediator(store=SnapshotStore(), source=source)

        with pytest.raises(AcquisitionError):
            await remediator.find_process_by_port(8080)


class TestSocketPortProbe:
    """Test the bind probe against real sockets on loopback."""

    def test_listening_port_is_busy(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            server.listen(1)
            port = server.getsockname()[1]

            assert not SocketPortProbe(host="127.0.0.1").is_free(port)

    def test_released_port_is_free(self):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as server:
            server.bind(("127.0.0.1", 0))
            port = server.getsockname()[1]

        assert SocketPortProbe(host="127.0.0.1").is_free(port)
