"""
Tests for the ps, ss, netstat and lsof table parsers.
"""

import pytest

from hostwatch.monitor.models import ProcessStatus, Protocol, SocketState
from hostwatch.monitor.parsers import (
    parse_process_line, parse_process_table,
    parse_ss_line, parse_ss_table,
    parse_netstat_line, parse_netstat_table,
    parse_pid_list, parse_port_argument, split_address,
)
from hostwatch.monitor.store import collapse_ports
from hostwatch.utils.errors import ParseError

from tests.fixtures import PS_OUTPUT, SS_OUTPUT, NETSTAT_OUTPUT


class TestProcessParser:
    """Test ps -eo user,pid,ppid,pcpu,pmem,stat,args parsing."""

    def test_parse_basic_line(self):
        record = parse_process_line("www   500   1  2.5  1.2 Sl   node /srv/app/server.js --port 8080")

        assert record.pid == 500
        assert record.parent_pid == 1
        assert record.user == "www"
        assert record.cpu_percent == 2.5
        assert record.memory_percent == 1.2
        assert record.stat == "Sl"
        assert record.status == ProcessStatus.RUNNING
        assert record.command == "node /srv/app/server.js --port 8080"
        assert record.associated_port is None

    def test_command_keeps_everything_after_sixth_column(self):
        record = parse_process_line("bob 900 4242 95.0 95.5 R+   python   train.py   --epochs 10")

        assert record.command == "python   train.py   --epochs 10"

    def test_zombie_stat_sets_status(self):
        record = parse_process_line("alice 812 500 0.0 0.0 Z [worker] <defunct>")

        assert record.status == ProcessStatus.ZOMBIE

    def test_zombie_with_modifiers(self):
        record = parse_process_line("alice 813 500 0.0 0.0 Z+ [worker] <defunct>")

        assert record.status == ProcessStatus.ZOMBIE

    def test_decimal_comma(self):
        record = parse_process_line("root 10 1 1,5 0,3 S cron")

        assert record.cpu_percent == 1.5
        assert record.memory_percent == 0.3

    def test_missing_command_is_error(self):
        with pytest.raises(ParseError):
            parse_process_line("root 1 0 0.0 0.1 Ss")

    @pytest.mark.parametrize("line", [
        "root abc 0 0.0 0.1 Ss init",
        "root 1 x 0.0 0.1 Ss init",
        "root 1 0 high 0.1 Ss init",
        "root 0 0 0.0 0.1 Ss init",
        "root -4 0 0.0 0.1 Ss init",
    ])
    def test_invalid_columns_are_errors(self, line):
        with pytest.raises(ParseError) as exc_info:
            parse_process_line(line)

        assert exc_info.value.line == line

    def test_parse_table(self):
        result = parse_process_table(PS_OUTPUT)

        assert [r.pid for r in result] == [1, 500, 812, 900, 650]
        assert result.skipped == 1  # "garbage line"; the header is not counted

    def test_table_without_header(self):
        result = parse_process_table("root 1 0 0.0 0.1 Ss /sbin/init\n")

        assert len(result) == 1
        assert result.skipped == 0

    def test_empty_output(self):
        result = parse_process_table("")

        assert len(result) == 0
        assert result.skipped == 0

    def test_bad_line_does_not_abort_table(self):
        text = "root 1 0 0.0 0.1 Ss init\n???\nwww 2 1 0.0 0.1 S nginx\n"

        result = parse_process_table(text)

        assert [r.pid for r in result] == [1, 2]
        assert result.skipped == 1


class TestSsParser:
    """Test ss -tunap parsing."""

    def test_tcp_listen_with_process(self):
        record = parse_ss_line(
            'tcp   LISTEN 0 511 0.0.0.0:8080 0.0.0.0:* users:(("node",pid=500,fd=20))'
        )

        assert record.port == 8080
        assert record.protocol == Protocol.TCP
        assert record.state == SocketState.LISTEN
        assert record.owning_pid == 500
        assert record.process_name == "node"
        assert record.bind_address == "0.0.0.0"

    def test_udp_unconn_is_listen(self):
        record = parse_ss_line(
            'udp UNCONN 0 0 127.0.0.53%lo:53 0.0.0.0:* users:(("systemd-resolve",pid=650,fd=13))'
        )

        assert record.protocol == Protocol.UDP
        assert record.state == SocketState.LISTEN
        assert record.bind_address == "127.0.0.53"
        assert record.port == 53

    def test_ipv6_address(self):
        record = parse_ss_line('tcp LISTEN 0 4096 [::]:22 [::]:* users:(("sshd",pid=700,fd=4))')

        assert record.bind_address == "::"
        assert record.port == 22
        assert record.protocol == Protocol.TCP

    def test_missing_process_column(self):
        record = parse_ss_line("tcp TIME-WAIT 0 0 10.0.0.5:41000 10.0.0.9:443")

        assert record.state == SocketState.TIME_WAIT
        assert record.owning_pid == 0
        assert record.process_name == ""
        assert record.owner_pids == ()

    def test_shared_socket_keeps_every_pid(self):
        record = parse_ss_line(
            'tcp LISTEN 0 511 0.0.0.0:80 0.0.0.0:* '
            'users:(("nginx",pid=101,fd=6),("nginx",pid=100,fd=6))'
        )

        assert record.owning_pid == 101
        assert record.owner_pids == (101, 100)
        assert record.process_name == "nginx"
        assert record.to_dict()["owner_pids"] == [101, 100]

    def test_scoped_ipv6_address(self):
        record = parse_ss_line(
            'udp UNCONN 0 0 [fe80::1]%eth0:546 [::]:* users:(("dhclient",pid=9,fd=6))'
        )

        assert record.bind_address == "fe80::1"
        assert record.port == 546

    @pytest.mark.parametrize("state,expected", [
        ("ESTAB", SocketState.ESTABLISHED),
        ("CLOSE-WAIT", SocketState.CLOSE_WAIT),
        ("TIME-WAIT", SocketState.TIME_WAIT),
    ])
    def test_state_mapping(self, state, expected):
        record = parse_ss_line(f"tcp {state} 0 0 10.0.0.5:8080 10.0.0.9:51234")

        assert record.state == expected

    @pytest.mark.parametrize("state", ["SYN-SENT", "FIN-WAIT-1", "LAST-ACK"])
    def test_untracked_states_are_errors(self, state):
        with pytest.raises(ParseError):
            parse_ss_line(f"tcp {state} 0 1 10.0.0.5:41002 10.0.0.9:443")

    def test_unknown_protocol_is_error(self):
        with pytest.raises(ParseError):
            parse_ss_line("u_str ESTAB 0 0 /run/systemd/journal 1234 * 5678")

    def test_parse_table(self):
        result = parse_ss_table(SS_OUTPUT)

        assert len(result) == 5
        assert result.skipped == 1  # SYN-SENT

    def test_table_collapses_to_listen_row(self):
        ports = collapse_ports(parse_ss_table(SS_OUTPUT).records)

        assert set(ports) == {
            (8080, Protocol.TCP),
            (22, Protocol.TCP),
            (53, Protocol.UDP),
            (41000, Protocol.TCP),
        }
        assert ports[(8080, Protocol.TCP)].state == SocketState.LISTEN


class TestNetstatParser:
    """Test netstat -tunap parsing."""

    def test_tcp_listen_with_program(self):
        record = parse_netstat_line(
            "tcp 0 0 0.0.0.0:22 0.0.0.0:* LISTEN 700/sshd: /usr/sbin"
        )

        assert record.port == 22
        assert record.state == SocketState.LISTEN
        assert record.owning_pid == 700
        assert record.process_name == "sshd"
        assert record.owner_pids == (700,)

    def test_unresolved_program(self):
        record = parse_netstat_line("tcp 0 0 127.0.0.1:5432 0.0.0.0:* LISTEN -")

        assert record.owning_pid == 0
        assert record.process_name == ""

    def test_tcp6_folds_into_tcp(self):
        record = parse_netstat_line("tcp6 0 0 :::8080 :::* LISTEN 500/node")

        assert record.protocol == Protocol.TCP
        assert record.bind_address == "::"
        assert record.port == 8080

    def test_udp_without_state(self):
        record = parse_netstat_line("udp 0 0 0.0.0.0:68 0.0.0.0:* 640/dhclient")

        assert record.protocol == Protocol.UDP
        assert record.state == SocketState.LISTEN
        assert record.owning_pid == 640
        assert record.process_name == "dhclient"

    def test_udp_without_state_or_program(self):
        record = parse_netstat_line("udp6 0 0 :::5353 :::*")

        assert record.protocol == Protocol.UDP
        assert record.state == SocketState.LISTEN
        assert record.owning_pid == 0

    def test_tcp_without_state_is_error(self):
        with pytest.raises(ParseError):
            parse_netstat_line("tcp 0 0 0.0.0.0:22 0.0.0.0:*")

    def test_untracked_state_is_error(self):
        with pytest.raises(ParseError):
            parse_netstat_line("tcp 0 1 10.0.0.5:41002 10.0.0.9:443 SYN_SENT 900/curl")

    def test_parse_table(self):
        result = parse_netstat_table(NETSTAT_OUTPUT)

        assert len(result) == 5
        assert result.skipped == 1

        ports = collapse_ports(result.records)
        assert ports[(22, Protocol.TCP)].owning_pid == 700
        assert ports[(22, Protocol.TCP)].state == SocketState.LISTEN
        assert (68, Protocol.UDP) in ports


class TestAddressSplitting:
    """Test host:port splitting."""

    @pytest.mark.parametrize("address,expected", [
        ("0.0.0.0:80", ("0.0.0.0", 80)),
        ("[::]:80", ("::", 80)),
        (":::80", ("::", 80)),
        ("*:80", ("*", 80)),
        ("[::ffff:127.0.0.1]:3000", ("::ffff:127.0.0.1", 3000)),
        ("127.0.0.53%lo:53", ("127.0.0.53", 53)),
        ("[fe80::1]%eth0:546", ("fe80::1", 546)),
    ])
    def test_split(self, address, expected):
        assert split_address(address) == expected

    @pytest.mark.parametrize("address", ["localhost", "0.0.0.0:*", "0.0.0.0:70000"])
    def test_invalid(self, address):
        with pytest.raises(ParseError):
            split_address(address)


class TestPidList:
    """Test lsof -t style pid lists."""

    def test_parse(self):
        result = parse_pid_list("123\n456\n\n")

        assert result.records == [123, 456]
        assert result.skipped == 0

    def test_garbage_counted(self):
        result = parse_pid_list("123\nlsof: WARNING\n0\n")

        assert result.records == [123]
        assert result.skipped == 2


class TestPortArgument:
    """Test user supplied port parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("8080", 8080),
        ("1", 1),
        ("65535", 65535),
        ("0", None),
        ("65536", None),
        ("http", None),
        (None, None),
    ])
    def test_parse(self, value, expected):
        assert parse_port_argument(value) == expected
