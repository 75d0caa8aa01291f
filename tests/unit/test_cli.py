"""
Tests for command line parsing.
"""

import pytest

from hostwatch.__main__ import build_parser, main_async


class TestParser:
    """Test argument parsing for each command."""

    def test_watch(self):
        args = build_parser().parse_args(
            ["-c", "a.yaml", "-c", "b.yaml", "watch", "--interval", "2", "--watch-port", "8080"]
        )

        assert args.command == "watch"
        assert args.config == ["a.yaml", "b.yaml"]
        assert args.interval == 2.0
        assert args.watch_port == [8080]

    def test_kill_defaults_to_term(self):
        args = build_parser().parse_args(["kill", "500"])

        assert args.pid == 500
        assert args.signal == "TERM"

    def test_free_port(self):
        args = build_parser().parse_args(["--json", "free-port", "--start", "4000"])

        assert args.json
        assert args.start == 4000
        assert args.width is None

    def test_filters(self):
        parser = build_parser()

        assert parser.parse_args(["ps", "--ghosts"]).ghosts
        assert parser.parse_args(["ports", "--app", "web"]).app_id == "web"

    def test_bad_port_argument(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["kill-port", "http"])

    @pytest.mark.parametrize("interval", ["0", "-1", "soon"])
    def test_interval_must_be_positive(self, interval):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["watch", "--interval", interval])


@pytest.mark.asyncio
async def test_no_command_prints_help(capsys):
    assert await main_async([]) == 1
    assert "usage" in capsys.readouterr().out
