"""
Pytest configuration and shared fixtures for hostwatch tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

from hostwatch.monitor.engine import MonitorEngine
from hostwatch.utils.config import HostwatchConfig
from hostwatch.utils.notifications import EventBus

from tests.fixtures import (
    MonitorFixtures,
    FakeTableSource,
    FakeProbe,
    FakePortProbe,
    FakeSignalSender,
    EventRecorder,
)


# Test configuration
TEST_CONFIG = {
    "monitor": {
        "check_frequency": 0.01,
        "command_timeout": 1.0,
    },
    "logging": {
        "level": "DEBUG",
        "format": "text",
        "enable_console": False,
    },
    "applications": [
        {"id": "web", "name": "Web frontend", "ports": [8080], "ghost_detection": True},
        {"id": "api", "name": "API", "ports": [9000, 9001], "ghost_detection": False},
    ],
}


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def test_config() -> HostwatchConfig:
    return HostwatchConfig(**TEST_CONFIG)


@pytest.fixture
def source() -> FakeTableSource:
    return FakeTableSource(
        processes=[
            MonitorFixtures.process(1, parent_pid=0, command="/sbin/init"),
            MonitorFixtures.process(500, command="node server.js"),
            MonitorFixtures.process(650, command="systemd-resolved"),
        ],
        ports=[
            MonitorFixtures.port(8080, pid=500, name="node"),
        ],
    )


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def port_probe() -> FakePortProbe:
    return FakePortProbe()


@pytest.fixture
def sender() -> FakeSignalSender:
    return FakeSignalSender()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def bus(recorder) -> EventBus:
    event_bus = EventBus()
    event_bus.subscribe(recorder)
    return event_bus


@pytest.fixture
async def engine(test_config, source, probe, port_probe, sender, bus):
    """Engine over fakes, with every event captured by ``recorder``."""
    monitor_engine = MonitorEngine(
        config=test_config,
        source=source,
        probe=probe,
        port_probe=port_probe,
        sender=sender,
        bus=bus,
    )
    yield monitor_engine
    await monitor_engine.stop()
