"""
Interfaces the monitor consumes from the rest of the system, with
defaults backed by the loaded configuration.
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol

from ..utils.config import HostwatchConfig


@dataclass(frozen=True)
class TrackedApplication:
    """An application whose ports the operator cares about."""
    id: str
    name: str = ""
    ports: List[int] = field(default_factory=list)
    ghost_detection: bool = False


class ApplicationRegistry(Protocol):
    def get_application(self, app_id: str) -> Optional[TrackedApplication]:
        ...

    def applications(self) -> List[TrackedApplication]:
        ...


class SettingsProvider(Protocol):
    @property
    def check_frequency(self) -> float:
        ...

    @property
    def ghost_auto_cleanup(self) -> bool:
        ...

    @property
    def notifications_enabled(self) -> bool:
        ...


class ConfigSettingsProvider:
    """
    Settings read from a configuration getter on every access, so values
    changed by a hot reload apply from the next scan on.
    """

    def __init__(self, get_config: Callable[[], HostwatchConfig]):
        self._get_config = get_config

    @property
    def check_frequency(self) -> float:
        return self._get_config().monitor.check_frequency

    @property
    def ghost_auto_cleanup(self) -> bool:
        return self._get_config().monitor.ghost_auto_cleanup

    @property
    def notifications_enabled(self) -> bool:
        return self._get_config().monitor.notifications_enabled


class ConfigApplicationRegistry:
    """Applications listed under ``applications:`` in the configuration."""

    def __init__(self, get_config: Callable[[], HostwatchConfig]):
        self._get_config = get_config

    def applications(self) -> List[TrackedApplication]:
        return [
            TrackedApplication(
                id=app.id,
                name=app.name or app.id,
                ports=list(app.ports),
                ghost_detection=app.ghost_detection,
            )
            for app in self._get_config().applications
        ]

    def get_application(self, app_id: str) -> Optional[TrackedApplication]:
        for app in self.applications():
            if app.id == app_id:
                return app
        return None


def application_for_port(registry: ApplicationRegistry, port: int) -> Optional[TrackedApplication]:
    """First tracked application that declares ``port``."""
    for app in registry.applications():
        if port in app.ports:
            return app
    return None


__all__ = [
    'TrackedApplication',
    'ApplicationRegistry',
    'SettingsProvider',
    'ConfigSettingsProvider',
    'ConfigApplicationRegistry',
    'application_for_port',
]
