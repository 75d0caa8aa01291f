"""
hostwatch - process and port monitoring engine.

This package watches the host's process and socket tables and provides:
- Process start/termination and port open/close events
- Ghost process detection (zombie, orphaned, saturated)
- Remediation: kill by pid, kill by port, free port search
"""

__version__ = "0.1.0"
__author__ = "hostwatch Team"

__all__ = [
    '__version__',
]
