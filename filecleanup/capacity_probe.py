"""
Drive capacity queries used by percentage-mode quota checks.

A probe is chosen once at startup for the host platform. Platforms without an
implementation fail at selection time rather than on first use.
"""

import sys
from abc import ABC, abstractmethod
from typing import Optional, Tuple

import psutil

from .retention_models import UnsupportedPlatformError

# sys.platform prefixes psutil.disk_usage supports
SUPPORTED_PLATFORMS = ('linux', 'darwin', 'win32', 'freebsd', 'openbsd', 'netbsd', 'sunos', 'aix')


class CapacityProbe(ABC):
    """Reports total and available bytes of the drive holding a path."""

    @abstractmethod
    def get_capacity(self, path: str) -> Tuple[int, int]:
        """Return ``(total_bytes, available_bytes)`` for the drive backing ``path``."""


class PsutilCapacityProbe(CapacityProbe):
    """Capacity probe backed by ``psutil.disk_usage``."""

    def get_capacity(self, path: str) -> Tuple[int, int]:
        usage = psutil.disk_usage(path)
        return usage.total, usage.free


def select_capacity_probe(platform: Optional[str] = None) -> CapacityProbe:
    """
    Return the capacity probe for the host platform.

    Raises:
        UnsupportedPlatformError: no probe exists for the platform.
    """
    platform = platform or sys.platform
    if platform.startswith(SUPPORTED_PLATFORMS):
        return PsutilCapacityProbe()
    raise UnsupportedPlatformError(f"Unsupported platform for drive capacity queries: {platform}")
