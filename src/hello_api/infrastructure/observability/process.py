# Copyright (c)
# SPDX-License-Identifier: MIT
"""Process statistics for the health and discovery endpoints.

Uptime is measured from the first import of this module, which happens while
the application is being created.
"""

from __future__ import annotations

import os
import platform
import resource
import sys
import time
from typing import Any, Final

_STARTED: Final[float] = time.monotonic()
_MB: Final[int] = 1024 * 1024


def uptime_seconds() -> float:
    """Seconds since the process started serving."""
    return round(time.monotonic() - _STARTED, 3)


def human_uptime(seconds: float) -> str:
    """``3h 4m 5s``."""
    whole = int(seconds)
    return f"{whole // 3600}h {(whole % 3600) // 60}m {whole % 60}s"


def memory_usage() -> dict[str, Any]:
    """Peak resident set size of the process, in bytes and megabytes."""
    usage = resource.getrusage(resource.RUSAGE_SELF)
    # ru_maxrss is kilobytes on Linux and bytes on macOS.
    rss = usage.ru_maxrss if sys.platform == "darwin" else usage.ru_maxrss * 1024
    return {"rss": rss, "rssMb": round(rss / _MB, 1)}


def cpu_usage() -> dict[str, float]:
    """User and system CPU seconds consumed so far."""
    times = os.times()
    return {"user": times.user, "system": times.system}


def python_version() -> str:
    return platform.python_version()
