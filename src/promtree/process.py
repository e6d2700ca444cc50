# src/promtree/process.py
"""
Process metrics backed by psutil.

``register_process_metrics`` declares a small set of gauges describing the
current process and fills them through triggered producers, so the values
are sampled at collection time and each gauge fails independently (e.g.
``open_fds`` on platforms without file descriptor accounting).

Usage:
    >>> root = create_collector(namespace="app")
    >>> register_process_metrics(root)
    >>> result = await root.collect()
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Tuple

import psutil

if TYPE_CHECKING:
    from promtree.collector import CollectorNode
    from promtree.family import Gauge

logger = logging.getLogger(__name__)

Sampler = Callable[[psutil.Process], float]

PROCESS_GAUGES: List[Tuple[str, str, Sampler]] = [
    ("cpu_percent", "Process CPU usage percentage", lambda p: p.cpu_percent(interval=None)),
    ("resident_memory_bytes", "Resident memory size in bytes", lambda p: p.memory_info().rss),
    ("virtual_memory_bytes", "Virtual memory size in bytes", lambda p: p.memory_info().vms),
    ("num_threads", "Number of OS threads", lambda p: p.num_threads()),
    ("start_time_seconds", "Process start time since the epoch in seconds", lambda p: p.create_time()),
]


def _sampling_producer(process: psutil.Process, sampler: Sampler) -> Callable[["Gauge"], None]:
    def producer(family: "Gauge") -> None:
        family.set(float(sampler(process)))

    return producer


def register_process_metrics(
    collector: "CollectorNode",
    subsystem: str = "process",
    process: Optional[psutil.Process] = None,
    timeout: Optional[float] = None,
) -> List["Gauge"]:
    """
    Register process gauges as triggered metrics.

    Args:
        collector: Root collector.
        subsystem: Subsystem segment of the gauge names.
        process: Process to sample (default: the current process).
        timeout: Per-producer timeout in seconds.

    Returns:
        The registered gauge families.
    """
    process = process or psutil.Process()
    gauges = list(PROCESS_GAUGES)
    if hasattr(process, "num_fds"):
        gauges.append(("open_fds", "Number of open file descriptors", lambda p: p.num_fds()))

    families = []
    for name, help_text, sampler in gauges:
        family = collector.gauge(name, subsystem=subsystem, help=help_text)
        collector.add_triggered_metric(family, _sampling_producer(process, sampler), timeout=timeout)
        families.append(family)

    logger.debug(f"Registered {len(families)} process metrics for pid {process.pid}")
    return families
