"""OS resource metrics for an external process identified by a pid file.

The collector reports the standard ``process_*`` metrics (CPU time, memory,
file descriptors, start time) for another process, PgBouncer in practice,
under a namespace prefix. The pid is resolved again on every scrape, so a
restarted PgBouncer is picked up without restarting the exporter.

Examples
--------
>>> from pgbouncer_exporter.process import ProcessResourceCollector, pid_file_resolver
>>> collector = ProcessResourceCollector(
...     pid_file_resolver("/run/pgbouncer/pgbouncer.pid"), namespace="pgbouncer"
... )
>>> [d.name for d in collector.describe()][0]
'pgbouncer_process_cpu_seconds'
"""

from __future__ import annotations

import math
from pathlib import Path
from typing import TYPE_CHECKING, TypeAlias

import psutil
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from exporter_common.errors import CollectorError
from pgbouncer_exporter.registry import MetricDescriptor

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

__all__ = [
    "PidResolver",
    "ProcessResourceCollector",
    "pid_file_resolver",
]

PidResolver: TypeAlias = "Callable[[], int]"


def pid_file_resolver(path: str | Path) -> PidResolver:
    """Return a resolver that reads the pid from ``path`` on every call.

    Parameters
    ----------
    path : str | Path
        Pid file written by the monitored process.

    Returns
    -------
    PidResolver
        Callable returning the current pid.

    Notes
    -----
    The resolver raises :class:`CollectorError` when the file cannot be read
    or does not contain a positive integer.
    """
    pid_path = Path(path)

    def resolve() -> int:
        try:
            content = pid_path.read_text(encoding="utf-8")
        except OSError as exc:
            msg = f"cannot read pid file {pid_path}: {exc.strerror or exc}"
            raise CollectorError(msg, cause=exc, context={"pid_file": str(pid_path)}) from exc
        try:
            pid = int(content.strip())
        except ValueError as exc:
            msg = f"pid file {pid_path} does not contain a pid"
            raise CollectorError(msg, cause=exc, context={"pid_file": str(pid_path)}) from exc
        if pid <= 0:
            msg = f"pid file {pid_path} contains invalid pid {pid}"
            raise CollectorError(msg, context={"pid_file": str(pid_path)})
        return pid

    return resolve


def _limit(value: int) -> float:
    return math.inf if value == psutil.RLIM_INFINITY else float(value)


class ProcessResourceCollector:
    """Producer for the resource usage of the process returned by ``pid_resolver``.

    Parameters
    ----------
    pid_resolver : PidResolver
        Called on every collect to obtain the pid.
    namespace : str, optional
        Metric-name prefix, e.g. ``pgbouncer`` for ``pgbouncer_process_*``.
        Defaults to no prefix.
    """

    name = "process"

    def __init__(self, pid_resolver: PidResolver, namespace: str = "") -> None:
        self._pid_resolver = pid_resolver
        self._prefix = f"{namespace}_" if namespace else ""

    def _metric(self, suffix: str) -> str:
        return f"{self._prefix}process_{suffix}"

    def describe(self) -> Iterator[MetricDescriptor]:
        yield MetricDescriptor.counter(
            self._metric("cpu_seconds_total"), "Total user and system CPU time spent in seconds."
        )
        yield MetricDescriptor.gauge(self._metric("open_fds"), "Number of open file descriptors.")
        yield MetricDescriptor.gauge(
            self._metric("max_fds"), "Maximum number of open file descriptors."
        )
        yield MetricDescriptor.gauge(
            self._metric("virtual_memory_bytes"), "Virtual memory size in bytes."
        )
        yield MetricDescriptor.gauge(
            self._metric("virtual_memory_max_bytes"),
            "Maximum amount of virtual memory available in bytes.",
        )
        yield MetricDescriptor.gauge(
            self._metric("resident_memory_bytes"), "Resident memory size in bytes."
        )
        yield MetricDescriptor.gauge(
            self._metric("start_time_seconds"),
            "Start time of the process since unix epoch in seconds.",
        )

    def collect(self) -> Iterator[Metric]:
        """Read the process counters and yield one family per available metric.

        Raises
        ------
        CollectorError
            If the pid cannot be resolved, the process no longer exists or
            its counters cannot be read.
        """
        pid = self._pid_resolver()
        try:
            families = self._read(psutil.Process(pid))
        except psutil.NoSuchProcess as exc:
            msg = f"process {pid} does not exist"
            raise CollectorError(msg, cause=exc, context={"pid": pid}) from exc
        except psutil.Error as exc:
            msg = f"cannot read resource usage of process {pid}: {exc}"
            raise CollectorError(msg, cause=exc, context={"pid": pid}) from exc
        yield from families

    def _read(self, process: psutil.Process) -> list[Metric]:
        descriptors = {d.name: d for d in self.describe()}

        def gauge(suffix: str, value: float) -> GaugeMetricFamily:
            descriptor = descriptors[self._metric(suffix)]
            return GaugeMetricFamily(descriptor.name, descriptor.documentation, value=value)

        families: list[Metric] = []
        with process.oneshot():
            cpu = process.cpu_times()
            cpu_name = self._metric("cpu_seconds")
            families.append(
                CounterMetricFamily(
                    cpu_name, descriptors[cpu_name].documentation, value=cpu.user + cpu.system
                )
            )
            if hasattr(process, "num_fds"):
                families.append(gauge("open_fds", float(process.num_fds())))
            if hasattr(process, "rlimit"):
                soft_nofile, _ = process.rlimit(psutil.RLIMIT_NOFILE)
                families.append(gauge("max_fds", _limit(soft_nofile)))
            memory = process.memory_info()
            families.append(gauge("virtual_memory_bytes", float(memory.vms)))
            if hasattr(process, "rlimit") and hasattr(psutil, "RLIMIT_AS"):
                soft_as, _ = process.rlimit(psutil.RLIMIT_AS)
                families.append(gauge("virtual_memory_max_bytes", _limit(soft_as)))
            families.append(gauge("resident_memory_bytes", float(memory.rss)))
            families.append(gauge("start_time_seconds", process.create_time()))
        return families
