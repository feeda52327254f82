"""Build metadata: the ``--version`` banner and the ``*_build_info`` metric.

Version comes from the installed distribution. Revision, branch, build user
and build date are stamped at image build time through
``PGBOUNCER_EXPORTER_BUILD_*`` environment variables and default to
``unknown``.
"""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass
from importlib import metadata
from typing import TYPE_CHECKING

from prometheus_client.core import GaugeMetricFamily, Metric

from pgbouncer_exporter.registry import MetricDescriptor

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

__all__ = [
    "DISTRIBUTION",
    "BuildInfo",
    "BuildInfoCollector",
    "build_context",
    "format_version",
    "get_build_info",
]

DISTRIBUTION = "pgbouncer-exporter"
_FALLBACK_VERSION = "0.0.0+unknown"
_ENV_PREFIX = "PGBOUNCER_EXPORTER_BUILD_"


@dataclass(frozen=True, slots=True)
class BuildInfo:
    """Version and build provenance of the running exporter."""

    version: str
    revision: str = "unknown"
    branch: str = "unknown"
    build_user: str = "unknown"
    build_date: str = "unknown"
    python_version: str = platform.python_version()


def get_build_info(environ: Mapping[str, str] | None = None) -> BuildInfo:
    """Return the build metadata of the installed exporter.

    Parameters
    ----------
    environ : Mapping[str, str] | None, optional
        Environment to read the ``PGBOUNCER_EXPORTER_BUILD_*`` stamps from.
        Defaults to ``os.environ``.

    Returns
    -------
    BuildInfo
        Build metadata.
    """
    env = os.environ if environ is None else environ
    try:
        version = metadata.version(DISTRIBUTION)
    except metadata.PackageNotFoundError:
        version = _FALLBACK_VERSION
    return BuildInfo(
        version=version,
        revision=env.get(f"{_ENV_PREFIX}REVISION", "unknown"),
        branch=env.get(f"{_ENV_PREFIX}BRANCH", "unknown"),
        build_user=env.get(f"{_ENV_PREFIX}USER", "unknown"),
        build_date=env.get(f"{_ENV_PREFIX}DATE", "unknown"),
    )


def format_version(program: str, info: BuildInfo | None = None) -> str:
    """Render the multi-line ``--version`` banner."""
    info = info or get_build_info()
    return (
        f"{program}, version {info.version} (branch: {info.branch}, revision: {info.revision})\n"
        f"  build user:       {info.build_user}\n"
        f"  build date:       {info.build_date}\n"
        f"  python version:   {info.python_version}\n"
        f"  platform:         {platform.system().lower()}/{platform.machine()}"
    )


def build_context(info: BuildInfo | None = None) -> str:
    """Render the one-line build context logged at startup."""
    info = info or get_build_info()
    return (
        f"(python={info.python_version}, platform={platform.system().lower()}/"
        f"{platform.machine()}, user={info.build_user}, date={info.build_date})"
    )


class BuildInfoCollector:
    """Producer exposing ``<program>_build_info`` with a constant value of 1.

    Parameters
    ----------
    program : str
        Metric-name prefix, normally ``pgbouncer_exporter``.
    info : BuildInfo | None, optional
        Metadata to expose. Defaults to :func:`get_build_info`.
    """

    name = "build_info"

    def __init__(self, program: str, info: BuildInfo | None = None) -> None:
        self._info = info or get_build_info()
        self._descriptor = MetricDescriptor.gauge(
            f"{program}_build_info",
            f"A metric with a constant '1' value labeled by version, revision, branch, "
            f"and pythonversion from which {program} was built.",
            ("version", "revision", "branch", "pythonversion"),
        )

    def describe(self) -> Iterator[MetricDescriptor]:
        yield self._descriptor

    def collect(self) -> Iterator[Metric]:
        family = GaugeMetricFamily(
            self._descriptor.name,
            self._descriptor.documentation,
            labels=self._descriptor.labelnames,
        )
        info = self._info
        family.add_metric([info.version, info.revision, info.branch, info.python_version], 1.0)
        yield family
