"""Producer registry that renders one exposition per scrape.

A producer is anything that can describe and collect metric families. The
registry holds producers in registration order, runs every one of them on
each scrape and keeps going when one fails: the failed producer's families
are left out and the failure is reported through meta-metrics, so a
degraded scrape still returns everything that could be gathered.

Examples
--------
>>> from pgbouncer_exporter.registry import MetricRegistry
>>> from pgbouncer_exporter.build_info import BuildInfoCollector
>>> registry = MetricRegistry()
>>> registry.register(BuildInfoCollector("pgbouncer_exporter"))
>>> exposition = registry.render()
>>> b"pgbouncer_exporter_build_info" in exposition.body
True
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.exposition import choose_encoder

from exporter_common.errors import CollectorError, DuplicateProducerError, RegistryClosedError
from exporter_common.logging import get_logger, with_fields

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Sequence

__all__ = [
    "DEFAULT_NAMESPACE",
    "CollectionResult",
    "Exposition",
    "MetricDescriptor",
    "MetricRegistry",
    "Producer",
]

logger = get_logger(__name__)

DEFAULT_NAMESPACE = "pgbouncer_exporter"

# Labels added by histogram and summary samples on top of the declared schema.
_SAMPLE_ONLY_LABELS = frozenset({"le", "quantile"})


@dataclass(frozen=True, slots=True)
class MetricDescriptor:
    """Declared shape of one metric family.

    ``name`` is the family name as :mod:`prometheus_client` reports it, so
    counters are declared without their ``_total`` suffix.
    """

    name: str
    type: str
    documentation: str
    labelnames: tuple[str, ...] = ()

    @classmethod
    def counter(
        cls, name: str, documentation: str, labelnames: Sequence[str] = ()
    ) -> MetricDescriptor:
        """Declare a counter, accepting the name with or without ``_total``."""
        name = name.removesuffix("_total")
        return cls(name, "counter", documentation, tuple(labelnames))

    @classmethod
    def gauge(
        cls, name: str, documentation: str, labelnames: Sequence[str] = ()
    ) -> MetricDescriptor:
        """Declare a gauge."""
        return cls(name, "gauge", documentation, tuple(labelnames))


@runtime_checkable
class Producer(Protocol):
    """Capability shared by everything the registry can hold."""

    @property
    def name(self) -> str:
        """Short identifier used in the ``collector`` label of meta-metrics."""
        ...

    def describe(self) -> Iterable[MetricDescriptor]:
        """Yield the descriptors of every family :meth:`collect` may yield."""
        ...

    def collect(self) -> Iterable[Metric]:
        """Yield the metric families for one scrape."""
        ...


@dataclass(frozen=True, slots=True)
class CollectionResult:
    """Outcome of one producer's describe + collect pass."""

    producer: str
    families: tuple[Metric, ...] = ()
    error: Exception | None = None
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        """Return True when the pass succeeded."""
        return self.error is None


@dataclass(frozen=True, slots=True)
class Exposition:
    """Rendered scrape body together with the per-producer outcomes."""

    body: bytes
    content_type: str
    results: tuple[CollectionResult, ...] = field(default=())

    @property
    def failed(self) -> tuple[str, ...]:
        """Return the names of producers that failed during this scrape."""
        return tuple(result.producer for result in self.results if not result.ok)


class _GatheredFamilies:
    """Adapter handing one gathered scrape to a :mod:`prometheus_client` encoder."""

    def __init__(self, families: Sequence[Metric]) -> None:
        self._families = families

    def collect(self) -> Iterator[Metric]:
        return iter(self._families)


class MetricRegistry:
    """Ordered, startup-populated set of producers.

    Parameters
    ----------
    namespace : str, optional
        Prefix of the meta-metrics the registry emits about its own producers.
        Defaults to ``pgbouncer_exporter``.

    Notes
    -----
    Registration is only allowed until :meth:`seal` is called. After that the
    producer tuple is read concurrently by in-flight scrapes without locking.
    """

    def __init__(self, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.namespace = namespace
        self._producers: tuple[Producer, ...] = ()
        self._names_to_producers: dict[str, Producer] = {}
        self._sealed = False

    @property
    def producers(self) -> tuple[Producer, ...]:
        """Return the registered producers in registration order."""
        return self._producers

    @property
    def sealed(self) -> bool:
        """Return True once registration is closed."""
        return self._sealed

    def meta_metric_names(self) -> frozenset[str]:
        """Return the family names reserved for the registry's own meta-metrics."""
        return frozenset(
            {
                f"{self.namespace}_collector_success",
                f"{self.namespace}_collector_duration_seconds",
                f"{self.namespace}_collector_failures",
            }
        )

    def register(self, producer: Producer) -> None:
        """Add ``producer`` after checking it for collisions.

        Raises
        ------
        DuplicateProducerError
            If the instance or its name is already registered, or one of its
            descriptor names is already taken. The producer set is unchanged.
        RegistryClosedError
            If the registry has been sealed.
        """
        if self._sealed:
            msg = f"cannot register producer {producer.name!r}: registry is sealed"
            raise RegistryClosedError(msg)
        if any(existing is producer for existing in self._producers):
            msg = f"producer {producer.name!r} is already registered"
            raise DuplicateProducerError(msg, context={"producer": producer.name})
        if producer.name in {existing.name for existing in self._producers}:
            msg = f"a producer named {producer.name!r} is already registered"
            raise DuplicateProducerError(msg, context={"producer": producer.name})

        taken = dict.fromkeys(self.meta_metric_names(), "<registry>")
        taken.update((name, owner.name) for name, owner in self._names_to_producers.items())
        new_names: dict[str, Producer] = {}
        for descriptor in producer.describe():
            owner = taken.get(descriptor.name)
            if owner is None and descriptor.name in new_names:
                owner = producer.name
            if owner is not None:
                msg = (
                    f"metric {descriptor.name!r} of producer {producer.name!r} "
                    f"collides with producer {owner!r}"
                )
                raise DuplicateProducerError(
                    msg, context={"producer": producer.name, "metric": descriptor.name}
                )
            new_names[descriptor.name] = producer

        self._names_to_producers.update(new_names)
        self._producers = (*self._producers, producer)
        logger.debug(
            "Producer registered",
            extra={"operation": "register", "producer": producer.name, "metrics": len(new_names)},
        )

    def unregister(self, producer: Producer) -> None:
        """Remove ``producer`` before the registry is sealed.

        Raises
        ------
        RegistryClosedError
            If the registry has been sealed.
        KeyError
            If ``producer`` is not registered.
        """
        if self._sealed:
            msg = f"cannot unregister producer {producer.name!r}: registry is sealed"
            raise RegistryClosedError(msg)
        if not any(existing is producer for existing in self._producers):
            raise KeyError(producer.name)
        self._producers = tuple(p for p in self._producers if p is not producer)
        self._names_to_producers = {
            name: owner for name, owner in self._names_to_producers.items() if owner is not producer
        }

    def seal(self) -> None:
        """Close registration. Idempotent."""
        self._sealed = True

    def collect_all(self) -> list[CollectionResult]:
        """Run every producer once, in registration order.

        Returns
        -------
        list[CollectionResult]
            One result per producer; failures carry their exception instead
            of families.
        """
        return [self._collect_one(producer) for producer in self._producers]

    def _collect_one(self, producer: Producer) -> CollectionResult:
        start = time.perf_counter()
        with with_fields(logger, operation="collect", producer=producer.name) as log:
            try:
                descriptors = {descriptor.name: descriptor for descriptor in producer.describe()}
                families = tuple(producer.collect())
                for family in families:
                    _check_family(producer.name, family, descriptors)
            except Exception as exc:  # noqa: BLE001 - one producer must not fail the scrape
                duration = time.perf_counter() - start
                fields: dict[str, object] = {"duration_ms": round(duration * 1000, 3)}
                if isinstance(exc, CollectorError):
                    fields.update(exc.log_fields())
                else:
                    fields["error_type"] = type(exc).__name__
                log.error("Producer collection failed: %s", exc, extra=fields)
                return CollectionResult(producer.name, error=exc, duration_seconds=duration)
            duration = time.perf_counter() - start
            log.debug(
                "Producer collected",
                extra={"duration_ms": round(duration * 1000, 3), "families": len(families)},
            )
            return CollectionResult(producer.name, families=families, duration_seconds=duration)

    def meta_families(self, results: Sequence[CollectionResult]) -> list[Metric]:
        """Build the meta-metric families describing ``results``."""
        success = GaugeMetricFamily(
            f"{self.namespace}_collector_success",
            "Whether a collector succeeded during the last scrape (1) or failed (0).",
            labels=["collector"],
        )
        duration = GaugeMetricFamily(
            f"{self.namespace}_collector_duration_seconds",
            "Duration of a collector's pass during the last scrape.",
            labels=["collector"],
        )
        for result in results:
            success.add_metric([result.producer], 1.0 if result.ok else 0.0)
            duration.add_metric([result.producer], result.duration_seconds)
        failures = GaugeMetricFamily(
            f"{self.namespace}_collector_failures",
            "Number of collectors that failed during the last scrape.",
            value=sum(1 for result in results if not result.ok),
        )
        return [success, duration, failures]

    def gather(self) -> tuple[list[Metric], list[CollectionResult]]:
        """Collect every producer and append the meta-metrics.

        Returns
        -------
        tuple[list[Metric], list[CollectionResult]]
            Families of successful producers in registration order followed
            by the meta-metrics, and the per-producer results.
        """
        results = self.collect_all()
        families = [family for result in results for family in result.families]
        families.extend(self.meta_families(results))
        return families, results

    def collect(self) -> Iterator[Metric]:
        """Yield one scrape's families; lets :mod:`prometheus_client` encoders read the registry."""
        families, _ = self.gather()
        yield from families

    def render(self, accept: str | None = None) -> Exposition:
        """Collect every producer and serialize the scrape.

        Parameters
        ----------
        accept : str | None, optional
            ``Accept`` header of the scrape request. The text exposition
            format is used unless OpenMetrics is requested. Defaults to None.

        Returns
        -------
        Exposition
            Encoded body, its content type and the per-producer results.
        """
        encoder, content_type = choose_encoder(accept or "")
        families, results = self.gather()
        body = encoder(_GatheredFamilies(families))  # type: ignore[arg-type]  # encoders only call collect()
        return Exposition(body=body, content_type=content_type, results=tuple(results))


def _check_family(producer: str, family: Metric, descriptors: dict[str, MetricDescriptor]) -> None:
    descriptor = descriptors.get(family.name)
    if descriptor is None:
        msg = f"producer {producer!r} yielded undeclared metric {family.name!r}"
        raise CollectorError(msg, context={"metric": family.name})
    if family.type != descriptor.type:
        msg = (
            f"producer {producer!r} yielded {family.name!r} as {family.type}, "
            f"declared as {descriptor.type}"
        )
        raise CollectorError(msg, context={"metric": family.name})
    expected = set(descriptor.labelnames)
    for sample in family.samples:
        labelnames = set(sample.labels) - _SAMPLE_ONLY_LABELS
        if labelnames != expected:
            msg = (
                f"producer {producer!r} yielded {sample.name!r} with labels "
                f"{sorted(labelnames)}, declared {sorted(expected)}"
            )
            raise CollectorError(msg, context={"metric": family.name})
