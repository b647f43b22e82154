"""In-memory metrics registry rendered in the Prometheus text exposition format."""

from __future__ import annotations

import math
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Mapping, Sequence, TypeVar

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, HistogramMetricFamily, Metric
from prometheus_client.utils import floatToGoString

from todo_service.lib.logger import get_logger

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

logger = get_logger(__name__)

LabelValues = tuple[str, ...]
Labels = Mapping[str, object]


class MetricsError(Exception):
    """Base class for metric layer failures."""


class DuplicateNameError(MetricsError):
    """Raised when an instrument name is registered twice."""


class UnknownInstrumentError(MetricsError, LookupError):
    """Raised when an operation targets a name that was never registered."""


class TypeMismatchError(MetricsError, TypeError):
    """Raised when an operation does not match the instrument variant."""


class InvalidMetricError(MetricsError, ValueError):
    """Raised for malformed names, label sets, buckets or values."""


class ScrapeSerializationError(MetricsError):
    """Raised when the registry cannot be rendered for a scrape."""


@dataclass(frozen=True)
class HistogramValue:
    buckets: tuple[tuple[float, int], ...]
    sum: float
    count: int


@dataclass(frozen=True)
class InstrumentSnapshot:
    """Immutable point-in-time read of one instrument."""

    name: str
    kind: str
    documentation: str
    labelnames: tuple[str, ...]
    values: tuple[tuple[LabelValues, Any], ...]

    def value(self, **labels: object) -> Any:
        key = tuple(str(labels[name]) for name in self.labelnames)
        for label_values, value in self.values:
            if label_values == key:
                return value
        return None


class Instrument:
    """Named measurement with an optional fixed set of label names.

    Unlabelled instruments emit a zero sample from registration unless
    `lazy` is set, in which case nothing is emitted until the first update.
    """

    kind = "untyped"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> None:
        if not _METRIC_NAME_RE.match(name):
            raise InvalidMetricError(f"Invalid metric name '{name}'")
        for label in labelnames:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise InvalidMetricError(f"Invalid label name '{label}' for metric '{name}'")
        if len(set(labelnames)) != len(labelnames):
            raise InvalidMetricError(f"Duplicate label names for metric '{name}'")

        self.name = name
        self.documentation = documentation
        self.labelnames = tuple(labelnames)
        self.lazy = lazy
        self._lock = threading.Lock()
        self._children: dict[LabelValues, Any] = {}
        if not self.labelnames and not self.lazy:
            self._children[()] = self._new_child()

    def _new_child(self) -> Any:
        raise NotImplementedError

    def _freeze(self, child: Any) -> Any:
        return child

    def _key(self, labels: Labels | None) -> LabelValues:
        labels = labels or {}
        if set(labels) != set(self.labelnames):
            raise InvalidMetricError(
                f"Metric '{self.name}' expects labels {list(self.labelnames)}, got {sorted(labels)}"
            )
        return tuple(str(labels[label]) for label in self.labelnames)

    def snapshot(self) -> InstrumentSnapshot:
        with self._lock:
            values = tuple((key, self._freeze(child)) for key, child in self._children.items())
        return InstrumentSnapshot(
            name=self.name,
            kind=self.kind,
            documentation=self.documentation,
            labelnames=self.labelnames,
            values=values,
        )

    def reset(self) -> None:
        with self._lock:
            self._children.clear()
            if not self.labelnames and not self.lazy:
                self._children[()] = self._new_child()


class Counter(Instrument):
    """Monotonically non-decreasing total."""

    kind = "counter"

    def __init__(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> None:
        # Exposition always emits counter samples with the `_total` suffix.
        if not name.endswith("_total"):
            raise InvalidMetricError(f"Counter name '{name}' must end with '_total'")
        super().__init__(name, documentation, labelnames, lazy=lazy)

    def _new_child(self) -> float:
        return 0.0

    def inc(self, delta: float = 1, labels: Labels | None = None) -> None:
        delta = float(delta)
        if delta < 0 or math.isnan(delta):
            raise InvalidMetricError(f"Counter '{self.name}' cannot be incremented by {delta}")
        key = self._key(labels)
        with self._lock:
            self._children[key] = self._children.get(key, 0.0) + delta

    def value(self, labels: Labels | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._children.get(key, 0.0)


class Gauge(Instrument):
    """Arbitrary real value that can be overwritten."""

    kind = "gauge"

    def _new_child(self) -> float:
        return 0.0

    def set(self, value: float, labels: Labels | None = None) -> None:
        key = self._key(labels)
        with self._lock:
            self._children[key] = float(value)

    def value(self, labels: Labels | None = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._children.get(key, 0.0)


class _HistogramChild:
    __slots__ = ("bucket_counts", "total", "count")

    def __init__(self, size: int) -> None:
        self.bucket_counts = [0] * size
        self.total = 0.0
        self.count = 0


class Histogram(Instrument):
    """Distribution of observations over cumulative upper-bound buckets."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        documentation: str,
        buckets: Sequence[float],
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> None:
        bounds = sorted(float(bound) for bound in buckets)
        if not bounds or any(math.isnan(bound) for bound in bounds):
            raise InvalidMetricError(f"Histogram '{name}' needs at least one numeric bucket")
        if len(set(bounds)) != len(bounds):
            raise InvalidMetricError(f"Histogram '{name}' has duplicate buckets")
        # Negative bounds make the exposition drop the _sum and _count lines.
        if bounds[0] < 0:
            raise InvalidMetricError(f"Histogram '{name}' buckets must be non-negative")
        if "le" in labelnames:
            raise InvalidMetricError(f"Histogram '{name}' cannot use the reserved label 'le'")
        if bounds[-1] != math.inf:
            bounds.append(math.inf)
        self.buckets = tuple(bounds)
        super().__init__(name, documentation, labelnames, lazy=lazy)

    def _new_child(self) -> _HistogramChild:
        return _HistogramChild(len(self.buckets))

    def _freeze(self, child: _HistogramChild) -> HistogramValue:
        return HistogramValue(
            buckets=tuple(zip(self.buckets, child.bucket_counts)),
            sum=child.total,
            count=child.count,
        )

    def observe(self, value: float, labels: Labels | None = None) -> None:
        value = float(value)
        if math.isnan(value):
            raise InvalidMetricError(f"Histogram '{self.name}' cannot observe NaN")
        key = self._key(labels)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._children[key] = self._new_child()
            for index, bound in enumerate(self.buckets):
                if value <= bound:
                    child.bucket_counts[index] += 1
            child.total += value
            child.count += 1


InstrumentT = TypeVar("InstrumentT", bound=Instrument)


class MetricsRegistry:
    """Ordered, append-only collection of instruments keyed by unique name.

    Name-based operations validate the target instrument. With ``strict`` set
    misuse raises; otherwise the error is logged and the update is skipped so
    request handling carries on.
    """

    def __init__(self, *, strict: bool = True) -> None:
        self.strict = strict
        self._lock = threading.Lock()
        self._instruments: dict[str, Instrument] = {}
        self._exposition = CollectorRegistry(auto_describe=False)
        self._exposition.register(_ExpositionCollector(self))

    def register(self, instrument: InstrumentT) -> InstrumentT:
        with self._lock:
            if instrument.name in self._instruments:
                raise DuplicateNameError(f"Metric '{instrument.name}' is already registered")
            self._instruments[instrument.name] = instrument
        return instrument

    def counter(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> Counter:
        return self.register(Counter(name, documentation, labelnames, lazy=lazy))

    def gauge(
        self,
        name: str,
        documentation: str,
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> Gauge:
        return self.register(Gauge(name, documentation, labelnames, lazy=lazy))

    def histogram(
        self,
        name: str,
        documentation: str,
        buckets: Sequence[float],
        labelnames: Sequence[str] = (),
        *,
        lazy: bool = False,
    ) -> Histogram:
        return self.register(Histogram(name, documentation, buckets, labelnames, lazy=lazy))

    def get(self, name: str) -> Instrument:
        with self._lock:
            instrument = self._instruments.get(name)
        if instrument is None:
            raise UnknownInstrumentError(f"Unknown metric '{name}'")
        return instrument

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._instruments

    def increment(self, name: str, delta: float = 1, labels: Labels | None = None) -> None:
        self._apply("increment", name, Counter, lambda counter: counter.inc(delta, labels))

    def set(self, name: str, value: float, labels: Labels | None = None) -> None:
        self._apply("set", name, Gauge, lambda gauge: gauge.set(value, labels))

    def observe(self, name: str, value: float, labels: Labels | None = None) -> None:
        self._apply("observe", name, Histogram, lambda histogram: histogram.observe(value, labels))

    def _apply(
        self,
        operation: str,
        name: str,
        expected: type[Instrument],
        action: Callable[[Any], None],
    ) -> None:
        try:
            instrument = self.get(name)
            if not isinstance(instrument, expected):
                raise TypeMismatchError(f"Cannot {operation} {instrument.kind} metric '{name}'")
            action(instrument)
        except MetricsError:
            if self.strict:
                raise
            logger.error(
                "Skipping metric update",
                extra={"metric": name, "operation": operation},
                exc_info=True,
            )

    def collect(self) -> list[InstrumentSnapshot]:
        """Return an immutable read of every instrument in registration order."""

        with self._lock:
            instruments = list(self._instruments.values())
        return [instrument.snapshot() for instrument in instruments]

    def snapshot(self) -> str:
        """Render every instrument in the text exposition format."""

        try:
            return generate_latest(self._exposition).decode("utf-8")
        except Exception as exc:
            raise ScrapeSerializationError(f"Failed to render metrics: {exc}") from exc

    def reset(self) -> None:
        with self._lock:
            instruments = list(self._instruments.values())
        for instrument in instruments:
            instrument.reset()


class _ExpositionCollector:
    def __init__(self, registry: MetricsRegistry) -> None:
        self._registry = registry

    def collect(self) -> Iterator[Metric]:
        for snapshot in self._registry.collect():
            yield _to_family(snapshot)


def _to_family(snapshot: InstrumentSnapshot) -> Metric:
    labelnames = list(snapshot.labelnames)
    if snapshot.kind == "counter":
        family: Metric = CounterMetricFamily(snapshot.name, snapshot.documentation, labels=labelnames)
        for label_values, value in snapshot.values:
            family.add_metric(list(label_values), value)
    elif snapshot.kind == "gauge":
        family = GaugeMetricFamily(snapshot.name, snapshot.documentation, labels=labelnames)
        for label_values, value in snapshot.values:
            family.add_metric(list(label_values), value)
    elif snapshot.kind == "histogram":
        family = HistogramMetricFamily(snapshot.name, snapshot.documentation, labels=labelnames)
        for label_values, value in snapshot.values:
            buckets = [(floatToGoString(bound), count) for bound, count in value.buckets]
            family.add_metric(list(label_values), buckets, value.sum)
    else:
        raise ScrapeSerializationError(f"Unsupported metric kind '{snapshot.kind}'")
    return family
