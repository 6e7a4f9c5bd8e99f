"""Metrics helpers that log every sample and optionally feed Prometheus."""

from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_PROM_NAME_RE = re.compile(r"[^a-zA-Z0-9_]")

_PROM_TYPES = {
    "counter": (Counter, "counter"),
    "gauge": (Gauge, "gauge"),
    "histogram": (Histogram, "duration"),
}


class MetricsRecorder:
    """Emit structured metrics via logging and (optionally) Prometheus."""

    def __init__(
        self,
        *,
        enabled: bool = True,
        namespace: str = "kbchat",
        logger: logging.Logger | None = None,
        prometheus_enabled: bool = False,
        registry: CollectorRegistry | None = None,
    ) -> None:
        self._enabled = enabled
        self._namespace = namespace.strip() or "kbchat"
        self._logger = logger or logging.getLogger("kbchat.metrics")
        self._prom_registry: CollectorRegistry | None = None
        if prometheus_enabled:
            self._prom_registry = registry if registry is not None else CollectorRegistry()
        self._prom_metrics: dict[tuple[str, str, tuple[str, ...]], Any] = {}

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def prometheus_enabled(self) -> bool:
        return self._prom_registry is not None

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def render_prometheus(self) -> bytes:
        if self._prom_registry is None:
            raise RuntimeError("Prometheus export is disabled")
        return generate_latest(self._prom_registry)

    def increment(self, metric: str, *, value: int = 1, **tags: Any) -> None:
        """Increment a counter metric."""

        if not self._enabled:
            return
        value = int(value)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        instrument = self._prom_instrument("counter", metric, clean_tags)
        if instrument is not None:
            instrument.inc(float(max(value, 0)))

    def set_gauge(self, metric: str, value: float, **tags: Any) -> None:
        if not self._enabled:
            return
        clean_tags = _clean(tags)
        self._emit(metric, fields={"value": value}, tags=clean_tags)
        instrument = self._prom_instrument("gauge", metric, clean_tags)
        if instrument is not None:
            instrument.set(float(value))

    def record_timing(self, metric: str, duration_seconds: float, **tags: Any) -> None:
        """Emit a timing metric, recording milliseconds to logs."""

        if not self._enabled:
            return
        duration_ms = max(duration_seconds * 1000.0, 0.0)
        clean_tags = _clean(tags)
        self._emit(metric, fields={"duration_ms": round(duration_ms, 4)}, tags=clean_tags)
        instrument = self._prom_instrument("histogram", metric, clean_tags)
        if instrument is not None:
            instrument.observe(max(duration_seconds, 0.0))

    @contextmanager
    def track_timing(self, metric: str, **tags: Any) -> Iterator[None]:
        """Record execution time for the wrapped block."""

        if not self._enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_timing(metric, time.perf_counter() - start, **tags)

    def _emit(self, metric: str, *, fields: dict[str, Any], tags: dict[str, Any]) -> None:
        segments = [f"{key}={_stringify(value)}" for key, value in sorted(fields.items())]
        segments += [f"{key}={_stringify(value)}" for key, value in sorted(tags.items())]
        message = f"{self._namespace}.{metric}"
        if segments:
            message = f"{message} {' '.join(segments)}"
        self._logger.info(message)

    def _prom_instrument(self, kind: str, metric: str, tags: dict[str, Any]):
        if self._prom_registry is None:
            return None
        label_keys = tuple(sorted(tags))
        label_names = tuple(_PROM_NAME_RE.sub("_", key) or "label" for key in label_keys)
        cache_key = (kind, metric, label_names)
        instrument = self._prom_metrics.get(cache_key)
        if instrument is None:
            factory, description = _PROM_TYPES[kind]
            instrument = factory(
                self._prom_metric_name(metric),
                f"{metric} {description}",
                labelnames=list(label_names),
                registry=self._prom_registry,
            )
            self._prom_metrics[cache_key] = instrument
        if not label_names:
            return instrument
        return instrument.labels(
            **{name: _stringify(tags[key]) for name, key in zip(label_names, label_keys)}
        )

    def _prom_metric_name(self, metric: str) -> str:
        cleaned = _PROM_NAME_RE.sub("_", metric)
        return f"{_PROM_NAME_RE.sub('_', self._namespace)}_{cleaned}".strip("_")


def _clean(tags: dict[str, Any]) -> dict[str, Any]:
    return {key: val for key, val in tags.items() if val is not None}


def _stringify(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}" if not value.is_integer() else f"{int(value)}"
    return str(value)
