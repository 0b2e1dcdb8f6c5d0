"""Prometheus-backed usage counter registry."""

from __future__ import annotations

from typing import Dict, NamedTuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    GCCollector,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

METRIC_NAME = "llm_requests"
LABEL_NAMES = ("user", "groups", "path")


class LabelKey(NamedTuple):
    user: str
    groups: str = ""
    path: str = ""


class UsageRegistry:
    """Counts successful requests per (user, groups, path).

    Each instance owns its own ``CollectorRegistry`` so that applications and
    tests never share counts through module state. Process, platform and
    garbage-collector metrics are registered alongside the usage counter.
    ``prometheus_client`` locks each labelled series individually, so increments
    for different keys do not contend with each other.
    """

    content_type = CONTENT_TYPE_LATEST

    def __init__(self) -> None:
        self._registry = CollectorRegistry(auto_describe=True)
        self._requests = Counter(
            METRIC_NAME,
            "Successful LLM requests labelled by user, group and path.",
            LABEL_NAMES,
            registry=self._registry,
        )
        ProcessCollector(registry=self._registry)
        PlatformCollector(registry=self._registry)
        GCCollector(registry=self._registry)

    def increment(self, key: LabelKey) -> None:
        self._requests.labels(*key).inc()

    def render(self) -> bytes:
        return generate_latest(self._registry)

    def snapshot(self) -> Dict[LabelKey, int]:
        counts: Dict[LabelKey, int] = {}
        for metric in self._requests.collect():
            for sample in metric.samples:
                if sample.name != f"{METRIC_NAME}_total":
                    continue
                key = LabelKey(*(sample.labels[name] for name in LABEL_NAMES))
                counts[key] = int(sample.value)
        return counts

    def value(self, key: LabelKey) -> int:
        return self.snapshot().get(key, 0)
