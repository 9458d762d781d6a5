"""Prometheus text-format metrics kept in process memory."""

from __future__ import annotations

from typing import Dict, Iterable


def _format_labels(names: Iterable[str], values: Iterable[str]) -> str:
    pairs = ",".join(f'{name}="{value}"' for name, value in zip(names, values))
    return f"{{{pairs}}}" if pairs else ""


class Counter:
    def __init__(self, name: str, description: str = "", labelnames: tuple[str, ...] = ()) -> None:
        self.name = name
        self.description = description
        self.labelnames = labelnames
        self._values: Dict[tuple[str, ...], float] = {}

    def inc(self, amount: float = 1.0, **labels: str) -> None:
        key = tuple(str(labels.get(name, "")) for name in self.labelnames)
        self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, **labels: str) -> float:
        key = tuple(str(labels.get(name, "")) for name in self.labelnames)
        return self._values.get(key, 0.0)

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} counter"]
        if not self._values and not self.labelnames:
            lines.append(f"{self.name} 0.0")
        for key, value in sorted(self._values.items()):
            lines.append(f"{self.name}{_format_labels(self.labelnames, key)} {value}")
        return "\n".join(lines) + "\n"


class Histogram:
    def __init__(self, name: str, buckets: list[float], description: str = "") -> None:
        self.name = name
        self.description = description
        self._buckets = sorted(buckets)
        self._counts = {bucket: 0 for bucket in self._buckets}
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        self._count += 1
        self._sum += value
        for bucket in self._buckets:
            if value <= bucket:
                self._counts[bucket] += 1

    def render(self) -> str:
        lines = [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} histogram"]
        for bucket in self._buckets:
            lines.append(f'{self.name}_bucket{{le="{bucket}"}} {self._counts[bucket]}')
        lines.append(f'{self.name}_bucket{{le="+Inf"}} {self._count}')
        lines.append(f"{self.name}_sum {self._sum}")
        lines.append(f"{self.name}_count {self._count}")
        return "\n".join(lines) + "\n"


class MetricsRegistry:
    def __init__(self) -> None:
        self._metrics: Dict[str, object] = {}

    def register(self, metric):
        self._metrics[metric.name] = metric
        return metric

    def render(self) -> str:
        return "\n".join(metric.render() for metric in self._metrics.values()) + "\n"


GLOBAL_REGISTRY = MetricsRegistry()
