"""In-memory metrics sink rendered as Prometheus text."""

from __future__ import annotations

import threading
import time
from collections import Counter
from contextlib import contextmanager


def _metric_name(name: str) -> str:
    return "safesnap_" + name.replace(".", "_")


def _key(name: str, tags: dict) -> tuple:
    return (name, tuple(sorted((k, str(v) or "unknown") for k, v in tags.items())))


def _labels(tags: tuple[tuple[str, str], ...]) -> str:
    if not tags:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in tags) + "}"


class MetricsSink:
    """Counters and timers keyed by (name, sorted tags)."""

    def __init__(self):
        self._counters = Counter()
        self._timer_counts = Counter()
        self._timer_sums_ms = Counter()
        self._lock = threading.Lock()

    def increment(self, name: str, amount: int = 1, **tags: str) -> None:
        key = _key(name, tags)
        with self._lock:
            self._counters[key] += amount

    def record_duration(self, name: str, duration_ms: float, **tags: str) -> None:
        key = _key(name, tags)
        with self._lock:
            self._timer_counts[key] += 1
            self._timer_sums_ms[key] += duration_ms

    @contextmanager
    def timer(self, name: str, **tags: str):
        started = time.monotonic()
        try:
            yield
        finally:
            self.record_duration(name, (time.monotonic() - started) * 1000, **tags)

    def count(self, name: str, **tags: str) -> int:
        key = _key(name, tags)
        with self._lock:
            return self._counters[key]

    def timer_count(self, name: str, **tags: str) -> int:
        key = _key(name, tags)
        with self._lock:
            return self._timer_counts[key]

    # -- Domain shortcuts ------------------------------------------------------

    def record_incident_created(self) -> None:
        self.increment("incidents.created")

    def record_file_uploaded(self, file_type: str) -> None:
        self.increment("files.uploaded", type=file_type)

    def record_auth(self, success: bool) -> None:
        self.increment("auth.success" if success else "auth.failure")

    def record_vision_call(self) -> None:
        self.increment("vision.api.calls")

    def record_openai_success(self) -> None:
        self.increment("openai.success")

    def record_openai_error(self, error_type: str) -> None:
        self.increment("openai.error", type=error_type)

    def record_rca_generated(self, category: str) -> None:
        self.increment("rca.generated", category=category)

    def record_rca_failed(self, error_type: str) -> None:
        self.increment("rca.failed", error_type=error_type)

    def record_rca_approved(self, category: str) -> None:
        self.increment("rca.approved", category=category)

    # -- Exposition ------------------------------------------------------------

    def render_prometheus(self) -> str:
        with self._lock:
            counters = sorted(self._counters.items())
            timers = sorted(self._timer_counts.items())
            sums = dict(self._timer_sums_ms)

        lines = []
        seen = set()
        for (name, tags), value in counters:
            metric = _metric_name(name) + "_total"
            if metric not in seen:
                lines.append(f"# TYPE {metric} counter")
                seen.add(metric)
            lines.append(f"{metric}{_labels(tags)} {value}")

        for (name, tags), value in timers:
            metric = _metric_name(name) + "_ms"
            if metric not in seen:
                lines.append(f"# TYPE {metric} summary")
                seen.add(metric)
            lines.append(f"{metric}_count{_labels(tags)} {value}")
            lines.append(f"{metric}_sum{_labels(tags)} {sums[(name, tags)]:.1f}")

        return "\n".join(lines) + "\n"
