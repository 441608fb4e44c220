from collections import Counter
from threading import Lock


def _series(key: str, labels: dict[str, str]) -> str:
    if not labels:
        return key
    rendered = ",".join(f"{name}={value}" for name, value in sorted(labels.items()))
    return f"{key}{{{rendered}}}"


class Metrics:
    """Process-local counters; a labelled increment also bumps the bare total."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._counters: Counter[str] = Counter()

    def inc(self, key: str, amount: int = 1, **labels: str) -> None:
        with self._lock:
            self._counters[key] += amount
            if labels:
                self._counters[_series(key, labels)] += amount

    def get(self, key: str, **labels: str) -> int:
        with self._lock:
            return self._counters[_series(key, labels)]

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)


metrics = Metrics()
