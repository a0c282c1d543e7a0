"""
In-process metrics
==================

Request/error/auth counters, latency percentiles and the transaction
monitor. Snapshots are exposed to SuperAdmins.
"""

import threading
from collections import Counter, deque
from typing import Dict, List, Optional

LATENCY_WINDOW = 500


def _percentile(values: List[float], pct: float) -> Optional[float]:
    if not values:
        return None
    ordered = sorted(values)
    index = min(len(ordered) - 1, max(0, int(round(pct / 100.0 * len(ordered))) - 1))
    return round(ordered[index], 2)


class MetricsService:
    """Thread-safe request metrics"""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.requests_total = 0
            self.requests_by_route: Counter = Counter()
            self.errors_by_status: Counter = Counter()
            self.auth_failures = 0
            self.rate_limit_hits = 0
            self.latencies: deque = deque(maxlen=LATENCY_WINDOW)

    def record_request(self, route: str, duration_ms: float) -> None:
        with self._lock:
            self.requests_total += 1
            self.requests_by_route[route] += 1
            self.latencies.append(duration_ms)

    def record_error(self, status_code: int) -> None:
        with self._lock:
            self.errors_by_status[int(status_code)] += 1

    def record_auth_failure(self) -> None:
        with self._lock:
            self.auth_failures += 1

    def record_rate_limit_hit(self) -> None:
        with self._lock:
            self.rate_limit_hits += 1

    def snapshot(self) -> Dict:
        with self._lock:
            latencies = list(self.latencies)
            return {
                "requests_total": self.requests_total,
                "requests_by_route": dict(self.requests_by_route),
                "errors_by_status": {str(k): v for k, v in self.errors_by_status.items()},
                "auth_failures": self.auth_failures,
                "rate_limit_hits": self.rate_limit_hits,
                "latency_ms": {
                    "samples": len(latencies),
                    "p50": _percentile(latencies, 50),
                    "p95": _percentile(latencies, 95),
                },
            }


class TransactionMonitor:
    """Counts request transaction outcomes"""

    def __init__(self):
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.started = 0
            self.committed = 0
            self.rolled_back = 0
            self.start_failures = 0
            self.unavailable_responses = 0

    def record_start(self) -> None:
        with self._lock:
            self.started += 1

    def record_commit(self) -> None:
        with self._lock:
            self.committed += 1

    def record_rollback(self) -> None:
        with self._lock:
            self.rolled_back += 1

    def record_start_failure(self) -> None:
        with self._lock:
            self.start_failures += 1

    def record_unavailable(self) -> None:
        with self._lock:
            self.unavailable_responses += 1

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {
                "started": self.started,
                "committed": self.committed,
                "rolled_back": self.rolled_back,
                "start_failures": self.start_failures,
                "unavailable_responses": self.unavailable_responses,
            }


metrics = MetricsService()
transaction_monitor = TransactionMonitor()
