"""
auth/metrics.py -- Metrics sink injected into AuthenticationService.

There is no process-wide registry. The API lifespan creates one
InMemoryMetrics at startup, hands it to the service, renders it at
GET /metrics, and drops it at shutdown. Anything that only needs to count
takes a MetricsSink, so tests can pass NullMetrics or their own recorder.

Series names used by the service:
  auth_requests_total            counter   every register/login/refresh/logout/verify
  auth_failed_logins_total       counter   bad credentials or inactive account
  auth_sessions_revoked_total    counter   sessions deleted by logout/password change/suspend
  auth_request_duration_seconds  summary   login latency (bcrypt dominated)
  auth_active_sessions           gauge     set on each /metrics scrape
"""

from __future__ import annotations

import threading
from typing import Protocol

_HELP = {
    "auth_requests_total": ("counter", "Total number of authentication requests"),
    "auth_failed_logins_total": ("counter", "Total number of failed login attempts"),
    "auth_sessions_revoked_total": ("counter", "Total number of sessions revoked before expiry"),
    "auth_request_duration_seconds": ("summary", "Authentication request duration in seconds"),
    "auth_active_sessions": ("gauge", "Number of active user sessions"),
}


class MetricsSink(Protocol):
    def increment(self, name: str, amount: float = 1.0) -> None: ...

    def observe(self, name: str, value: float) -> None: ...

    def set_gauge(self, name: str, value: float) -> None: ...


class NullMetrics:
    """Discards everything."""

    def increment(self, name: str, amount: float = 1.0) -> None:
        pass

    def observe(self, name: str, value: float) -> None:
        pass

    def set_gauge(self, name: str, value: float) -> None:
        pass


class InMemoryMetrics:
    """Thread-safe counters, gauges and summaries with Prometheus text rendering.

    Sync route handlers run in the threadpool, so updates take a lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, float] = {}
        self._gauges: dict[str, float] = {}
        self._summaries: dict[str, tuple[int, float]] = {}

    def increment(self, name: str, amount: float = 1.0) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0.0) + amount

    def observe(self, name: str, value: float) -> None:
        with self._lock:
            count, total = self._summaries.get(name, (0, 0.0))
            self._summaries[name] = (count + 1, total + value)

    def set_gauge(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = value

    def value(self, name: str) -> float:
        """Current counter or gauge value, 0 if never touched."""
        with self._lock:
            if name in self._counters:
                return self._counters[name]
            return self._gauges.get(name, 0.0)

    def render(self) -> str:
        """Return all series in the Prometheus text exposition format."""
        lines: list[str] = []
        with self._lock:
            series = [(n, v, "counter") for n, v in sorted(self._counters.items())]
            series += [(n, v, "gauge") for n, v in sorted(self._gauges.items())]
            summaries = sorted(self._summaries.items())
        for name, value, kind in series:
            lines.extend(_header(name, kind))
            lines.append(f"{name} {_fmt(value)}")
        for name, (count, total) in summaries:
            lines.extend(_header(name, "summary"))
            lines.append(f"{name}_count {count}")
            lines.append(f"{name}_sum {_fmt(total)}")
        return "\n".join(lines) + "\n"


def _header(name: str, default_kind: str) -> list[str]:
    kind, help_text = _HELP.get(name, (default_kind, name))
    return [f"# HELP {name} {help_text}", f"# TYPE {name} {kind}"]


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(value)
