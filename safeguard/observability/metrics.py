"""
Metrics definitions for SafeGuard.

This module defines Prometheus metrics for monitoring coordinate
resolution, realtime sync, optimistic updates and notification delivery.
"""

from prometheus_client import Counter, Gauge

# 좌표 해석
coordinates_resolved = Counter(
    "coordinates_resolved_total",
    "Number of coordinate resolutions",
    ["source", "confidence"]
)

# 실시간 구독
realtime_events = Counter(
    "realtime_events_total",
    "Inbound realtime events dispatched to handlers",
    ["topic"]
)

realtime_status = Counter(
    "realtime_status_total",
    "Provider status reports received per topic",
    ["topic", "status"]
)

reconnects = Counter(
    "realtime_reconnects_total",
    "Scheduled reconnect attempts",
    ["topic"]
)

reconnect_exhausted = Counter(
    "realtime_reconnect_exhausted_total",
    "Topics that gave up after exhausting the retry budget",
    ["topic"]
)

sync_available = Gauge(
    "sync_available",
    "1 while every realtime topic is within its retry budget"
)

# 낙관적 업데이트
optimistic_applied = Counter(
    "optimistic_applied_total",
    "Optimistic updates applied to the store",
    ["kind"]
)

optimistic_confirmed = Counter(
    "optimistic_confirmed_total",
    "Optimistic updates confirmed by the backend"
)

optimistic_rolled_back = Counter(
    "optimistic_rolled_back_total",
    "Optimistic updates reversed",
    ["kind"]
)

optimistic_expired = Counter(
    "optimistic_expired_total",
    "Optimistic updates discarded by the expiry sweep"
)

optimistic_pending = Gauge(
    "optimistic_pending",
    "Optimistic updates currently tracked"
)

# 알림
notifications_delivered = Counter(
    "notifications_delivered_total",
    "Notifications that passed filtering",
    ["type", "priority"]
)

notifications_rejected = Counter(
    "notifications_rejected_total",
    "Notification candidates rejected by filtering",
    ["reason"]
)

notifications_suppressed = Counter(
    "notifications_suppressed_total",
    "Interruptive channels suppressed for delivered notifications",
    ["reason"]
)

push_failures = Counter(
    "push_failures_total",
    "Push channel failures",
    ["kind"]
)

storage_failures = Counter(
    "storage_failures_total",
    "Key/value storage operations that failed",
    ["operation"]
)

mutation_failures = Counter(
    "mutation_failures_total",
    "Backend mutations that failed",
    ["operation", "kind"]
)
