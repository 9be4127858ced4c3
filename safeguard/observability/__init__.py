"""
Observability for SafeGuard.

Logging setup, Prometheus metrics and the health/metrics HTTP app.
"""
