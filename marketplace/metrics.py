"""
Prometheus collectors for the marketplace.

Holds the per-endpoint HTTP metrics and the checkout counters (group
outcomes, checkout latency, ignored discount rules). Services record through
the ``record_*`` helpers, which never raise. The ``/metrics`` endpoint lives
in :mod:`marketplace.blueprints.metrics`.
"""
import logging
import os

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import multiprocess, REGISTRY

logger = logging.getLogger(__name__)

# Gunicorn workers share one registry through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = 'PROMETHEUS_MULTIPROC_DIR' in os.environ

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

http_requests_total = Counter(
    'http_requests_total', 'Total HTTP requests',
    ['method', 'endpoint', 'http_status'], registry=_metric_registry
)
http_request_duration_seconds = Histogram(
    'http_request_duration_seconds', 'HTTP request latency in seconds',
    ['method', 'endpoint'], registry=_metric_registry, buckets=LATENCY_BUCKETS
)
http_requests_in_flight = Gauge(
    'http_requests_in_flight', 'HTTP requests currently being served',
    registry=_metric_registry, multiprocess_mode='livesum'
)

checkout_groups_total = Counter(
    'checkout_groups_total', 'Seller groups processed by checkout, by final state',
    ['outcome'], registry=_metric_registry
)
checkout_duration_seconds = Histogram(
    'checkout_duration_seconds', 'Wall time of a whole multi-seller checkout',
    registry=_metric_registry, buckets=LATENCY_BUCKETS
)
discount_config_errors_total = Counter(
    'discount_config_errors_total', 'Enabled discount rules ignored because they are misconfigured',
    ['rule'], registry=_metric_registry
)


def record_checkout(outcomes, duration: float) -> None:
    """Count one checkout: ``outcomes`` are the final group states ('confirmed'/'rejected')."""
    try:
        for outcome in outcomes:
            checkout_groups_total.labels(outcome=outcome).inc()
        checkout_duration_seconds.observe(duration)
    except Exception as e:
        logger.warning(f"Failed to record checkout metrics: {e}")


def record_config_error(rule: str) -> None:
    try:
        discount_config_errors_total.labels(rule=rule).inc()
    except Exception as e:
        logger.warning(f"Failed to record discount rule metric: {e}")
