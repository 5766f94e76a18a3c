"""
Prometheus metrics blueprint.

Exposes /metrics and times every request. The collectors themselves live in
:mod:`marketplace.metrics`. Restrict this endpoint to the monitoring network.
"""
import time

from flask import Blueprint, Response, request, g
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from marketplace.metrics import (  # noqa: F401 (re-exported)
    registry, http_requests_total, http_request_duration_seconds, http_requests_in_flight,
    checkout_groups_total, checkout_duration_seconds, discount_config_errors_total,
    record_checkout, record_config_error,
)

metrics_bp = Blueprint('metrics', __name__)


def setup_metrics_instrumentation(app):
    """Time every request and count it by endpoint and status."""

    @app.before_request
    def start_request_timer():
        g._metrics_started_at = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def observe_request(response):
        started_at = g.pop('_metrics_started_at', None)
        if started_at is None:
            return response
        http_requests_in_flight.dec()
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(
                time.perf_counter() - started_at
            )
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except Exception as e:
            app.logger.warning(f"Failed to record request metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus text exposition (not authenticated)."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
