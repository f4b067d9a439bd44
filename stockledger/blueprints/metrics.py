"""
Prometheus metrics blueprint for observability.

Exposes /metrics endpoint with ledger and HTTP request metrics.
This endpoint should be restricted to internal network or monitoring systems only.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time

from stockledger.services.metrics_service import (
    MULTIPROCESS_MODE, REGISTRY, registry,
    http_requests_total, http_request_duration_seconds, http_requests_in_flight
)

metrics_bp = Blueprint('metrics', __name__)

# Not counted as API traffic
UNTRACKED_ENDPOINTS = frozenset({'metrics.metrics', 'health'})


def setup_metrics_instrumentation(app):
    """Time every ledger API request; /metrics and /health are left out."""

    @app.before_request
    def before_request_metrics():
        if request.endpoint in UNTRACKED_ENDPOINTS:
            return
        g._prometheus_metrics_start_time = time.time()
        http_requests_in_flight.inc()

    @app.after_request
    def after_request_metrics(response):
        start = g.pop('_prometheus_metrics_start_time', None)
        if start is None:
            return response

        http_requests_in_flight.dec()
        try:
            # Endpoint name (e.g., 'stock.create_movement'), unmatched routes share one label
            endpoint = request.endpoint or 'unknown'
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(time.time() - start)
            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                http_status=response.status_code
            ).inc()
        except Exception as e:
            # Don't break request flow if metrics fail
            app.logger.warning(f"Failed to record metrics for {request.path}: {e}")

        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition. Not authenticated: restrict by network rules."""
    data = generate_latest(registry if MULTIPROCESS_MODE else REGISTRY)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
