"""
Prometheus metrics for the platform API.

Counters are created once, on first use, against the default registry.
"""
import logging

from prometheus_client import Counter, Gauge

from iaf.api.services.kubernetes_service import count_applications_by_phase

logger = logging.getLogger("metrics")

PHASES = ["Pending", "Building", "Deploying", "Running", "Failed"]

_metrics_initialized = False


def init_metrics():
    global _metrics_initialized
    if _metrics_initialized:
        return
    global APPS_CREATED, APPS_DELETED, SERVICES_CREATED, SERVICES_DELETED, BINDINGS, API_FAILURES, APPS_TOTAL
    APPS_CREATED = Counter(
        "iaf_applications_created_total",
        "Total applications created",
        ["source"],
    )
    APPS_DELETED = Counter(
        "iaf_applications_deleted_total",
        "Total applications deleted",
    )
    SERVICES_CREATED = Counter(
        "iaf_managed_services_created_total",
        "Total managed services created",
        ["type", "plan"],
    )
    SERVICES_DELETED = Counter(
        "iaf_managed_services_deleted_total",
        "Total managed services deleted",
    )
    BINDINGS = Counter(
        "iaf_bindings_total",
        "Service bind/unbind operations",
        ["action"],
    )
    API_FAILURES = Counter(
        "iaf_api_failures_total",
        "Requests that failed with a server-side error",
    )
    APPS_TOTAL = Gauge(
        "iaf_applications",
        "Current applications by phase",
        ["phase"],
    )
    _metrics_initialized = True


def record_app_create(source: str):
    if _metrics_initialized:
        APPS_CREATED.labels(source=source).inc()


def record_app_delete():
    if _metrics_initialized:
        APPS_DELETED.inc()


def record_service_create(service_type: str, plan: str):
    if _metrics_initialized:
        SERVICES_CREATED.labels(type=service_type, plan=plan).inc()


def record_service_delete():
    if _metrics_initialized:
        SERVICES_DELETED.inc()


def record_binding(action: str):
    if _metrics_initialized:
        BINDINGS.labels(action=action).inc()


def record_failure():
    if _metrics_initialized:
        API_FAILURES.inc()


def update_gauges(store):
    if not _metrics_initialized:
        return
    counts = count_applications_by_phase(store)
    for phase in PHASES:
        APPS_TOTAL.labels(phase=phase).set(counts.get(phase, 0))
