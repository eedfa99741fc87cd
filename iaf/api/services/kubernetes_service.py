"""
Kubernetes service layer — Application / ManagedService CRUD and bindings.

Design principles:
  - The operator does the work: this layer only writes CR specs and the
    ManagedService bound-apps list, never child resources
  - Clean error handling: ValueError (bad input), LookupError (missing object),
    ConflictError (state forbids the change)
  - Bound-apps updates use optimistic concurrency with a bounded retry
"""
import logging
from typing import Optional

from kubernetes.client import ApiException

from iaf.api.models import (
    ApplicationCreateRequest, ApplicationLogsResponse, ApplicationResponse, ApplicationUpdateRequest,
    BuildLogsResponse, ConditionModel, EnvVarModel, ServiceCreateRequest, ServiceResponse,
)
from iaf.builders import connection_secret_name
from iaf.kube import ClusterStore
from iaf.models import Application, BoundManagedService, ManagedService
from iaf.resources import APPLICATION, APPLICATION_LABEL, KPACK_IMAGE_LABEL, MANAGED_SERVICE
from iaf.validation import validate_app_name, validate_env_var_name, validate_image_source

logger = logging.getLogger("kubernetes_service")

BOUND_APPS_RETRIES = 3
DEFAULT_LOG_LINES = 100
BUILD_LOG_LINES = 200
APP_CONTAINER = "app"


class ConflictError(Exception):
    """The requested change conflicts with the object's current state."""


def _parse_application(item: dict) -> ApplicationResponse:
    """Convert a raw Application CR dict into an ApplicationResponse."""
    app = Application.model_validate(item)
    spec, status = app.spec, app.status
    return ApplicationResponse(
        name=app.name,
        namespace=app.namespace,
        phase=status.phase or "Pending",
        url=status.url,
        image=spec.image,
        gitUrl=spec.git.url if spec.git else "",
        gitRevision=spec.git.revision if spec.git else "",
        blob=spec.blob,
        port=spec.port,
        replicas=spec.replicas,
        availableReplicas=status.available_replicas,
        latestImage=status.latest_image,
        buildStatus=status.build_status,
        host=spec.host,
        env=[EnvVarModel(name=e.name, value=e.value) for e in spec.env],
        boundServices=[b.service_name for b in spec.bound_managed_services],
        conditions=[ConditionModel(**c.to_wire()) for c in status.conditions],
        createdAt=item["metadata"].get("creationTimestamp"),
    )


def _parse_service(item: dict) -> ServiceResponse:
    svc = ManagedService.model_validate(item)
    return ServiceResponse(
        name=svc.name,
        namespace=svc.namespace,
        type=svc.spec.type,
        plan=svc.spec.plan.value,
        phase=svc.status.phase or "Pending",
        message=svc.status.message,
        connectionSecretRef=svc.status.connection_secret_ref,
        boundApps=list(svc.status.bound_apps),
        createdAt=item["metadata"].get("creationTimestamp"),
    )


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------

def list_applications(store, namespace: str) -> list[ApplicationResponse]:
    return [_parse_application(item) for item in store.list(APPLICATION, namespace)]


def get_application(store, namespace: str, name: str) -> Optional[ApplicationResponse]:
    item = store.get(APPLICATION, namespace, name)
    return _parse_application(item) if item else None


def create_application(store, namespace: str, req: ApplicationCreateRequest) -> ApplicationResponse:
    """Create an Application CR. Raises ValueError for bad input, ConflictError if it exists."""
    validate_app_name(req.name)
    for e in req.env:
        validate_env_var_name(e.name)

    spec: dict = {"port": req.port, "replicas": req.replicas}
    if req.image:
        spec["image"] = req.image
    if req.gitUrl:
        spec["git"] = {"url": req.gitUrl, "revision": req.gitRevision or "main"}
    if req.blob:
        spec["blob"] = req.blob
    if req.env:
        spec["env"] = [e.model_dump() for e in req.env]
    if req.host:
        spec["host"] = req.host
    if req.tls is not None:
        spec["tls"] = {"enabled": req.tls}

    validate_image_source(Application.model_validate({"metadata": {"name": req.name}, "spec": spec}).spec)

    body = {
        "apiVersion": APPLICATION.api_version,
        "kind": APPLICATION.kind,
        "metadata": {"name": req.name, "namespace": namespace},
        "spec": spec,
    }
    try:
        result = store.create(APPLICATION, namespace, body)
    except ApiException as e:
        if e.status == 409:
            raise ConflictError(f"Application '{req.name}' already exists")
        raise
    logger.info(f"Application {namespace}/{req.name} created")
    return _parse_application(result)


def update_application(store, namespace: str, name: str, req: ApplicationUpdateRequest) -> ApplicationResponse:
    """
    Apply a partial spec update. Raises LookupError if the application is
    missing, ValueError for bad input, ConflictError on a concurrent write.
    """
    for e in req.env or []:
        validate_env_var_name(e.name)
    item = store.get(APPLICATION, namespace, name)
    if item is None:
        raise LookupError(f"Application '{name}' not found")

    spec = item.setdefault("spec", {})
    if req.image:
        spec["image"] = req.image
        spec.pop("git", None)
        spec.pop("blob", None)
    if req.gitUrl:
        spec["git"] = {"url": req.gitUrl, "revision": req.gitRevision or "main"}
        spec.pop("image", None)
        spec.pop("blob", None)
    if req.blob:
        spec["blob"] = req.blob
        spec.pop("image", None)
        spec.pop("git", None)
    if req.port is not None:
        spec["port"] = req.port
    if req.replicas is not None:
        spec["replicas"] = req.replicas
    if req.env is not None:
        spec["env"] = [e.model_dump() for e in req.env]
    if req.host:
        spec["host"] = req.host
    if req.tls is not None:
        spec["tls"] = {"enabled": req.tls}

    try:
        updated = store.replace(APPLICATION, namespace, name, item)
    except ApiException as e:
        if e.status == 409:
            raise ConflictError(f"Application '{name}' was modified concurrently; retry the update")
        raise
    logger.info(f"Application {namespace}/{name} updated")
    return _parse_application(updated)


def application_logs(store, namespace: str, name: str, lines: int = DEFAULT_LOG_LINES) -> Optional[ApplicationLogsResponse]:
    """Tail of the app container's log in the first pod. None if the application is missing."""
    if store.get(APPLICATION, namespace, name) is None:
        return None
    pods = store.list_pods(namespace, f"{APPLICATION_LABEL}={name}")
    if not pods:
        return ApplicationLogsResponse()
    pod_name = pods[0]["metadata"]["name"]
    logs = store.pod_logs(namespace, pod_name, APP_CONTAINER, lines)
    return ApplicationLogsResponse(logs=logs, pods=len(pods), podName=pod_name)


def build_logs(store, namespace: str, name: str) -> Optional[BuildLogsResponse]:
    """
    Logs of every init container (the kpack build steps) of the latest build
    pod. None if the application is missing.
    """
    item = store.get(APPLICATION, namespace, name)
    if item is None:
        return None
    build_status = (item.get("status") or {}).get("buildStatus", "")
    pods = store.list_pods(namespace, f"{KPACK_IMAGE_LABEL}={name}")
    if not pods:
        return BuildLogsResponse(buildStatus=build_status)

    pod = pods[-1]
    pod_name = pod["metadata"]["name"]
    sections = []
    for container in (pod.get("spec") or {}).get("initContainers") or []:
        try:
            logs = store.pod_logs(namespace, pod_name, container["name"], BUILD_LOG_LINES)
        except ApiException as e:
            logger.debug(f"Build logs for {pod_name}/{container['name']} unavailable: {e.reason}")
            continue
        sections.append(f"=== {container['name']} ===\n{logs}\n")
    return BuildLogsResponse(buildLogs="".join(sections), buildStatus=build_status, podName=pod_name)


def delete_application(store, namespace: str, name: str) -> bool:
    """Delete an Application and release its service bindings. False if not found."""
    item = store.get(APPLICATION, namespace, name)
    if item is None:
        return False
    app = Application.model_validate(item)
    for bound in app.spec.bound_managed_services:
        _remove_bound_app(store, namespace, bound.service_name, name)
    deleted = store.delete(APPLICATION, namespace, name)
    logger.info(f"Application {namespace}/{name} deletion initiated")
    return deleted


# ---------------------------------------------------------------------------
# Managed services
# ---------------------------------------------------------------------------

def list_services(store, namespace: str) -> list[ServiceResponse]:
    return [_parse_service(item) for item in store.list(MANAGED_SERVICE, namespace)]


def get_service(store, namespace: str, name: str) -> Optional[ServiceResponse]:
    item = store.get(MANAGED_SERVICE, namespace, name)
    return _parse_service(item) if item else None


def create_service(store, namespace: str, req: ServiceCreateRequest) -> ServiceResponse:
    validate_app_name(req.name)
    body = {
        "apiVersion": MANAGED_SERVICE.api_version,
        "kind": MANAGED_SERVICE.kind,
        "metadata": {"name": req.name, "namespace": namespace},
        "spec": {"type": req.type.value, "plan": req.plan.value},
    }
    try:
        result = store.create(MANAGED_SERVICE, namespace, body)
    except ApiException as e:
        if e.status == 409:
            raise ConflictError(f"Service '{req.name}' already exists")
        raise
    logger.info(f"ManagedService {namespace}/{req.name} created (plan={req.plan.value})")
    return _parse_service(result)


def delete_service(store, namespace: str, name: str) -> bool:
    """
    Delete a ManagedService. Refused up front while applications are bound;
    the operator's finalizer enforces the same rule for direct deletes.
    """
    svc = get_service(store, namespace, name)
    if svc is None:
        return False
    if svc.boundApps:
        raise ConflictError(
            f"Service '{name}' is still bound to applications {svc.boundApps}; "
            "unbind them before deleting"
        )
    return store.delete(MANAGED_SERVICE, namespace, name)


# ---------------------------------------------------------------------------
# Bindings
# ---------------------------------------------------------------------------

def bind_service(store, namespace: str, service_name: str, app_name: str) -> ApplicationResponse:
    """Record the binding on the Application; the operator injects the PG* env vars."""
    if store.get(MANAGED_SERVICE, namespace, service_name) is None:
        raise LookupError(f"Service '{service_name}' not found")
    item = store.get(APPLICATION, namespace, app_name)
    if item is None:
        raise LookupError(f"Application '{app_name}' not found")

    app = Application.model_validate(item)
    if any(b.service_name == service_name for b in app.spec.bound_managed_services):
        raise ConflictError(f"Service '{service_name}' is already bound to application '{app_name}'")

    bound = item["spec"].setdefault("boundManagedServices", [])
    bound.append(BoundManagedService(
        service_name=service_name,
        secret_name=connection_secret_name(service_name),
    ).to_wire())
    updated = store.replace(APPLICATION, namespace, app_name, item)

    _add_bound_app(store, namespace, service_name, app_name)
    logger.info(f"Service {namespace}/{service_name} bound to application {app_name}")
    return _parse_application(updated)


def unbind_service(store, namespace: str, service_name: str, app_name: str) -> ApplicationResponse:
    item = store.get(APPLICATION, namespace, app_name)
    if item is None:
        raise LookupError(f"Application '{app_name}' not found")

    bound = item["spec"].get("boundManagedServices") or []
    remaining = [b for b in bound if b.get("serviceName") != service_name]
    if len(remaining) == len(bound):
        raise LookupError(f"Service '{service_name}' is not bound to application '{app_name}'")
    item["spec"]["boundManagedServices"] = remaining
    updated = store.replace(APPLICATION, namespace, app_name, item)

    _remove_bound_app(store, namespace, service_name, app_name)
    logger.info(f"Service {namespace}/{service_name} unbound from application {app_name}")
    return _parse_application(updated)


def _update_bound_apps(store, namespace: str, service_name: str, change) -> None:
    """Apply change(list) to status.boundApps, retrying on resourceVersion conflicts."""
    for attempt in range(BOUND_APPS_RETRIES):
        item = store.get(MANAGED_SERVICE, namespace, service_name)
        if item is None:
            return
        status = item.setdefault("status", {})
        current = list(status.get("boundApps") or [])
        wanted = change(current)
        if wanted == current:
            return
        status["boundApps"] = wanted
        try:
            store.replace_status(MANAGED_SERVICE, namespace, service_name, item)
            return
        except ApiException as e:
            if e.status != 409:
                raise
            logger.info(f"Bound-apps update conflict on {namespace}/{service_name} (attempt {attempt + 1})")
    raise ConflictError(f"Failed to update bound applications of service '{service_name}' after retries")


def _add_bound_app(store, namespace: str, service_name: str, app_name: str):
    _update_bound_apps(store, namespace, service_name,
                       lambda apps: apps if app_name in apps else apps + [app_name])


def _remove_bound_app(store, namespace: str, service_name: str, app_name: str):
    _update_bound_apps(store, namespace, service_name,
                       lambda apps: [a for a in apps if a != app_name])


def count_applications_by_phase(store, namespace: Optional[str] = None) -> dict:
    counts = {"total": 0, "Pending": 0, "Building": 0, "Deploying": 0, "Running": 0, "Failed": 0}
    for app in list_applications(store, namespace):
        counts["total"] += 1
        if app.phase in counts:
            counts[app.phase] += 1
    return counts


def get_cluster_store() -> ClusterStore:
    """FastAPI dependency; tests override it with an in-memory store."""
    return ClusterStore()
