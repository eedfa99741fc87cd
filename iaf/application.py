"""
Application reconciler.

  Application CR → one idempotent pass:
    1. Resolve image (literal, or kpack Image build)
    2. Building  → status Building, requeue 5s
    3. First entry to Deploying is persisted before any replica-derived field
    4. Converge Deployment → Service → Certificate (TLS only) → IngressRoute
    5. Status from available replicas: Running, or Deploying + requeue 10s

No state survives between passes: the CR is re-read every time, and child
objects are garbage-collected through their owner references.
"""
import logging
from typing import Optional

from kubernetes.client import ApiException
from pydantic import ValidationError

from iaf.builders import (
    build_certificate, build_deployment, build_image, build_ingress_route, build_service,
    datasource_env_vars, inline_env_vars, managed_service_env_vars,
)
from iaf.errors import InvalidSpecError
from iaf.events import publish_event
from iaf.models import Application, ApplicationPhase, BuildStatus, DataSource, set_condition
from iaf.reconcile import DONE, Result, create_or_update, replace_service_spec
from iaf.resources import (
    APPLICATION, CERTIFICATE, DATA_SOURCE, DEPLOYMENT, INGRESS_ROUTE, KPACK_IMAGE, SERVICE,
)
from iaf.status import available_replicas, image_build_status
from iaf.validation import validate_env_var_name

logger = logging.getLogger("iaf-operator")

BUILD_POLL_INTERVAL = 5
DEPLOY_POLL_INTERVAL = 10

READY_CONDITION = "Ready"

# Phases from which the next successful image resolution enters Deploying
_PRE_DEPLOY_PHASES = ("", ApplicationPhase.PENDING, ApplicationPhase.BUILDING, ApplicationPhase.FAILED)


class ApplicationReconciler:
    def __init__(self, store, cluster_builder: str, registry_prefix: str,
                 base_domain: str, tls_issuer: str = ""):
        self.store = store
        self.cluster_builder = cluster_builder
        self.registry_prefix = registry_prefix
        self.base_domain = base_domain
        self.tls_issuer = tls_issuer

    def reconcile(self, namespace: str, name: str) -> Result:
        obj = self.store.get(APPLICATION, namespace, name)
        if obj is None:
            logger.info(f"Application {namespace}/{name} not found, already deleted")
            return DONE
        try:
            app = Application.model_validate(obj)
        except ValidationError as e:
            raise InvalidSpecError(f"Application {namespace}/{name} is malformed: {e}") from e

        try:
            image, build_status = self.resolve_image(app)
        except InvalidSpecError as e:
            self._set_failed(obj, app, str(e))
            raise

        if not image:
            self._set_building(obj, app, build_status)
            return Result.after(BUILD_POLL_INTERVAL, f"image build {build_status}")

        if app.status.phase in _PRE_DEPLOY_PHASES:
            self._set_deploying_phase_only(obj, app)

        tls_enabled = app.spec.tls_requested and bool(self.tls_issuer)

        deployment = self.reconcile_deployment(app, image)
        self.reconcile_service(app)
        self.reconcile_certificate(app, tls_enabled)
        self.reconcile_ingress_route(app, tls_enabled)

        return self._reconcile_status(obj, app, image, build_status, deployment, tls_enabled)

    # ------------------------------------------------------------------
    # Image resolution
    # ------------------------------------------------------------------

    def resolve_image(self, app: Application) -> tuple[str, str]:
        """
        Image to deploy and the build status to report.

        Returns ("", status) while a build is pending or running. A changed
        git ref or blob URL is written into the existing kpack Image, which
        starts a rebuild.
        """
        if app.spec.image:
            return app.spec.image, BuildStatus.NOT_REQUIRED.value

        if not app.spec.has_build_source:
            raise InvalidSpecError(
                f"Application {app.namespace}/{app.name} has no image, git, or blob source. "
                "Set spec.image, spec.git.url or spec.blob."
            )

        desired = build_image(app, self.cluster_builder, self.registry_prefix)
        existing = self.store.get(KPACK_IMAGE, app.namespace, app.name)
        if existing is None:
            try:
                self.store.create(KPACK_IMAGE, app.namespace, desired)
                logger.info(f"[{app.namespace}/{app.name}] kpack Image created")
            except ApiException as e:
                if e.status != 409:
                    raise
            return "", BuildStatus.BUILDING.value

        existing_spec = existing.get("spec") or {}
        if existing_spec.get("source") != desired["spec"]["source"]:
            existing["spec"] = desired["spec"]
            self.store.replace(KPACK_IMAGE, app.namespace, app.name, existing)
            logger.info(f"[{app.namespace}/{app.name}] build source changed, rebuilding")
            return "", BuildStatus.BUILDING.value

        build_status, latest_image = image_build_status(existing)
        if build_status == BuildStatus.BUILDING.value:
            return "", build_status
        return latest_image, build_status

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------

    def env_vars(self, app: Application) -> list:
        """Inline vars, then data source secret refs, then bound service secret refs."""
        env = inline_env_vars(app)

        for attached in app.spec.attached_data_sources:
            ds_obj = self.store.get(DATA_SOURCE, None, attached.data_source_name)
            if ds_obj is None:
                logger.warning(
                    f"[{app.namespace}/{app.name}] data source {attached.data_source_name} "
                    "no longer exists, skipping"
                )
                continue
            try:
                ds = DataSource.model_validate(ds_obj)
            except ValidationError as e:
                logger.warning(f"[{app.namespace}/{app.name}] data source {attached.data_source_name} "
                               f"is malformed, skipping: {e}")
                continue

            mapping = {}
            for key, env_name in ds.spec.env_var_mapping.items():
                try:
                    validate_env_var_name(env_name)
                except ValueError as e:
                    logger.warning(f"[{app.namespace}/{app.name}] data source "
                                   f"{attached.data_source_name}: {e}, skipping")
                    continue
                mapping[key] = env_name
            env.extend(datasource_env_vars(attached, mapping))

        for bound in app.spec.bound_managed_services:
            env.extend(managed_service_env_vars(bound))
        return env

    def reconcile_deployment(self, app: Application, image: str) -> dict:
        desired = build_deployment(app, image, self.env_vars(app))
        return create_or_update(self.store, DEPLOYMENT, desired)

    def reconcile_service(self, app: Application) -> dict:
        return create_or_update(self.store, SERVICE, build_service(app), merge=replace_service_spec)

    def reconcile_certificate(self, app: Application, tls_enabled: bool) -> Optional[dict]:
        if not tls_enabled:
            return None
        desired = build_certificate(app, app.host(self.base_domain), self.tls_issuer)
        return create_or_update(self.store, CERTIFICATE, desired)

    def reconcile_ingress_route(self, app: Application, tls_enabled: bool) -> dict:
        desired = build_ingress_route(app, self.base_domain, tls_enabled)
        return create_or_update(self.store, INGRESS_ROUTE, desired)

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def _write_status(self, obj: dict, app: Application, message: str):
        previous = (obj.get("status") or {}).get("phase", "")
        obj["status"] = app.status.to_wire()
        updated = self.store.replace_status(APPLICATION, app.namespace, app.name, obj)
        obj["metadata"]["resourceVersion"] = updated["metadata"].get("resourceVersion", "")
        if previous != app.status.phase:
            logger.info(f"[{app.namespace}/{app.name}] phase {previous or 'None'} → {app.status.phase}")
            publish_event("Application", app.namespace, app.name, "PHASE_CHANGED", message, app.status.phase)

    def _set_failed(self, obj: dict, app: Application, message: str):
        app.status.phase = ApplicationPhase.FAILED.value
        set_condition(app.status.conditions, READY_CONDITION, False, "InvalidSource", message)
        self._write_status(obj, app, message)

    def _set_building(self, obj: dict, app: Application, build_status: str):
        message = "Waiting for container image build to complete"
        app.status.phase = ApplicationPhase.BUILDING.value
        app.status.build_status = build_status
        set_condition(app.status.conditions, READY_CONDITION, False, "Building", message)
        self._write_status(obj, app, message)

    def _set_deploying_phase_only(self, obj: dict, app: Application):
        """Leaves replica fields alone so Running/availableReplicas never go stale together."""
        message = "Waiting for pod replicas to become available"
        app.status.phase = ApplicationPhase.DEPLOYING.value
        set_condition(app.status.conditions, READY_CONDITION, False, "Deploying", message)
        self._write_status(obj, app, message)

    def _reconcile_status(self, obj: dict, app: Application, image: str, build_status: str,
                          deployment: dict, tls_enabled: bool) -> Result:
        available = available_replicas(deployment)
        scheme = "https" if tls_enabled else "http"

        app.status.available_replicas = available
        app.status.latest_image = image
        app.status.build_status = build_status
        app.status.url = f"{scheme}://{app.host(self.base_domain)}"

        if available >= 1:
            message = f"{available} replica(s) available"
            app.status.phase = ApplicationPhase.RUNNING.value
            set_condition(app.status.conditions, READY_CONDITION, True, "Available", message)
            self._write_status(obj, app, message)
            return DONE

        message = "Waiting for pod replicas to become available"
        app.status.phase = ApplicationPhase.DEPLOYING.value
        set_condition(app.status.conditions, READY_CONDITION, False, "Deploying", message)
        self._write_status(obj, app, message)
        return Result.after(DEPLOY_POLL_INTERVAL, "no replicas available")
