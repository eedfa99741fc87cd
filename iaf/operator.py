"""
IAF Operator — kopf wiring for the Application and ManagedService reconcilers.

Run with:  kopf run -m iaf.operator --all-namespaces

  Application / ManagedService CR  → create / update / resume → reconcile pass
  Owned Deployment, kpack Image     → event → trigger annotation on the Application
  Owned CNPG Cluster                → event → trigger annotation on the ManagedService
  ManagedService marked deleted     → optional delete handler → reconcile pass
  Timer                             → trigger annotation on the Application (resync)

Every pass runs in a handler of the CR itself, so kopf keeps passes on one
object serial and retries them. The reconcilers decide; this module only
translates their outcome:
  Result requeue                → kopf.TemporaryError(delay=...)
  ReconcileError / ApiException → kopf.TemporaryError(delay=ERROR_RETRY_DELAY)
"""
import logging
from typing import Callable, Optional

import kopf
from kubernetes.client import ApiException

from iaf.application import ApplicationReconciler
from iaf.config import settings as iaf_settings
from iaf.errors import ReconcileError
from iaf.kube import ClusterStore
from iaf.managedservice import ManagedServiceReconciler
from iaf.models import now
from iaf.reconcile import Result
from iaf.resources import (
    APPLICATION, CNPG_CLUSTER, DEPLOYMENT, KPACK_IMAGE, MANAGED_BY, MANAGED_BY_LABEL, MANAGED_SERVICE,
    Kind,
)

logger = logging.getLogger("iaf-operator")

# Delay for a requeue with no explicit interval (e.g. right after adding a finalizer)
IMMEDIATE_REQUEUE_DELAY = 1

MANAGED = {MANAGED_BY_LABEL: MANAGED_BY}

# Changing this annotation on a CR runs its update handler
TRIGGER_ANNOTATION = f"{iaf_settings.CRD_GROUP}/child-revision"
KOPF_PREFIX = f"kopf.{iaf_settings.CRD_GROUP}"


def application_reconciler() -> ApplicationReconciler:
    return ApplicationReconciler(
        ClusterStore(),
        cluster_builder=iaf_settings.CLUSTER_BUILDER,
        registry_prefix=iaf_settings.REGISTRY_PREFIX,
        base_domain=iaf_settings.BASE_DOMAIN,
        tls_issuer=iaf_settings.TLS_ISSUER,
    )


def managed_service_reconciler() -> ManagedServiceReconciler:
    return ManagedServiceReconciler(ClusterStore())


def run_pass(reconcile: Callable[[str, str], Result], namespace: str, name: str) -> Result:
    """Run one pass and raise kopf.TemporaryError for anything that must be retried."""
    try:
        result = reconcile(namespace, name)
    except ReconcileError as e:
        raise kopf.TemporaryError(str(e), delay=iaf_settings.ERROR_RETRY_DELAY)
    except ApiException as e:
        raise kopf.TemporaryError(
            f"API error on {namespace}/{name} ({e.status}): {e.reason}",
            delay=iaf_settings.ERROR_RETRY_DELAY,
        )
    if result.requeue:
        raise kopf.TemporaryError(
            result.reason or "requeue requested",
            delay=result.requeue_after or IMMEDIATE_REQUEUE_DELAY,
        )
    return result


def owner_name(body, kind: str) -> Optional[str]:
    for ref in body.get("metadata", {}).get("ownerReferences", []) or []:
        if ref.get("kind") == kind and ref.get("controller"):
            return ref.get("name")
    return None


def touch_owner(kind: Kind, namespace: str, name: str, revision: str, logger):
    """
    Schedule a pass on the owner by changing its trigger annotation.

    The pass then runs in the owner's own update handler, so kopf keeps it
    serial with every other pass on that object and honours its requeue delay.
    """
    if not ClusterStore().annotate(kind, namespace, name, {TRIGGER_ANNOTATION: revision}):
        logger.debug(f"{kind.kind} {namespace}/{name} is gone, nothing to trigger")


def child_revision(body) -> str:
    meta = body.get("metadata", {})
    return f"{body.get('kind', '')}/{meta.get('name', '')}@{meta.get('resourceVersion', '')}"


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **kwargs):
    settings.posting.enabled = True
    settings.persistence.finalizer = f"{iaf_settings.CRD_GROUP}/kopf-finalizer"
    # Kept off the iaf.io/ prefix so kopf never treats the trigger annotation as its own
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(prefix=KOPF_PREFIX)
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=KOPF_PREFIX, key="last-handled-configuration",
    )
    settings.execution.max_workers = iaf_settings.MAX_WORKERS
    logger.info(
        f"IAF Operator started (max_workers={iaf_settings.MAX_WORKERS}, "
        f"domain={iaf_settings.BASE_DOMAIN}, tls_issuer={iaf_settings.TLS_ISSUER or 'none'}, "
        f"builder={iaf_settings.CLUSTER_BUILDER})"
    )


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

@kopf.on.create(APPLICATION.group, APPLICATION.version, APPLICATION.plural)
@kopf.on.update(APPLICATION.group, APPLICATION.version, APPLICATION.plural)
@kopf.on.resume(APPLICATION.group, APPLICATION.version, APPLICATION.plural)
def reconcile_application(name, namespace, logger, **kwargs):
    logger.debug(f"Reconciling Application {namespace}/{name}")
    run_pass(application_reconciler().reconcile, namespace, name)


@kopf.timer(APPLICATION.group, APPLICATION.version, APPLICATION.plural,
            interval=iaf_settings.RESYNC_INTERVAL, idle=iaf_settings.RESYNC_INTERVAL)
def resync_application(name, namespace, logger, **kwargs):
    """Level-triggered resync: repairs drifted children and picks up lost requeues."""
    touch_owner(APPLICATION, namespace, name, f"resync@{now()}", logger)


@kopf.on.event(DEPLOYMENT.group, DEPLOYMENT.version, DEPLOYMENT.plural, labels=MANAGED)
@kopf.on.event(KPACK_IMAGE.group, KPACK_IMAGE.version, KPACK_IMAGE.plural, labels=MANAGED)
def application_child_changed(body, event, namespace, logger, **kwargs):
    owner = owner_name(body, APPLICATION.kind)
    if owner is None or event.get("type") == "DELETED":
        return
    touch_owner(APPLICATION, namespace, owner, child_revision(body), logger)


# ---------------------------------------------------------------------------
# ManagedService
# ---------------------------------------------------------------------------

@kopf.on.create(MANAGED_SERVICE.group, MANAGED_SERVICE.version, MANAGED_SERVICE.plural)
@kopf.on.update(MANAGED_SERVICE.group, MANAGED_SERVICE.version, MANAGED_SERVICE.plural)
@kopf.on.resume(MANAGED_SERVICE.group, MANAGED_SERVICE.version, MANAGED_SERVICE.plural)
def reconcile_managed_service(name, namespace, logger, **kwargs):
    logger.debug(f"Reconciling ManagedService {namespace}/{name}")
    run_pass(managed_service_reconciler().reconcile, namespace, name)


@kopf.on.delete(MANAGED_SERVICE.group, MANAGED_SERVICE.version, MANAGED_SERVICE.plural, optional=True)
def delete_managed_service(name, namespace, logger, **kwargs):
    """
    Deletion is gated by the reconciler's own finalizer, not kopf's: optional=True
    keeps kopf from adding one and still calls us while ours blocks deletion.
    """
    logger.info(f"ManagedService {namespace}/{name} marked for deletion")
    run_pass(managed_service_reconciler().reconcile, namespace, name)


@kopf.on.event(CNPG_CLUSTER.group, CNPG_CLUSTER.version, CNPG_CLUSTER.plural, labels=MANAGED)
def managed_service_child_changed(body, event, namespace, logger, **kwargs):
    owner = owner_name(body, MANAGED_SERVICE.kind)
    if owner is None or event.get("type") == "DELETED":
        return
    touch_owner(MANAGED_SERVICE, namespace, owner, child_revision(body), logger)
