"""
ManagedService reconciler.

  ManagedService CR → one idempotent pass:
    1. Deleting?  bound apps → Failed + error (finalizer kept)
                  none       → drop finalizer (owner refs cascade the children)
    2. Finalizer missing → add it and requeue immediately
    3. Converge CNPG Cluster + NetworkPolicy
    4. Mirror cluster readiness → Provisioning / Ready (requeue 10s until Ready)
"""
import logging

from kubernetes.client import ApiException
from pydantic import ValidationError

from iaf.builders import build_database_cluster, build_network_policy
from iaf.errors import DeletionBlockedError, InvalidSpecError
from iaf.events import publish_event
from iaf.models import ManagedService, ManagedServicePhase, set_condition
from iaf.reconcile import DONE, Result, create_or_update
from iaf.resources import CNPG_CLUSTER, MANAGED_SERVICE, NETWORK_POLICY
from iaf.status import database_cluster_status

logger = logging.getLogger("iaf-operator")

FINALIZER = "iaf.io/managed-service-protection"
PROVISION_POLL_INTERVAL = 10
SUPPORTED_TYPES = ("postgres",)

READY_CONDITION = "Ready"


class ManagedServiceReconciler:
    def __init__(self, store):
        self.store = store

    def reconcile(self, namespace: str, name: str) -> Result:
        obj = self.store.get(MANAGED_SERVICE, namespace, name)
        if obj is None:
            logger.info(f"ManagedService {namespace}/{name} not found, already deleted")
            return DONE
        try:
            svc = ManagedService.model_validate(obj)
        except ValidationError as e:
            raise InvalidSpecError(f"ManagedService {namespace}/{name} is malformed: {e}") from e

        if svc.metadata.deletion_timestamp:
            return self._reconcile_delete(obj, svc)

        if FINALIZER not in svc.metadata.finalizers:
            obj["metadata"].setdefault("finalizers", []).append(FINALIZER)
            self.store.replace(MANAGED_SERVICE, namespace, name, obj)
            logger.info(f"[{namespace}/{name}] finalizer {FINALIZER} added")
            # Converge on a fresh read in the next pass
            return Result(requeue=True, reason="finalizer added")

        if svc.spec.type not in SUPPORTED_TYPES:
            message = (f"Unsupported service type {svc.spec.type!r}. "
                       f"Supported types: {', '.join(SUPPORTED_TYPES)}.")
            svc.status.phase = ManagedServicePhase.FAILED.value
            svc.status.message = message
            set_condition(svc.status.conditions, READY_CONDITION, False, "UnsupportedType", message)
            self._write_status(obj, svc)
            raise InvalidSpecError(f"ManagedService {namespace}/{name}: {message}")

        create_or_update(self.store, CNPG_CLUSTER, build_database_cluster(svc))
        create_or_update(self.store, NETWORK_POLICY, build_network_policy(svc))

        phase, secret_name = self._read_cluster_status(svc)
        svc.status.phase = phase
        if phase == ManagedServicePhase.READY.value:
            svc.status.connection_secret_ref = secret_name
            svc.status.message = ("Service is ready. Bind it to an application to inject "
                                  "credentials as environment variables.")
            set_condition(svc.status.conditions, READY_CONDITION, True, "ClusterReady", svc.status.message)
        else:
            svc.status.message = "Provisioning in progress. Poll the service status every 10s."
            set_condition(svc.status.conditions, READY_CONDITION, False, "Provisioning", svc.status.message)
        self._write_status(obj, svc)

        if phase != ManagedServicePhase.READY.value:
            return Result.after(PROVISION_POLL_INTERVAL, "database cluster not ready")
        return DONE

    def _reconcile_delete(self, obj: dict, svc: ManagedService) -> Result:
        if FINALIZER not in svc.metadata.finalizers:
            return DONE

        if svc.status.bound_apps:
            bound = ", ".join(svc.status.bound_apps)
            svc.status.phase = ManagedServicePhase.FAILED.value
            svc.status.message = (
                f"Cannot delete: service is still bound to applications [{bound}]. "
                "Unbind every application before deleting the service."
            )
            self._write_status(obj, svc)
            raise DeletionBlockedError(
                f"ManagedService {svc.namespace}/{svc.name} still bound to applications [{bound}]"
            )

        obj["metadata"]["finalizers"] = [f for f in svc.metadata.finalizers if f != FINALIZER]
        self.store.replace(MANAGED_SERVICE, svc.namespace, svc.name, obj)
        logger.info(f"[{svc.namespace}/{svc.name}] finalizer removed, deletion proceeds")
        publish_event("ManagedService", svc.namespace, svc.name, "DELETED",
                      "Finalizer removed; database cluster and network policy will be garbage-collected")
        return DONE

    def _read_cluster_status(self, svc: ManagedService) -> tuple[str, str]:
        """Read failures of any kind leave the service in Provisioning."""
        try:
            cluster = self.store.get(CNPG_CLUSTER, svc.namespace, svc.name)
        except ApiException as e:
            logger.debug(f"[{svc.namespace}/{svc.name}] cluster status not yet available: {e.reason}")
            return ManagedServicePhase.PROVISIONING.value, ""
        if cluster is None:
            return ManagedServicePhase.PROVISIONING.value, ""
        return database_cluster_status(cluster)

    def _write_status(self, obj: dict, svc: ManagedService):
        previous = (obj.get("status") or {}).get("phase", "")
        obj["status"] = svc.status.to_wire()
        updated = self.store.replace_status(MANAGED_SERVICE, svc.namespace, svc.name, obj)
        obj["metadata"]["resourceVersion"] = updated["metadata"].get("resourceVersion", "")
        if previous != svc.status.phase:
            logger.info(f"[{svc.namespace}/{svc.name}] phase {previous or 'None'} → {svc.status.phase}")
            publish_event("ManagedService", svc.namespace, svc.name, "PHASE_CHANGED",
                          svc.status.message, svc.status.phase)
