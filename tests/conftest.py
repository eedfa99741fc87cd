"""
Shared fixtures: an in-memory API store with the semantics the reconcilers
rely on (404 reads as None, 409 on duplicate create and on stale
resourceVersion, finalizer-gated deletion, separate status writes).
"""
import copy
import itertools

import pytest
from kubernetes.client import ApiException

from iaf.application import ApplicationReconciler
from iaf.managedservice import ManagedServiceReconciler
from iaf.resources import APPLICATION, DATA_SOURCE, MANAGED_SERVICE


class FakeStore:
    def __init__(self):
        self.objects = {}
        self.writes = []
        self._versions = itertools.count(1)
        self._uids = itertools.count(1)
        self.pods = []
        self.logs = {}

    def _key(self, kind, namespace, name):
        return (kind, namespace if kind.namespaced else None, name)

    def _bump(self, obj: dict):
        obj["metadata"]["resourceVersion"] = str(next(self._versions))

    def _check_version(self, stored: dict, body: dict):
        sent = (body.get("metadata") or {}).get("resourceVersion")
        if sent and sent != stored["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")

    # --- store interface ---

    def get(self, kind, namespace, name):
        obj = self.objects.get(self._key(kind, namespace, name))
        return copy.deepcopy(obj) if obj is not None else None

    def list(self, kind, namespace=None):
        return [
            copy.deepcopy(obj) for (k, ns, _), obj in self.objects.items()
            if k == kind and (namespace is None or ns == namespace)
        ]

    def create(self, kind, namespace, body):
        name = body["metadata"]["name"]
        key = self._key(kind, namespace, name)
        if key in self.objects:
            raise ApiException(status=409, reason="AlreadyExists")
        obj = copy.deepcopy(body)
        meta = obj["metadata"]
        if kind.namespaced:
            meta["namespace"] = namespace
        meta.setdefault("uid", f"uid-{next(self._uids)}")
        meta.setdefault("creationTimestamp", "2026-01-01T00:00:00Z")
        self._bump(obj)
        self.objects[key] = obj
        self.writes.append(("create", kind.kind, name))
        return copy.deepcopy(obj)

    def replace(self, kind, namespace, name, body):
        key = self._key(kind, namespace, name)
        stored = self.objects.get(key)
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        self._check_version(stored, body)
        obj = copy.deepcopy(body)
        # Spec updates never touch the status subresource
        if "status" in stored:
            obj["status"] = copy.deepcopy(stored["status"])
        else:
            obj.pop("status", None)
        obj["metadata"]["deletionTimestamp"] = stored["metadata"].get("deletionTimestamp")
        if obj["metadata"]["deletionTimestamp"] is None:
            obj["metadata"].pop("deletionTimestamp")
        self._bump(obj)
        self.writes.append(("replace", kind.kind, name))
        if obj["metadata"].get("deletionTimestamp") and not obj["metadata"].get("finalizers"):
            del self.objects[key]
            return copy.deepcopy(obj)
        self.objects[key] = obj
        return copy.deepcopy(obj)

    def replace_status(self, kind, namespace, name, body):
        stored = self.objects.get(self._key(kind, namespace, name))
        if stored is None:
            raise ApiException(status=404, reason="Not Found")
        self._check_version(stored, body)
        stored["status"] = copy.deepcopy(body.get("status") or {})
        self._bump(stored)
        self.writes.append(("replace_status", kind.kind, name))
        return copy.deepcopy(stored)

    def delete(self, kind, namespace, name):
        key = self._key(kind, namespace, name)
        stored = self.objects.get(key)
        if stored is None:
            return False
        if stored["metadata"].get("finalizers"):
            stored["metadata"]["deletionTimestamp"] = "2026-01-02T00:00:00Z"
            self._bump(stored)
        else:
            del self.objects[key]
        self.writes.append(("delete", kind.kind, name))
        return True

    def annotate(self, kind, namespace, name, annotations):
        stored = self.objects.get(self._key(kind, namespace, name))
        if stored is None:
            return False
        stored["metadata"].setdefault("annotations", {}).update(annotations)
        self._bump(stored)
        self.writes.append(("annotate", kind.kind, name))
        return True

    def list_pods(self, namespace, label_selector):
        key, _, value = label_selector.partition("=")
        return [
            copy.deepcopy(p) for p in self.pods
            if p["metadata"]["namespace"] == namespace
            and p["metadata"].get("labels", {}).get(key) == value
        ]

    def pod_logs(self, namespace, pod, container, tail_lines):
        logs = self.logs.get((pod, container))
        if logs is None:
            raise ApiException(status=400, reason="BadRequest")
        return "\n".join(logs.splitlines()[-tail_lines:])

    # --- test helpers ---

    def put(self, kind, namespace, body: dict) -> dict:
        """Seed an object without recording a write."""
        created = self.create(kind, namespace, body)
        self.writes.pop()
        return created

    def set_status(self, kind, namespace, name, status: dict):
        """Simulate a controller outside the operator updating a child's status."""
        stored = self.objects[self._key(kind, namespace, name)]
        stored["status"] = status
        self._bump(stored)

    def spec_writes(self):
        return [w for w in self.writes if w[0] in ("create", "replace")]

    def add_pod(self, namespace, name, labels, logs=None, init_containers=()):
        """Seed a pod; logs maps container name to its log text."""
        self.pods.append({
            "metadata": {"name": name, "namespace": namespace, "labels": labels},
            "spec": {"initContainers": [{"name": c} for c in init_containers]},
        })
        for container, text in (logs or {}).items():
            self.logs[(name, container)] = text


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def app_reconciler(store):
    return ApplicationReconciler(
        store,
        cluster_builder="iaf-cluster-builder",
        registry_prefix="registry.example.com/iaf",
        base_domain="example.com",
    )


@pytest.fixture
def tls_app_reconciler(store):
    return ApplicationReconciler(
        store,
        cluster_builder="iaf-cluster-builder",
        registry_prefix="registry.example.com/iaf",
        base_domain="example.com",
        tls_issuer="letsencrypt",
    )


@pytest.fixture
def svc_reconciler(store):
    return ManagedServiceReconciler(store)


def make_application(name="myapp", namespace="test-ns", **spec) -> dict:
    return {
        "apiVersion": APPLICATION.api_version,
        "kind": APPLICATION.kind,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_managed_service(name="pgdb", namespace="test-ns", **spec) -> dict:
    spec.setdefault("type", "postgres")
    spec.setdefault("plan", "micro")
    return {
        "apiVersion": MANAGED_SERVICE.api_version,
        "kind": MANAGED_SERVICE.kind,
        "metadata": {"name": name, "namespace": namespace},
        "spec": spec,
    }


def make_data_source(name, mapping, secret="ds-secret") -> dict:
    return {
        "apiVersion": DATA_SOURCE.api_version,
        "kind": DATA_SOURCE.kind,
        "metadata": {"name": name},
        "spec": {
            "kind": "postgres",
            "secretRef": {"name": secret, "namespace": "iaf-system"},
            "envVarMapping": mapping,
        },
    }
