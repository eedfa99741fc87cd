"""
Kubernetes API store — thin wrapper over the kubernetes client.

Every object crosses this boundary as a plain wire dict. Built-in kinds go
through their typed APIs, everything else through CustomObjectsApi.
A missing object reads as None; every other ApiException propagates.
"""
from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client, config
from kubernetes.client import ApiException

from iaf.config import settings
from iaf.resources import DEPLOYMENT, NETWORK_POLICY, SERVICE, Kind

logger = logging.getLogger("iaf-kube")

_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        try:
            config.load_incluster_config()
        except config.ConfigException:
            config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


def core_api() -> client.CoreV1Api:
    _ensure_k8s()
    return client.CoreV1Api()


def apps_api() -> client.AppsV1Api:
    _ensure_k8s()
    return client.AppsV1Api()


def networking_api() -> client.NetworkingV1Api:
    _ensure_k8s()
    return client.NetworkingV1Api()


def custom_api() -> client.CustomObjectsApi:
    _ensure_k8s()
    return client.CustomObjectsApi()


# Built-in kinds: (api factory, method suffix)
_TYPED = {
    DEPLOYMENT: (apps_api, "namespaced_deployment"),
    SERVICE: (core_api, "namespaced_service"),
    NETWORK_POLICY: (networking_api, "namespaced_network_policy"),
}


class ClusterStore:
    """get/create/replace/replace_status against the live API server."""

    def __init__(self, timeout: int = settings.API_TIMEOUT):
        self.timeout = timeout
        self._serializer = client.ApiClient()

    def _to_dict(self, obj) -> dict:
        if isinstance(obj, dict):
            return obj
        return self._serializer.sanitize_for_serialization(obj)

    def get(self, kind: Kind, namespace: Optional[str], name: str) -> Optional[dict]:
        try:
            if kind in _TYPED:
                factory, suffix = _TYPED[kind]
                obj = getattr(factory(), f"read_{suffix}")(
                    name, namespace, _request_timeout=self.timeout)
            elif kind.namespaced:
                obj = custom_api().get_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name,
                    _request_timeout=self.timeout)
            else:
                obj = custom_api().get_cluster_custom_object(
                    kind.group, kind.version, kind.plural, name,
                    _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise
        return self._to_dict(obj)

    def create(self, kind: Kind, namespace: str, body: dict) -> dict:
        if kind in _TYPED:
            factory, suffix = _TYPED[kind]
            obj = getattr(factory(), f"create_{suffix}")(
                namespace, body, _request_timeout=self.timeout)
        else:
            obj = custom_api().create_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, body,
                _request_timeout=self.timeout)
        return self._to_dict(obj)

    def replace(self, kind: Kind, namespace: str, name: str, body: dict) -> dict:
        """Full update; the body's resourceVersion makes it conditional."""
        if kind in _TYPED:
            factory, suffix = _TYPED[kind]
            obj = getattr(factory(), f"replace_{suffix}")(
                name, namespace, body, _request_timeout=self.timeout)
        else:
            obj = custom_api().replace_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name, body,
                _request_timeout=self.timeout)
        return self._to_dict(obj)

    def replace_status(self, kind: Kind, namespace: str, name: str, body: dict) -> dict:
        """Status subresource update (custom resources only)."""
        obj = custom_api().replace_namespaced_custom_object_status(
            kind.group, kind.version, namespace, kind.plural, name, body,
            _request_timeout=self.timeout)
        return self._to_dict(obj)

    def delete(self, kind: Kind, namespace: str, name: str) -> bool:
        """Delete by name. Returns False if it was already gone."""
        try:
            if kind in _TYPED:
                factory, suffix = _TYPED[kind]
                getattr(factory(), f"delete_{suffix}")(name, namespace, _request_timeout=self.timeout)
            else:
                custom_api().delete_namespaced_custom_object(
                    kind.group, kind.version, namespace, kind.plural, name,
                    _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def list(self, kind: Kind, namespace: Optional[str] = None) -> list[dict]:
        """Custom objects in one namespace, or in all namespaces when namespace is None."""
        if namespace is None:
            result = custom_api().list_cluster_custom_object(
                kind.group, kind.version, kind.plural,
                _request_timeout=self.timeout)
        else:
            result = custom_api().list_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural,
                _request_timeout=self.timeout)
        return result.get("items", [])

    def annotate(self, kind: Kind, namespace: str, name: str, annotations: dict) -> bool:
        """Merge-patch annotations onto a custom object. Returns False if it is gone."""
        try:
            custom_api().patch_namespaced_custom_object(
                kind.group, kind.version, namespace, kind.plural, name,
                {"metadata": {"annotations": annotations}},
                _request_timeout=self.timeout)
        except ApiException as e:
            if e.status == 404:
                return False
            raise
        return True

    def list_pods(self, namespace: str, label_selector: str) -> list[dict]:
        pods = core_api().list_namespaced_pod(
            namespace, label_selector=label_selector, _request_timeout=self.timeout)
        return [self._to_dict(p) for p in pods.items]

    def pod_logs(self, namespace: str, pod: str, container: str, tail_lines: int) -> str:
        return core_api().read_namespaced_pod_log(
            pod, namespace, container=container, tail_lines=tail_lines,
            _request_timeout=self.timeout)
