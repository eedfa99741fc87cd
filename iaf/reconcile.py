"""
Shared reconcile plumbing: the pass outcome and the create-or-update policy
used identically for every child resource.
"""
import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from kubernetes.client import ApiException

from iaf.resources import Kind

logger = logging.getLogger("iaf-operator")

# Hash of the spec last written by the operator
SPEC_HASH_ANNOTATION = "iaf.io/spec-hash"


@dataclass(frozen=True)
class Result:
    """
    Outcome of one reconcile pass. Errors are raised, not returned.

    requeue=True with requeue_after=0 asks for an immediate retry.
    """
    requeue: bool = False
    requeue_after: float = 0
    reason: str = ""

    @classmethod
    def after(cls, seconds: float, reason: str = "") -> "Result":
        return cls(requeue=True, requeue_after=seconds, reason=reason)


DONE = Result()


def replace_spec(existing: dict, desired: dict):
    existing["spec"] = desired["spec"]


def replace_service_spec(existing: dict, desired: dict):
    """Services keep server-allocated fields (clusterIP, ipFamilies)."""
    spec = existing.setdefault("spec", {})
    spec["ports"] = desired["spec"]["ports"]
    spec["selector"] = desired["spec"]["selector"]


def spec_hash(spec: dict) -> str:
    return hashlib.sha256(json.dumps(spec, sort_keys=True).encode()).hexdigest()[:16]


def covers(live, desired) -> bool:
    """
    True if every field set in desired has the same value in live.
    Fields only present in live (server defaults) are ignored.
    """
    if isinstance(desired, dict):
        return isinstance(live, dict) and all(
            k in live and covers(live[k], v) for k, v in desired.items()
        )
    if isinstance(desired, list):
        return (isinstance(live, list) and len(live) == len(desired)
                and all(covers(a, b) for a, b in zip(live, desired)))
    return live == desired


def create_or_update(store, kind: Kind, desired: dict,
                     merge: Callable[[dict, dict], None] = replace_spec) -> dict:
    """
    Converge one child object and return what the store now holds.

    Absent: create (a concurrent AlreadyExists counts as success).
    Present: replace only when the desired spec changed since the last write
    (tracked by a hash annotation) or a field it sets has drifted. Server
    defaulted fields never count as drift.
    Labels and owner references are written at creation and never diffed.
    """
    meta = desired["metadata"]
    name, namespace = meta["name"], meta["namespace"]
    digest = spec_hash(desired["spec"])
    meta.setdefault("annotations", {})[SPEC_HASH_ANNOTATION] = digest

    existing: Optional[dict] = store.get(kind, namespace, name)
    if existing is None:
        try:
            created = store.create(kind, namespace, desired)
        except ApiException as e:
            if e.status != 409:
                raise
            logger.info(f"{kind.kind} {namespace}/{name} created concurrently")
            return desired
        logger.info(f"{kind.kind} {namespace}/{name} created")
        return created

    annotations = existing["metadata"].get("annotations") or {}
    if annotations.get(SPEC_HASH_ANNOTATION) == digest and covers(existing.get("spec"), desired["spec"]):
        return existing

    merge(existing, desired)
    existing["metadata"]["annotations"] = {**annotations, SPEC_HASH_ANNOTATION: digest}
    updated = store.replace(kind, namespace, name, existing)
    logger.info(f"{kind.kind} {namespace}/{name} updated")
    return updated
