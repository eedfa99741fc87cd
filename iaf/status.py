"""
Status extractors — reduce a child resource's observed status to the few
values the reconcilers act on. Pure functions over raw wire dicts.
"""
from typing import Optional

from iaf.builders import connection_secret_name
from iaf.models import BuildStatus, ManagedServicePhase


def _ready_condition(obj: dict) -> Optional[dict]:
    for cond in (obj.get("status") or {}).get("conditions") or []:
        if isinstance(cond, dict) and cond.get("type") == "Ready":
            return cond
    return None


def image_build_status(image: dict) -> tuple[str, str]:
    """
    Build outcome and latest image of a kpack Image.

    Ready=True/False/other maps to Succeeded/Failed/Building. No status at all
    is Unknown; conditions without a Ready entry still count as Building.
    """
    status = image.get("status")
    if not isinstance(status, dict):
        return BuildStatus.UNKNOWN.value, ""
    latest_image = status.get("latestImage") or ""
    if not isinstance(status.get("conditions"), list):
        return BuildStatus.UNKNOWN.value, latest_image

    cond = _ready_condition(image)
    if cond is None:
        return BuildStatus.BUILDING.value, latest_image
    if cond.get("status") == "True":
        return BuildStatus.SUCCEEDED.value, latest_image
    if cond.get("status") == "False":
        return BuildStatus.FAILED.value, latest_image
    return BuildStatus.BUILDING.value, latest_image


def database_cluster_status(cluster: dict) -> tuple[str, str]:
    """Phase and connection secret of a CNPG Cluster (secret is always <name>-app)."""
    secret_name = connection_secret_name(cluster["metadata"]["name"])
    cond = _ready_condition(cluster)
    if cond is not None and cond.get("status") == "True":
        return ManagedServicePhase.READY.value, secret_name
    return ManagedServicePhase.PROVISIONING.value, secret_name


def available_replicas(deployment: dict) -> int:
    return int((deployment.get("status") or {}).get("availableReplicas") or 0)
