"""
Resource kinds the operator reads and writes, and closed wire types for the
third-party CRDs (kpack, cert-manager, Traefik, CloudNativePG).

Built-in kinds (Deployment, Service, NetworkPolicy) use the kubernetes
client's V1 models instead; see builders.py.
"""
from dataclasses import dataclass
from typing import List, Optional

from iaf.config import settings
from iaf.models import WireModel

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "iaf"
APPLICATION_LABEL = "iaf.io/application"
# Set by kpack on the pods of every build of an Image
KPACK_IMAGE_LABEL = "image.kpack.io/image"
MANAGED_SERVICE_LABEL = "iaf.io/managed-service"

KPACK_SERVICE_ACCOUNT = "iaf-kpack-sa"


@dataclass(frozen=True)
class Kind:
    group: str
    version: str
    plural: str
    kind: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.kind}.{self.group or 'core'}"


APPLICATION = Kind(settings.CRD_GROUP, settings.CRD_VERSION, "applications", "Application")
MANAGED_SERVICE = Kind(settings.CRD_GROUP, settings.CRD_VERSION, "managedservices", "ManagedService")
DATA_SOURCE = Kind(settings.CRD_GROUP, settings.CRD_VERSION, "datasources", "DataSource", namespaced=False)

DEPLOYMENT = Kind("apps", "v1", "deployments", "Deployment")
SERVICE = Kind("", "v1", "services", "Service")
NETWORK_POLICY = Kind("networking.k8s.io", "v1", "networkpolicies", "NetworkPolicy")

KPACK_IMAGE = Kind("kpack.io", "v1alpha2", "images", "Image")
CERTIFICATE = Kind("cert-manager.io", "v1", "certificates", "Certificate")
INGRESS_ROUTE = Kind("traefik.io", "v1alpha1", "ingressroutes", "IngressRoute")
CNPG_CLUSTER = Kind("postgresql.cnpg.io", "v1", "clusters", "Cluster")


# ---------------------------------------------------------------------------
# kpack Image
# ---------------------------------------------------------------------------

class BuilderRef(WireModel):
    name: str
    kind: str = "ClusterBuilder"


class GitRef(WireModel):
    url: str
    revision: str


class BlobRef(WireModel):
    url: str


class ImageSource(WireModel):
    git: Optional[GitRef] = None
    blob: Optional[BlobRef] = None


class ImageSpec(WireModel):
    tag: str
    builder: BuilderRef
    service_account_name: str = KPACK_SERVICE_ACCOUNT
    source: ImageSource


# ---------------------------------------------------------------------------
# cert-manager Certificate
# ---------------------------------------------------------------------------

class IssuerRef(WireModel):
    name: str
    kind: str = "ClusterIssuer"


class CertificateSpec(WireModel):
    secret_name: str
    dns_names: List[str]
    issuer_ref: IssuerRef


# ---------------------------------------------------------------------------
# Traefik IngressRoute
# ---------------------------------------------------------------------------

class RouteService(WireModel):
    name: str
    port: int


class Route(WireModel):
    match: str
    kind: str = "Rule"
    services: List[RouteService]


class RouteTLS(WireModel):
    secret_name: str


class IngressRouteSpec(WireModel):
    entry_points: List[str]
    routes: List[Route]
    tls: Optional[RouteTLS] = None


# ---------------------------------------------------------------------------
# CloudNativePG Cluster
# ---------------------------------------------------------------------------

class ClusterStorage(WireModel):
    size: str


class ResourceRequests(WireModel):
    cpu: str
    memory: str


class ClusterResources(WireModel):
    requests: ResourceRequests


class ClusterSpec(WireModel):
    instances: int
    storage: ClusterStorage
    resources: ClusterResources


@dataclass(frozen=True)
class PlanConfig:
    instances: int
    cpu: str
    memory: str
    storage_gb: int

