"""
Resource builders — desired state of every child resource.

Pure functions: no I/O, deterministic for a given input. Each returns a
wire-format dict ready for the API store (camelCase keys), with managed-by
labels and a controller owner reference back to the parent CR.
"""
from typing import List

from kubernetes import client

from iaf.models import Application, AttachedDataSource, BoundManagedService, ManagedService, ServicePlan
from iaf.resources import (
    APPLICATION, APPLICATION_LABEL, CERTIFICATE, CNPG_CLUSTER, DEPLOYMENT, INGRESS_ROUTE,
    KPACK_IMAGE, MANAGED_BY, MANAGED_BY_LABEL, MANAGED_SERVICE, MANAGED_SERVICE_LABEL,
    NETWORK_POLICY, SERVICE,
    BlobRef, BuilderRef, CertificateSpec, ClusterResources, ClusterSpec, ClusterStorage,
    GitRef, ImageSource, ImageSpec, IngressRouteSpec, IssuerRef, Kind, PlanConfig,
    ResourceRequests, Route, RouteService, RouteTLS,
)

# Secret key -> env var injected for every bound managed service
SERVICE_ENV_MAPPING = (
    ("uri", "DATABASE_URL"),
    ("host", "PGHOST"),
    ("port", "PGPORT"),
    ("dbname", "PGDATABASE"),
    ("username", "PGUSER"),
    ("password", "PGPASSWORD"),
)

PLAN_CONFIGS = {
    ServicePlan.MICRO: PlanConfig(instances=1, cpu="250m", memory="256Mi", storage_gb=1),
    ServicePlan.SMALL: PlanConfig(instances=1, cpu="500m", memory="512Mi", storage_gb=5),
    ServicePlan.HA: PlanConfig(instances=3, cpu="1", memory="1Gi", storage_gb=10),
}

CNPG_OPERATOR_NAMESPACE = "cnpg-system"
ENTRYPOINT_HTTP = "web"
ENTRYPOINT_HTTPS = "websecure"

_serializer = client.ApiClient()


def _to_wire(model) -> dict:
    """Serialize a kubernetes client V1 model to its JSON form."""
    return _serializer.sanitize_for_serialization(model)


def tls_secret_name(app_name: str) -> str:
    return f"{app_name}-tls"


def connection_secret_name(service_name: str) -> str:
    return f"{service_name}-app"


def network_policy_name(service_name: str) -> str:
    return f"{service_name}-netpol"


# ---------------------------------------------------------------------------
# Metadata helpers
# ---------------------------------------------------------------------------

def _app_labels(app: Application) -> dict:
    return {MANAGED_BY_LABEL: MANAGED_BY, APPLICATION_LABEL: app.name}


def _service_labels(svc: ManagedService) -> dict:
    return {MANAGED_BY_LABEL: MANAGED_BY, MANAGED_SERVICE_LABEL: svc.name}


def _owner_reference(owner_kind: Kind, owner) -> client.V1OwnerReference:
    return client.V1OwnerReference(
        api_version=owner_kind.api_version,
        kind=owner_kind.kind,
        name=owner.metadata.name,
        uid=owner.metadata.uid,
        controller=True,
        block_owner_deletion=True,
    )


def _metadata(name: str, owner_kind: Kind, owner, labels: dict) -> client.V1ObjectMeta:
    return client.V1ObjectMeta(
        name=name,
        namespace=owner.metadata.namespace,
        labels=labels,
        owner_references=[_owner_reference(owner_kind, owner)],
    )


def _custom_object(kind: Kind, metadata: client.V1ObjectMeta, spec) -> dict:
    return {
        "apiVersion": kind.api_version,
        "kind": kind.kind,
        "metadata": _to_wire(metadata),
        "spec": spec.to_wire(),
    }


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------

def _secret_env(env_name: str, secret_name: str, key: str) -> client.V1EnvVar:
    return client.V1EnvVar(
        name=env_name,
        value_from=client.V1EnvVarSource(
            secret_key_ref=client.V1SecretKeySelector(name=secret_name, key=key),
        ),
    )


def inline_env_vars(app: Application) -> List[client.V1EnvVar]:
    return [client.V1EnvVar(name=e.name, value=e.value) for e in app.spec.env]


def datasource_env_vars(attached: AttachedDataSource, mapping: dict) -> List[client.V1EnvVar]:
    """Secret references for one attached data source, ordered by secret key."""
    return [
        _secret_env(env_name, attached.secret_name, key)
        for key, env_name in sorted(mapping.items())
    ]


def managed_service_env_vars(bound: BoundManagedService) -> List[client.V1EnvVar]:
    return [_secret_env(env_name, bound.secret_name, key) for key, env_name in SERVICE_ENV_MAPPING]


# ---------------------------------------------------------------------------
# Application children
# ---------------------------------------------------------------------------

def build_deployment(app: Application, image: str, env: List[client.V1EnvVar]) -> dict:
    selector = {APPLICATION_LABEL: app.name}
    deployment = client.V1Deployment(
        api_version=DEPLOYMENT.api_version,
        kind=DEPLOYMENT.kind,
        metadata=_metadata(app.name, APPLICATION, app, _app_labels(app)),
        spec=client.V1DeploymentSpec(
            replicas=app.spec.replicas,
            selector=client.V1LabelSelector(match_labels=selector),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=selector),
                spec=client.V1PodSpec(
                    security_context=client.V1PodSecurityContext(run_as_non_root=True),
                    containers=[
                        client.V1Container(
                            name="app",
                            image=image,
                            ports=[client.V1ContainerPort(container_port=app.spec.port, protocol="TCP")],
                            env=env or None,
                            security_context=client.V1SecurityContext(allow_privilege_escalation=False),
                        )
                    ],
                ),
            ),
        ),
    )
    return _to_wire(deployment)


def build_service(app: Application) -> dict:
    service = client.V1Service(
        api_version=SERVICE.api_version,
        kind=SERVICE.kind,
        metadata=_metadata(app.name, APPLICATION, app, _app_labels(app)),
        spec=client.V1ServiceSpec(
            selector={APPLICATION_LABEL: app.name},
            ports=[client.V1ServicePort(port=app.spec.port, protocol="TCP")],
        ),
    )
    return _to_wire(service)


def build_certificate(app: Application, host: str, issuer: str) -> dict:
    spec = CertificateSpec(
        secret_name=tls_secret_name(app.name),
        dns_names=[host],
        issuer_ref=IssuerRef(name=issuer),
    )
    return _custom_object(CERTIFICATE, _metadata(app.name, APPLICATION, app, _app_labels(app)), spec)


def build_ingress_route(app: Application, base_domain: str, tls_enabled: bool) -> dict:
    """Plain `web` entry point without TLS; `websecure` plus the cert secret with it."""
    route = Route(
        match=f"Host(`{app.host(base_domain)}`)",
        services=[RouteService(name=app.name, port=app.spec.port)],
    )
    if tls_enabled:
        spec = IngressRouteSpec(
            entry_points=[ENTRYPOINT_HTTPS],
            routes=[route],
            tls=RouteTLS(secret_name=tls_secret_name(app.name)),
        )
    else:
        spec = IngressRouteSpec(entry_points=[ENTRYPOINT_HTTP], routes=[route])
    return _custom_object(INGRESS_ROUTE, _metadata(app.name, APPLICATION, app, _app_labels(app)), spec)


def build_image(app: Application, cluster_builder: str, registry_prefix: str) -> dict:
    """kpack Image for a git or blob sourced application (git wins over blob)."""
    if app.spec.git is not None and app.spec.git.url:
        source = ImageSource(git=GitRef(url=app.spec.git.url, revision=app.spec.git.revision))
    else:
        source = ImageSource(blob=BlobRef(url=app.spec.blob))
    spec = ImageSpec(
        tag=f"{registry_prefix}/{app.name}",
        builder=BuilderRef(name=cluster_builder),
        source=source,
    )
    return _custom_object(KPACK_IMAGE, _metadata(app.name, APPLICATION, app, _app_labels(app)), spec)


# ---------------------------------------------------------------------------
# ManagedService children
# ---------------------------------------------------------------------------

def build_database_cluster(svc: ManagedService) -> dict:
    cfg = PLAN_CONFIGS[svc.spec.plan]
    spec = ClusterSpec(
        instances=cfg.instances,
        storage=ClusterStorage(size=f"{cfg.storage_gb}Gi"),
        resources=ClusterResources(requests=ResourceRequests(cpu=cfg.cpu, memory=cfg.memory)),
    )
    return _custom_object(CNPG_CLUSTER, _metadata(svc.name, MANAGED_SERVICE, svc, _service_labels(svc)), spec)


def build_network_policy(svc: ManagedService) -> dict:
    """
    Allow ingress to the database pods from the service's own namespace and from
    the CNPG operator namespace, which must reach the instance status port.
    """
    policy = client.V1NetworkPolicy(
        api_version=NETWORK_POLICY.api_version,
        kind=NETWORK_POLICY.kind,
        metadata=_metadata(network_policy_name(svc.name), MANAGED_SERVICE, svc, _service_labels(svc)),
        spec=client.V1NetworkPolicySpec(
            pod_selector=client.V1LabelSelector(match_labels={"cnpg.io/cluster": svc.name}),
            policy_types=["Ingress"],
            ingress=[
                client.V1NetworkPolicyIngressRule(
                    _from=[
                        client.V1NetworkPolicyPeer(pod_selector=client.V1LabelSelector()),
                        client.V1NetworkPolicyPeer(
                            namespace_selector=client.V1LabelSelector(
                                match_labels={"kubernetes.io/metadata.name": CNPG_OPERATOR_NAMESPACE},
                            ),
                        ),
                    ],
                    ports=[client.V1NetworkPolicyPort(protocol="TCP")],
                )
            ],
        ),
    )
    return _to_wire(policy)
