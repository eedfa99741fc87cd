"""
Pydantic models for the iaf.io custom resources.

Objects arrive from the API store as raw dicts (camelCase keys); these models
parse them with defaults applied and serialize status back in wire format.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_PORT = 8080
DEFAULT_REPLICAS = 1
DEFAULT_GIT_REVISION = "main"


def now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class WireModel(BaseModel):
    """Base for models that map to camelCase Kubernetes JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApplicationPhase(str, Enum):
    PENDING = "Pending"
    BUILDING = "Building"
    DEPLOYING = "Deploying"
    RUNNING = "Running"
    FAILED = "Failed"


class ManagedServicePhase(str, Enum):
    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    READY = "Ready"
    FAILED = "Failed"


class ServicePlan(str, Enum):
    MICRO = "micro"
    SMALL = "small"
    HA = "ha"


class BuildStatus(str, Enum):
    NOT_REQUIRED = "NotRequired"
    UNKNOWN = "Unknown"
    BUILDING = "Building"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class ObjectMeta(WireModel):
    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: str = ""
    generation: int = 0
    deletion_timestamp: Optional[str] = None
    finalizers: List[str] = Field(default_factory=list)


class Condition(WireModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[str] = None


def set_condition(conditions: List[Condition], ctype: str, status: bool, reason: str, message: str):
    """
    Upsert a condition by type, keeping list order stable.
    lastTransitionTime only moves when the status value flips.
    """
    value = "True" if status else "False"
    for c in conditions:
        if c.type == ctype:
            if c.status != value:
                c.last_transition_time = now()
            c.status = value
            c.reason = reason
            c.message = message
            return
    conditions.append(Condition(
        type=ctype,
        status=value,
        reason=reason,
        message=message,
        last_transition_time=now(),
    ))


def get_condition(conditions: List[Condition], ctype: str) -> Optional[Condition]:
    for c in conditions:
        if c.type == ctype:
            return c
    return None


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

class EnvVar(WireModel):
    name: str
    value: str = ""


class GitSource(WireModel):
    url: str
    revision: str = DEFAULT_GIT_REVISION

    @field_validator("revision")
    @classmethod
    def _default_revision(cls, v: str) -> str:
        return v or DEFAULT_GIT_REVISION


class TLSConfig(WireModel):
    enabled: Optional[bool] = None


class AttachedDataSource(WireModel):
    data_source_name: str
    secret_name: str


class BoundManagedService(WireModel):
    service_name: str
    secret_name: str


class ApplicationSpec(WireModel):
    image: str = ""
    git: Optional[GitSource] = None
    blob: str = ""
    port: int = DEFAULT_PORT
    replicas: int = DEFAULT_REPLICAS
    env: List[EnvVar] = Field(default_factory=list)
    host: str = ""
    tls: Optional[TLSConfig] = None
    attached_data_sources: List[AttachedDataSource] = Field(default_factory=list)
    bound_managed_services: List[BoundManagedService] = Field(default_factory=list)

    @field_validator("port")
    @classmethod
    def _default_port(cls, v: int) -> int:
        return v or DEFAULT_PORT

    @field_validator("replicas")
    @classmethod
    def _default_replicas(cls, v: int) -> int:
        return v or DEFAULT_REPLICAS

    @property
    def tls_requested(self) -> bool:
        """TLS is opt-out: unset means enabled."""
        if self.tls is None or self.tls.enabled is None:
            return True
        return self.tls.enabled

    @property
    def has_build_source(self) -> bool:
        return (self.git is not None and bool(self.git.url)) or bool(self.blob)


class ApplicationStatus(WireModel):
    phase: str = ""
    url: str = ""
    latest_image: str = ""
    build_status: str = ""
    available_replicas: int = 0
    conditions: List[Condition] = Field(default_factory=list)


class Application(WireModel):
    metadata: ObjectMeta
    spec: ApplicationSpec = Field(default_factory=ApplicationSpec)
    status: ApplicationStatus = Field(default_factory=ApplicationStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def host(self, base_domain: str) -> str:
        return self.spec.host or f"{self.name}.{base_domain}"


# ---------------------------------------------------------------------------
# ManagedService
# ---------------------------------------------------------------------------

class ManagedServiceSpec(WireModel):
    type: str = "postgres"
    plan: ServicePlan = ServicePlan.MICRO


class ManagedServiceStatus(WireModel):
    phase: str = ""
    message: str = ""
    connection_secret_ref: str = ""
    bound_apps: List[str] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)


class ManagedService(WireModel):
    metadata: ObjectMeta
    spec: ManagedServiceSpec = Field(default_factory=ManagedServiceSpec)
    status: ManagedServiceStatus = Field(default_factory=ManagedServiceStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace


# ---------------------------------------------------------------------------
# DataSource (cluster-scoped, read-only here)
# ---------------------------------------------------------------------------

class DataSourceSecretRef(WireModel):
    name: str
    namespace: str = ""


class DataSourceSpec(WireModel):
    kind: str = ""
    description: str = ""
    schema_: str = Field(default="", alias="schema")
    tags: List[str] = Field(default_factory=list)
    secret_ref: Optional[DataSourceSecretRef] = None
    env_var_mapping: dict[str, str] = Field(default_factory=dict)


class DataSource(WireModel):
    metadata: ObjectMeta
    spec: DataSourceSpec = Field(default_factory=DataSourceSpec)
