"""
Pydantic models for API request/response validation.
"""
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from iaf.models import ServicePlan


class ServiceType(str, Enum):
    POSTGRES = "postgres"


class EnvVarModel(BaseModel):
    name: str = Field(..., pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    value: str = ""


class ApplicationCreateRequest(BaseModel):
    """Request to create a new application. One of image, gitUrl or blob is required."""
    name: str = Field(
        ...,
        min_length=1,
        max_length=63,
        pattern=r"^[a-z0-9][a-z0-9-]*$",
        description="Application name (lowercase DNS label)",
        examples=["myapp"],
    )
    image: str = Field(default="", description="Pre-built container image", examples=["nginx:latest"])
    gitUrl: str = Field(default="", description="Git repository to build from")
    gitRevision: str = Field(default="", description="Git revision (default main)")
    blob: str = Field(default="", description="URL of an uploaded source tarball")
    port: int = Field(default=8080, ge=1, le=65535)
    replicas: int = Field(default=1, ge=1, le=20)
    env: List[EnvVarModel] = []
    host: str = ""
    tls: Optional[bool] = Field(default=None, description="TLS opt-out; unset means enabled")


class ApplicationUpdateRequest(BaseModel):
    """
    Partial update. Unset fields keep their current value; setting one image
    source (image, gitUrl or blob) clears the other two.
    """
    image: str = ""
    gitUrl: str = ""
    gitRevision: str = ""
    blob: str = ""
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    replicas: Optional[int] = Field(default=None, ge=1, le=20)
    env: Optional[List[EnvVarModel]] = None
    host: str = ""
    tls: Optional[bool] = None


class ApplicationLogsResponse(BaseModel):
    logs: str = ""
    pods: int = 0
    podName: str = ""


class BuildLogsResponse(BaseModel):
    buildLogs: str = ""
    buildStatus: str = ""
    podName: str = ""


class ConditionModel(BaseModel):
    type: str
    status: str
    reason: str = ""
    message: str = ""
    lastTransitionTime: Optional[str] = None


class ApplicationResponse(BaseModel):
    name: str
    namespace: str
    phase: str = "Pending"
    url: str = ""
    image: str = ""
    gitUrl: str = ""
    gitRevision: str = ""
    blob: str = ""
    port: int = 8080
    replicas: int = 1
    availableReplicas: int = 0
    latestImage: str = ""
    buildStatus: str = ""
    host: str = ""
    env: List[EnvVarModel] = []
    boundServices: List[str] = []
    conditions: List[ConditionModel] = []
    createdAt: Optional[str] = None


class ApplicationListResponse(BaseModel):
    applications: List[ApplicationResponse]
    total: int


class ServiceCreateRequest(BaseModel):
    """Request to provision a managed service."""
    name: str = Field(..., min_length=1, max_length=63, pattern=r"^[a-z0-9][a-z0-9-]*$", examples=["pgdb"])
    type: ServiceType = ServiceType.POSTGRES
    plan: ServicePlan = ServicePlan.MICRO


class ServiceResponse(BaseModel):
    name: str
    namespace: str
    type: str
    plan: str
    phase: str = "Pending"
    message: str = ""
    connectionSecretRef: str = ""
    boundApps: List[str] = []
    createdAt: Optional[str] = None


class ServiceListResponse(BaseModel):
    services: List[ServiceResponse]
    total: int


class BindRequest(BaseModel):
    appName: str = Field(..., min_length=1, max_length=63)


class ErrorResponse(BaseModel):
    detail: str
    code: str = "UNKNOWN_ERROR"
