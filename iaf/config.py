"""
Configuration module — all settings from env vars with sensible defaults.
Shared by the operator (kopf handlers) and the platform API.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = os.environ.get("IN_CLUSTER", "false").lower() == "true"
    API_TIMEOUT: int = int(os.environ.get("IAF_API_TIMEOUT", "30"))

    # CRD
    CRD_GROUP: str = "iaf.io"
    CRD_VERSION: str = "v1alpha1"

    # Builds (kpack)
    CLUSTER_BUILDER: str = os.environ.get("IAF_CLUSTER_BUILDER", "iaf-cluster-builder")
    REGISTRY_PREFIX: str = os.environ.get("IAF_REGISTRY_PREFIX", "registry.localhost:5000/iaf")

    # Routing
    BASE_DOMAIN: str = os.environ.get("IAF_BASE_DOMAIN", "localhost")
    # Empty issuer disables TLS for every application
    TLS_ISSUER: str = os.environ.get("IAF_TLS_ISSUER", "")

    # Operator
    MAX_WORKERS: int = int(os.environ.get("IAF_MAX_WORKERS", "5"))
    RESYNC_INTERVAL: int = int(os.environ.get("IAF_RESYNC_INTERVAL", "60"))
    ERROR_RETRY_DELAY: int = int(os.environ.get("IAF_ERROR_RETRY_DELAY", "30"))

    # Event stream
    REDIS_URL: str = os.environ.get("REDIS_URL", "")

    # API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))
    CORS_ORIGINS: str = os.environ.get("CORS_ORIGINS", "*")
    RATE_LIMIT: str = os.environ.get("RATE_LIMIT", "30/minute")


settings = Settings()
