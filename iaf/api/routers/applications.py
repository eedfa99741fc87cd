"""
Application API routes — CRUD endpoints for Application CRs.

Features:
  - Namespaced routes: /api/v1/namespaces/{namespace}/applications
  - Rate limiting per-IP via slowapi
  - Prometheus counters for creates/deletes
  - Redis Stream activity log written by the operator
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from iaf.api import metrics
from iaf.api.models import (
    ApplicationCreateRequest, ApplicationListResponse, ApplicationLogsResponse, ApplicationResponse,
    ApplicationUpdateRequest, BuildLogsResponse, ErrorResponse,
)
from iaf.api.ratelimit import limiter
from iaf.api.services.kubernetes_service import (
    DEFAULT_LOG_LINES, ConflictError, application_logs, build_logs, create_application, delete_application,
    get_application, get_cluster_store, list_applications, update_application,
)
from iaf.config import settings
from iaf.events import read_events

logger = logging.getLogger("applications")

router = APIRouter(prefix="/v1/namespaces/{namespace}/applications", tags=["applications"])


def _source_of(req: ApplicationCreateRequest) -> str:
    if req.image:
        return "image"
    if req.gitUrl:
        return "git"
    return "blob"


@router.post("", response_model=ApplicationResponse, status_code=201,
             responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse},
                        429: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def create_application_endpoint(namespace: str, req: ApplicationCreateRequest, request: Request,
                                      store=Depends(get_cluster_store)):
    """Create an Application. The operator builds, deploys and exposes it."""
    try:
        app = create_application(store, namespace, req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    metrics.record_app_create(_source_of(req))
    return app


@router.get("", response_model=ApplicationListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_applications_endpoint(namespace: str, request: Request, store=Depends(get_cluster_store)):
    apps = list_applications(store, namespace)
    return ApplicationListResponse(applications=apps, total=len(apps))


@router.get("/{app_name}", response_model=ApplicationResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_application_endpoint(namespace: str, app_name: str, request: Request,
                                   store=Depends(get_cluster_store)):
    app = get_application(store, namespace, app_name)
    if not app:
        raise HTTPException(status_code=404, detail=f"Application '{app_name}' not found")
    return app


@router.put("/{app_name}", response_model=ApplicationResponse,
            responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse},
                       409: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def update_application_endpoint(namespace: str, app_name: str, req: ApplicationUpdateRequest,
                                      request: Request, store=Depends(get_cluster_store)):
    """Update an Application's spec. Unset fields are left unchanged."""
    try:
        return update_application(store, namespace, app_name, req)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("/{app_name}", status_code=202,
               responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def delete_application_endpoint(namespace: str, app_name: str, request: Request,
                                      store=Depends(get_cluster_store)):
    """Delete an Application. Returns 202 Accepted; children are garbage-collected."""
    if not delete_application(store, namespace, app_name):
        raise HTTPException(status_code=404, detail=f"Application '{app_name}' not found")
    metrics.record_app_delete()
    return {"message": f"Application '{app_name}' deletion initiated", "status": "accepted"}


@router.get("/{app_name}/events")
@limiter.limit(settings.RATE_LIMIT)
async def get_application_events(namespace: str, app_name: str, request: Request,
                                 store=Depends(get_cluster_store)):
    """
    Activity log for an application.
    Sources: current conditions (always available) + Redis Stream (if connected).
    """
    app = get_application(store, namespace, app_name)
    if not app:
        raise HTTPException(status_code=404, detail=f"Application '{app_name}' not found")

    events = [
        {
            "timestamp": c.lastTransitionTime or "",
            "event": c.reason,
            "message": c.message,
            "source": "status",
        }
        for c in app.conditions
    ]
    for entry in read_events("Application", namespace, app_name):
        events.append({
            "timestamp": entry.get("timestamp", ""),
            "event": entry.get("type", ""),
            "message": entry.get("message", ""),
            "phase": entry.get("phase", ""),
            "source": "redis",
        })
    return {"application": app_name, "namespace": namespace, "events": events}


@router.get("/{app_name}/logs", response_model=ApplicationLogsResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_application_logs(namespace: str, app_name: str, request: Request,
                               lines: int = Query(default=DEFAULT_LOG_LINES, ge=1, le=5000),
                               store=Depends(get_cluster_store)):
    """Recent log lines from the application's first pod."""
    logs = application_logs(store, namespace, app_name, lines)
    if logs is None:
        raise HTTPException(status_code=404, detail=f"Application '{app_name}' not found")
    return logs


@router.get("/{app_name}/build", response_model=BuildLogsResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_build_logs(namespace: str, app_name: str, request: Request,
                         store=Depends(get_cluster_store)):
    """Build step logs from the latest kpack build pod."""
    logs = build_logs(store, namespace, app_name)
    if logs is None:
        raise HTTPException(status_code=404, detail=f"Application '{app_name}' not found")
    return logs
