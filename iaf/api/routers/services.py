"""
Managed service API routes — CRUD for ManagedService CRs plus bind/unbind.

Binding writes the service's connection secret into the Application spec and
records the application in the service's bound-apps list; the operator then
injects DATABASE_URL / PG* variables and blocks deletion while bound.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from iaf.api import metrics
from iaf.api.models import (
    ApplicationResponse, BindRequest, ErrorResponse, ServiceCreateRequest, ServiceListResponse,
    ServiceResponse,
)
from iaf.api.ratelimit import limiter
from iaf.api.services.kubernetes_service import (
    ConflictError, bind_service, create_service, delete_service, get_cluster_store, get_service,
    list_services, unbind_service,
)
from iaf.config import settings

logger = logging.getLogger("services")

router = APIRouter(prefix="/v1/namespaces/{namespace}/services", tags=["services"])


@router.post("", response_model=ServiceResponse, status_code=201,
             responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def create_service_endpoint(namespace: str, req: ServiceCreateRequest, request: Request,
                                  store=Depends(get_cluster_store)):
    """Provision a managed service. Poll its phase until Ready before binding."""
    try:
        svc = create_service(store, namespace, req)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    metrics.record_service_create(req.type.value, req.plan.value)
    return svc


@router.get("", response_model=ServiceListResponse)
@limiter.limit(settings.RATE_LIMIT)
async def list_services_endpoint(namespace: str, request: Request, store=Depends(get_cluster_store)):
    services = list_services(store, namespace)
    return ServiceListResponse(services=services, total=len(services))


@router.get("/{service_name}", response_model=ServiceResponse,
            responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def get_service_endpoint(namespace: str, service_name: str, request: Request,
                               store=Depends(get_cluster_store)):
    svc = get_service(store, namespace, service_name)
    if not svc:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")
    return svc


@router.delete("/{service_name}", status_code=202,
               responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def delete_service_endpoint(namespace: str, service_name: str, request: Request,
                                  store=Depends(get_cluster_store)):
    """Delete a managed service. Refused with 409 while any application is bound."""
    try:
        deleted = delete_service(store, namespace, service_name)
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Service '{service_name}' not found")
    metrics.record_service_delete()
    return {"message": f"Service '{service_name}' deletion initiated", "status": "accepted"}


@router.post("/{service_name}/bind", response_model=ApplicationResponse,
             responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def bind_service_endpoint(namespace: str, service_name: str, req: BindRequest, request: Request,
                                store=Depends(get_cluster_store)):
    try:
        app = bind_service(store, namespace, service_name, req.appName)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    metrics.record_binding("bind")
    return app


@router.post("/{service_name}/unbind", response_model=ApplicationResponse,
             responses={404: {"model": ErrorResponse}})
@limiter.limit(settings.RATE_LIMIT)
async def unbind_service_endpoint(namespace: str, service_name: str, req: BindRequest, request: Request,
                                  store=Depends(get_cluster_store)):
    try:
        app = unbind_service(store, namespace, service_name, req.appName)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    metrics.record_binding("unbind")
    return app
