"""
Health endpoints.
"""
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from articleflow.core.container import ServiceContainer, get_services
from articleflow.core.database import check_connection

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Lightweight liveness check (no deps)."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz(services: ServiceContainer = Depends(get_services)):
    """Readiness check: DB connectivity."""
    if not check_connection(services.engine):
        return JSONResponse(status_code=503, content={"status": "unavailable", "db": False})
    return {"status": "ok", "db": True}
