from fastapi import APIRouter

from integrations_api.api.routes import health, jobs, metrics, packages
from integrations_api.schemas.responses import ErrorResponse

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(metrics.router, tags=["metrics"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"], responses=ERROR_RESPONSES)
api_router.include_router(packages.router, prefix="/packages", tags=["packages"], responses=ERROR_RESPONSES)
