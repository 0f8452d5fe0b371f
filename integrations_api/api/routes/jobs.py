from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from integrations_api.schemas.jobs import CreateJobRequest, JobOut
from integrations_api.schemas.responses import DataResponse, PageResponse
from integrations_api.services.dispatcher import get_dispatcher
from integrations_api.services.errors import BrokerUnavailableError, UnknownRegistryError
from integrations_api.services.pagination import DEFAULT_PAGE_LIMIT, SortOrder
from integrations_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.post("", response_model=DataResponse[JobOut], status_code=http_status.HTTP_201_CREATED)
async def create_job(payload: CreateJobRequest, dispatcher=Depends(get_dispatcher)) -> DataResponse[JobOut]:
    try:
        job = await dispatcher.submit(payload.registry, payload.package_name)
    except UnknownRegistryError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except (RepositoryUnavailableError, BrokerUnavailableError) as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return DataResponse[JobOut](data=job)


@router.get("", response_model=PageResponse[JobOut])
async def list_jobs(
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    after: str | None = Query(default=None),
    order: SortOrder = Query(default="asc"),
    repository=Depends(get_repository),
) -> PageResponse[JobOut]:
    try:
        page = await repository.list_jobs(limit=limit, cursor=after, order=order)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return PageResponse[JobOut](data=page.items, next_cursor=page.next_cursor)


@router.get("/{job_id}", response_model=DataResponse[JobOut])
async def get_job(job_id: str, repository=Depends(get_repository)) -> DataResponse[JobOut]:
    try:
        job = await repository.get_job(job_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return DataResponse[JobOut](data=job)
