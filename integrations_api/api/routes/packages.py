from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status

from integrations_api.schemas.packages import PackageOut
from integrations_api.schemas.responses import DataResponse, PageResponse
from integrations_api.services.pagination import DEFAULT_PAGE_LIMIT, SortOrder
from integrations_api.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.get("", response_model=PageResponse[PackageOut])
async def list_packages(
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    after: str | None = Query(default=None),
    order: SortOrder = Query(default="asc"),
    repository=Depends(get_repository),
) -> PageResponse[PackageOut]:
    try:
        page = await repository.list_packages(limit=limit, cursor=after, order=order)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return PageResponse[PackageOut](data=page.items, next_cursor=page.next_cursor)


@router.get("/{package_id}", response_model=DataResponse[PackageOut])
async def get_package(package_id: str, repository=Depends(get_repository)) -> DataResponse[PackageOut]:
    try:
        package = await repository.get_package(package_id)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=http_status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return DataResponse[PackageOut](data=package)
