from fastapi import APIRouter, Response, status

router = APIRouter()


@router.get("/health", status_code=status.HTTP_204_NO_CONTENT)
async def health() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}
