from fastapi import APIRouter

from .utils import ApiSuccess

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=ApiSuccess)
async def health() -> ApiSuccess:
    """Liveness probe; does not touch encoder processes."""
    return ApiSuccess(results="OK")
