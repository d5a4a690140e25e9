from fastapi import APIRouter, Depends, HTTPException

from promotion_engine.api.container import get_promotion_service
from promotion_engine.api.schemas.run import ReleaseCheckResponse
from promotion_engine.core.errors import ReleaseSourceError

router = APIRouter(prefix="/releases", tags=["releases"])


@router.get("/check", response_model=ReleaseCheckResponse)
async def check_release(service=Depends(get_promotion_service)):
    try:
        result = await service.check_for_release()
    except ReleaseSourceError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return ReleaseCheckResponse(**result)
