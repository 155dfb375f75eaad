from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from config import logger
from deps import get_db, get_engine
from imaging.engine import ImageEngine
from imaging.errors import (
    CacheWriteFailure,
    GeometryViolation,
    ImageServiceError,
    InvalidParameter,
    PipelineStepFailure,
    SourceUnavailable,
)
from models import CacheEntry
from schemas import CacheEntryOut, ImageRequest, RemovedOut, RenderOut

router = APIRouter()

ERROR_STATUS = {
    SourceUnavailable:   404,
    InvalidParameter:    422,
    GeometryViolation:   422,
    PipelineStepFailure: 500,
    CacheWriteFailure:   503,
}


def _status_for(error: ImageServiceError) -> int:
    for kind, status in ERROR_STATUS.items():
        if isinstance(error, kind):
            return status
    return 500


@router.post("/images", response_model=RenderOut)
def render_image(payload: ImageRequest, engine: ImageEngine = Depends(get_engine)):
    try:
        result = engine.process(payload)
    except ImageServiceError as e:
        logger.error("Image request for %s failed: %s", payload.src, e)
        raise HTTPException(status_code=_status_for(e), detail=str(e))
    return RenderOut(vars=result.vars, markup=result.markup, path=result.path, cached=result.cached)


@router.get("/images/cache", response_model=list[CacheEntryOut])
def list_cache(prefix: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(CacheEntry)
    if prefix:
        query = query.filter(CacheEntry.path.startswith(prefix.strip("/")))
    return query.order_by(CacheEntry.path.asc()).all()


@router.get("/images/cache/{path:path}", response_model=CacheEntryOut)
def get_cache_entry(path: str, db: Session = Depends(get_db)):
    entry = db.query(CacheEntry).filter(CacheEntry.path == path.strip("/")).first()
    if not entry:
        raise HTTPException(status_code=404, detail="Cache entry not found")
    return entry


@router.delete("/images/cache", response_model=RemovedOut)
def clear_cache(location: Optional[str] = None, engine: ImageEngine = Depends(get_engine)):
    return RemovedOut(removed=engine.store.clear(location))


@router.post("/images/cache/audit", response_model=RemovedOut)
def audit_cache(location: Optional[str] = None, engine: ImageEngine = Depends(get_engine)):
    return RemovedOut(removed=engine.store.audit(location))
