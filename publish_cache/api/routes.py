# publish_cache/api/routes.py
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import config, reader, schemas, services
from ..db import get_db
from ..errors import NotFoundError, RebuildInProgressError, ValidationError
from ..scheduler import get_scheduler
from ..segments import list_segments
from ..utils import logger

router = APIRouter()


def _authorize(authorization: Optional[str], secret: Optional[str]):
    if secret and authorization != f"Bearer {secret}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def _started(job, country=None, category=None, message="Rebuild started"):
    return schemas.RebuildStarted(
        message=message,
        job_id=job.job_id,
        country=country.country_name if country is not None else None,
        category=category.category_name if category is not None else None,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/listings", response_model=schemas.ListingsPage)
def listings(payload: schemas.ListingsRequest, db: Session = Depends(get_db)):
    try:
        res = reader.query_segment(
            db,
            payload.country,
            payload.category,
            city=payload.city,
            neighborhood=payload.neighborhood,
            page=payload.batch,
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.exception("Error in listings endpoint: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    return {"listings": res["rows"], "batch": res["page"], "count": res["count"], "total": res["total"]}


@router.post("/admin/rebuild-publish", response_model=schemas.RebuildStarted)
def admin_rebuild(
    payload: schemas.RebuildRequest,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    scheduler=Depends(get_scheduler),
):
    _authorize(authorization, config.ADMIN_SECRET)
    if not payload.country or not payload.category:
        raise HTTPException(status_code=400, detail="country and category are required")
    try:
        country, category = services.resolve_segment_names(db, payload.country, payload.category)
        job = services.enqueue_segment_rebuild(db, scheduler, country, category)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except RebuildInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except Exception as e:
        logger.exception("Error in rebuild API: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    return _started(job, country, category)


@router.get("/cron/rebuild-publish", response_model=schemas.RebuildStarted)
def cron_rebuild(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    scheduler=Depends(get_scheduler),
):
    _authorize(authorization, config.CRON_SECRET)
    try:
        job = services.enqueue_rebuild_all(db, scheduler)
    except Exception as e:
        logger.exception("Error starting rebuild: %s", e)
        raise HTTPException(status_code=500, detail="Failed to start rebuild")
    return _started(job)


@router.post("/rebuild-cache", response_model=schemas.RebuildStarted)
def rebuild_cache(
    payload: schemas.RebuildCacheRequest,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    scheduler=Depends(get_scheduler),
):
    _authorize(authorization, config.ADMIN_SECRET)
    try:
        if payload.country and payload.category:
            country, category = services.resolve_segment_names(db, payload.country, payload.category)
            job = services.enqueue_segment_rebuild(db, scheduler, country, category)
        elif payload.listing_id:
            job, country, category = services.enqueue_listing_rebuild(db, scheduler, payload.listing_id)
        else:
            raise HTTPException(
                status_code=400,
                detail="Either listing_id or both country and category are required",
            )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except RebuildInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error in rebuild-cache API: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    return _started(job, country, category, message="Cache rebuild started")


@router.get("/rebuild-jobs/{job_id}", response_model=schemas.RebuildJobOut)
def rebuild_job(job_id: str, db: Session = Depends(get_db)):
    job = services.get_job(db, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Rebuild job not found")
    return job


@router.get("/segments", response_model=List[schemas.SegmentOut])
def segments(db: Session = Depends(get_db)):
    return list_segments(db)
