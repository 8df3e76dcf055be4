# publish_cache/services.py
"""Rebuild triggers.

Callers get a ``RebuildJob`` back immediately; the rebuild itself runs on the
background scheduler and records its outcome on the job row.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .config import configured_segments
from .db import SessionLocal
from .errors import NotFoundError, RebuildInProgressError
from .lookups import resolve_category, resolve_country, resolve_segment_for_listing
from .models import Category, Country, RebuildJob, SegmentMetadata
from .rebuild import rebuild_segment
from .segments import claim_is_held, get_segment
from .utils import logger

Segment = Tuple[int, int, str, str]


def _now():
    return datetime.now(timezone.utc)


def create_job(db: Session, kind: str, country_id: Optional[int] = None, category_id: Optional[int] = None) -> RebuildJob:
    job = RebuildJob(
        job_id=uuid.uuid4().hex,
        kind=kind,
        country_id=country_id,
        category_id=category_id,
        status="queued",
        created_at=_now(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job


def get_job(db: Session, job_id: str) -> Optional[RebuildJob]:
    return db.get(RebuildJob, job_id)


def _update_job(session_factory, job_id: str, **values):
    db = session_factory()
    try:
        db.query(RebuildJob).filter(RebuildJob.job_id == job_id).update(values, synchronize_session=False)
        db.commit()
    finally:
        db.close()


def run_segment_job(job_id: str, country_id: int, category_id: int, country_name: str, category_name: str,
                    session_factory=SessionLocal):
    _update_job(session_factory, job_id, status="running", started_at=_now())
    db = session_factory()
    try:
        rows = rebuild_segment(db, country_id, category_id, country_name, category_name)
    except RebuildInProgressError as e:
        _update_job(session_factory, job_id, status="skipped", error=e.message, finished_at=_now())
        return
    except Exception as e:
        logger.exception("Error rebuilding publish table for job %s: %s", job_id, e)
        _update_job(session_factory, job_id, status="failed", error=str(e), finished_at=_now())
        return
    finally:
        db.close()
    _update_job(session_factory, job_id, status="succeeded", rows_written=rows, finished_at=_now())


def run_all_job(job_id: str, session_factory=SessionLocal):
    _update_job(session_factory, job_id, status="running", started_at=_now())
    db = session_factory()
    try:
        summary = rebuild_all_known_segments(db)
    except Exception as e:
        logger.exception("Error in scheduled rebuild job %s: %s", job_id, e)
        _update_job(session_factory, job_id, status="failed", error=str(e), finished_at=_now())
        return
    finally:
        db.close()
    status = "failed" if summary["failed"] else "succeeded"
    error = f"{summary['failed']} segment(s) failed" if summary["failed"] else None
    _update_job(session_factory, job_id, status=status, rows_written=summary["rows"], error=error, finished_at=_now())


def known_segments(db: Session) -> List[Segment]:
    """Every segment with metadata plus the configured ``PUBLISH_SEGMENTS`` that resolve."""
    segments: Dict[Tuple[int, int], Segment] = {}
    registered = (
        db.query(SegmentMetadata.country_id, SegmentMetadata.category_id, Country.country_name, Category.category_name)
        .join(Country, Country.country_id == SegmentMetadata.country_id)
        .join(Category, Category.category_id == SegmentMetadata.category_id)
        .all()
    )
    for country_id, category_id, country_name, category_name in registered:
        segments[(country_id, category_id)] = (country_id, category_id, country_name, category_name)

    for country_name, category_name in configured_segments():
        try:
            country = resolve_country(db, country_name)
            category = resolve_category(db, category_name)
        except NotFoundError as e:
            logger.error("Configured segment %s / %s skipped: %s", country_name, category_name, e.message)
            continue
        key = (country.country_id, category.category_id)
        segments.setdefault(key, key + (country.country_name, category.category_name))
    return list(segments.values())


def rebuild_all_known_segments(db: Session) -> Dict[str, int]:
    """Rebuild every known segment in turn; one failing segment does not stop the rest."""
    logger.info("Starting rebuild of all publish tables")
    summary = {"segments": 0, "succeeded": 0, "failed": 0, "skipped": 0, "rows": 0}
    for country_id, category_id, country_name, category_name in known_segments(db):
        summary["segments"] += 1
        try:
            summary["rows"] += rebuild_segment(db, country_id, category_id, country_name, category_name)
            summary["succeeded"] += 1
        except RebuildInProgressError:
            summary["skipped"] += 1
        except Exception as e:
            logger.error("Rebuild of %s / %s failed: %s", country_name, category_name, e)
            summary["failed"] += 1
    logger.info(
        "Finished rebuild of all publish tables: %d succeeded, %d failed, %d skipped",
        summary["succeeded"], summary["failed"], summary["skipped"],
    )
    return summary


def resolve_segment_names(db: Session, country_name: str, category_name: str) -> Tuple[Country, Category]:
    return resolve_country(db, country_name), resolve_category(db, category_name)


def enqueue_segment_rebuild(db: Session, scheduler, country: Country, category: Category) -> RebuildJob:
    """Queue a rebuild of one segment.

    Raises ``RebuildInProgressError`` up front while a live claim is held; a
    claim taken between this check and the job running is recorded as a
    skipped job instead.
    """
    if claim_is_held(get_segment(db, country.country_id, category.category_id)):
        raise RebuildInProgressError(country.country_id, category.category_id)
    job = create_job(db, "segment", country.country_id, category.category_id)
    scheduler.add_job(
        run_segment_job,
        args=[job.job_id, country.country_id, category.category_id, country.country_name, category.category_name],
        id=job.job_id,
        name=f"rebuild {country.country_name} / {category.category_name}",
    )
    logger.info("Queued rebuild job %s for %s / %s", job.job_id, country.country_name, category.category_name)
    return job


def enqueue_listing_rebuild(db: Session, scheduler, listing_id: str) -> Tuple[RebuildJob, Country, Category]:
    country, category = resolve_segment_for_listing(db, listing_id)
    return enqueue_segment_rebuild(db, scheduler, country, category), country, category


def enqueue_rebuild_all(db: Session, scheduler) -> RebuildJob:
    job = create_job(db, "all")
    scheduler.add_job(run_all_job, args=[job.job_id], id=job.job_id, name="rebuild all publish tables")
    logger.info("Queued rebuild-all job %s", job.job_id)
    return job


def scheduled_rebuild_all():
    db = SessionLocal()
    try:
        job_id = create_job(db, "all").job_id
    finally:
        db.close()
    run_all_job(job_id)
