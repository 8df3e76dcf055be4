# publish_cache/segments.py
"""Segment metadata store.

Each (country_id, category_id) pair owns one ``listing_publish_metadata`` row
that records its cache identifier, whether a rebuild currently holds the
segment, when the last rebuild completed and which generation of rows in
``listing_publish`` is live.

Every write here commits on its own; none of them share a transaction with
the row rebuild except ``mark_rebuild_finished``, which swaps generations.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .config import REBUILD_STALE_AFTER_MINUTES
from .db import Base
from .models import PublishListing, SegmentMetadata
from .naming import segment_table_name
from .utils import logger, retry


class SchemaProvisioner(Protocol):
    def provision_segment_table(self, country_name: str, category_name: str) -> str:
        ...


class SharedTableProvisioner:
    """Provisions the single ``listing_publish`` table that backs every segment.

    ``create_all`` with ``checkfirst`` makes repeated calls a no-op.
    """

    def __init__(self, bind):
        self.bind = bind

    @retry(SQLAlchemyError, tries=2, delay=0.5)
    def provision_segment_table(self, country_name: str, category_name: str) -> str:
        Base.metadata.create_all(bind=self.bind, tables=[PublishListing.__table__], checkfirst=True)
        return segment_table_name(country_name, category_name)


def get_segment(db: Session, country_id: int, category_id: int) -> Optional[SegmentMetadata]:
    return db.get(SegmentMetadata, (country_id, category_id))


def list_segments(db: Session):
    return (
        db.query(SegmentMetadata)
        .order_by(SegmentMetadata.table_name, SegmentMetadata.country_id, SegmentMetadata.category_id)
        .all()
    )


def ensure_segment(
    db: Session,
    country_id: int,
    category_id: int,
    country_name: str,
    category_name: str,
    provisioner: Optional[SchemaProvisioner] = None,
) -> str:
    """Return the segment's table name, creating its metadata row on first use."""
    existing = get_segment(db, country_id, category_id)
    if existing is not None:
        return existing.table_name

    table_name = segment_table_name(country_name, category_name)
    provisioner = provisioner or SharedTableProvisioner(db.get_bind())
    try:
        provisioner.provision_segment_table(country_name, category_name)
    except Exception as e:
        # the table may already exist from an earlier call; keep going
        logger.error("Error provisioning publish table %s: %s", table_name, e)

    db.add(SegmentMetadata(
        country_id=country_id,
        category_id=category_id,
        table_name=table_name,
        last_rebuilt_at=None,
        rebuild_in_progress=False,
        active_generation=0,
        next_generation=0,
    ))
    try:
        db.commit()
    except IntegrityError:
        # a concurrent caller inserted the same segment first
        db.rollback()
        existing = get_segment(db, country_id, category_id)
        if existing is None:
            raise
        return existing.table_name
    logger.info("Registered segment %s (country=%s, category=%s)", table_name, country_id, category_id)
    return table_name


def _segment_filter(query, country_id, category_id):
    return query.filter(
        SegmentMetadata.country_id == country_id,
        SegmentMetadata.category_id == category_id,
    )


def _stale_cutoff(now: datetime) -> datetime:
    return now - timedelta(minutes=REBUILD_STALE_AFTER_MINUTES)


def claim_is_held(meta: Optional[SegmentMetadata], now: Optional[datetime] = None) -> bool:
    """True while a rebuild holds a claim on the segment that is not yet stale."""
    if meta is None or not meta.rebuild_in_progress or meta.rebuild_started_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    started = meta.rebuild_started_at
    if started.tzinfo is None:
        started = started.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return started >= _stale_cutoff(now)


def mark_rebuild_started(db: Session, country_id: int, category_id: int, now: Optional[datetime] = None) -> Optional[int]:
    """Atomically claim the segment for a rebuild.

    Returns the generation the claimant writes its rows under, or None when
    another rebuild holds a claim younger than ``REBUILD_STALE_AFTER_MINUTES``.
    Every claim, including a takeover of a stale one, gets a fresh generation.
    """
    now = now or datetime.now(timezone.utc)
    claimed = (
        _segment_filter(db.query(SegmentMetadata), country_id, category_id)
        .filter(or_(
            SegmentMetadata.rebuild_in_progress.is_(False),
            SegmentMetadata.rebuild_started_at.is_(None),
            SegmentMetadata.rebuild_started_at < _stale_cutoff(now),
        ))
        .update(
            {
                "rebuild_in_progress": True,
                "rebuild_started_at": now,
                "next_generation": SegmentMetadata.next_generation + 1,
            },
            synchronize_session=False,
        )
    )
    if claimed != 1:
        db.rollback()
        return None
    # read back inside the claiming transaction, the row is still locked
    generation = (
        _segment_filter(db.query(SegmentMetadata.next_generation), country_id, category_id).scalar()
    )
    db.commit()
    return generation


def _held_by(query, generation: Optional[int]):
    if generation is None:
        return query
    return query.filter(
        SegmentMetadata.rebuild_in_progress.is_(True),
        SegmentMetadata.next_generation == generation,
    )


def mark_rebuild_finished(
    db: Session,
    country_id: int,
    category_id: int,
    timestamp: datetime,
    generation: Optional[int] = None,
    purge_previous: bool = True,
) -> bool:
    """Release the claim, stamp ``last_rebuilt_at`` and make ``generation`` live.

    With a ``generation`` the update only applies while that claim is still
    the current one; returns False, changing nothing, when a newer rebuild
    has taken the segment over. The generation swap and the removal of every
    other generation of the segment's rows happen in one transaction.
    ``purge_previous=False`` skips the removal when the row table has not been
    provisioned.
    """
    values = {
        "rebuild_in_progress": False,
        "rebuild_started_at": None,
        "last_rebuilt_at": timestamp,
        "last_error": None,
    }
    if generation is not None:
        values["active_generation"] = generation
    updated = _held_by(_segment_filter(db.query(SegmentMetadata), country_id, category_id), generation).update(
        values, synchronize_session=False
    )
    if updated != 1:
        db.rollback()
        return False
    if generation is not None and purge_previous:
        table_name = get_segment(db, country_id, category_id).table_name
        db.query(PublishListing).filter(
            PublishListing.segment == table_name,
            PublishListing.generation != generation,
        ).delete(synchronize_session=False)
    db.commit()
    return True


def mark_rebuild_failed(
    db: Session,
    country_id: int,
    category_id: int,
    error: Optional[str] = None,
    generation: Optional[int] = None,
) -> bool:
    """Release the claim without touching ``last_rebuilt_at``.

    With a ``generation`` only the rebuild still holding that claim releases
    it; a superseded rebuild leaves the newer claim alone and gets False.
    """
    updated = _held_by(_segment_filter(db.query(SegmentMetadata), country_id, category_id), generation).update(
        {"rebuild_in_progress": False, "rebuild_started_at": None, "last_error": error},
        synchronize_session=False,
    )
    db.commit()
    return updated == 1
