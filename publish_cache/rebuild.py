# publish_cache/rebuild.py
"""Segment rebuild orchestration.

A rebuild moves a segment Idle -> Rebuilding -> Idle, or through Failed back
to Idle when any step raises. New rows are written under the generation
handed out by the claim and only become visible when ``mark_rebuild_finished``
swaps the segment's active generation, so readers keep seeing the previous
contents until the rebuild completes.
"""
import enum
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import INSERT_BATCH_SIZE
from .denormalize import SegmentKey, build_segment_rows
from .errors import RebuildInProgressError, RebuildSupersededError, is_missing_relation
from .models import PublishListing
from .segments import (
    SchemaProvisioner, ensure_segment, mark_rebuild_failed,
    mark_rebuild_finished, mark_rebuild_started,
)
from .utils import logger


class RebuildState(str, enum.Enum):
    IDLE = "idle"
    REBUILDING = "rebuilding"
    FAILED = "failed"


def _transition(table_name: str, old: RebuildState, new: RebuildState):
    logger.debug("Segment %s: %s -> %s", table_name, old.value, new.value)
    return new


def batches(rows: List[Dict], size: int = INSERT_BATCH_SIZE):
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


def clear_generation(db: Session, table_name: str, generation: int) -> bool:
    """Remove rows of ``generation``; return False when the row table is not there yet."""
    try:
        db.query(PublishListing).filter(
            PublishListing.segment == table_name,
            PublishListing.generation == generation,
        ).delete(synchronize_session=False)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        if not is_missing_relation(e):
            raise
        logger.info("Publish table for %s does not exist yet, nothing to clear", table_name)
        return False


def insert_rows(db: Session, table_name: str, generation: int, rows: List[Dict], batch_size: int = INSERT_BATCH_SIZE):
    """Insert ``rows`` in batches; a failing batch aborts, earlier batches stay."""
    for batch in batches(rows, batch_size):
        payload = [dict(row, segment=table_name, generation=generation) for row in batch]
        db.execute(insert(PublishListing), payload)
        db.commit()


def rebuild_segment(
    db: Session,
    country_id: int,
    category_id: int,
    country_name: str,
    category_name: str,
    provisioner: Optional[SchemaProvisioner] = None,
    now=None,
) -> int:
    """Recompute a segment from the normalized tables and return its row count.

    Raises ``RebuildInProgressError`` without touching any rows when another
    rebuild holds the segment, and ``RebuildSupersededError`` when a newer
    rebuild took the claim over before this one could publish. Any other
    failure releases the claim, discards the partially written generation and
    is re-raised.
    """
    table_name = ensure_segment(db, country_id, category_id, country_name, category_name, provisioner)
    state = RebuildState.IDLE

    generation = mark_rebuild_started(db, country_id, category_id)
    if generation is None:
        logger.warning("Rebuild of %s skipped: already in progress", table_name)
        raise RebuildInProgressError(country_id, category_id)
    state = _transition(table_name, state, RebuildState.REBUILDING)
    logger.info("Starting rebuild for %s (%s - %s)", table_name, country_name, category_name)

    try:
        table_present = clear_generation(db, table_name, generation)
        rows = build_segment_rows(db, SegmentKey(country_id, category_id, table_name))
        if rows:
            logger.info("Processing %d listings for %s", len(rows), table_name)
            insert_rows(db, table_name, generation, rows)
        published = mark_rebuild_finished(
            db, country_id, category_id, now or datetime.now(timezone.utc), generation,
            purge_previous=table_present or bool(rows),
        )
    except Exception as e:
        state = _transition(table_name, state, RebuildState.FAILED)
        logger.exception("Error rebuilding publish table %s: %s", table_name, e)
        db.rollback()
        mark_rebuild_failed(db, country_id, category_id, error=str(e), generation=generation)
        _discard_generation(db, table_name, generation)
        _transition(table_name, state, RebuildState.IDLE)
        raise

    if not published:
        logger.warning("Rebuild of %s generation %s was superseded, discarding its rows", table_name, generation)
        _discard_generation(db, table_name, generation)
        _transition(table_name, state, RebuildState.IDLE)
        raise RebuildSupersededError(country_id, category_id)

    _transition(table_name, state, RebuildState.IDLE)
    logger.info("Successfully rebuilt %s with %d listings", table_name, len(rows))
    return len(rows)


def _discard_generation(db: Session, table_name: str, generation: int):
    try:
        clear_generation(db, table_name, generation)
    except SQLAlchemyError as e:
        # generations are never reused, so leftovers are only dead rows
        logger.error("Could not discard partial rows of %s generation %s: %s", table_name, generation, e)
