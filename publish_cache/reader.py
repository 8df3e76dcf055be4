# publish_cache/reader.py
"""Read path over the publish cache.

Queries only ever touch ``listing_publish``; a segment that has never been
built, or a row table that has not been provisioned, reads as empty.
"""
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import PAGE_SIZE
from .errors import NotFoundError, ValidationError, is_missing_relation
from .lookups import find_neighborhood, resolve_category, resolve_city, resolve_country
from .models import CACHE_ROW_FIELDS, PublishListing
from .segments import get_segment
from .utils import logger


def _empty(page: int) -> Dict[str, Any]:
    return {"rows": [], "page": page, "count": 0, "total": 0}


def resolve_filters(db: Session, country_id: int, city: Optional[str], neighborhood: Optional[str]) -> Dict[str, int]:
    filters = {}
    if neighborhood and not city:
        raise ValidationError("city is required when neighborhood is provided")
    if city:
        filters["city_id"] = resolve_city(db, country_id, city).city_id
    if neighborhood:
        found, elsewhere = find_neighborhood(db, filters["city_id"], neighborhood)
        if found is None:
            if elsewhere:
                raise ValidationError("Neighborhood does not belong to the specified city")
            raise NotFoundError("Neighborhood not found")
        filters["neighborhood_id"] = found.neighborhood_id
    return filters


def query_segment(
    db: Session,
    country_name: str,
    category_name: str,
    city: Optional[str] = None,
    neighborhood: Optional[str] = None,
    page: int = 1,
    page_size: int = PAGE_SIZE,
) -> Dict[str, Any]:
    """One page of a segment's rows ordered by title, with the total match count."""
    if not country_name or not country_name.strip():
        raise ValidationError("country parameter is required")
    if not category_name or not category_name.strip():
        raise ValidationError("category parameter is required")
    if page < 1:
        raise ValidationError("batch must be >= 1")

    country = resolve_country(db, country_name)
    category = resolve_category(db, category_name)
    filters = resolve_filters(db, country.country_id, city, neighborhood)

    try:
        meta = get_segment(db, country.country_id, category.category_id)
        if meta is None:
            return _empty(page)
        # rows live under the name stored at registration, not the current display names
        table_name = meta.table_name

        q = db.query(PublishListing).filter(
            PublishListing.segment == table_name,
            PublishListing.generation == meta.active_generation,
        )
        for column, value in filters.items():
            q = q.filter(getattr(PublishListing, column) == value)
        total = q.count()
        items = (
            q.order_by(PublishListing.title.asc(), PublishListing.listing_id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
    except SQLAlchemyError as e:
        db.rollback()
        if not is_missing_relation(e):
            raise
        logger.info("Publish cache for %s / %s not provisioned yet, returning empty page", country_name, category_name)
        return _empty(page)

    rows = [{field: getattr(item, field) for field in CACHE_ROW_FIELDS} for item in items]
    return {"rows": rows, "page": page, "count": len(rows), "total": total}
