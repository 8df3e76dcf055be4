# publish_cache/denormalize.py
"""Denormalization pipeline for one segment.

``collect_listings`` narrows the normalized tables down to the active
listings of a (country, category) pair through a chain of set-membership
queries; ``flatten_listings`` then resolves each listing's place and category
names. The flattening is batched (one query per entity type over the distinct
ids in play) but keeps per-listing semantics: a missing hop nulls that field
and everything downstream of it, and the listing is still emitted.
"""
from dataclasses import dataclass
from typing import Dict, List

from sqlalchemy.orm import Session

from .models import Address, Category, City, Country, Listing, Neighborhood, Subcategory
from .utils import logger

ACTIVE_STATUS = "active"


@dataclass(frozen=True)
class SegmentKey:
    country_id: int
    category_id: int
    table_name: str


def _ids(rows) -> List:
    return [r[0] for r in rows]


def subcategory_ids(db: Session, category_id) -> List[int]:
    return _ids(db.query(Subcategory.subcategory_id).filter(Subcategory.category_id == category_id))


def city_ids(db: Session, country_id) -> List[int]:
    return _ids(db.query(City.city_id).filter(City.country_id == country_id))


def neighborhood_ids(db: Session, cities: List[int]) -> List[int]:
    return _ids(db.query(Neighborhood.neighborhood_id).filter(Neighborhood.city_id.in_(cities)))


def address_pairs(db: Session, neighborhoods: List[int]):
    return db.query(Address.listing_id, Address.neighborhood_id).filter(
        Address.neighborhood_id.in_(neighborhoods)
    ).all()


def active_listings(db: Session, listing_ids: List[str], subcategories: List[int]) -> List[Listing]:
    return (
        db.query(Listing)
        .filter(
            Listing.status == ACTIVE_STATUS,
            Listing.listing_id.in_(listing_ids),
            Listing.subcategory_id.in_(subcategories),
        )
        .all()
    )


def collect_listings(db: Session, segment: SegmentKey) -> List[Listing]:
    """Stages 1-5: every active listing that belongs to the segment.

    Any empty stage short-circuits to an empty result.
    """
    subcategories = subcategory_ids(db, segment.category_id)
    if not subcategories:
        logger.info("No subcategories for category %s, %s stays empty", segment.category_id, segment.table_name)
        return []

    cities = city_ids(db, segment.country_id)
    if not cities:
        logger.info("No cities for country %s, %s stays empty", segment.country_id, segment.table_name)
        return []

    neighborhoods = neighborhood_ids(db, cities)
    if not neighborhoods:
        logger.info("No neighborhoods found, %s stays empty", segment.table_name)
        return []

    pairs = address_pairs(db, neighborhoods)
    if not pairs:
        logger.info("No addresses found, %s stays empty", segment.table_name)
        return []

    listings = active_listings(db, list({listing_id for listing_id, _ in pairs}), subcategories)
    if not listings:
        logger.info("No active listings found, %s stays empty", segment.table_name)
    return listings


def _lookup(db: Session, key_column, keys, *columns) -> Dict:
    keys = {k for k in keys if k is not None}
    if not keys:
        return {}
    rows = db.query(key_column, *columns).filter(key_column.in_(keys)).all()
    return {row[0]: row[1:] for row in rows}


def flatten_listings(db: Session, segment: SegmentKey, listings: List[Listing]) -> List[Dict]:
    """Stage 6: one cache row dict per listing, in input order."""
    if not listings:
        return []

    addresses = _lookup(
        db, Address.listing_id, [listing.listing_id for listing in listings],
        Address.coordinates, Address.neighborhood_id,
    )
    neighborhoods = _lookup(
        db, Neighborhood.neighborhood_id, [a[1] for a in addresses.values()],
        Neighborhood.neighborhood_name, Neighborhood.city_id,
    )
    cities = _lookup(
        db, City.city_id, [n[1] for n in neighborhoods.values()],
        City.city_name, City.country_id,
    )
    countries = _lookup(
        db, Country.country_id, [c[1] for c in cities.values()],
        Country.country_name,
    )
    subcategories = _lookup(
        db, Subcategory.subcategory_id, [listing.subcategory_id for listing in listings],
        Subcategory.subcategory_name, Subcategory.category_id,
    )
    categories = _lookup(
        db, Category.category_id, [s[1] for s in subcategories.values()],
        Category.category_name,
    )

    rows = []
    for listing in listings:
        coordinates = neighborhood_id = neighborhood = None
        city_id = city = country = None
        address = addresses.get(listing.listing_id)
        if address is not None:
            coordinates, neighborhood_id = address
        if neighborhood_id is not None and neighborhood_id in neighborhoods:
            neighborhood, city_id = neighborhoods[neighborhood_id]
            if city_id is not None and city_id in cities:
                city, country_id = cities[city_id]
                if country_id is not None and country_id in countries:
                    country = countries[country_id][0]

        subcategory = category = None
        subcategory_id = listing.subcategory_id
        if subcategory_id is not None and subcategory_id in subcategories:
            subcategory, category_id = subcategories[subcategory_id]
            if category_id is not None and category_id in categories:
                category = categories[category_id][0]

        rows.append({
            "listing_id": listing.listing_id,
            "description": listing.description,
            "title": listing.title,
            "subcategory": subcategory,
            "category": category,
            "price": listing.price,
            "thumbnail": listing.thumbnail,
            "coordinates": coordinates,
            "neighborhood": neighborhood,
            "city": city,
            "country": country,
            "country_id": segment.country_id,
            "category_id": segment.category_id,
            "subcategory_id": subcategory_id,
            "city_id": city_id,
            "neighborhood_id": neighborhood_id,
        })
    return rows


def build_segment_rows(db: Session, segment: SegmentKey) -> List[Dict]:
    return flatten_listings(db, segment, collect_listings(db, segment))
