# publish_cache/lookups.py
"""Display-name and listing lookups against the normalized source tables."""
from sqlalchemy import func
from sqlalchemy.orm import Session

from .errors import NotFoundError
from .models import Address, Category, City, Country, Listing, Neighborhood, Subcategory


def _name_matches(column, name: str):
    return func.lower(column) == name.strip().lower()


def resolve_country(db: Session, name: str) -> Country:
    obj = db.query(Country).filter(_name_matches(Country.country_name, name)).order_by(Country.country_id).first()
    if not obj:
        raise NotFoundError("Country not found")
    return obj


def resolve_category(db: Session, name: str) -> Category:
    obj = db.query(Category).filter(_name_matches(Category.category_name, name)).order_by(Category.category_id).first()
    if not obj:
        raise NotFoundError("Category not found")
    return obj


def resolve_city(db: Session, country_id: int, name: str) -> City:
    obj = (
        db.query(City)
        .filter(City.country_id == country_id, _name_matches(City.city_name, name))
        .order_by(City.city_id)
        .first()
    )
    if not obj:
        raise NotFoundError("City not found in the specified country")
    return obj


def find_neighborhood(db: Session, city_id: int, name: str):
    """Neighborhood called ``name`` inside the city, or None.

    Returns ``(neighborhood, exists_elsewhere)`` so callers can tell an
    unknown name from one that belongs to a different city.
    """
    matches = (
        db.query(Neighborhood)
        .filter(_name_matches(Neighborhood.neighborhood_name, name))
        .order_by(Neighborhood.neighborhood_id)
        .all()
    )
    for n in matches:
        if n.city_id == city_id:
            return n, False
    return None, bool(matches)


def resolve_segment_for_listing(db: Session, listing_id: str):
    """Walk a listing up to its (country, category) pair.

    Returns ``(country, category)``; every missing hop raises ``NotFoundError``.
    """
    listing = db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError("Listing not found")
    subcategory = db.get(Subcategory, listing.subcategory_id) if listing.subcategory_id is not None else None
    if not subcategory:
        raise NotFoundError("Subcategory not found")
    category = db.get(Category, subcategory.category_id) if subcategory.category_id is not None else None
    if not category:
        raise NotFoundError("Category not found")
    address = db.get(Address, listing_id)
    if not address:
        raise NotFoundError("Listing address not found")
    neighborhood = db.get(Neighborhood, address.neighborhood_id) if address.neighborhood_id is not None else None
    if not neighborhood:
        raise NotFoundError("Neighborhood not found")
    city = db.get(City, neighborhood.city_id) if neighborhood.city_id is not None else None
    if not city:
        raise NotFoundError("City not found")
    country = db.get(Country, city.country_id) if city.country_id is not None else None
    if not country:
        raise NotFoundError("Country not found")
    return country, category
