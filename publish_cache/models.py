# publish_cache/models.py
"""SQLAlchemy ORM models.

The first group mirrors the normalized marketplace tables this service only
reads. The second group is owned by the publish cache: segment metadata, the
shared denormalized row table and the rebuild job log.
"""
from sqlalchemy import (
    Boolean, Column, ForeignKey, Index, Integer, Numeric, Text, TIMESTAMP,
    UniqueConstraint, func,
)
from .db import Base


class Country(Base):
    __tablename__ = "countries"
    country_id = Column(Integer, primary_key=True)
    country_name = Column(Text, nullable=False)


class City(Base):
    __tablename__ = "listing_cities"
    city_id = Column(Integer, primary_key=True)
    city_name = Column(Text, nullable=False)
    country_id = Column(Integer, ForeignKey("countries.country_id"), index=True)


class Neighborhood(Base):
    __tablename__ = "listing_neighborhoods"
    neighborhood_id = Column(Integer, primary_key=True)
    neighborhood_name = Column(Text, nullable=False)
    city_id = Column(Integer, ForeignKey("listing_cities.city_id"), index=True)


class Category(Base):
    __tablename__ = "listing_categories"
    category_id = Column(Integer, primary_key=True)
    category_name = Column(Text, nullable=False)


class Subcategory(Base):
    __tablename__ = "listing_subcategories"
    subcategory_id = Column(Integer, primary_key=True)
    subcategory_name = Column(Text, nullable=False)
    category_id = Column(Integer, ForeignKey("listing_categories.category_id"), index=True)


class Listing(Base):
    __tablename__ = "listings"
    listing_id = Column(Text, primary_key=True)
    owner_id = Column(Text)
    title = Column(Text)
    description = Column(Text)
    price = Column(Numeric)
    thumbnail = Column(Text)
    subcategory_id = Column(Integer, ForeignKey("listing_subcategories.subcategory_id"), index=True)
    status = Column(Text, nullable=False, default="active")
    listing_date = Column(TIMESTAMP(timezone=True), server_default=func.now())


class Address(Base):
    __tablename__ = "listing_addresses"
    # no foreign key on neighborhood_id: addresses may reference removed neighborhoods
    listing_id = Column(Text, ForeignKey("listings.listing_id"), primary_key=True)
    neighborhood_id = Column(Integer, index=True)
    coordinates = Column(Text)
    address = Column(Text)


SOURCE_TABLES = [
    Country.__table__, City.__table__, Neighborhood.__table__, Category.__table__,
    Subcategory.__table__, Listing.__table__, Address.__table__,
]


class SegmentMetadata(Base):
    __tablename__ = "listing_publish_metadata"
    country_id = Column(Integer, primary_key=True)
    category_id = Column(Integer, primary_key=True)
    table_name = Column(Text, nullable=False)
    last_rebuilt_at = Column(TIMESTAMP(timezone=True), nullable=True)
    rebuild_in_progress = Column(Boolean, nullable=False, default=False)
    rebuild_started_at = Column(TIMESTAMP(timezone=True), nullable=True)
    active_generation = Column(Integer, nullable=False, default=0)
    # bumped by every claim; the claimed value is the generation that rebuild writes
    next_generation = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    @property
    def state(self):
        return "rebuilding" if self.rebuild_in_progress else "idle"


class PublishListing(Base):
    """One denormalized listing row; ``segment`` + ``generation`` select the live set."""
    __tablename__ = "listing_publish"
    id = Column(Integer, primary_key=True, autoincrement=True)
    segment = Column(Text, nullable=False)
    generation = Column(Integer, nullable=False)
    listing_id = Column(Text, nullable=False)
    description = Column(Text)
    title = Column(Text)
    subcategory = Column(Text)
    category = Column(Text)
    price = Column(Numeric)
    thumbnail = Column(Text)
    coordinates = Column(Text)
    neighborhood = Column(Text)
    city = Column(Text)
    country = Column(Text)
    country_id = Column(Integer, nullable=False)
    category_id = Column(Integer, nullable=False)
    subcategory_id = Column(Integer)
    city_id = Column(Integer)
    neighborhood_id = Column(Integer)

    __table_args__ = (
        UniqueConstraint("segment", "generation", "listing_id", name="uq_listing_publish_row"),
    )

Index("idx_listing_publish_segment", PublishListing.segment, PublishListing.generation, PublishListing.title)
Index("idx_listing_publish_country_category", PublishListing.country_id, PublishListing.category_id)
Index("idx_listing_publish_city", PublishListing.city_id)
Index("idx_listing_publish_neighborhood", PublishListing.neighborhood_id)

CACHE_ROW_FIELDS = [
    "listing_id", "description", "title", "subcategory", "category", "price", "thumbnail",
    "coordinates", "neighborhood", "city", "country", "country_id", "category_id",
    "subcategory_id", "city_id", "neighborhood_id",
]


class RebuildJob(Base):
    __tablename__ = "listing_publish_jobs"
    job_id = Column(Text, primary_key=True)
    kind = Column(Text, nullable=False, default="segment")
    country_id = Column(Integer)
    category_id = Column(Integer)
    status = Column(Text, nullable=False, default="queued")
    rows_written = Column(Integer)
    error = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    started_at = Column(TIMESTAMP(timezone=True))
    finished_at = Column(TIMESTAMP(timezone=True))


# created at application startup; the row table is provisioned lazily by ensure_segment
SERVICE_TABLES = [SegmentMetadata.__table__, RebuildJob.__table__]
