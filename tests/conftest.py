# tests/conftest.py
import os

# tests always run against an in-memory SQLite database
os.environ["POSTGRES_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ["PUBLISH_SEGMENTS"] = "Colombia:para la venta"

import pytest
from publish_cache.db import Base, engine, SessionLocal
from publish_cache.models import (
    Address, Category, City, Country, Listing, Neighborhood, Subcategory,
)


class InlineScheduler:
    """Stands in for the background scheduler and runs each job on submit."""

    def __init__(self):
        self.submitted = []

    def add_job(self, func, trigger=None, args=None, id=None, name=None, **kwargs):
        self.submitted.append(id)
        func(*(args or []))


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


def add_listing(db, listing_id, neighborhood_id=100, subcategory_id=50, status="active", title=None, **extra):
    db.add(Listing(
        listing_id=listing_id,
        title=title or f"Listing {listing_id}",
        description=f"Description of {listing_id}",
        price=extra.pop("price", 100),
        thumbnail=f"https://img.example/{listing_id}.jpg",
        subcategory_id=subcategory_id,
        status=status,
        owner_id="owner-1",
    ))
    db.add(Address(
        listing_id=listing_id,
        neighborhood_id=neighborhood_id,
        coordinates=extra.pop("coordinates", "4.6486,-74.0628"),
    ))
    db.commit()


@pytest.fixture
def seeded(db):
    db.add_all([
        Country(country_id=1, country_name="Colombia"),
        Country(country_id=2, country_name="Peru"),
        Country(country_id=3, country_name="Chile"),
        City(city_id=10, city_name="Bogota", country_id=1),
        City(city_id=11, city_name="Medellin", country_id=1),
        City(city_id=20, city_name="Lima", country_id=2),
        Neighborhood(neighborhood_id=100, neighborhood_name="Chapinero", city_id=10),
        Neighborhood(neighborhood_id=101, neighborhood_name="Usaquen", city_id=10),
        Neighborhood(neighborhood_id=110, neighborhood_name="El Poblado", city_id=11),
        Neighborhood(neighborhood_id=200, neighborhood_name="Miraflores", city_id=20),
        Category(category_id=5, category_name="para la venta"),
        Category(category_id=6, category_name="servicios"),
        Category(category_id=7, category_name="empleos"),
        Category(category_id=8, category_name="vacio"),
        Subcategory(subcategory_id=50, subcategory_name="muebles", category_id=5),
        Subcategory(subcategory_id=60, subcategory_name="plomeria", category_id=6),
        Subcategory(subcategory_id=70, subcategory_name="tecnologia", category_id=7),
    ])
    db.commit()
    add_listing(db, "L1", neighborhood_id=100, subcategory_id=50, title="Sofa de cuero")
    # noise that must stay out of the (Colombia, para la venta) segment
    add_listing(db, "L2", neighborhood_id=200, subcategory_id=50, title="Mesa en Lima")
    add_listing(db, "L3", neighborhood_id=100, subcategory_id=50, status="sold", title="Silla vendida")
    add_listing(db, "L4", neighborhood_id=100, subcategory_id=60, title="Plomero")
    return db


class FailingProvisioner:
    def __init__(self):
        self.calls = 0

    def provision_segment_table(self, country_name, category_name):
        self.calls += 1
        raise RuntimeError("permission denied for schema public")
