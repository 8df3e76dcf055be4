# tests/test_denormalize.py
from publish_cache.denormalize import SegmentKey, build_segment_rows, collect_listings, flatten_listings
from publish_cache.models import Listing
from conftest import add_listing

SEGMENT = SegmentKey(1, 5, "publish_colombia_para_la_venta")


def test_collects_only_active_listings_of_the_segment(seeded):
    listings = collect_listings(seeded, SEGMENT)
    assert [l.listing_id for l in listings] == ["L1"]


def test_category_without_subcategories_is_empty(seeded):
    assert collect_listings(seeded, SegmentKey(1, 8, "publish_colombia_vacio")) == []


def test_country_without_cities_is_empty(seeded):
    assert collect_listings(seeded, SegmentKey(3, 5, "publish_chile_para_la_venta")) == []


def test_category_without_listings_is_empty(seeded):
    assert build_segment_rows(seeded, SegmentKey(1, 7, "publish_colombia_empleos")) == []


def test_flattened_row(seeded):
    rows = build_segment_rows(seeded, SEGMENT)
    assert len(rows) == 1
    row = rows[0]
    assert row["listing_id"] == "L1"
    assert row["title"] == "Sofa de cuero"
    assert row["country"] == "Colombia"
    assert row["city"] == "Bogota"
    assert row["neighborhood"] == "Chapinero"
    assert row["category"] == "para la venta"
    assert row["subcategory"] == "muebles"
    assert row["coordinates"] == "4.6486,-74.0628"
    assert (row["country_id"], row["category_id"]) == (1, 5)
    assert (row["city_id"], row["neighborhood_id"], row["subcategory_id"]) == (10, 100, 50)


def test_dangling_neighborhood_nulls_place_names(seeded):
    add_listing(seeded, "L9", neighborhood_id=999)
    rows = flatten_listings(seeded, SEGMENT, [seeded.get(Listing, "L9")])
    assert len(rows) == 1
    row = rows[0]
    assert row["neighborhood_id"] == 999
    assert row["neighborhood"] is None
    assert row["city"] is None and row["city_id"] is None
    assert row["country"] is None
    assert row["subcategory"] == "muebles"
    assert (row["country_id"], row["category_id"]) == (1, 5)


def test_missing_subcategory_nulls_category_names(seeded):
    add_listing(seeded, "L8", subcategory_id=555)
    row = flatten_listings(seeded, SEGMENT, [seeded.get(Listing, "L8")])[0]
    assert row["subcategory_id"] == 555
    assert row["subcategory"] is None
    assert row["category"] is None
    assert row["neighborhood"] == "Chapinero"


def test_listing_without_address(seeded):
    seeded.add(Listing(listing_id="L7", title="Sin direccion", subcategory_id=50, status="active"))
    seeded.commit()
    row = flatten_listings(seeded, SEGMENT, [seeded.get(Listing, "L7")])[0]
    assert row["coordinates"] is None
    assert row["neighborhood_id"] is None
    assert row["country"] is None
    assert row["category"] == "para la venta"
