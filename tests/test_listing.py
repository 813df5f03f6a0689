import pytest
from bson import ObjectId

from errors import ValidationError
from listing import EqualityMatch, ListingQuery, ProductFilters, RangeMatch


def variant(size, color, price, stock=1, **extra):
    return {"size": size, "color": {"name": color}, "price": price, "stock": stock, **extra}


# Query building

def test_product_only_filters_compile_to_find():
    category = ObjectId()
    query = ListingQuery.build(ProductFilters(search="run", category=category, is_active=True, in_stock=True))
    assert not query.needs_variant_join
    assert query.compile_find() == {
        "name": {"$regex": "run", "$options": "i"},
        "category": category,
        "isActive": True,
        "totalStock": {"$gt": 0},
    }


def test_out_of_stock_filter():
    query = ListingQuery.build(ProductFilters(in_stock=False))
    assert query.compile_find() == {"totalStock": 0}


def test_variant_filters_switch_to_pipeline():
    query = ListingQuery.build(ProductFilters(size="M", min_price=10, max_price=20, is_active=True))
    assert query.needs_variant_join
    page_pipeline, count_pipeline = query.compile_pipeline(page=2, limit=5)
    assert page_pipeline[0] == {"$match": {"isActive": True}}
    assert page_pipeline[1]["$lookup"]["from"] == "product_variant"
    assert page_pipeline[2] == {"$match": {"variants": {"$elemMatch": {
        "isActive": True,
        "size": "M",
        "price": {"$gte": 10, "$lte": 20},
    }}}}
    assert page_pipeline[-2:] == [{"$skip": 5}, {"$limit": 5}]
    assert count_pipeline[-1] == {"$group": {"_id": None, "total": {"$sum": 1}}}


def test_search_text_is_escaped():
    query = ListingQuery.build(ProductFilters(search="a.b*"))
    assert query.compile_find()["name"]["$regex"] == r"a\.b\*"


def test_unknown_sort_field_rejected():
    with pytest.raises(ValidationError):
        ListingQuery.build(ProductFilters(), sort_by="password")
    with pytest.raises(ValidationError):
        ListingQuery.build(ProductFilters(), sort_order="sideways")


def test_inverted_price_range_rejected():
    with pytest.raises(ValidationError):
        ListingQuery.build(ProductFilters(min_price=30, max_price=10))


def test_predicates_match_documents():
    doc = {"price": 10, "color": {"name": "Red"}}
    assert EqualityMatch("color.name", "Red").matches(doc)
    assert RangeMatch("price", low=10, high=20).matches(doc)
    assert not RangeMatch("price", low=10, low_inclusive=False).matches(doc)
    assert not RangeMatch("missing", low=0).matches(doc)


# Listing through the API

def test_price_range_uses_variants(client, make_product):
    make_product("Cheap", variants=[variant("M", "Red", 5)])
    make_product("Mid", variants=[variant("M", "Red", 5), variant("L", "Red", 15)])
    make_product("Hidden", variants=[variant("M", "Red", 12, isActive=False)])
    make_product("Bare")

    body = client.get("/api/admin/products", params={"minPrice": 10, "maxPrice": 20}).json()
    assert [p["name"] for p in body["data"]] == ["Mid"]
    assert body["pagination"]["total"] == 1
    assert [v["price"] for v in body["data"][0]["variants"]] == [15]


def test_size_and_color_must_hold_on_the_same_variant(client, make_product):
    make_product("Split", variants=[variant("M", "Blue", 10), variant("L", "Red", 10)])
    make_product("Match", variants=[variant("M", "Red", 10)])
    body = client.get("/api/admin/products", params={"size": "M", "color": "Red"}).json()
    assert [p["name"] for p in body["data"]] == ["Match"]


def test_plain_listing_attaches_variants_and_category(client, make_product, category):
    make_product("Runner", variants=[variant("M", "Red", 10, stock=3)])
    make_product("Walker")
    body = client.get("/api/admin/products", params={"sortBy": "name", "sortOrder": "asc"}).json()
    assert [p["name"] for p in body["data"]] == ["Runner", "Walker"]
    assert body["data"][0]["category"]["slug"] == "shoes"
    assert len(body["data"][0]["variants"]) == 1
    assert body["data"][1]["variants"] == []

    in_stock = client.get("/api/admin/products", params={"inStock": "true"}).json()
    assert [p["name"] for p in in_stock["data"]] == ["Runner"]
    searched = client.get("/api/admin/products", params={"search": "WALK"}).json()
    assert [p["name"] for p in searched["data"]] == ["Walker"]


def test_pagination_arithmetic(client, make_product):
    for i in range(25):
        make_product(f"Product {i:02d}")
    page3 = client.get("/api/admin/products", params={"page": 3, "limit": 10}).json()
    assert page3["pagination"] == {"total": 25, "page": 3, "limit": 10, "totalPages": 3}
    assert len(page3["data"]) == 5
    page4 = client.get("/api/admin/products", params={"page": 4, "limit": 10})
    assert page4.status_code == 200
    assert page4.json()["data"] == []


def test_no_matches_is_empty_not_error(client, make_product):
    make_product("Runner", variants=[variant("M", "Red", 10)])
    body = client.get("/api/admin/products", params={"size": "XXL"}).json()
    assert body["success"] is True
    assert body["data"] == []
    assert body["pagination"]["total"] == 0
    assert body["pagination"]["totalPages"] == 0


def test_bad_listing_parameters(client):
    assert client.get("/api/admin/products", params={"sortBy": "secret"}).status_code == 400
    assert client.get("/api/admin/products", params={"category": "nope"}).status_code == 400
    assert client.get("/api/admin/products", params={"page": 0}).status_code == 400
