"""
Products and their size/color variants.

Every variant mutation finishes with `recompute_total_stock` so that
product.totalStock always equals the stock summed over active variants.
"""
import logging
from typing import Dict, List, Optional, Tuple

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pymongo.database import Database

from categories import ensure_unique_name, get_category_or_404, make_slug
from database import create_document, get_db, sanitize, to_obj_id, update_document, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from listing import ListingQuery, ProductFilters, list_products
from responses import envelope, paginate
from schemas import Product as ProductSchema, ProductUpdate, ProductVariant as VariantSchema, ProductVariantUpdate, StockUpdate
from security import Principal, require_admin
from stock import recompute_total_stock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/products")

RELATED_LIMIT = 6


# Helpers

def get_product_or_404(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not product:
        raise NotFoundError("Product not found")
    return product


def get_owned_variant(db: Database, product_id: str, variant_id: str) -> dict:
    variant = db["product_variant"].find_one({"_id": to_obj_id(variant_id)})
    if not variant:
        raise NotFoundError("Variant not found")
    if variant["product"] != to_obj_id(product_id):
        raise ValidationError("Variant does not belong to this product")
    return variant


def ensure_unique_combination(db: Database, product_id: ObjectId, size: str, color_name: str, exclude_id: Optional[ObjectId] = None) -> None:
    query = {"product": product_id, "size": size, "color.name": color_name}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["product_variant"].find_one(query):
        raise ConflictError("A variant with this size and color already exists")


def ensure_unique_sku(db: Database, sku: Optional[str], exclude_ids: Optional[List[ObjectId]] = None) -> None:
    if not sku:
        return
    query: Dict = {"sku": sku}
    if exclude_ids:
        query["_id"] = {"$nin": exclude_ids}
    if db["product_variant"].find_one(query):
        raise ConflictError(f"SKU {sku} already exists")


def validate_variant_set(db: Database, variants: List[VariantSchema], replacing: Optional[List[ObjectId]] = None) -> None:
    """Check a batch of new variants against each other and the store,
    before any of them is written."""
    seen_combos = set()
    seen_skus = set()
    for v in variants:
        combo = (v.size, v.color.name)
        if combo in seen_combos:
            raise ConflictError(f"Duplicate variant {v.size}/{v.color.name}")
        seen_combos.add(combo)
        if v.sku:
            if v.sku in seen_skus:
                raise ConflictError(f"SKU {v.sku} already exists")
            seen_skus.add(v.sku)
            ensure_unique_sku(db, v.sku, exclude_ids=replacing)


def insert_variants(db: Database, product_id: ObjectId, variants: List[VariantSchema]) -> List[ObjectId]:
    ids = []
    for v in variants:
        doc = create_document(db, "product_variant", {**v.to_document(), "product": product_id})
        ids.append(doc["_id"])
    return ids


def populate(db: Database, product: dict) -> dict:
    product = dict(product)
    if product.get("category") is not None:
        cat = db["category"].find_one({"_id": product["category"]}, {"name": 1, "slug": 1})
        if cat:
            product["category"] = cat
    product["variants"] = list(
        db["product_variant"].find({"product": product["_id"]}).sort([("size", 1), ("color.name", 1)])
    )
    return sanitize(product)


# Products

@router.get("")
def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    category: Optional[str] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    size: Optional[str] = None,
    color: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0, alias="minPrice"),
    max_price: Optional[float] = Query(None, ge=0, alias="maxPrice"),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    db: Database = Depends(get_db),
):
    filters = ProductFilters(
        search=search,
        category=to_obj_id(category) if category else None,
        is_active=is_active,
        in_stock=in_stock,
        size=size,
        color=color,
        min_price=min_price,
        max_price=max_price,
    )
    query = ListingQuery.build(filters, sort_by=sort_by, sort_order=sort_order)
    items, total = list_products(db, query, page, limit)
    return envelope("Fetched products", items, paginate(total, page, limit))


@router.get("/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    product = get_product_or_404(db, product_id)
    related = []
    if product.get("category") is not None:
        cursor = db["product"].find({
            "_id": {"$ne": product["_id"]},
            "category": product["category"],
            "isActive": True,
        }).limit(RELATED_LIMIT)
        related = [populate(db, r) for r in cursor]
    return envelope("Fetched product", populate(db, product), relatedProducts=related)


@router.post("")
def create_product(payload: ProductSchema, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    slug = make_slug(payload.name)
    ensure_unique_name(db, "product", payload.name, slug)
    category = get_category_or_404(db, payload.category)
    validate_variant_set(db, payload.variants)

    data = payload.to_document()
    data.pop("variants")
    data.update({"slug": slug, "category": category["_id"], "variants": [], "totalStock": 0})
    product = create_document(db, "product", data)

    if payload.variants:
        ids = insert_variants(db, product["_id"], payload.variants)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"variants": ids}})
        recompute_total_stock(db, product["_id"])
        product = db["product"].find_one({"_id": product["_id"]})

    logger.info("Product %s created by %s", product["_id"], admin.user_id)
    return JSONResponse(status_code=201, content=envelope("Product created", sanitize(product)))


@router.put("/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    product = get_product_or_404(db, product_id)
    changes = payload.to_document(partial=True)
    new_variants = payload.variants
    changes.pop("variants", None)

    name = changes.get("name")
    if name is not None:
        name = name.strip()
        changes["name"] = name
        if name != product["name"]:
            changes["slug"] = make_slug(name)
            ensure_unique_name(db, "product", name, changes["slug"], exclude_id=product["_id"])
    if "category" in changes:
        changes["category"] = get_category_or_404(db, changes["category"])["_id"]

    old_variant_ids = [v["_id"] for v in db["product_variant"].find({"product": product["_id"]}, {"_id": 1})]
    if new_variants is not None:
        validate_variant_set(db, new_variants, replacing=old_variant_ids)

    updated = update_document(db, "product", product["_id"], changes)

    if new_variants is not None:
        db["product_variant"].delete_many({"product": product["_id"]})
        ids = insert_variants(db, product["_id"], new_variants)
        db["product"].update_one({"_id": product["_id"]}, {"$set": {"variants": ids}})
        recompute_total_stock(db, product["_id"])
        updated = db["product"].find_one({"_id": product["_id"]})

    logger.info("Product %s updated by %s", product["_id"], admin.user_id)
    return envelope("Product updated", sanitize(updated))


@router.delete("/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    product = get_product_or_404(db, product_id)
    removed = db["product_variant"].delete_many({"product": product["_id"]}).deleted_count
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s deleted with %d variants by %s", product["_id"], removed, admin.user_id)
    return envelope("Product deleted")


@router.patch("/{product_id}/activate")
def toggle_product(product_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    product = get_product_or_404(db, product_id)
    active = not product.get("isActive", True)
    updated = update_document(db, "product", product["_id"], {"isActive": active})
    return envelope("Product activated" if active else "Product deactivated", sanitize(updated))


# Variants

@router.get("/{product_id}/variants")
def get_variants(product_id: str, db: Database = Depends(get_db)):
    product = get_product_or_404(db, product_id)
    variants = db["product_variant"].find({"product": product["_id"]}).sort([("size", 1), ("color.name", 1)])
    return envelope("Fetched variants", [sanitize(v) for v in variants])


@router.get("/{product_id}/variants/{variant_id}")
def get_variant(product_id: str, variant_id: str, db: Database = Depends(get_db)):
    get_product_or_404(db, product_id)
    return envelope("Fetched variant", sanitize(get_owned_variant(db, product_id, variant_id)))


@router.post("/{product_id}/variants")
def create_variant(product_id: str, payload: VariantSchema, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    product = get_product_or_404(db, product_id)
    ensure_unique_combination(db, product["_id"], payload.size, payload.color.name)
    ensure_unique_sku(db, payload.sku)

    doc = create_document(db, "product_variant", {**payload.to_document(), "product": product["_id"]})
    db["product"].update_one({"_id": product["_id"]}, {"$push": {"variants": doc["_id"]}})
    recompute_total_stock(db, product["_id"])
    logger.info("Variant %s added to product %s", doc["_id"], product["_id"])
    return JSONResponse(status_code=201, content=envelope("Variant created", sanitize(doc)))


def _merged_combo(variant: dict, changes: dict) -> Tuple[str, str]:
    size = changes.get("size", variant["size"])
    color = changes.get("color") or variant["color"]
    return size, color["name"]


@router.put("/{product_id}/variants/{variant_id}")
def update_variant(product_id: str, variant_id: str, payload: ProductVariantUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    variant = get_owned_variant(db, product_id, variant_id)
    changes = payload.to_document(partial=True)
    if payload.color is not None:
        # a new color replaces the old one whole, hex default included
        changes["color"] = payload.color.to_document()

    size, color_name = _merged_combo(variant, changes)
    if (size, color_name) != (variant["size"], variant["color"]["name"]):
        ensure_unique_combination(db, variant["product"], size, color_name, exclude_id=variant["_id"])
    if changes.get("sku") and changes["sku"] != variant.get("sku"):
        ensure_unique_sku(db, changes["sku"], exclude_ids=[variant["_id"]])

    updated = update_document(db, "product_variant", variant["_id"], changes)
    recompute_total_stock(db, variant["product"])
    logger.info("Variant %s updated", variant["_id"])
    return envelope("Variant updated", sanitize(updated))


@router.delete("/{product_id}/variants/{variant_id}")
def delete_variant(product_id: str, variant_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    variant = get_owned_variant(db, product_id, variant_id)
    db["product_variant"].delete_one({"_id": variant["_id"]})
    db["product"].update_one(
        {"_id": variant["product"]},
        {"$pull": {"variants": variant["_id"]}, "$set": {"updatedAt": utcnow()}},
    )
    recompute_total_stock(db, variant["product"])
    logger.info("Variant %s deleted", variant["_id"])
    return envelope("Variant deleted")


@router.patch("/{product_id}/variants/{variant_id}/stock")
def update_variant_stock(product_id: str, variant_id: str, payload: StockUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    variant = get_owned_variant(db, product_id, variant_id)
    updated = update_document(db, "product_variant", variant["_id"], {"stock": payload.stock})
    recompute_total_stock(db, variant["product"])
    return envelope("Stock updated", sanitize(updated))
