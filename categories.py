"""
Category endpoints. Reads are public, writes need an admin.
"""
import logging
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pymongo.database import Database
from slugify import slugify

from database import create_document, get_db, sanitize, to_obj_id, update_document
from errors import ConflictError, NotFoundError, ValidationError
from responses import envelope, paginate
from schemas import Category as CategorySchema, CategoryUpdate
from security import Principal, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories")


def make_slug(name: str) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationError("Name must contain letters or digits")
    return slug


def ensure_unique_name(db: Database, collection_name: str, name: str, slug: str, exclude_id: Optional[ObjectId] = None) -> None:
    """Shared by categories and products: both are unique by name and slug."""
    query = {"$or": [{"name": name}, {"slug": slug}]}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db[collection_name].find_one(query):
        raise ConflictError(f"{collection_name.capitalize()} name already exists")


def get_category_or_404(db: Database, category_id: str) -> dict:
    category = db["category"].find_one({"_id": to_obj_id(category_id)})
    if not category:
        raise NotFoundError("Category not found")
    return category


@router.get("")
def list_categories(
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Database = Depends(get_db),
):
    filt = {} if is_active is None else {"isActive": is_active}
    total = db["category"].count_documents(filt)
    cursor = db["category"].find(filt).sort([("createdAt", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    items = [sanitize(c) for c in cursor]
    return envelope("Fetched categories", items, paginate(total, page, limit))


@router.get("/slug/{slug}")
def get_category_by_slug(slug: str, db: Database = Depends(get_db)):
    category = db["category"].find_one({"slug": slug})
    if not category:
        raise NotFoundError("Category not found")
    return envelope("Fetched category", sanitize(category))


@router.get("/{category_id}")
def get_category(category_id: str, db: Database = Depends(get_db)):
    return envelope("Fetched category", sanitize(get_category_or_404(db, category_id)))


@router.post("")
def create_category(payload: CategorySchema, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    slug = make_slug(payload.name)
    ensure_unique_name(db, "category", payload.name, slug)
    doc = create_document(db, "category", {**payload.to_document(), "slug": slug})
    logger.info("Category %s created by %s", doc["_id"], admin.user_id)
    return JSONResponse(status_code=201, content=envelope("Category created", sanitize(doc)))


@router.put("/{category_id}")
def update_category(category_id: str, payload: CategoryUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    category = get_category_or_404(db, category_id)
    changes = payload.to_document(partial=True)
    name = changes.get("name")
    if name is not None:
        name = name.strip()
        changes["name"] = name
        if name != category["name"]:
            changes["slug"] = make_slug(name)
            ensure_unique_name(db, "category", name, changes["slug"], exclude_id=category["_id"])
    updated = update_document(db, "category", category["_id"], changes)
    logger.info("Category %s updated by %s", category["_id"], admin.user_id)
    return envelope("Category updated", sanitize(updated))


@router.delete("/{category_id}")
def delete_category(category_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    category = get_category_or_404(db, category_id)
    db["category"].delete_one({"_id": category["_id"]})
    logger.info("Category %s deleted by %s", category["_id"], admin.user_id)
    return envelope("Category deleted")
