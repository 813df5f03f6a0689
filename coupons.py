"""
Coupon administration. Every route requires an admin.
"""
import logging
import re
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pymongo.database import Database

from database import as_utc, create_document, get_db, sanitize, to_obj_id, update_document
from errors import ConflictError, NotFoundError, ValidationError
from responses import envelope, paginate
from schemas import Coupon as CouponSchema, CouponStatus, CouponStatusUpdate, CouponType, CouponUpdate
from security import Principal, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/coupons")


def validate_coupon_rules(coupon_type: str, value: float, valid_from: datetime, valid_to: datetime) -> None:
    if value <= 0:
        raise ValidationError("Discount value must be greater than 0")
    if coupon_type == "PERCENTAGE" and not (1 <= value <= 100):
        raise ValidationError("Percentage discount must be between 1 and 100")
    if as_utc(valid_from) >= as_utc(valid_to):
        raise ValidationError("validTo must be after validFrom")


def ensure_unique_code(db: Database, code: str, exclude_id=None) -> None:
    query = {"code": code}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    if db["coupon"].find_one(query):
        raise ConflictError("Coupon code already exists")


def get_coupon_or_404(db: Database, coupon_id: str) -> dict:
    coupon = db["coupon"].find_one({"_id": to_obj_id(coupon_id)})
    if not coupon:
        raise NotFoundError("Coupon not found")
    return coupon


@router.get("")
def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[CouponStatus] = None,
    type: Optional[CouponType] = None,
    search: Optional[str] = None,
    db: Database = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    q = {}
    if status:
        q["status"] = status
    if type:
        q["type"] = type
    if search:
        pattern = re.escape(search)
        q["$or"] = [
            {"code": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    total = db["coupon"].count_documents(q)
    cursor = db["coupon"].find(q).sort([("createdAt", -1), ("_id", -1)]).skip((page - 1) * limit).limit(limit)
    return envelope("Fetched coupons", [sanitize(c) for c in cursor], paginate(total, page, limit))


@router.get("/{coupon_id}")
def get_coupon(coupon_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    return envelope("Fetched coupon", sanitize(get_coupon_or_404(db, coupon_id)))


@router.post("")
def create_coupon(payload: CouponSchema, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    validate_coupon_rules(payload.type, payload.value, payload.valid_from, payload.valid_to)
    ensure_unique_code(db, payload.code)
    doc = create_document(db, "coupon", {**payload.to_document(), "usedCount": 0})
    logger.info("Coupon %s created by %s", doc["code"], admin.user_id)
    return JSONResponse(status_code=201, content=envelope("Coupon created", sanitize(doc)))


@router.put("/{coupon_id}")
def update_coupon(coupon_id: str, payload: CouponUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    coupon = get_coupon_or_404(db, coupon_id)
    changes = payload.to_document(partial=True)

    if changes.get("code") and changes["code"] != coupon["code"]:
        ensure_unique_code(db, changes["code"], exclude_id=coupon["_id"])
    merged = {**coupon, **changes}
    validate_coupon_rules(merged["type"], merged["value"], merged["validFrom"], merged["validTo"])

    updated = update_document(db, "coupon", coupon["_id"], changes)
    logger.info("Coupon %s updated by %s", coupon["_id"], admin.user_id)
    return envelope("Coupon updated", sanitize(updated))


@router.delete("/{coupon_id}")
def delete_coupon(coupon_id: str, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    coupon = get_coupon_or_404(db, coupon_id)
    db["coupon"].delete_one({"_id": coupon["_id"]})
    logger.info("Coupon %s deleted by %s", coupon["_id"], admin.user_id)
    return envelope("Coupon deleted")


@router.patch("/{coupon_id}/status")
def update_coupon_status(coupon_id: str, payload: CouponStatusUpdate, db: Database = Depends(get_db), admin: Principal = Depends(require_admin)):
    coupon = get_coupon_or_404(db, coupon_id)
    updated = update_document(db, "coupon", coupon["_id"], {"status": payload.status})
    return envelope("Coupon status updated", sanitize(updated))
