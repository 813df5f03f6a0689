import logging

from bson import ObjectId
from pymongo.database import Database

from database import utcnow
from errors import NotFoundError

logger = logging.getLogger(__name__)


def recompute_total_stock(db: Database, product_id: ObjectId) -> int:
    """Set product.totalStock to the summed stock of its active variants.

    Runs one full pass over the product's variants; call it after every
    variant mutation, before answering the client.
    """
    result = list(db["product_variant"].aggregate([
        {"$match": {"product": product_id, "isActive": True}},
        {"$group": {"_id": "$product", "total": {"$sum": "$stock"}}},
    ]))
    total = int(result[0]["total"]) if result else 0
    res = db["product"].update_one(
        {"_id": product_id}, {"$set": {"totalStock": total, "updatedAt": utcnow()}}
    )
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    logger.debug("Product %s totalStock=%d", product_id, total)
    return total
