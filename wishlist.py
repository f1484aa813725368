"""Per-user wishlist: an ordered list of product ids, one document per user."""
from typing import List

from database import serialize_doc, to_object_id, utcnow
from errors import Conflict, NotFound


def get_wishlist(db, user_id: str) -> List[dict]:
    """Wishlisted products, in the order they were added. Deleted products are skipped."""
    doc = db["wishlist"].find_one({"user_id": str(user_id)})
    product_ids = doc.get("product_ids", []) if doc else []
    if not product_ids:
        return []
    oids = [to_object_id(pid, "Product") for pid in product_ids]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}
    return [serialize_doc(products[pid]) for pid in product_ids if pid in products]


def add_to_wishlist(db, user_id: str, product_id: str) -> List[dict]:
    oid = to_object_id(product_id, "Product")
    if not db["product"].find_one({"_id": oid}, {"_id": 1}):
        raise NotFound("Product not found")
    product_id = str(oid)
    doc = db["wishlist"].find_one({"user_id": str(user_id)})
    if doc and product_id in doc.get("product_ids", []):
        raise Conflict("Item already in wishlist")
    now = utcnow()
    db["wishlist"].update_one(
        {"user_id": str(user_id)},
        {"$push": {"product_ids": product_id}, "$set": {"updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )
    return get_wishlist(db, user_id)


def remove_from_wishlist(db, user_id: str, product_id: str) -> List[dict]:
    product_id = str(to_object_id(product_id, "Product"))
    db["wishlist"].update_one(
        {"user_id": str(user_id)},
        {"$pull": {"product_ids": product_id}, "$set": {"updated_at": utcnow()}},
    )
    return get_wishlist(db, user_id)
