"""
Product reviews

Reviews are embedded in the product document. The aggregate rating is only
ever written together with the review list, so `rating.count` always equals
the number of reviews and `rating.rate` their rounded mean.
"""
import logging
from typing import List, Tuple

from database import serialize_doc, to_object_id, utcnow
from errors import NotFound, ValidationFailed

logger = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"


def compute_rating(reviews: List[dict]) -> dict:
    count = len(reviews)
    if count == 0:
        return {"rate": 0, "count": 0}
    total = sum(r["rating"] for r in reviews)
    return {"rate": round(total / count, 1), "count": count}


def _validate(rating, comment) -> str:
    # bool is an int subclass, but True is not a star rating
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationFailed("Rating must be a whole number between 1 and 5")
    comment = (comment or "").strip()
    if not comment:
        raise ValidationFailed("Comment is required")
    return comment


def _load_product(db, product_id) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")
    return product


def _save(db, product: dict, reviews: List[dict]) -> dict:
    rating = compute_rating(reviews)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"reviews": reviews, "rating": rating, "updated_at": utcnow()}},
    )
    product["reviews"] = reviews
    product["rating"] = rating
    return serialize_doc(product)


def upsert_review(db, product_id, user_id: str, user_name: str, rating: int, comment: str) -> Tuple[str, dict]:
    """Add the user's review, or overwrite it if they already left one.

    Returns ("created" | "updated", serialized product).
    """
    comment = _validate(rating, comment)
    product = _load_product(db, product_id)
    user_id = str(user_id)
    reviews = list(product.get("reviews") or [])

    for review in reviews:
        if str(review.get("user_id")) == user_id:
            review["rating"] = rating
            review["comment"] = comment
            review["created_at"] = utcnow()
            outcome = UPDATED
            break
    else:
        reviews.append({
            "user_id": user_id,
            "user_name": user_name,
            "rating": rating,
            "comment": comment,
            "created_at": utcnow(),
        })
        outcome = CREATED

    logger.info("Review %s on product %s by user %s", outcome, product["_id"], user_id)
    return outcome, _save(db, product, reviews)


def remove_review(db, product_id, user_id: str) -> dict:
    product = _load_product(db, product_id)
    user_id = str(user_id)
    reviews = list(product.get("reviews") or [])
    remaining = [r for r in reviews if str(r.get("user_id")) != user_id]
    if len(remaining) == len(reviews):
        raise NotFound("Review not found")
    logger.info("Review removed on product %s by user %s", product["_id"], user_id)
    return _save(db, product, remaining)
