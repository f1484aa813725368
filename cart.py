"""
Shopping carts

A cart belongs either to a guest or to a signed-in user:

* Authenticated(user_id): one document in the `cart` collection holding
  `{product_id, quantity}` lines. Reads join the lines against `product`.
* Guest(storage): a JSON list of product snapshots kept in client storage
  (any mutable mapping, e.g. a browser-side localStorage bridge) under the
  key "cart". Guests have no durable identity, so the snapshot is a copy of
  the product fields rather than a reference.

`Cart(db, owner)` gives both the same interface. When a guest signs in,
`merge_guest_cart` folds their lines into the server cart exactly once.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, MutableMapping, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId

from database import serialize_doc, to_object_id, utcnow
from errors import NotFound, ValidationFailed
from schemas import Cart as CartSchema

logger = logging.getLogger(__name__)

GUEST_CART_KEY = "cart"


@dataclass
class Guest:
    storage: MutableMapping[str, str]


@dataclass
class Authenticated:
    user_id: str


CartOwner = Union[Guest, Authenticated]


def product_key(product: Union[str, Dict[str, Any]]) -> Optional[str]:
    """Product id from an id string or from a product/snapshot/line dict."""
    if isinstance(product, dict):
        for field in ("id", "_id", "product_id", "productId"):
            if product.get(field):
                return str(product[field])
        return None
    return str(product) if product else None


def _check_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationFailed("Quantity must be a whole number of at least 1")
    return quantity


# ------------------ Server cart ------------------

def _stored_lines(db, user_id: str) -> List[dict]:
    doc = db["cart"].find_one({"user_id": str(user_id)})
    return list(doc.get("items", [])) if doc else []


def _write_lines(db, user_id: str, lines: List[dict]) -> None:
    lines = CartSchema(user_id=str(user_id), items=lines).model_dump()["items"]
    now = utcnow()
    db["cart"].update_one(
        {"user_id": str(user_id)},
        {"$set": {"items": lines, "updated_at": now}, "$setOnInsert": {"created_at": now}},
        upsert=True,
    )


def _existing_products(db, product_ids: Iterable[str]) -> Dict[str, dict]:
    oids = []
    for pid in set(product_ids):
        try:
            oids.append(ObjectId(pid))
        except (InvalidId, TypeError):
            continue
    if not oids:
        return {}
    return {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}})}


def get_cart_items(db, user_id: str) -> List[dict]:
    """Populated view of the user's cart; lines for deleted products are left out."""
    lines = _stored_lines(db, user_id)
    products = _existing_products(db, (line["product_id"] for line in lines))
    view = []
    for line in lines:
        product = products.get(line["product_id"])
        if product is None:
            continue
        view.append({
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "product": serialize_doc(product),
        })
    return view


def add_item(db, user_id: str, product_id: str, quantity: int = 1) -> List[dict]:
    quantity = _check_quantity(quantity)
    oid = to_object_id(product_id, "Product")
    if not db["product"].find_one({"_id": oid}, {"_id": 1}):
        raise NotFound("Product not found")
    product_id = str(oid)

    lines = _stored_lines(db, user_id)
    for line in lines:
        if line["product_id"] == product_id:
            line["quantity"] += quantity
            break
    else:
        lines.append({"product_id": product_id, "quantity": quantity})
    _write_lines(db, user_id, lines)
    return get_cart_items(db, user_id)


def set_item_quantity(db, user_id: str, product_id: str, quantity: int) -> List[dict]:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationFailed("Quantity must be a whole number")
    if quantity < 1:
        return remove_item(db, user_id, product_id)

    product_id = str(to_object_id(product_id, "Product"))
    lines = _stored_lines(db, user_id)
    for line in lines:
        if line["product_id"] == product_id:
            line["quantity"] = quantity
            break
    else:
        raise NotFound("Item not in cart")
    _write_lines(db, user_id, lines)
    return get_cart_items(db, user_id)


def remove_item(db, user_id: str, product_id: str) -> List[dict]:
    product_id = str(to_object_id(product_id, "Product"))
    lines = _stored_lines(db, user_id)
    remaining = [line for line in lines if line["product_id"] != product_id]
    if len(remaining) != len(lines):
        _write_lines(db, user_id, remaining)
    return get_cart_items(db, user_id)


def clear_cart(db, user_id: str) -> None:
    db["cart"].delete_one({"user_id": str(user_id)})


def merge_items(db, user_id: str, guest_items: Iterable[Dict[str, Any]]) -> List[dict]:
    """Fold guest lines into the server cart, adding quantities for shared products.

    Not idempotent: merging the same guest items twice adds them twice. The
    caller must drop the guest cart after a merge (see merge_guest_cart).
    """
    resolved = []
    for item in guest_items:
        pid = product_key(item)
        qty = item.get("quantity", 1)
        if pid is None or isinstance(qty, bool) or not isinstance(qty, int) or qty < 1:
            logger.info("Skipping unusable guest cart line for user %s", user_id)
            continue
        resolved.append((pid.lower(), qty))

    known = _existing_products(db, (pid for pid, _ in resolved))
    lines = _stored_lines(db, user_id)
    by_product = {line["product_id"]: line for line in lines}
    merged = skipped = 0
    for pid, qty in resolved:
        if pid not in known:
            skipped += 1
            continue
        if pid in by_product:
            by_product[pid]["quantity"] += qty
        else:
            line = {"product_id": pid, "quantity": qty}
            lines.append(line)
            by_product[pid] = line
        merged += 1

    if merged:
        _write_lines(db, user_id, lines)
    logger.info("Merged %d guest cart lines into cart of user %s (%d skipped)", merged, user_id, skipped)
    return get_cart_items(db, user_id)


# ------------------ Guest cart ------------------

def guest_items(storage: MutableMapping[str, str]) -> List[dict]:
    raw = storage.get(GUEST_CART_KEY)
    if not raw:
        return []
    try:
        items = json.loads(raw)
    except ValueError:
        return []
    return items if isinstance(items, list) else []


def _save_guest(storage: MutableMapping[str, str], items: List[dict]) -> List[dict]:
    storage[GUEST_CART_KEY] = json.dumps(items)
    return items


def _guest_index(items: List[dict], product) -> int:
    key = product_key(product)
    name = product.get("name") if isinstance(product, dict) else None
    for i, item in enumerate(items):
        if key is not None and product_key(item) == key:
            return i
        # snapshots without an id fall back to the product name
        if key is None and name and item.get("name") == name:
            return i
    return -1


def guest_add(storage: MutableMapping[str, str], product: Dict[str, Any], quantity: int = 1) -> List[dict]:
    quantity = _check_quantity(quantity)
    items = guest_items(storage)
    idx = _guest_index(items, product)
    if idx > -1:
        items[idx]["quantity"] = items[idx].get("quantity", 1) + quantity
    else:
        snapshot = {k: v for k, v in product.items() if k != "quantity"}
        snapshot["quantity"] = quantity
        items.append(snapshot)
    return _save_guest(storage, items)


def guest_set_quantity(storage: MutableMapping[str, str], product, quantity: int) -> List[dict]:
    items = guest_items(storage)
    idx = _guest_index(items, product)
    if idx > -1:
        if quantity < 1:
            items.pop(idx)
        else:
            items[idx]["quantity"] = quantity
    return _save_guest(storage, items)


def guest_remove(storage: MutableMapping[str, str], product) -> List[dict]:
    items = guest_items(storage)
    idx = _guest_index(items, product)
    if idx > -1:
        items.pop(idx)
    return _save_guest(storage, items)


def guest_clear(storage: MutableMapping[str, str]) -> None:
    storage.pop(GUEST_CART_KEY, None)


# ------------------ Unified interface ------------------

class Cart:
    """One cart interface over both owners."""

    def __init__(self, db, owner: CartOwner):
        self.db = db
        self.owner = owner

    @property
    def is_guest(self) -> bool:
        return isinstance(self.owner, Guest)

    def items(self) -> List[dict]:
        if self.is_guest:
            return guest_items(self.owner.storage)
        return get_cart_items(self.db, self.owner.user_id)

    def add(self, product, quantity: int = 1) -> List[dict]:
        if self.is_guest:
            return guest_add(self.owner.storage, product, quantity)
        return add_item(self.db, self.owner.user_id, product_key(product), quantity)

    def set_quantity(self, product, quantity: int) -> List[dict]:
        if self.is_guest:
            return guest_set_quantity(self.owner.storage, product, quantity)
        return set_item_quantity(self.db, self.owner.user_id, product_key(product), quantity)

    def remove(self, product) -> List[dict]:
        if self.is_guest:
            return guest_remove(self.owner.storage, product)
        return remove_item(self.db, self.owner.user_id, product_key(product))

    def clear(self) -> None:
        if self.is_guest:
            guest_clear(self.owner.storage)
        else:
            clear_cart(self.db, self.owner.user_id)


def merge_guest_cart(db, guest: Guest, user: Authenticated) -> Cart:
    """Move a guest's cart into the user's server cart.

    The guest cart is dropped even if the merge fails, so the same lines can
    never be merged on a later sign-in.
    """
    items = guest_items(guest.storage)
    try:
        if items:
            merge_items(db, user.user_id, items)
    finally:
        guest_clear(guest.storage)
    return Cart(db, user)
