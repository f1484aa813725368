import json

import pytest
from bson import ObjectId

import cart
from cart import Authenticated, Cart, Guest, merge_guest_cart
from errors import NotFound, ValidationFailed

USER = str(ObjectId())


def _quantities(items):
    return {item["product_id"]: item["quantity"] for item in items}


def _snapshot(product, quantity=1):
    return {
        "id": str(product["_id"]),
        "name": product["name"],
        "price": product["price"],
        "quantity": quantity,
    }


def test_add_increments_existing_line(db, make_product):
    p = make_product()
    pid = str(p["_id"])
    cart.add_item(db, USER, pid)
    items = cart.add_item(db, USER, pid, 2)
    assert _quantities(items) == {pid: 3}
    assert items[0]["product"]["name"] == "Running Shoes"


def test_add_rejects_unknown_product_and_bad_quantity(db, make_product):
    with pytest.raises(NotFound):
        cart.add_item(db, USER, str(ObjectId()))
    with pytest.raises(NotFound):
        cart.add_item(db, USER, "garbage")
    p = make_product()
    with pytest.raises(ValidationFailed):
        cart.add_item(db, USER, str(p["_id"]), 0)
    assert db["cart"].find_one({"user_id": USER}) is None


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_removes_line(db, make_product, quantity):
    a, b = make_product(name="A"), make_product(name="B")
    cart.add_item(db, USER, str(a["_id"]))
    cart.add_item(db, USER, str(b["_id"]))

    items = cart.set_item_quantity(db, USER, str(a["_id"]), quantity)

    assert _quantities(items) == {str(b["_id"]): 1}
    stored = db["cart"].find_one({"user_id": USER})["items"]
    assert all(line["quantity"] >= 1 for line in stored)


def test_set_quantity_overwrites(db, make_product):
    p = make_product()
    cart.add_item(db, USER, str(p["_id"]), 5)
    items = cart.set_item_quantity(db, USER, str(p["_id"]), 2)
    assert _quantities(items) == {str(p["_id"]): 2}
    with pytest.raises(NotFound):
        cart.set_item_quantity(db, USER, str(ObjectId()), 2)


def test_remove_is_idempotent(db, make_product):
    p = make_product()
    cart.add_item(db, USER, str(p["_id"]))
    assert cart.remove_item(db, USER, str(p["_id"])) == []
    assert cart.remove_item(db, USER, str(p["_id"])) == []


def test_clear_deletes_cart_document(db, make_product):
    p = make_product()
    cart.add_item(db, USER, str(p["_id"]))
    cart.clear_cart(db, USER)
    assert db["cart"].find_one({"user_id": USER}) is None
    assert cart.get_cart_items(db, USER) == []


def test_deleted_product_is_dropped_from_view_but_kept_in_storage(db, make_product):
    a, b = make_product(name="A"), make_product(name="B")
    cart.add_item(db, USER, str(a["_id"]))
    cart.add_item(db, USER, str(b["_id"]))
    db["product"].delete_one({"_id": a["_id"]})

    assert _quantities(cart.get_cart_items(db, USER)) == {str(b["_id"]): 1}
    assert len(db["cart"].find_one({"user_id": USER})["items"]) == 2


def test_merge_into_empty_cart_and_guest_is_cleared(db, make_product):
    a = make_product(name="A")
    storage = {"cart": json.dumps([_snapshot(a, 2)])}

    result = merge_guest_cart(db, Guest(storage), Authenticated(USER))

    assert _quantities(result.items()) == {str(a["_id"]): 2}
    assert "cart" not in storage


def test_merge_adds_to_existing_lines_and_appends_new_ones(db, make_product):
    a, b = make_product(name="A"), make_product(name="B")
    cart.add_item(db, USER, str(a["_id"]), 1)

    items = cart.merge_items(db, USER, [_snapshot(a, 2), {"_id": str(b["_id"]), "quantity": 3}])

    assert _quantities(items) == {str(a["_id"]): 3, str(b["_id"]): 3}
    assert [i["product_id"] for i in items] == [str(a["_id"]), str(b["_id"])]


def test_merge_skips_unknown_products(db, make_product):
    a = make_product(name="A")
    items = cart.merge_items(db, USER, [_snapshot(a), {"id": str(ObjectId()), "quantity": 1}, {"name": "no id"}])
    assert _quantities(items) == {str(a["_id"]): 1}


def test_merge_twice_without_clearing_doubles_quantities(db, make_product):
    a = make_product(name="A")
    guest_items = [_snapshot(a, 2)]
    cart.merge_items(db, USER, guest_items)
    items = cart.merge_items(db, USER, guest_items)
    assert _quantities(items) == {str(a["_id"]): 4}


def test_merge_clear_and_remerge_leaves_quantities(db, make_product):
    a = make_product(name="A")
    storage = {"cart": json.dumps([_snapshot(a, 2)])}
    guest, user = Guest(storage), Authenticated(USER)

    merge_guest_cart(db, guest, user)
    merge_guest_cart(db, guest, user)

    assert _quantities(cart.get_cart_items(db, USER)) == {str(a["_id"]): 2}


def test_guest_cart_cleared_even_when_merge_fails(db, make_product, monkeypatch):
    a = make_product(name="A")
    storage = {"cart": json.dumps([_snapshot(a, 2)])}

    def boom(*args, **kwargs):
        raise RuntimeError("store down")

    monkeypatch.setattr(cart, "merge_items", boom)
    with pytest.raises(RuntimeError):
        merge_guest_cart(db, Guest(storage), Authenticated(USER))
    assert "cart" not in storage


def test_guest_cart_operations(db, make_product):
    a, b = make_product(name="A"), make_product(name="B")
    storage = {}
    guest = Cart(db, Guest(storage))

    guest.add(_snapshot(a))
    guest.add(_snapshot(a))
    guest.add(_snapshot(b))
    assert [(i["name"], i["quantity"]) for i in guest.items()] == [("A", 2), ("B", 1)]

    guest.set_quantity(_snapshot(a), 5)
    assert guest.items()[0]["quantity"] == 5

    guest.set_quantity(_snapshot(b), 0)
    assert [i["name"] for i in guest.items()] == ["A"]

    guest.remove(_snapshot(b))
    guest.remove(_snapshot(a))
    assert guest.items() == []

    guest.add(_snapshot(a))
    guest.clear()
    assert storage == {}


def test_authenticated_cart_interface_uses_server_cart(db, make_product):
    a = make_product(name="A")
    user_cart = Cart(db, Authenticated(USER))
    user_cart.add(str(a["_id"]), 2)
    user_cart.add({"id": str(a["_id"])})
    assert _quantities(user_cart.items()) == {str(a["_id"]): 3}
    user_cart.set_quantity(str(a["_id"]), -1)
    assert user_cart.items() == []
    user_cart.add(str(a["_id"]))
    user_cart.clear()
    assert db["cart"].count_documents({}) == 0


def test_line_lookup_accepts_upper_case_ids(db, make_product):
    p = make_product()
    pid = str(p["_id"])
    cart.add_item(db, USER, pid, 2)
    assert _quantities(cart.set_item_quantity(db, USER, pid.upper(), 4)) == {pid: 4}
    assert cart.remove_item(db, USER, pid.upper()) == []
    cart.merge_items(db, USER, [{"id": pid.upper(), "quantity": 1}])
    assert _quantities(cart.get_cart_items(db, USER)) == {pid: 1}
