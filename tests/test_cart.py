"""Tests for the cart aggregate."""

import pytest
from bson import ObjectId

import cart
from errors import Conflict, InsufficientStock, NotFound, ValidationFailed


def assert_totals_match(c):
    assert c["total_price"] == sum(i["quantity"] * i["price"] for i in c["items"])
    assert c["total_items"] == sum(i["quantity"] for i in c["items"])


class TestGetCart:
    def test_creates_empty_cart_on_first_access(self, user, mongo_db):
        c = cart.get_cart(user)

        assert c["user_id"] == user.id
        assert c["items"] == []
        assert c["total_price"] == 0
        assert c["total_items"] == 0
        assert mongo_db["cart"].count_documents({"user_id": user.id}) == 1

    def test_returns_same_cart_on_repeat_access(self, user, mongo_db):
        first = cart.get_cart(user)
        second = cart.get_cart(user)

        assert first["id"] == second["id"]
        assert mongo_db["cart"].count_documents({}) == 1

    def test_totals_recomputed_from_stored_items(self, user, mongo_db, make_product):
        product_id = make_product(price=20.0)
        cart.add_item(user, product_id, 2)
        mongo_db["cart"].update_one({"user_id": user.id}, {"$set": {"total_price": 999}})

        c = cart.get_cart(user)

        assert c["total_price"] == 40.0


class TestAddItem:
    def test_appends_denormalized_line_item(self, user, make_product):
        product_id = make_product(name="Desk Lamp", price=25.5, images=["/img/lamp.jpg", "/img/lamp2.jpg"])

        c = cart.add_item(user, product_id, 2)

        assert c["items"] == [{
            "product_id": product_id,
            "name": "Desk Lamp",
            "image": "/img/lamp.jpg",
            "price": 25.5,
            "quantity": 2,
        }]
        assert c["total_price"] == 51.0
        assert c["total_items"] == 2

    def test_uses_default_image_when_product_has_none(self, user, make_product):
        product_id = make_product(images=[])

        c = cart.add_item(user, product_id, 1)

        assert c["items"][0]["image"] == "/images/sample.jpg"

    def test_same_product_twice_merges_quantities(self, user, make_product):
        product_id = make_product(stock=10)

        cart.add_item(user, product_id, 3)
        c = cart.add_item(user, product_id, 4)

        assert len(c["items"]) == 1
        assert c["items"][0]["quantity"] == 7
        assert_totals_match(c)

    def test_id_casing_does_not_split_line_items(self, user, make_product):
        product_id = make_product(stock=10)

        cart.add_item(user, product_id, 1)
        c = cart.add_item(user, product_id.upper(), 2)

        assert len(c["items"]) == 1
        assert c["items"][0]["product_id"] == product_id
        assert c["items"][0]["quantity"] == 3

    def test_price_frozen_at_add_time(self, user, make_product, mongo_db):
        product_id = make_product(price=10.0)
        cart.add_item(user, product_id, 1)
        mongo_db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 99.0}})

        c = cart.add_item(user, product_id, 1)

        assert c["items"][0]["price"] == 10.0
        assert c["total_price"] == 20.0

    def test_insufficient_stock(self, user, make_product, mongo_db):
        product_id = make_product(stock=2)

        with pytest.raises(InsufficientStock):
            cart.add_item(user, product_id, 3)

        assert mongo_db["cart"].count_documents({"user_id": user.id}) == 0

    def test_unknown_product(self, user):
        with pytest.raises(NotFound):
            cart.add_item(user, str(ObjectId()), 1)

    def test_malformed_product_id(self, user):
        with pytest.raises(NotFound):
            cart.add_item(user, "not-an-id", 1)

    def test_quantity_must_be_positive(self, user, make_product):
        product_id = make_product()

        with pytest.raises(ValidationFailed):
            cart.add_item(user, product_id, 0)


class TestUpdateItem:
    def test_overwrites_quantity_and_refreshes_price(self, user, make_product, mongo_db):
        product_id = make_product(price=10.0, stock=10)
        cart.add_item(user, product_id, 1)
        mongo_db["product"].update_one({"_id": ObjectId(product_id)}, {"$set": {"price": 12.0}})

        c = cart.update_item(user, product_id, 5)

        assert c["items"][0]["quantity"] == 5
        assert c["items"][0]["price"] == 12.0
        assert c["total_price"] == 60.0
        assert c["total_items"] == 5

    def test_zero_quantity_same_as_remove(self, user, other_user, make_product):
        keep = make_product(name="Keep", price=5.0)
        drop = make_product(name="Drop", price=7.0)
        for ctx in (user, other_user):
            cart.add_item(ctx, keep, 1)
            cart.add_item(ctx, drop, 2)

        updated = cart.update_item(user, drop, 0)
        removed = cart.remove_item(other_user, drop)

        assert updated["items"] == removed["items"]
        assert updated["total_price"] == removed["total_price"] == 5.0
        assert updated["total_items"] == removed["total_items"] == 1

    def test_insufficient_stock(self, user, make_product):
        product_id = make_product(stock=3)
        cart.add_item(user, product_id, 1)

        with pytest.raises(InsufficientStock):
            cart.update_item(user, product_id, 4)

    def test_missing_cart(self, user, make_product):
        product_id = make_product()

        with pytest.raises(NotFound, match="Cart not found"):
            cart.update_item(user, product_id, 2)

    def test_missing_line_item(self, user, make_product):
        in_cart = make_product(name="In cart")
        not_in_cart = make_product(name="Elsewhere")
        cart.add_item(user, in_cart, 1)

        with pytest.raises(NotFound, match="Item not found in cart"):
            cart.update_item(user, not_in_cart, 2)


class TestRemoveAndClear:
    def test_remove_item(self, user, make_product):
        a = make_product(name="A", price=1.0)
        b = make_product(name="B", price=2.0)
        cart.add_item(user, a, 1)
        cart.add_item(user, b, 3)

        c = cart.remove_item(user, a)

        assert [i["product_id"] for i in c["items"]] == [b]
        assert_totals_match(c)

    def test_update_and_remove_match_any_id_casing(self, user, make_product):
        product_id = make_product(stock=10)
        cart.add_item(user, product_id, 1)

        updated = cart.update_item(user, product_id.upper(), 4)
        removed = cart.remove_item(user, product_id.upper())

        assert updated["items"][0]["quantity"] == 4
        assert removed["items"] == []

    def test_remove_from_missing_cart(self, user):
        with pytest.raises(NotFound, match="Cart not found"):
            cart.remove_item(user, str(ObjectId()))

    def test_remove_missing_line_item(self, user, make_product):
        cart.get_cart(user)

        with pytest.raises(NotFound, match="Item not found in cart"):
            cart.remove_item(user, make_product())

    def test_clear_empties_items_and_totals(self, user, make_product, mongo_db):
        cart.add_item(user, make_product(), 2)

        c = cart.clear_cart(user)

        assert c["items"] == []
        assert c["total_price"] == 0
        assert c["total_items"] == 0
        assert mongo_db["cart"].count_documents({"user_id": user.id}) == 1

    def test_clear_is_idempotent(self, user):
        cart.get_cart(user)

        cart.clear_cart(user)
        c = cart.clear_cart(user)

        assert c["items"] == []

    def test_clear_without_cart_does_not_create_one(self, user, mongo_db):
        c = cart.clear_cart(user)

        assert c["items"] == []
        assert c["total_price"] == 0
        assert mongo_db["cart"].count_documents({}) == 0


class TestConcurrency:
    def test_stale_write_is_rejected(self, user, make_product, mongo_db):
        product_id = make_product()
        cart.add_item(user, product_id, 1)
        stale = mongo_db["cart"].find_one({"user_id": user.id})
        cart.add_item(user, product_id, 1)

        stale["items"] = []
        with pytest.raises(Conflict):
            cart._save(stale)

        assert cart.get_cart(user)["items"][0]["quantity"] == 2

    def test_version_increments_on_each_write(self, user, make_product):
        product_id = make_product()
        first = cart.add_item(user, product_id, 1)
        second = cart.update_item(user, product_id, 3)

        assert second["version"] == first["version"] + 1

    def test_totals_hold_after_mixed_mutations(self, user, make_product):
        a = make_product(name="A", price=3.5, stock=20)
        b = make_product(name="B", price=12.25, stock=20)

        cart.add_item(user, a, 2)
        cart.add_item(user, b, 1)
        cart.add_item(user, a, 3)
        c = cart.update_item(user, b, 4)

        assert_totals_match(c)
        assert c["total_items"] == 9
