"""Per-user shopping cart.

Line items carry a copy of the product's name, image and price taken when
the item is added; ``update_item`` refreshes the price to the product's
current one. Totals are recomputed from the items on every write and on
every read.

Writes are conditional on the ``version`` the cart was read at, so two
requests mutating the same cart cannot silently overwrite each other; the
loser gets ``Conflict``.
"""

from typing import List

import structlog
from pymongo import ReturnDocument

import config
from auth import RequestContext
from catalog import get_product_doc
from database import collection, now, object_id, to_str_id
from errors import Conflict, InsufficientStock, NotFound, ValidationFailed

logger = structlog.get_logger(__name__)


def recalculate_totals(cart: dict) -> dict:
    items: List[dict] = cart.get("items", [])
    cart["total_price"] = sum(item["quantity"] * item["price"] for item in items)
    cart["total_items"] = sum(item["quantity"] for item in items)
    return cart


def _find_cart(user_id: str):
    cart = collection("cart").find_one({"user_id": user_id})
    if cart is not None:
        recalculate_totals(cart)
    return cart


def _get_or_create(user_id: str) -> dict:
    stamp = now()
    cart = collection("cart").find_one_and_update(
        {"user_id": user_id},
        {"$setOnInsert": {
            "items": [],
            "total_price": 0,
            "total_items": 0,
            "version": 0,
            "created_at": stamp,
            "updated_at": stamp,
        }},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return recalculate_totals(cart)


def _save(cart: dict) -> dict:
    recalculate_totals(cart)
    version = cart.get("version", 0)
    saved = collection("cart").find_one_and_update(
        {"_id": cart["_id"], "version": version},
        {"$set": {
            "items": cart["items"],
            "total_price": cart["total_price"],
            "total_items": cart["total_items"],
            "version": version + 1,
            "updated_at": now(),
        }},
        return_document=ReturnDocument.AFTER,
    )
    if saved is None:
        logger.warning("Cart write lost a concurrent update", cart_id=str(cart["_id"]))
        raise Conflict("Cart was modified concurrently, please retry")
    return to_str_id(saved)


def _find_line(cart: dict, product_id: str) -> int:
    for index, item in enumerate(cart["items"]):
        if item["product_id"] == product_id:
            return index
    return -1


def get_cart(ctx: RequestContext) -> dict:
    return to_str_id(_get_or_create(ctx.id))


def add_item(ctx: RequestContext, product_id: str, quantity: int) -> dict:
    if quantity < 1:
        raise ValidationFailed("Quantity must be at least 1")
    product = get_product_doc(product_id)
    product_id = str(product["_id"])
    if product.get("stock", 0) < quantity:
        raise InsufficientStock()

    cart = _get_or_create(ctx.id)
    index = _find_line(cart, product_id)
    if index > -1:
        cart["items"][index]["quantity"] += quantity
    else:
        images = product.get("images") or []
        cart["items"].append({
            "product_id": product_id,
            "name": product["name"],
            "image": images[0] if images else config.DEFAULT_IMAGE,
            "price": product["price"],
            "quantity": quantity,
        })
    logger.debug("Cart item added", user_id=ctx.id, product_id=product_id, quantity=quantity)
    return _save(cart)


def update_item(ctx: RequestContext, product_id: str, quantity: int) -> dict:
    if quantity <= 0:
        return remove_item(ctx, product_id)

    product = get_product_doc(product_id)
    product_id = str(product["_id"])
    if product.get("stock", 0) < quantity:
        raise InsufficientStock()

    cart = _find_cart(ctx.id)
    if cart is None:
        raise NotFound("Cart not found")
    index = _find_line(cart, product_id)
    if index == -1:
        raise NotFound("Item not found in cart")

    cart["items"][index]["quantity"] = quantity
    cart["items"][index]["price"] = product["price"]
    return _save(cart)


def remove_item(ctx: RequestContext, product_id: str) -> dict:
    cart = _find_cart(ctx.id)
    if cart is None:
        raise NotFound("Cart not found")
    product_id = str(object_id(product_id))
    index = _find_line(cart, product_id)
    if index == -1:
        raise NotFound("Item not found in cart")

    del cart["items"][index]
    return _save(cart)


def clear_cart(ctx: RequestContext) -> dict:
    cart = _find_cart(ctx.id)
    if cart is None:
        return {"user_id": ctx.id, "items": [], "total_price": 0, "total_items": 0}
    cart["items"] = []
    return _save(cart)
