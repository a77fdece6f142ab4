"""Order placement and fulfillment tracking.

Placing an order touches three documents (the cart, each product's stock and
the new order), none of which share a transaction. It runs as a sequence of
steps, each registering an undo action; if a later step fails the completed
ones are undone in reverse order and the original error propagates:

1. claim the cart: empty it, conditional on the version it was priced at
2. reserve stock: guarded decrement per line item, never below zero
3. write the order
"""

import math
from functools import partial
from typing import Callable, List, Optional, Union

import structlog
from pydantic import ValidationError

import config
from auth import RequestContext
from cart import recalculate_totals
from database import collection, create_document, get_documents, now, object_id, to_str_id
from errors import Conflict, EmptyCart, Forbidden, InsufficientStock, NotFound, ValidationFailed
from schemas import Order, OrderStatus, PaymentResult, ShippingAddress

logger = structlog.get_logger(__name__)

ORDER_STATUSES = [s.value for s in OrderStatus]


def compute_prices(items_price: float) -> dict:
    shipping_price = 0 if items_price > config.FREE_SHIPPING_THRESHOLD else config.SHIPPING_FEE
    tax_price = round(config.TAX_RATE * items_price, 2)
    total_amount = round(items_price + shipping_price + tax_price, 2)
    return {
        "items_price": items_price,
        "shipping_price": shipping_price,
        "tax_price": tax_price,
        "total_amount": total_amount,
    }


def _resolve_address(
    ctx: RequestContext,
    shipping_address_id: Optional[str],
    shipping_address: Optional[Union[ShippingAddress, dict]],
) -> ShippingAddress:
    if shipping_address_id:
        user = collection("user").find_one({"_id": object_id(ctx.id)})
        saved = [a for a in (user or {}).get("addresses", []) if a.get("id") == shipping_address_id]
        if not saved:
            raise NotFound("Shipping address not found")
        shipping_address = saved[0]
    if shipping_address is None:
        raise ValidationFailed("Shipping address is required")
    if isinstance(shipping_address, ShippingAddress):
        return shipping_address
    try:
        return ShippingAddress(**shipping_address)
    except ValidationError as e:
        raise ValidationFailed(f"Invalid shipping address: {e.errors()[0]['msg']}")


def _claim_cart(cart: dict) -> None:
    result = collection("cart").update_one(
        {"_id": cart["_id"], "version": cart.get("version", 0)},
        {
            "$set": {"items": [], "total_price": 0, "total_items": 0, "updated_at": now()},
            "$inc": {"version": 1},
        },
    )
    if result.matched_count == 0:
        raise Conflict("Cart was modified while placing the order, please retry")


def _restore_cart(cart: dict) -> None:
    result = collection("cart").update_one(
        {"_id": cart["_id"], "version": cart.get("version", 0) + 1},
        {
            "$set": {
                "items": cart["items"],
                "total_price": cart["total_price"],
                "total_items": cart["total_items"],
                "updated_at": now(),
            },
            "$inc": {"version": 1},
        },
    )
    if result.matched_count == 0:
        logger.warning("Cart changed after claim, items not restored", cart_id=str(cart["_id"]))


def _reserve_stock(item: dict) -> None:
    product_id = object_id(item["product_id"])
    result = collection("product").update_one(
        {"_id": product_id, "stock": {"$gte": item["quantity"]}},
        {"$inc": {"stock": -item["quantity"]}, "$set": {"updated_at": now()}},
    )
    if result.matched_count == 0:
        if collection("product").count_documents({"_id": product_id}) == 0:
            raise NotFound(f"Product {item['name']} is no longer available")
        raise InsufficientStock(f"Not enough stock available for {item['name']}")


def _release_stock(item: dict) -> None:
    collection("product").update_one(
        {"_id": object_id(item["product_id"])},
        {"$inc": {"stock": item["quantity"]}, "$set": {"updated_at": now()}},
    )


def _compensate(undo: List[Callable[[], None]], **log_context) -> None:
    for action in reversed(undo):
        try:
            action()
        except Exception:
            logger.exception("Compensation step failed", **log_context)


def place_order(
    ctx: RequestContext,
    shipping_address_id: Optional[str] = None,
    shipping_address: Optional[Union[ShippingAddress, dict]] = None,
    payment_method: str = config.DEFAULT_PAYMENT_METHOD,
) -> dict:
    cart = collection("cart").find_one({"user_id": ctx.id})
    if not cart or not cart.get("items"):
        raise EmptyCart()
    recalculate_totals(cart)

    address = _resolve_address(ctx, shipping_address_id, shipping_address)
    order_items = [
        {
            "product_id": item["product_id"],
            "name": item["name"],
            "image": item["image"],
            "price": item["price"],
            "quantity": item["quantity"],
        }
        for item in cart["items"]
    ]
    order = Order(
        user_id=ctx.id,
        order_items=order_items,
        shipping_address=address,
        payment_method=payment_method or config.DEFAULT_PAYMENT_METHOD,
        **compute_prices(cart["total_price"]),
    )

    undo: List[Callable[[], None]] = []
    try:
        _claim_cart(cart)
        undo.append(partial(_restore_cart, cart))
        for item in order_items:
            _reserve_stock(item)
            undo.append(partial(_release_stock, item))
        order_id = create_document("order", order)
    except Exception as e:
        logger.warning("Order placement failed, rolling back", user_id=ctx.id, error=str(e))
        _compensate(undo, user_id=ctx.id)
        raise

    logger.info("Order placed", order_id=order_id, user_id=ctx.id, total_amount=order.total_amount)
    return to_str_id(collection("order").find_one({"_id": object_id(order_id)}))


def _get_order_doc(order_id: str) -> dict:
    order = collection("order").find_one({"_id": object_id(order_id)})
    if not order:
        raise NotFound("Order not found")
    return order


def _check_access(ctx: RequestContext, order: dict) -> None:
    if not ctx.is_admin and order["user_id"] != ctx.id:
        raise Forbidden("Not authorized to view this order")


def get_order(ctx: RequestContext, order_id: str) -> dict:
    order = _get_order_doc(order_id)
    _check_access(ctx, order)
    return to_str_id(order)


def list_my_orders(ctx: RequestContext) -> list:
    docs = get_documents("order", {"user_id": ctx.id}, sort=[("created_at", -1), ("_id", -1)])
    return [to_str_id(d) for d in docs]


def list_orders(status: Optional[str] = None, user_id: Optional[str] = None, page: int = 1) -> dict:
    page = max(page, 1)
    query = {}
    if status:
        query["order_status"] = status
    if user_id:
        query["user_id"] = user_id
    count = collection("order").count_documents(query)
    docs = get_documents(
        "order",
        query,
        limit=config.PAGE_SIZE,
        sort=[("created_at", -1), ("_id", -1)],
        skip=config.PAGE_SIZE * (page - 1),
    )
    return {
        "orders": [to_str_id(d) for d in docs],
        "page": page,
        "pages": math.ceil(count / config.PAGE_SIZE),
        "count": count,
    }


def _update(order: dict, changes: dict) -> dict:
    changes["updated_at"] = now()
    collection("order").update_one({"_id": order["_id"]}, {"$set": changes})
    return to_str_id(collection("order").find_one({"_id": order["_id"]}))


def mark_paid(ctx: RequestContext, order_id: str, payment_result: Union[PaymentResult, dict]) -> dict:
    order = _get_order_doc(order_id)
    _check_access(ctx, order)
    if isinstance(payment_result, dict):
        payment_result = PaymentResult(**payment_result)
    logger.info("Order paid", order_id=order_id, transaction_id=payment_result.id)
    return _update(order, {
        "is_paid": True,
        "paid_at": now(),
        "payment_result": payment_result.model_dump(),
    })


def mark_delivered(order_id: str) -> dict:
    order = _get_order_doc(order_id)
    logger.info("Order delivered", order_id=order_id)
    return _update(order, {
        "is_delivered": True,
        "delivered_at": now(),
        "order_status": OrderStatus.DELIVERED.value,
    })


def set_status(order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationFailed("Invalid order status")
    order = _get_order_doc(order_id)
    changes = {"order_status": status}
    if status == OrderStatus.DELIVERED.value and not order.get("is_delivered"):
        changes["is_delivered"] = True
        changes["delivered_at"] = now()
    logger.info("Order status changed", order_id=order_id, old=order.get("order_status"), new=status)
    return _update(order, changes)
