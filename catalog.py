"""Product catalog: listing, admin maintenance and reviews."""

import math
import re
from typing import Any, Dict, Optional

import structlog

import config
from auth import RequestContext
from database import collection, create_document, get_documents, now, object_id, to_str_id
from errors import AlreadyReviewed, Conflict, NotFound, ValidationFailed
from schemas import Product

logger = structlog.get_logger(__name__)

UPDATABLE_FIELDS = ("name", "price", "description", "images", "brand", "category", "stock")


def parse_sort(sort_by: Optional[str]) -> list:
    """``price_asc`` / ``created_at_desc`` -> pymongo sort list, newest first by default."""
    if sort_by:
        parts = sort_by.rsplit("_", 1)
        if len(parts) == 2 and parts[0] and parts[1] in ("asc", "desc"):
            return [(parts[0], -1 if parts[1] == "desc" else 1), ("_id", 1)]
    return [("created_at", -1), ("_id", -1)]


def build_filter(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> Dict[str, Any]:
    query: Dict[str, Any] = {}
    if keyword:
        query["name"] = {"$regex": re.escape(keyword), "$options": "i"}
    if category:
        query["category"] = category
    if brand:
        query["brand"] = brand
    if min_price is not None or max_price is not None:
        query["price"] = {}
        if min_price is not None:
            query["price"]["$gte"] = min_price
        if max_price is not None:
            query["price"]["$lte"] = max_price
    return query


def list_products(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort_by: Optional[str] = None,
    page: int = 1,
) -> dict:
    page = max(page, 1)
    query = build_filter(keyword, category, brand, min_price, max_price)
    count = collection("product").count_documents(query)
    docs = get_documents(
        "product",
        query,
        limit=config.PAGE_SIZE,
        sort=parse_sort(sort_by),
        skip=config.PAGE_SIZE * (page - 1),
    )
    return {
        "products": [to_str_id(d) for d in docs],
        "page": page,
        "pages": math.ceil(count / config.PAGE_SIZE),
        "count": count,
    }


def get_product_doc(product_id: str) -> dict:
    doc = collection("product").find_one({"_id": object_id(product_id)})
    if not doc:
        raise NotFound("Product not found")
    return doc


def get_product(product_id: str) -> dict:
    return to_str_id(get_product_doc(product_id))


def create_product(ctx: RequestContext, data: dict) -> dict:
    data = {k: v for k, v in data.items() if v is not None}
    if not data.get("images"):
        data["images"] = [config.DEFAULT_IMAGE]
    product = Product(**data, user_id=ctx.id)
    product_id = create_document("product", product)
    logger.info("Product created", product_id=product_id, admin_id=ctx.id)
    return get_product(product_id)


def update_product(product_id: str, changes: dict) -> dict:
    doc = get_product_doc(product_id)
    update = {
        k: v for k, v in changes.items()
        if k in UPDATABLE_FIELDS and v is not None and v != "" and v != []
    }
    update["updated_at"] = now()
    collection("product").update_one({"_id": doc["_id"]}, {"$set": update})
    return get_product(product_id)


def delete_product(product_id: str) -> dict:
    doc = get_product_doc(product_id)
    collection("product").delete_one({"_id": doc["_id"]})
    logger.info("Product deleted", product_id=product_id)
    return {"message": "Product removed"}


def average(ratings: list) -> float:
    if not ratings:
        return 0
    return sum(ratings) / len(ratings)


def add_review(ctx: RequestContext, product_id: str, rating: int, comment: str) -> dict:
    if not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationFailed("Rating must be between 1 and 5")
    if not comment:
        raise ValidationFailed("Comment is required")

    doc = get_product_doc(product_id)
    reviews = doc.get("reviews", [])
    if any(r["user_id"] == ctx.id for r in reviews):
        raise AlreadyReviewed()

    review = {
        "user_id": ctx.id,
        "name": ctx.name,
        "rating": rating,
        "comment": comment,
        "created_at": now(),
    }
    ratings = [r["rating"] for r in reviews] + [rating]
    result = collection("product").update_one(
        {"_id": doc["_id"], "num_reviews": len(reviews), "reviews.user_id": {"$ne": ctx.id}},
        {
            "$push": {"reviews": review},
            "$set": {
                "num_reviews": len(ratings),
                "average_rating": average(ratings),
                "updated_at": now(),
            },
        },
    )
    if result.matched_count == 0:
        latest = get_product_doc(product_id)
        if any(r["user_id"] == ctx.id for r in latest.get("reviews", [])):
            raise AlreadyReviewed()
        raise Conflict("Product reviews changed concurrently, please retry")
    return {"message": "Review added"}


def list_reviews(product_id: str) -> list:
    return get_product_doc(product_id).get("reviews", [])
