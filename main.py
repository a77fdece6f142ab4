from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError

import auth
import cart
import catalog
import config
import database
import orders
from auth import RequestContext, get_current_user, require_admin
from errors import ShopError
from logging_config import add_context, clear_context, configure_logging
from schemas import Address, PaymentResult, ShippingAddress

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.ensure_indexes()
    yield


app = FastAPI(title="Storefront API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_context_middleware(request: Request, call_next):
    clear_context()
    add_context(method=request.method, path=request.url.path)
    response = await call_next(request)
    logger.debug("Request handled", status_code=response.status_code)
    return response


# --------------------- Error translation ---------------------

@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), None)
    if field:
        message = f"Duplicate field value entered for '{field}'. Please use another value."
    else:
        message = "Duplicate field value entered. Please use another value."
    return JSONResponse(status_code=400, content={"detail": message})


@app.exception_handler(Exception)
async def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error")
    return JSONResponse(status_code=500, content={"detail": "Server Error"})


# --------------------- Models ---------------------

class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, min_length=6)
    addresses: Optional[List[Address]] = None


class ProductCreate(BaseModel):
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    images: Optional[List[str]] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    stock: int = Field(0, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    images: Optional[List[str]] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)


class ReviewCreate(BaseModel):
    rating: int
    comment: str


class CartItemAdd(BaseModel):
    product_id: str
    quantity: int = 1


class CartItemUpdate(BaseModel):
    quantity: int


class OrderCreate(BaseModel):
    shipping_address_id: Optional[str] = None
    shipping_address: Optional[ShippingAddress] = None
    payment_method: str = config.DEFAULT_PAYMENT_METHOD


class StatusUpdate(BaseModel):
    status: str


# --------------------- Routes ---------------------

@app.get("/api")
def root():
    return {"message": "API is running..."}


@app.get("/api/health")
def health():
    response = {
        "backend": "running",
        "database": "not configured",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "connected"
        except Exception as e:
            logger.warning("Health check could not reach database", error=str(e))
            response["database"] = f"error: {str(e)[:50]}"
    return response


# Auth
@app.post("/api/auth/register", status_code=201)
def register(req: RegisterRequest):
    return auth.register(req.name, req.email, req.password)


@app.post("/api/auth/login")
def login(req: LoginRequest):
    return auth.login(req.email, req.password)


@app.get("/api/auth/me")
def me(user: RequestContext = Depends(get_current_user)):
    return auth.get_profile(user)


@app.put("/api/auth/me/update")
def update_me(body: ProfileUpdate, user: RequestContext = Depends(get_current_user)):
    addresses = None
    if body.addresses is not None:
        addresses = [a.model_dump() for a in body.addresses]
    return auth.update_profile(
        user,
        name=body.name,
        email=body.email,
        password=body.password,
        addresses=addresses,
    )


# Products
@app.get("/api/products")
def list_products(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort_by: Optional[str] = None,
    page: int = 1,
):
    return catalog.list_products(keyword, category, brand, min_price, max_price, sort_by, page)


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return catalog.get_product(product_id)


@app.post("/api/products", status_code=201)
def create_product(body: ProductCreate, user: RequestContext = Depends(require_admin)):
    return catalog.create_product(user, body.model_dump())


@app.put("/api/products/{product_id}")
def update_product(product_id: str, body: ProductUpdate, user: RequestContext = Depends(require_admin)):
    return catalog.update_product(product_id, body.model_dump(exclude_unset=True))


@app.delete("/api/products/{product_id}")
def delete_product(product_id: str, user: RequestContext = Depends(require_admin)):
    return catalog.delete_product(product_id)


@app.post("/api/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewCreate, user: RequestContext = Depends(get_current_user)):
    return catalog.add_review(user, product_id, body.rating, body.comment)


@app.get("/api/products/{product_id}/reviews")
def list_reviews(product_id: str):
    return catalog.list_reviews(product_id)


# Cart
@app.get("/api/cart")
def get_cart(user: RequestContext = Depends(get_current_user)):
    return cart.get_cart(user)


@app.delete("/api/cart")
def clear_cart(user: RequestContext = Depends(get_current_user)):
    return cart.clear_cart(user)


@app.post("/api/cart/items")
def add_cart_item(body: CartItemAdd, user: RequestContext = Depends(get_current_user)):
    return cart.add_item(user, body.product_id, body.quantity)


@app.put("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, body: CartItemUpdate, user: RequestContext = Depends(get_current_user)):
    return cart.update_item(user, product_id, body.quantity)


@app.delete("/api/cart/items/{product_id}")
def remove_cart_item(product_id: str, user: RequestContext = Depends(get_current_user)):
    return cart.remove_item(user, product_id)


# Orders
@app.post("/api/orders", status_code=201)
def place_order(body: OrderCreate, user: RequestContext = Depends(get_current_user)):
    return orders.place_order(
        user,
        shipping_address_id=body.shipping_address_id,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
    )


@app.get("/api/orders/myorders")
def my_orders(user: RequestContext = Depends(get_current_user)):
    return orders.list_my_orders(user)


@app.get("/api/orders")
def list_orders(
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    user: RequestContext = Depends(require_admin),
):
    return orders.list_orders(status=status, user_id=user_id, page=page)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user: RequestContext = Depends(get_current_user)):
    return orders.get_order(user, order_id)


@app.put("/api/orders/{order_id}/pay")
def pay_order(order_id: str, body: PaymentResult, user: RequestContext = Depends(get_current_user)):
    return orders.mark_paid(user, order_id, body)


@app.put("/api/orders/{order_id}/deliver")
def deliver_order(order_id: str, user: RequestContext = Depends(require_admin)):
    return orders.mark_delivered(order_id)


@app.put("/api/orders/{order_id}/status")
def update_order_status(order_id: str, body: StatusUpdate, user: RequestContext = Depends(require_admin)):
    return orders.set_status(order_id, body.status)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
