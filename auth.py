from datetime import datetime, timedelta, timezone
from typing import List, Optional

import structlog
from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr

import config
from database import collection, create_document, now, object_id
from errors import Forbidden, NotFound, Unauthorized, ValidationFailed
from schemas import User

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(data: dict, expires_minutes: int = config.JWT_EXPIRES_MINUTES) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALG)


class RequestContext(BaseModel):
    """Identity of the caller, decoded from the bearer token once per request."""

    id: str
    email: EmailStr
    name: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def get_current_user(authorization: Optional[str] = Header(None)) -> RequestContext:
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("Invalid auth scheme")
    except ValueError:
        raise Unauthorized("Invalid Authorization header")
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
        return RequestContext(**{
            "id": payload.get("id"),
            "email": payload.get("email"),
            "name": payload.get("name"),
            "role": payload.get("role", "user"),
        })
    except (JWTError, ValueError):
        raise Unauthorized("Invalid or expired token")


def require_admin(user: RequestContext = Depends(get_current_user)) -> RequestContext:
    if not user.is_admin:
        raise Forbidden("Not authorized as an admin")
    return user


# --------------------- Profile ---------------------

def _token_for(user: dict) -> str:
    return create_token({
        "id": str(user["_id"]),
        "email": user["email"],
        "name": user["name"],
        "role": user.get("role", "user"),
    })


def _profile(user: dict, with_token: bool = False) -> dict:
    out = {
        "id": str(user["_id"]),
        "name": user["name"],
        "email": user["email"],
        "role": user.get("role", "user"),
        "addresses": user.get("addresses", []),
    }
    if with_token:
        out["token"] = _token_for(user)
    return out


def register(name: str, email: str, password: str) -> dict:
    email = email.lower()
    users = collection("user")
    if users.find_one({"email": email}):
        raise ValidationFailed("User already exists")
    user_doc = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        addresses=[],
        role="user",
    )
    user_id = create_document("user", user_doc)
    logger.info("User registered", user_id=user_id)
    return _profile(users.find_one({"_id": ObjectId(user_id)}), with_token=True)


def login(email: str, password: str) -> dict:
    user = collection("user").find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.info("Login failed", email=email)
        raise Unauthorized("Invalid email or password")
    return _profile(user, with_token=True)


def get_profile(ctx: RequestContext) -> dict:
    user = collection("user").find_one({"_id": object_id(ctx.id)})
    if not user:
        raise NotFound("User not found")
    return _profile(user)


def update_profile(
    ctx: RequestContext,
    name: Optional[str] = None,
    email: Optional[str] = None,
    password: Optional[str] = None,
    addresses: Optional[List[dict]] = None,
) -> dict:
    users = collection("user")
    user = users.find_one({"_id": object_id(ctx.id)})
    if not user:
        raise NotFound("User not found")

    changes = {}
    if name:
        changes["name"] = name
    if email:
        changes["email"] = email.lower()
    if password:
        changes["password_hash"] = hash_password(password)
    if addresses is not None:
        saved = []
        for address in addresses:
            address = dict(address)
            if not address.get("id"):
                address["id"] = str(ObjectId())
            saved.append(address)
        changes["addresses"] = saved
    changes["updated_at"] = now()

    # a duplicate email surfaces as DuplicateKeyError from the unique index
    users.update_one({"_id": user["_id"]}, {"$set": changes})
    return _profile(users.find_one({"_id": user["_id"]}), with_token=True)
