import logging
import os
import re
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

import accounts
import cart
import federated
import otp
import reviews
import wishlist
from database import create_document, db, ensure_indexes, serialize_doc, to_object_id, utcnow
from errors import NotFound, ValidationFailed
from schemas import Product as ProductSchema
from security import (
    clear_session_cookie,
    get_current_user,
    get_optional_user,
    require_admin,
    set_session_cookie,
)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FRONTEND_ORIGINS = [o.strip() for o in os.getenv("FRONTEND_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

# the session cookie needs credentialed requests, which rule out a "*" origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Request models
class RegisterIn(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class GoogleLoginIn(BaseModel):
    credential: str = Field(..., min_length=1)


class ProfileIn(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


class RoleIn(BaseModel):
    role: Literal["user", "admin"]


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    image_transparent: Optional[str] = None
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = Field(None, min_length=1)
    image_transparent: Optional[str] = None
    category: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


class CartItemIn(BaseModel):
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(1, ge=1)


class QuantityIn(BaseModel):
    quantity: int


class MergeIn(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)


class WishlistIn(BaseModel):
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))


class ForgotPasswordIn(BaseModel):
    email: EmailStr


class VerifyOtpIn(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)


class ResetPasswordIn(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=1)
    new_password: str = Field(..., validation_alias=AliasChoices("new_password", "newPassword"))


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API is running"}


@app.get("/test")
def test_database():
    """Store health: whether MongoDB answers and how big the catalog is."""
    if db is None:
        return {"backend": "✅ Running", "database": "❌ Not configured"}
    try:
        return {
            "backend": "✅ Running",
            "database": db.name,
            "products": db["product"].count_documents({}),
            "users": db["user"].count_documents({}),
        }
    except PyMongoError as e:
        logger.error("Health check could not reach MongoDB: %s", e)
        return {"backend": "✅ Running", "database": "⚠️ Unreachable"}


# Auth endpoints
@app.post("/api/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterIn, response: Response):
    user = accounts.register_user(
        db,
        name=payload.name,
        email=payload.email,
        password=payload.password,
        phone=payload.phone,
        address=payload.address,
        city=payload.city,
        country=payload.country,
    )
    return {"message": "Account created successfully", "user": set_session_cookie(response, user)}


@app.post("/api/login")
def login(payload: LoginIn, response: Response):
    user = accounts.authenticate(db, payload.email, payload.password)
    return {"message": "Login successful", "user": set_session_cookie(response, user)}


@app.post("/api/auth/google")
def google_login(payload: GoogleLoginIn, response: Response):
    claims = federated.verify_google_token(payload.credential)
    user = accounts.federated_login(db, claims)
    return {"message": "Login successful", "user": set_session_cookie(response, user)}


@app.put("/api/update-profile")
def update_profile(payload: ProfileIn, response: Response, user=Depends(get_current_user)):
    updated = accounts.update_profile(db, user["id"], payload.model_dump(exclude_none=True))
    return {"message": "Profile updated successfully", "user": set_session_cookie(response, updated)}


@app.get("/api/me")
def me(user=Depends(get_optional_user)):
    return {"user": user}


@app.post("/api/logout")
def logout(response: Response):
    clear_session_cookie(response)
    return {"message": "Logged out"}


# Password recovery
@app.post("/api/forgot-password")
def forgot_password(payload: ForgotPasswordIn):
    otp.request_challenge(db, payload.email)
    return {"message": "OTP sent to your email"}


@app.post("/api/verify-otp")
def verify_otp(payload: VerifyOtpIn):
    otp.verify_challenge(db, payload.email, payload.otp)
    return {"message": "OTP verified"}


@app.post("/api/reset-password")
def reset_password(payload: ResetPasswordIn, response: Response):
    user = otp.complete_reset(db, payload.email, payload.otp, payload.new_password)
    return {"message": "Password reset successfully", "user": set_session_cookie(response, user)}


# Admin endpoints
@app.get("/api/admin/users")
def admin_list_users(admin=Depends(require_admin)):
    return accounts.list_users(db)


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, admin=Depends(require_admin)):
    accounts.delete_user(db, admin["id"], user_id)
    return {"message": "User deleted"}


@app.put("/api/admin/users/{user_id}/role")
def admin_set_role(user_id: str, payload: RoleIn, response: Response, admin=Depends(require_admin)):
    user = accounts.set_role(db, admin["id"], user_id, payload.role)
    # only the caller's own cookie can be refreshed
    if str(user["_id"]) == admin["id"]:
        set_session_cookie(response, user)
    return {"message": f"Role updated to {payload.role}", "user": accounts.public_user(user)}


# Product endpoints
@app.get("/api/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None):
    filter_q = {}
    if q:
        filter_q["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filter_q["category"] = category
    items = db["product"].find(filter_q).sort("created_at", -1)
    return [serialize_doc(it) for it in items]


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    doc = db["product"].find_one({"_id": to_object_id(product_id, "Product")})
    if not doc:
        raise NotFound("Product not found")
    return serialize_doc(doc)


@app.post("/api/products", status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_admin)])
def create_product(payload: ProductIn):
    product = ProductSchema(**payload.model_dump())
    pid = create_document(db, "product", product)
    logger.info("Created product %s", pid)
    return serialize_doc(db["product"].find_one({"_id": to_object_id(pid)}))


@app.put("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def update_product(product_id: str, payload: ProductUpdate):
    update = payload.model_dump(exclude_none=True)
    if not update:
        raise ValidationFailed("Nothing to update")
    update["updated_at"] = utcnow()
    doc = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "Product")},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Product not found")
    return serialize_doc(doc)


@app.delete("/api/products/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str):
    res = db["product"].delete_one({"_id": to_object_id(product_id, "Product")})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)
    return {"message": "Product deleted"}


# Review endpoints
@app.post("/api/products/{product_id}/reviews", status_code=status.HTTP_201_CREATED)
def submit_review(product_id: str, payload: ReviewIn, response: Response, user=Depends(get_current_user)):
    outcome, product = reviews.upsert_review(db, product_id, user["id"], user["name"], payload.rating, payload.comment)
    if outcome == reviews.UPDATED:
        response.status_code = status.HTTP_200_OK
        message = "Review updated successfully"
    else:
        message = "Review added successfully"
    return {"message": message, "status": outcome, "product": product}


@app.delete("/api/products/{product_id}/reviews")
def delete_review(product_id: str, user=Depends(get_current_user)):
    product = reviews.remove_review(db, product_id, user["id"])
    return {"message": "Review deleted successfully", "product": product}


# Cart endpoints (per-user)
@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    return cart.get_cart_items(db, user["id"])


@app.post("/api/cart")
def add_to_cart(payload: CartItemIn, user=Depends(get_current_user)):
    return cart.add_item(db, user["id"], payload.product_id, payload.quantity)


@app.post("/api/cart/merge")
def merge_cart(payload: MergeIn, user=Depends(get_current_user)):
    return cart.merge_items(db, user["id"], payload.items)


@app.put("/api/cart/{product_id}")
def set_cart_quantity(product_id: str, payload: QuantityIn, user=Depends(get_current_user)):
    return cart.set_item_quantity(db, user["id"], product_id, payload.quantity)


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user)):
    return cart.remove_item(db, user["id"], product_id)


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user)):
    cart.clear_cart(db, user["id"])
    return {"message": "Cart cleared"}


# Wishlist endpoints
@app.get("/api/wishlist")
def get_wishlist(user=Depends(get_current_user)):
    return wishlist.get_wishlist(db, user["id"])


@app.post("/api/wishlist")
def add_to_wishlist(payload: WishlistIn, user=Depends(get_current_user)):
    return wishlist.add_to_wishlist(db, user["id"], payload.product_id)


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(get_current_user)):
    return wishlist.remove_from_wishlist(db, user["id"], product_id)


# Sample catalog for a fresh database (admin only)
DEMO_PRODUCTS = [
    {
        "name": "Wireless Headphones",
        "description": "High-quality noise-cancelling wireless headphones with 20-hour battery life.",
        "image": "https://images.unsplash.com/photo-1505740420928-5e560c06d30e?w=500&auto=format&fit=crop&q=60",
        "category": "Electronics",
        "price": 199.99,
    },
    {
        "name": "Smart Watch",
        "description": "Track your fitness, heart rate, and notifications on the go.",
        "image": "https://images.unsplash.com/photo-1523275335684-37898b6baf30?w=500&auto=format&fit=crop&q=60",
        "category": "Wearables",
        "price": 149.5,
    },
    {
        "name": "Running Shoes",
        "description": "Lightweight, durable running shoes for all terrains.",
        "image": "https://images.unsplash.com/photo-1542291026-7eec264c27ff?w=500&auto=format&fit=crop&q=60",
        "category": "Footwear",
        "price": 89.99,
    },
    {
        "name": "Leather Backpack",
        "description": "Stylish and spacious leather backpack for daily commute.",
        "image": "https://images.unsplash.com/photo-1553062407-98eeb64c6a62?w=500&auto=format&fit=crop&q=60",
        "category": "Accessories",
        "price": 120.0,
    },
]


@app.post("/api/seed", dependencies=[Depends(require_admin)])
def seed():
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        create_document(db, "product", ProductSchema(**p))
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
