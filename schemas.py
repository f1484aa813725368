"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. Review and CartItem are embedded sub-documents.
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

Role = Literal["user", "admin"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: Optional[str] = Field(None, description="BCrypt hash of the password")
    google_id: Optional[str] = Field(None, description="Subject id from Google sign-in")
    role: Role = "user"
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: str = "India"

    @field_validator("email")
    @classmethod
    def fold_email(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("name", "phone", "address", "city", "country")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @model_validator(mode="after")
    def has_login_method(self):
        # a user must be able to sign in somehow
        if not self.password_hash and not self.google_id:
            raise ValueError("user needs a password or a Google account")
        return self


class Rating(BaseModel):
    rate: float = 0
    count: int = 0


class Review(BaseModel):
    user_id: str
    user_name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=_now)


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    image: str = Field(..., min_length=1)
    image_transparent: Optional[str] = None
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    rating: Rating = Field(default_factory=Rating)
    reviews: List[Review] = Field(default_factory=list)


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)
