"""
Database Schemas for the Catalog API

Each document model maps to a MongoDB collection (User -> "user",
ProductVariant -> "product_variant"). Fields are snake_case in Python and
camelCase on the wire and in stored documents.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["USER", "ADMIN"]
CouponType = Literal["PERCENTAGE", "FIXED_AMOUNT"]
CouponStatus = Literal["ACTIVE", "INACTIVE", "EXPIRED"]

PHONE_PATTERN = r"^0\d{9}$"


def strip_required(v: str, label: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError(f"{label} is required")
    return v


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self, partial: bool = False) -> dict:
        """Dump with wire (camelCase) keys. A partial dump keeps only the
        fields the client actually sent with a non-null value."""
        return self.model_dump(by_alias=True, exclude_unset=partial, exclude_none=partial)


# Users

class User(CamelModel):
    full_name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    avatar: Optional[str] = None
    password: str = Field(..., min_length=6, description="Plain on input, hashed before storage")
    address: Optional[str] = None

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return strip_required(v, "Full name")

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


class LoginRequest(BaseModel):
    email: EmailStr
    password: str

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.strip().lower()


# Catalog

class Category(CamelModel):
    name: str = Field(..., min_length=1)
    image: Optional[str] = None
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    image: Optional[str] = None
    is_active: Optional[bool] = None


class Color(CamelModel):
    name: str = Field(..., min_length=1)
    hex: str = "transparent"

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return strip_required(v, "Color name")


class ProductVariant(CamelModel):
    size: str = Field(..., min_length=1)
    color: Color
    price: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    sku: Optional[str] = None
    images: List[str] = []
    is_active: bool = True

    @field_validator("size")
    @classmethod
    def strip_size(cls, v: str) -> str:
        return strip_required(v, "Size")


class ProductVariantUpdate(CamelModel):
    size: Optional[str] = Field(None, min_length=1)
    color: Optional[Color] = None
    price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None

    @field_validator("size")
    @classmethod
    def strip_size(cls, v: Optional[str]) -> Optional[str]:
        return strip_required(v, "Size") if v is not None else v


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


class Product(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = Field(..., description="Category id")
    images: List[str] = []
    variants: List[ProductVariant] = []
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    images: Optional[List[str]] = None
    is_active: Optional[bool] = None
    # Replaces the whole variant set when supplied
    variants: Optional[List[ProductVariant]] = None


# Coupons

class Coupon(CamelModel):
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    type: CouponType
    value: float = Field(..., gt=0)
    min_order_amount: float = Field(0, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    valid_from: datetime
    valid_to: datetime
    status: CouponStatus = "ACTIVE"

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return strip_required(v, "Code").upper()


class CouponUpdate(CamelModel):
    code: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    type: Optional[CouponType] = None
    value: Optional[float] = Field(None, gt=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    max_discount_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: Optional[int] = Field(None, ge=0)
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    status: Optional[CouponStatus] = None

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: Optional[str]) -> Optional[str]:
        return strip_required(v, "Code").upper() if v is not None else v


class CouponStatusUpdate(BaseModel):
    status: CouponStatus
