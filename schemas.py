"""
Database Schemas

Pydantic models for the request bodies accepted by the API.
Each collection keeps the camelCase field names the web client sends:
- users, books, orders, wishlist, invoices, reviews
"""

from pydantic import BaseModel, ConfigDict, Field, EmailStr
from typing import Optional, Literal

Role = Literal["user", "librarian", "admin"]


class UserCreate(BaseModel):
    email: EmailStr = Field(..., description="Email address, unique per user")
    name: Optional[str] = Field(None, description="Display name")
    photo: Optional[str] = Field(None, description="Avatar URL")


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, description="Display name")
    photo: Optional[str] = Field(None, description="Avatar URL")


class RoleUpdate(BaseModel):
    role: Role = Field(..., description="Role for access control")


class BookCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    bookName: str = Field(..., description="Book title")
    category: Optional[str] = Field(None, description="Catalog category")
    price: float = Field(..., ge=0, description="Unit price")
    status: str = Field("unpublished", description="published or unpublished")


class StatusUpdate(BaseModel):
    status: str = Field(..., description="New publication status")


class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    bookId: str = Field(..., description="Referenced book id")
    bookName: Optional[str] = Field(None, description="Snapshot of book title")
    price: Optional[float] = Field(None, ge=0, description="Unit price at order time")
    owner: str = Field(..., description="Email of the librarian who published the book")


class DeliveryStatusUpdate(BaseModel):
    orderStatus: str = Field(..., description="New delivery status")


class WishlistCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    bookId: str = Field(..., description="Referenced book id")
    userEmail: Optional[EmailStr] = Field(None, description="Owner of the wishlist entry")


class CheckoutRequest(BaseModel):
    orderId: str = Field(..., description="Order being paid for")
    userName: Optional[str] = Field(None, description="Buyer display name")


class PaymentConfirmation(BaseModel):
    sessionId: str = Field(..., description="Checkout session id returned by the processor")


class ReviewCreate(BaseModel):
    model_config = ConfigDict(extra="allow")

    bookId: str = Field(..., description="Reviewed book id")
    rating: Optional[int] = Field(None, ge=1, le=5, description="Star rating")
    comment: Optional[str] = Field(None, description="Review text")
