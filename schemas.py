"""
Database Schemas

Pydantic models validating documents before they reach MongoDB.
Unknown fields are dropped, so callers can never set id or created_at.

Collection names (see database.py):
- User -> "usuario" collection
- Product -> "producto" collection
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional, Union

DEFAULT_COUNTRY = "Colombia"


class Address(BaseModel):
    street: Optional[str] = Field(None, description="Street and number")
    city: Optional[str] = Field(None, description="City")
    postal_code: Optional[str] = Field(None, description="Postal code")
    country: str = Field(DEFAULT_COUNTRY, description="Country")


class User(BaseModel):
    """
    Users collection schema
    Collection name: "usuario"
    """
    name: str = Field(..., description="Full name")
    email: str = Field(..., description="Email address (unique)")
    age: Optional[Union[int, float]] = Field(None, description="Age in years")
    phone: Optional[str] = Field(None, description="Phone number")
    active: bool = Field(True, description="False once the user is deactivated")
    address: Optional[Address] = Field(None, description="Postal address")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Free-form attachment")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "producto"
    """
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    price: float = Field(..., description="Unit price")
    category: Optional[str] = Field(None, description="Product category")
    stock: Union[int, float] = Field(0, description="Units in stock")
    active: bool = Field(True, description="Whether product is listed")
    specifications: Optional[Dict[str, Any]] = Field(None, description="Free-form attachment")
