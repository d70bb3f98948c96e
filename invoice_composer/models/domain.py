"""
Domain Models - Pydantic models for the records the composer reads.

Customers, vehicles, catalog entries and inventory entries are owned by
their directories; the composer only reads them. Identifiers are kept as
strings so that ids coming back as numbers or ObjectId strings compare the
same way.
"""

from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class CatalogItemType(str, Enum):
    """Kinds of catalog entries."""
    SERVICE = "service"
    PRODUCT = "product"


class DiscountKind(str, Enum):
    """How the discount value is interpreted."""
    PERCENT = "percent"
    FIXED = "fixed"


class PaymentMethodId(str, Enum):
    """Payment methods offered while composing an invoice."""
    CASH = "cash"
    CARD = "card"
    ONLINE = "online"


class InvoiceStatus(str, Enum):
    """Status picked by the user while composing."""
    UNPAID = "Unpaid"
    PAID = "Paid"


class BackendStatus(str, Enum):
    """Status stored on the persisted invoice record."""
    PENDING = "Pending"
    PAID = "Paid"


class CompositionStep(IntEnum):
    """Steps of the invoice wizard."""
    CUSTOMER_VEHICLE = 1
    ITEMS = 2
    PRICING = 3
    STAFF_REVIEW = 4


# ============================================================================
# Directory Models
# ============================================================================

class Customer(BaseModel):
    """Customer as returned by the customer directory."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class VehicleSnapshot(BaseModel):
    """Vehicle fields embedded by value inside a persisted invoice."""

    model_config = ConfigDict(populate_by_name=True)

    make: str = ""
    model: str = ""
    year: Optional[int] = None
    plate_no: str = Field(default="", alias="plateNo")

    @field_validator("year", mode="before")
    @classmethod
    def _blank_year(cls, v):
        return None if v in ("", None) else v

    @field_validator("make", "model", "plate_no", mode="before")
    @classmethod
    def _text_or_blank(cls, v):
        return "" if v is None else str(v)


class Vehicle(BaseModel):
    """Vehicle as returned by the vehicle directory."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    customer_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("customer_id", "customerId", "customer"))
    make: str = ""
    model: str = ""
    year: Optional[int] = None
    plate_no: str = Field(default="", validation_alias=AliasChoices("plate_no", "plateNo"))

    @field_validator("year", mode="before")
    @classmethod
    def _blank_year(cls, v):
        return None if v in ("", None) else v

    @field_validator("make", "model", "plate_no", mode="before")
    @classmethod
    def _text_or_blank(cls, v):
        return "" if v is None else str(v)

    def snapshot(self) -> VehicleSnapshot:
        """Copy the fields an invoice embeds"""
        return VehicleSnapshot(make=self.make, model=self.model, year=self.year, plate_no=self.plate_no)


class CatalogItem(BaseModel):
    """Service or product from the catalog directory."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    price: Decimal = Decimal("0")
    type: CatalogItemType = CatalogItemType.SERVICE
    active: bool = True


class InventoryItem(BaseModel):
    """Stocked part from the inventory directory."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    name: str
    sale_price: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("sale_price", "salePrice"))
    current_stock: int = Field(default=0, validation_alias=AliasChoices("current_stock", "currentStock"))
    min_stock: int = Field(default=0, validation_alias=AliasChoices("min_stock", "minStock"))
    unit: Optional[str] = None
