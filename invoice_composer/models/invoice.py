"""
Invoice Models - the persisted invoice record and its write payload.

The payload mirrors what the invoice backend accepts. A record whose
payment method is absent is an unfinished draft.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .domain import BackendStatus, VehicleSnapshot


class InvoiceItemRecord(BaseModel):
    """Line item as stored on the invoice record."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    description: str = ""
    quantity: int = 1
    price: Decimal = Decimal("0")
    catalog_item_id: Optional[str] = Field(default=None, alias="catalogItemId")
    inventory_item_id: Optional[str] = Field(default=None, alias="inventoryItemId")


class InvoicePayload(BaseModel):
    """Body sent on create and update."""

    model_config = ConfigDict(populate_by_name=True)

    customer: str
    vehicle: Optional[VehicleSnapshot] = None
    items: List[InvoiceItemRecord] = Field(default_factory=list)
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    amount: Decimal
    status: BackendStatus = BackendStatus.PENDING
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    technician: Optional[str] = None
    supervisor: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    date: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_wire(self) -> Dict[str, Any]:
        """Serialize with backend field names; optional fields are omitted, vehicle is always present"""
        data = self.model_dump(by_alias=True, exclude_none=True, mode="python")
        data["status"] = self.status.value
        data["vehicle"] = self.vehicle.model_dump(by_alias=True) if self.vehicle else None
        return data


class PersistedInvoice(BaseModel):
    """Invoice record as returned by the repository."""

    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    id: str = Field(validation_alias=AliasChoices("id", "_id"))
    customer: Optional[str] = None
    vehicle: Optional[VehicleSnapshot] = None
    items: List[InvoiceItemRecord] = Field(default_factory=list)
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    status: str = BackendStatus.PENDING.value
    payment_method: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("payment_method", "paymentMethod")
    )
    technician: Optional[str] = None
    supervisor: Optional[str] = None
    notes: Optional[str] = None
    terms: Optional[str] = None
    date: Optional[str] = None

    @field_validator("customer", mode="before")
    @classmethod
    def _customer_ref(cls, v):
        # populated references come back as the whole customer document
        if isinstance(v, dict):
            return v.get("_id") or v.get("id")
        return v

    @field_validator("date", mode="before")
    @classmethod
    def _iso_date(cls, v):
        return v.isoformat() if isinstance(v, datetime) else v

    @property
    def is_draft(self) -> bool:
        return not self.payment_method
