"""
Composition Models - the invoice while it is being built.

CompositionState is the mutable root owned by the composition controller;
everything the view renders is a copy of it plus the computed totals.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .domain import CompositionStep, DiscountKind, InvoiceStatus, PaymentMethodId


def _ephemeral_id() -> str:
    return uuid4().hex[:12]


# ============================================================================
# Line Items
# ============================================================================

class LineItem(BaseModel):
    """
    One priced row on the invoice.

    The id only lives for the composition session. Inventory-backed items
    carry the stock seen when they were added as their quantity ceiling.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_ephemeral_id)
    description: str = ""
    quantity: int = Field(default=1, ge=1)
    unit_price: Decimal = Field(default=Decimal("0"), ge=0)
    catalog_item_id: Optional[str] = None
    inventory_item_id: Optional[str] = None
    max_stock: Optional[int] = Field(default=None, ge=0)
    is_inventory_backed: bool = False

    def binding_key(self) -> Tuple[str, str]:
        """What makes two line items the same item on one invoice"""
        if self.inventory_item_id is not None:
            return ("inventory", self.inventory_item_id)
        if self.catalog_item_id is not None:
            return ("catalog", self.catalog_item_id)
        return ("description", self.description.strip().lower())


# ============================================================================
# Pricing
# ============================================================================

PAYMENT_METHOD_LABELS = {
    PaymentMethodId.CASH: "Cash",
    PaymentMethodId.CARD: "Card/POS",
    PaymentMethodId.ONLINE: "Online Transfer",
}


class PaymentMethod(BaseModel):
    """Payment method with the tax rate applied when it is selected."""

    id: PaymentMethodId
    label: str
    tax_rate: Decimal = Decimal("0")


class InvoiceTotals(BaseModel):
    """Totals computed from the line items, discount and payment method."""

    subtotal: Decimal
    discount_amount: Decimal
    after_discount: Decimal
    tax_rate: Decimal
    tax: Decimal
    total: Decimal
    discount_exceeds_subtotal: bool = False


# ============================================================================
# Composition Root
# ============================================================================

class CompositionState(BaseModel):
    """Invoice under construction."""

    invoice_number: str = ""
    step: CompositionStep = CompositionStep.CUSTOMER_VEHICLE

    customer_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)

    discount_value: Decimal = Decimal("0")
    discount_kind: DiscountKind = DiscountKind.PERCENT
    payment_method_id: PaymentMethodId = PaymentMethodId.CASH

    notes: str = ""
    terms: str = ""
    technician: Optional[str] = None
    supervisor: Optional[str] = None

    invoice_status: InvoiceStatus = InvoiceStatus.UNPAID
    persisted_invoice_id: Optional[str] = None
    completed: bool = False

    def missing_for_completion(self) -> List[str]:
        missing = []
        if not self.customer_id:
            missing.append("customer")
        if not self.vehicle_id:
            missing.append("vehicle")
        if not self.items:
            missing.append("at least one item")
        return missing

    def is_autosavable(self) -> bool:
        return not self.missing_for_completion()

    def find_item(self, item_id: str) -> Optional[LineItem]:
        return next((item for item in self.items if item.id == item_id), None)


class BillingSettings(BaseModel):
    """Tax table and business profile supplied by the settings provider."""

    tax_rates: Dict[PaymentMethodId, Decimal] = Field(default_factory=dict)
    business_profile: Dict[str, Any] = Field(default_factory=dict)

    def payment_method(self, method_id: PaymentMethodId) -> PaymentMethod:
        return PaymentMethod(
            id=method_id,
            label=PAYMENT_METHOD_LABELS[method_id],
            tax_rate=self.tax_rates.get(method_id, Decimal("0")),
        )

    def payment_methods(self) -> List[PaymentMethod]:
        return [self.payment_method(method_id) for method_id in PaymentMethodId]


class CompositionSnapshot(BaseModel):
    """Read-only copy of the composition handed to the view."""

    state: CompositionState
    totals: InvoiceTotals
    restoration: str
    processing: bool = False
    editing_invoice_id: Optional[str] = None
