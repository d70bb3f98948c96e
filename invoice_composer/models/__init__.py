"""
Models package for the invoice composer.
"""

# Directory models
from .domain import (
    Customer,
    Vehicle,
    VehicleSnapshot,
    CatalogItem,
    InventoryItem,
    CatalogItemType,
    DiscountKind,
    PaymentMethodId,
    InvoiceStatus,
    BackendStatus,
    CompositionStep,
)

# Composition models
from .composition import (
    LineItem,
    PaymentMethod,
    PAYMENT_METHOD_LABELS,
    InvoiceTotals,
    CompositionState,
    CompositionSnapshot,
    BillingSettings,
)

# Invoice record models
from .invoice import (
    InvoiceItemRecord,
    InvoicePayload,
    PersistedInvoice,
)

__all__ = [
    # Domain
    "Customer",
    "Vehicle",
    "VehicleSnapshot",
    "CatalogItem",
    "InventoryItem",
    "CatalogItemType",
    "DiscountKind",
    "PaymentMethodId",
    "InvoiceStatus",
    "BackendStatus",
    "CompositionStep",
    # Composition
    "LineItem",
    "PaymentMethod",
    "PAYMENT_METHOD_LABELS",
    "InvoiceTotals",
    "CompositionState",
    "CompositionSnapshot",
    "BillingSettings",
    # Invoice
    "InvoiceItemRecord",
    "InvoicePayload",
    "PersistedInvoice",
]
