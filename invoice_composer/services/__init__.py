"""
Services package for the invoice composition engine.
"""

from .catalog_binder import LineItemCatalogBinder, QuantityUpdate, parse_quantity
from .composition import CompositionController, new_invoice_number
from .draft_store import DraftPointer, DraftStore, get_draft_store, reset_draft_store
from .persistence import (
    CompletionResult,
    PersistenceOrchestrator,
    SaveAction,
    SaveDecision,
    SaveReason,
    build_payload,
)
from .pricing import PricingEngine
from .restoration import (
    RestorationResolver,
    RestorationState,
    VEHICLE_MATCH_STRATEGIES,
    map_backend_status,
    normalize_payment_method,
)

__all__ = [
    "LineItemCatalogBinder",
    "QuantityUpdate",
    "parse_quantity",
    "CompositionController",
    "new_invoice_number",
    "DraftPointer",
    "DraftStore",
    "get_draft_store",
    "reset_draft_store",
    "CompletionResult",
    "PersistenceOrchestrator",
    "SaveAction",
    "SaveDecision",
    "SaveReason",
    "build_payload",
    "PricingEngine",
    "RestorationResolver",
    "RestorationState",
    "VEHICLE_MATCH_STRATEGIES",
    "map_backend_status",
    "normalize_payment_method",
]
