"""
Restoration Resolver

Reconciles a previously persisted invoice (edit) or an abandoned draft
(resume) back into the composition state.

A persisted invoice embeds its vehicle by value, so the live vehicle has
to be found again once the customer's vehicle list arrives. Matching is a
fixed sequence of named strategies:
1. exact   - make, model and plate number all equal
2. partial - make and model equal, first vehicle in list order
If neither matches, the vehicle is left unselected and the items are still
restored.

State machine: IDLE -> RESTORING -> RESTORED_COMPLETE -> IDLE (after a
short grace window). Manual customer/vehicle selection cancels any
restoration immediately.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from invoice_composer.models import (
    BackendStatus,
    DiscountKind,
    InventoryItem,
    InvoiceStatus,
    LineItem,
    PaymentMethodId,
    PersistedInvoice,
    Vehicle,
    VehicleSnapshot,
)
from invoice_composer.utils.config import settings

logger = logging.getLogger(__name__)


class RestorationState(str, Enum):
    IDLE = "idle"
    RESTORING = "restoring"
    RESTORED_COMPLETE = "restored_complete"


# ============================================================================
# Normalization helpers
# ============================================================================

def normalize_payment_method(label: Optional[str], default: Optional[str] = None) -> PaymentMethodId:
    """
    Map a stored payment label back to a payment method id by
    case-insensitive substring: "cash" -> cash, "card"/"pos" -> card,
    "online"/"transfer" -> online.
    """
    text = (label or "").strip().lower()
    if "cash" in text:
        return PaymentMethodId.CASH
    if "card" in text or "pos" in text:
        return PaymentMethodId.CARD
    if "online" in text or "transfer" in text:
        return PaymentMethodId.ONLINE
    return PaymentMethodId(default or settings.DEFAULT_PAYMENT_METHOD)


def map_backend_status(status: Optional[str]) -> InvoiceStatus:
    """Only a stored "Paid" restores as Paid"""
    if status == BackendStatus.PAID.value:
        return InvoiceStatus.PAID
    return InvoiceStatus.UNPAID


def _norm(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def same_id(a, b) -> bool:
    if a is None or b is None:
        return False
    return str(a).strip() == str(b).strip()


# ============================================================================
# Vehicle match strategies
# ============================================================================

class VehicleMatchStrategy(ABC):
    name: str = ""

    @abstractmethod
    def match(self, snapshot: VehicleSnapshot, vehicles: Sequence[Vehicle]) -> Optional[Vehicle]:
        pass


class ExactVehicleMatch(VehicleMatchStrategy):
    """Make, model and plate number equal; two empty plates count as equal"""

    name = "exact"

    def match(self, snapshot, vehicles):
        for vehicle in vehicles:
            if (
                _norm(vehicle.make) == _norm(snapshot.make)
                and _norm(vehicle.model) == _norm(snapshot.model)
                and _norm(vehicle.plate_no) == _norm(snapshot.plate_no)
            ):
                return vehicle
        return None


class PartialVehicleMatch(VehicleMatchStrategy):
    """Make and model equal; the first qualifying vehicle wins"""

    name = "partial"

    def match(self, snapshot, vehicles):
        for vehicle in vehicles:
            if _norm(vehicle.make) == _norm(snapshot.make) and _norm(vehicle.model) == _norm(snapshot.model):
                return vehicle
        return None


VEHICLE_MATCH_STRATEGIES = (ExactVehicleMatch(), PartialVehicleMatch())


# ============================================================================
# Pending targets
# ============================================================================

class SnapshotTarget(BaseModel):
    """Vehicle to re-find from an invoice's embedded snapshot (edit)."""

    model_config = ConfigDict(frozen=True)

    snapshot: Optional[VehicleSnapshot] = None


class VehicleIdTarget(BaseModel):
    """Vehicle to re-select by id from an abandoned-draft marker (resume)."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str


PendingTarget = Union[SnapshotTarget, VehicleIdTarget]


class RestorationSeed(BaseModel):
    """Scalar fields applied to the composition state as soon as a record loads."""

    customer_id: Optional[str] = None
    discount_value: Decimal = Decimal("0")
    discount_kind: DiscountKind = DiscountKind.FIXED
    payment_method_id: PaymentMethodId
    invoice_status: InvoiceStatus = InvoiceStatus.UNPAID
    notes: str = ""
    terms: str = ""
    technician: Optional[str] = None
    supervisor: Optional[str] = None


class RestorationOutcome(BaseModel):
    """Result of resolving a pending target against a loaded vehicle list."""

    vehicle_id: Optional[str] = None
    strategy: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)


def restore_line_items(
    record: PersistedInvoice,
    inventory: Optional[Dict[str, InventoryItem]] = None
) -> List[LineItem]:
    """
    Rebuild line items from a stored invoice without altering quantity or
    price.

    The stored quantity was already taken out of stock when the invoice was
    saved, so an inventory-backed item may grow up to that quantity plus
    whatever is still in stock.
    """
    inventory = inventory or {}
    items = []
    for record_item in record.items:
        backed = record_item.inventory_item_id is not None
        max_stock = None
        if backed:
            stocked = inventory.get(record_item.inventory_item_id)
            current = stocked.current_stock if stocked else 0
            max_stock = record_item.quantity + max(current, 0)
        items.append(LineItem(
            description=record_item.description,
            quantity=max(record_item.quantity, 1),
            unit_price=max(record_item.price, Decimal("0")),
            catalog_item_id=record_item.catalog_item_id,
            inventory_item_id=record_item.inventory_item_id,
            max_stock=max_stock,
            is_inventory_backed=backed,
        ))
    return items


class RestorationResolver:
    """Restoration state machine plus the post-selection validation pass"""

    def __init__(
        self,
        grace_seconds: Optional[float] = None,
        strategies: Sequence[VehicleMatchStrategy] = VEHICLE_MATCH_STRATEGIES,
        on_idle: Optional[Callable[[], None]] = None
    ):
        self.grace_seconds = settings.RESTORE_GRACE_SECONDS if grace_seconds is None else grace_seconds
        self.strategies = tuple(strategies)
        self.on_idle = on_idle
        self.state = RestorationState.IDLE
        self.pending: Optional[PendingTarget] = None
        self.pending_customer_id: Optional[str] = None
        self._staged_items: List[LineItem] = []
        self._idle_handle: Optional[asyncio.TimerHandle] = None
        self._validated_customer_id: Optional[str] = None

    @property
    def is_restoring(self) -> bool:
        return self.state == RestorationState.RESTORING

    @property
    def is_idle(self) -> bool:
        return self.state == RestorationState.IDLE

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def begin_edit(
        self,
        record: PersistedInvoice,
        inventory: Optional[Dict[str, InventoryItem]] = None
    ) -> RestorationSeed:
        """EditInvoiceRequested: stage a persisted invoice and wait for vehicles"""
        return self._begin(record, SnapshotTarget(snapshot=record.vehicle), inventory)

    def begin_draft_resume(
        self,
        record: PersistedInvoice,
        vehicle_id: str,
        inventory: Optional[Dict[str, InventoryItem]] = None
    ) -> RestorationSeed:
        """DraftResumeRequested: stage an abandoned draft and re-select its vehicle by id"""
        return self._begin(record, VehicleIdTarget(vehicle_id=str(vehicle_id)), inventory)

    def on_vehicle_list_loaded(self, customer_id: Optional[str], vehicles: Sequence[Vehicle]) -> Optional[RestorationOutcome]:
        """
        VehicleListLoaded: resolve the pending target against the list.

        Returns None when nothing is pending or when the list belongs to a
        different customer than the one being restored.
        """
        if not self.is_restoring or self.pending is None:
            return None
        if str(customer_id or "").strip() != str(self.pending_customer_id or "").strip():
            logger.warning(
                f"Ignoring vehicle list for customer {customer_id}; restoring customer {self.pending_customer_id}"
            )
            return None

        target = self.pending
        if isinstance(target, VehicleIdTarget):
            vehicle = next((v for v in vehicles if same_id(v.id, target.vehicle_id)), None)
            strategy = "id" if vehicle else None
            if vehicle is None:
                logger.warning(f"Draft vehicle {target.vehicle_id} no longer exists for customer {customer_id}")
        else:
            vehicle, strategy = self.match_vehicle(target.snapshot, vehicles)

        outcome = RestorationOutcome(
            vehicle_id=vehicle.id if vehicle else None,
            strategy=strategy,
            items=self._staged_items,
        )
        self.pending = None
        self._staged_items = []
        self._complete(customer_id)
        logger.info(
            f"Restoration complete: vehicle={outcome.vehicle_id} strategy={strategy} items={len(outcome.items)}"
        )
        return outcome

    def match_vehicle(self, snapshot: Optional[VehicleSnapshot], vehicles: Sequence[Vehicle]):
        """Run the strategies in order; returns (vehicle, strategy name) or (None, None)"""
        if snapshot is None:
            return None, None
        for strategy in self.strategies:
            vehicle = strategy.match(snapshot, vehicles)
            if vehicle is not None:
                return vehicle, strategy.name
        logger.warning(
            f"No vehicle matched {snapshot.make} {snapshot.model} ({snapshot.plate_no or 'no plate'}); leaving unselected"
        )
        return None, None

    def cancel(self) -> bool:
        """
        Manual selection guard. Drops any pending target and staged items and
        returns to IDLE. Returns True when a restoration was in progress.
        """
        was_restoring = self.is_restoring
        self._cancel_timer()
        if not self.is_idle:
            logger.info(f"Restoration cancelled by manual selection (state={self.state.value})")
        self.pending = None
        self.pending_customer_id = None
        self._staged_items = []
        self.state = RestorationState.IDLE
        return was_restoring

    def close(self):
        self._cancel_timer()

    # ------------------------------------------------------------------
    # Validation pass
    # ------------------------------------------------------------------

    def reset_validation(self):
        """A new customer selection re-arms the one-shot validation pass"""
        self._validated_customer_id = None

    def should_clear_selection(
        self,
        customer_id: Optional[str],
        vehicle_id: Optional[str],
        vehicles: Sequence[Vehicle]
    ) -> bool:
        """
        One-shot check, per customer selection, that the selected vehicle is
        still in the customer's list. Runs only while idle; later refetches
        for the same customer are not re-checked.

        The first list for a customer uses up the check even when no vehicle
        is selected yet, since any later pick is made from that list.
        """
        if not self.is_idle or not customer_id:
            return False
        if self._validated_customer_id is not None and same_id(self._validated_customer_id, customer_id):
            return False
        self._validated_customer_id = customer_id
        if not vehicle_id:
            return False
        present = any(same_id(v.id, vehicle_id) for v in vehicles)
        if not present:
            logger.warning(f"Selected vehicle {vehicle_id} not found for customer {customer_id}; clearing it")
        return not present

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin(self, record, target, inventory) -> RestorationSeed:
        self._cancel_timer()
        self.state = RestorationState.RESTORING
        self.pending = target
        self.pending_customer_id = record.customer
        self._staged_items = restore_line_items(record, inventory)
        logger.info(f"Restoring invoice {record.id} for customer {record.customer} ({type(target).__name__})")
        return RestorationSeed(
            customer_id=record.customer,
            discount_value=record.discount,
            discount_kind=DiscountKind.FIXED,
            payment_method_id=normalize_payment_method(record.payment_method),
            invoice_status=map_backend_status(record.status),
            notes=record.notes or "",
            terms=record.terms or "",
            technician=record.technician,
            supervisor=record.supervisor,
        )

    def _complete(self, customer_id):
        self.state = RestorationState.RESTORED_COMPLETE
        # the restored selection was just checked against this list
        self._validated_customer_id = customer_id
        self.pending_customer_id = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._return_to_idle()
            return
        self._idle_handle = loop.call_later(self.grace_seconds, self._return_to_idle)

    def _return_to_idle(self):
        self._idle_handle = None
        if self.state == RestorationState.RESTORED_COMPLETE:
            self.state = RestorationState.IDLE
            if self.on_idle:
                self.on_idle()

    def _cancel_timer(self):
        if self._idle_handle is not None:
            self._idle_handle.cancel()
            self._idle_handle = None
