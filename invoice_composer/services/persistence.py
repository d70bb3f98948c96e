"""
Persistence Orchestrator

Decides, for every save, whether to create a new invoice or update an
existing one, so that one user action yields exactly one outcome:

1. editing a persisted invoice  -> update that invoice
2. a draft pointer exists       -> update that draft
3. otherwise                    -> create; autosaves remember the new id

It is the only writer of the session's draft pointer and edit marker.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from invoice_composer.models import (
    BackendStatus,
    CompositionState,
    InvoiceItemRecord,
    InvoicePayload,
    InvoiceStatus,
    InvoiceTotals,
    PersistedInvoice,
    VehicleSnapshot,
)
from invoice_composer.services.collaborators import InvoiceRepository
from invoice_composer.services.draft_store import DraftPointer, DraftStore
from invoice_composer.utils.errors import CompletionInProgress

logger = logging.getLogger(__name__)

# Payment label for invoices completed as unpaid. Abandoned drafts carry no
# payment method at all.
UNPAID_PAYMENT_LABEL = "Other"


class SaveReason(str, Enum):
    AUTOSAVE = "autosave"
    COMPLETE = "complete"


class SaveAction(str, Enum):
    CREATE = "create"
    UPDATE_EXISTING = "update_existing"
    UPDATE_DRAFT = "update_draft"


class SaveDecision(BaseModel):
    action: SaveAction
    invoice_id: Optional[str] = None


class CompletionResult(BaseModel):
    invoice: PersistedInvoice
    action: SaveAction
    produce_document: bool


def build_payload(
    state: CompositionState,
    totals: InvoiceTotals,
    vehicle: Optional[VehicleSnapshot],
    reason: SaveReason,
    payment_label: Optional[str] = None
) -> InvoicePayload:
    """
    Build the invoice body from the composition state.

    Autosaves are stored as Pending without a payment method. Completion
    maps Paid to status "Paid" with the method's label, and Unpaid to
    status "Pending" with the "Other" label.
    """
    if reason == SaveReason.AUTOSAVE:
        status, method = BackendStatus.PENDING, None
    elif state.invoice_status == InvoiceStatus.PAID:
        status, method = BackendStatus.PAID, payment_label
    else:
        status, method = BackendStatus.PENDING, UNPAID_PAYMENT_LABEL

    return InvoicePayload(
        customer=state.customer_id,
        vehicle=vehicle,
        items=[
            InvoiceItemRecord(
                description=item.description,
                quantity=item.quantity,
                price=item.unit_price,
                catalog_item_id=item.catalog_item_id,
                inventory_item_id=item.inventory_item_id,
            )
            for item in state.items
        ],
        subtotal=totals.subtotal,
        discount=totals.discount_amount,
        tax=totals.tax,
        amount=totals.total,
        status=status,
        payment_method=method,
        technician=state.technician or None,
        supervisor=state.supervisor or None,
        notes=state.notes or None,
        terms=state.terms or None,
    )


class PersistenceOrchestrator:
    """Routes every save to create, update-draft or update-existing"""

    def __init__(self, repository: InvoiceRepository, draft_store: DraftStore, session_key: str):
        self.repository = repository
        self.draft_store = draft_store
        self.session_key = session_key
        self.processing = False

    @property
    def editing_invoice_id(self) -> Optional[str]:
        return self.draft_store.get_edit_marker(self.session_key)

    @property
    def draft_pointer(self) -> Optional[DraftPointer]:
        return self.draft_store.get_pointer(self.session_key)

    def begin_edit(self, invoice_id: str):
        """Mark the session as editing a persisted invoice"""
        self.draft_store.set_edit_marker(self.session_key, str(invoice_id))
        logger.info(f"Session {self.session_key} editing invoice {invoice_id}")

    def end_edit(self):
        """Leave edit mode without saving; later saves no longer target the edited invoice"""
        editing = self.editing_invoice_id
        if editing:
            self.draft_store.clear_edit_marker(self.session_key)
            logger.info(f"Session {self.session_key} stopped editing invoice {editing}")

    def discard_draft_pointer(self):
        """Forget a draft that was deleted or finalized outside this session"""
        pointer = self.draft_pointer
        if pointer is not None:
            self.draft_store.clear_pointer(self.session_key)
            logger.warning(f"Draft {pointer.invoice_id} is no longer a draft; session {self.session_key} starts fresh")

    def decide(self) -> SaveDecision:
        editing = self.editing_invoice_id
        if editing:
            return SaveDecision(action=SaveAction.UPDATE_EXISTING, invoice_id=editing)
        pointer = self.draft_pointer
        if pointer is not None:
            return SaveDecision(action=SaveAction.UPDATE_DRAFT, invoice_id=pointer.invoice_id)
        return SaveDecision(action=SaveAction.CREATE)

    async def save(
        self,
        payload: InvoicePayload,
        reason: SaveReason,
        vehicle_id: Optional[str] = None
    ) -> CompletionResult:
        """
        Persist one payload. Decision and write happen under the session
        lock, so a second save always sees the id produced by the first.
        """
        async with self.draft_store.lock(self.session_key):
            decision = self.decide()
            wire = payload.to_wire()
            logger.info(f"Saving invoice ({reason.value}): {decision.action.value} {decision.invoice_id or ''}".rstrip())

            if decision.action == SaveAction.CREATE:
                invoice = await self.repository.create(wire)
            else:
                invoice = await self.repository.update(decision.invoice_id, wire)

            if reason == SaveReason.AUTOSAVE:
                self.draft_store.set_pointer(self.session_key, DraftPointer(
                    invoice_id=str(invoice.id),
                    customer_id=payload.customer,
                    vehicle_id=vehicle_id,
                ))
            else:
                self.draft_store.clear(self.session_key)

            return CompletionResult(
                invoice=invoice,
                action=decision.action,
                produce_document=invoice_is_paid(payload),
            )

    async def autosave(self, payload: InvoicePayload, vehicle_id: Optional[str]) -> Optional[PersistedInvoice]:
        """Save abandoned work as a draft and remember it for this session"""
        if self.editing_invoice_id:
            logger.info(f"Skipping autosave; session {self.session_key} is editing {self.editing_invoice_id}")
            return None
        result = await self.save(payload, SaveReason.AUTOSAVE, vehicle_id=vehicle_id)
        return result.invoice

    async def complete(self, payload: InvoicePayload) -> CompletionResult:
        """
        Explicit completion. A second call while one is in flight raises
        CompletionInProgress; the guard is released on success and failure.
        """
        if self.processing:
            raise CompletionInProgress()
        self.processing = True
        try:
            result = await self.save(payload, SaveReason.COMPLETE)
            logger.info(f"Invoice {result.invoice.id} completed with status {payload.status.value}")
            return result
        finally:
            self.processing = False


def invoice_is_paid(payload: InvoicePayload) -> bool:
    return payload.status == BackendStatus.PAID
