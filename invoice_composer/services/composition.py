"""
Composition Controller

Owns the invoice under construction for one composition session (one
mount of the invoice view) and every effect around it: loading directory
data, restoring edits and abandoned drafts, binding line items, computing
totals, explicit completion and the autosave on teardown.

The view delegates to this object and renders snapshot(); it never keeps
its own copy of the composition, so the teardown autosave always reads
the latest values.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Dict, Iterable, List, Optional

from invoice_composer.models import (
    BillingSettings,
    CatalogItem,
    CompositionSnapshot,
    CompositionState,
    CompositionStep,
    Customer,
    DiscountKind,
    InventoryItem,
    InvoiceStatus,
    InvoiceTotals,
    LineItem,
    PaymentMethodId,
    PersistedInvoice,
    Vehicle,
)
from invoice_composer.services.catalog_binder import LineItemCatalogBinder, Selection
from invoice_composer.services.collaborators import (
    CatalogDirectory,
    CustomerDirectory,
    DocumentRenderer,
    InventoryDirectory,
    InvoiceRepository,
    LoggingNotifier,
    Notifier,
    SessionAuth,
    SettingsProvider,
    StaticSettingsProvider,
    VehicleDirectory,
)
from invoice_composer.services.draft_store import DraftStore, get_draft_store
from invoice_composer.services.persistence import (
    CompletionResult,
    PersistenceOrchestrator,
    SaveReason,
    build_payload,
)
from invoice_composer.services.pricing import PricingEngine
from invoice_composer.services.restoration import RestorationResolver, RestorationSeed, same_id
from invoice_composer.utils.config import Settings, settings as default_settings
from invoice_composer.utils.errors import (
    CompletionInProgress,
    CompositionValidationError,
    DuplicateItem,
    LineItemRejected,
    NetworkFailure,
    PricingLocked,
    Unauthenticated,
)
from invoice_composer.utils.money import to_decimal

logger = logging.getLogger(__name__)

# Returned by _call when a collaborator failed and the user was notified
_FAILED = object()


def new_invoice_number(prefix: Optional[str] = None) -> str:
    """Display number for a new composition: prefix + last six digits of epoch millis"""
    prefix = default_settings.INVOICE_NUMBER_PREFIX if prefix is None else prefix
    return f"{prefix}{str(int(time.time() * 1000))[-6:]}"


class CompositionController:
    """Single owner of the composition state and its lifecycle"""

    def __init__(
        self,
        customers: CustomerDirectory,
        vehicles: VehicleDirectory,
        catalog: CatalogDirectory,
        inventory: InventoryDirectory,
        invoices: InvoiceRepository,
        settings_provider: Optional[SettingsProvider] = None,
        draft_store: Optional[DraftStore] = None,
        session_key: str = "default",
        notifier: Optional[Notifier] = None,
        session_auth: Optional[SessionAuth] = None,
        renderer: Optional[DocumentRenderer] = None,
        can_edit_pricing: bool = True,
        config: Optional[Settings] = None
    ):
        self.config = config or default_settings
        self.customer_directory = customers
        self.vehicle_directory = vehicles
        self.catalog_directory = catalog
        self.inventory_directory = inventory
        self.settings_provider = settings_provider or StaticSettingsProvider(self.config)
        self.notifier = notifier or LoggingNotifier()
        self.session_auth = session_auth
        self.renderer = renderer
        self.can_edit_pricing = can_edit_pricing

        self.pricing = PricingEngine()
        self.binder = LineItemCatalogBinder()
        self.resolver = RestorationResolver(grace_seconds=self.config.RESTORE_GRACE_SECONDS)
        self.orchestrator = PersistenceOrchestrator(invoices, draft_store or get_draft_store(), session_key)
        self.invoices = invoices

        self.state = CompositionState(
            invoice_number=new_invoice_number(self.config.INVOICE_NUMBER_PREFIX),
            payment_method_id=PaymentMethodId(self.config.DEFAULT_PAYMENT_METHOD),
        )
        self.billing = BillingSettings()
        self.customers: List[Customer] = []
        self.vehicles: List[Vehicle] = []
        self.vehicles_customer_id: Optional[str] = None
        self.catalog_items: List[CatalogItem] = []
        self.inventory_items: List[InventoryItem] = []

        self._vehicle_request = 0
        self._customer_request = 0
        self._torn_down = False
        self._autosave_task: Optional[asyncio.Task] = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    @property
    def active(self) -> bool:
        return not self._torn_down

    async def mount(self, edit_invoice_id: Optional[str] = None, new_invoice: bool = False):
        """
        Load directory data, then restore whatever this session was doing:
        an edit in progress first, otherwise an abandoned draft.

        new_invoice opens a fresh composition: an unfinished edit from an
        earlier mount is dropped instead of resumed.
        """
        logger.info(f"Mounting composition {self.state.invoice_number} (session {self.orchestrator.session_key})")
        await asyncio.gather(
            self.load_customers(),
            self._load_catalog(),
            self._load_inventory(),
            self._load_billing_settings(),
        )
        if not self.active:
            return

        if new_invoice and not edit_invoice_id:
            self.orchestrator.end_edit()
        edit_id = edit_invoice_id or self.orchestrator.editing_invoice_id
        if edit_id:
            await self.begin_edit(edit_id)
        elif self.orchestrator.draft_pointer is not None:
            await self.resume_draft()

    def teardown(self) -> Optional[asyncio.Task]:
        """
        Leave the view. Pending lookups are discarded; abandoned work with a
        customer, vehicle and at least one item is autosaved exactly once,
        in the background. Returns the autosave task, if one was started.
        """
        if self._torn_down:
            return None
        self._torn_down = True
        self.resolver.close()

        if not self._should_autosave():
            logger.info(f"Composition {self.state.invoice_number} closed without autosave")
            return None

        payload = build_payload(self.state, self.totals, self._vehicle_snapshot(), SaveReason.AUTOSAVE)
        vehicle_id = self.state.vehicle_id
        self._autosave_task = asyncio.get_running_loop().create_task(self._autosave(payload, vehicle_id))
        return self._autosave_task

    def _should_autosave(self) -> bool:
        if self.state.completed or self.orchestrator.processing:
            return False
        if self.orchestrator.editing_invoice_id:
            return False
        return self.state.is_autosavable()

    async def _autosave(self, payload, vehicle_id):
        try:
            invoice = await self.orchestrator.autosave(payload, vehicle_id)
            if invoice is not None:
                logger.info(f"Autosaved draft invoice {invoice.id}")
        except Unauthenticated as e:
            logger.error(f"Autosave rejected, session expired: {e}")
            if self.session_auth:
                self.session_auth.handle_unauthenticated(e)
        except Exception as e:
            logger.error(f"Autosave failed: {e}", exc_info=True)

    # ========================================================================
    # Collaborator calls
    # ========================================================================

    async def _call(self, call: Awaitable, action: str, notify: bool = True) -> Any:
        """
        Await a collaborator. Expired sessions go to the session collaborator
        and propagate; transport failures are reported as retryable and
        return _FAILED.
        """
        try:
            return await call
        except Unauthenticated as e:
            logger.warning(f"Session expired while trying to {action}")
            if self.session_auth:
                self.session_auth.handle_unauthenticated(e)
            raise
        except NetworkFailure as e:
            logger.error(f"Failed to {action}: {e}")
            if notify and self.active:
                self.notifier.error(f"Failed to {action}. Please try again.", retryable=True)
            return _FAILED

    async def load_customers(self, search: Optional[str] = None) -> List[Customer]:
        """Load or search customers; a stale search never overwrites a newer one"""
        self._customer_request += 1
        request = self._customer_request
        customers = await self._call(self.customer_directory.list(search or None), "load customers")
        if customers is _FAILED or not self.active:
            return self.customers
        if request != self._customer_request:
            logger.debug(f"Discarding stale customer results for '{search}'")
            return self.customers
        self.customers = list(customers)
        return self.customers

    async def search_customers(self, query: str) -> List[Customer]:
        return await self.load_customers((query or "").strip() or None)

    async def _load_catalog(self):
        items = await self._call(self.catalog_directory.list(), "load catalog")
        if items is not _FAILED and self.active:
            self.catalog_items = list(items)

    async def _load_inventory(self):
        items = await self._call(self.inventory_directory.list(), "load inventory")
        if items is not _FAILED and self.active:
            self.inventory_items = list(items)

    async def _load_billing_settings(self):
        billing = await self._call(self.settings_provider.get(), "load settings")
        if billing is not _FAILED and self.active:
            self.billing = billing

    async def _load_vehicles(self, customer_id: Optional[str]):
        """
        Fetch the customer's vehicles. Results are keyed by request so that
        a list for a customer who is no longer selected is dropped.
        """
        self._vehicle_request += 1
        request = self._vehicle_request
        if not customer_id:
            self.vehicles = []
            self.vehicles_customer_id = None
            return

        vehicles = await self._call(
            self.vehicle_directory.list(customer_id=customer_id),
            "load vehicles",
        )
        if not self.active:
            return
        if request != self._vehicle_request or not same_id(customer_id, self.state.customer_id):
            logger.warning(f"Discarding stale vehicle list for customer {customer_id}")
            return
        if vehicles is _FAILED:
            if self.resolver.is_restoring:
                # restore the items anyway; the vehicle stays unselected
                self._on_vehicle_list_loaded(customer_id, [])
            return

        self.vehicles = list(vehicles)
        self.vehicles_customer_id = customer_id
        self._on_vehicle_list_loaded(customer_id, self.vehicles)

    async def refresh_vehicles(self):
        await self._load_vehicles(self.state.customer_id)

    def _on_vehicle_list_loaded(self, customer_id: Optional[str], vehicles: List[Vehicle]):
        outcome = self.resolver.on_vehicle_list_loaded(customer_id, vehicles)
        if outcome is not None:
            self.state.vehicle_id = outcome.vehicle_id
            self.state.items = outcome.items
            if outcome.vehicle_id is None:
                self.notifier.warning("The invoice's vehicle could not be found. Please select a vehicle.")
            return

        if self.resolver.should_clear_selection(self.state.customer_id, self.state.vehicle_id, vehicles):
            self.state.vehicle_id = None

    # ========================================================================
    # Restoration
    # ========================================================================

    def _inventory_by_id(self) -> Dict[str, InventoryItem]:
        return {item.id: item for item in self.inventory_items}

    def _apply_seed(self, seed: RestorationSeed, invoice_id: str):
        self.state.customer_id = seed.customer_id
        self.state.vehicle_id = None
        self.state.items = []
        self.state.discount_value = seed.discount_value
        self.state.discount_kind = seed.discount_kind
        self.state.payment_method_id = seed.payment_method_id
        self.state.invoice_status = seed.invoice_status
        self.state.notes = seed.notes
        self.state.terms = seed.terms
        self.state.technician = seed.technician
        self.state.supervisor = seed.supervisor
        self.state.persisted_invoice_id = invoice_id

    async def _fetch_invoice(self, invoice_id: str):
        """The record, None when it does not exist, or _FAILED when it could not be read"""
        record = await self._call(self.invoices.get_by_id(invoice_id), "load invoice")
        if record is _FAILED or not self.active:
            return _FAILED
        return record

    async def begin_edit(self, invoice_id: str) -> bool:
        """Load a persisted invoice into the composition for editing"""
        record = await self._fetch_invoice(str(invoice_id))
        if record is _FAILED:
            return False
        if record is None:
            self.notifier.error(f"Invoice {invoice_id} was not found")
            if same_id(self.orchestrator.editing_invoice_id, invoice_id):
                self.orchestrator.end_edit()
            return False

        self.orchestrator.begin_edit(record.id)
        seed = self.resolver.begin_edit(record, self._inventory_by_id())
        self._apply_seed(seed, record.id)
        await self._load_vehicles(seed.customer_id)
        if not seed.customer_id:
            self._on_vehicle_list_loaded(None, [])
        return True

    async def resume_draft(self) -> bool:
        """Restore this session's abandoned draft and re-select its vehicle by id"""
        pointer = self.orchestrator.draft_pointer
        if pointer is None:
            return False
        record = await self._fetch_invoice(pointer.invoice_id)
        if record is _FAILED:
            return False
        if record is None or not record.is_draft:
            # deleted or finalized elsewhere; saves must not target it again
            self.orchestrator.discard_draft_pointer()
            return False

        if pointer.vehicle_id:
            seed = self.resolver.begin_draft_resume(record, pointer.vehicle_id, self._inventory_by_id())
        else:
            # no id remembered; fall back to matching the embedded snapshot
            seed = self.resolver.begin_edit(record, self._inventory_by_id())
        self._apply_seed(seed, record.id)
        await self._load_vehicles(seed.customer_id)
        if not seed.customer_id:
            self._on_vehicle_list_loaded(None, [])
        return True

    # ========================================================================
    # Customer & vehicle selection
    # ========================================================================

    def _manual_selection(self):
        """Manual choices always win over a restoration in flight"""
        if self.resolver.cancel():
            self.state.items = []

    async def select_customer(self, customer_id: Optional[str]):
        self._manual_selection()
        customer_id = str(customer_id) if customer_id else None
        if same_id(customer_id, self.state.customer_id) and self.vehicles_customer_id == customer_id:
            return
        self.state.customer_id = customer_id
        self.state.vehicle_id = None
        self.vehicles = []
        self.vehicles_customer_id = None
        self.resolver.reset_validation()
        await self._load_vehicles(customer_id)

    def select_vehicle(self, vehicle_id: Optional[str]):
        self._manual_selection()
        self.state.vehicle_id = str(vehicle_id) if vehicle_id else None

    @property
    def selected_customer(self) -> Optional[Customer]:
        return next((c for c in self.customers if same_id(c.id, self.state.customer_id)), None)

    @property
    def selected_vehicle(self) -> Optional[Vehicle]:
        if not same_id(self.vehicles_customer_id, self.state.customer_id):
            return None
        return next((v for v in self.vehicles if same_id(v.id, self.state.vehicle_id)), None)

    def _vehicle_snapshot(self):
        vehicle = self.selected_vehicle
        return vehicle.snapshot() if vehicle else None

    # ========================================================================
    # Line items
    # ========================================================================

    def _items_locked(self) -> bool:
        if self.resolver.is_restoring:
            self.notifier.info("Invoice is still loading")
            return True
        return False

    def add_item(self, selection: Optional[Selection] = None, description: str = "", price=None) -> Optional[LineItem]:
        """Add a catalog/inventory selection, or a free-text item; rejections are notified"""
        if self._items_locked():
            return None
        try:
            return self.binder.add(self.state.items, selection, description=description, price=price)
        except LineItemRejected as e:
            self.notifier.warning(e.message)
            return None

    def add_catalog_selection(
        self,
        catalog_ids: Iterable[str] = (),
        inventory_ids: Iterable[str] = ()
    ) -> List[LineItem]:
        """Add several catalog and inventory entries picked together, catalog first"""
        catalog: Dict[str, Selection] = {item.id: item for item in self.catalog_items if item.active}
        inventory: Dict[str, Selection] = {item.id: item for item in self.inventory_items}
        wanted = [("catalog", catalog, str(i)) for i in catalog_ids]
        wanted += [("inventory", inventory, str(i)) for i in inventory_ids]

        added = []
        for kind, lookup, selection_id in wanted:
            selection = lookup.get(selection_id)
            if selection is None:
                logger.warning(f"Selection {selection_id} is not in the {kind}")
                continue
            item = self.add_item(selection)
            if item is not None:
                added.append(item)
        return added

    def filter_catalog(self, query: str = "") -> List[CatalogItem]:
        needle = (query or "").strip().lower()
        return [item for item in self.catalog_items if item.active and needle in item.name.lower()]

    def update_item(self, item_id: str, quantity=None, description: Optional[str] = None, unit_price=None) -> Optional[LineItem]:
        """Edit a line item; quantity is clamped to stock, price needs the pricing capability"""
        if self._items_locked():
            return None
        item = self.state.find_item(item_id)
        if item is None:
            return None
        if unit_price is not None and not self.can_edit_pricing:
            raise PricingLocked()

        if description is not None:
            try:
                self.binder.update_description(self.state.items, item, description)
            except DuplicateItem as e:
                self.notifier.warning(e.message)
        if quantity is not None:
            update = self.binder.update_quantity(item, quantity)
            if update.stock_limit_reached:
                self.notifier.warning(f"Only {item.max_stock} of {item.description} in stock")
        if unit_price is not None:
            self.binder.update_price(item, unit_price)
        return item

    def remove_item(self, item_id: str):
        if self._items_locked():
            return
        self.binder.remove(self.state.items, item_id)

    # ========================================================================
    # Pricing & details
    # ========================================================================

    @property
    def totals(self) -> InvoiceTotals:
        return self.pricing.compute(
            self.state.items,
            self.state.discount_value,
            self.state.discount_kind,
            self.billing.payment_method(self.state.payment_method_id).tax_rate,
        )

    def set_discount(self, value, kind: Optional[DiscountKind] = None):
        if not self.can_edit_pricing:
            raise PricingLocked()
        self.state.discount_value = to_decimal(value)
        if kind is not None:
            self.state.discount_kind = DiscountKind(kind)

    def set_payment_method(self, method_id):
        self.state.payment_method_id = PaymentMethodId(method_id)

    def set_invoice_status(self, status):
        self.state.invoice_status = InvoiceStatus(status)

    def set_notes(self, notes: str):
        self.state.notes = notes or ""

    def set_terms(self, terms: str):
        self.state.terms = terms or ""

    def assign_staff(self, technician: Optional[str] = None, supervisor: Optional[str] = None):
        self.state.technician = technician or None
        self.state.supervisor = supervisor or None

    # ========================================================================
    # Wizard steps
    # ========================================================================

    def next_step(self) -> CompositionStep:
        step = self.state.step
        if step == CompositionStep.CUSTOMER_VEHICLE:
            missing = [name for name, value in (("customer", self.state.customer_id), ("vehicle", self.state.vehicle_id)) if not value]
            if missing:
                raise CompositionValidationError(missing, step=int(step))
        elif step == CompositionStep.ITEMS and not self.state.items:
            raise CompositionValidationError(["at least one item"], step=int(step))
        if step < CompositionStep.STAFF_REVIEW:
            self.state.step = CompositionStep(step + 1)
        return self.state.step

    def previous_step(self) -> CompositionStep:
        if self.state.step > CompositionStep.CUSTOMER_VEHICLE:
            self.state.step = CompositionStep(self.state.step - 1)
        return self.state.step

    # ========================================================================
    # Completion
    # ========================================================================

    async def complete_invoice(self) -> Optional[CompletionResult]:
        """
        Persist the invoice as finished. Paid invoices also get a document.
        Returns None when the save could not happen (already completed,
        already in progress, or a retryable failure that was reported).
        """
        if self.state.completed:
            self.notifier.info("Invoice has already been completed")
            return None
        missing = self.state.missing_for_completion()
        if missing:
            raise CompositionValidationError(missing)

        method = self.billing.payment_method(self.state.payment_method_id)
        payload = build_payload(
            self.state, self.totals, self._vehicle_snapshot(), SaveReason.COMPLETE, payment_label=method.label
        )
        try:
            result = await self._call(self.orchestrator.complete(payload), "save invoice")
        except CompletionInProgress:
            logger.info("Ignoring duplicate completion request")
            return None
        if result is _FAILED:
            return None

        self.state.completed = True
        self.state.persisted_invoice_id = result.invoice.id
        if self.active:
            self.notifier.info(f"Invoice {self.state.invoice_number} saved")

        if result.produce_document:
            await self._render_document(result.invoice, method.label)
        return result

    async def _render_document(self, invoice: PersistedInvoice, payment_label: str):
        if self.renderer is None:
            return
        try:
            await self.renderer.render(invoice, self.selected_customer, self.state.invoice_number, payment_label)
        except Exception as e:
            logger.error(f"Failed to render invoice {invoice.id}: {e}", exc_info=True)
            self.notifier.error("Invoice saved, but the document could not be generated.", retryable=True)

    # ========================================================================
    # View
    # ========================================================================

    def snapshot(self) -> CompositionSnapshot:
        return CompositionSnapshot(
            state=self.state.model_copy(deep=True),
            totals=self.totals,
            restoration=self.resolver.state.value,
            processing=self.orchestrator.processing,
            editing_invoice_id=self.orchestrator.editing_invoice_id,
        )
