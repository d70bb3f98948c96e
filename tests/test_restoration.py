"""
Tests for restoring persisted invoices and drafts.
"""

import asyncio
import os
import sys
from decimal import Decimal

import pytest
from pydantic import ValidationError

# Add the project root to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from invoice_composer.models import (
    DiscountKind,
    InventoryItem,
    InvoiceStatus,
    PaymentMethodId,
    PersistedInvoice,
    Vehicle,
    VehicleSnapshot,
)
from invoice_composer.services.restoration import (
    RestorationResolver,
    RestorationState,
    SnapshotTarget,
    VehicleIdTarget,
    map_backend_status,
    normalize_payment_method,
    restore_line_items,
)


@pytest.fixture
def record(edit_record):
    return PersistedInvoice.model_validate(edit_record)


@pytest.fixture
def c1_vehicles(vehicles):
    return [v for v in vehicles if v.customer_id == "c1"]


class TestNormalization:
    """Stored labels and statuses back to composition values"""

    @pytest.mark.parametrize("label,expected", [
        ("Cash", PaymentMethodId.CASH),
        ("Card/POS", PaymentMethodId.CARD),
        ("POS terminal", PaymentMethodId.CARD),
        ("Online Transfer", PaymentMethodId.ONLINE),
        ("bank transfer", PaymentMethodId.ONLINE),
        ("Other", PaymentMethodId.CASH),
        (None, PaymentMethodId.CASH),
    ])
    def test_payment_method_labels(self, label, expected):
        assert normalize_payment_method(label) == expected

    def test_unknown_label_uses_given_default(self):
        assert normalize_payment_method("Cheque", default="online") == PaymentMethodId.ONLINE

    def test_only_paid_restores_as_paid(self):
        assert map_backend_status("Paid") == InvoiceStatus.PAID
        assert map_backend_status("Pending") == InvoiceStatus.UNPAID
        assert map_backend_status("Overdue") == InvoiceStatus.UNPAID
        assert map_backend_status(None) == InvoiceStatus.UNPAID


class TestRestoreLineItems:
    """Line items rebuilt from a stored invoice"""

    def test_quantity_and_price_are_kept(self, record, inventory):
        items = restore_line_items(record, {i.id: i for i in inventory})

        assert [(i.description, i.quantity, i.unit_price) for i in items] == [
            ("Oil Change", 1, Decimal("2500")),
            ("Brake Pads", 2, Decimal("4500")),
        ]

    def test_inventory_ceiling_adds_back_stored_quantity(self, record, inventory):
        """The stored quantity was already taken out of stock"""
        items = restore_line_items(record, {i.id: i for i in inventory})

        brake_pads = items[1]
        assert brake_pads.is_inventory_backed
        assert brake_pads.max_stock == 5

    def test_inventory_ceiling_never_below_stored_quantity(self, record):
        """Stock already consumed by this invoice must not shrink it"""
        low = {"p1": InventoryItem(id="p1", name="Brake Pads", sale_price="4500", current_stock=0)}
        items = restore_line_items(record, low)

        assert items[1].max_stock == 2
        assert items[1].quantity == 2

    def test_missing_inventory_entry(self, record):
        items = restore_line_items(record)

        assert items[1].max_stock == 2


class TestEditRestoration:
    """Restoring a persisted invoice through its vehicle snapshot"""

    def test_seed_from_record(self, record):
        resolver = RestorationResolver()
        seed = resolver.begin_edit(record)

        assert resolver.state == RestorationState.RESTORING
        assert seed.customer_id == "c1"
        assert seed.discount_kind == DiscountKind.FIXED
        assert seed.discount_value == Decimal("500")
        assert seed.payment_method_id == PaymentMethodId.CARD
        assert seed.invoice_status == InvoiceStatus.PAID
        assert seed.technician == "Usman"
        assert seed.notes == "Customer waiting"

    def test_exact_match(self, record, c1_vehicles):
        resolver = RestorationResolver()
        resolver.begin_edit(record)

        outcome = resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert outcome.vehicle_id == "v2"
        assert outcome.strategy == "exact"
        assert len(outcome.items) == 2
        # no running loop: the grace window is skipped
        assert resolver.state == RestorationState.IDLE

    def test_partial_match_takes_first_in_list_order(self, edit_record, c1_vehicles):
        edit_record["vehicle"]["plateNo"] = "NEW-PLATE"
        resolver = RestorationResolver()
        resolver.begin_edit(PersistedInvoice.model_validate(edit_record))

        outcome = resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert outcome.vehicle_id == "v1"
        assert outcome.strategy == "partial"

    def test_match_is_case_and_whitespace_insensitive(self):
        resolver = RestorationResolver()
        vehicles = [Vehicle(id="v9", make=" TOYOTA", model="corolla ", plate_no="lea-1234")]
        snapshot = VehicleSnapshot(make="Toyota", model="Corolla", plate_no="LEA-1234")

        vehicle, strategy = resolver.match_vehicle(snapshot, vehicles)

        assert vehicle.id == "v9"
        assert strategy == "exact"

    def test_empty_plates_match_exactly(self):
        resolver = RestorationResolver()
        vehicles = [Vehicle(id="v9", make="Toyota", model="Corolla", plate_no=None)]

        vehicle, strategy = resolver.match_vehicle(VehicleSnapshot(make="Toyota", model="Corolla"), vehicles)

        assert strategy == "exact"

    def test_no_match_still_restores_items(self, edit_record, c1_vehicles):
        edit_record["vehicle"] = {"make": "Kia", "model": "Sportage", "plateNo": "ISB-1"}
        resolver = RestorationResolver()
        resolver.begin_edit(PersistedInvoice.model_validate(edit_record))

        outcome = resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert outcome.vehicle_id is None
        assert outcome.strategy is None
        assert len(outcome.items) == 2

    def test_list_for_other_customer_is_ignored(self, record, vehicles):
        resolver = RestorationResolver()
        resolver.begin_edit(record)

        assert resolver.on_vehicle_list_loaded("c2", [vehicles[3]]) is None
        assert resolver.is_restoring

    def test_nothing_pending(self, c1_vehicles):
        assert RestorationResolver().on_vehicle_list_loaded("c1", c1_vehicles) is None


class TestDraftResume:
    """Re-selecting a draft's vehicle by id"""

    def test_vehicle_reselected_by_id(self, edit_record, c1_vehicles):
        edit_record["paymentMethod"] = None
        resolver = RestorationResolver()
        resolver.begin_draft_resume(PersistedInvoice.model_validate(edit_record), "v3")

        outcome = resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert outcome.vehicle_id == "v3"
        assert outcome.strategy == "id"

    def test_deleted_vehicle_left_unselected(self, record, c1_vehicles):
        resolver = RestorationResolver()
        resolver.begin_draft_resume(record, "v99")

        outcome = resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert outcome.vehicle_id is None
        assert len(outcome.items) == 2


class TestCancelAndValidation:
    """Manual selection guard and the one-shot validation pass"""

    def test_cancel_drops_pending_target(self, record, c1_vehicles):
        resolver = RestorationResolver()
        resolver.begin_edit(record)

        assert resolver.cancel() is True
        assert resolver.is_idle
        assert resolver.on_vehicle_list_loaded("c1", c1_vehicles) is None

    def test_cancel_when_idle(self):
        assert RestorationResolver().cancel() is False

    def test_validation_clears_missing_vehicle_once(self, c1_vehicles):
        resolver = RestorationResolver()

        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is True
        # later refetches for the same customer are not re-checked
        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is False

        resolver.reset_validation()
        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is True

    def test_validation_keeps_present_vehicle(self, c1_vehicles):
        assert RestorationResolver().should_clear_selection("c1", "v2", c1_vehicles) is False

    def test_validation_skipped_while_restoring(self, record, c1_vehicles):
        resolver = RestorationResolver()
        resolver.begin_edit(record)

        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is False

    def test_restored_selection_counts_as_validated(self, record, c1_vehicles):
        resolver = RestorationResolver()
        resolver.begin_edit(record)
        resolver.on_vehicle_list_loaded("c1", c1_vehicles)

        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is False

    def test_first_list_without_vehicle_uses_up_validation(self, c1_vehicles):
        """A vehicle picked after the first list is a manual choice"""
        resolver = RestorationResolver()

        assert resolver.should_clear_selection("c1", None, c1_vehicles) is False
        assert resolver.should_clear_selection("c1", "v1", []) is False

    def test_no_customer_is_not_validated(self, c1_vehicles):
        resolver = RestorationResolver()

        assert resolver.should_clear_selection(None, None, []) is False
        assert resolver.should_clear_selection("c1", "v4", c1_vehicles) is True


class TestPendingTargets:
    """Pending restoration targets are immutable"""

    def test_targets_are_frozen(self):
        snapshot_target = SnapshotTarget(snapshot=VehicleSnapshot(make="Toyota", model="Corolla", plate_no="LEA-1234"))
        id_target = VehicleIdTarget(vehicle_id="v1")

        with pytest.raises(ValidationError):
            snapshot_target.snapshot = None
        with pytest.raises(ValidationError):
            id_target.vehicle_id = "v2"

    def test_resolver_holds_id_target_for_resume(self, record):
        resolver = RestorationResolver()
        resolver.begin_draft_resume(record, 3)

        assert resolver.pending == VehicleIdTarget(vehicle_id="3")


class TestGraceWindow:
    """RESTORED_COMPLETE returns to IDLE after the grace window"""

    def test_returns_to_idle_after_grace(self, record, c1_vehicles):
        idle_calls = []

        async def scenario():
            resolver = RestorationResolver(grace_seconds=0.01, on_idle=lambda: idle_calls.append(True))
            resolver.begin_edit(record)
            resolver.on_vehicle_list_loaded("c1", c1_vehicles)
            assert resolver.state == RestorationState.RESTORED_COMPLETE
            await asyncio.sleep(0.05)
            return resolver.state

        assert asyncio.run(scenario()) == RestorationState.IDLE
        assert idle_calls == [True]

    def test_cancel_during_grace(self, record, c1_vehicles):
        async def scenario():
            resolver = RestorationResolver(grace_seconds=5)
            resolver.begin_edit(record)
            resolver.on_vehicle_list_loaded("c1", c1_vehicles)
            was_restoring = resolver.cancel()
            return was_restoring, resolver.state

        was_restoring, state = asyncio.run(scenario())

        assert was_restoring is False
        assert state == RestorationState.IDLE
