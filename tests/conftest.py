"""
Shared fixtures: in-memory collaborators and a controller factory.

Nothing here talks to a database or network; the PostgreSQL adapter has
its own tests that patch the Database helpers.
"""

import asyncio
import os
import sys
from typing import Any, Dict, List, Optional

import pytest

# Add the project root to the Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from invoice_composer.models import CatalogItem, Customer, InventoryItem, PersistedInvoice, Vehicle
from invoice_composer.services.collaborators import (
    CatalogDirectory,
    CustomerDirectory,
    DocumentRenderer,
    InventoryDirectory,
    InvoiceRepository,
    Notifier,
    SessionAuth,
    VehicleDirectory,
)
from invoice_composer.services.composition import CompositionController
from invoice_composer.services.draft_store import DraftStore, reset_draft_store
from invoice_composer.utils.config import Settings


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeCustomerDirectory(CustomerDirectory):
    def __init__(self, customers: List[Customer]):
        self.customers = list(customers)
        self.searches: List[Optional[str]] = []
        self.gates: Dict[Optional[str], asyncio.Event] = {}

    async def list(self, search=None):
        self.searches.append(search)
        if search in self.gates:
            await self.gates[search].wait()
        needle = (search or "").lower()
        return [c for c in self.customers if needle in c.name.lower()]

    async def get(self, customer_id):
        return next((c for c in self.customers if c.id == customer_id), None)

    async def create(self, fields):
        customer = Customer(id=f"c{len(self.customers) + 1}", **fields)
        self.customers.append(customer)
        return customer


class FakeVehicleDirectory(VehicleDirectory):
    """Vehicle lists can be held back per customer with an asyncio.Event"""

    def __init__(self, vehicles: List[Vehicle]):
        self.vehicles = list(vehicles)
        self.gates: Dict[str, asyncio.Event] = {}
        self.fail_with: Optional[Exception] = None
        self.requests: List[Optional[str]] = []

    async def list(self, search=None, customer_id=None):
        self.requests.append(customer_id)
        if customer_id in self.gates:
            await self.gates[customer_id].wait()
        if self.fail_with is not None:
            raise self.fail_with
        return [v for v in self.vehicles if customer_id is None or v.customer_id == customer_id]

    async def get(self, vehicle_id):
        return next((v for v in self.vehicles if v.id == vehicle_id), None)

    async def create(self, fields):
        vehicle = Vehicle(id=f"v{len(self.vehicles) + 1}", **fields)
        self.vehicles.append(vehicle)
        return vehicle


class FakeCatalogDirectory(CatalogDirectory):
    def __init__(self, items: List[CatalogItem]):
        self.items = list(items)

    async def list(self):
        return list(self.items)


class FakeInventoryDirectory(InventoryDirectory):
    def __init__(self, items: List[InventoryItem]):
        self.items = list(items)

    async def list(self):
        return list(self.items)


class FakeInvoiceRepository(InvoiceRepository):
    """Counts creates and updates; writes can be held back or made to fail"""

    def __init__(self):
        self.records: Dict[str, PersistedInvoice] = {}
        self.payloads: List[Dict[str, Any]] = []
        self.creates = 0
        self.updates = 0
        self.gate: Optional[asyncio.Event] = None
        self.fail_with: Optional[Exception] = None
        self._sequence = 0

    def seed(self, record: Dict[str, Any]) -> PersistedInvoice:
        invoice = PersistedInvoice.model_validate(record)
        self.records[invoice.id] = invoice
        return invoice

    async def _write_checkpoint(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with

    async def create(self, payload):
        await self._write_checkpoint()
        self.creates += 1
        self._sequence += 1
        self.payloads.append(payload)
        invoice = PersistedInvoice.model_validate({**payload, "id": f"inv-{self._sequence}"})
        self.records[invoice.id] = invoice
        return invoice

    async def update(self, invoice_id, payload):
        await self._write_checkpoint()
        self.updates += 1
        self.payloads.append(payload)
        invoice = PersistedInvoice.model_validate({**payload, "id": invoice_id})
        self.records[invoice.id] = invoice
        return invoice

    async def get_by_id(self, invoice_id):
        return self.records.get(str(invoice_id))

    async def list(self):
        return list(self.records.values())


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: List[tuple] = []

    def info(self, message):
        self.messages.append(("info", message, False))

    def warning(self, message):
        self.messages.append(("warning", message, False))

    def error(self, message, retryable=False):
        self.messages.append(("error", message, retryable))

    def levels(self, level):
        return [m for m in self.messages if m[0] == level]


class RecordingSessionAuth(SessionAuth):
    def __init__(self):
        self.errors: List[Exception] = []

    def handle_unauthenticated(self, error):
        self.errors.append(error)


class RecordingRenderer(DocumentRenderer):
    def __init__(self):
        self.calls: List[tuple] = []

    async def render(self, invoice, customer, invoice_number, payment_label):
        self.calls.append((invoice, customer, invoice_number, payment_label))
        return b"%PDF"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_draft_store():
    reset_draft_store()
    yield
    reset_draft_store()


@pytest.fixture
def customers():
    return [
        Customer(id="c1", name="Ali Khan", phone="0300-1111111"),
        Customer(id="c2", name="Sara Ahmed", email="sara@example.com"),
    ]


@pytest.fixture
def vehicles():
    return [
        Vehicle(id="v1", customer_id="c1", make="Toyota", model="Corolla", year=2018, plate_no="LEA-1234"),
        Vehicle(id="v2", customer_id="c1", make="Toyota", model="Corolla", year=2020, plate_no="LEB-5678"),
        Vehicle(id="v3", customer_id="c1", make="Honda", model="Civic", year=2019, plate_no="LEC-9999"),
        Vehicle(id="v4", customer_id="c2", make="Suzuki", model="Mehran", year=2012, plate_no="KHI-0001"),
    ]


@pytest.fixture
def catalog():
    return [
        CatalogItem(id="s1", name="Oil Change", price="2500", type="service"),
        CatalogItem(id="s2", name="Wheel Alignment", price="1800", type="service"),
        CatalogItem(id="s3", name="Engine Flush", price="999", type="service", active=False),
        CatalogItem(id="s4", name="Free Inspection", price="0", type="service"),
    ]


@pytest.fixture
def inventory():
    return [
        InventoryItem(id="p1", name="Brake Pads", sale_price="4500", current_stock=3, min_stock=1),
        InventoryItem(id="p2", name="Air Filter", sale_price="1200", current_stock=0, min_stock=2),
    ]


@pytest.fixture
def edit_record():
    """A completed, paid invoice as the backend returns it"""
    return {
        "_id": "inv-7",
        "customer": {"_id": "c1", "name": "Ali Khan"},
        "vehicle": {"make": "Toyota", "model": "Corolla", "year": 2020, "plateNo": "LEB-5678"},
        "items": [
            {"description": "Oil Change", "quantity": 1, "price": 2500, "catalogItemId": "s1"},
            {"description": "Brake Pads", "quantity": 2, "price": 4500, "inventoryItemId": "p1"},
        ],
        "subtotal": 11500,
        "discount": 500,
        "tax": 1980,
        "amount": 12980,
        "status": "Paid",
        "paymentMethod": "Card/POS",
        "technician": "Usman",
        "notes": "Customer waiting",
        "date": "2026-01-05T10:00:00+00:00",
    }


@pytest.fixture
def test_settings():
    return Settings(RESTORE_GRACE_SECONDS=0.0)


@pytest.fixture
def repository():
    return FakeInvoiceRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def session_auth():
    return RecordingSessionAuth()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def draft_store():
    return DraftStore()


@pytest.fixture
def customer_directory(customers):
    return FakeCustomerDirectory(customers)


@pytest.fixture
def vehicle_directory(vehicles):
    return FakeVehicleDirectory(vehicles)


@pytest.fixture
def make_controller(customer_directory, vehicle_directory, catalog, inventory, repository,
                    notifier, session_auth, renderer, draft_store, test_settings):
    """Build controllers that share one set of collaborators and one draft store"""

    def factory(**overrides):
        kwargs = dict(
            customers=customer_directory,
            vehicles=vehicle_directory,
            catalog=FakeCatalogDirectory(catalog),
            inventory=FakeInventoryDirectory(inventory),
            invoices=repository,
            draft_store=draft_store,
            session_key="session-1",
            notifier=notifier,
            session_auth=session_auth,
            renderer=renderer,
            config=test_settings,
        )
        kwargs.update(overrides)
        return CompositionController(**kwargs)

    return factory
