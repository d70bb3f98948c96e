"""
Collaborator interfaces consumed by the composition engine.

Transport, document layout, notifications and directory CRUD live outside
the engine. Every call is a coroutine; implementations raise
Unauthenticated for expired credentials and NetworkFailure for transport
errors.
"""

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from invoice_composer.models import (
    BillingSettings,
    CatalogItem,
    Customer,
    InventoryItem,
    PaymentMethodId,
    PersistedInvoice,
    Vehicle,
)
from invoice_composer.utils.config import Settings, settings as default_settings


class CustomerDirectory(ABC):
    """Customer lookup and creation."""

    @abstractmethod
    async def list(self, search: Optional[str] = None) -> List[Customer]:
        pass

    @abstractmethod
    async def get(self, customer_id: str) -> Optional[Customer]:
        pass

    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> Customer:
        pass


class VehicleDirectory(ABC):
    """Vehicle lookup; results are scoped to customer_id when supplied."""

    @abstractmethod
    async def list(self, search: Optional[str] = None, customer_id: Optional[str] = None) -> List[Vehicle]:
        pass

    @abstractmethod
    async def get(self, vehicle_id: str) -> Optional[Vehicle]:
        pass

    @abstractmethod
    async def create(self, fields: Dict[str, Any]) -> Vehicle:
        pass


class CatalogDirectory(ABC):
    @abstractmethod
    async def list(self) -> List[CatalogItem]:
        pass


class InventoryDirectory(ABC):
    @abstractmethod
    async def list(self) -> List[InventoryItem]:
        pass


class InvoiceRepository(ABC):
    """Durable invoice records."""

    @abstractmethod
    async def create(self, payload: Dict[str, Any]) -> PersistedInvoice:
        pass

    @abstractmethod
    async def update(self, invoice_id: str, payload: Dict[str, Any]) -> PersistedInvoice:
        pass

    @abstractmethod
    async def get_by_id(self, invoice_id: str) -> Optional[PersistedInvoice]:
        pass

    @abstractmethod
    async def list(self) -> List[PersistedInvoice]:
        pass


class SettingsProvider(ABC):
    """Tax-rate table and business profile."""

    @abstractmethod
    async def get(self) -> BillingSettings:
        pass


class SessionAuth(ABC):
    """Owns credentials; reacts to expiry (e.g. redirect to login)."""

    @abstractmethod
    def handle_unauthenticated(self, error: Exception) -> None:
        pass


class Notifier(ABC):
    """Transient user-facing notifications."""

    @abstractmethod
    def info(self, message: str) -> None:
        pass

    @abstractmethod
    def warning(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, message: str, retryable: bool = False) -> None:
        pass


class DocumentRenderer(ABC):
    """Produces the invoice document (PDF) for a paid invoice."""

    @abstractmethod
    async def render(
        self,
        invoice: PersistedInvoice,
        customer: Optional[Customer],
        invoice_number: str,
        payment_label: str
    ) -> Any:
        pass


class StaticSettingsProvider(SettingsProvider):
    """Serves the tax table configured through environment settings"""

    def __init__(self, config: Optional[Settings] = None, business_profile: Optional[Dict[str, Any]] = None):
        self.config = config or default_settings
        self.business_profile = business_profile or {}

    async def get(self) -> BillingSettings:
        return BillingSettings(
            tax_rates={
                PaymentMethodId.CASH: Decimal(str(self.config.TAX_RATE_CASH)),
                PaymentMethodId.CARD: Decimal(str(self.config.TAX_RATE_CARD)),
                PaymentMethodId.ONLINE: Decimal(str(self.config.TAX_RATE_ONLINE)),
            },
            business_profile=self.business_profile,
        )


class LoggingNotifier(Notifier):
    """Notifier that only writes to the log; used when no UI sink is wired"""

    def __init__(self, name: str = "invoice_composer.notifications"):
        self.logger = logging.getLogger(name)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str, retryable: bool = False) -> None:
        self.logger.error(f"{message}{' (retryable)' if retryable else ''}")
