"""
Error taxonomy for invoice composition.

Line-item rejections and validation errors are non-fatal: the controller
reports them and leaves state untouched. Unauthenticated and NetworkFailure
originate in collaborators.
"""

from typing import List, Optional


class InvoiceComposerError(Exception):
    """Base class for every error raised by the composition engine."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class CompositionValidationError(InvoiceComposerError):
    """Customer, vehicle or items missing before a step transition or completion."""

    def __init__(self, missing: List[str], step: Optional[int] = None):
        self.missing = list(missing)
        self.step = step
        super().__init__(f"Please select {' and '.join(self.missing)}")


class PricingLocked(InvoiceComposerError):
    """Price or discount edit attempted without the pricing capability."""

    def __init__(self):
        super().__init__("Only Admin and Supervisor can edit pricing and discounts")


# ============================================================================
# Line item rejections
# ============================================================================

class LineItemRejected(InvoiceComposerError):
    """A catalog/inventory selection could not be bound to a line item."""


class OutOfStock(LineItemRejected):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is out of stock")


class MissingPrice(LineItemRejected):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name or 'Item'} has no price set")


class DuplicateItem(LineItemRejected):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name or 'Item'} is already on this invoice")


# ============================================================================
# Collaborator failures
# ============================================================================

class Unauthenticated(InvoiceComposerError):
    """Credentials expired or missing; handled by the session collaborator."""

    def __init__(self, message: str = "Session expired, please log in again"):
        super().__init__(message)


class NetworkFailure(InvoiceComposerError):
    """A directory or repository call failed in transport. Retryable."""


class PersistenceConflict(InvoiceComposerError):
    """The record to update no longer exists. The engine does not detect concurrent edits."""


class CompletionInProgress(InvoiceComposerError):
    """A second completion was requested while the first is still running."""

    def __init__(self):
        super().__init__("Invoice is already being completed")
