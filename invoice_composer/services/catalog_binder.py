"""
Line Item Catalog Binder

Turns catalog and inventory selections into line items on the invoice,
keeping inventory-backed quantities under the stock seen at add time and
refusing to bind the same item twice. Stock itself is only decremented by
the backend when the invoice is persisted.
"""

import logging
from decimal import Decimal
from typing import List, NamedTuple, Optional, Union

from invoice_composer.models import CatalogItem, InventoryItem, LineItem
from invoice_composer.utils.errors import DuplicateItem, MissingPrice, OutOfStock
from invoice_composer.utils.money import to_decimal

logger = logging.getLogger(__name__)

Selection = Union[CatalogItem, InventoryItem]


class QuantityUpdate(NamedTuple):
    item: LineItem
    stock_limit_reached: bool


def parse_quantity(value) -> int:
    """Read a quantity as typed; blanks, zero and junk become 1"""
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        return 1
    return quantity if quantity >= 1 else 1


class LineItemCatalogBinder:
    """Binds selections to line items and enforces stock ceilings"""

    def add(
        self,
        items: List[LineItem],
        selection: Optional[Selection] = None,
        description: str = "",
        price=None
    ) -> LineItem:
        """
        Append a line item for a catalog/inventory selection, or a free-text
        item when no selection is given.

        Raises OutOfStock, MissingPrice or DuplicateItem without touching
        the list.
        """
        if isinstance(selection, InventoryItem):
            if selection.current_stock <= 0:
                raise OutOfStock(selection.name)
            candidate = LineItem.model_construct(
                description=selection.name,
                quantity=1,
                unit_price=to_decimal(selection.sale_price),
                inventory_item_id=selection.id,
                max_stock=selection.current_stock,
                is_inventory_backed=True,
            )
        elif isinstance(selection, CatalogItem):
            candidate = LineItem.model_construct(
                description=selection.name,
                quantity=1,
                unit_price=to_decimal(selection.price),
                catalog_item_id=selection.id,
            )
        else:
            candidate = LineItem.model_construct(
                description=(description or "").strip(),
                quantity=1,
                unit_price=to_decimal(price),
            )

        if candidate.unit_price <= 0:
            raise MissingPrice(candidate.description)

        key = candidate.binding_key()
        if any(existing.binding_key() == key for existing in items):
            raise DuplicateItem(candidate.description)

        item = LineItem(**candidate.model_dump(exclude={"id"}))
        items.append(item)
        logger.debug(f"Bound line item {item.id} ({key[0]}): {item.description}")
        return item

    def update_quantity(self, item: LineItem, new_quantity) -> QuantityUpdate:
        """Set the quantity, clamped to [1, max_stock] for inventory-backed items"""
        quantity = parse_quantity(new_quantity)
        limited = False
        if item.is_inventory_backed and item.max_stock is not None and quantity > item.max_stock:
            quantity = max(item.max_stock, 1)
            limited = True
            logger.info(f"Quantity for {item.description} clamped to stock ceiling {item.max_stock}")
        item.quantity = quantity
        return QuantityUpdate(item=item, stock_limit_reached=limited)

    def update_description(self, items: List[LineItem], item: LineItem, description: str) -> LineItem:
        """Rename an item; free-text items must stay unique by description"""
        description = description or ""
        if item.catalog_item_id is None and item.inventory_item_id is None:
            wanted = description.strip().lower()
            for other in items:
                if other.id != item.id and other.binding_key() == ("description", wanted):
                    raise DuplicateItem(description)
        item.description = description
        return item

    def update_price(self, item: LineItem, price) -> LineItem:
        value = to_decimal(price)
        item.unit_price = value if value > 0 else Decimal("0")
        return item

    def remove(self, items: List[LineItem], item_id: str) -> List[LineItem]:
        items[:] = [item for item in items if item.id != item_id]
        return items
