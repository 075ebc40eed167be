"""Domain events for the InventoryItem aggregate.

Quantity changes are not announced here: the ledger entry is the record of
every change (see stockledger.ledger.events).
"""

from protean.fields import DateTime, Identifier, Integer, String

from stockledger.domain import stockledger


@stockledger.event(part_of="InventoryItem")
class InventoryItemRegistered:
    """A (product, warehouse) pair started being tracked."""

    __version__ = 1

    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    min_stock_level = Integer(default=0)
    max_stock_level = Integer()
    reorder_point = Integer(default=0)
    registered_at = DateTime(required=True)


@stockledger.event(part_of="InventoryItem")
class ItemStatusChanged:
    __version__ = 1

    inventory_item_id = Identifier(required=True)
    previous_status = String(required=True)
    new_status = String(required=True)
    changed_at = DateTime(required=True)


@stockledger.event(part_of="InventoryItem")
class StockThresholdsUpdated:
    __version__ = 1

    inventory_item_id = Identifier(required=True)
    min_stock_level = Integer(default=0)
    max_stock_level = Integer()
    reorder_point = Integer(default=0)
    updated_at = DateTime(required=True)
