"""Domain events for the InventoryTransaction aggregate.

Both events are raised on the ledger entry itself, so they are persisted
together with the entry they describe and never for an entry that failed to
append.
"""

from protean.fields import DateTime, Identifier, Integer, String

from stockledger.domain import stockledger


@stockledger.event(part_of="InventoryTransaction")
class TransactionRecorded:
    """A quantity change was appended to the ledger."""

    __version__ = 1

    transaction_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    sequence = Integer(default=0)
    transaction_type = String(required=True)
    previous_quantity = Integer(default=0)
    new_quantity = Integer(default=0)
    change_amount = Integer(default=0)
    reorder_point = Integer(default=0)
    reference_id = String()
    reference_type = String()
    performed_by = String(required=True)
    recorded_at = DateTime(required=True)


@stockledger.event(part_of="InventoryTransaction")
class LowStockDetected:
    """The entry left its item at or below the reorder point."""

    __version__ = 1

    transaction_id = Identifier(required=True)
    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    current_quantity = Integer(default=0)
    reorder_point = Integer(default=0)
    detected_at = DateTime(required=True)
