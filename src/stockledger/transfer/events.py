"""Domain events for the InventoryTransfer aggregate."""

from protean.fields import DateTime, Identifier, Integer, String, Text

from stockledger.domain import stockledger


@stockledger.event(part_of="InventoryTransfer")
class TransferInitiated:
    """A transfer between two warehouses was requested."""

    __version__ = 1

    transfer_id = Identifier(required=True)
    source_warehouse_id = Identifier(required=True)
    destination_warehouse_id = Identifier(required=True)
    lines = Text(required=True)  # JSON list of {product_id, quantity}
    line_count = Integer(default=0)
    total_quantity = Integer(default=0)
    initiated_by = String(required=True)
    initiated_at = DateTime(required=True)


@stockledger.event(part_of="InventoryTransfer")
class TransferDispatched:
    __version__ = 1

    transfer_id = Identifier(required=True)
    dispatched_at = DateTime(required=True)


@stockledger.event(part_of="InventoryTransfer")
class TransferCompleted:
    """Every line was debited at the source and credited at the destination."""

    __version__ = 1

    transfer_id = Identifier(required=True)
    source_warehouse_id = Identifier(required=True)
    destination_warehouse_id = Identifier(required=True)
    total_quantity = Integer(default=0)
    completed_at = DateTime(required=True)


@stockledger.event(part_of="InventoryTransfer")
class TransferCancelled:
    """The transfer ended without moving stock; any applied legs were reversed."""

    __version__ = 1

    transfer_id = Identifier(required=True)
    reason = String(required=True)
    previous_status = String(required=True)
    cancelled_at = DateTime(required=True)
