"""Transfer initiation — command and handler.

Only initiation goes through a command: it writes the transfer aggregate and
nothing else. Completing a transfer moves stock through the coordinator,
whose writes must commit inside each item's critical section, so that step
is called on the orchestrator directly.
"""

import json

from protean import handle
from protean.fields import Identifier, String, Text

from stockledger.domain import stockledger
from stockledger.transfer.transfer import InventoryTransfer


@stockledger.command(part_of="InventoryTransfer")
class InitiateTransfer:
    """Request stock to move from one warehouse to another."""

    source_warehouse_id = Identifier(required=True)
    destination_warehouse_id = Identifier(required=True)
    lines = Text(required=True)  # JSON list of {product_id, quantity}
    initiated_by = String(required=True, max_length=100)
    notes = String(max_length=500)


@stockledger.command_handler(part_of=InventoryTransfer)
class InitiateTransferHandler:
    @handle(InitiateTransfer)
    def initiate_transfer(self, command):
        from stockledger.services import get_orchestrator

        transfer = get_orchestrator().initiate(
            source_warehouse_id=command.source_warehouse_id,
            destination_warehouse_id=command.destination_warehouse_id,
            items=json.loads(command.lines),
            performed_by=command.initiated_by,
            notes=command.notes,
        )
        return str(transfer.id)
