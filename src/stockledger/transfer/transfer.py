"""InventoryTransfer aggregate (CQRS) — stock moving between two warehouses.

The transfer owns its status only; the stock itself moves through ledger
entries written by the TransactionCoordinator (one debit leg at the source
and one credit leg at the destination per line).

State Machine:
    PENDING → IN_TRANSIT → COMPLETED
    PENDING → COMPLETED
    {PENDING, IN_TRANSIT} → CANCELLED
"""

import json
from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from stockledger.domain import stockledger
from stockledger.transfer.events import (
    TransferCancelled,
    TransferCompleted,
    TransferDispatched,
    TransferInitiated,
)


class TransferStatus(Enum):
    PENDING = "Pending"
    IN_TRANSIT = "InTransit"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


_VALID_TRANSITIONS = {
    TransferStatus.PENDING: {TransferStatus.IN_TRANSIT, TransferStatus.COMPLETED, TransferStatus.CANCELLED},
    TransferStatus.IN_TRANSIT: {TransferStatus.COMPLETED, TransferStatus.CANCELLED},
    TransferStatus.COMPLETED: set(),  # terminal
    TransferStatus.CANCELLED: set(),  # terminal
}


@stockledger.entity(part_of="InventoryTransfer")
class TransferLine:
    """Quantity of one product to move."""

    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@stockledger.aggregate
class InventoryTransfer:
    source_warehouse_id = Identifier(required=True)
    destination_warehouse_id = Identifier(required=True)
    status = String(choices=TransferStatus, default=TransferStatus.PENDING.value)
    lines = HasMany(TransferLine)
    initiated_by = String(required=True, max_length=100)
    notes = String(max_length=500)
    cancellation_reason = String(max_length=1000)
    initiated_at = DateTime()
    dispatched_at = DateTime()
    completed_at = DateTime()
    cancelled_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def initiate(cls, source_warehouse_id, destination_warehouse_id, items: list[dict], initiated_by: str, notes=None):
        """Create a pending transfer of ``items`` ({product_id, quantity} dicts)."""
        if str(source_warehouse_id) == str(destination_warehouse_id):
            raise ValidationError({"destination_warehouse_id": ["Source and destination warehouses must differ"]})
        if not items:
            raise ValidationError({"lines": ["A transfer needs at least one line"]})

        seen = set()
        for item in items:
            product_id = str(item["product_id"])
            if product_id in seen:
                raise ValidationError({"lines": [f"Product {product_id} appears more than once"]})
            seen.add(product_id)

        now = datetime.now(UTC)
        transfer = cls(
            source_warehouse_id=str(source_warehouse_id),
            destination_warehouse_id=str(destination_warehouse_id),
            status=TransferStatus.PENDING.value,
            initiated_by=initiated_by,
            notes=notes,
            initiated_at=now,
        )
        for item in items:
            transfer.add_lines(TransferLine(product_id=str(item["product_id"]), quantity=item["quantity"]))

        lines = [{"product_id": str(line.product_id), "quantity": line.quantity} for line in transfer.lines]
        transfer.raise_(
            TransferInitiated(
                transfer_id=str(transfer.id),
                source_warehouse_id=transfer.source_warehouse_id,
                destination_warehouse_id=transfer.destination_warehouse_id,
                lines=json.dumps(lines),
                line_count=len(lines),
                total_quantity=transfer.total_quantity,
                initiated_by=initiated_by,
                initiated_at=now,
            )
        )
        return transfer

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_open(self) -> bool:
        return TransferStatus(self.status) in (TransferStatus.PENDING, TransferStatus.IN_TRANSIT)

    def _assert_can_transition(self, target_status: TransferStatus) -> None:
        current = TransferStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def dispatch(self) -> None:
        """Mark the goods as having left the source warehouse."""
        self._assert_can_transition(TransferStatus.IN_TRANSIT)
        now = datetime.now(UTC)
        self.status = TransferStatus.IN_TRANSIT.value
        self.dispatched_at = now
        self.raise_(TransferDispatched(transfer_id=str(self.id), dispatched_at=now))

    def mark_completed(self) -> None:
        """Record that both legs of every line are on the ledger."""
        self._assert_can_transition(TransferStatus.COMPLETED)
        now = datetime.now(UTC)
        self.status = TransferStatus.COMPLETED.value
        self.completed_at = now
        self.raise_(
            TransferCompleted(
                transfer_id=str(self.id),
                source_warehouse_id=self.source_warehouse_id,
                destination_warehouse_id=self.destination_warehouse_id,
                total_quantity=self.total_quantity,
                completed_at=now,
            )
        )

    def cancel(self, reason: str) -> None:
        self._assert_can_transition(TransferStatus.CANCELLED)
        previous = self.status
        now = datetime.now(UTC)
        self.status = TransferStatus.CANCELLED.value
        self.cancellation_reason = reason
        self.cancelled_at = now
        self.raise_(
            TransferCancelled(
                transfer_id=str(self.id),
                reason=reason,
                previous_status=previous,
                cancelled_at=now,
            )
        )
