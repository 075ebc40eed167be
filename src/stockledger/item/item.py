"""InventoryItem aggregate (CQRS) — projected stock state for one product at one warehouse.

The item is a materialized view of the ledger: its quantity is the fold of
every InventoryTransaction recorded against it. Only the QuantityProjector
calls the mutators below, always inside the item's critical section, so
the snapshot is never written directly by callers.

Status Model:
    ACTIVE ⇄ ON_HOLD ⇄ UNDER_INSPECTION (and ACTIVE ⇄ UNDER_INSPECTION)
    any → DISCONTINUED → ACTIVE (reinstated)
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from stockledger.domain import stockledger
from stockledger.item.events import InventoryItemRegistered, ItemStatusChanged, StockThresholdsUpdated


class ItemStatus(Enum):
    ACTIVE = "Active"
    ON_HOLD = "OnHold"
    UNDER_INSPECTION = "UnderInspection"
    DISCONTINUED = "Discontinued"


_VALID_TRANSITIONS = {
    ItemStatus.ACTIVE: {ItemStatus.ON_HOLD, ItemStatus.UNDER_INSPECTION, ItemStatus.DISCONTINUED},
    ItemStatus.ON_HOLD: {ItemStatus.ACTIVE, ItemStatus.UNDER_INSPECTION, ItemStatus.DISCONTINUED},
    ItemStatus.UNDER_INSPECTION: {ItemStatus.ACTIVE, ItemStatus.ON_HOLD, ItemStatus.DISCONTINUED},
    ItemStatus.DISCONTINUED: {ItemStatus.ACTIVE},
}

DEFAULT_REORDER_POINT = 10


def item_key(product_id, warehouse_id) -> str:
    """Identity of the item tracking ``product_id`` at ``warehouse_id``."""
    product_id, warehouse_id = str(product_id), str(warehouse_id)
    if not product_id or not warehouse_id:
        raise ValidationError({"inventory_item_id": ["Product and warehouse are both required"]})
    if "@" in product_id or "@" in warehouse_id:
        raise ValidationError({"inventory_item_id": ["Product and warehouse ids cannot contain '@'"]})
    return f"{product_id}@{warehouse_id}"


@stockledger.aggregate
class InventoryItem:
    """Current stock of one product at one warehouse, derived from the ledger."""

    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    quantity = Integer(default=0, min_value=0)
    min_stock_level = Integer(default=0, min_value=0)
    max_stock_level = Integer(min_value=0)
    reorder_point = Integer(default=DEFAULT_REORDER_POINT, min_value=0)
    status = String(choices=ItemStatus, default=ItemStatus.ACTIVE.value)
    sequence = Integer(default=0, min_value=0)  # deltas applied so far
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def max_level_not_below_min_level(self):
        if self.max_stock_level is not None and self.max_stock_level < (self.min_stock_level or 0):
            raise ValidationError({"max_stock_level": ["Maximum stock level cannot be below the minimum"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def register(
        cls,
        product_id,
        warehouse_id,
        min_stock_level=0,
        max_stock_level=None,
        reorder_point=DEFAULT_REORDER_POINT,
    ):
        """Start tracking a product at a warehouse with zero stock."""
        now = datetime.now(UTC)
        item = cls(
            id=item_key(product_id, warehouse_id),
            product_id=str(product_id),
            warehouse_id=str(warehouse_id),
            quantity=0,
            min_stock_level=min_stock_level,
            max_stock_level=max_stock_level,
            reorder_point=reorder_point,
            status=ItemStatus.ACTIVE.value,
            sequence=0,
            created_at=now,
            updated_at=now,
        )
        item.raise_(
            InventoryItemRegistered(
                inventory_item_id=str(item.id),
                product_id=item.product_id,
                warehouse_id=item.warehouse_id,
                min_stock_level=min_stock_level,
                max_stock_level=max_stock_level,
                reorder_point=reorder_point,
                registered_at=now,
            )
        )
        return item

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def is_discontinued(self) -> bool:
        return self.status == ItemStatus.DISCONTINUED.value

    def at_or_below_reorder_point(self, quantity=None) -> bool:
        quantity = self.quantity if quantity is None else quantity
        return quantity <= self.reorder_point

    # -------------------------------------------------------------------
    # Quantity (projector only)
    # -------------------------------------------------------------------
    def project_delta(self, delta: int) -> int:
        """Fold one delta into the snapshot and return the new quantity."""
        new_quantity = self.quantity + delta
        if new_quantity < 0:
            raise ValidationError({"quantity": ["Quantity cannot go negative"]})
        with atomic_change(self):
            self.quantity = new_quantity
            self.sequence = self.sequence + 1
            self.updated_at = datetime.now(UTC)
        return new_quantity

    def restore(self, quantity: int, sequence: int) -> None:
        """Overwrite the snapshot with a value rebuilt from the ledger."""
        with atomic_change(self):
            self.quantity = quantity
            self.sequence = max(sequence, self.sequence)
            self.updated_at = datetime.now(UTC)

    # -------------------------------------------------------------------
    # Status and thresholds
    # -------------------------------------------------------------------
    def change_status(self, new_status: str) -> None:
        current = ItemStatus(self.status)
        target = ItemStatus(new_status)
        if target not in _VALID_TRANSITIONS[current]:
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target.value}"]})

        now = datetime.now(UTC)
        self.status = target.value
        self.updated_at = now
        self.raise_(
            ItemStatusChanged(
                inventory_item_id=str(self.id),
                previous_status=current.value,
                new_status=target.value,
                changed_at=now,
            )
        )

    def update_thresholds(self, min_stock_level=None, max_stock_level=None, reorder_point=None) -> None:
        """Update stock thresholds; ``None`` leaves a threshold unchanged."""
        now = datetime.now(UTC)
        with atomic_change(self):
            if min_stock_level is not None:
                self.min_stock_level = min_stock_level
            if max_stock_level is not None:
                self.max_stock_level = max_stock_level
            if reorder_point is not None:
                self.reorder_point = reorder_point
            self.updated_at = now

        self.raise_(
            StockThresholdsUpdated(
                inventory_item_id=str(self.id),
                min_stock_level=self.min_stock_level,
                max_stock_level=self.max_stock_level,
                reorder_point=self.reorder_point,
                updated_at=now,
            )
        )
