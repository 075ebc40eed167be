"""InventoryTransaction aggregate — one immutable ledger entry.

Every change to an item's quantity is recorded as an entry carrying the
quantity before and after the change. Entries are only ever appended (see
LedgerStore); nothing in the engine updates or deletes them.

Ordering:
    ``sequence`` is the item's delta counter at the moment the change was
    applied, so sorting by it reproduces application order even when two
    appends race.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer, String

from stockledger.domain import stockledger
from stockledger.ledger.events import LowStockDetected, TransactionRecorded


class TransactionType(Enum):
    PURCHASE = "Purchase"
    SALE = "Sale"
    ADJUSTMENT = "Adjustment"
    TRANSFER = "Transfer"
    RETURN = "Return"
    DAMAGED = "Damaged"
    EXPIRED = "Expired"


_INCREASING_TYPES = {TransactionType.PURCHASE, TransactionType.RETURN}
_DECREASING_TYPES = {TransactionType.SALE, TransactionType.DAMAGED, TransactionType.EXPIRED}


def validate_change(transaction_type, change_amount: int) -> TransactionType:
    """Check the sign of ``change_amount`` against what the type allows."""
    try:
        kind = TransactionType(transaction_type.value if isinstance(transaction_type, TransactionType) else transaction_type)
    except ValueError:
        raise ValidationError({"transaction_type": [f"Unknown transaction type: {transaction_type}"]}) from None

    if not isinstance(change_amount, int) or isinstance(change_amount, bool):
        raise ValidationError({"change_amount": ["Change amount must be a whole number"]})
    if change_amount == 0:
        raise ValidationError({"change_amount": ["Change amount cannot be zero"]})
    if kind in _INCREASING_TYPES and change_amount < 0:
        raise ValidationError({"change_amount": [f"{kind.value} must increase stock"]})
    if kind in _DECREASING_TYPES and change_amount > 0:
        raise ValidationError({"change_amount": [f"{kind.value} must decrease stock"]})
    return kind


@dataclass(frozen=True)
class Reference:
    """Opaque link to the document a transaction originates from."""

    reference_id: str
    reference_type: str

    def __post_init__(self):
        if not self.reference_id or not self.reference_type:
            raise ValidationError({"reference": ["Reference needs both an id and a type"]})

    @property
    def is_reversal(self) -> bool:
        return self.reference_type.endswith("Reversal")

    @classmethod
    def order(cls, order_id) -> "Reference":
        return cls(str(order_id), "Order")

    @classmethod
    def transfer(cls, transfer_id) -> "Reference":
        return cls(str(transfer_id), "Transfer")

    @classmethod
    def transfer_reversal(cls, transfer_id) -> "Reference":
        return cls(str(transfer_id), "TransferReversal")


@stockledger.aggregate
class InventoryTransaction:
    """An immutable record of one quantity change."""

    inventory_item_id = Identifier(required=True)
    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    sequence = Integer(required=True, min_value=1)
    transaction_type = String(required=True, max_length=20, choices=TransactionType)
    previous_quantity = Integer(default=0, min_value=0)
    new_quantity = Integer(default=0, min_value=0)
    change_amount = Integer(required=True)
    reference_id = String(max_length=100)
    reference_type = String(max_length=50)
    performed_by = String(required=True, max_length=100)
    reason = String(max_length=500)
    recorded_at = DateTime(required=True)

    @invariant.post
    def new_quantity_follows_change(self):
        if self.new_quantity != self.previous_quantity + self.change_amount:
            raise ValidationError(
                {"new_quantity": ["New quantity must equal previous quantity plus change amount"]}
            )

    @invariant.post
    def reference_is_complete(self):
        if bool(self.reference_id) != bool(self.reference_type):
            raise ValidationError({"reference": ["Reference needs both an id and a type"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def record(
        cls,
        inventory_item_id,
        product_id,
        warehouse_id,
        sequence,
        transaction_type,
        previous_quantity,
        new_quantity,
        performed_by,
        reorder_point=0,
        reference=None,
        reason=None,
    ):
        """Build the ledger entry for a change that has just been applied."""
        change_amount = new_quantity - previous_quantity
        kind = validate_change(transaction_type, change_amount)

        now = datetime.now(UTC)
        txn = cls(
            inventory_item_id=str(inventory_item_id),
            product_id=str(product_id),
            warehouse_id=str(warehouse_id),
            sequence=sequence,
            transaction_type=kind.value,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            change_amount=change_amount,
            reference_id=reference.reference_id if reference else None,
            reference_type=reference.reference_type if reference else None,
            performed_by=performed_by,
            reason=reason,
            recorded_at=now,
        )
        txn.raise_(
            TransactionRecorded(
                transaction_id=str(txn.id),
                inventory_item_id=txn.inventory_item_id,
                product_id=txn.product_id,
                warehouse_id=txn.warehouse_id,
                sequence=sequence,
                transaction_type=kind.value,
                previous_quantity=previous_quantity,
                new_quantity=new_quantity,
                change_amount=change_amount,
                reorder_point=reorder_point,
                reference_id=txn.reference_id,
                reference_type=txn.reference_type,
                performed_by=performed_by,
                recorded_at=now,
            )
        )
        return txn

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @property
    def reference(self) -> Reference | None:
        if not self.reference_id:
            return None
        return Reference(self.reference_id, self.reference_type)

    def flag_low_stock(self, reorder_point: int) -> None:
        """Announce that this entry left its item at or below ``reorder_point``."""
        self.raise_(
            LowStockDetected(
                transaction_id=str(self.id),
                inventory_item_id=self.inventory_item_id,
                product_id=self.product_id,
                warehouse_id=self.warehouse_id,
                current_quantity=self.new_quantity,
                reorder_point=reorder_point,
                detected_at=self.recorded_at,
            )
        )
