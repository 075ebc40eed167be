"""Transaction coordinator — validates and applies one quantity change.

Flow for ``submit``:
    1. Reject a reference that is already on the ledger (idempotent retries).
    2. Read the projected quantity and reject changes that would go negative.
    3. Compare-and-swap the new quantity into the projection; on a lost race
       re-read and try again, up to ``max_submit_attempts``.
    4. Append the ledger entry. Append failures are retried; if the entry
       still cannot be written, the projection is rolled back with the
       inverse delta so the two never stay apart.
    5. Notify the low-stock collaborator when the item ends at or below its
       reorder point.
"""

import time

import structlog
from protean.exceptions import ValidationError

from stockledger.config import LedgerSettings
from stockledger.errors import (
    ConcurrentUpdateConflict,
    DuplicateReference,
    InsufficientStock,
    StaleQuantity,
    StorageUnavailable,
)
from stockledger.item.item import item_key
from stockledger.ledger.store import LedgerStore
from stockledger.ledger.transaction import InventoryTransaction, Reference, validate_change
from stockledger.notification import notify
from stockledger.notification.port import NotificationType
from stockledger.projection.projector import AppliedDelta, QuantityProjector
from stockledger.utils.logging import ledger_context

logger = structlog.get_logger(__name__)

_APPEND_BACKOFF_SECONDS = 0.01


class TransactionCoordinator:
    def __init__(
        self,
        ledger: LedgerStore | None = None,
        projector: QuantityProjector | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        self.settings = settings or LedgerSettings.from_env()
        self.ledger = ledger or LedgerStore(self.settings)
        self.projector = projector or QuantityProjector()

    def submit(
        self,
        item_id: str,
        transaction_type,
        delta: int,
        performed_by: str,
        reference: Reference | None = None,
        reason: str | None = None,
    ) -> InventoryTransaction:
        """Apply ``delta`` to ``item_id`` and record it on the ledger."""
        item_id = str(item_id)
        reference_id = reference.reference_id if reference is not None else None
        with ledger_context(inventory_item_id=item_id, reference_id=reference_id):
            return self._submit(item_id, transaction_type, delta, performed_by, reference, reason)

    def _submit(self, item_id, transaction_type, delta, performed_by, reference, reason) -> InventoryTransaction:
        kind = validate_change(transaction_type, delta)
        if not performed_by:
            raise ValidationError({"performed_by": ["Performer is required"]})

        if reference is not None:
            existing = self.ledger.find_by_reference(
                item_id, reference.reference_id, reference.reference_type, kind.value
            )
            if existing is not None:
                raise DuplicateReference(item_id, reference.reference_id, reference.reference_type, kind.value)

        # Reversals hand stock back to where it came from, discontinued or not
        accepts_new_stock = reference is not None and reference.is_reversal
        applied = self._apply(item_id, delta, accepts_new_stock)

        txn = InventoryTransaction.record(
            inventory_item_id=item_id,
            product_id=applied.product_id,
            warehouse_id=applied.warehouse_id,
            sequence=applied.sequence,
            transaction_type=kind,
            previous_quantity=applied.previous_quantity,
            new_quantity=applied.new_quantity,
            performed_by=performed_by,
            reorder_point=applied.reorder_point,
            reference=reference,
            reason=reason,
        )
        low_stock = applied.new_quantity <= applied.reorder_point
        if low_stock:
            txn.flag_low_stock(applied.reorder_point)

        try:
            self._append(txn)
        except (StorageUnavailable, DuplicateReference):
            self._roll_back(applied)
            raise

        logger.info(
            "Inventory transaction recorded",
            inventory_item_id=item_id,
            transaction_type=kind.value,
            change_amount=delta,
            new_quantity=applied.new_quantity,
            transaction_id=str(txn.id),
        )

        if low_stock:
            notify(
                NotificationType.LOW_STOCK.value,
                self.settings.low_stock_recipient,
                f"Stock for {applied.product_id} at {applied.warehouse_id} is down to {applied.new_quantity}",
                {
                    "inventory_item_id": item_id,
                    "product_id": applied.product_id,
                    "warehouse_id": applied.warehouse_id,
                    "quantity": applied.new_quantity,
                    "reorder_point": applied.reorder_point,
                    "transaction_id": str(txn.id),
                },
            )
        return txn

    def submit_for(
        self,
        product_id,
        warehouse_id,
        transaction_type,
        delta: int,
        performed_by: str,
        reference: Reference | None = None,
        reason: str | None = None,
    ) -> InventoryTransaction:
        """Like ``submit``, addressing the item by product and warehouse.

        A stock increase starts tracking an unknown pair; a decrease on an
        unknown pair fails without creating anything.
        """
        validate_change(transaction_type, delta)
        if delta > 0:
            item = self.projector.ensure_item(product_id, warehouse_id)
        else:
            item = self.projector.find_item(product_id, warehouse_id)
            if item is None:
                raise InsufficientStock(item_key(product_id, warehouse_id), 0, -delta)
        return self.submit(str(item.id), transaction_type, delta, performed_by, reference=reference, reason=reason)

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    def _apply(self, item_id: str, delta: int, accepts_new_stock: bool = False) -> AppliedDelta:
        attempts = self.settings.max_submit_attempts
        for attempt in range(1, attempts + 1):
            item = self.projector.get_item(item_id)
            if delta > 0 and item.is_discontinued and not accepts_new_stock:
                raise ValidationError({"status": [f"{item_id} is discontinued and cannot take new stock"]})

            current = item.quantity
            if current + delta < 0:
                logger.info(
                    "Transaction rejected for insufficient stock",
                    inventory_item_id=item_id,
                    available=current,
                    requested=-delta,
                )
                raise InsufficientStock(item_id, current, -delta)

            try:
                return self.projector.apply_delta(item_id, delta, current)
            except StaleQuantity as exc:
                logger.debug(
                    "Quantity moved underneath, retrying",
                    inventory_item_id=item_id,
                    attempt=attempt,
                    expected=exc.expected,
                    actual=exc.actual,
                )

        logger.warning("Giving up after repeated conflicts", inventory_item_id=item_id, attempts=attempts)
        raise ConcurrentUpdateConflict(item_id, attempts)

    def _append(self, txn: InventoryTransaction) -> None:
        attempts = self.settings.append_attempts
        for attempt in range(1, attempts + 1):
            try:
                self.ledger.append(txn)
                return
            except StorageUnavailable:
                if attempt == attempts:
                    raise
                logger.warning(
                    "Ledger append failed, retrying",
                    inventory_item_id=txn.inventory_item_id,
                    attempt=attempt,
                )
                time.sleep(_APPEND_BACKOFF_SECONDS * attempt)

    def _roll_back(self, applied: AppliedDelta) -> None:
        """Undo a projected change whose ledger entry could not be written."""
        inverse = applied.previous_quantity - applied.new_quantity
        attempts = self.settings.max_submit_attempts * 3
        for _ in range(attempts):
            current = self.projector.current_quantity(applied.item_id)
            try:
                self.projector.apply_delta(applied.item_id, inverse, current)
            except StaleQuantity:
                continue
            except InsufficientStock:
                break
            logger.warning(
                "Projected change rolled back after failed append",
                inventory_item_id=applied.item_id,
                change_amount=-inverse,
            )
            return

        # Left for the reconciliation pass to report
        logger.error(
            "Projection diverged from ledger: rollback failed",
            inventory_item_id=applied.item_id,
            unrecorded_change=-inverse,
        )
