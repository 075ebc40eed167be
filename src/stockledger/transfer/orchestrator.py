"""Transfer orchestrator — moves stock between warehouses as a saga.

``complete`` drives, per line, a debit at the source followed by a credit
at the destination, both referencing ``(transfer_id, "Transfer")``. When any
leg fails, every leg already applied is reversed with entries referencing
``(transfer_id, "TransferReversal")`` and the transfer is cancelled, so stock
is never left logically removed from the system.

Which legs are applied is read back from the ledger rather than remembered,
which makes ``complete`` and ``cancel`` safe to re-run after a crash: a leg
that meets DuplicateReference was already applied by an earlier attempt.
"""

import structlog
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from stockledger.config import LedgerSettings
from stockledger.coordinator.coordinator import TransactionCoordinator
from stockledger.errors import DuplicateReference, LedgerError
from stockledger.item.item import item_key
from stockledger.ledger.transaction import Reference, TransactionType
from stockledger.notification import notify
from stockledger.notification.port import NotificationType
from stockledger.transfer.transfer import InventoryTransfer
from stockledger.utils.locks import KeyedLock
from stockledger.utils.logging import ledger_context

logger = structlog.get_logger(__name__)

_LEG_FAILURES = (LedgerError, ValidationError)


class TransferOrchestrator:
    def __init__(
        self,
        coordinator: TransactionCoordinator | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        self.settings = settings or LedgerSettings.from_env()
        self.coordinator = coordinator or TransactionCoordinator(settings=self.settings)
        self._locks = KeyedLock()

    @property
    def _repo(self):
        return current_domain.repository_for(InventoryTransfer)

    @property
    def ledger(self):
        return self.coordinator.ledger

    def get(self, transfer_id) -> InventoryTransfer:
        return self._repo.get(str(transfer_id))

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def initiate(
        self,
        source_warehouse_id,
        destination_warehouse_id,
        items: list[dict],
        performed_by: str,
        notes: str | None = None,
    ) -> InventoryTransfer:
        """Record a pending transfer. No stock moves until ``complete``."""
        transfer = InventoryTransfer.initiate(
            source_warehouse_id=source_warehouse_id,
            destination_warehouse_id=destination_warehouse_id,
            items=items,
            initiated_by=performed_by,
            notes=notes,
        )
        self._repo.add(transfer)
        logger.info(
            "Transfer initiated",
            transfer_id=str(transfer.id),
            source_warehouse_id=transfer.source_warehouse_id,
            destination_warehouse_id=transfer.destination_warehouse_id,
            total_quantity=transfer.total_quantity,
        )
        return transfer

    def dispatch(self, transfer_id) -> InventoryTransfer:
        with self._locks.hold(str(transfer_id)):
            transfer = self.get(transfer_id)
            transfer.dispatch()
            self._repo.add(transfer)
        logger.info("Transfer dispatched", transfer_id=str(transfer_id))
        return transfer

    def complete(self, transfer_id) -> InventoryTransfer:
        """Apply both legs of every line, or none of them.

        Returns the transfer in Completed state, or in Cancelled state with
        ``cancellation_reason`` set when a leg failed and was compensated.
        """
        transfer_id = str(transfer_id)
        with self._locks.hold(transfer_id), ledger_context(transfer_id=transfer_id):
            transfer = self.get(transfer_id)
            if not transfer.is_open:
                raise ValidationError({"status": [f"Cannot complete a transfer in {transfer.status} state"]})

            if self.ledger.list_by_reference(transfer_id, Reference.transfer_reversal(transfer_id).reference_type):
                return self._abort(transfer, "Compensation of an earlier attempt was interrupted")

            reference = Reference.transfer(transfer_id)
            for line in transfer.lines:
                try:
                    self._apply_leg(transfer, transfer.source_warehouse_id, line, -line.quantity, reference)
                    self._apply_leg(transfer, transfer.destination_warehouse_id, line, line.quantity, reference)
                except _LEG_FAILURES as exc:
                    logger.warning("Transfer leg failed", product_id=str(line.product_id), error=str(exc))
                    return self._abort(transfer, f"Leg for product {line.product_id} failed: {exc}")

            transfer.mark_completed()
            self._repo.add(transfer)

        logger.info("Transfer completed", transfer_id=transfer_id, total_quantity=transfer.total_quantity)
        notify(
            NotificationType.TRANSFER_COMPLETED.value,
            transfer.initiated_by,
            f"Transfer {transfer_id} completed",
            {
                "transfer_id": transfer_id,
                "status": transfer.status,
                "source_warehouse_id": transfer.source_warehouse_id,
                "destination_warehouse_id": transfer.destination_warehouse_id,
                "total_quantity": transfer.total_quantity,
            },
        )
        return transfer

    def cancel(self, transfer_id, reason: str) -> InventoryTransfer:
        """Cancel an open transfer, reversing any legs an interrupted ``complete`` left behind."""
        if not reason:
            raise ValidationError({"reason": ["A cancellation reason is required"]})
        transfer_id = str(transfer_id)
        with self._locks.hold(transfer_id), ledger_context(transfer_id=transfer_id):
            transfer = self.get(transfer_id)
            if not transfer.is_open:
                raise ValidationError({"status": [f"Cannot cancel a transfer in {transfer.status} state"]})
            return self._abort(transfer, reason)

    # -------------------------------------------------------------------
    # Legs and compensation
    # -------------------------------------------------------------------
    def _apply_leg(self, transfer, warehouse_id, line, delta: int, reference: Reference) -> None:
        try:
            self.coordinator.submit_for(
                line.product_id,
                warehouse_id,
                TransactionType.TRANSFER,
                delta,
                performed_by=transfer.initiated_by,
                reference=reference,
                reason=f"{reference.reference_type} {transfer.id}",
            )
        except DuplicateReference:
            logger.info(
                "Transfer leg already on the ledger",
                product_id=str(line.product_id),
                warehouse_id=str(warehouse_id),
                reference_type=reference.reference_type,
            )

    def _applied_legs(self, transfer_id: str, reference_type: str) -> set[str]:
        return {txn.inventory_item_id for txn in self.ledger.list_by_reference(transfer_id, reference_type)}

    def _compensate(self, transfer: InventoryTransfer) -> list[str]:
        """Reverse every applied, not yet reversed leg. Returns what could not be reversed."""
        transfer_id = str(transfer.id)
        reversal = Reference.transfer_reversal(transfer_id)
        applied = self._applied_legs(transfer_id, Reference.transfer(transfer_id).reference_type)
        reversed_ = self._applied_legs(transfer_id, reversal.reference_type)

        failures = []
        for line in transfer.lines:
            source = item_key(line.product_id, transfer.source_warehouse_id)
            destination = item_key(line.product_id, transfer.destination_warehouse_id)

            # Take the stock back out of the destination first; if it is
            # already gone the source debit must stand.
            if destination in applied and destination not in reversed_:
                try:
                    self._apply_leg(transfer, transfer.destination_warehouse_id, line, -line.quantity, reversal)
                except _LEG_FAILURES as exc:
                    failures.append(f"{line.product_id}: destination credit not reversed ({exc})")
                    continue

            if source in applied and source not in reversed_:
                try:
                    self._apply_leg(transfer, transfer.source_warehouse_id, line, line.quantity, reversal)
                except _LEG_FAILURES as exc:
                    failures.append(f"{line.product_id}: source debit not reversed ({exc})")

        return failures

    def _abort(self, transfer: InventoryTransfer, reason: str) -> InventoryTransfer:
        transfer_id = str(transfer.id)
        failures = self._compensate(transfer)
        if failures:
            reason = f"{reason}; compensation incomplete: {'; '.join(failures)}"
            logger.error("Transfer compensation incomplete", failures=failures)
            notify(
                NotificationType.INTEGRITY_ALARM.value,
                self.settings.alarm_recipient,
                f"Transfer {transfer_id} could not be fully reversed",
                {"transfer_id": transfer_id, "failures": failures},
            )

        transfer.cancel(reason)
        self._repo.add(transfer)

        logger.warning("Transfer cancelled", reason=reason)
        notify(
            NotificationType.TRANSFER_CANCELLED.value,
            transfer.initiated_by,
            f"Transfer {transfer_id} cancelled",
            {"transfer_id": transfer_id, "status": transfer.status, "reason": reason},
        )
        return transfer
