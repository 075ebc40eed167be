"""Reconciler — replays the ledger and compares it with the projection.

The ledger is the source of truth. For every item the reconciler sums the
change amounts of its entries in sequence order and checks the result
against the projected quantity. A mismatch raises an IntegrityAlarm; the
projection is only corrected when an operator calls ``repair``.

In-flight submissions:
    The coordinator commits the projected change before it appends the
    ledger entry, so a pass can catch the projection one or more sequences
    ahead of the ledger. Such a gap is re-read a few times before it is
    reported; only a gap that persists is a divergence.

Chain checks:
    Each entry's ``previous_quantity`` should equal the ``new_quantity`` of
    the entry before it. A break points at an entry written out of order
    or a change that reached the projection without a ledger entry.
"""

import time
from dataclasses import dataclass, field

import structlog
from protean.exceptions import ObjectNotFoundError

from stockledger.config import LedgerSettings
from stockledger.errors import IntegrityViolation, StaleQuantity
from stockledger.ledger.store import LedgerStore
from stockledger.notification import notify
from stockledger.notification.port import NotificationType
from stockledger.projection.projector import QuantityProjector
from stockledger.utils.logging import ledger_context

logger = structlog.get_logger(__name__)

_SETTLE_SECONDS = 0.02


@dataclass(frozen=True)
class ReconciliationReport:
    item_id: str
    ledger_quantity: int
    projected_quantity: int
    entry_count: int
    last_sequence: int = 0
    projected_sequence: int = 0
    chain_breaks: list[int] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        return self.ledger_quantity == self.projected_quantity

    @property
    def awaiting_entries(self) -> bool:
        """The projection has applied changes whose entries are not on the ledger (yet)."""
        return self.projected_sequence > self.last_sequence

    def raise_for_divergence(self) -> None:
        if not self.in_sync:
            raise IntegrityViolation(self.item_id, self.ledger_quantity, self.projected_quantity)


class Reconciler:
    def __init__(
        self,
        ledger: LedgerStore | None = None,
        projector: QuantityProjector | None = None,
        settings: LedgerSettings | None = None,
    ) -> None:
        self.settings = settings or LedgerSettings.from_env()
        self.ledger = ledger or LedgerStore(self.settings)
        self.projector = projector or QuantityProjector()

    def replay(self, item_id: str) -> tuple[int, int, list[int], int]:
        """Rebuild ``item_id``'s quantity from its entries.

        Returns ``(quantity, entry_count, chain_breaks, last_sequence)`` where
        ``chain_breaks`` lists the sequences whose previous quantity did not
        follow on from the entry before.
        """
        quantity = 0
        breaks = []
        last_sequence = 0
        entries = self.ledger.list_for(item_id)
        for txn in entries:
            if txn.previous_quantity != quantity:
                breaks.append(txn.sequence)
            quantity += txn.change_amount
            last_sequence = txn.sequence
        return quantity, len(entries), breaks, last_sequence

    def _read(self, item_id: str) -> ReconciliationReport:
        # Ledger first: every entry on it was projected before it was
        # appended, so the snapshot read afterwards is never behind it.
        ledger_quantity, entry_count, breaks, last_sequence = self.replay(item_id)
        try:
            item = self.projector.get_item(item_id)
            projected, projected_sequence = item.quantity, item.sequence
        except ObjectNotFoundError:
            # Entries without a snapshot: the projection lost the item entirely
            projected, projected_sequence = 0, 0

        return ReconciliationReport(
            item_id=item_id,
            ledger_quantity=ledger_quantity,
            projected_quantity=projected,
            entry_count=entry_count,
            last_sequence=last_sequence,
            projected_sequence=projected_sequence,
            chain_breaks=breaks,
        )

    def reconcile(self, item_id: str) -> ReconciliationReport:
        item_id = str(item_id)
        with ledger_context(inventory_item_id=item_id):
            report = self._read(item_id)
            for attempt in range(1, self.settings.settle_attempts + 1):
                if report.in_sync or not report.awaiting_entries:
                    break
                logger.debug(
                    "Ledger behind projection, waiting for in-flight entries",
                    last_sequence=report.last_sequence,
                    projected_sequence=report.projected_sequence,
                    attempt=attempt,
                )
                time.sleep(_SETTLE_SECONDS * attempt)
                report = self._read(item_id)

            if report.chain_breaks:
                logger.warning("Ledger chain broken", sequences=report.chain_breaks)

            if report.in_sync:
                logger.debug("Item reconciled", quantity=report.projected_quantity)
                return report

            logger.error(
                "Projection diverged from ledger",
                ledger_quantity=report.ledger_quantity,
                projected_quantity=report.projected_quantity,
                last_sequence=report.last_sequence,
                projected_sequence=report.projected_sequence,
            )
        notify(
            NotificationType.INTEGRITY_ALARM.value,
            self.settings.alarm_recipient,
            f"{item_id}: ledger sums to {report.ledger_quantity}, projection holds {report.projected_quantity}",
            {
                "inventory_item_id": item_id,
                "ledger_quantity": report.ledger_quantity,
                "projected_quantity": report.projected_quantity,
                "entry_count": report.entry_count,
            },
        )
        return report

    def reconcile_all(self) -> list[ReconciliationReport]:
        """Reconcile every tracked item."""
        reports = [self.reconcile(item_id) for item_id in self.projector.item_ids(self.settings.page_size)]
        diverged = sum(1 for report in reports if not report.in_sync)
        logger.info("Reconciliation pass finished", items=len(reports), diverged=diverged)
        return reports

    def repair(self, item_id: str, performed_by: str) -> ReconciliationReport:
        """Overwrite the projection with the ledger's value. Operator action.

        Replay and write happen inside the item's critical section, so no
        submission can change the quantity in between. A projection that
        stays ahead of the ledger through every settle attempt has lost its
        entries for good and is overwritten on the last one.
        """
        item_id = str(item_id)

        def rebuild():
            quantity, _, _, last_sequence = self.replay(item_id)
            return quantity, last_sequence

        attempts = self.settings.settle_attempts
        with ledger_context(inventory_item_id=item_id, performed_by=performed_by):
            before = self.projector.current_quantity(item_id)
            for attempt in range(1, attempts + 1):
                try:
                    self.projector.restore_from(item_id, rebuild, force=attempt == attempts)
                    break
                except StaleQuantity:
                    logger.debug("Entries still in flight, repair deferred", attempt=attempt)
                    time.sleep(_SETTLE_SECONDS * attempt)

            report = self._read(item_id)
            logger.warning(
                "Projection repaired from ledger",
                previous_quantity=before,
                restored_quantity=report.ledger_quantity,
            )
        return report
