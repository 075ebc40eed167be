"""Ledger store — append-only persistence of InventoryTransaction entries.

The store is the source of truth for quantity history. It refuses to record
the same (item, reference, transaction type) twice, which makes retried
submissions idempotent, and it refuses to re-append an entry that already
exists, which keeps entries immutable.
"""

from datetime import UTC, datetime

import structlog
from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain
from sqlalchemy.exc import IntegrityError, OperationalError

from stockledger.config import LedgerSettings
from stockledger.domain import stockledger
from stockledger.errors import DuplicateReference, StorageUnavailable
from stockledger.ledger.transaction import InventoryTransaction
from stockledger.utils.locks import KeyedLock

logger = structlog.get_logger(__name__)

# Driver-level failures that mean "try again later"
_STORAGE_ERRORS = (ConnectionError, TimeoutError, OperationalError)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)


@stockledger.repository(part_of=InventoryTransaction)
class InventoryTransactionRepository:
    """Query helpers over the ledger table. Results are paged to ``page_size``."""

    def _collect(self, page_size: int, **filters) -> list[InventoryTransaction]:
        entries = []
        offset = 0
        while True:
            query = self._dao.query.filter(**filters) if filters else self._dao.query
            # A stable order keeps pages from overlapping or skipping rows
            page = query.order_by("id").offset(offset).limit(page_size).all().items
            entries.extend(page)
            if len(page) < page_size:
                return entries
            offset += page_size

    def for_item(self, inventory_item_id: str, page_size: int) -> list[InventoryTransaction]:
        entries = self._collect(page_size, inventory_item_id=inventory_item_id)
        return sorted(entries, key=lambda txn: txn.sequence)

    def for_reference(self, reference_id: str, reference_type: str, page_size: int) -> list[InventoryTransaction]:
        entries = self._collect(page_size, reference_id=reference_id, reference_type=reference_type)
        return sorted(entries, key=lambda txn: (txn.recorded_at, txn.sequence))


class LedgerStore:
    """Append-only facade over the ledger repository."""

    def __init__(self, settings: LedgerSettings | None = None) -> None:
        self.settings = settings or LedgerSettings.from_env()
        # Serializes the duplicate check with the insert per item. SQL
        # deployments also carry a unique index on the same columns
        # (see utils.db), which catches writers in other processes.
        self._append_locks = KeyedLock()

    @property
    def _repo(self) -> InventoryTransactionRepository:
        return current_domain.repository_for(InventoryTransaction)

    def append(self, transaction: InventoryTransaction) -> str:
        """Durably record ``transaction`` and return its id."""
        with self._append_locks.hold(transaction.inventory_item_id):
            try:
                self._repo.get(transaction.id)
            except ObjectNotFoundError:
                pass
            except _STORAGE_ERRORS as exc:
                raise StorageUnavailable(str(exc)) from exc
            else:
                raise ValueError(f"Ledger entry {transaction.id} already exists and cannot be rewritten")

            if transaction.reference_id:
                existing = self.find_by_reference(
                    transaction.inventory_item_id,
                    transaction.reference_id,
                    transaction.reference_type,
                    transaction.transaction_type,
                )
                if existing is not None:
                    raise DuplicateReference(
                        transaction.inventory_item_id,
                        transaction.reference_id,
                        transaction.reference_type,
                        transaction.transaction_type,
                    )

            try:
                self._repo.add(transaction)
            except IntegrityError as exc:
                logger.warning(
                    "Ledger append refused by unique index",
                    inventory_item_id=transaction.inventory_item_id,
                    reference_id=transaction.reference_id,
                )
                raise DuplicateReference(
                    transaction.inventory_item_id,
                    transaction.reference_id,
                    transaction.reference_type,
                    transaction.transaction_type,
                ) from exc
            except _STORAGE_ERRORS as exc:
                logger.warning(
                    "Ledger append failed",
                    inventory_item_id=transaction.inventory_item_id,
                    transaction_id=str(transaction.id),
                    error=str(exc),
                )
                raise StorageUnavailable(str(exc)) from exc

        logger.debug(
            "Ledger entry appended",
            inventory_item_id=transaction.inventory_item_id,
            transaction_id=str(transaction.id),
            sequence=transaction.sequence,
            change_amount=transaction.change_amount,
        )
        return str(transaction.id)

    def list_for(self, item_id: str, since: datetime | None = None) -> list[InventoryTransaction]:
        """Entries for ``item_id`` in application order, optionally from ``since`` onwards."""
        try:
            entries = self._repo.for_item(str(item_id), self.settings.page_size)
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable(str(exc)) from exc
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=UTC)
            entries = [txn for txn in entries if _aware(txn.recorded_at) >= since]
        return entries

    def find_by_reference(self, item_id, reference_id, reference_type, transaction_type) -> InventoryTransaction | None:
        for txn in self.list_by_reference(reference_id, reference_type):
            if txn.inventory_item_id == str(item_id) and txn.transaction_type == transaction_type:
                return txn
        return None

    def list_by_reference(self, reference_id, reference_type) -> list[InventoryTransaction]:
        try:
            return self._repo.for_reference(str(reference_id), reference_type, self.settings.page_size)
        except _STORAGE_ERRORS as exc:
            raise StorageUnavailable(str(exc)) from exc

