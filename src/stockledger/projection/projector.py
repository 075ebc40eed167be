"""Quantity projector — the single writer of InventoryItem snapshots.

Every write to an item happens inside that item's critical section and
commits before the section is left, so a read that follows a successful
``apply_delta`` always sees its result. ``apply_delta`` is a
compare-and-swap: the caller states the quantity it based its decision on,
and the change is refused with StaleQuantity if someone else got there
first.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from stockledger.errors import InsufficientStock, StaleQuantity
from stockledger.item.item import DEFAULT_REORDER_POINT, InventoryItem, item_key
from stockledger.utils.locks import KeyedLock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AppliedDelta:
    """Outcome of a successful compare-and-swap."""

    item_id: str
    product_id: str
    warehouse_id: str
    previous_quantity: int
    new_quantity: int
    sequence: int
    reorder_point: int
    status: str


class QuantityProjector:
    def __init__(self) -> None:
        self._locks = KeyedLock()

    @property
    def _repo(self):
        return current_domain.repository_for(InventoryItem)

    # -------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------
    def get_item(self, item_id: str) -> InventoryItem:
        """Return the snapshot for ``item_id``; raises ObjectNotFoundError."""
        return self._repo.get(str(item_id))

    def find_item(self, product_id, warehouse_id) -> InventoryItem | None:
        try:
            return self.get_item(item_key(product_id, warehouse_id))
        except ObjectNotFoundError:
            return None

    def current_quantity(self, item_id: str) -> int:
        return self.get_item(item_id).quantity

    # -------------------------------------------------------------------
    # Compare-and-swap
    # -------------------------------------------------------------------
    def apply_delta(self, item_id: str, delta: int, expected_previous_quantity: int) -> AppliedDelta:
        item_id = str(item_id)
        with self._locks.hold(item_id):
            item = self._repo.get(item_id)
            if item.quantity != expected_previous_quantity:
                raise StaleQuantity(item_id, expected_previous_quantity, item.quantity)
            if item.quantity + delta < 0:
                raise InsufficientStock(item_id, item.quantity, -delta)

            previous = item.quantity
            new_quantity = item.project_delta(delta)
            self._repo.add(item)

            return AppliedDelta(
                item_id=item_id,
                product_id=str(item.product_id),
                warehouse_id=str(item.warehouse_id),
                previous_quantity=previous,
                new_quantity=new_quantity,
                sequence=item.sequence,
                reorder_point=item.reorder_point,
                status=item.status,
            )

    # -------------------------------------------------------------------
    # Snapshot lifecycle
    # -------------------------------------------------------------------
    def register_item(
        self,
        product_id,
        warehouse_id,
        min_stock_level=0,
        max_stock_level=None,
        reorder_point=DEFAULT_REORDER_POINT,
    ) -> InventoryItem:
        """Start tracking a (product, warehouse) pair. Fails if it is already tracked."""
        key = item_key(product_id, warehouse_id)
        with self._locks.hold(key):
            try:
                self._repo.get(key)
            except ObjectNotFoundError:
                item = InventoryItem.register(
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    min_stock_level=min_stock_level,
                    max_stock_level=max_stock_level,
                    reorder_point=reorder_point,
                )
                self._repo.add(item)
                logger.info("Inventory item registered", inventory_item_id=key)
                return item
        raise ValidationError({"inventory_item_id": [f"{key} is already tracked"]})

    def ensure_item(self, product_id, warehouse_id) -> InventoryItem:
        """Return the tracked item, registering it with default thresholds on first reference."""
        key = item_key(product_id, warehouse_id)
        with self._locks.hold(key):
            try:
                return self._repo.get(key)
            except ObjectNotFoundError:
                item = InventoryItem.register(product_id=product_id, warehouse_id=warehouse_id)
                self._repo.add(item)
                logger.info("Inventory item registered on first reference", inventory_item_id=key)
                return item

    def change_status(self, item_id: str, new_status: str) -> InventoryItem:
        with self._locks.hold(str(item_id)):
            item = self._repo.get(str(item_id))
            item.change_status(new_status)
            self._repo.add(item)
        logger.info("Inventory item status changed", inventory_item_id=str(item_id), status=new_status)
        return item

    def update_thresholds(self, item_id: str, min_stock_level=None, max_stock_level=None, reorder_point=None) -> InventoryItem:
        with self._locks.hold(str(item_id)):
            item = self._repo.get(str(item_id))
            item.update_thresholds(
                min_stock_level=min_stock_level,
                max_stock_level=max_stock_level,
                reorder_point=reorder_point,
            )
            self._repo.add(item)
        return item

    def restore(self, item_id: str, quantity: int, sequence: int) -> InventoryItem:
        """Overwrite quantity with a value rebuilt from the ledger (operator repair only)."""
        with self._locks.hold(str(item_id)):
            item = self._repo.get(str(item_id))
            previous = item.quantity
            item.restore(quantity, sequence)
            self._repo.add(item)
        logger.warning(
            "Projected quantity restored from ledger",
            inventory_item_id=str(item_id),
            previous_quantity=previous,
            restored_quantity=quantity,
        )
        return item

    def restore_from(self, item_id: str, rebuild, force: bool = False) -> InventoryItem:
        """Rebuild the quantity with ``rebuild`` and write it, both inside the item's critical section.

        ``rebuild`` returns ``(quantity, last_sequence)`` replayed from the
        ledger. While the snapshot's sequence is ahead of the ledger, a
        submission may still be appending its entry, so a differing quantity
        is refused with StaleQuantity unless ``force`` is set.
        """
        item_id = str(item_id)
        with self._locks.hold(item_id):
            item = self._repo.get(item_id)
            quantity, last_sequence = rebuild()
            previous = item.quantity
            if previous == quantity:
                return item
            if item.sequence > last_sequence and not force:
                raise StaleQuantity(item_id, quantity, previous)

            item.restore(quantity, last_sequence)
            self._repo.add(item)

        logger.warning(
            "Projected quantity restored from ledger",
            inventory_item_id=item_id,
            previous_quantity=previous,
            restored_quantity=quantity,
            forced=force,
        )
        return item

    # -------------------------------------------------------------------
    # Enumeration
    # -------------------------------------------------------------------
    def item_ids(self, page_size: int = 200) -> list[str]:
        """Ids of every tracked item, read page by page."""
        ids = []
        offset = 0
        while True:
            page = self._repo._dao.query.order_by("id").offset(offset).limit(page_size).all().items
            ids.extend(str(item.id) for item in page)
            if len(page) < page_size:
                return ids
            offset += page_size
