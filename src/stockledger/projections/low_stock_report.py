"""Low stock report — items at or below their reorder point for purchasing alerts."""

from protean.core.projector import on
from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Identifier, Integer
from protean.utils.globals import current_domain

from stockledger.domain import stockledger
from stockledger.ledger.events import LowStockDetected, TransactionRecorded
from stockledger.ledger.transaction import InventoryTransaction


@stockledger.projection
class LowStockReport:
    inventory_item_id = Identifier(identifier=True, required=True)
    product_id = Identifier(required=True)
    warehouse_id = Identifier(required=True)
    current_quantity = Integer(default=0)
    reorder_point = Integer(default=0)
    is_critical = Boolean(default=False)  # quantity == 0
    detected_at = DateTime()


@stockledger.projector(projector_for=LowStockReport, aggregates=[InventoryTransaction])
class LowStockReportProjector:
    @on(LowStockDetected)
    def on_low_stock_detected(self, event):
        repo = current_domain.repository_for(LowStockReport)
        try:
            report = repo.get(event.inventory_item_id)
            report.current_quantity = event.current_quantity
            report.reorder_point = event.reorder_point
            report.is_critical = event.current_quantity == 0
            report.detected_at = event.detected_at
        except ObjectNotFoundError:
            report = LowStockReport(
                inventory_item_id=event.inventory_item_id,
                product_id=event.product_id,
                warehouse_id=event.warehouse_id,
                current_quantity=event.current_quantity,
                reorder_point=event.reorder_point,
                is_critical=event.current_quantity == 0,
                detected_at=event.detected_at,
            )
        repo.add(report)

    @on(TransactionRecorded)
    def on_transaction_recorded(self, event):
        """Drop the item from the report once stock is back above its reorder point."""
        repo = current_domain.repository_for(LowStockReport)
        try:
            report = repo.get(event.inventory_item_id)
        except ObjectNotFoundError:
            return  # Not in the report

        if event.new_quantity > event.reorder_point:
            repo._dao.delete(report)
        else:
            report.current_quantity = event.new_quantity
            report.is_critical = event.new_quantity == 0
            repo.add(report)
