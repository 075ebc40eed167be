"""Transfer status — one row per transfer for tracking screens and operators."""

from protean.core.projector import on
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from stockledger.domain import stockledger
from stockledger.transfer.events import (
    TransferCancelled,
    TransferCompleted,
    TransferDispatched,
    TransferInitiated,
)
from stockledger.transfer.transfer import InventoryTransfer, TransferStatus


@stockledger.projection
class TransferStatusView:
    transfer_id = Identifier(identifier=True, required=True)
    source_warehouse_id = Identifier(required=True)
    destination_warehouse_id = Identifier(required=True)
    status = String(required=True)
    line_count = Integer(default=0)
    total_quantity = Integer(default=0)
    initiated_by = String()
    cancellation_reason = String(max_length=1000)
    initiated_at = DateTime()
    updated_at = DateTime()


@stockledger.projector(projector_for=TransferStatusView, aggregates=[InventoryTransfer])
class TransferStatusProjector:
    @on(TransferInitiated)
    def on_transfer_initiated(self, event):
        current_domain.repository_for(TransferStatusView).add(
            TransferStatusView(
                transfer_id=event.transfer_id,
                source_warehouse_id=event.source_warehouse_id,
                destination_warehouse_id=event.destination_warehouse_id,
                status=TransferStatus.PENDING.value,
                line_count=event.line_count,
                total_quantity=event.total_quantity,
                initiated_by=event.initiated_by,
                initiated_at=event.initiated_at,
                updated_at=event.initiated_at,
            )
        )

    @on(TransferDispatched)
    def on_transfer_dispatched(self, event):
        repo = current_domain.repository_for(TransferStatusView)
        view = repo.get(event.transfer_id)
        view.status = TransferStatus.IN_TRANSIT.value
        view.updated_at = event.dispatched_at
        repo.add(view)

    @on(TransferCompleted)
    def on_transfer_completed(self, event):
        repo = current_domain.repository_for(TransferStatusView)
        view = repo.get(event.transfer_id)
        view.status = TransferStatus.COMPLETED.value
        view.updated_at = event.completed_at
        repo.add(view)

    @on(TransferCancelled)
    def on_transfer_cancelled(self, event):
        repo = current_domain.repository_for(TransferStatusView)
        view = repo.get(event.transfer_id)
        view.status = TransferStatus.CANCELLED.value
        view.cancellation_reason = event.reason
        view.updated_at = event.cancelled_at
        repo.add(view)
