"""Application tests for the transaction coordinator."""

import threading

import pytest
from protean.exceptions import ValidationError
from stockledger.config import LedgerSettings
from stockledger.coordinator.coordinator import TransactionCoordinator
from stockledger.domain import stockledger
from stockledger.errors import (
    ConcurrentUpdateConflict,
    DuplicateReference,
    InsufficientStock,
    StaleQuantity,
    StorageUnavailable,
)
from stockledger.item.item import ItemStatus
from stockledger.ledger.store import LedgerStore
from stockledger.ledger.transaction import Reference, TransactionType
from stockledger.notification.port import NotificationType
from stockledger.projection.projector import QuantityProjector

ITEM = "prod-001@wh-001"


@pytest.fixture()
def stocked(coordinator):
    """Item holding 10 units, reorder point 2."""
    coordinator.projector.register_item("prod-001", "wh-001", reorder_point=2)
    coordinator.submit(ITEM, TransactionType.PURCHASE, 10, performed_by="clerk-001")
    return ITEM


def _ledger_sum(ledger, item_id):
    return sum(txn.change_amount for txn in ledger.list_for(item_id))


class _RacingProjector(QuantityProjector):
    """Lets another writer slip in one unit just before the first compare-and-swap."""

    def __init__(self):
        super().__init__()
        self.raced = False

    def apply_delta(self, item_id, delta, expected_previous_quantity):
        if not self.raced:
            self.raced = True
            super().apply_delta(item_id, 1, expected_previous_quantity)
        return super().apply_delta(item_id, delta, expected_previous_quantity)


class _AlwaysStaleProjector(QuantityProjector):
    def __init__(self):
        super().__init__()
        self.calls = 0

    def apply_delta(self, item_id, delta, expected_previous_quantity):
        self.calls += 1
        raise StaleQuantity(item_id, expected_previous_quantity, expected_previous_quantity + 1)


class _FlakyLedgerStore(LedgerStore):
    """Fails the first ``failures`` appends."""

    def __init__(self, settings, failures):
        super().__init__(settings)
        self.failures = failures
        self.attempts = 0

    def append(self, transaction):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StorageUnavailable("ledger unreachable")
        return super().append(transaction)


class TestSubmit:
    def test_purchase_then_sale(self, coordinator, ledger, stocked):
        txn = coordinator.submit(ITEM, TransactionType.SALE, -3, performed_by="till-01", reason="Walk-in")

        assert txn.previous_quantity == 10
        assert txn.new_quantity == 7
        assert txn.change_amount == -3
        assert txn.transaction_type == "Sale"
        assert txn.sequence == 2
        assert coordinator.projector.current_quantity(ITEM) == 7
        assert [e.change_amount for e in ledger.list_for(ITEM)] == [10, -3]

    def test_sum_of_deltas_matches_projection(self, coordinator, ledger, stocked):
        coordinator.submit(ITEM, TransactionType.SALE, -4, performed_by="till-01")
        coordinator.submit(ITEM, TransactionType.RETURN, 1, performed_by="till-01")
        coordinator.submit(ITEM, TransactionType.ADJUSTMENT, -2, performed_by="auditor-01")
        coordinator.submit(ITEM, TransactionType.DAMAGED, -1, performed_by="auditor-01")

        assert _ledger_sum(ledger, ITEM) == coordinator.projector.current_quantity(ITEM) == 4

    def test_entries_chain_previous_to_new(self, coordinator, ledger, stocked):
        coordinator.submit(ITEM, TransactionType.SALE, -4, performed_by="till-01")
        coordinator.submit(ITEM, TransactionType.PURCHASE, 6, performed_by="clerk-001")

        entries = ledger.list_for(ITEM)
        for before, after in zip(entries, entries[1:]):
            assert after.previous_quantity == before.new_quantity

    def test_sale_beyond_stock_is_rejected_without_trace(self, coordinator, ledger, stocked):
        with pytest.raises(InsufficientStock) as exc:
            coordinator.submit(ITEM, TransactionType.SALE, -11, performed_by="till-01")

        assert exc.value.available == 10
        assert exc.value.requested == 11
        assert not exc.value.retryable
        assert coordinator.projector.current_quantity(ITEM) == 10
        assert len(ledger.list_for(ITEM)) == 1

    def test_selling_exactly_everything_is_allowed(self, coordinator, stocked):
        txn = coordinator.submit(ITEM, TransactionType.SALE, -10, performed_by="till-01")
        assert txn.new_quantity == 0

    @pytest.mark.parametrize(
        "kind,delta",
        [
            (TransactionType.ADJUSTMENT, 0),
            (TransactionType.SALE, 3),
            (TransactionType.PURCHASE, -3),
            (TransactionType.EXPIRED, 1),
        ],
    )
    def test_invalid_changes_are_rejected(self, coordinator, ledger, stocked, kind, delta):
        with pytest.raises(ValidationError):
            coordinator.submit(ITEM, kind, delta, performed_by="clerk-001")
        assert coordinator.projector.current_quantity(ITEM) == 10
        assert len(ledger.list_for(ITEM)) == 1

    def test_performer_is_required(self, coordinator, stocked):
        with pytest.raises(ValidationError) as exc:
            coordinator.submit(ITEM, TransactionType.SALE, -1, performed_by="")
        assert "performed_by" in exc.value.messages

    def test_reference_is_stored(self, coordinator, stocked):
        txn = coordinator.submit(
            ITEM, TransactionType.SALE, -2, performed_by="web", reference=Reference.order("ord-001")
        )
        assert txn.reference_id == "ord-001"
        assert txn.reference_type == "Order"


class TestIdempotentReferences:
    def test_retried_submission_is_refused(self, coordinator, ledger, stocked):
        reference = Reference.order("ord-001")
        coordinator.submit(ITEM, TransactionType.SALE, -2, performed_by="web", reference=reference)

        with pytest.raises(DuplicateReference):
            coordinator.submit(ITEM, TransactionType.SALE, -2, performed_by="web", reference=reference)

        assert coordinator.projector.current_quantity(ITEM) == 8
        assert len(ledger.list_by_reference("ord-001", "Order")) == 1

    def test_return_against_same_order_is_distinct(self, coordinator, stocked):
        reference = Reference.order("ord-001")
        coordinator.submit(ITEM, TransactionType.SALE, -2, performed_by="web", reference=reference)
        coordinator.submit(ITEM, TransactionType.RETURN, 2, performed_by="web", reference=reference)
        assert coordinator.projector.current_quantity(ITEM) == 10


class TestDiscontinuedItems:
    def test_increase_is_refused(self, coordinator, stocked):
        coordinator.projector.change_status(ITEM, ItemStatus.DISCONTINUED.value)
        with pytest.raises(ValidationError) as exc:
            coordinator.submit(ITEM, TransactionType.PURCHASE, 5, performed_by="clerk-001")
        assert "status" in exc.value.messages
        assert coordinator.projector.current_quantity(ITEM) == 10

    def test_remaining_stock_can_still_be_sold(self, coordinator, stocked):
        coordinator.projector.change_status(ITEM, ItemStatus.DISCONTINUED.value)
        txn = coordinator.submit(ITEM, TransactionType.SALE, -4, performed_by="till-01")
        assert txn.new_quantity == 6

    def test_reversal_may_hand_stock_back(self, coordinator, stocked):
        coordinator.projector.change_status(ITEM, ItemStatus.DISCONTINUED.value)
        txn = coordinator.submit(
            ITEM,
            TransactionType.TRANSFER,
            3,
            performed_by="planner-001",
            reference=Reference.transfer_reversal("trf-001"),
        )
        assert txn.new_quantity == 13


class TestSubmitFor:
    def test_increase_starts_tracking(self, coordinator):
        txn = coordinator.submit_for("prod-002", "wh-009", TransactionType.PURCHASE, 4, performed_by="clerk-001")
        assert txn.inventory_item_id == "prod-002@wh-009"
        assert coordinator.projector.current_quantity("prod-002@wh-009") == 4

    def test_decrease_on_unknown_pair_creates_nothing(self, coordinator):
        with pytest.raises(InsufficientStock) as exc:
            coordinator.submit_for("prod-002", "wh-009", TransactionType.SALE, -1, performed_by="till-01")
        assert exc.value.available == 0
        assert coordinator.projector.find_item("prod-002", "wh-009") is None


class TestConflicts:
    def test_lost_race_is_retried_against_fresh_quantity(self, ledger, stocked):
        racing = TransactionCoordinator(ledger, _RacingProjector(), LedgerSettings())
        txn = racing.submit(ITEM, TransactionType.SALE, -3, performed_by="till-01")

        # The racer's unit landed first, so the sale was based on 11
        assert txn.previous_quantity == 11
        assert txn.new_quantity == 8
        assert racing.projector.current_quantity(ITEM) == 8

    def test_gives_up_after_retry_budget(self, ledger, stocked):
        projector = _AlwaysStaleProjector()
        coordinator = TransactionCoordinator(ledger, projector, LedgerSettings(max_submit_attempts=4))

        with pytest.raises(ConcurrentUpdateConflict) as exc:
            coordinator.submit(ITEM, TransactionType.SALE, -1, performed_by="till-01")

        assert exc.value.attempts == 4
        assert exc.value.retryable
        assert projector.calls == 4
        assert len(ledger.list_for(ITEM)) == 1

    def test_concurrent_sales_against_ten_leave_three(self, coordinator, ledger, stocked):
        barrier = threading.Barrier(2)
        errors = []

        def sell(amount):
            with stockledger.domain_context():
                barrier.wait()
                try:
                    coordinator.submit(ITEM, TransactionType.SALE, -amount, performed_by=f"till-{amount}")
                except Exception as exc:  # noqa: BLE001
                    errors.append(exc)

        threads = [threading.Thread(target=sell, args=(n,)) for n in (3, 4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert coordinator.projector.current_quantity(ITEM) == 3
        sales = [e for e in ledger.list_for(ITEM) if e.transaction_type == "Sale"]
        assert sorted(e.change_amount for e in sales) == [-4, -3]
        assert _ledger_sum(ledger, ITEM) == 3

    def test_concurrent_sales_never_oversell(self, ledger, stocked):
        coordinator = TransactionCoordinator(ledger, QuantityProjector(), LedgerSettings(max_submit_attempts=50))
        barrier = threading.Barrier(15)
        outcomes = []

        def sell():
            with stockledger.domain_context():
                barrier.wait()
                try:
                    coordinator.submit(ITEM, TransactionType.SALE, -1, performed_by="till-01")
                    outcomes.append("sold")
                except (InsufficientStock, ConcurrentUpdateConflict) as exc:
                    outcomes.append(type(exc).__name__)

        threads = [threading.Thread(target=sell) for _ in range(15)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        sold = outcomes.count("sold")
        assert len(outcomes) == 15
        assert sold <= 10
        assert coordinator.projector.current_quantity(ITEM) == 10 - sold
        assert _ledger_sum(ledger, ITEM) == 10 - sold


class TestAppendFailure:
    def test_transient_failure_is_retried(self, projector, stocked):
        settings = LedgerSettings(append_attempts=3)
        flaky = _FlakyLedgerStore(settings, failures=2)
        coordinator = TransactionCoordinator(flaky, projector, settings)

        txn = coordinator.submit(ITEM, TransactionType.SALE, -2, performed_by="till-01")

        assert flaky.attempts == 3
        assert txn.new_quantity == 8
        assert _ledger_sum(flaky, ITEM) == projector.current_quantity(ITEM) == 8

    def test_persistent_failure_rolls_projection_back(self, projector, stocked):
        settings = LedgerSettings(append_attempts=2)
        flaky = _FlakyLedgerStore(settings, failures=5)
        coordinator = TransactionCoordinator(flaky, projector, settings)

        with pytest.raises(StorageUnavailable):
            coordinator.submit(ITEM, TransactionType.SALE, -2, performed_by="till-01")

        assert flaky.attempts == 2
        assert projector.current_quantity(ITEM) == 10
        assert _ledger_sum(flaky, ITEM) == 10


class TestLowStock:
    def test_dropping_to_reorder_point_notifies(self, coordinator, notifier, stocked):
        notifier.reset()
        coordinator.submit(ITEM, TransactionType.SALE, -8, performed_by="till-01")

        alerts = notifier.of_type(NotificationType.LOW_STOCK.value)
        assert len(alerts) == 1
        assert alerts[0]["recipient_id"] == "inventory-managers"
        assert alerts[0]["payload"]["quantity"] == 2
        assert alerts[0]["payload"]["reorder_point"] == 2

    def test_above_reorder_point_is_quiet(self, coordinator, notifier, stocked):
        notifier.reset()
        coordinator.submit(ITEM, TransactionType.SALE, -7, performed_by="till-01")
        assert notifier.of_type(NotificationType.LOW_STOCK.value) == []

    def test_rejected_notification_does_not_undo_the_sale(self, coordinator, ledger, notifier, stocked):
        notifier.configure(should_succeed=False)
        coordinator.submit(ITEM, TransactionType.SALE, -9, performed_by="till-01")
        assert coordinator.projector.current_quantity(ITEM) == 1
        assert len(ledger.list_for(ITEM)) == 2
