"""Tests for the InventoryItem aggregate."""

import pytest
from protean.exceptions import ValidationError
from stockledger.item.events import InventoryItemRegistered, ItemStatusChanged, StockThresholdsUpdated
from stockledger.item.item import DEFAULT_REORDER_POINT, InventoryItem, ItemStatus, item_key


def _register(**overrides):
    defaults = {"product_id": "prod-001", "warehouse_id": "wh-001"}
    defaults.update(overrides)
    return InventoryItem.register(**defaults)


class TestItemKey:
    def test_key_joins_product_and_warehouse(self):
        assert item_key("prod-001", "wh-001") == "prod-001@wh-001"

    def test_key_rejects_missing_parts(self):
        with pytest.raises(ValidationError):
            item_key("", "wh-001")

    def test_key_rejects_separator_in_ids(self):
        with pytest.raises(ValidationError):
            item_key("prod@001", "wh-001")


class TestItemRegistration:
    def test_registered_item_starts_empty_and_active(self):
        item = _register()
        assert item.id == "prod-001@wh-001"
        assert item.quantity == 0
        assert item.sequence == 0
        assert item.status == ItemStatus.ACTIVE.value
        assert item.reorder_point == DEFAULT_REORDER_POINT

    def test_registration_raises_event(self):
        item = _register(reorder_point=5)
        assert len(item._events) == 1
        event = item._events[0]
        assert isinstance(event, InventoryItemRegistered)
        assert event.inventory_item_id == "prod-001@wh-001"
        assert event.reorder_point == 5

    def test_max_level_below_min_level_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            _register(min_stock_level=20, max_stock_level=10)
        assert "max_stock_level" in exc.value.messages


class TestProjectDelta:
    def test_delta_moves_quantity_and_sequence(self):
        item = _register()
        assert item.project_delta(10) == 10
        assert item.project_delta(-4) == 6
        assert item.quantity == 6
        assert item.sequence == 2

    def test_delta_below_zero_is_rejected(self):
        item = _register()
        item.project_delta(3)
        with pytest.raises(ValidationError):
            item.project_delta(-4)
        assert item.quantity == 3
        assert item.sequence == 1

    def test_reorder_point_check_is_inclusive(self):
        item = _register(reorder_point=5)
        item.project_delta(5)
        assert item.at_or_below_reorder_point() is True
        assert item.at_or_below_reorder_point(6) is False

    def test_restore_never_moves_sequence_backwards(self):
        item = _register()
        item.project_delta(10)
        item.project_delta(-1)
        item.restore(12, 1)
        assert item.quantity == 12
        assert item.sequence == 2


class TestItemStatus:
    def test_put_on_hold(self):
        item = _register()
        item.change_status(ItemStatus.ON_HOLD.value)
        assert item.status == ItemStatus.ON_HOLD.value
        event = item._events[-1]
        assert isinstance(event, ItemStatusChanged)
        assert event.previous_status == "Active"
        assert event.new_status == "OnHold"

    def test_discontinued_item_can_only_be_reinstated(self):
        item = _register()
        item.change_status(ItemStatus.DISCONTINUED.value)
        assert item.is_discontinued
        with pytest.raises(ValidationError):
            item.change_status(ItemStatus.ON_HOLD.value)
        item.change_status(ItemStatus.ACTIVE.value)
        assert not item.is_discontinued

    def test_same_status_is_not_a_transition(self):
        item = _register()
        with pytest.raises(ValidationError):
            item.change_status(ItemStatus.ACTIVE.value)


class TestThresholds:
    def test_update_only_given_thresholds(self):
        item = _register(min_stock_level=2, reorder_point=10)
        item.update_thresholds(reorder_point=4)
        assert item.reorder_point == 4
        assert item.min_stock_level == 2
        assert isinstance(item._events[-1], StockThresholdsUpdated)

    def test_update_cannot_break_level_invariant(self):
        item = _register(min_stock_level=5, max_stock_level=50)
        with pytest.raises(ValidationError):
            item.update_thresholds(max_stock_level=1)
