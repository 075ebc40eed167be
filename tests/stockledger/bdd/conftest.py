"""Shared BDD fixtures and step definitions for the ledger engine."""

import pytest
from pytest_bdd import given, parsers, then
from stockledger.item.item import ItemStatus, item_key
from stockledger.ledger.transaction import TransactionType


@pytest.fixture()
def outcome():
    """What the last When step produced: a result or the error it raised."""
    return {}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('"{product}" at "{warehouse}" holds {quantity:d} units'))
def _(coordinator, product, warehouse, quantity):
    coordinator.submit_for(product, warehouse, TransactionType.PURCHASE, quantity, performed_by="clerk-001")


@given(parsers.cfparse('"{product}" at "{warehouse}" is discontinued'))
def _(projector, product, warehouse):
    item = projector.ensure_item(product, warehouse)
    projector.change_status(item.id, ItemStatus.DISCONTINUED.value)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('"{product}" at "{warehouse}" holds {quantity:d} units'))
def _(projector, product, warehouse, quantity):
    assert projector.current_quantity(item_key(product, warehouse)) == quantity


@then(parsers.cfparse('a "{notification_type}" notification is sent'))
def _(notifier, notification_type):
    assert notifier.of_type(notification_type)


@then(parsers.cfparse('no "{notification_type}" notification is sent'))
def _(notifier, notification_type):
    assert notifier.of_type(notification_type) == []
