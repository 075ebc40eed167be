"""BDD tests for stock movements through the coordinator."""

from pytest_bdd import parsers, scenarios, then, when
from stockledger.errors import DuplicateReference, InsufficientStock, LedgerError
from stockledger.ledger.transaction import Reference, TransactionType

scenarios("features/stock_movements.feature")

ITEM = "prod-001@wh-001"


def _sell(coordinator, outcome, quantity, reference=None):
    try:
        outcome["result"] = coordinator.submit(
            ITEM, TransactionType.SALE, -quantity, performed_by="till-01", reference=reference
        )
    except LedgerError as exc:
        outcome["error"] = exc


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when(parsers.cfparse("a sale of {quantity:d} units is submitted"))
def _(coordinator, outcome, quantity):
    _sell(coordinator, outcome, quantity)


@when(parsers.cfparse('a sale of {quantity:d} units is submitted for order "{order_id}"'))
def _(coordinator, outcome, quantity, order_id):
    _sell(coordinator, outcome, quantity, Reference.order(order_id))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the projected quantity is {quantity:d}"))
def _(projector, quantity):
    assert projector.current_quantity(ITEM) == quantity


@then(parsers.cfparse("the ledger holds {count:d} entries summing to {total:d}"))
def _(ledger, count, total):
    entries = ledger.list_for(ITEM)
    assert len(entries) == count
    assert sum(e.change_amount for e in entries) == total


@then("the submission is rejected for insufficient stock")
def _(outcome):
    assert isinstance(outcome.get("error"), InsufficientStock)


@then("the submission is rejected as a duplicate")
def _(outcome):
    assert isinstance(outcome.get("error"), DuplicateReference)
