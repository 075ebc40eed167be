import pytest
from protean.integrations.pytest import DomainFixture


@pytest.fixture(scope="session")
def stockledger_bed():
    from stockledger.domain import stockledger

    bed = DomainFixture(stockledger)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(stockledger_bed):
    with stockledger_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def run_around_tests(_ctx):
    """Fresh engine services and notifier for every test; wipe stores afterwards."""
    from stockledger.notification import reset_notifier
    from stockledger.services import reset_services

    reset_services()
    reset_notifier()

    yield

    from protean import current_domain

    for _, provider in current_domain.providers.items():
        provider._data_reset()
    current_domain.event_store.store._data_reset()

    reset_services()
    reset_notifier()


@pytest.fixture()
def notifier():
    from stockledger.notification import get_notifier, set_notifier
    from stockledger.notification.fake_adapter import FakeNotifier

    fake = get_notifier()
    if not isinstance(fake, FakeNotifier):
        fake = FakeNotifier()
        set_notifier(fake)
    return fake


@pytest.fixture()
def coordinator():
    from stockledger.services import get_coordinator

    return get_coordinator()


@pytest.fixture()
def projector():
    from stockledger.services import get_projector

    return get_projector()


@pytest.fixture()
def ledger():
    from stockledger.services import get_ledger_store

    return get_ledger_store()


@pytest.fixture()
def orchestrator():
    from stockledger.services import get_orchestrator

    return get_orchestrator()


@pytest.fixture()
def reconciler():
    from stockledger.services import get_reconciler

    return get_reconciler()
