"""Engine service registry.

The coordinator, orchestrator and reconciler share one LedgerStore and one
QuantityProjector so that every writer goes through the same per-item
critical sections. Use the getters below rather than constructing the
services ad hoc; set_* overrides them in tests.
"""

from stockledger.config import LedgerSettings
from stockledger.coordinator.coordinator import TransactionCoordinator
from stockledger.ledger.store import LedgerStore
from stockledger.projection.projector import QuantityProjector
from stockledger.reconciliation.reconciler import Reconciler
from stockledger.transfer.orchestrator import TransferOrchestrator

_settings: LedgerSettings | None = None
_ledger: LedgerStore | None = None
_projector: QuantityProjector | None = None
_coordinator: TransactionCoordinator | None = None
_orchestrator: TransferOrchestrator | None = None
_reconciler: Reconciler | None = None


def get_settings() -> LedgerSettings:
    global _settings
    if _settings is None:
        _settings = LedgerSettings.from_env()
    return _settings


def get_ledger_store() -> LedgerStore:
    global _ledger
    if _ledger is None:
        _ledger = LedgerStore(get_settings())
    return _ledger


def get_projector() -> QuantityProjector:
    global _projector
    if _projector is None:
        _projector = QuantityProjector()
    return _projector


def get_coordinator() -> TransactionCoordinator:
    global _coordinator
    if _coordinator is None:
        _coordinator = TransactionCoordinator(get_ledger_store(), get_projector(), get_settings())
    return _coordinator


def set_coordinator(coordinator: TransactionCoordinator) -> None:
    """Override the active coordinator (the orchestrator is rebuilt around it)."""
    global _coordinator, _orchestrator
    _coordinator = coordinator
    _orchestrator = None


def get_orchestrator() -> TransferOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = TransferOrchestrator(get_coordinator(), get_settings())
    return _orchestrator


def get_reconciler() -> Reconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = Reconciler(get_ledger_store(), get_projector(), get_settings())
    return _reconciler


def reset_services() -> None:
    """Drop every service so the next getter call rebuilds from the environment."""
    global _settings, _ledger, _projector, _coordinator, _orchestrator, _reconciler
    _settings = None
    _ledger = None
    _projector = None
    _coordinator = None
    _orchestrator = None
    _reconciler = None
