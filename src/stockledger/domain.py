"""StockLedger bounded context — inventory ledger and reconciliation engine.

Keeps per-(product, warehouse) quantities consistent with the append-only
ledger of inventory transactions under concurrent writers, and moves stock
between warehouses as compensated two-leg transfers.
"""

from protean.domain import Domain

from stockledger.utils.logging import configure_logging, get_logger

# Configure logging for the application
configure_logging()

# Get logger for this module
logger = get_logger(__name__)

# Domain Composition Root
stockledger = Domain(name="stockledger")
