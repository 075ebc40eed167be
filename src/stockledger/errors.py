"""Failure taxonomy of the ledger engine.

Input and state-machine violations use Protean's ValidationError like the
rest of the domain model; the classes here describe what can go wrong while
quantities are being changed.
"""


class LedgerError(Exception):
    """Base class for ledger engine failures."""

    retryable = False


class InsufficientStock(LedgerError):
    """The change would take the item below zero."""

    def __init__(self, item_id: str, available: int, requested: int):
        self.item_id = item_id
        self.available = available
        self.requested = requested
        super().__init__(f"Insufficient stock for {item_id}: {available} available, {requested} requested")


class StaleQuantity(LedgerError):
    """Compare-and-swap lost: the stored quantity moved since it was read."""

    retryable = True

    def __init__(self, item_id: str, expected: int, actual: int):
        self.item_id = item_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Stale quantity for {item_id}: expected {expected}, found {actual}")


class ConcurrentUpdateConflict(LedgerError):
    """Compare-and-swap kept losing until the retry budget ran out."""

    retryable = True

    def __init__(self, item_id: str, attempts: int):
        self.item_id = item_id
        self.attempts = attempts
        super().__init__(f"Gave up on {item_id} after {attempts} conflicting attempts")


class StorageUnavailable(LedgerError):
    """The ledger's backing store could not be reached."""

    retryable = True


class DuplicateReference(LedgerError):
    """The same reference was already recorded for this item and transaction type.

    Callers retrying after a timeout treat this as success: the original
    submission landed.
    """

    def __init__(self, item_id: str, reference_id: str, reference_type: str, transaction_type: str):
        self.item_id = item_id
        self.reference_id = reference_id
        self.reference_type = reference_type
        self.transaction_type = transaction_type
        super().__init__(
            f"{transaction_type} for {reference_type} {reference_id} already recorded on {item_id}"
        )


class IntegrityViolation(LedgerError):
    """The projected quantity disagrees with the ledger."""

    def __init__(self, item_id: str, ledger_quantity: int, projected_quantity: int):
        self.item_id = item_id
        self.ledger_quantity = ledger_quantity
        self.projected_quantity = projected_quantity
        super().__init__(
            f"Ledger for {item_id} sums to {ledger_quantity} but projection holds {projected_quantity}"
        )
