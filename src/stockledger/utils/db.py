"""Schema helpers for SQL-backed providers.

The memory provider needs no schema; for sqlite/postgresql providers the
tables for the ledger, the item snapshot, transfers and read models are
created from the provider's SQLAlchemy metadata. The ledger table also
gets a unique index over (item, reference, transaction type), so a second
process cannot record the same reference twice.
"""

from protean.domain import Domain
from sqlalchemy import Index, Table, create_engine

from stockledger.ledger.transaction import InventoryTransaction

_SQL_PROVIDERS = ("sqlite", "postgresql")

LEDGER_REFERENCE_INDEX = "uq_ledger_reference"
LEDGER_REFERENCE_COLUMNS = ("inventory_item_id", "reference_id", "reference_type", "transaction_type")


def _sql_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in _SQL_PROVIDERS:
            yield provider


def add_reference_index(table: Table) -> Index:
    """Attach the ledger's unique reference index to ``table`` unless it is already there.

    Entries without a reference carry NULLs in these columns, and NULLs never
    collide in a unique index, so only referenced entries are constrained.
    """
    for index in table.indexes:
        if index.name == LEDGER_REFERENCE_INDEX:
            return index
    return Index(LEDGER_REFERENCE_INDEX, *(table.c[name] for name in LEDGER_REFERENCE_COLUMNS), unique=True)


def setup_db(domain: Domain) -> list[str]:
    """Create database schema. Returns the names of the providers touched."""
    touched = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])

            # Force DAO (and therefore table model) creation before create_all
            for registry in (
                domain.registry.aggregates,
                domain.registry.entities,
                domain.registry.projections,
            ):
                for _, record in registry.items():
                    if record.cls.meta_.provider == provider.name:
                        domain.repository_for(record.cls)._dao  # noqa: B018

            ledger_table = provider._metadata.tables.get(InventoryTransaction.meta_.schema_name)
            if ledger_table is not None:
                add_reference_index(ledger_table)

            provider._metadata.create_all(engine)
            touched.append(provider.name)
    return touched


def drop_db(domain: Domain) -> list[str]:
    """Drop database schema. Returns the names of the providers touched."""
    touched = []
    with domain.domain_context():
        for provider in _sql_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
            touched.append(provider.name)
    return touched
