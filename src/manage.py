"""StockLedger management CLI.

Provides commands to create and drop the database schema, and to run the
reconciliation pass that compares projected quantities with the ledger.

Usage:
    python src/manage.py setup-db                # Create all tables
    python src/manage.py drop-db                 # Drop all tables
    python src/manage.py reconcile               # Check every item
    python src/manage.py reconcile --item P@W    # Check one item
    python src/manage.py reconcile --item P@W --repair --operator ops-01
"""

import argparse
import sys


def _init_domain():
    from stockledger.domain import stockledger

    print("Initializing stockledger domain...")
    stockledger.init()
    return stockledger


def setup_database():
    """Create the database schema for every SQL provider."""
    from stockledger.utils.db import setup_db

    domain = _init_domain()
    print("Creating stockledger database schema...")
    touched = setup_db(domain)
    if not touched:
        print("  No SQL providers configured, nothing to create.")
    for name in touched:
        print(f"  {name} schema ready.")
    print("Done.")


def drop_database():
    """Drop the database schema for every SQL provider."""
    from stockledger.utils.db import drop_db

    domain = _init_domain()
    print("Dropping stockledger database schema...")
    for name in drop_db(domain):
        print(f"  {name} schema dropped.")
    print("Done.")


def reconcile(item_id=None, repair=False, operator=None) -> int:
    """Run the reconciliation pass. Returns the process exit code."""
    from stockledger.services import get_reconciler
    from stockledger.utils.logging import add_context, clear_context

    domain = _init_domain()
    add_context(command="reconcile", operator=operator)
    try:
        with domain.domain_context():
            reconciler = get_reconciler()
            if repair:
                report = reconciler.repair(item_id, performed_by=operator)
                print(f"{report.item_id}: restored to {report.ledger_quantity}")
                return 0

            reports = [reconciler.reconcile(item_id)] if item_id else reconciler.reconcile_all()
    finally:
        clear_context()

    diverged = 0
    for report in reports:
        state = "ok" if report.in_sync else "DIVERGED"
        print(
            f"{report.item_id}: ledger={report.ledger_quantity} "
            f"projected={report.projected_quantity} entries={report.entry_count} {state}"
        )
        if report.chain_breaks:
            print(f"  chain breaks at sequences {report.chain_breaks}")
        if not report.in_sync:
            diverged += 1

    print(f"{len(reports)} item(s) checked, {diverged} diverged.")
    return 1 if diverged else 0


def main(argv=None):
    parser = argparse.ArgumentParser(description="StockLedger management")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    reconcile_parser = subparsers.add_parser("reconcile", help="Compare projected quantities with the ledger")
    reconcile_parser.add_argument("--item", help="Inventory item id (<product>@<warehouse>); default: all items")
    reconcile_parser.add_argument(
        "--repair",
        action="store_true",
        help="Overwrite the projected quantity of --item with the ledger's value",
    )
    reconcile_parser.add_argument("--operator", help="Who is running the repair (required with --repair)")

    args = parser.parse_args(argv)

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    elif args.command == "reconcile":
        if args.repair and not (args.item and args.operator):
            parser.error("--repair needs --item and --operator")
        sys.exit(reconcile(args.item, args.repair, args.operator))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
