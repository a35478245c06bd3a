import argparse
from pathlib import Path

from rgs.config import Settings
from rgs.database import Database
from rgs.logging_config import configure_logging
from rgs.reconciliation import generate_reconciliation_csv


def reconcile(settings: Settings, output_path: str = "reconciliation.csv") -> int:
    database = Database(settings)
    try:
        csv_text, mismatch_count = generate_reconciliation_csv(database)
    finally:
        database.dispose()
    Path(output_path).write_text(csv_text, newline="")
    return 1 if mismatch_count else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Check wallet balances against the ledger")
    parser.add_argument("--output", default="reconciliation.csv")
    args = parser.parse_args(argv)
    settings = Settings()
    configure_logging(settings.log_level)
    return reconcile(settings, args.output)


if __name__ == "__main__":
    raise SystemExit(main())
