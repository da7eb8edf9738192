"""Operational CLI: repair missing task notifications.

    trialrisk-repair --role "EDC Data Manager"
    trialrisk-repair --all
"""
import argparse
import logging
from typing import Optional

from . import reconciliation
from .database import SessionLocal
from .directory import SqlUserDirectory

logger = logging.getLogger("trialrisk-core.cli")


def main(argv: Optional[list[str]] = None) -> int:
    ap = argparse.ArgumentParser(
        prog="trialrisk-repair",
        description="Create task notifications missed by dispatch for members of a role.",
    )
    target = ap.add_mutually_exclusive_group(required=True)
    target.add_argument("--role", action="append", help="Role to repair (repeatable)")
    target.add_argument("--all", action="store_true", help="Repair every role with assigned tasks")
    ap.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    db = SessionLocal()
    try:
        counts = reconciliation.repair_all(db, SqlUserDirectory(db), None if args.all else args.role)
    finally:
        db.close()

    for role, created in counts.items():
        print(f"{role}: {created} notifications created")
    logger.info(f"Repair finished: {sum(counts.values())} notifications created across {len(counts)} roles")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
