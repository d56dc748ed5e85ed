"""Check point card data integrity and optionally repair it.

Flow: check -> (archive orphans) -> (merge duplicates) -> re-check.
Without --apply nothing is written; the script only prints what it found.

Usage examples:
  # Report only
  python -m apps.pointcard.scripts.integrity_fix

  # Archive orphaned transactions
  python -m apps.pointcard.scripts.integrity_fix --apply

  # Archive orphans and merge duplicate identities
  ENV_FILE=.env.prod python -m apps.pointcard.scripts.integrity_fix --apply --merge
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv

from apps.pointcard.services.loyalty.integrity_checker import IntegrityReport
from apps.pointcard.services.loyalty.loyalty_service import LoyaltyService

log = logging.getLogger("pointcard.scripts.integrity_fix")


def _load_env_file() -> None:
    project_root = Path(__file__).resolve().parents[3]
    env_file = os.environ.get("ENV_FILE", ".env")
    env_path = (project_root / env_file).resolve()
    if not env_path.exists():
        print(f"Env file not found at {env_path}; using existing environment vars.")
        return
    load_dotenv(env_path, override=True)


def _print_report(report: IntegrityReport, out: Callable[[str], None]) -> None:
    counts = report.counts
    out(f"  customers:              {counts['total_customers']}")
    out(f"  transactions:           {counts['total_transactions']}")
    out(f"  orphaned transactions:  {counts['orphaned_records']}")
    out(f"  missing customer link:  {counts['invalid_relations']}")
    out(f"  duplicate identities:   {counts['duplicate_customers']}")
    for identity, ids in report.duplicate_identities.items():
        out(f"    {identity}: {', '.join(ids)}")
    if report.customers_without_history:
        out(f"  customers without history: {len(report.customers_without_history)}")
    out(f"  {report.recommended_action}")


def run(
    service: LoyaltyService,
    *,
    apply: bool = False,
    merge: bool = False,
    out: Callable[[str], None] = print,
) -> IntegrityReport:
    out("Integrity check")
    report = service.run_integrity_check()
    _print_report(report, out)

    if report.is_clean:
        out("Nothing to fix.")
        return report

    if not apply:
        out("Dry run: re-run with --apply to archive orphans (add --merge to merge duplicates).")
        return report

    if report.orphaned_transaction_ids:
        cleaned = service.cleanup_orphans(report.orphaned_transaction_ids)
        out(f"Archived orphans: {cleaned.succeeded} succeeded, {cleaned.failed} failed")

    if merge and report.duplicate_identities:
        merged = service.merge_duplicates(list(report.duplicate_identities))
        out(f"Merged duplicates: {merged.merged} merged, {merged.failed} failed, {merged.skipped} skipped")

    out("Re-check")
    after = service.run_integrity_check()
    _print_report(after, out)
    return after


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Point card integrity check and repair")
    parser.add_argument("--apply", action="store_true", help="Archive orphaned transactions")
    parser.add_argument("--merge", action="store_true", help="With --apply, also merge duplicate identities")
    args = parser.parse_args(argv)

    _load_env_file()

    from apps.pointcard.db import create_store_client
    from apps.pointcard.services.logging import configure_logging
    from apps.pointcard.services.settings import get_settings

    get_settings.cache_clear()
    settings = get_settings()
    configure_logging()

    client = create_store_client(settings)
    if client is None:
        print("NOTION_API_KEY is not set; cannot reach the document store.")
        return 2

    with client:
        report = run(LoyaltyService.from_settings(client, settings), apply=args.apply, merge=args.merge)
    return 0 if report.is_clean else 1


if __name__ == "__main__":
    sys.exit(main())
