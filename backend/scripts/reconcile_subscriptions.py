"""
Script to reconcile stored subscriptions with the payment processor.

Run periodically (e.g. nightly cron) to repair state left behind by dropped
or failed webhook events:

    python scripts/reconcile_subscriptions.py            # every active record
    python scripts/reconcile_subscriptions.py <account>  # a single account
"""

import asyncio
import os
import sys
from typing import Optional

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from assist.config.settings import get_settings
from assist.domain.result import Err
from assist.infrastructure.container import build_container
from assist.config.logging_config import configure_logging


async def main(account_id: Optional[str] = None) -> int:
    """Run reconciliation; returns the process exit code."""
    settings = get_settings()
    configure_logging(settings)
    container = build_container(settings)

    try:
        if account_id:
            print(f"Reconciling account {account_id}...")
            result = await container.reconciler.reconcile_account(account_id)
            if isinstance(result, Err):
                print(f"Failed: {result.error.message}")
                return 1
            check = result.value
            print(
                f"  stored={check.stored_status.value} "
                f"processor={check.processor_status.value if check.processor_status else '-'} "
                f"status_repaired={check.status_repaired} flag_repaired={check.flag_repaired}"
            )
            return 0

        print("Reconciling all active subscriptions...")
        report = await container.reconciler.reconcile_all()
        print(f"Checked {report.checked}, repaired {report.repaired}, failed {len(report.failed)}")
        for failed in report.failed:
            print(f"  FAILED: {failed}")
        return 1 if report.failed else 0
    finally:
        await container.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None)))
