from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import argparse

from app.core.database import SessionLocal
from app.models.credit_account import CreditAccount
from app.services.credits_engine import reconcile_account


def main() -> int:
    parser = argparse.ArgumentParser(description="Replay the credit ledger against stored balances.")
    parser.add_argument("user_ids", nargs="*", help="accounts to check (default: all)")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        user_ids = args.user_ids or [row[0] for row in db.query(CreditAccount.user_id).order_by(CreditAccount.user_id)]
        mismatches = 0
        for user_id in user_ids:
            report = reconcile_account(db, user_id)
            if report is None:
                print(f"{user_id}: no account")
                mismatches += 1
                continue
            status = "ok" if report.ok else "MISMATCH"
            print(
                f"{user_id}: {status} balance={report.balance} ledger_sum={report.ledger_sum} "
                f"earned={report.total_earned} spent={report.total_spent}"
            )
            if not report.ok:
                mismatches += 1
        print(f"checked={len(user_ids)} mismatches={mismatches}")
        return 1 if mismatches else 0
    finally:
        db.close()


sys.exit(main())
