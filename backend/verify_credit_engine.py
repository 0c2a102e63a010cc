from datetime import date, timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models.credit_ledger import CreditLedger, LedgerKind
from app.services.credits_engine import add_credits, deduct_credits, get_or_create_credit_account, reconcile_account
from app.services.rewards import claim_daily_reward


def main() -> None:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        get_or_create_credit_account(db, user_id)

        res = add_credits(db, user_id, 50, LedgerKind.PURCHASE, "Starter pack", source="stripe:pi_verify")
        assert res.success and res.new_balance == 50, res

        res = deduct_credits(db, user_id, 3, LedgerKind.READING, "Reading: THREE_CARD")
        assert res.success and res.new_balance == 47, res

        res = deduct_credits(db, user_id, 100, LedgerKind.READING, "Reading: CELTIC_CROSS")
        assert not res.success and res.new_balance == 47, res

        start = date(2026, 1, 1)
        for i in range(7):
            reward = claim_daily_reward(db, user_id, today=start + timedelta(days=i))
            assert reward.success, reward
        assert reward.streak == 7, reward
        assert [a.achievement_id for a in reward.unlocked_achievements] == ["week_streak"], reward

        again = claim_daily_reward(db, user_id, today=start + timedelta(days=6))
        assert not again.success, again

        rows = db.query(CreditLedger).filter(CreditLedger.user_id == user_id).all()
        assert sum(r.amount for r in rows) == reward.new_balance

        report = reconcile_account(db, user_id)
        assert report is not None and report.ok, report
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
