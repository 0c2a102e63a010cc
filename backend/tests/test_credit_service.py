import random
import unittest
from unittest.mock import patch

from ledger_fixtures import memory_sessionmaker, storage_down

from app.models.credit_ledger import CreditLedger, LedgerKind
from app.services import ledger_store
from app.services.costs import calculate_reading_cost, spread_cost
from app.services.credits_engine import (
    add_credits,
    adjust_credits,
    charge_follow_up,
    deduct_credits,
    get_balance,
    get_or_create_credit_account,
    grant_purchase,
    redeem_referral,
    process_payment_refund,
    reconcile_account,
    refund_credits,
)
from app.services.ledger_store import CreditError
from app.services.readings import complete_reading


class CreditServiceTestCase(unittest.TestCase):
    def setUp(self):
        self.engine, Session = memory_sessionmaker()
        self.db = Session()
        get_or_create_credit_account(self.db, "u1")

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def entries(self, user_id="u1"):
        return self.db.query(CreditLedger).filter(CreditLedger.user_id == user_id).order_by(CreditLedger.id).all()


class TestAddAndDeduct(CreditServiceTestCase):
    def test_purchase_then_spend(self):
        res = add_credits(self.db, "u1", 50, LedgerKind.PURCHASE, "Starter pack")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 50)
        acct = ledger_store.get_account(self.db, "u1")
        self.assertEqual(acct.total_earned, 50)

        res = deduct_credits(self.db, "u1", 3, LedgerKind.READING, "Reading")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 47)
        acct = ledger_store.get_account(self.db, "u1")
        self.assertEqual(acct.balance, 47)
        self.assertEqual(acct.total_spent, 3)

        rows = self.entries()
        self.assertEqual(len(rows), 2)
        self.assertEqual([r.amount for r in rows], [50, -3])
        self.assertEqual(sum(r.amount for r in rows), 47)

    def test_insufficient_balance_leaves_everything_unchanged(self):
        add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack")
        res = deduct_credits(self.db, "u1", 6, LedgerKind.READING, "Celtic cross")
        self.assertFalse(res.success)
        self.assertEqual(res.error, CreditError.INSUFFICIENT_BALANCE)
        self.assertEqual(res.new_balance, 5)
        self.assertEqual(get_balance(self.db, "u1"), 5)
        self.assertEqual(len(self.entries()), 1)
        self.assertEqual(ledger_store.get_account(self.db, "u1").total_spent, 0)

    def test_deduct_exact_balance_reaches_zero(self):
        add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack")
        res = deduct_credits(self.db, "u1", 5, LedgerKind.READING, "reading")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 0)

    def test_non_positive_amounts_are_invalid(self):
        for amount in (0, -1):
            self.assertEqual(add_credits(self.db, "u1", amount, LedgerKind.PURCHASE, "x").error, CreditError.INVALID_AMOUNT)
            self.assertEqual(deduct_credits(self.db, "u1", amount, LedgerKind.READING, "x").error, CreditError.INVALID_AMOUNT)
        self.assertEqual(self.entries(), [])

    def test_each_call_writes_its_own_entry(self):
        add_credits(self.db, "u1", 2, LedgerKind.PURCHASE, "same")
        add_credits(self.db, "u1", 2, LedgerKind.PURCHASE, "same")
        rows = self.entries()
        self.assertEqual(len(rows), 2)
        self.assertNotEqual(rows[0].id, rows[1].id)

    def test_unknown_account(self):
        res = add_credits(self.db, "ghost", 5, LedgerKind.PURCHASE, "pack")
        self.assertEqual(res.error, CreditError.ACCOUNT_NOT_FOUND)
        self.assertIsNone(get_balance(self.db, "ghost"))

    def test_storage_failure_is_reported_not_raised(self):
        add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack")
        with patch("app.services.ledger_store.append_and_adjust_balance", side_effect=storage_down()):
            res = deduct_credits(self.db, "u1", 1, LedgerKind.READING, "reading")
        self.assertFalse(res.success)
        self.assertEqual(res.error, CreditError.STORAGE_UNAVAILABLE)
        self.assertEqual(get_balance(self.db, "u1"), 5)

    def test_uncommitted_write_can_be_rolled_back_by_caller(self):
        res = add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack", commit=False)
        self.assertTrue(res.success)
        self.db.rollback()
        self.assertEqual(get_balance(self.db, "u1"), 0)
        self.assertEqual(self.entries(), [])


class TestCreditOperations(CreditServiceTestCase):
    def test_admin_adjustment_both_directions(self):
        res = adjust_credits(self.db, "u1", 10, "goodwill")
        self.assertTrue(res.success)
        res = adjust_credits(self.db, "u1", -4, "correction")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 6)
        rows = self.entries()
        self.assertEqual({r.kind for r in rows}, {"ADMIN_ADJUSTMENT"})
        self.assertEqual([r.amount for r in rows], [10, -4])
        self.assertIn("correction", rows[1].description)

    def test_admin_adjustment_zero_and_overdraw(self):
        self.assertEqual(adjust_credits(self.db, "u1", 0, "noop").error, CreditError.INVALID_AMOUNT)
        self.assertEqual(adjust_credits(self.db, "u1", -1, "too much").error, CreditError.INSUFFICIENT_BALANCE)
        self.assertEqual(self.entries(), [])

    def test_purchase_and_payment_refund(self):
        grant_purchase(self.db, "u1", 20, "stripe", "pi_123")
        res = process_payment_refund(self.db, "u1", "stripe", "pi_123")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 0)
        rows = self.entries()
        self.assertEqual([(r.kind, r.amount, r.source) for r in rows], [
            ("PURCHASE", 20, "stripe:pi_123"),
            ("REFUND", -20, "stripe:pi_123:refund"),
        ])

    def test_payment_refund_never_goes_negative(self):
        grant_purchase(self.db, "u1", 20, "paypal", "order_1")
        deduct_credits(self.db, "u1", 15, LedgerKind.READING, "reading")
        res = process_payment_refund(self.db, "u1", "paypal", "order_1")
        self.assertEqual(res.error, CreditError.INSUFFICIENT_BALANCE)
        self.assertEqual(get_balance(self.db, "u1"), 5)

    def test_refund_after_failed_reading(self):
        add_credits(self.db, "u1", 10, LedgerKind.PURCHASE, "pack")
        reading = complete_reading(self.db, "u1", "three-card")
        self.assertEqual(reading.new_balance, 7 + 3)
        charge = self.entries()[1]
        self.assertEqual((charge.kind, charge.amount), ("READING", -3))
        res = refund_credits(self.db, "u1", 3, "reading generation failed", original_entry_id=charge.id)
        self.assertTrue(res.success)
        last = self.entries()[-1]
        self.assertEqual((last.kind, last.amount, last.source), ("REFUND", 3, f"ledger:{charge.id}"))

        again = refund_credits(self.db, "u1", 3, "reading generation failed", original_entry_id=charge.id)
        self.assertEqual(again.error, CreditError.DUPLICATE)
        self.assertEqual(get_balance(self.db, "u1"), res.new_balance)
        acct = ledger_store.get_account(self.db, "u1")
        self.assertEqual(acct.balance, acct.total_earned - acct.total_spent)

    def test_payment_refund_debits_the_purchased_amount(self):
        grant_purchase(self.db, "u1", 20, "stripe", "pi_9")
        add_credits(self.db, "u1", 10, LedgerKind.DAILY_BONUS, "bonus")
        res = process_payment_refund(self.db, "u1", "stripe", "pi_9")
        self.assertTrue(res.success)
        self.assertEqual(res.new_balance, 10)

        again = process_payment_refund(self.db, "u1", "stripe", "pi_9")
        self.assertEqual(again.error, CreditError.DUPLICATE)
        self.assertEqual(get_balance(self.db, "u1"), 10)

    def test_refund_for_unknown_payment_is_ignored(self):
        add_credits(self.db, "u1", 30, LedgerKind.PURCHASE, "pack")
        self.assertIsNone(process_payment_refund(self.db, "u1", "stripe", "never_paid"))
        self.assertIsNone(process_payment_refund(self.db, "ghost", "stripe", "never_paid"))
        self.assertEqual(get_balance(self.db, "u1"), 30)
        self.assertEqual(len(self.entries()), 1)

    def test_duplicate_purchase_is_booked_once(self):
        first = grant_purchase(self.db, "u1", 20, "stripe", "pi_1")
        second = grant_purchase(self.db, "u1", 20, "stripe", "pi_1")
        self.assertTrue(first.success)
        self.assertEqual(second.error, CreditError.DUPLICATE)
        self.assertEqual(second.new_balance, 20)
        acct = ledger_store.get_account(self.db, "u1")
        self.assertEqual((acct.balance, acct.total_earned), (20, 20))
        self.assertEqual(len(self.entries()), 1)

    def test_duplicate_source_keeps_caller_transaction(self):
        add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack", source="stripe:pi_1")
        pending = add_credits(self.db, "u1", 2, LedgerKind.DAILY_BONUS, "bonus", commit=False)
        dup = add_credits(self.db, "u1", 5, LedgerKind.PURCHASE, "pack", source="stripe:pi_1", commit=False)
        self.assertEqual(dup.error, CreditError.DUPLICATE)
        self.db.commit()
        self.assertTrue(pending.success)
        self.assertEqual(get_balance(self.db, "u1"), 7)
        self.assertEqual(ledger_store.ledger_sum(self.db, "u1"), 7)

    def test_referral_pays_both_sides_once(self):
        get_or_create_credit_account(self.db, "friend")
        res = redeem_referral(self.db, "friend", "u1")
        self.assertTrue(res.success)
        self.assertEqual(res.credits_awarded, 5)
        self.assertEqual(res.new_balance, 5)
        self.assertEqual(res.referrer_balance, 5)
        self.assertEqual(get_balance(self.db, "friend"), 5)
        self.assertEqual(get_balance(self.db, "u1"), 5)
        self.assertEqual(ledger_store.get_account(self.db, "friend").referred_by, "u1")

        again = redeem_referral(self.db, "friend", "u1")
        self.assertEqual(again.error, CreditError.DUPLICATE)
        self.assertEqual(get_balance(self.db, "friend"), 5)
        self.assertEqual(get_balance(self.db, "u1"), 5)

    def test_referral_cannot_switch_referrer(self):
        get_or_create_credit_account(self.db, "friend")
        get_or_create_credit_account(self.db, "other")
        redeem_referral(self.db, "friend", "u1")
        res = redeem_referral(self.db, "friend", "other")
        self.assertEqual(res.error, CreditError.DUPLICATE)
        self.assertEqual(get_balance(self.db, "other"), 0)

    def test_referral_unknown_accounts(self):
        self.assertEqual(redeem_referral(self.db, "u1", "ghost").error, CreditError.ACCOUNT_NOT_FOUND)
        self.assertIsNone(ledger_store.get_account(self.db, "u1").referred_by)
        with self.assertRaises(ValueError):
            redeem_referral(self.db, "u1", "u1")

    def test_failed_referrer_grant_undoes_everything(self):
        get_or_create_credit_account(self.db, "friend")
        with patch("app.services.ledger_store.append_and_adjust_balance", side_effect=[
            ledger_store.LedgerWrite(new_balance=5, entry_id=1),
            storage_down(),
        ]):
            res = redeem_referral(self.db, "friend", "u1")
        self.assertEqual(res.error, CreditError.STORAGE_UNAVAILABLE)
        self.assertIsNone(ledger_store.get_account(self.db, "friend").referred_by)

        retry = redeem_referral(self.db, "friend", "u1")
        self.assertTrue(retry.success)

    def test_follow_up_costs_one(self):
        add_credits(self.db, "u1", 2, LedgerKind.PURCHASE, "pack")
        self.assertTrue(charge_follow_up(self.db, "u1", reading_id=42).success)
        self.assertTrue(charge_follow_up(self.db, "u1", reading_id=42).success)
        self.assertEqual(charge_follow_up(self.db, "u1", reading_id=42).error, CreditError.INSUFFICIENT_BALANCE)
        self.assertEqual(self.entries()[-1].kind, "FOLLOWUP_QUESTION")

    def test_reading_costs(self):
        self.assertEqual(spread_cost("celtic-cross"), 10)
        self.assertEqual(spread_cost("unknown"), 1)
        cost = calculate_reading_cost(spread_type="horseshoe", has_advanced_style=True, has_extended_question=True)
        self.assertEqual(cost, {"base_cost": 7, "style_cost": 1, "extended_cost": 1, "total_cost": 9})


class TestReconciliation(CreditServiceTestCase):
    def test_balance_matches_ledger_after_mixed_operations(self):
        rng = random.Random(7)
        for _ in range(200):
            amount = rng.randint(1, 9)
            if rng.random() < 0.5:
                add_credits(self.db, "u1", amount, LedgerKind.PURCHASE, "pack")
            else:
                deduct_credits(self.db, "u1", amount, LedgerKind.READING, "reading")
            balance = get_balance(self.db, "u1")
            self.assertGreaterEqual(balance, 0)
            self.assertEqual(balance, ledger_store.ledger_sum(self.db, "u1"))
        report = reconcile_account(self.db, "u1")
        self.assertTrue(report.ok)
        self.assertEqual(report.balance, report.total_earned - report.total_spent)

    def test_reconcile_unknown_account(self):
        self.assertIsNone(reconcile_account(self.db, "ghost"))


if __name__ == "__main__":
    unittest.main()
