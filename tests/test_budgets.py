import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from budget_engine import (
    BudgetProgressEngine,
    TransactionSnapshot,
    alert_level,
    budget_insights,
    percentage,
    progress_status,
)
from database import Base
from errors import NotFound, ValidationFailed
from models import AccountType, BudgetPeriod, BudgetType, Transaction, TransactionType
from periods import local_now
from schemas import (
    AccountIn,
    AlertThresholdsIn,
    BudgetIn,
    BudgetScopeIn,
    BudgetUpdate,
    TransactionIn,
)
from services import (
    AccountService,
    BudgetService,
    TransactionService,
    refresh_all_budgets,
)

OWNER = "user-a"
MAY_15 = datetime(2024, 5, 15, 12, 0)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _account(session: Session, kind: AccountType = AccountType.cash, **extra):
    return AccountService(session, OWNER).create(
        AccountIn(name=extra.pop("name", f"{kind.value} account"), type=kind, **extra)
    )


def _spend(session, account_id, amount_cents, category, when=datetime(2024, 5, 10)):
    return TransactionService(session, OWNER).create(
        TransactionIn(
            account_id=account_id,
            amount_cents=amount_cents,
            type=TransactionType.expense,
            category=category,
            date=when,
        )
    )


def _budget(session, now=MAY_15, **fields):
    payload = {
        "name": "Budget",
        "budget_type": BudgetType.overall,
        "amount_cents": 500_000,
        "period": BudgetPeriod.monthly,
    }
    payload.update(fields)
    return BudgetService(session, OWNER).create(BudgetIn(**payload), now=now)


def test_category_budget_counts_subcategories_only() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 120_000, "Groceries")
        _spend(session, account.id, 80_000, "Restaurants")
        _spend(session, account.id, 30_000, "Transportation")
        budget = _budget(
            session,
            name="Food",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Food & Dining"]),
        )

        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert progress.spent_cents == 200_000
        assert progress.transaction_count == 2
        assert progress.progress_percentage == 40
        assert progress.remaining_cents == 300_000
        assert progress.is_over_budget is False

        assert budget.current_spent_cents == 200_000
        assert budget.current_progress_percentage == 40


def test_income_and_other_periods_are_ignored() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 10_000, "Groceries")
        _spend(session, account.id, 99_000, "Groceries", when=datetime(2024, 4, 30, 23, 59))
        TransactionService(session, OWNER).create(
            TransactionIn(
                account_id=account.id,
                amount_cents=1_000_000,
                type=TransactionType.income,
                category="Salary",
                date=datetime(2024, 5, 2),
            )
        )
        budget = _budget(session)

        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert progress.spent_cents == 10_000
        assert progress.transaction_count == 1


def test_account_type_budget_without_matching_accounts_spends_nothing() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 10_000, "Groceries")
        budget = _budget(
            session,
            budget_type=BudgetType.account,
            scope=BudgetScopeIn(account_types=[AccountType.credit_card]),
        )

        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert progress.spent_cents == 0
        assert progress.transaction_count == 0
        assert progress.progress_percentage == 0


def test_account_budget_by_type_and_by_id() -> None:
    with _session() as session:
        cash = _account(session)
        card = _account(session, AccountType.credit_card, credit_limit_cents=1_000_000)
        _spend(session, cash.id, 10_000, "Groceries")
        _spend(session, card.id, 25_000, "Electronics")

        by_type = _budget(
            session,
            budget_type=BudgetType.account,
            scope=BudgetScopeIn(account_types=[AccountType.credit_card]),
        )
        by_id = _budget(
            session,
            budget_type=BudgetType.account,
            scope=BudgetScopeIn(
                account_types=[AccountType.credit_card], account_ids=[cash.id]
            ),
        )

        engine = BudgetProgressEngine(session, OWNER)
        assert engine.compute(by_type, MAY_15).spent_cents == 25_000
        assert engine.compute(by_id, MAY_15).spent_cents == 10_000


def test_deactivated_accounts_leave_type_scope() -> None:
    with _session() as session:
        card = _account(session, AccountType.credit_card, credit_limit_cents=1_000_000)
        _spend(session, card.id, 25_000, "Electronics")
        budget = _budget(
            session,
            budget_type=BudgetType.account,
            scope=BudgetScopeIn(account_types=[AccountType.credit_card]),
        )
        AccountService(session, OWNER).soft_delete(card.id)

        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert progress.spent_cents == 0


def test_zero_amount_budget_reports_zero_progress() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 5_000, "Groceries")
        budget = _budget(session, amount_cents=0)

        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert progress.progress_percentage == 0
        assert progress.is_over_budget is True


def test_compute_is_idempotent() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 33_333, "Groceries")
        budget = _budget(session)
        engine = BudgetProgressEngine(session, OWNER)
        assert engine.compute(budget, MAY_15) == engine.compute(budget, MAY_15)


def test_projection_metrics() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 100_000, "Groceries", when=datetime(2024, 5, 3))
        budget = _budget(session, amount_cents=200_000)

        now = datetime(2024, 5, 10, 12, 0)
        progress = BudgetProgressEngine(session, OWNER).compute(budget, now)
        assert progress.days_remaining == 21
        assert progress.daily_spending_rate == pytest.approx(10_000)
        assert progress.projected_spending == pytest.approx(310_000)
        assert progress.projected_overspend is True
        assert progress.is_over_budget is False


def test_percentage_rounds_half_up() -> None:
    assert percentage(1, 200) == 1
    assert percentage(2, 3) == 67
    assert percentage(5, 0) == 0
    assert percentage(250, 100) == 250


def test_status_boundaries() -> None:
    assert progress_status(0) == "on_track"
    assert progress_status(80) == "on_track"
    assert progress_status(81) == "warning"
    assert progress_status(100) == "warning"
    assert progress_status(101) == "over_budget"


def test_alert_level_uses_budget_thresholds() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 60_000, "Groceries")
        budget = _budget(
            session,
            amount_cents=100_000,
            alert_thresholds=AlertThresholdsIn(warning=50, critical=90),
        )
        progress = BudgetProgressEngine(session, OWNER).compute(budget, MAY_15)
        assert alert_level(budget, progress) == "warning"


def test_only_affected_budgets_are_refreshed_on_write() -> None:
    now = local_now()
    with _session() as session:
        account = _account(session)
        food = _budget(
            session,
            now=now,
            name="Food",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Food & Dining"]),
        )
        travel = _budget(
            session,
            now=now,
            name="Travel",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Transportation"]),
        )
        travel_calculated = travel.current_last_calculated

        _spend(session, account.id, 4_200, "Groceries", when=now)
        session.refresh(food)
        session.refresh(travel)
        assert food.current_spent_cents == 4_200
        assert food.current_transaction_count == 1
        assert travel.current_spent_cents == 0
        assert travel.current_last_calculated == travel_calculated


def test_is_affected_rules() -> None:
    with _session() as session:
        card = _account(session, AccountType.credit_card, credit_limit_cents=1_000)
        engine = BudgetProgressEngine(session, OWNER)
        overall = _budget(session)
        food = _budget(
            session,
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Food & Dining"]),
        )
        cards = _budget(
            session,
            budget_type=BudgetType.account,
            scope=BudgetScopeIn(account_types=[AccountType.credit_card]),
        )

        snack = TransactionSnapshot(card.id, "Coffee & Tea", TransactionType.expense)
        salary = TransactionSnapshot(card.id, "Salary", TransactionType.income)
        assert engine.is_affected(overall, snack, AccountType.credit_card)
        assert engine.is_affected(food, snack, AccountType.credit_card)
        assert engine.is_affected(cards, snack, AccountType.credit_card)
        assert not engine.is_affected(cards, snack, AccountType.cash)
        assert not engine.is_affected(overall, salary, AccountType.credit_card)
        assert engine.affected_budgets([salary]) == []


def test_refresh_failure_never_breaks_the_write(monkeypatch, caplog) -> None:
    def boom(self, snapshots):
        raise RuntimeError("refresh exploded")

    monkeypatch.setattr(BudgetProgressEngine, "affected_budgets", boom)
    with _session() as session:
        account = _account(session, balance_cents=10_000)
        with caplog.at_level(logging.ERROR):
            (txn,) = _spend(session, account.id, 1_000, "Groceries")

        assert session.get(Transaction, txn.id) is not None
        session.refresh(account)
        assert account.balance_cents == 9_000
        assert "budget_refresh_failed" in caplog.text


def test_reads_always_recompute() -> None:
    with _session() as session:
        account = _account(session)
        budget = _budget(session)
        session.add(
            Transaction(
                user_id=OWNER,
                account_id=account.id,
                amount_cents=7_000,
                type=TransactionType.expense,
                category="Groceries",
                date=datetime(2024, 5, 11),
            )
        )
        session.commit()

        progress = BudgetService(session, OWNER).progress(budget.id, now=MAY_15)
        assert progress.spent_cents == 7_000
        assert budget.current_spent_cents == 0


def test_budget_validation() -> None:
    with _session() as session:
        with pytest.raises(ValidationFailed) as exc:
            _budget(session, budget_type=BudgetType.category)
        assert "scope.categories" in exc.value.errors

        with pytest.raises(ValidationFailed) as exc:
            _budget(session, budget_type=BudgetType.account)
        assert "scope.account_types" in exc.value.errors

        with pytest.raises(ValidationFailed) as exc:
            _budget(
                session,
                alert_thresholds=AlertThresholdsIn(warning=95, critical=90),
            )
        assert "alert_thresholds.warning" in exc.value.errors

        with pytest.raises(ValidationFailed) as exc:
            _budget(
                session,
                budget_type=BudgetType.account,
                scope=BudgetScopeIn(account_ids=[404]),
            )
        assert "scope.account_ids" in exc.value.errors


def test_update_and_delete_budget() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 50_000, "Groceries")
        budget = _budget(session)
        service = BudgetService(session, OWNER)

        updated = service.update(
            budget.id, BudgetUpdate(amount_cents=100_000), now=MAY_15
        )
        assert updated.amount_cents == 100_000
        assert updated.current_progress_percentage == 50

        service.delete(budget.id)
        with pytest.raises(NotFound):
            service.get(budget.id)
        with pytest.raises(NotFound):
            BudgetService(session, "user-b").get(budget.id)


def test_status_filter_and_insights() -> None:
    now = datetime(2024, 5, 28, 12, 0)
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 150_000, "Groceries")
        _budget(
            session,
            now=now,
            name="Food",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Food & Dining"]),
            amount_cents=100_000,
        )
        _budget(
            session,
            now=now,
            name="Shopping",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Shopping"]),
            amount_cents=100_000,
        )
        service = BudgetService(session, OWNER)

        over = service.list_with_progress(status="over_budget", now=now)
        assert [b.name for b, _ in over] == ["Food"]
        on_track = service.list_with_progress(status="on_track", now=now)
        assert [b.name for b, _ in on_track] == ["Shopping"]

        insights = {i["title"]: i for i in budget_insights(service.list_with_progress(now=now))}
        assert insights["Over Budget Alert"]["budgets"] == ["Food"]
        assert insights["Projected Overspend"]["budgets"] == ["Food"]
        assert insights["Underutilized Budgets"]["budgets"] == ["Shopping"]

        with pytest.raises(ValidationFailed) as exc:
            service.list_with_progress(period="fortnightly", status="bogus")
        assert set(exc.value.errors) == {"period", "status"}


def test_analytics_summarises_active_budgets() -> None:
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 30_000, "Groceries")
        _budget(
            session,
            name="Food",
            budget_type=BudgetType.category,
            scope=BudgetScopeIn(categories=["Food & Dining"]),
            amount_cents=100_000,
        )
        _budget(session, name="Weekly", period=BudgetPeriod.weekly, amount_cents=50_000)

        analytics = BudgetService(session, OWNER).analytics("monthly", now=MAY_15)
        summary = analytics["summary"]
        assert summary["budget_count"] == 1
        assert summary["total_budgeted_cents"] == 100_000
        assert summary["total_spent_cents"] == 30_000
        assert analytics["category_breakdown"] == {"Food & Dining": 30_000}

        everything = BudgetService(session, OWNER).analytics("all", now=MAY_15)
        assert everything["summary"]["budget_count"] == 2


def test_suggestions_from_last_month_spending() -> None:
    now = datetime(2024, 5, 20)
    with _session() as session:
        account = _account(session)
        _spend(session, account.id, 150_001, "Groceries", when=datetime(2024, 5, 1))
        _spend(session, account.id, 50_000, "Parking", when=datetime(2024, 5, 2))
        _spend(session, account.id, 900_000, "Rent", when=datetime(2024, 3, 1))

        suggestions = BudgetService(session, OWNER).suggestions(now=now)
        assert len(suggestions) == 1
        assert suggestions[0]["category"] == "Groceries"
        assert suggestions[0]["suggested_amount_cents"] == 165_002


def test_refresh_all_budgets_covers_every_owner() -> None:
    with _session() as session:
        _budget(session)
        BudgetService(session, "user-b").create(
            BudgetIn(
                name="Other",
                budget_type=BudgetType.overall,
                amount_cents=1_000,
                period=BudgetPeriod.daily,
            )
        )
        assert refresh_all_budgets(session, now=MAY_15) == 2


def test_partial_threshold_update_keeps_the_other_threshold() -> None:
    with _session() as session:
        budget = _budget(
            session, alert_thresholds=AlertThresholdsIn(warning=60, critical=90)
        )
        updated = BudgetService(session, OWNER).update(
            budget.id,
            BudgetUpdate.model_validate({"alert_thresholds": {"critical": 150}}),
            now=MAY_15,
        )
        assert updated.warning_threshold == 60
        assert updated.critical_threshold == 150


def test_utc_dates_count_toward_the_local_period() -> None:
    with _session() as session:
        account = _account(session)
        _spend(
            session,
            account.id,
            1_000,
            "Groceries",
            when=datetime(2024, 5, 31, 20, 0, tzinfo=timezone.utc),
        )
        may = _budget(session, name="May")
        engine = BudgetProgressEngine(session, OWNER)

        assert engine.compute(may, MAY_15).spent_cents == 0
        assert engine.compute(may, datetime(2024, 6, 2)).spent_cents == 1_000
