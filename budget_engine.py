from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import false, func, select, true
from sqlalchemy.orm import Session

from errors import require_owner
from models import (
    Account,
    AccountType,
    Budget,
    BudgetType,
    Transaction,
    TransactionType,
)
from periods import PeriodWindow, local_now, resolve_window
from taxonomy import expand_categories


logger = logging.getLogger(__name__)

STATUS_ON_TRACK = "on_track"
STATUS_WARNING = "warning"
STATUS_OVER_BUDGET = "over_budget"


@dataclass(frozen=True)
class BudgetProgress:
    start: datetime
    end: datetime
    spent_cents: int
    remaining_cents: int
    progress_percentage: int
    days_remaining: int
    daily_spending_rate: float
    projected_spending: float
    transaction_count: int
    is_over_budget: bool
    projected_overspend: bool

    def as_dict(self) -> dict[str, object]:
        return {
            "start_date": self.start.isoformat(),
            "end_date": self.end.isoformat(),
            "spent_cents": self.spent_cents,
            "remaining_cents": self.remaining_cents,
            "progress_percentage": self.progress_percentage,
            "days_remaining": self.days_remaining,
            "daily_spending_rate": self.daily_spending_rate,
            "projected_spending": self.projected_spending,
            "transaction_count": self.transaction_count,
            "is_over_budget": self.is_over_budget,
            "projected_overspend": self.projected_overspend,
        }


@dataclass(frozen=True)
class TransactionSnapshot:
    """The budget-relevant fields of a transaction at one point in time."""

    account_id: int
    category: str
    type: TransactionType

    @classmethod
    def of(cls, txn: Transaction) -> "TransactionSnapshot":
        return cls(account_id=txn.account_id, category=txn.category, type=txn.type)


def percentage(spent_cents: int, amount_cents: int) -> int:
    if amount_cents <= 0:
        return 0
    ratio = Decimal(spent_cents) * Decimal(100) / Decimal(amount_cents)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def progress_status(progress_percentage: int) -> str:
    if progress_percentage > 100:
        return STATUS_OVER_BUDGET
    if progress_percentage > 80:
        return STATUS_WARNING
    return STATUS_ON_TRACK


def alert_level(budget: Budget, progress: BudgetProgress) -> str:
    if progress.progress_percentage >= budget.critical_threshold:
        return "critical"
    if progress.progress_percentage >= budget.warning_threshold:
        return "warning"
    return "ok"


def budget_insights(
    evaluated: Iterable[tuple[Budget, BudgetProgress]],
) -> list[dict[str, object]]:
    rows = list(evaluated)
    insights: list[dict[str, object]] = []

    over = [b.name for b, p in rows if p.progress_percentage > 100]
    if over:
        insights.append(
            {
                "type": "warning",
                "title": "Over Budget Alert",
                "message": f"{len(over)} budget(s) are over the limit",
                "budgets": over,
            }
        )

    at_risk = [b.name for b, p in rows if p.projected_overspend]
    if at_risk:
        insights.append(
            {
                "type": "caution",
                "title": "Projected Overspend",
                "message": f"{len(at_risk)} budget(s) are projected to exceed limits",
                "budgets": at_risk,
            }
        )

    underused = [
        b.name
        for b, p in rows
        if p.progress_percentage < 50 and p.days_remaining < 7
    ]
    if underused:
        insights.append(
            {
                "type": "info",
                "title": "Underutilized Budgets",
                "message": f"{len(underused)} budget(s) have room for more spending",
                "budgets": underused,
            }
        )
    return insights


class BudgetProgressEngine:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def scoped_account_ids(self, budget: Budget) -> list[int]:
        if budget.scope_account_ids:
            return [int(account_id) for account_id in budget.scope_account_ids]
        types = [AccountType(t) for t in budget.scope_account_types or []]
        if not types:
            return []
        stmt = select(Account.id).where(
            Account.user_id == self.user_id,
            Account.type.in_(types),
            Account.is_active.is_(True),
            Account.deleted_at.is_(None),
        )
        return list(self.session.scalars(stmt).all())

    def _scope_clause(self, budget: Budget):
        if budget.budget_type == BudgetType.overall:
            return true()
        if budget.budget_type == BudgetType.category:
            labels = expand_categories(budget.scope_categories or [])
            if not labels:
                return false()
            return Transaction.category.in_(labels)
        account_ids = self.scoped_account_ids(budget)
        if not account_ids:
            return false()
        return Transaction.account_id.in_(account_ids)

    def compute(
        self, budget: Budget, now: Optional[datetime] = None
    ) -> BudgetProgress:
        now = now or local_now()
        window: PeriodWindow = resolve_window(budget.period, now)

        stmt = select(
            func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent"),
            func.count(Transaction.id).label("count"),
        ).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.deleted_at.is_(None),
            Transaction.date.between(window.start, window.end),
            self._scope_clause(budget),
        )
        row = self.session.execute(stmt).one()
        spent = int(row.spent or 0)
        count = int(row.count or 0)

        amount = int(budget.amount_cents)
        total_days = window.total_days
        elapsed = window.days_elapsed(now)
        daily_rate = spent / elapsed if elapsed > 0 else 0.0
        projected = daily_rate * total_days

        return BudgetProgress(
            start=window.start,
            end=window.end,
            spent_cents=spent,
            remaining_cents=amount - spent,
            progress_percentage=percentage(spent, amount),
            days_remaining=window.days_remaining(now),
            daily_spending_rate=daily_rate,
            projected_spending=projected,
            transaction_count=count,
            is_over_budget=spent > amount,
            projected_overspend=projected > amount,
        )

    @staticmethod
    def store(budget: Budget, progress: BudgetProgress) -> None:
        budget.current_spent_cents = progress.spent_cents
        budget.current_transaction_count = progress.transaction_count
        budget.current_progress_percentage = progress.progress_percentage
        budget.current_last_calculated = datetime.utcnow()

    def refresh(self, budget: Budget, now: Optional[datetime] = None) -> BudgetProgress:
        progress = self.compute(budget, now)
        self.store(budget, progress)
        return progress

    def active_budgets(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.is_active.is_(True))
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def _account_type(self, account_id: int) -> Optional[AccountType]:
        return self.session.scalar(
            select(Account.type).where(
                Account.id == account_id, Account.user_id == self.user_id
            )
        )

    def is_affected(
        self,
        budget: Budget,
        snapshot: TransactionSnapshot,
        account_type: Optional[AccountType],
    ) -> bool:
        if snapshot.type != TransactionType.expense:
            return False
        if budget.budget_type == BudgetType.overall:
            return True
        if budget.budget_type == BudgetType.category:
            return snapshot.category in expand_categories(budget.scope_categories or [])
        scoped_ids = {int(i) for i in budget.scope_account_ids or []}
        if snapshot.account_id in scoped_ids:
            return True
        if account_type is None:
            return False
        return account_type.value in {
            AccountType(t).value for t in budget.scope_account_types or []
        }

    def affected_budgets(
        self, snapshots: Iterable[TransactionSnapshot]
    ) -> list[Budget]:
        expenses = [s for s in snapshots if s.type == TransactionType.expense]
        if not expenses:
            return []
        account_types = {s.account_id: self._account_type(s.account_id) for s in expenses}
        return [
            budget
            for budget in self.active_budgets()
            if any(
                self.is_affected(budget, s, account_types[s.account_id])
                for s in expenses
            )
        ]

    def notify_transaction_change(
        self,
        operation: str,
        snapshots: Iterable[TransactionSnapshot],
        *,
        now: Optional[datetime] = None,
    ) -> None:
        """Refresh the cached progress of budgets a ledger write touched.

        Runs after the write itself has been committed. Failures are logged
        and rolled back; they never reach the caller.
        """
        try:
            budgets = self.affected_budgets(snapshots)
            for budget in budgets:
                progress = self.refresh(budget, now)
                logger.info(
                    f"budget_refreshed: operation={operation} budget_id={budget.id} "
                    f"spent_cents={progress.spent_cents} "
                    f"progress={progress.progress_percentage}"
                )
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception(
                f"budget_refresh_failed: operation={operation} user_id={self.user_id}"
            )
