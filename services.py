from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from budget_engine import (
    STATUS_OVER_BUDGET,
    STATUS_ON_TRACK,
    STATUS_WARNING,
    BudgetProgress,
    BudgetProgressEngine,
    TransactionSnapshot,
    alert_level,
    budget_insights,
    progress_status,
)
from errors import NotFound, ValidationFailed, require_owner
from models import (
    Account,
    AccountType,
    Budget,
    BudgetPeriod,
    BudgetType,
    Goal,
    GoalContribution,
    Transaction,
    TransactionType,
)
from periods import local_now, resolve_window, to_local
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetScopeIn,
    BudgetUpdate,
    ContributionIn,
    GoalIn,
    GoalUpdate,
    TransactionIn,
    TransactionUpdate,
)


logger = logging.getLogger(__name__)

BUDGET_STATUSES = (STATUS_ON_TRACK, STATUS_WARNING, STATUS_OVER_BUDGET)
SUGGESTION_MIN_SPEND_CENTS = 100_000
MIRRORED_LEG_FIELDS = (
    "amount_cents",
    "date",
    "category",
    "sub_category",
    "description",
    "notes",
    "payment_method",
)


def cents_to_rupees(cents: int) -> float:
    return cents / 100


def _months_ago(moment: datetime, months: int) -> datetime:
    total = moment.year * 12 + (moment.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    if month == 12:
        next_first = date(year + 1, 1, 1)
    else:
        next_first = date(year, month + 1, 1)
    last_day = (next_first - date.resolution).day
    return moment.replace(year=year, month=month, day=min(moment.day, last_day))


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    category: Optional[str] = None
    type: Optional[TransactionType] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    query: Optional[str] = None


class BalanceReconciler:
    """Derives account balances from the ledger.

    ``balance = initial_balance + income - expense`` over the account's
    non-deleted transactions. Transfers only ever exist as their income and
    expense legs, so they need no special handling here.
    """

    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def _account(self, account_id: int) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(
                Account.id == account_id, Account.user_id == self.user_id
            )
        )

    def totals(self, account_id: int) -> tuple[int, int]:
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
        ).where(
            Transaction.user_id == self.user_id,
            Transaction.account_id == account_id,
            Transaction.deleted_at.is_(None),
        )
        row = self.session.execute(stmt).one()
        return int(row.income), int(row.expenses)

    def reconcile(self, account_id: int) -> Optional[int]:
        account = self._account(account_id)
        if account is None:
            logger.warning(
                f"balance_reconcile_skipped: account_id={account_id} reason=not_found"
            )
            return None
        income, expenses = self.totals(account_id)
        account.balance_cents = account.initial_balance_cents + income - expenses
        logger.info(
            f"balance_reconciled: account_id={account_id} "
            f"balance_cents={account.balance_cents}"
        )
        return account.balance_cents

    def reconcile_many(self, account_ids: Iterable[Optional[int]]) -> dict[int, int]:
        balances: dict[int, int] = {}
        for account_id in sorted({a for a in account_ids if a is not None}):
            balance = self.reconcile(account_id)
            if balance is not None:
                balances[account_id] = balance
        return balances

    def override_balance(self, account_id: int, balance_cents: int) -> Account:
        account = self._account(account_id)
        if account is None or account.deleted_at is not None:
            raise NotFound("Account not found")
        income, expenses = self.totals(account_id)
        account.initial_balance_cents = balance_cents - income + expenses
        account.balance_cents = balance_cents
        self.session.commit()
        self.session.refresh(account)
        logger.info(
            f"balance_overridden: account_id={account_id} balance_cents={balance_cents} "
            f"initial_balance_cents={account.initial_balance_cents} "
            f"income_cents={income} expense_cents={expenses}"
        )
        return account


class AccountService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    @staticmethod
    def _check_type_requirements(
        account_type: AccountType,
        upi_id: Optional[str],
        credit_limit_cents: Optional[int],
    ) -> None:
        if account_type == AccountType.upi and not upi_id:
            raise ValidationFailed({"upi_id": "upi_id required for UPI accounts"})
        if account_type == AccountType.credit_card and credit_limit_cents is None:
            raise ValidationFailed(
                {"credit_limit_cents": "credit limit required for credit cards"}
            )

    def create(self, data: AccountIn) -> Account:
        self._check_type_requirements(data.type, data.upi_id, data.credit_limit_cents)
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            sub_type=data.sub_type,
            balance_cents=data.balance_cents,
            initial_balance_cents=data.balance_cents,
            credit_limit_cents=data.credit_limit_cents,
            upi_id=data.upi_id,
            payment_due_day=data.payment_due_day,
        )
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get(self, account_id: int, *, include_deleted: bool = False) -> Account:
        stmt = select(Account).where(
            Account.id == account_id, Account.user_id == self.user_id
        )
        if not include_deleted:
            stmt = stmt.where(Account.deleted_at.is_(None))
        account = self.session.scalar(stmt)
        if not account:
            raise NotFound("Account not found")
        return account

    def list(
        self, *, type: Optional[AccountType] = None, sub_type: Optional[str] = None
    ) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id, Account.deleted_at.is_(None))
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        if type:
            stmt = stmt.where(Account.type == type)
        if sub_type:
            stmt = stmt.where(Account.sub_type == sub_type)
        return list(self.session.scalars(stmt).all())

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        fields = data.model_dump(exclude_unset=True)
        new_balance = fields.pop("balance_cents", None)
        for key in ("name", "type"):
            if key in fields and fields[key] is None:
                raise ValidationFailed({key: "Field cannot be null"})
        for key, value in fields.items():
            if key == "name" and value is not None:
                value = value.strip()
            setattr(account, key, value)
        try:
            self._check_type_requirements(
                account.type, account.upi_id, account.credit_limit_cents
            )
        except ValidationFailed:
            self.session.rollback()
            raise
        self.session.commit()
        if new_balance is not None:
            return self.override_balance(account_id, new_balance)
        self.session.refresh(account)
        return account

    def override_balance(self, account_id: int, balance_cents: int) -> Account:
        return BalanceReconciler(self.session, self.user_id).override_balance(
            account_id, balance_cents
        )

    def reconcile(self, account_id: int) -> int:
        self.get(account_id, include_deleted=True)
        balance = BalanceReconciler(self.session, self.user_id).reconcile(account_id)
        self.session.commit()
        return int(balance or 0)

    def soft_delete(self, account_id: int) -> None:
        account = self.get(account_id)
        account.deleted_at = datetime.utcnow()
        account.is_active = False
        self.session.commit()

    def transactions(self, account_id: int, limit: int = 200) -> list[Transaction]:
        self.get(account_id, include_deleted=True)
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.account_id == account_id,
                Transaction.deleted_at.is_(None),
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    def _live_account(self, account_id: int, field: str) -> Account:
        account = self.session.scalar(
            select(Account).where(
                Account.id == account_id,
                Account.user_id == self.user_id,
                Account.deleted_at.is_(None),
            )
        )
        if not account:
            raise ValidationFailed({field: "Account not found"})
        return account

    def _build(self, data: TransactionIn, **overrides) -> Transaction:
        values = dict(
            user_id=self.user_id,
            account_id=data.account_id,
            amount_cents=data.amount_cents,
            type=data.type,
            category=data.category.strip(),
            sub_category=data.sub_category,
            description=data.description,
            notes=data.notes,
            payment_method=data.payment_method,
            date=to_local(data.date),
            transfer_account_id=data.transfer_account_id,
        )
        values.update(overrides)
        return Transaction(**values)

    def _prepare(self, data: TransactionIn) -> list[Transaction]:
        self._live_account(data.account_id, "account_id")
        if data.type != TransactionType.transfer:
            if data.transfer_account_id is not None:
                raise ValidationFailed(
                    {"transfer_account_id": "Only transfers may set a destination account"}
                )
            return [self._build(data)]

        if data.transfer_account_id is None:
            raise ValidationFailed(
                {"transfer_account_id": "transfer_account_id required"}
            )
        if data.transfer_account_id == data.account_id:
            raise ValidationFailed(
                {"transfer_account_id": "Transfer destination must differ from source"}
            )
        self._live_account(data.transfer_account_id, "transfer_account_id")
        outgoing = self._build(data, type=TransactionType.expense)
        incoming = self._build(
            data,
            type=TransactionType.income,
            account_id=data.transfer_account_id,
            transfer_account_id=data.account_id,
        )
        return [outgoing, incoming]

    @staticmethod
    def _link_legs(legs: list[Transaction]) -> None:
        if len(legs) == 2:
            outgoing, incoming = legs
            outgoing.transfer_peer_id = incoming.id
            incoming.transfer_peer_id = outgoing.id

    def create(self, data: TransactionIn) -> list[Transaction]:
        """Record a transaction; a transfer yields its two linked legs.

        Both legs are written in one commit so a transfer can never exist
        half-created.
        """
        legs = self._prepare(data)
        self.session.add_all(legs)
        try:
            self.session.flush()
            self._link_legs(legs)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        for txn in legs:
            self.session.refresh(txn)

        self._after_write(
            "create",
            [txn.account_id for txn in legs],
            [TransactionSnapshot.of(txn) for txn in legs],
        )
        return legs

    def bulk_create(self, items: list[TransactionIn]) -> list[Transaction]:
        errors: dict[str, str] = {}
        for index, item in enumerate(items):
            if item.type == TransactionType.transfer:
                errors[f"{index}.type"] = "Transfers cannot be bulk imported"
        if errors:
            raise ValidationFailed(errors)

        created: list[Transaction] = []
        for index, item in enumerate(items):
            try:
                created.extend(self._prepare(item))
            except ValidationFailed as exc:
                raise ValidationFailed(
                    {f"{index}.{field}": msg for field, msg in exc.errors.items()}
                ) from exc
        self.session.add_all(created)
        self.session.commit()
        for txn in created:
            self.session.refresh(txn)

        self._after_write(
            "create",
            [txn.account_id for txn in created],
            [TransactionSnapshot.of(txn) for txn in created],
        )
        return created

    def get(self, transaction_id: int, *, include_deleted: bool = False) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        if not include_deleted:
            stmt = stmt.where(Transaction.deleted_at.is_(None))
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _peer(self, txn: Transaction) -> Optional[Transaction]:
        if txn.transfer_peer_id is None:
            return None
        return self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.id == txn.transfer_peer_id,
            )
        )

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        peer = self._peer(txn)
        fields = data.model_dump(exclude_unset=True)

        for key in ("account_id", "amount_cents", "type", "category", "date"):
            if key in fields and fields[key] is None:
                raise ValidationFailed({key: "Field cannot be null"})
        if fields.get("type") == TransactionType.transfer:
            raise ValidationFailed(
                {"type": "Create a transfer instead of converting a transaction"}
            )
        if peer is not None and fields.get("type", txn.type) != txn.type:
            raise ValidationFailed({"type": "Transfer legs cannot change type"})
        if "account_id" in fields:
            self._live_account(fields["account_id"], "account_id")
            if peer is not None and fields["account_id"] == peer.account_id:
                raise ValidationFailed(
                    {"account_id": "Transfer destination must differ from source"}
                )
        if "category" in fields:
            fields["category"] = fields["category"].strip()
        if "date" in fields:
            fields["date"] = to_local(fields["date"])

        before = [TransactionSnapshot.of(txn)]
        touched_accounts = {txn.account_id}
        balance_changed = any(
            key in fields and fields[key] != getattr(txn, key)
            for key in ("account_id", "amount_cents", "type")
        )

        for key, value in fields.items():
            setattr(txn, key, value)
        if peer is not None:
            before.append(TransactionSnapshot.of(peer))
            touched_accounts.add(peer.account_id)
            for key in MIRRORED_LEG_FIELDS:
                if key in fields:
                    setattr(peer, key, fields[key])
            if "account_id" in fields:
                peer.transfer_account_id = txn.account_id

        self.session.commit()
        self.session.refresh(txn)

        touched_accounts.add(txn.account_id)
        after = [TransactionSnapshot.of(txn)]
        if peer is not None:
            self.session.refresh(peer)
            after.append(TransactionSnapshot.of(peer))
        self._after_write(
            "update",
            touched_accounts if balance_changed else [],
            before + after,
        )
        return txn

    def soft_delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        deleted_at = datetime.utcnow()
        legs = [txn]
        peer = self._peer(txn)
        if peer is not None and peer.deleted_at is None:
            legs.append(peer)
        for leg in legs:
            leg.deleted_at = deleted_at
        self.session.commit()

        self._after_write(
            "delete",
            [leg.account_id for leg in legs],
            [TransactionSnapshot.of(leg) for leg in legs],
        )

    def _after_write(
        self,
        operation: str,
        account_ids: Iterable[int],
        snapshots: list[TransactionSnapshot],
    ) -> None:
        account_ids = list(account_ids)
        if account_ids:
            try:
                BalanceReconciler(self.session, self.user_id).reconcile_many(
                    account_ids
                )
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"balance_reconcile_failed: operation={operation} "
                    f"accounts={sorted(set(account_ids))}"
                )
        BudgetProgressEngine(self.session, self.user_id).notify_transaction_change(
            operation, snapshots
        )

    def _filtered(self, filters: TransactionFilters):
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.deleted_at.is_(None),
        )
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.start:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(func.coalesce(Transaction.description, "")).like(like),
                    func.lower(Transaction.category).like(like),
                    func.lower(func.coalesce(Transaction.notes, "")).like(like),
                )
            )
        return stmt

    def list(
        self,
        filters: TransactionFilters,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = (
            self._filtered(filters)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 20) -> list[Transaction]:
        return self.list(TransactionFilters(), limit=limit)

    def summary(
        self, period: BudgetPeriod | str, now: Optional[datetime] = None
    ) -> list[dict[str, object]]:
        window = resolve_window(period, now)
        total = func.coalesce(func.sum(Transaction.amount_cents), 0).label("total")
        stmt = (
            select(Transaction.category, total, func.count(Transaction.id).label("n"))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.deleted_at.is_(None),
                Transaction.date.between(window.start, window.end),
            )
            .group_by(Transaction.category)
            .order_by(total.desc(), Transaction.category.asc())
        )
        return [
            {"category": row.category, "total_cents": int(row.total), "count": row.n}
            for row in self.session.execute(stmt)
        ]


def serialize_budget(
    budget: Budget, progress: Optional[BudgetProgress] = None
) -> dict[str, object]:
    data: dict[str, object] = {
        "id": budget.id,
        "name": budget.name,
        "budget_type": budget.budget_type.value,
        "scope": {
            "categories": list(budget.scope_categories or []),
            "account_types": list(budget.scope_account_types or []),
            "account_ids": list(budget.scope_account_ids or []),
        },
        "amount_cents": budget.amount_cents,
        "period": budget.period.value,
        "description": budget.description,
        "alert_thresholds": {
            "warning": budget.warning_threshold,
            "critical": budget.critical_threshold,
        },
        "rollover": {
            "enabled": budget.rollover_enabled,
            "type": budget.rollover_type.value,
        },
        "is_active": budget.is_active,
        "created_at": budget.created_at.isoformat() if budget.created_at else None,
        "updated_at": budget.updated_at.isoformat() if budget.updated_at else None,
    }
    if progress is None:
        data["current_period"] = {
            "spent_cents": budget.current_spent_cents,
            "transaction_count": budget.current_transaction_count,
            "progress_percentage": budget.current_progress_percentage,
            "last_calculated": (
                budget.current_last_calculated.isoformat()
                if budget.current_last_calculated
                else None
            ),
        }
        data["status"] = progress_status(budget.current_progress_percentage)
    else:
        data["current_period"] = progress.as_dict()
        data["status"] = progress_status(progress.progress_percentage)
        data["alert_level"] = alert_level(budget, progress)
    return data


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)
        self.engine = BudgetProgressEngine(session, self.user_id)

    def _validate(
        self,
        budget_type: BudgetType,
        scope: BudgetScopeIn,
        warning: int,
        critical: int,
    ) -> None:
        errors: dict[str, str] = {}
        if budget_type == BudgetType.category and not [
            c for c in scope.categories if c.strip()
        ]:
            errors["scope.categories"] = (
                "At least one category is required for category budgets"
            )
        if (
            budget_type == BudgetType.account
            and not scope.account_types
            and not scope.account_ids
        ):
            errors["scope.account_types"] = (
                "Account budgets need account types or account ids"
            )
        if scope.account_ids:
            owned = set(
                self.session.scalars(
                    select(Account.id).where(
                        Account.user_id == self.user_id,
                        Account.id.in_(scope.account_ids),
                    )
                ).all()
            )
            if owned != set(scope.account_ids):
                errors["scope.account_ids"] = "Unknown account"
        if warning > critical:
            errors["alert_thresholds.warning"] = (
                "Warning threshold cannot exceed the critical threshold"
            )
        if errors:
            raise ValidationFailed(errors)

    @staticmethod
    def _apply_scope(budget: Budget, scope: BudgetScopeIn) -> None:
        budget.scope_categories = [c.strip() for c in scope.categories if c.strip()]
        budget.scope_account_types = [t.value for t in scope.account_types]
        budget.scope_account_ids = list(dict.fromkeys(scope.account_ids))

    def create(self, data: BudgetIn, now: Optional[datetime] = None) -> Budget:
        self._validate(
            data.budget_type,
            data.scope,
            data.alert_thresholds.warning,
            data.alert_thresholds.critical,
        )
        budget = Budget(
            user_id=self.user_id,
            name=data.name.strip(),
            budget_type=data.budget_type,
            amount_cents=data.amount_cents,
            period=data.period,
            description=data.description,
            warning_threshold=data.alert_thresholds.warning,
            critical_threshold=data.alert_thresholds.critical,
            rollover_enabled=data.rollover.enabled,
            rollover_type=data.rollover.type,
        )
        self._apply_scope(budget, data.scope)
        self.session.add(budget)
        self.session.flush()
        self.engine.refresh(budget, now)
        self.session.commit()
        self.session.refresh(budget)
        logger.info(f"budget_created: budget_id={budget.id} type={budget.budget_type.value}")
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(
                Budget.id == budget_id,
                Budget.user_id == self.user_id,
                Budget.is_active.is_(True),
            )
        )
        if not budget:
            raise NotFound("Budget not found")
        return budget

    def update(
        self, budget_id: int, data: BudgetUpdate, now: Optional[datetime] = None
    ) -> Budget:
        budget = self.get(budget_id)
        fields = data.model_dump(exclude_unset=True)
        budget_type = data.budget_type or budget.budget_type
        scope = data.scope or BudgetScopeIn(
            categories=list(budget.scope_categories or []),
            account_types=[AccountType(t) for t in budget.scope_account_types or []],
            account_ids=list(budget.scope_account_ids or []),
        )
        thresholds = {
            "warning": budget.warning_threshold,
            "critical": budget.critical_threshold,
        }
        if data.alert_thresholds is not None:
            thresholds.update(data.alert_thresholds.model_dump(exclude_unset=True))
        warning, critical = thresholds["warning"], thresholds["critical"]
        self._validate(budget_type, scope, warning, critical)

        if "name" in fields and data.name is not None:
            budget.name = data.name.strip()
        if "amount_cents" in fields and data.amount_cents is not None:
            budget.amount_cents = data.amount_cents
        if "period" in fields and data.period is not None:
            budget.period = data.period
        if "description" in fields:
            budget.description = data.description
        if data.rollover is not None:
            budget.rollover_enabled = data.rollover.enabled
            budget.rollover_type = data.rollover.type
        budget.budget_type = budget_type
        budget.warning_threshold = warning
        budget.critical_threshold = critical
        self._apply_scope(budget, scope)

        self.engine.refresh(budget, now)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        budget.is_active = False
        self.session.commit()

    def progress(self, budget_id: int, now: Optional[datetime] = None) -> BudgetProgress:
        return self.engine.compute(self.get(budget_id), now)

    def list_with_progress(
        self,
        *,
        period: Optional[str] = None,
        budget_type: Optional[str] = None,
        status: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[tuple[Budget, BudgetProgress]]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.is_active.is_(True))
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        errors: dict[str, str] = {}
        if period and period != "all":
            try:
                stmt = stmt.where(Budget.period == BudgetPeriod(period))
            except ValueError:
                errors["period"] = f"Unsupported period: {period}"
        if budget_type and budget_type != "all":
            try:
                stmt = stmt.where(Budget.budget_type == BudgetType(budget_type))
            except ValueError:
                errors["type"] = f"Unsupported budget type: {budget_type}"
        if status and status != "all" and status not in BUDGET_STATUSES:
            errors["status"] = f"Unsupported status: {status}"
        if errors:
            raise ValidationFailed(errors)

        now = now or local_now()
        evaluated = [
            (budget, self.engine.compute(budget, now))
            for budget in self.session.scalars(stmt).all()
        ]
        if status and status != "all":
            evaluated = [
                (budget, progress)
                for budget, progress in evaluated
                if progress_status(progress.progress_percentage) == status
            ]
        return evaluated

    def analytics(
        self, period: Optional[str] = None, now: Optional[datetime] = None
    ) -> dict[str, object]:
        evaluated = self.list_with_progress(period=period, now=now)

        total_budgeted = sum(budget.amount_cents for budget, _ in evaluated)
        total_spent = sum(progress.spent_cents for _, progress in evaluated)

        category_breakdown: dict[str, int] = {}
        account_type_breakdown: dict[str, int] = {}
        for budget, progress in evaluated:
            if budget.budget_type == BudgetType.category:
                for category in budget.scope_categories or []:
                    category_breakdown[category] = (
                        category_breakdown.get(category, 0) + progress.spent_cents
                    )
            if budget.budget_type == BudgetType.account:
                for account_type in budget.scope_account_types or []:
                    account_type_breakdown[account_type] = (
                        account_type_breakdown.get(account_type, 0)
                        + progress.spent_cents
                    )

        return {
            "summary": {
                "total_budgeted_cents": total_budgeted,
                "total_spent_cents": total_spent,
                "total_remaining_cents": total_budgeted - total_spent,
                "utilization_rate": (
                    total_spent / total_budgeted * 100 if total_budgeted > 0 else 0
                ),
                "budget_count": len(evaluated),
                "over_budget_count": sum(
                    1 for _, p in evaluated if p.progress_percentage > 100
                ),
            },
            "category_breakdown": category_breakdown,
            "account_type_breakdown": account_type_breakdown,
            "budgets": [serialize_budget(b, p) for b, p in evaluated],
            "insights": budget_insights(evaluated),
            "chart_data": {
                "spending_by_category": [
                    {"name": name, "value": value}
                    for name, value in category_breakdown.items()
                ],
                "spending_by_account": [
                    {"name": name, "value": value}
                    for name, value in account_type_breakdown.items()
                ],
                "budget_progress": [
                    {
                        "name": budget.name,
                        "budgeted": budget.amount_cents,
                        "spent": progress.spent_cents,
                        "remaining": budget.amount_cents - progress.spent_cents,
                    }
                    for budget, progress in evaluated
                ],
            },
        }

    def suggestions(
        self, now: Optional[datetime] = None, limit: int = 5
    ) -> list[dict[str, object]]:
        now = now or local_now()
        since = _months_ago(now, 1)
        spent = func.coalesce(func.sum(Transaction.amount_cents), 0).label("spent")
        stmt = (
            select(Transaction.category, spent)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.deleted_at.is_(None),
                Transaction.date >= since,
                Transaction.date <= now,
            )
            .group_by(Transaction.category)
        )
        suggestions = []
        for row in self.session.execute(stmt):
            amount = int(row.spent)
            if amount <= SUGGESTION_MIN_SPEND_CENTS:
                continue
            category = row.category or "Other"
            suggestions.append(
                {
                    "type": BudgetType.category.value,
                    "name": f"Monthly {category} Budget",
                    "suggested_amount_cents": -(-amount * 11 // 10),
                    "category": category,
                    "reason": (
                        f"Based on ₹{cents_to_rupees(amount):,.2f} spent on "
                        f"{category} last month"
                    ),
                }
            )
        suggestions.sort(key=lambda s: s["suggested_amount_cents"], reverse=True)
        return suggestions[:limit]


def refresh_all_budgets(session: Session, now: Optional[datetime] = None) -> int:
    """Recompute the cached progress of every active budget, for all owners."""
    owners = session.scalars(
        select(Budget.user_id).where(Budget.is_active.is_(True)).distinct()
    ).all()
    refreshed = 0
    for owner in owners:
        engine = BudgetProgressEngine(session, owner)
        for budget in engine.active_budgets():
            engine.refresh(budget, now)
            refreshed += 1
    session.commit()
    return refreshed


class GoalService:
    def __init__(self, session: Session, user_id: Optional[str]) -> None:
        self.session = session
        self.user_id = require_owner(user_id)

    @staticmethod
    def _sync_completion(goal: Goal) -> None:
        if goal.current_amount_cents >= goal.target_amount_cents:
            goal.is_completed = True

    def list(self) -> list[Goal]:
        stmt = (
            select(Goal)
            .options(selectinload(Goal.contributions))
            .where(Goal.user_id == self.user_id)
            .order_by(Goal.created_at.desc(), Goal.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def get(self, goal_id: int) -> Goal:
        goal = self.session.scalar(
            select(Goal)
            .options(selectinload(Goal.contributions))
            .where(Goal.id == goal_id, Goal.user_id == self.user_id)
        )
        if not goal:
            raise NotFound("Goal not found")
        return goal

    def create(self, data: GoalIn) -> Goal:
        goal = Goal(user_id=self.user_id, **data.model_dump())
        goal.name = goal.name.strip()
        self._sync_completion(goal)
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        for key, value in data.model_dump(exclude_unset=True).items():
            if value is None and key in {
                "name",
                "target_amount_cents",
                "current_amount_cents",
                "priority",
            }:
                raise ValidationFailed({key: "Field cannot be null"})
            setattr(goal, key, value)
        self._sync_completion(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def contribute(self, goal_id: int, data: ContributionIn) -> Goal:
        goal = self.get(goal_id)
        if data.account_id is not None:
            owned = self.session.scalar(
                select(Account.id).where(
                    Account.id == data.account_id, Account.user_id == self.user_id
                )
            )
            if owned is None:
                raise ValidationFailed({"account_id": "Account not found"})
        goal.contributions.append(
            GoalContribution(
                amount_cents=data.amount_cents,
                date=local_now(),
                account_id=data.account_id,
            )
        )
        goal.current_amount_cents += data.amount_cents
        self._sync_completion(goal)
        self.session.commit()
        self.session.refresh(goal)
        logger.info(
            f"goal_contribution: goal_id={goal.id} amount_cents={data.amount_cents} "
            f"completed={goal.is_completed}"
        )
        return goal

    def complete(self, goal_id: int) -> Goal:
        goal = self.get(goal_id)
        goal.is_completed = True
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()

    def summary(self) -> dict[str, int]:
        rows = self.session.execute(
            select(Goal.is_completed, func.count(Goal.id))
            .where(Goal.user_id == self.user_id)
            .group_by(Goal.is_completed)
        ).all()
        counts = {bool(done): int(n) for done, n in rows}
        return {"completed": counts.get(True, 0), "active": counts.get(False, 0)}
