from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class AccountType(str, Enum):
    cash = "cash"
    upi = "upi"
    credit_card = "credit_card"
    bank = "bank"


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class BudgetType(str, Enum):
    overall = "overall"
    category = "category"
    account = "account"


class BudgetPeriod(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class RolloverType(str, Enum):
    remaining = "remaining"
    overspend = "overspend"


class GoalPriority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(SAEnum(AccountType), nullable=False)
    sub_type: Mapped[Optional[str]] = mapped_column(String(100))
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    initial_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    credit_limit_cents: Mapped[Optional[int]] = mapped_column(Integer)
    upi_id: Mapped[Optional[str]] = mapped_column(String(100))
    payment_due_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="account",
        foreign_keys="Transaction.account_id",
    )

    __table_args__ = (
        Index("ix_accounts_user_type", "user_id", "type"),
        CheckConstraint(
            "payment_due_day IS NULL OR (payment_due_day >= 1 AND payment_due_day <= 31)",
            name="ck_accounts_payment_due_day",
        ),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    sub_category: Mapped[Optional[str]] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(String(200))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    payment_method: Mapped[Optional[str]] = mapped_column(String(50))
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    transfer_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    transfer_peer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    account: Mapped["Account"] = relationship(
        "Account", back_populates="transactions", foreign_keys=[account_id]
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    budget_type: Mapped[BudgetType] = mapped_column(SAEnum(BudgetType), nullable=False)
    scope_categories: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    scope_account_types: Mapped[list[str]] = mapped_column(
        JSON, default=list, nullable=False
    )
    scope_account_ids: Mapped[list[int]] = mapped_column(
        JSON, default=list, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    warning_threshold: Mapped[int] = mapped_column(Integer, default=80, nullable=False)
    critical_threshold: Mapped[int] = mapped_column(
        Integer, default=100, nullable=False
    )
    rollover_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    rollover_type: Mapped[RolloverType] = mapped_column(
        SAEnum(RolloverType), default=RolloverType.remaining, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Memo of the last recompute; reads always recompute from the ledger.
    current_spent_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_transaction_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_progress_percentage: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    current_last_calculated: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_budgets_user_active", "user_id", "is_active"),
        Index("ix_budgets_user_name", "user_id", "name"),
        CheckConstraint("amount_cents >= 0", name="ck_budgets_amount_positive"),
    )


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    target_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    current_amount_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    target_date: Mapped[Optional[date]] = mapped_column(Date)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    priority: Mapped[GoalPriority] = mapped_column(
        SAEnum(GoalPriority), default=GoalPriority.medium, nullable=False
    )
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    contributions: Mapped[list["GoalContribution"]] = relationship(
        "GoalContribution",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="GoalContribution.id",
    )

    __table_args__ = (Index("ix_goals_user_completed", "user_id", "is_completed"),)


class GoalContribution(Base):
    __tablename__ = "goal_contributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(
        ForeignKey("goals.id", ondelete="CASCADE"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(ForeignKey("accounts.id"))

    goal: Mapped["Goal"] = relationship("Goal", back_populates="contributions")
