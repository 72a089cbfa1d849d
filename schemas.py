from datetime import date, datetime
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import (
    AccountType,
    BudgetPeriod,
    BudgetType,
    GoalPriority,
    RolloverType,
    TransactionType,
)


def field_errors(errors: Iterable[dict[str, Any]]) -> dict[str, str]:
    """Flatten pydantic error dicts into a ``{"a.b.0": "message"}`` map."""
    flat: dict[str, str] = {}
    for err in errors:
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        key = ".".join(loc) or "__root__"
        flat.setdefault(key, str(err.get("msg", "Invalid value")))
    return flat


class AccountIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=2, max_length=100)
    type: AccountType
    sub_type: Optional[str] = Field(default=None, max_length=100)
    balance_cents: int = 0
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)
    upi_id: Optional[str] = Field(default=None, max_length=100)
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=31)


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    type: Optional[AccountType] = None
    sub_type: Optional[str] = Field(default=None, max_length=100)
    balance_cents: Optional[int] = None
    credit_limit_cents: Optional[int] = Field(default=None, ge=0)
    upi_id: Optional[str] = Field(default=None, max_length=100)
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=31)


class BalanceOverrideIn(BaseModel):
    balance_cents: int


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int
    amount_cents: int = Field(..., ge=0)
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    sub_category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)
    date: datetime
    transfer_account_id: Optional[int] = None


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: Optional[int] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sub_category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    payment_method: Optional[str] = Field(default=None, max_length=50)
    date: Optional[datetime] = None


class BudgetScopeIn(BaseModel):
    categories: list[str] = Field(default_factory=list)
    account_types: list[AccountType] = Field(default_factory=list)
    account_ids: list[int] = Field(default_factory=list)


class AlertThresholdsIn(BaseModel):
    warning: int = Field(default=80, ge=0, le=1000)
    critical: int = Field(default=100, ge=0, le=1000)


class RolloverIn(BaseModel):
    enabled: bool = False
    type: RolloverType = RolloverType.remaining


class BudgetIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=50)
    budget_type: BudgetType
    scope: BudgetScopeIn = Field(default_factory=BudgetScopeIn)
    amount_cents: int = Field(..., ge=0)
    period: BudgetPeriod
    description: Optional[str] = None
    alert_thresholds: AlertThresholdsIn = Field(default_factory=AlertThresholdsIn)
    rollover: RolloverIn = Field(default_factory=RolloverIn)


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    budget_type: Optional[BudgetType] = None
    scope: Optional[BudgetScopeIn] = None
    amount_cents: Optional[int] = Field(default=None, ge=0)
    period: Optional[BudgetPeriod] = None
    description: Optional[str] = None
    alert_thresholds: Optional[AlertThresholdsIn] = None
    rollover: Optional[RolloverIn] = None


class GoalIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=2, max_length=100)
    description: Optional[str] = None
    target_amount_cents: int = Field(..., gt=0)
    current_amount_cents: int = Field(default=0, ge=0)
    target_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: GoalPriority = GoalPriority.medium
    image_url: Optional[str] = Field(default=None, max_length=500)


class GoalUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = None
    target_amount_cents: Optional[int] = Field(default=None, gt=0)
    current_amount_cents: Optional[int] = Field(default=None, ge=0)
    target_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)
    priority: Optional[GoalPriority] = None
    image_url: Optional[str] = Field(default=None, max_length=500)


class ContributionIn(BaseModel):
    amount_cents: int = Field(..., gt=0)
    account_id: Optional[int] = None
