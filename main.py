import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth import resolve_owner_token
from config import get_settings
from database import get_session
from errors import NotFound, OwnerRequired, ValidationFailed
from models import Account, AccountType, BudgetPeriod, Goal, Transaction, TransactionType
from periods import to_local
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdate,
    BalanceOverrideIn,
    BudgetIn,
    BudgetUpdate,
    ContributionIn,
    GoalIn,
    GoalUpdate,
    TransactionIn,
    TransactionUpdate,
    field_errors,
)
from services import (
    AccountService,
    BudgetService,
    GoalService,
    TransactionFilters,
    TransactionService,
    serialize_budget,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="FlowFinance")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    yield from get_session()


def get_owner_id(request: Request) -> str:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    user_id = resolve_owner_token(token.strip())
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    logger.info(f"app_startup: timezone={get_settings().timezone}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(ValidationFailed)
def validation_failed_handler(_request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=400, content={"errors": exc.errors})


@app.exception_handler(RequestValidationError)
def request_validation_handler(_request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"errors": field_errors(exc.errors())})


@app.exception_handler(NotFound)
def not_found_handler(_request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(OwnerRequired)
def owner_required_handler(_request: Request, exc: OwnerRequired):
    return JSONResponse(status_code=401, content={"error": str(exc)})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def account_to_dict(account: Account) -> dict[str, object]:
    return {
        "id": account.id,
        "name": account.name,
        "type": account.type.value,
        "sub_type": account.sub_type,
        "balance_cents": account.balance_cents,
        "initial_balance_cents": account.initial_balance_cents,
        "credit_limit_cents": account.credit_limit_cents,
        "upi_id": account.upi_id,
        "payment_due_day": account.payment_due_day,
        "is_active": account.is_active,
        "created_at": _iso(account.created_at),
        "updated_at": _iso(account.updated_at),
    }


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "amount_cents": txn.amount_cents,
        "type": txn.type.value,
        "category": txn.category,
        "sub_category": txn.sub_category,
        "description": txn.description,
        "notes": txn.notes,
        "payment_method": txn.payment_method,
        "date": txn.date.isoformat(),
        "transfer_account_id": txn.transfer_account_id,
        "transfer_peer_id": txn.transfer_peer_id,
        "created_at": _iso(txn.created_at),
    }


def goal_to_dict(goal: Goal) -> dict[str, object]:
    return {
        "id": goal.id,
        "name": goal.name,
        "description": goal.description,
        "target_amount_cents": goal.target_amount_cents,
        "current_amount_cents": goal.current_amount_cents,
        "target_date": goal.target_date.isoformat() if goal.target_date else None,
        "category": goal.category,
        "priority": goal.priority.value,
        "image_url": goal.image_url,
        "is_completed": goal.is_completed,
        "contribution_history": [
            {
                "amount_cents": c.amount_cents,
                "date": c.date.isoformat(),
                "account_id": c.account_id,
            }
            for c in goal.contributions
        ],
        "created_at": _iso(goal.created_at),
    }


@app.get("/api/ping")
def ping():
    return {"message": "ping"}


# Accounts


@app.get("/api/accounts")
def list_accounts(
    type: Optional[AccountType] = None,
    bank: Optional[str] = None,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    accounts = AccountService(db, owner).list(type=type, sub_type=bank)
    return [account_to_dict(a) for a in accounts]


@app.post("/api/accounts", status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return account_to_dict(AccountService(db, owner).create(payload))


@app.put("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return account_to_dict(AccountService(db, owner).update(account_id, payload))


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    AccountService(db, owner).soft_delete(account_id)
    return {"success": True}


@app.put("/api/accounts/{account_id}/balance")
def override_account_balance(
    account_id: int,
    payload: BalanceOverrideIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    account = AccountService(db, owner).override_balance(
        account_id, payload.balance_cents
    )
    return account_to_dict(account)


@app.post("/api/accounts/{account_id}/reconcile")
def reconcile_account(
    account_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    balance = AccountService(db, owner).reconcile(account_id)
    return {"account_id": account_id, "balance_cents": balance}


@app.get("/api/accounts/{account_id}/transactions")
def account_transactions(
    account_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    items = AccountService(db, owner).transactions(account_id)
    return [transaction_to_dict(t) for t in items]


# Transactions


@app.get("/api/transactions")
def list_transactions(
    account: Optional[int] = None,
    category: Optional[str] = None,
    type: Optional[TransactionType] = None,
    q: Optional[str] = None,
    start: Optional[datetime] = Query(default=None, alias="from"),
    end: Optional[datetime] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    filters = TransactionFilters(
        account_id=account,
        category=category,
        type=type,
        start=to_local(start) if start else None,
        end=to_local(end) if end else None,
        query=q,
    )
    offset = (page - 1) * limit
    items = TransactionService(db, owner).list(filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    return {
        "items": [transaction_to_dict(t) for t in items[:limit]],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.get("/api/transactions/recent")
def recent_transactions(
    db: Session = Depends(get_db), owner: str = Depends(get_owner_id)
):
    return [transaction_to_dict(t) for t in TransactionService(db, owner).recent()]


@app.get("/api/transactions/summary/{period}")
def transaction_summary(
    period: BudgetPeriod,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return TransactionService(db, owner).summary(period)


@app.post("/api/transactions", status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    created = TransactionService(db, owner).create(payload)
    return [transaction_to_dict(t) for t in created]


@app.post("/api/transactions/bulk", status_code=201)
def bulk_create_transactions(
    payload: list[TransactionIn],
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    created = TransactionService(db, owner).bulk_create(payload)
    return [transaction_to_dict(t) for t in created]


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    txn = TransactionService(db, owner).update(transaction_id, payload)
    return transaction_to_dict(txn)


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    TransactionService(db, owner).soft_delete(transaction_id)
    return {"success": True}


# Budgets


@app.get("/api/budgets")
def list_budgets(
    period: Optional[str] = None,
    type: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    evaluated = BudgetService(db, owner).list_with_progress(
        period=period, budget_type=type, status=status
    )
    return [serialize_budget(budget, progress) for budget, progress in evaluated]


@app.get("/api/budgets/analytics")
def budget_analytics(
    period: Optional[str] = None,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return BudgetService(db, owner).analytics(period)


@app.get("/api/budgets/suggestions")
def budget_suggestions(
    db: Session = Depends(get_db), owner: str = Depends(get_owner_id)
):
    return BudgetService(db, owner).suggestions()


@app.post("/api/budgets", status_code=201)
def create_budget(
    payload: BudgetIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    service = BudgetService(db, owner)
    budget = service.create(payload)
    return serialize_budget(budget, service.progress(budget.id))


@app.put("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    payload: BudgetUpdate,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    service = BudgetService(db, owner)
    budget = service.update(budget_id, payload)
    return serialize_budget(budget, service.progress(budget.id))


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    BudgetService(db, owner).delete(budget_id)
    return {"message": "Budget deleted successfully"}


@app.get("/api/budgets/{budget_id}/progress")
def budget_progress(
    budget_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return BudgetService(db, owner).progress(budget_id).as_dict()


# Goals


@app.get("/api/goals")
def list_goals(db: Session = Depends(get_db), owner: str = Depends(get_owner_id)):
    return [goal_to_dict(g) for g in GoalService(db, owner).list()]


@app.get("/api/goals/summary")
def goals_summary(db: Session = Depends(get_db), owner: str = Depends(get_owner_id)):
    return GoalService(db, owner).summary()


@app.post("/api/goals", status_code=201)
def create_goal(
    payload: GoalIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return goal_to_dict(GoalService(db, owner).create(payload))


@app.put("/api/goals/{goal_id}")
def update_goal(
    goal_id: int,
    payload: GoalUpdate,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return goal_to_dict(GoalService(db, owner).update(goal_id, payload))


@app.post("/api/goals/{goal_id}/contribute")
def contribute_to_goal(
    goal_id: int,
    payload: ContributionIn,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return goal_to_dict(GoalService(db, owner).contribute(goal_id, payload))


@app.put("/api/goals/{goal_id}/complete")
def complete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    return goal_to_dict(GoalService(db, owner).complete(goal_id))


@app.delete("/api/goals/{goal_id}")
def delete_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    owner: str = Depends(get_owner_id),
):
    GoalService(db, owner).delete(goal_id)
    return {"success": True}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
