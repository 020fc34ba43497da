import logging
from dataclasses import asdict
from datetime import date
from enum import Enum
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from allocation import classify_transaction
from config import get_settings
from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import get_db, session_scope
from models import Transaction, TransactionType
from periods import local_today, resolve_period
from recurrence import MaterializeResult
from scheduler import SchedulerManager
from schemas import (
    BudgetRuleIn,
    BudgetRuleOut,
    CategoryIn,
    CategoryOut,
    MaterializeOut,
    RecurringRuleIn,
    RecurringRuleOut,
    TransactionIn,
    TransactionOut,
)
from services import (
    BudgetRuleService,
    CategoryService,
    ContractLockedError,
    DashboardService,
    RecurringRuleService,
    TransactionService,
    materialize_all,
)


settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", CSRF_HEADER],
)

scheduler_manager = SchedulerManager()


class ScheduleKind(str, Enum):
    income = "income"
    expense = "expense"

    @property
    def transaction_type(self) -> TransactionType:
        if self is ScheduleKind.income:
            return TransactionType.income
        return TransactionType.expense


@app.on_event("startup")
def startup_event():
    with session_scope() as session:
        added = CategoryService(session).seed_predefined()
    if added:
        logger.info(f"startup: seeded_categories={added}")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def require_csrf(request: Request) -> None:
    if not validate_csrf_token(request.headers.get(CSRF_HEADER, "")):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")


def transaction_payload(txn: Transaction) -> TransactionOut:
    category = txn.category
    category_type = txn.category_type
    return TransactionOut(
        id=txn.id,
        description=txn.description,
        amount_cents=txn.amount_cents,
        type=txn.type,
        kind=classify_transaction(txn.type, category_type),
        category_id=txn.category_id,
        category_name=category.name if category else None,
        category_type=category_type,
        transaction_date=txn.transaction_date,
        recurring_income_id=txn.recurring_income_id,
        recurring_expense_id=txn.recurring_expense_id,
    )


def materialize_payload(result: MaterializeResult) -> MaterializeOut:
    return MaterializeOut(
        processed_rule_count=result.processed_rule_count,
        created_transaction_count=result.created_transaction_count,
        failed_rule_count=result.failed_rule_count,
    )


@app.get("/api/health")
def health():
    return {"status": "ok"}


@app.get("/api/csrf-token")
def csrf_token():
    return {"token": generate_csrf_token(), "header": CSRF_HEADER}


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(db: Session = Depends(get_db)):
    return CategoryService(db).list_all()


@app.post(
    "/api/categories",
    response_model=CategoryOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_category(data: CategoryIn, db: Session = Depends(get_db)):
    try:
        return CategoryService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.patch(
    "/api/categories/{category_id}",
    response_model=CategoryOut,
    dependencies=[Depends(require_csrf)],
)
def update_category(category_id: int, data: CategoryIn, db: Session = Depends(get_db)):
    service = CategoryService(db)
    try:
        service.get(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(category_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete(
    "/api/categories/{category_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_category(category_id: int, db: Session = Depends(get_db)):
    try:
        CategoryService(db).delete(category_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(db: Session = Depends(get_db)):
    return [transaction_payload(txn) for txn in TransactionService(db).list_all()]


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).get(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.post(
    "/api/transactions",
    response_model=TransactionOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.patch(
    "/api/transactions/{transaction_id}",
    response_model=TransactionOut,
    dependencies=[Depends(require_csrf)],
)
def update_transaction(
    transaction_id: int, data: TransactionIn, db: Session = Depends(get_db)
):
    service = TransactionService(db)
    try:
        service.get(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        txn = service.update(transaction_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return transaction_payload(txn)


@app.delete(
    "/api/transactions/{transaction_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Recurring schedules


@app.get("/api/recurring/{kind}", response_model=list[RecurringRuleOut])
def list_recurring(kind: ScheduleKind, db: Session = Depends(get_db)):
    return RecurringRuleService(db, kind.transaction_type).list()


@app.post(
    "/api/recurring/{kind}/process",
    response_model=MaterializeOut,
    dependencies=[Depends(require_csrf)],
)
def process_recurring(kind: ScheduleKind, db: Session = Depends(get_db)):
    result = RecurringRuleService(db, kind.transaction_type).materialize_due()
    return materialize_payload(result)


@app.post(
    "/api/recurring/{kind}",
    response_model=RecurringRuleOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_recurring(
    kind: ScheduleKind, data: RecurringRuleIn, db: Session = Depends(get_db)
):
    try:
        return RecurringRuleService(db, kind.transaction_type).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.patch(
    "/api/recurring/{kind}/{rule_id}",
    response_model=RecurringRuleOut,
    dependencies=[Depends(require_csrf)],
)
def update_recurring(
    kind: ScheduleKind,
    rule_id: int,
    data: RecurringRuleIn,
    db: Session = Depends(get_db),
):
    service = RecurringRuleService(db, kind.transaction_type)
    try:
        service.get(rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.update(rule_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post(
    "/api/recurring/{kind}/{rule_id}/stop",
    response_model=RecurringRuleOut,
    dependencies=[Depends(require_csrf)],
)
def stop_recurring(kind: ScheduleKind, rule_id: int, db: Session = Depends(get_db)):
    service = RecurringRuleService(db, kind.transaction_type)
    try:
        service.get(rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    try:
        return service.stop(rule_id)
    except ContractLockedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete(
    "/api/recurring/{kind}/{rule_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_recurring(kind: ScheduleKind, rule_id: int, db: Session = Depends(get_db)):
    try:
        RecurringRuleService(db, kind.transaction_type).delete(rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/reload", dependencies=[Depends(require_csrf)])
def reload_data(db: Session = Depends(get_db)):
    results = materialize_all(db)
    return {
        ScheduleKind.income.value: materialize_payload(results[TransactionType.income]),
        ScheduleKind.expense.value: materialize_payload(
            results[TransactionType.expense]
        ),
    }


# Budget rules


@app.get("/api/budget-rules", response_model=list[BudgetRuleOut])
def list_budget_rules(db: Session = Depends(get_db)):
    return BudgetRuleService(db).list_all()


@app.get("/api/budget-rules/active", response_model=BudgetRuleOut)
def active_budget_rule(on: Optional[date] = None, db: Session = Depends(get_db)):
    return BudgetRuleService(db).active_for(on or local_today())


@app.post(
    "/api/budget-rules",
    response_model=BudgetRuleOut,
    status_code=201,
    dependencies=[Depends(require_csrf)],
)
def create_budget_rule(data: BudgetRuleIn, db: Session = Depends(get_db)):
    return BudgetRuleService(db).create(data)


@app.patch(
    "/api/budget-rules/{rule_id}",
    response_model=BudgetRuleOut,
    dependencies=[Depends(require_csrf)],
)
def update_budget_rule(rule_id: int, data: BudgetRuleIn, db: Session = Depends(get_db)):
    try:
        return BudgetRuleService(db).update(rule_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.delete(
    "/api/budget-rules/{rule_id}",
    status_code=204,
    dependencies=[Depends(require_csrf)],
)
def delete_budget_rule(rule_id: int, db: Session = Depends(get_db)):
    try:
        BudgetRuleService(db).delete(rule_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


# Dashboard


@app.get("/api/dashboard")
def dashboard(
    period: str = "month",
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    try:
        selected = resolve_period(period, year, month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    snapshot = DashboardService(db).snapshot(selected)
    data = asdict(snapshot)
    data["period"]["label"] = selected.label
    data["allocation"]["rule"]["is_fallback"] = snapshot.allocation.rule.is_fallback
    return data


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
