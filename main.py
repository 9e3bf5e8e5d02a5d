import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from sqlalchemy.orm import Session

from database import SessionLocal, init_db
from ledger import AccountBalance, money_str
from models import (
    DEFAULT_CATEGORIES,
    Account,
    Budget,
    Notification,
    RecurringTransaction,
    Task,
    Transaction,
    TransactionType,
)
from periods import Period, month_period, resolve_period
from recurrence import local_today, next_due_date
from scheduler import SchedulerManager
from schemas import (
    AccountIn,
    AccountUpdate,
    BudgetIn,
    BudgetUpdate,
    RecurringTransactionIn,
    TaskCompleteIn,
    TaskIn,
    TaskUpdate,
    TransactionIn,
    TransactionUpdate,
    TransferIn,
)
from services import (
    AccountService,
    BalanceService,
    BudgetProgress,
    BudgetService,
    DashboardService,
    MetricsService,
    NotFoundError,
    NotificationService,
    RecurringTransactionService,
    TaskService,
    TransactionFilters,
    TransactionService,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Finance Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("startup: database ready")
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def http_error(exc: ValueError) -> HTTPException:
    status = 404 if isinstance(exc, NotFoundError) else 400
    return HTTPException(status_code=status, detail=str(exc))


def period_from_request(request: Request) -> Period:
    period_slug = request.query_params.get("period")
    start = request.query_params.get("start")
    end = request.query_params.get("end")
    try:
        return resolve_period(period_slug, start, end, today=local_today())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    type_param = request.query_params.get("type")
    account_param = request.query_params.get("account")
    query = request.query_params.get("q")
    txn_type = None
    if type_param:
        try:
            txn_type = TransactionType(type_param)
        except ValueError:
            txn_type = None
    account_id = None
    if account_param:
        try:
            account_id = int(account_param)
        except ValueError:
            account_id = None
    return TransactionFilters(type=txn_type, account_id=account_id, query=query)


def account_out(account: Account, balance: Optional[AccountBalance] = None) -> dict:
    data = {
        "id": account.id,
        "name": account.name,
        "bank": account.bank,
        "type": account.type.value,
        "currency": account.currency.value,
        "account_number": account.account_number,
        "card_number": account.card_number,
        "card_brand": account.card_brand.value if account.card_brand else None,
        "is_frozen": account.is_frozen,
    }
    if balance is not None:
        data.update(balance.as_dict())
    return data


def transaction_out(txn: Transaction) -> dict:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "amount": money_str(txn.amount),
        "currency": txn.currency.value,
        "date": txn.date.isoformat(),
        "time": txn.time.strftime("%H:%M") if txn.time else None,
        "account_id": txn.account_id,
        "transfer_to_account_id": txn.transfer_to_account_id,
        "category": txn.category,
        "description": txn.description,
        "receipt_url": txn.receipt_url,
    }


def recurring_out(item: RecurringTransaction, due: date) -> dict:
    return {
        "id": item.id,
        "description": item.description,
        "amount": money_str(item.amount),
        "type": item.type.value,
        "category": item.category,
        "currency": item.currency.value,
        "account_id": item.account_id,
        "frequency": item.frequency.value,
        "start_date": item.start_date.isoformat(),
        "next_due_date": due.isoformat(),
    }


def task_out(task: Task) -> dict:
    return {
        "id": task.id,
        "title": task.title,
        "due_date": task.due_date.isoformat(),
        "time": task.time.strftime("%H:%M") if task.time else None,
        "is_completed": task.is_completed,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "transaction_id": task.transaction_id,
        "created_at": task.created_at.isoformat(),
    }


def budget_out(budget: Budget, progress: Optional[BudgetProgress] = None) -> dict:
    data = {
        "id": budget.id,
        "category": budget.category,
        "amount": money_str(budget.amount),
        "currency": budget.currency.value,
        "period": budget.period,
    }
    if progress is not None:
        data.update(
            {
                "spent": money_str(progress.spent),
                "remaining": money_str(progress.remaining),
                "percent": progress.percent,
            }
        )
    return data


def notification_out(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "is_read": notification.is_read,
        "related_url": notification.related_url,
        "created_at": notification.created_at.isoformat(),
    }


@app.get("/api/categories")
def api_categories():
    return {txn_type.value: names for txn_type, names in DEFAULT_CATEGORIES.items()}


@app.get("/api/accounts")
def api_accounts(db: Session = Depends(get_db)):
    accounts, balances = BalanceService(db).snapshot()
    return [account_out(account, balances[account.id]) for account in accounts]


@app.post("/api/accounts", status_code=201)
def api_create_account(data: AccountIn, db: Session = Depends(get_db)):
    account = AccountService(db).create(data)
    return account_out(account, AccountBalance())


@app.patch("/api/accounts/{account_id}")
def api_update_account(
    account_id: int, data: AccountUpdate, db: Session = Depends(get_db)
):
    try:
        account = AccountService(db).update(account_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return account_out(account)


@app.delete("/api/accounts/{account_id}")
def api_delete_account(account_id: int, db: Session = Depends(get_db)):
    try:
        removed = AccountService(db).delete(account_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return {"deleted": account_id, "transactions_deleted": removed}


@app.get("/api/balances")
def api_balances(db: Session = Depends(get_db)):
    return BalanceService(db).summary()


@app.get("/api/transactions")
def api_transactions(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request) if request.query_params.get("period") else None
    filters = filters_from_request(request)
    page = max(int(request.query_params.get("page", "1")), 1)
    limit = min(max(int(request.query_params.get("limit", "50")), 1), 100)
    offset = (page - 1) * limit
    items = TransactionService(db).list(period, filters, limit=limit + 1, offset=offset)
    has_more = len(items) > limit
    items = items[:limit]
    return {
        "items": [transaction_out(txn) for txn in items],
        "page": page,
        "limit": limit,
        "has_more": has_more,
    }


@app.post("/api/transactions", status_code=201)
def api_create_transaction(data: TransactionIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.post("/api/transfers", status_code=201)
def api_create_transfer(data: TransferIn, db: Session = Depends(get_db)):
    try:
        txn = TransactionService(db).create(data.to_transaction())
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.patch("/api/transactions/{transaction_id}")
def api_update_transaction(
    transaction_id: int, data: TransactionUpdate, db: Session = Depends(get_db)
):
    try:
        txn = TransactionService(db).update(transaction_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return transaction_out(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def api_delete_transaction(transaction_id: int, db: Session = Depends(get_db)):
    try:
        TransactionService(db).delete(transaction_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/recurring")
def api_recurring(db: Session = Depends(get_db)):
    rows = RecurringTransactionService(db).with_next_due(local_today())
    return [recurring_out(item, due) for item, due in rows]


@app.get("/api/recurring/upcoming")
def api_recurring_upcoming(days: int = 7, db: Session = Depends(get_db)):
    if days < 0 or days > 366:
        raise HTTPException(status_code=400, detail="days must be between 0 and 366")
    rows = RecurringTransactionService(db).upcoming(days, local_today())
    return [recurring_out(item, due) for item, due in rows]


@app.post("/api/recurring", status_code=201)
def api_create_recurring(data: RecurringTransactionIn, db: Session = Depends(get_db)):
    try:
        item = RecurringTransactionService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return recurring_out(item, next_due_date(item.start_date, item.frequency))


@app.put("/api/recurring/{item_id}")
def api_update_recurring(
    item_id: int, data: RecurringTransactionIn, db: Session = Depends(get_db)
):
    try:
        item = RecurringTransactionService(db).update(item_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return recurring_out(item, next_due_date(item.start_date, item.frequency))


@app.delete("/api/recurring/{item_id}", status_code=204)
def api_delete_recurring(item_id: int, db: Session = Depends(get_db)):
    try:
        RecurringTransactionService(db).delete(item_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/tasks")
def api_tasks(include_completed: bool = True, db: Session = Depends(get_db)):
    tasks = TaskService(db).list(include_completed=include_completed)
    return [task_out(task) for task in tasks]


@app.post("/api/tasks", status_code=201)
def api_create_task(data: TaskIn, db: Session = Depends(get_db)):
    try:
        task = TaskService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return task_out(task)


@app.patch("/api/tasks/{task_id}")
def api_update_task(task_id: int, data: TaskUpdate, db: Session = Depends(get_db)):
    try:
        task = TaskService(db).update(task_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return task_out(task)


@app.post("/api/tasks/{task_id}/toggle")
def api_toggle_task(task_id: int, db: Session = Depends(get_db)):
    try:
        task = TaskService(db).toggle(task_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return task_out(task)


@app.post("/api/tasks/{task_id}/complete")
def api_complete_task(
    task_id: int,
    data: Optional[TaskCompleteIn] = None,
    db: Session = Depends(get_db),
):
    try:
        task = TaskService(db).complete(task_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return task_out(task)


@app.delete("/api/tasks/{task_id}", status_code=204)
def api_delete_task(task_id: int, db: Session = Depends(get_db)):
    try:
        TaskService(db).delete(task_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/budgets")
def api_budgets(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    today = local_today()
    year = year or today.year
    month = month or today.month
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    rows = BudgetService(db).progress_for_month(year, month)
    return [budget_out(row.budget, row) for row in rows]


@app.post("/api/budgets", status_code=201)
def api_create_budget(data: BudgetIn, db: Session = Depends(get_db)):
    try:
        budget = BudgetService(db).create(data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.patch("/api/budgets/{budget_id}")
def api_update_budget(
    budget_id: int, data: BudgetUpdate, db: Session = Depends(get_db)
):
    try:
        budget = BudgetService(db).update(budget_id, data)
    except ValueError as exc:
        raise http_error(exc) from exc
    return budget_out(budget)


@app.delete("/api/budgets/{budget_id}", status_code=204)
def api_delete_budget(budget_id: int, db: Session = Depends(get_db)):
    try:
        BudgetService(db).delete(budget_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/notifications")
def api_notifications(unread_only: bool = False, db: Session = Depends(get_db)):
    service = NotificationService(db)
    return {
        "items": [notification_out(n) for n in service.list(unread_only=unread_only)],
        "unread": service.unread_count(),
    }


@app.post("/api/notifications/read-all")
def api_mark_all_notifications_read(db: Session = Depends(get_db)):
    return {"updated": NotificationService(db).mark_all_read()}


@app.post("/api/notifications/{notification_id}/read")
def api_mark_notification_read(notification_id: int, db: Session = Depends(get_db)):
    try:
        notification = NotificationService(db).mark_read(notification_id)
    except ValueError as exc:
        raise http_error(exc) from exc
    return notification_out(notification)


@app.get("/api/dashboard")
def api_dashboard(db: Session = Depends(get_db)):
    summary = DashboardService(db).summary(local_today())
    return {
        "balances": summary["balances"],
        "kpis": summary["kpis"],
        "budgets": [budget_out(row.budget, row) for row in summary["budgets"]],
        "pending_tasks": [task_out(task) for task in summary["pending_tasks"]],
        "upcoming": [recurring_out(item, due) for item, due in summary["upcoming"]],
        "unread_notifications": summary["unread_notifications"],
    }


@app.get("/api/category-breakdown")
def api_category_breakdown(request: Request, db: Session = Depends(get_db)):
    period = period_from_request(request)
    type_param = request.query_params.get("type", TransactionType.expense.value)
    try:
        txn_type = TransactionType(type_param)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if txn_type == TransactionType.transfer:
        raise HTTPException(status_code=400, detail="Transfers have no categories")
    return {
        "period": {"start": period.start.isoformat(), "end": period.end.isoformat()},
        "breakdown": MetricsService(db).category_breakdown(period, txn_type),
    }


@app.get("/api/calendar")
def api_calendar(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
):
    today = local_today()
    year = year or today.year
    month = month or today.month
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="month must be between 1 and 12")
    period = month_period(year, month)
    days = MetricsService(db).daily_summary(period)
    return {
        "year": year,
        "month": month,
        "days": {day.isoformat(): sums for day, sums in days.items()},
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
