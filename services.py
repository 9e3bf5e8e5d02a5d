from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session

from config import get_settings
from ledger import ZERO, AccountBalance, compute_balances, currency_totals, money_str
from models import (
    Account,
    Budget,
    Currency,
    Notification,
    NotificationType,
    RecurringTransaction,
    Task,
    Transaction,
    TransactionType,
)
from periods import Period, month_period
from recurrence import local_today, next_due_date, occurrences_between
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
)

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    account_id: Optional[int] = None
    query: Optional[str] = None


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name, Account.id)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise NotFoundError("Account not found")
        return account

    def create(self, data: AccountIn) -> Account:
        account = Account(user_id=self.user_id, **data.model_dump())
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        changes = data.model_dump(exclude_unset=True)
        merged = AccountIn(
            **{
                field: changes.get(field, getattr(account, field))
                for field in AccountIn.model_fields
            }
        )
        for field, value in merged.model_dump().items():
            setattr(account, field, value)
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> int:
        """Delete an account with every transaction that touches it.

        Returns the number of transactions removed.
        """
        account = self.get(account_id)
        txn_ids = list(
            self.session.scalars(
                select(Transaction.id).where(
                    Transaction.user_id == self.user_id,
                    or_(
                        Transaction.account_id == account_id,
                        Transaction.transfer_to_account_id == account_id,
                    ),
                )
            ).all()
        )
        if txn_ids:
            self.session.execute(
                update(Task)
                .where(Task.user_id == self.user_id, Task.transaction_id.in_(txn_ids))
                .values(transaction_id=None)
                .execution_options(synchronize_session="fetch")
            )
            self.session.execute(
                delete(Transaction)
                .where(Transaction.id.in_(txn_ids))
                .execution_options(synchronize_session="fetch")
            )
        recurring_deleted = self.session.execute(
            delete(RecurringTransaction)
            .where(
                RecurringTransaction.user_id == self.user_id,
                RecurringTransaction.account_id == account_id,
            )
            .execution_options(synchronize_session="fetch")
        ).rowcount
        self.session.delete(account)
        self.session.commit()
        logger.info(
            f"account_deleted: id={account_id} transactions={len(txn_ids)} "
            f"recurring={recurring_deleted}"
        )
        return len(txn_ids)


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _require_account(self, account_id: Optional[int], label: str) -> None:
        account = self.session.get(Account, account_id) if account_id else None
        if not account or account.user_id != self.user_id:
            raise ValueError(f"{label} account not found")

    def _validate(self, data: TransactionIn) -> None:
        self._require_account(data.account_id, "Source")
        if data.type == TransactionType.transfer:
            self._require_account(data.transfer_to_account_id, "Destination")

    def add(self, data: TransactionIn) -> Transaction:
        """Stage a transaction in the session without committing."""
        self._validate(data)
        txn = Transaction(user_id=self.user_id, **data.model_dump())
        self.session.add(txn)
        self.session.flush()
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = self.add(data)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        values = {
            field: getattr(txn, field) for field in TransactionIn.model_fields
        }
        values.update(changes)
        if values["type"] != TransactionType.transfer:
            if "transfer_to_account_id" not in changes:
                values["transfer_to_account_id"] = None
            # The fixed transfer category does not carry over.
            if txn.type == TransactionType.transfer and "category" not in changes:
                raise ValueError("Category is required")
        merged = TransactionIn(**values)
        self._validate(merged)
        for field, value in merged.model_dump().items():
            setattr(txn, field, value)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        self.session.execute(
            update(Task)
            .where(Task.user_id == self.user_id, Task.transaction_id == txn.id)
            .values(transaction_id=None)
            .execution_options(synchronize_session="fetch")
        )
        self.session.delete(txn)
        self.session.commit()

    def all(self) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        return list(self.session.scalars(stmt).all())

    def list(
        self,
        period: Optional[Period] = None,
        filters: Optional[TransactionFilters] = None,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(Transaction.date.between(period.start, period.end))
        if filters:
            if filters.type:
                stmt = stmt.where(Transaction.type == filters.type)
            if filters.account_id:
                stmt = stmt.where(
                    or_(
                        Transaction.account_id == filters.account_id,
                        Transaction.transfer_to_account_id == filters.account_id,
                    )
                )
            if filters.query:
                pattern = f"%{filters.query.strip()}%"
                stmt = stmt.where(
                    or_(
                        Transaction.description.ilike(pattern),
                        Transaction.category.ilike(pattern),
                    )
                )
        stmt = stmt.order_by(
            Transaction.date.desc(), Transaction.time.desc(), Transaction.id.desc()
        )
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())


class BalanceService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def snapshot(self) -> tuple[list[Account], dict[int, AccountBalance]]:
        accounts = AccountService(self.session, self.user_id).list_all()
        transactions = TransactionService(self.session, self.user_id).all()
        return accounts, compute_balances(accounts, transactions)

    def summary(self) -> dict[str, object]:
        accounts, balances = self.snapshot()
        return {
            "accounts": [
                {"id": account.id, "name": account.name, **balances[account.id].as_dict()}
                for account in accounts
            ],
            "totals": currency_totals(balances).as_dict(),
        }


class RecurringTransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, item_id: int) -> RecurringTransaction:
        item = self.session.get(RecurringTransaction, item_id)
        if not item or item.user_id != self.user_id:
            raise NotFoundError("Recurring transaction not found")
        return item

    def list(self) -> list[RecurringTransaction]:
        stmt = (
            select(RecurringTransaction)
            .where(RecurringTransaction.user_id == self.user_id)
            .order_by(RecurringTransaction.description, RecurringTransaction.id)
        )
        return list(self.session.scalars(stmt).all())

    def with_next_due(
        self, today: Optional[date] = None
    ) -> list[tuple[RecurringTransaction, date]]:
        today = today or local_today()
        items = [
            (item, next_due_date(item.start_date, item.frequency, today))
            for item in self.list()
        ]
        return sorted(items, key=lambda pair: (pair[1], pair[0].id))

    def upcoming(
        self, days: int, today: Optional[date] = None
    ) -> list[tuple[RecurringTransaction, date]]:
        """Every occurrence due between ``today`` and ``today + days``."""
        today = today or local_today()
        end = today + timedelta(days=days)
        rows: list[tuple[RecurringTransaction, date]] = []
        for item in self.list():
            for due in occurrences_between(item.start_date, item.frequency, today, end):
                rows.append((item, due))
        return sorted(rows, key=lambda pair: (pair[1], pair[0].id))

    def _require_account(self, account_id: int) -> None:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")

    def create(self, data: RecurringTransactionIn) -> RecurringTransaction:
        self._require_account(data.account_id)
        item = RecurringTransaction(user_id=self.user_id, **data.model_dump())
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    def update(self, item_id: int, data: RecurringTransactionIn) -> RecurringTransaction:
        item = self.get(item_id)
        if data.account_id != item.account_id:
            self._require_account(data.account_id)
        for field, value in data.model_dump().items():
            setattr(item, field, value)
        self.session.commit()
        self.session.refresh(item)
        return item

    def delete(self, item_id: int) -> None:
        item = self.get(item_id)
        self.session.delete(item)
        self.session.commit()


class TaskService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, task_id: int) -> Task:
        task = self.session.get(Task, task_id)
        if not task or task.user_id != self.user_id:
            raise NotFoundError("Task not found")
        return task

    def list(self, *, include_completed: bool = True) -> list[Task]:
        stmt = select(Task).where(Task.user_id == self.user_id)
        if not include_completed:
            stmt = stmt.where(Task.is_completed.is_(False))
        stmt = stmt.order_by(Task.due_date, Task.time, Task.id)
        return list(self.session.scalars(stmt).all())

    def pending(self, limit: Optional[int] = None) -> list[Task]:
        tasks = self.list(include_completed=False)
        return tasks[:limit] if limit is not None else tasks

    def _record_transaction(self, title: str, data: TransactionIn) -> Transaction:
        if not data.description:
            data = data.model_copy(update={"description": title})
        return TransactionService(self.session, self.user_id).add(data)

    def create(self, data: TaskIn) -> Task:
        task = Task(
            user_id=self.user_id,
            title=data.title,
            due_date=data.due_date,
            time=data.time,
            is_completed=False,
        )
        if data.transaction is not None:
            task.transaction_id = self._record_transaction(data.title, data.transaction).id
        self.session.add(task)
        self.session.commit()
        self.session.refresh(task)
        return task

    def update(self, task_id: int, data: TaskUpdate) -> Task:
        task = self.get(task_id)
        for field, value in data.model_dump(exclude_unset=True).items():
            if field in ("title", "due_date") and value is None:
                raise ValueError(f"{field} cannot be empty")
            setattr(task, field, value)
        self.session.commit()
        self.session.refresh(task)
        return task

    def toggle(self, task_id: int) -> Task:
        task = self.get(task_id)
        task.is_completed = not task.is_completed
        task.completed_at = datetime.utcnow() if task.is_completed else None
        self.session.commit()
        self.session.refresh(task)
        return task

    def complete(self, task_id: int, data: Optional[TaskCompleteIn] = None) -> Task:
        """Mark a task done, optionally recording a transaction with it."""
        task = self.get(task_id)
        if task.is_completed:
            raise ValueError("Task is already completed")
        if data is not None and data.transaction is not None:
            if task.transaction_id is not None:
                raise ValueError("Task already has a linked transaction")
            task.transaction_id = self._record_transaction(task.title, data.transaction).id
        task.is_completed = True
        task.completed_at = datetime.utcnow()
        self.session.commit()
        self.session.refresh(task)
        return task

    def delete(self, task_id: int) -> None:
        task = self.get(task_id)
        self.session.delete(task)
        self.session.commit()


@dataclass
class BudgetProgress:
    budget: Budget
    spent: Decimal
    remaining: Decimal
    percent: float


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.category)
        )
        return list(self.session.scalars(stmt).all())

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def _ensure_unique(self, category: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(Budget.id).where(
            Budget.user_id == self.user_id, Budget.category == category
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError(f"A budget for {category} already exists")

    def create(self, data: BudgetIn) -> Budget:
        self._ensure_unique(data.category)
        budget = Budget(
            user_id=self.user_id,
            category=data.category,
            amount=data.amount,
            currency=data.currency,
            period="monthly",
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        if changes.get("category") is not None:
            self._ensure_unique(changes["category"], exclude_id=budget.id)
        for field, value in changes.items():
            if value is None:
                raise ValueError(f"{field} cannot be empty")
            setattr(budget, field, value)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def spent_by_category(self, period: Period) -> dict[tuple[str, Currency], Decimal]:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.date.between(period.start, period.end),
        )
        spent: dict[tuple[str, Currency], Decimal] = {}
        for txn in self.session.scalars(stmt):
            key = (txn.category, txn.currency)
            spent[key] = spent.get(key, ZERO) + txn.amount
        return spent

    def progress_for_month(self, year: int, month: int) -> list[BudgetProgress]:
        """Budgets with month-to-date spending, closest to the limit first."""
        spent_by_key = self.spent_by_category(month_period(year, month))
        rows: list[BudgetProgress] = []
        for budget in self.list_all():
            spent = spent_by_key.get((budget.category, budget.currency), ZERO)
            percent = float(spent / budget.amount * 100) if budget.amount else 0.0
            rows.append(
                BudgetProgress(
                    budget=budget,
                    spent=spent,
                    remaining=budget.amount - spent,
                    percent=round(percent, 2),
                )
            )
        return sorted(rows, key=lambda row: (-row.percent, row.budget.category))


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _in_period(self, period: Period) -> list[Transaction]:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.type != TransactionType.transfer,
            Transaction.date.between(period.start, period.end),
        )
        return list(self.session.scalars(stmt).all())

    def kpis(self, period: Period) -> dict[str, dict[str, str]]:
        income = {currency: ZERO for currency in Currency}
        expenses = {currency: ZERO for currency in Currency}
        for txn in self._in_period(period):
            if txn.type == TransactionType.income:
                income[txn.currency] += txn.amount
            else:
                expenses[txn.currency] += txn.amount
        return {
            currency.value: {
                "income": money_str(income[currency]),
                "expenses": money_str(expenses[currency]),
                "net": money_str(income[currency] - expenses[currency]),
            }
            for currency in Currency
        }

    def category_breakdown(
        self, period: Period, txn_type: TransactionType = TransactionType.expense
    ) -> list[dict[str, object]]:
        totals: dict[Currency, dict[str, Decimal]] = {}
        for txn in self._in_period(period):
            if txn.type != txn_type:
                continue
            by_category = totals.setdefault(txn.currency, {})
            by_category[txn.category] = by_category.get(txn.category, ZERO) + txn.amount

        breakdown: list[dict[str, object]] = []
        for currency in Currency:
            by_category = totals.get(currency)
            if not by_category:
                continue
            total = sum(by_category.values(), ZERO)
            items = sorted(by_category.items(), key=lambda x: (-x[1], x[0]))
            breakdown.append(
                {
                    "currency": currency.value,
                    "total": money_str(total),
                    "categories": [
                        {
                            "name": name,
                            "amount": money_str(amount),
                            "percent": round(float(amount / total * 100), 2),
                        }
                        for name, amount in items
                    ],
                }
            )
        return breakdown

    def daily_summary(self, period: Period) -> dict[date, dict[str, dict[str, str]]]:
        days: dict[date, dict[Currency, dict[str, Decimal]]] = {}
        for txn in self._in_period(period):
            per_currency = days.setdefault(txn.date, {}).setdefault(
                txn.currency, {"income": ZERO, "expense": ZERO}
            )
            per_currency[txn.type.value] += txn.amount
        return {
            day: {
                currency.value: {key: money_str(value) for key, value in sums.items()}
                for currency, sums in sorted(entries.items(), key=lambda x: x[0].value)
            }
            for day, entries in sorted(days.items())
        }


class NotificationService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list(self, *, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == self.user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        return list(self.session.scalars(stmt.limit(limit)).all())

    def unread_count(self) -> int:
        stmt = select(func.count(Notification.id)).where(
            Notification.user_id == self.user_id,
            Notification.is_read.is_(False),
        )
        return self.session.execute(stmt).scalar_one() or 0

    def mark_read(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.is_read.is_(False),
            )
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        self.session.commit()
        return result.rowcount

    def generate_reminders(self, today: Optional[date] = None) -> int:
        """Record reminders for upcoming recurring items, due tasks and
        exhausted budgets. Each reminder is stored at most once.
        """
        today = today or local_today()
        horizon = today + timedelta(days=get_settings().reminder_days)
        candidates: list[Notification] = []

        recurring = RecurringTransactionService(self.session, self.user_id)
        for item, due in recurring.with_next_due(today):
            if due > horizon:
                continue
            label = "income" if item.type == TransactionType.income else "payment"
            candidates.append(
                Notification(
                    user_id=self.user_id,
                    type=NotificationType.reminder,
                    title=f"Upcoming {label}: {item.description}",
                    message=(
                        f"{item.description} for {money_str(item.amount)} "
                        f"{item.currency.value} is due on {due.isoformat()}."
                    ),
                    related_url="/api/recurring",
                    dedupe_key=f"recurring:{item.id}:{due.isoformat()}",
                )
            )

        for task in TaskService(self.session, self.user_id).pending():
            if task.due_date > today:
                continue
            candidates.append(
                Notification(
                    user_id=self.user_id,
                    type=NotificationType.reminder,
                    title=f"Task due: {task.title}",
                    message=f"{task.title} was due on {task.due_date.isoformat()}.",
                    related_url="/api/tasks",
                    dedupe_key=f"task:{task.id}:{task.due_date.isoformat()}",
                )
            )

        budgets = BudgetService(self.session, self.user_id)
        for row in budgets.progress_for_month(today.year, today.month):
            if row.spent < row.budget.amount:
                continue
            candidates.append(
                Notification(
                    user_id=self.user_id,
                    type=NotificationType.warning,
                    title=f"Budget exceeded: {row.budget.category}",
                    message=(
                        f"Spent {money_str(row.spent)} of "
                        f"{money_str(row.budget.amount)} "
                        f"{row.budget.currency.value} this month."
                    ),
                    related_url="/api/budgets",
                    dedupe_key=f"budget:{row.budget.id}:{today:%Y-%m}",
                )
            )

        existing = set(
            self.session.scalars(
                select(Notification.dedupe_key).where(
                    Notification.user_id == self.user_id,
                    Notification.dedupe_key.in_([n.dedupe_key for n in candidates]),
                )
            ).all()
        )
        created = [n for n in candidates if n.dedupe_key not in existing]
        self.session.add_all(created)
        self.session.commit()
        logger.info(f"reminders_generated: count={len(created)} date={today}")
        return len(created)


class DashboardService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def summary(self, today: Optional[date] = None, upcoming_days: int = 7) -> dict:
        today = today or local_today()
        balances = BalanceService(self.session, self.user_id).summary()
        budgets = BudgetService(self.session, self.user_id).progress_for_month(
            today.year, today.month
        )
        return {
            "balances": balances,
            "kpis": MetricsService(self.session, self.user_id).kpis(
                month_period(today.year, today.month)
            ),
            "budgets": budgets[:3],
            "pending_tasks": TaskService(self.session, self.user_id).pending(limit=3),
            "upcoming": RecurringTransactionService(
                self.session, self.user_id
            ).upcoming(upcoming_days, today),
            "unread_notifications": NotificationService(
                self.session, self.user_id
            ).unread_count(),
        }
