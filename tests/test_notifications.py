from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base
from models import AccountType, Currency, NotificationType, RecurringFrequency, TransactionType
from schemas import AccountIn, BudgetIn, RecurringTransactionIn, TaskIn, TransactionIn
from services import (
    AccountService,
    BudgetService,
    DashboardService,
    NotificationService,
    RecurringTransactionService,
    TaskService,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def seed(session):
    account = AccountService(session).create(
        AccountIn(name="Main", bank="BHD", type=AccountType.checking, currency=Currency.dop)
    )
    recurring = RecurringTransactionService(session)
    rent = recurring.create(
        RecurringTransactionIn(
            description="Rent",
            amount=Decimal("15000"),
            type=TransactionType.expense,
            category="Housing/Rent",
            currency=Currency.dop,
            account_id=account.id,
            frequency=RecurringFrequency.monthly,
            start_date=date(2024, 1, 31),
        )
    )
    recurring.create(
        RecurringTransactionIn(
            description="Salary",
            amount=Decimal("60000"),
            type=TransactionType.income,
            category="Payroll",
            currency=Currency.dop,
            account_id=account.id,
            frequency=RecurringFrequency.monthly,
            start_date=date(2024, 1, 15),
        )
    )
    TaskService(session).create(TaskIn(title="File taxes", due_date=date(2024, 4, 28)))
    TaskService(session).create(TaskIn(title="Renew passport", due_date=date(2024, 9, 1)))
    BudgetService(session).create(BudgetIn(category="Groceries", amount=Decimal("100")))
    TransactionService(session).create(
        TransactionIn(
            type=TransactionType.expense,
            amount=Decimal("120"),
            currency=Currency.dop,
            date=date(2024, 4, 2),
            account_id=account.id,
            category="Groceries",
        )
    )
    return account, rent


def test_upcoming_and_next_due_use_month_end_rule() -> None:
    session = make_session()
    _, rent = seed(session)
    service = RecurringTransactionService(session)

    rows = service.with_next_due(date(2024, 4, 1))
    assert [(item.description, due) for item, due in rows] == [
        ("Salary", date(2024, 4, 15)),
        ("Rent", date(2024, 4, 30)),
    ]

    upcoming = service.upcoming(45, date(2024, 4, 1))
    assert [(item.id, due) for item, due in upcoming if item.id == rent.id] == [
        (rent.id, date(2024, 4, 30)),
    ]
    assert len(upcoming) == 3


def test_reminders_are_generated_once() -> None:
    session = make_session()
    seed(session)
    service = NotificationService(session)

    created = service.generate_reminders(date(2024, 4, 28))

    titles = sorted(n.title for n in service.list())
    assert created == 3
    assert titles == [
        "Budget exceeded: Groceries",
        "Task due: File taxes",
        "Upcoming payment: Rent",
    ]
    assert service.unread_count() == 3
    assert service.generate_reminders(date(2024, 4, 28)) == 0
    assert service.generate_reminders(date(2024, 4, 29)) == 0

    warning = next(n for n in service.list() if n.type == NotificationType.warning)
    service.mark_read(warning.id)
    assert service.unread_count() == 2
    assert service.list(unread_only=True)[0].type == NotificationType.reminder


def test_mark_all_read_clears_unread_count() -> None:
    session = make_session()
    seed(session)
    service = NotificationService(session)
    service.generate_reminders(date(2024, 4, 28))
    service.mark_read(service.list()[0].id)

    assert service.mark_all_read() == 2
    assert service.unread_count() == 0
    assert all(n.is_read for n in service.list())
    assert service.mark_all_read() == 0


def test_dashboard_summary() -> None:
    session = make_session()
    account, _ = seed(session)

    summary = DashboardService(session).summary(date(2024, 4, 10), upcoming_days=7)

    assert summary["balances"]["accounts"] == [
        {"id": account.id, "name": "Main", "balance_dop": "-120.00", "balance_usd": "0.00"}
    ]
    assert summary["kpis"]["DOP"]["expenses"] == "120.00"
    assert [row.budget.category for row in summary["budgets"]] == ["Groceries"]
    assert [task.title for task in summary["pending_tasks"]] == [
        "File taxes",
        "Renew passport",
    ]
    assert [(item.description, due) for item, due in summary["upcoming"]] == [
        ("Salary", date(2024, 4, 15)),
    ]
    assert summary["unread_notifications"] == 0
