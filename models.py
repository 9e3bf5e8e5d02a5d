import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"
    transfer = "transfer"


class Currency(str, Enum):
    dop = "DOP"
    usd = "USD"


class AccountType(str, Enum):
    payroll = "payroll"
    savings = "savings"
    checking = "checking"
    business = "business"
    credit_card = "credit-card"


class CardBrand(str, Enum):
    visa = "visa"
    mastercard = "mastercard"
    american_express = "american-express"
    other = "other"


class RecurringFrequency(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class NotificationType(str, Enum):
    info = "info"
    warning = "warning"
    reminder = "reminder"


def _values_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


CURRENCY_ENUM = _values_enum(Currency, "currency")
ACCOUNT_TYPE_ENUM = _values_enum(AccountType, "accounttype")
CARD_BRAND_ENUM = _values_enum(CardBrand, "cardbrand")

TRANSFER_CATEGORY = "Transfer"

DEFAULT_CATEGORIES: dict[TransactionType, list[str]] = {
    TransactionType.income: [
        "Payroll",
        "Investments",
        "Gifts",
        "Side Income",
        "Other Income",
    ],
    TransactionType.expense: [
        "Groceries",
        "Transport",
        "Housing/Rent",
        "Utilities",
        "Internet/Cable",
        "Loans/Debt",
        "Entertainment",
        "Health",
        "Education",
        "Shopping",
        "Other Expenses",
    ],
}

# Amounts carry two fraction digits; Numeric keeps them as Decimal.
MONEY = Numeric(14, 2, asdecimal=True)


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
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    currency: Mapped[Currency] = mapped_column(CURRENCY_ENUM, nullable=False)
    account_number: Mapped[Optional[str]] = mapped_column(String(34))
    card_number: Mapped[Optional[str]] = mapped_column(String(19))
    card_brand: Mapped[Optional[CardBrand]] = mapped_column(CARD_BRAND_ENUM)
    is_frozen: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_accounts_user_name", "user_id", "name"),)


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[Currency] = mapped_column(CURRENCY_ENUM, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    time: Mapped[Optional[dt.time]] = mapped_column(Time)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    transfer_to_account_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("accounts.id")
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    receipt_url: Mapped[Optional[str]] = mapped_column(Text)

    account: Mapped["Account"] = relationship("Account", foreign_keys=[account_id])
    transfer_to_account: Mapped[Optional["Account"]] = relationship(
        "Account", foreign_keys=[transfer_to_account_id]
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_account", "user_id", "account_id"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "(type = 'transfer') = (transfer_to_account_id IS NOT NULL)",
            name="ck_transactions_transfer_destination",
        ),
    )


class RecurringTransaction(Base, TimestampMixin):
    __tablename__ = "recurring_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[Currency] = mapped_column(CURRENCY_ENUM, nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    frequency: Mapped[RecurringFrequency] = mapped_column(
        SAEnum(RecurringFrequency), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    account: Mapped["Account"] = relationship("Account")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_recurring_amount_positive"),
        CheckConstraint("type != 'transfer'", name="ck_recurring_not_transfer"),
    )


class Task(Base, TimestampMixin):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    time: Mapped[Optional[dt.time]] = mapped_column(Time)
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    transaction_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("transactions.id")
    )

    transaction: Mapped[Optional["Transaction"]] = relationship("Transaction")

    __table_args__ = (Index("ix_tasks_user_due", "user_id", "due_date"),)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[Currency] = mapped_column(
        CURRENCY_ENUM, nullable=False, default=Currency.dop
    )
    period: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        CheckConstraint("amount > 0", name="ck_budget_amount_positive"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    type: Mapped[NotificationType] = mapped_column(
        SAEnum(NotificationType), nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    related_url: Mapped[Optional[str]] = mapped_column(String(200))
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(120))

    __table_args__ = (
        UniqueConstraint("user_id", "dedupe_key", name="uq_notification_dedupe"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )
