import datetime as dt
from datetime import date
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from models import (
    TRANSFER_CATEGORY,
    AccountType,
    CardBrand,
    Currency,
    RecurringFrequency,
    TransactionType,
)

Amount = Annotated[Decimal, Field(gt=0, max_digits=14, decimal_places=2)]


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    bank: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    currency: Currency
    account_number: Optional[str] = Field(default=None, max_length=34)
    card_number: Optional[str] = Field(default=None, max_length=19)
    card_brand: Optional[CardBrand] = None
    is_frozen: bool = False

    @model_validator(mode="after")
    def _freeze_only_cards(self) -> "AccountIn":
        if self.is_frozen and self.type != AccountType.credit_card:
            raise ValueError("Only credit cards can be frozen")
        return self


class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bank: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    currency: Optional[Currency] = None
    account_number: Optional[str] = Field(default=None, max_length=34)
    card_number: Optional[str] = Field(default=None, max_length=19)
    card_brand: Optional[CardBrand] = None
    is_frozen: Optional[bool] = None


class TransactionIn(BaseModel):
    type: TransactionType
    amount: Amount
    currency: Currency
    date: dt.date
    time: Optional[dt.time] = None
    account_id: int
    transfer_to_account_id: Optional[int] = None
    category: str = Field(default="", max_length=100)
    description: str = Field(default="", max_length=200)
    receipt_url: Optional[str] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "TransactionIn":
        if self.type == TransactionType.transfer:
            if self.transfer_to_account_id is None:
                raise ValueError("Transfers need a destination account")
            if self.transfer_to_account_id == self.account_id:
                raise ValueError("Cannot transfer to the same account")
            self.category = TRANSFER_CATEGORY
        else:
            if self.transfer_to_account_id is not None:
                raise ValueError("Only transfers can have a destination account")
            if not self.category.strip():
                raise ValueError("Category is required")
        return self


class TransferIn(BaseModel):
    amount: Amount
    currency: Currency
    date: dt.date
    time: Optional[dt.time] = None
    account_id: int
    transfer_to_account_id: int
    description: str = Field(default="Transfer between accounts", max_length=200)

    def to_transaction(self) -> TransactionIn:
        return TransactionIn(type=TransactionType.transfer, **self.model_dump())


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=14, decimal_places=2
    )
    currency: Optional[Currency] = None
    date: Optional[dt.date] = None
    time: Optional[dt.time] = None
    account_id: Optional[int] = None
    transfer_to_account_id: Optional[int] = None
    category: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = Field(default=None, max_length=200)
    receipt_url: Optional[str] = None


class RecurringTransactionIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount: Amount
    type: TransactionType
    category: str = Field(..., min_length=1, max_length=100)
    currency: Currency
    account_id: int
    frequency: RecurringFrequency
    start_date: date

    @model_validator(mode="after")
    def _no_recurring_transfers(self) -> "RecurringTransactionIn":
        if self.type == TransactionType.transfer:
            raise ValueError("Transfers cannot recur")
        return self


class TaskIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    due_date: date
    time: Optional[dt.time] = None
    transaction: Optional[TransactionIn] = None


class TaskUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    due_date: Optional[date] = None
    time: Optional[dt.time] = None


class TaskCompleteIn(BaseModel):
    transaction: Optional[TransactionIn] = None


class BudgetIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount: Amount
    currency: Currency = Currency.dop


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    currency: Optional[Currency] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=14, decimal_places=2
    )
