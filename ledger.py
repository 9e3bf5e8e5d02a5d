"""Derive per-account balances from a flat transaction history.

Balances are never stored. Every call folds the complete set of accounts and
transactions it is given into a fresh snapshot, so the result cannot drift
from the data it was computed from. Callers decide when to recompute.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Hashable, Iterable, Optional

from models import Currency, TransactionType

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
CENT = Decimal("0.01")


@dataclass
class AccountBalance:
    balance_dop: Decimal = ZERO
    balance_usd: Decimal = ZERO

    def get(self, currency: Currency) -> Decimal:
        if currency == Currency.dop:
            return self.balance_dop
        return self.balance_usd

    def apply(self, currency: Currency, delta: Decimal) -> None:
        if currency == Currency.dop:
            self.balance_dop += delta
        else:
            self.balance_usd += delta

    def as_dict(self) -> dict[str, str]:
        return {
            "balance_dop": money_str(self.balance_dop),
            "balance_usd": money_str(self.balance_usd),
        }


def money_str(value: Decimal) -> str:
    return str(Decimal(value).quantize(CENT))


def _coerce_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def _coerce_amount(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return amount


def compute_balances(
    accounts: Iterable[object], transactions: Iterable[object]
) -> dict[Hashable, AccountBalance]:
    """Fold ``transactions`` into one DOP/USD bucket pair per account.

    ``accounts`` only need an ``id``. Transactions need ``type``,
    ``currency``, ``amount``, ``account_id`` and, for transfers,
    ``transfer_to_account_id``; ORM rows and plain objects both work.

    Income adds to ``account_id``, expense subtracts from it, and a transfer
    moves the amount from ``account_id`` to ``transfer_to_account_id`` in the
    transaction's own currency. A side that points at an unknown account is
    skipped. Records with an unknown type, currency or unreadable amount are
    skipped entirely. The result does not depend on transaction order.
    """
    balances: dict[Hashable, AccountBalance] = {
        account.id: AccountBalance() for account in accounts
    }

    for txn in transactions:
        txn_type = _coerce_enum(TransactionType, getattr(txn, "type", None))
        currency = _coerce_enum(Currency, getattr(txn, "currency", None))
        amount = _coerce_amount(getattr(txn, "amount", None))
        if txn_type is None or currency is None or amount is None:
            logger.debug(
                f"ledger_skip: id={getattr(txn, 'id', None)} "
                f"type={getattr(txn, 'type', None)!r} "
                f"currency={getattr(txn, 'currency', None)!r}"
            )
            continue

        source = balances.get(getattr(txn, "account_id", None))
        if txn_type == TransactionType.income:
            if source is not None:
                source.apply(currency, amount)
        elif txn_type == TransactionType.expense:
            if source is not None:
                source.apply(currency, -amount)
        else:
            destination_id = getattr(txn, "transfer_to_account_id", None)
            if destination_id is None:
                continue
            if source is not None:
                source.apply(currency, -amount)
            destination = balances.get(destination_id)
            if destination is not None:
                destination.apply(currency, amount)

    return balances


def currency_totals(balances: dict[Hashable, AccountBalance]) -> AccountBalance:
    """Sum every account's buckets; DOP and USD stay separate."""
    total = AccountBalance()
    for balance in balances.values():
        total.balance_dop += balance.balance_dop
        total.balance_usd += balance.balance_usd
    return total
