from uuid import UUID
from decimal import Decimal
from datetime import datetime, timezone
from functools import wraps
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case
from sqlalchemy.exc import SQLAlchemyError
import logging

logger = logging.getLogger(__name__)

from storewallet.core.config import settings
from storewallet.core.shift import shift_window
from storewallet.models import (
    Account,
    CatalogItem,
    LedgerTransaction,
    ItemStatus,
    TransactionStatus,
    TransactionType,
    INCOME_TYPES,
    utcnow,
)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalizes a filter bound to UTC; naive values are assumed to already be UTC.
    """
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def empty_on_backend_error(func_):
    """
    List reads degrade to an empty result when the backend fails.
    """
    @wraps(func_)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func_(self, *args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error(f"{func_.__name__} failed, returning empty result: {exc}")
            await self.db.rollback()
            return []
    return wrapper


class QueryService:
    """
    Read side for the storefront and the staff console.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @empty_on_backend_error
    async def list_accounts(self, include_hidden: bool = False):
        query = select(Account).order_by(Account.display_name)
        if not include_hidden and settings.HIDDEN_ACCOUNT_LOGINS:
            query = query.where(Account.login.not_in(settings.HIDDEN_ACCOUNT_LOGINS))
        result = await self.db.execute(query)
        accounts = result.scalars().all()
        logger.debug(f"Listed {len(accounts)} accounts")
        return accounts

    @empty_on_backend_error
    async def list_items(self, available_only: bool = False, owner_id: Optional[UUID] = None):
        query = select(CatalogItem).order_by(CatalogItem.created_at.desc())
        if available_only:
            query = query.where(CatalogItem.status == ItemStatus.AVAILABLE)
        if owner_id is not None:
            query = query.where(CatalogItem.owner_id == owner_id)
        result = await self.db.execute(query)
        return result.scalars().all()

    @empty_on_backend_error
    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        type: Optional[TransactionType] = None,
        status: Optional[TransactionStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        """
        Newest first. date_from is inclusive, date_to exclusive.
        """
        query = select(LedgerTransaction).order_by(LedgerTransaction.date.desc())
        if account_id is not None:
            query = query.where(LedgerTransaction.account_id == account_id)
        if type is not None:
            query = query.where(LedgerTransaction.type == type)
        if status is not None:
            query = query.where(LedgerTransaction.status == status)
        if date_from is not None:
            query = query.where(LedgerTransaction.date >= as_utc(date_from))
        if date_to is not None:
            query = query.where(LedgerTransaction.date < as_utc(date_to))
        result = await self.db.execute(query)
        transactions = result.scalars().all()
        logger.debug(f"Retrieved {len(transactions)} transactions")
        return transactions

    @empty_on_backend_error
    async def pending_requests(self):
        """
        Deposits, withdrawals and refund requests awaiting staff review, oldest first.
        """
        query = (
            select(LedgerTransaction)
            .where(
                LedgerTransaction.status == TransactionStatus.PENDING,
                LedgerTransaction.type.not_in(INCOME_TYPES),
            )
            .order_by(LedgerTransaction.date)
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def unviewed_income_count(self) -> int:
        query = select(func.count(LedgerTransaction.id)).where(
            LedgerTransaction.type.in_(INCOME_TYPES),
            LedgerTransaction.viewed.is_(False),
        )
        result = await self.db.execute(query)
        return result.scalar() or 0

    @empty_on_backend_error
    async def income_by_account(self):
        """
        Purchase and rent income grouped per account, most recently active first.
        """
        last_date = func.max(LedgerTransaction.date)
        query = (
            select(
                LedgerTransaction.account_id,
                Account.display_name,
                func.sum(LedgerTransaction.amount).label("total"),
                func.count(LedgerTransaction.id).label("transactions"),
                last_date.label("last_date"),
                func.sum(case((LedgerTransaction.viewed.is_(False), 1), else_=0)).label("unread"),
            )
            .select_from(LedgerTransaction)
            .outerjoin(Account, Account.id == LedgerTransaction.account_id)
            .where(LedgerTransaction.type.in_(INCOME_TYPES))
            .group_by(LedgerTransaction.account_id, Account.display_name)
            .order_by(last_date.desc())
        )
        result = await self.db.execute(query)
        return [
            {
                "account_id": row.account_id,
                "display_name": row.display_name,
                "total": Decimal(str(row.total or 0)),
                "count": row.transactions,
                "last_date": row.last_date,
                "has_unread": bool(row.unread),
            }
            for row in result.all()
        ]

    async def shift_report(self, at: Optional[datetime] = None) -> dict:
        """
        Summarizes the shift containing `at` (default: now). Totals only count
        APPROVED rows; the transaction list includes everything in the window.
        """
        start, end = shift_window(at or utcnow())
        transactions = await self.list_transactions(date_from=start, date_to=end)

        totals = {kind: Decimal(0) for kind in TransactionType}
        for transaction in transactions:
            if transaction.status == TransactionStatus.APPROVED:
                totals[transaction.type] += Decimal(transaction.amount)

        logger.debug(f"Shift {start.isoformat()} - {end.isoformat()}: {len(transactions)} transactions")
        return {
            "start": start,
            "end": end,
            "totals": totals,
            "count": len(transactions),
            "transactions": transactions,
        }
