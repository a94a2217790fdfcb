from uuid import UUID
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
import logging

logger = logging.getLogger(__name__)

from storewallet.core.config import settings
from storewallet.exceptions import AccountNotFoundError, AccountNotEmptyError
from storewallet.models import Account, AccountRole, CatalogItem, ItemStatus, LedgerTransaction
from storewallet.schemas import AccountCreate


class AccountService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_account(self, account_id: UUID) -> Account:
        """
        Retrieves an account by id, always reading the current balance from the database.
        """
        query = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        account = result.scalar_one_or_none()
        if not account:
            logger.warning(f"Account lookup failed: {account_id}")
            raise AccountNotFoundError()
        return account

    async def get_by_login(self, login: str):
        result = await self.db.execute(select(Account).where(Account.login == login))
        return result.scalar_one_or_none()

    async def register(self, account_in: AccountCreate) -> Account:
        """
        Returns the account for this login, creating a zero-balance USER on first sight.
        """
        login = account_in.login.strip()
        existing = await self.get_by_login(login)
        if existing:
            return existing

        account = Account(
            login=login,
            display_name=account_in.display_name.strip(),
            balance=Decimal("0"),
            role=AccountRole.USER,
        )
        self.db.add(account)
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent registration of the same login
            await self.db.rollback()
            existing = await self.get_by_login(login)
            if not existing:
                raise
            return existing
        await self.db.refresh(account)
        logger.info(f"Registered account: {account.display_name} (ID: {account.id})")
        return account

    async def seed_staff(self):
        """
        Creates the ADMIN and MANAGER accounts if they do not exist yet. Safe to call on every startup.
        """
        for login, name, role in (
            (settings.ADMIN_LOGIN, settings.ADMIN_NAME, AccountRole.ADMIN),
            (settings.MANAGER_LOGIN, settings.MANAGER_NAME, AccountRole.MANAGER),
        ):
            if await self.get_by_login(login):
                continue
            self.db.add(Account(login=login, display_name=name, balance=Decimal("0"), role=role))
            logger.info(f"Seeded {role.value} account '{login}'")
        await self.db.commit()

    async def delete_account(self, account_id: UUID):
        """
        Removes an account with a zero balance, its ledger history, and its claim on any items.
        """
        account = await self.get_account(account_id)
        if Decimal(account.balance) != 0:
            logger.warning(f"Refusing to delete {account_id}: balance is {account.balance}")
            raise AccountNotEmptyError()

        try:
            await self.db.execute(
                update(CatalogItem)
                .where(CatalogItem.owner_id == account.id)
                .values(status=ItemStatus.AVAILABLE, owner_id=None, reserved_at=None, last_paid_amount=None)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(LedgerTransaction)
                .where(LedgerTransaction.account_id == account.id)
                .execution_options(synchronize_session=False)
            )
            # Balance must still be zero at delete time
            result = await self.db.execute(
                delete(Account)
                .where(Account.id == account.id, Account.balance == 0)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise AccountNotEmptyError()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        self.db.expunge(account)
        logger.info(f"Deleted account {account_id}")
