from uuid import UUID
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
import logging

# Setup Logger
logger = logging.getLogger(__name__)

from storewallet.core.config import settings
from storewallet.exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InvalidAmountError,
    BelowMinimumAmountError,
    ItemNotFoundError,
    ItemUnavailableError,
    NotOwnerError,
    PaymentMethodInactiveError,
    PaymentMethodNotFoundError,
    TransactionNotFoundError,
)
from storewallet.models import (
    Account,
    CatalogItem,
    LedgerTransaction,
    PaymentMethod,
    ItemStatus,
    RequestKind,
    TransactionStatus,
    TransactionType,
    utcnow,
)

CENT = Decimal("0.01")


def validate_amount(amount) -> Decimal:
    """
    Coerces an incoming amount to Decimal and rejects anything that is not strictly
    positive or that carries more than two decimal places.
    """
    if amount is None:
        raise InvalidAmountError()
    try:
        value = Decimal(str(amount))
        if not value.is_finite() or value <= 0:
            raise InvalidAmountError()
        # Money columns hold cents
        if value != value.quantize(CENT):
            raise InvalidAmountError("Transaction amount must be in whole cents")
    except InvalidOperation:
        raise InvalidAmountError()
    return value


def resolve_price(item: CatalogItem, offered_amount) -> Decimal:
    """
    Fixed-price items cost their price; free-price items (price 0) cost whatever the buyer offers.
    """
    if item.price is not None and Decimal(item.price) > 0:
        return Decimal(item.price)
    return validate_amount(offered_amount)


class WalletService:
    """
    Balance and reservation state machine.

    Every public method runs as a single database transaction: balance changes,
    item changes and the audit row are committed together or rolled back together.
    Balance updates are conditional UPDATE statements, so two operations racing
    on the same account can never overdraw it.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # Lookups

    async def _get_account(self, account_id: UUID) -> Account:
        query = select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        account = result.scalar_one_or_none()
        if not account:
            logger.warning(f"Account lookup failed: {account_id}")
            raise AccountNotFoundError()
        return account

    async def _get_item(self, item_id: UUID) -> CatalogItem:
        query = select(CatalogItem).where(CatalogItem.id == item_id).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        item = result.scalar_one_or_none()
        if not item:
            logger.warning(f"Item lookup failed: {item_id}")
            raise ItemNotFoundError()
        return item

    async def _get_transaction(self, transaction_id: UUID) -> LedgerTransaction:
        query = (
            select(LedgerTransaction)
            .where(LedgerTransaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        transaction = result.scalar_one_or_none()
        if not transaction:
            logger.warning(f"Transaction lookup failed: {transaction_id}")
            raise TransactionNotFoundError()
        return transaction

    # Primitive mutations. None of these commit.

    async def _debit(self, account_id: UUID, amount: Decimal):
        stmt = (
            update(Account)
            .where(Account.id == account_id, Account.balance >= amount)
            .values(balance=Account.balance - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if not result.rowcount:
            logger.warning(f"Debit of {amount} refused for {account_id}: insufficient funds")
            raise InsufficientFundsError()

    async def _credit(self, account_id: UUID, amount: Decimal):
        stmt = (
            update(Account)
            .where(Account.id == account_id)
            .values(balance=Account.balance + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if not result.rowcount:
            raise AccountNotFoundError()

    async def _append_transaction(self, **fields) -> LedgerTransaction:
        transaction = LedgerTransaction(**fields)
        self.db.add(transaction)
        await self.db.flush()
        return transaction

    async def _transition(self, transaction_id: UUID, status: TransactionStatus, **values) -> bool:
        """
        Moves a PENDING row to its final status. Returns False if another caller got there first.
        """
        stmt = (
            update(LedgerTransaction)
            .where(
                LedgerTransaction.id == transaction_id,
                LedgerTransaction.status == TransactionStatus.PENDING,
            )
            .values(status=status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return bool(result.rowcount)

    async def _claim_item(self, item: CatalogItem, owner_id: UUID, price: Decimal) -> CatalogItem:
        """
        Hands one unit of an AVAILABLE item to owner_id and returns the owned row.
        """
        now = utcnow()
        if item.is_multi_stock:
            stmt = (
                update(CatalogItem)
                .where(
                    CatalogItem.id == item.id,
                    CatalogItem.status == ItemStatus.AVAILABLE,
                    CatalogItem.quantity > 1,
                )
                .values(quantity=CatalogItem.quantity - 1)
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            if not result.rowcount:
                # Stock changed underneath us; retry against the current row
                item = await self._get_item(item.id)
                if item.status != ItemStatus.AVAILABLE:
                    raise ItemUnavailableError()
                return await self._claim_item(item, owner_id, price)

        if item.is_multi_stock or item.is_unlimited:
            clone = CatalogItem(
                title=item.title,
                description=item.description,
                image_ref=item.image_ref,
                price=item.price,
                quantity=1,
                status=ItemStatus.RESERVED,
                owner_id=owner_id,
                reserved_at=now,
                last_paid_amount=price,
            )
            self.db.add(clone)
            await self.db.flush()
            return clone

        stmt = (
            update(CatalogItem)
            .where(CatalogItem.id == item.id, CatalogItem.status == ItemStatus.AVAILABLE)
            .values(
                status=ItemStatus.RESERVED,
                owner_id=owner_id,
                reserved_at=now,
                last_paid_amount=price,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if not result.rowcount:
            logger.warning(f"Item {item.id} was reserved by someone else")
            raise ItemUnavailableError()
        return item

    # Wallet requests

    async def request_deposit(
        self,
        account_id: UUID,
        amount,
        receipt_ref: Optional[str] = None,
        payment_method_id: Optional[UUID] = None,
    ) -> LedgerTransaction:
        """
        Records a top-up claim for staff review. The balance is only credited on approval.
        """
        amount = validate_amount(amount)
        try:
            account = await self._get_account(account_id)
            if payment_method_id is not None:
                method = await self.db.get(PaymentMethod, payment_method_id)
                if not method:
                    raise PaymentMethodNotFoundError()
                if not method.is_active:
                    raise PaymentMethodInactiveError()
                if method.min_amount and amount < method.min_amount:
                    raise BelowMinimumAmountError(method.min_amount)

            transaction = await self._append_transaction(
                account_id=account.id,
                amount=amount,
                type=TransactionType.DEPOSIT,
                status=TransactionStatus.PENDING,
                description="Wallet top-up (awaiting review)",
                receipt_ref=receipt_ref,
                payment_method_id=payment_method_id,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Deposit requested: {amount} for {account_id} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id)

    async def request_withdrawal(self, account_id: UUID, amount, details: str) -> LedgerTransaction:
        """
        Debits the account up front and records a pending withdrawal. A failure
        anywhere after the debit rolls the debit back with the rest of the unit.
        """
        amount = validate_amount(amount)
        try:
            account = await self._get_account(account_id)
            await self._debit(account.id, amount)
            transaction = await self._append_transaction(
                account_id=account.id,
                amount=amount,
                type=TransactionType.WITHDRAWAL,
                request_kind=RequestKind.WITHDRAWAL,
                status=TransactionStatus.PENDING,
                description=f"Withdrawal request: {details}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Withdrawal requested: {amount} from {account_id} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id)

    async def request_refund(self, account_id: UUID, amount, reason: str = "") -> LedgerTransaction:
        """
        Files a refund request. Nothing is debited; approval credits the account.
        """
        amount = validate_amount(amount)
        try:
            account = await self._get_account(account_id)
            transaction = await self._append_transaction(
                account_id=account.id,
                amount=amount,
                type=TransactionType.WITHDRAWAL,
                request_kind=RequestKind.REFUND_REQUEST,
                status=TransactionStatus.PENDING,
                description=f"Refund request: {reason}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Refund requested: {amount} for {account_id} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id)

    async def process_refund(self, account_id: UUID, amount, reason: str = "") -> LedgerTransaction:
        """
        Staff-issued refund outside the request flow: credited immediately.
        """
        amount = validate_amount(amount)
        try:
            account = await self._get_account(account_id)
            await self._credit(account.id, amount)
            transaction = await self._append_transaction(
                account_id=account.id,
                amount=amount,
                type=TransactionType.REFUND,
                status=TransactionStatus.APPROVED,
                description=f"Refund: {reason}",
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Refund issued: {amount} to {account_id} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id)

    # Staff review

    async def approve(self, transaction_id: UUID, manual_amount=None) -> LedgerTransaction:
        """
        Approves a pending request. Calling this on anything that is not PENDING
        returns the row untouched, so repeated approvals credit at most once.
        """
        transaction = await self._get_transaction(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            logger.info(f"Approve ignored, transaction {transaction_id} is {transaction.status.value}")
            return transaction

        amount = Decimal(transaction.amount)
        credit = Decimal(0)
        if manual_amount is not None:
            amount = validate_amount(manual_amount)

        if transaction.type == TransactionType.DEPOSIT:
            description = "Deposit confirmed"
            credit = amount
        elif transaction.is_refund_request:
            description = "Refund completed"
            credit = amount
        elif transaction.type == TransactionType.WITHDRAWAL:
            # Funds left the balance at request time; a manual amount only rewrites the row
            description = f"Withdrawal confirmed, deducted: {amount}"
        else:
            description = transaction.description

        try:
            if not await self._transition(
                transaction.id, TransactionStatus.APPROVED, amount=amount, description=description
            ):
                await self.db.rollback()
                logger.info(f"Approve lost race for transaction {transaction_id}")
                return await self._get_transaction(transaction_id)
            if credit > 0:
                await self._credit(transaction.account_id, credit)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Transaction approved: {transaction_id} ({transaction.type.value}, {amount})")
        return await self._get_transaction(transaction_id)

    async def reject(self, transaction_id: UUID) -> LedgerTransaction:
        """
        Rejects a pending request. Plain withdrawals get their pre-debited funds back;
        refund requests and deposits never touched the balance.
        """
        transaction = await self._get_transaction(transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            logger.info(f"Reject ignored, transaction {transaction_id} is {transaction.status.value}")
            return transaction

        returns_funds = (
            transaction.type == TransactionType.WITHDRAWAL and not transaction.is_refund_request
        )
        if returns_funds:
            description = "Withdrawal rejected (funds returned)"
        elif transaction.is_refund_request:
            description = "Refund request rejected"
        else:
            description = "Deposit rejected"

        try:
            if not await self._transition(transaction.id, TransactionStatus.REJECTED, description=description):
                await self.db.rollback()
                logger.info(f"Reject lost race for transaction {transaction_id}")
                return await self._get_transaction(transaction_id)
            if returns_funds:
                await self._credit(transaction.account_id, Decimal(transaction.amount))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Transaction rejected: {transaction_id} ({transaction.type.value})")
        return await self._get_transaction(transaction_id)

    async def mark_viewed(self, transaction_id: UUID) -> LedgerTransaction:
        transaction = await self._get_transaction(transaction_id)
        try:
            await self.db.execute(
                update(LedgerTransaction)
                .where(LedgerTransaction.id == transaction.id)
                .values(viewed=True)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return await self._get_transaction(transaction_id)

    # Catalog purchases

    async def reserve(self, account_id: UUID, item_id: UUID, offered_amount=None) -> Tuple[LedgerTransaction, CatalogItem]:
        """
        Buys one unit of an item. Single-unit items move to the buyer; stocked
        and unlimited items produce an owned clone and leave the template on sale.
        """
        try:
            account = await self._get_account(account_id)
            item = await self._get_item(item_id)
            if item.status != ItemStatus.AVAILABLE:
                raise ItemUnavailableError()
            price = resolve_price(item, offered_amount)

            await self._debit(account.id, price)
            owned = await self._claim_item(item, account.id, price)
            owned_id = owned.id
            free_price = not (item.price and Decimal(item.price) > 0)
            transaction = await self._append_transaction(
                account_id=account.id,
                amount=price,
                type=TransactionType.PURCHASE,
                status=TransactionStatus.APPROVED,
                description=(
                    f"Free-price payment: {item.title}" if free_price else f"Item reserved: {item.title}"
                ),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Item {item_id} reserved by {account_id} for {price} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id), await self._get_item(owned_id)

    async def pay_rent(self, account_id: UUID, item_id: UUID, offered_amount=None) -> LedgerTransaction:
        """
        Charges the owner of an item for another rental period and adds the
        charge to the item's paid total.
        """
        try:
            account = await self._get_account(account_id)
            item = await self._get_item(item_id)
            if item.owner_id != account.id:
                raise NotOwnerError()
            price = resolve_price(item, offered_amount)

            await self._debit(account.id, price)
            result = await self.db.execute(
                update(CatalogItem)
                .where(CatalogItem.id == item.id, CatalogItem.owner_id == account.id)
                .values(last_paid_amount=func.coalesce(CatalogItem.last_paid_amount, 0) + price)
                .execution_options(synchronize_session=False)
            )
            if not result.rowcount:
                raise NotOwnerError()
            free_price = not (item.price and Decimal(item.price) > 0)
            transaction = await self._append_transaction(
                account_id=account.id,
                amount=price,
                type=TransactionType.RENT_CHARGE,
                status=TransactionStatus.APPROVED,
                description=(
                    f"Donation/extension: {item.title}" if free_price else f"Rent/extension: {item.title}"
                ),
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Rent paid for {item_id} by {account_id}: {price} (TX: {transaction.id})")
        return await self._get_transaction(transaction.id)

    async def cancel_reservation(self, item_id: UUID) -> CatalogItem:
        """
        Returns an item to sale. The amount paid stays with the shop unless
        REFUND_ON_CANCEL is enabled.
        """
        try:
            item = await self._get_item(item_id)
            previous_owner = item.owner_id
            paid = Decimal(item.last_paid_amount or 0)

            await self.db.execute(
                update(CatalogItem)
                .where(CatalogItem.id == item.id)
                .values(
                    status=ItemStatus.AVAILABLE,
                    owner_id=None,
                    reserved_at=None,
                    last_paid_amount=None,
                )
                .execution_options(synchronize_session=False)
            )
            if settings.REFUND_ON_CANCEL and previous_owner is not None and paid > 0:
                await self._credit(previous_owner, paid)
                await self._append_transaction(
                    account_id=previous_owner,
                    amount=paid,
                    type=TransactionType.REFUND,
                    status=TransactionStatus.APPROVED,
                    description=f"Refund: reservation of {item.title} cancelled",
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Reservation cancelled for item {item_id} (previous owner: {previous_owner})")
        return await self._get_item(item_id)
