
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from sqlalchemy import (
    Boolean,
    Column,
    String,
    Enum,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"

class ItemStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    UNAVAILABLE = "UNAVAILABLE"

class TransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PURCHASE = "PURCHASE"
    RENT_CHARGE = "RENT_CHARGE"
    REFUND = "REFUND"

class TransactionStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

class RequestKind(str, enum.Enum):
    WITHDRAWAL = "WITHDRAWAL"
    REFUND_REQUEST = "REFUND_REQUEST"

STAFF_ROLES = (AccountRole.ADMIN, AccountRole.MANAGER)
OWNED_STATUSES = (ItemStatus.RESERVED, ItemStatus.SOLD)
INCOME_TYPES = (TransactionType.PURCHASE, TransactionType.RENT_CHARGE)

MONEY = Numeric(precision=20, scale=2)


class Account(Base):
    """
    A balance-holding identity: a customer or a staff member.
    The balance never goes below zero; it is only changed through WalletService.
    """
    __tablename__ = "accounts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    display_name = Column(String, nullable=False)
    login = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=True)
    balance = Column(MONEY, default=Decimal("0"), nullable=False)
    role = Column(Enum(AccountRole), default=AccountRole.USER, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Relationships
    transactions = relationship("LedgerTransaction", back_populates="account")

class CatalogItem(Base):
    """
    A catalog entry. quantity 0 means unlimited stock, 1 a single unit and
    anything above 1 a finite multi-stock template. A price of 0 lets the
    buyer name the amount.
    """
    __tablename__ = "catalog_items"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    description = Column(Text, default="", nullable=False)
    image_ref = Column(String, default="", nullable=False)
    price = Column(MONEY, default=Decimal("0"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    status = Column(Enum(ItemStatus), default=ItemStatus.AVAILABLE, nullable=False, index=True)
    owner_id = Column(Uuid, ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True)
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    last_paid_amount = Column(MONEY, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def is_unlimited(self) -> bool:
        return self.quantity == 0

    @property
    def is_multi_stock(self) -> bool:
        return self.quantity > 1

class PaymentMethod(Base):
    """
    Deposit instructions shown to customers. Not linked to balances.
    """
    __tablename__ = "payment_methods"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    instruction_text = Column(Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    min_amount = Column(MONEY, default=Decimal("0"), nullable=False)
    icon_ref = Column(String, nullable=True)
    payment_url = Column(String, nullable=True)

class LedgerTransaction(Base):
    """
    Append-only record of a balance-affecting event. The only mutation a row
    ever sees is the single PENDING -> APPROVED/REJECTED transition (plus the
    staff "viewed" flag).
    """
    __tablename__ = "ledger_transactions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id = Column(Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(MONEY, nullable=False)
    type = Column(Enum(TransactionType), nullable=False)
    request_kind = Column(Enum(RequestKind), nullable=True)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)
    description = Column(String, default="", nullable=False)
    receipt_ref = Column(Text, nullable=True)
    payment_method_id = Column(Uuid, ForeignKey("payment_methods.id", ondelete="SET NULL"), nullable=True)
    viewed = Column(Boolean, default=False, nullable=False)
    date = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Relationships
    account = relationship("Account", back_populates="transactions")

    @property
    def is_refund_request(self) -> bool:
        return self.request_kind == RequestKind.REFUND_REQUEST
