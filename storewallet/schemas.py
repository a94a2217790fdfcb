
from uuid import UUID
from decimal import Decimal
from typing import Optional, List, Dict
from datetime import datetime
from pydantic import BaseModel, Field

from storewallet.models import AccountRole, ItemStatus, TransactionType, TransactionStatus, RequestKind

# Account Schemas
class AccountCreate(BaseModel):
    """
    Self-registration payload. Registering an existing login returns that account.
    """
    login: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1)

class AccountResponse(BaseModel):
    id: UUID
    display_name: str
    login: str
    balance: Decimal
    role: AccountRole
    created_at: datetime

    class Config:
        from_attributes = True

# Wallet request schemas; amounts are validated by the service layer
class DepositRequest(BaseModel):
    amount: Decimal
    receipt_ref: Optional[str] = None
    payment_method_id: Optional[UUID] = None

class WithdrawalRequest(BaseModel):
    amount: Decimal
    details: str = Field(..., min_length=1, description="Destination card or wallet details")

class RefundRequestCreate(BaseModel):
    amount: Decimal
    reason: str = ""

class DirectRefundCreate(BaseModel):
    """
    Staff-issued refund, credited immediately.
    """
    account_id: UUID
    amount: Decimal
    reason: str = ""

class ApproveRequest(BaseModel):
    manual_amount: Optional[Decimal] = None

class TransactionResponse(BaseModel):
    id: UUID
    account_id: UUID
    amount: Decimal
    type: TransactionType
    request_kind: Optional[RequestKind] = None
    status: TransactionStatus
    description: str
    receipt_ref: Optional[str] = None
    payment_method_id: Optional[UUID] = None
    viewed: bool
    date: datetime

    class Config:
        from_attributes = True

# Catalog Schemas
class ItemCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    image_ref: str = ""
    price: Decimal = Field(default=Decimal("0"), ge=0)
    quantity: int = Field(default=1, ge=0, description="0 = unlimited stock")

class ItemUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image_ref: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    quantity: Optional[int] = Field(default=None, ge=0)

class ItemAvailabilityUpdate(BaseModel):
    available: bool

class ItemResponse(BaseModel):
    id: UUID
    title: str
    description: str
    image_ref: str
    price: Decimal
    quantity: int
    status: ItemStatus
    owner_id: Optional[UUID] = None
    reserved_at: Optional[datetime] = None
    last_paid_amount: Optional[Decimal] = None
    created_at: datetime

    class Config:
        from_attributes = True

class ReserveRequest(BaseModel):
    """
    offered_amount is only used for free-price items (price == 0).
    """
    offered_amount: Decimal = Decimal("0")

class PurchaseResponse(BaseModel):
    transaction: TransactionResponse
    item: ItemResponse

# Payment Method Schemas
class PaymentMethodCreate(BaseModel):
    name: str = Field(..., min_length=1)
    instruction_text: str = Field(..., min_length=1)
    is_active: bool = True
    min_amount: Decimal = Field(default=Decimal("0"), ge=0)
    icon_ref: Optional[str] = None
    payment_url: Optional[str] = None

class PaymentMethodResponse(BaseModel):
    id: UUID
    name: str
    instruction_text: str
    is_active: bool
    min_amount: Decimal
    icon_ref: Optional[str] = None
    payment_url: Optional[str] = None

    class Config:
        from_attributes = True

# Reporting Schemas
class UnviewedCountResponse(BaseModel):
    count: int

class IncomeGroupResponse(BaseModel):
    """
    Purchase and rent income for one account.
    """
    account_id: UUID
    display_name: Optional[str] = None
    total: Decimal
    count: int
    last_date: datetime
    has_unread: bool

class ShiftReportResponse(BaseModel):
    start: datetime
    end: datetime
    totals: Dict[TransactionType, Decimal]
    count: int
    transactions: List[TransactionResponse] = []
