
from typing import List, Optional
from uuid import UUID
from datetime import datetime
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from storewallet.api.deps import RequestContext, get_context, require_staff, require_manager
from storewallet.db.session import get_db
from storewallet.exceptions import PermissionDeniedError
from storewallet.models import TransactionType, TransactionStatus
from storewallet.schemas import (
    AccountCreate,
    AccountResponse,
    ApproveRequest,
    DepositRequest,
    DirectRefundCreate,
    IncomeGroupResponse,
    ItemAvailabilityUpdate,
    ItemCreate,
    ItemResponse,
    ItemUpdate,
    PaymentMethodCreate,
    PaymentMethodResponse,
    PurchaseResponse,
    RefundRequestCreate,
    ReserveRequest,
    ShiftReportResponse,
    TransactionResponse,
    UnviewedCountResponse,
    WithdrawalRequest,
)
from storewallet.services.accounts import AccountService
from storewallet.services.catalog import CatalogService
from storewallet.services.queries import QueryService
from storewallet.services.wallet import WalletService

router = APIRouter()

# Accounts

@router.post("/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def register_account(account: AccountCreate, db: AsyncSession = Depends(get_db)):
    service = AccountService(db)
    return await service.register(account)

@router.get("/accounts", response_model=List[AccountResponse])
async def list_accounts(ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).list_accounts()

@router.get("/accounts/{account_id}", response_model=AccountResponse)
async def get_account(account_id: UUID, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    if account_id != ctx.account_id and not ctx.is_staff:
        raise PermissionDeniedError()
    return await AccountService(db).get_account(account_id)

@router.delete("/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_account(account_id: UUID, ctx: RequestContext = Depends(require_manager), db: AsyncSession = Depends(get_db)):
    await AccountService(db).delete_account(account_id)

# Customer wallet

@router.get("/wallet/transactions", response_model=List[TransactionResponse])
async def my_transactions(ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).list_transactions(account_id=ctx.account_id)

@router.post("/wallet/deposits", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def request_deposit(request: DepositRequest, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    service = WalletService(db)
    return await service.request_deposit(
        ctx.account_id, request.amount, request.receipt_ref, request.payment_method_id
    )

@router.post("/wallet/withdrawals", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(request: WithdrawalRequest, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    service = WalletService(db)
    return await service.request_withdrawal(ctx.account_id, request.amount, request.details)

@router.post("/wallet/refund-requests", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def request_refund(request: RefundRequestCreate, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    service = WalletService(db)
    return await service.request_refund(ctx.account_id, request.amount, request.reason)

# Staff review

@router.get("/transactions", response_model=List[TransactionResponse])
async def list_transactions(
    account_id: Optional[UUID] = None,
    type: Optional[TransactionType] = None,
    status: Optional[TransactionStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    ctx: RequestContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await QueryService(db).list_transactions(
        account_id=account_id, type=type, status=status, date_from=date_from, date_to=date_to
    )

@router.get("/transactions/pending", response_model=List[TransactionResponse])
async def pending_requests(ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).pending_requests()

@router.get("/transactions/unviewed-count", response_model=UnviewedCountResponse)
async def unviewed_income_count(ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    count = await QueryService(db).unviewed_income_count()
    return UnviewedCountResponse(count=count)

@router.post("/transactions/{transaction_id}/approve", response_model=TransactionResponse)
async def approve_transaction(
    transaction_id: UUID,
    request: Optional[ApproveRequest] = None,
    ctx: RequestContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    manual_amount = request.manual_amount if request else None
    return await WalletService(db).approve(transaction_id, manual_amount)

@router.post("/transactions/{transaction_id}/reject", response_model=TransactionResponse)
async def reject_transaction(transaction_id: UUID, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await WalletService(db).reject(transaction_id)

@router.post("/transactions/{transaction_id}/viewed", response_model=TransactionResponse)
async def mark_transaction_viewed(transaction_id: UUID, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await WalletService(db).mark_viewed(transaction_id)

@router.post("/refunds", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def process_refund(request: DirectRefundCreate, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await WalletService(db).process_refund(request.account_id, request.amount, request.reason)

# Reports

@router.get("/reports/income", response_model=List[IncomeGroupResponse])
async def income_by_account(ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).income_by_account()

@router.get("/reports/shift", response_model=ShiftReportResponse)
async def shift_report(at: Optional[datetime] = None, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).shift_report(at)

# Catalog

@router.get("/items", response_model=List[ItemResponse])
async def list_items(available_only: bool = False, db: AsyncSession = Depends(get_db)):
    return await QueryService(db).list_items(available_only=available_only)

@router.get("/items/mine", response_model=List[ItemResponse])
async def my_items(ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    return await QueryService(db).list_items(owner_id=ctx.account_id)

@router.post("/items", response_model=ItemResponse, status_code=status.HTTP_201_CREATED)
async def create_item(item: ItemCreate, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).create_item(item)

@router.patch("/items/{item_id}", response_model=ItemResponse)
async def update_item(item_id: UUID, item: ItemUpdate, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).update_item(item_id, item)

@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(item_id: UUID, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    await CatalogService(db).delete_item(item_id)

@router.put("/items/{item_id}/availability", response_model=ItemResponse)
async def set_item_availability(
    item_id: UUID,
    request: ItemAvailabilityUpdate,
    ctx: RequestContext = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await CatalogService(db).set_availability(item_id, request.available)

@router.post("/items/{item_id}/reserve", response_model=PurchaseResponse, status_code=status.HTTP_201_CREATED)
async def reserve_item(item_id: UUID, request: ReserveRequest, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    transaction, item = await WalletService(db).reserve(ctx.account_id, item_id, request.offered_amount)
    return PurchaseResponse(
        transaction=TransactionResponse.model_validate(transaction),
        item=ItemResponse.model_validate(item),
    )

@router.post("/items/{item_id}/rent", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def pay_rent(item_id: UUID, request: ReserveRequest, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    return await WalletService(db).pay_rent(ctx.account_id, item_id, request.offered_amount)

@router.post("/items/{item_id}/cancel", response_model=ItemResponse)
async def cancel_reservation(item_id: UUID, ctx: RequestContext = Depends(get_context), db: AsyncSession = Depends(get_db)):
    if not ctx.is_staff:
        item = await CatalogService(db).get_item(item_id)
        if item.owner_id != ctx.account_id:
            raise PermissionDeniedError("Only the owner or staff can cancel a reservation")
    return await WalletService(db).cancel_reservation(item_id)

@router.post("/items/{item_id}/restock", response_model=ItemResponse)
async def restock_item(item_id: UUID, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).restock_item(item_id)

# Payment methods

@router.get("/payment-methods", response_model=List[PaymentMethodResponse])
async def list_payment_methods(active_only: bool = True, db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).list_payment_methods(active_only=active_only)

@router.post("/payment-methods", response_model=PaymentMethodResponse, status_code=status.HTTP_201_CREATED)
async def add_payment_method(method: PaymentMethodCreate, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await CatalogService(db).add_payment_method(method)

@router.delete("/payment-methods/{method_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_payment_method(method_id: UUID, ctx: RequestContext = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    await CatalogService(db).delete_payment_method(method_id)
