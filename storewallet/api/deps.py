from dataclasses import dataclass
from typing import Optional
from uuid import UUID
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from storewallet.db.session import get_db
from storewallet.exceptions import NotAuthenticatedError, PermissionDeniedError
from storewallet.models import AccountRole, STAFF_ROLES
from storewallet.services.accounts import AccountService


@dataclass(frozen=True)
class RequestContext:
    """
    Identity of the caller for a single request.
    """
    account_id: UUID
    role: AccountRole

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


async def get_context(
    x_account_id: Optional[UUID] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> RequestContext:
    if x_account_id is None:
        raise NotAuthenticatedError()
    account = await AccountService(db).get_account(x_account_id)
    return RequestContext(account_id=account.id, role=account.role)


async def require_staff(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if not ctx.is_staff:
        raise PermissionDeniedError()
    return ctx


async def require_manager(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if ctx.role != AccountRole.MANAGER:
        raise PermissionDeniedError("Manager permissions required")
    return ctx
