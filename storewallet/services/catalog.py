from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import logging

logger = logging.getLogger(__name__)

from storewallet.exceptions import ItemNotFoundError, ItemUnavailableError, PaymentMethodNotFoundError
from storewallet.models import CatalogItem, ItemStatus, PaymentMethod, OWNED_STATUSES
from storewallet.schemas import ItemCreate, ItemUpdate, PaymentMethodCreate
from storewallet.services.wallet import WalletService


class CatalogService:
    """
    Staff-side management of catalog items and payment methods.
    Reservation state is owned by WalletService and is not editable here.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_item(self, item_id: UUID) -> CatalogItem:
        query = select(CatalogItem).where(CatalogItem.id == item_id).execution_options(populate_existing=True)
        result = await self.db.execute(query)
        item = result.scalar_one_or_none()
        if not item:
            logger.warning(f"Item lookup failed: {item_id}")
            raise ItemNotFoundError()
        return item

    async def create_item(self, item_in: ItemCreate) -> CatalogItem:
        item = CatalogItem(
            title=item_in.title,
            description=item_in.description,
            image_ref=item_in.image_ref,
            price=item_in.price,
            quantity=item_in.quantity,
            status=ItemStatus.AVAILABLE,
        )
        self.db.add(item)
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Created item: {item.title} (ID: {item.id}, price {item.price}, quantity {item.quantity})")
        return item

    async def update_item(self, item_id: UUID, item_in: ItemUpdate) -> CatalogItem:
        item = await self.get_item(item_id)
        for field, value in item_in.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(item, field, value)
        await self.db.commit()
        await self.db.refresh(item)
        logger.info(f"Updated item {item_id}")
        return item

    async def delete_item(self, item_id: UUID):
        item = await self.get_item(item_id)
        if item.status in OWNED_STATUSES:
            # Paid amount is not returned to the owner
            logger.warning(f"Deleting item {item_id} still owned by {item.owner_id}")
        await self.db.delete(item)
        await self.db.commit()
        logger.info(f"Deleted item {item_id}")

    async def set_availability(self, item_id: UUID, available: bool) -> CatalogItem:
        """
        Toggles an unowned item between AVAILABLE and UNAVAILABLE.
        """
        item = await self.get_item(item_id)
        current = ItemStatus.UNAVAILABLE if available else ItemStatus.AVAILABLE
        target = ItemStatus.AVAILABLE if available else ItemStatus.UNAVAILABLE
        if item.status == target:
            return item

        result = await self.db.execute(
            update(CatalogItem)
            .where(CatalogItem.id == item.id, CatalogItem.status == current)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            await self.db.rollback()
            raise ItemUnavailableError()
        await self.db.commit()
        logger.info(f"Item {item_id} is now {target.value}")
        return await self.get_item(item_id)

    async def restock_item(self, item_id: UUID) -> CatalogItem:
        """
        Puts a reserved or sold unit back on sale. Same state change as a cancelled
        reservation, including the refund when REFUND_ON_CANCEL is set.
        """
        item = await WalletService(self.db).cancel_reservation(item_id)
        logger.info(f"Item {item_id} restocked")
        return item

    # Payment methods

    async def list_payment_methods(self, active_only: bool = False):
        query = select(PaymentMethod).order_by(PaymentMethod.name)
        if active_only:
            query = query.where(PaymentMethod.is_active.is_(True))
        result = await self.db.execute(query)
        return result.scalars().all()

    async def add_payment_method(self, method_in: PaymentMethodCreate) -> PaymentMethod:
        method = PaymentMethod(**method_in.model_dump())
        self.db.add(method)
        await self.db.commit()
        await self.db.refresh(method)
        logger.info(f"Added payment method: {method.name} (ID: {method.id})")
        return method

    async def delete_payment_method(self, method_id: UUID):
        method = await self.db.get(PaymentMethod, method_id)
        if not method:
            raise PaymentMethodNotFoundError()
        await self.db.delete(method)
        await self.db.commit()
        logger.info(f"Deleted payment method {method_id}")
