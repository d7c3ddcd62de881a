"""
Order placement: snapshot the session into an OrderRequest, submit it to the
provider, keep a local copy.
"""
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from database.models import Order, OrderItem, OrderStatus
from services.catalog_models import OrderLine, OrderRequest, OrderResult, Tax
from services.errors import CatalogError
from services.pricing import PriceBreakdown
from services.session import DeliveryMethod, OrderSession

logger = logging.getLogger(__name__)

PICKUP_ADDRESS = "PICKUP"


def order_lines(session: OrderSession) -> List[OrderLine]:
    """Cart items as order lines; bundled options are sent with amount 0."""
    return [
        OrderLine(
            item_id=item.item_id,
            name=item.name,
            quantity=item.quantity,
            price=item.price,
            amount=item.line_total,
            grouping_id=item.grouping_id,
            parent_item_id=item.parent_item_id,
            is_topping=item.is_topping,
            pack_id=item.pack_id,
        )
        for item in session.cart
    ]


def build_order_request(
    session: OrderSession,
    breakdown: PriceBreakdown,
    taxes: Sequence[Tax] = (),
) -> OrderRequest:
    is_delivery = session.delivery_method == DeliveryMethod.DELIVERY
    adjustments = session.notes or ""
    if is_delivery and session.delivery_contact_phone:
        adjustments = f"{adjustments}\n\n{session.delivery_contact_phone}" if adjustments else session.delivery_contact_phone
    tax = taxes[0] if taxes else None
    return OrderRequest(
        business_id=session.business_id,
        phone_number=session.phone_number,
        customer_name=session.customer_name,
        location_id=session.location_id or "",
        restaurant_id=session.restaurant_id or "",
        service_type=(session.delivery_method or DeliveryMethod.PICKUP).value,
        address=(session.delivery_address or "") if is_delivery else PICKUP_ADDRESS,
        adjustments=adjustments,
        lines=order_lines(session),
        subtotal=breakdown.subtotal,
        tax_id=tax.id if tax else None,
        tax_rate=breakdown.tax_rate,
        tax=breakdown.tax,
        charge_ids=breakdown.charge_ids,
        charges=breakdown.charges_total,
        discount_code=session.discount.code if session.discount else None,
        discount=breakdown.discount,
        total=breakdown.total,
    )


class OrderRecorder(ABC):
    """Local, immutable copy of every order the provider accepted."""

    @abstractmethod
    async def record(
        self,
        request: OrderRequest,
        result: OrderResult,
        notes: Optional[str] = None,
        contact_phone: Optional[str] = None,
    ) -> None:
        ...


class MemoryOrderRecorder(OrderRecorder):
    def __init__(self):
        self.orders: List[tuple] = []

    async def record(self, request, result, notes=None, contact_phone=None):
        self.orders.append((request, result, notes))


class SqlOrderRecorder(OrderRecorder):
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def record(self, request, result, notes=None, contact_phone=None):
        async with self.session_maker() as db:
            order = Order(
                reference=result.reference,
                business_id=request.business_id,
                location_id=request.location_id,
                phone_number=request.phone_number,
                customer_name=request.customer_name,
                status=OrderStatus.PENDING_PAYMENT,
                service_type=request.service_type,
                address=request.address,
                contact_phone=contact_phone,
                notes=notes,
                subtotal=request.subtotal,
                tax=request.tax,
                charges=request.charges,
                discount_code=request.discount_code,
                discount=request.discount,
                total=request.total,
                bank_name=result.bank_name,
                account_number=result.account_number,
                account_name=result.account_name,
            )
            db.add(order)
            await db.flush()  # order.id for the items
            for line in request.lines:
                db.add(OrderItem(
                    order_id=order.id,
                    product_id=line.item_id,
                    item_name=line.name,
                    quantity=line.quantity,
                    price=line.price,
                    grouping_id=line.grouping_id,
                    parent_item_id=line.parent_item_id,
                    is_topping=line.is_topping,
                    pack_id=line.pack_id,
                ))
            await db.commit()

    async def get_order_with_items(self, reference: str) -> Optional[Order]:
        async with self.session_maker() as db:
            stmt = select(Order).options(selectinload(Order.items)).where(Order.reference == reference)
            return await db.scalar(stmt)


class OrderService:
    def __init__(self, catalog, recorder: OrderRecorder):
        self.catalog = catalog
        self.recorder = recorder

    async def place_order(
        self,
        session: OrderSession,
        breakdown: PriceBreakdown,
        taxes: Sequence[Tax] = (),
    ) -> tuple[Optional[OrderResult], Optional[str]]:
        """
        Submit the order once.

        Returns:
            (result, error_message)
        """
        request = build_order_request(session, breakdown, taxes)
        try:
            result = await self.catalog.submit_order(request)
        except CatalogError as e:
            logger.error("Order submission failed for %s: %s", session.phone_number, e)
            return None, str(e)

        if result.total is None:
            result.total = request.total
        try:
            await self.recorder.record(request, result, session.notes, session.delivery_contact_phone)
        except Exception as e:
            # The provider already holds the order; only the local copy is lost
            logger.error("Order %s accepted but not stored locally: %s", result.reference, e, exc_info=True)

        logger.info(
            "Order placed: ref=%s, business=%s, phone=%s, lines=%s, total=%s",
            result.reference, session.business_id, session.phone_number, len(request.lines), request.total,
        )
        return result, None

