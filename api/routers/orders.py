"""
Orders API Endpoints.

Endpoints for checkout, payment confirmation, fulfilment status changes,
cancellation and refunds.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException

from api.dependencies import get_order_service
from api.models import (
    ActorRequest,
    CreateOrderRequest,
    LineItemResponse,
    OrderResponse,
    RefundListResponse,
    RefundRequest,
    RefundResponse,
    ShippingResponse,
    StatusUpdateRequest,
)
from domain.order import GuestInfo, LineItemRequest, Order, OrderStatus
from domain.refund import Refund, refunded_total
from domain.shipping import ShippingInfo, ShippingMethod
from services.order_service import OrderService

router = APIRouter()


def _order_response(order: Order, service: OrderService) -> OrderResponse:
    return OrderResponse(
        order_id=order.order_id,
        status=order.status.value,
        line_items=[
            LineItemResponse(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                line_total=item.line_total,
            )
            for item in order.line_items
        ],
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        shipping_fee=order.shipping_fee,
        tax=order.tax,
        total=order.total,
        currency=service.settings.currency,
        shipping=ShippingResponse(
            method=order.shipping.method.value,
            recipient_name=order.shipping.recipient_name,
            address_line=order.shipping.address_line,
            city=order.shipping.city,
            province=order.shipping.province,
            postal_code=order.shipping.postal_code,
            phone=order.shipping.phone,
        ),
        user_id=order.user_id,
        guest_name=order.guest.name if order.guest else None,
        guest_email=order.guest.email if order.guest else None,
        discount_code=order.discount_code,
        tracking_number=order.tracking_number,
        payment_reference=order.payment_reference,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
        paid_at=order.paid_at,
        completed_at=order.completed_at,
        cancelled_at=order.cancelled_at,
        return_eligible=(
            order.status is OrderStatus.COMPLETED and service.is_return_eligible(order.order_id)
        ),
    )


def _refund_response(refund: Refund) -> RefundResponse:
    return RefundResponse(
        refund_id=refund.refund_id,
        order_id=refund.order_id,
        amount=refund.amount,
        reason=refund.reason,
        actor=refund.actor,
        payment_reference=refund.payment_reference,
        created_at=refund.created_at,
    )


@router.post(
    "/orders",
    response_model=OrderResponse,
    status_code=201,
    summary="Create Order",
    description="Create a pending order priced from the current catalog, with an optional discount code."
)
def create_order(request: CreateOrderRequest, service: OrderService = Depends(get_order_service)):
    """
    Create a pending order.

    **Process:**
    1. Prices each line item from the catalog (unit price is frozen on the order)
    2. Checks that each product currently has enough stock (nothing is reserved yet)
    3. Applies the discount code, if any
    4. Adds the shipping fee (standard is free from 2,500) and tax

    Stock is taken and the discount is redeemed only when payment is confirmed.
    """
    try:
        method = ShippingMethod(request.shipping.method)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid shipping method. Must be 'standard', 'express' or 'pickup', got '{request.shipping.method}'"
        )

    shipping = ShippingInfo(
        method=method,
        recipient_name=request.shipping.recipient_name,
        address_line=request.shipping.address_line,
        city=request.shipping.city,
        province=request.shipping.province,
        postal_code=request.shipping.postal_code,
        phone=request.shipping.phone,
    )
    guest = GuestInfo(name=request.guest.name, email=request.guest.email) if request.guest else None

    order = service.create_order(
        [LineItemRequest(product_id=item.product_id, quantity=item.quantity) for item in request.line_items],
        shipping,
        request.discount_code,
        user_id=request.user_id,
        guest=guest,
    )
    return _order_response(order, service)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    summary="Get Order"
)
def get_order(order_id: UUID, service: OrderService = Depends(get_order_service)):
    return _order_response(service.get_order(order_id), service)


@router.post(
    "/orders/{order_id}/confirm-payment",
    response_model=OrderResponse,
    summary="Confirm Payment",
    description="Reserve stock, redeem the discount, capture payment and mark the order paid."
)
def confirm_payment(
    order_id: UUID,
    request: Optional[ActorRequest] = None,
    service: OrderService = Depends(get_order_service),
):
    """
    Confirm payment for a pending order.

    **All-or-Nothing Strategy:**
    If any line item is out of stock, nothing is reserved and the order stays
    pending. If the payment capture fails, reserved stock and the discount use
    are released.

    Retrying a confirmation is safe; an already-paid order is returned as is.
    """
    actor = request.actor if request else "checkout"
    return _order_response(service.confirm_payment(order_id, actor=actor), service)


@router.post(
    "/orders/{order_id}/status",
    response_model=OrderResponse,
    summary="Update Order Status",
    description="Move an order along pending -> paid -> preparing -> shipped -> completed."
)
def update_order_status(
    order_id: UUID,
    request: StatusUpdateRequest,
    service: OrderService = Depends(get_order_service),
):
    try:
        next_status = OrderStatus(request.status)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status '{request.status}'")

    order = service.advance_status(order_id, next_status, request.tracking_number, actor=request.actor)
    return _order_response(order, service)


@router.post(
    "/orders/{order_id}/cancel",
    response_model=OrderResponse,
    summary="Cancel Order",
    description="Cancel a pending or paid order. A paid order's items are returned to stock."
)
def cancel_order(
    order_id: UUID,
    request: Optional[ActorRequest] = None,
    service: OrderService = Depends(get_order_service),
):
    actor = request.actor if request else "system"
    return _order_response(service.cancel_order(order_id, actor=actor), service)


@router.post(
    "/orders/{order_id}/refunds",
    response_model=RefundResponse,
    status_code=201,
    summary="Refund Order",
    description="Refund part or all of a completed or cancelled order."
)
def refund_order(
    order_id: UUID,
    request: RefundRequest,
    service: OrderService = Depends(get_order_service),
):
    """
    Refund an order through the payment gateway.

    The sum of all refunds for an order can never exceed the order total.
    """
    refund = service.refund_order(order_id, request.amount, request.reason, request.actor)
    return _refund_response(refund)


@router.get(
    "/orders/{order_id}/refunds",
    response_model=RefundListResponse,
    summary="List Order Refunds"
)
def list_order_refunds(order_id: UUID, service: OrderService = Depends(get_order_service)):
    order = service.get_order(order_id)
    refunds = service.list_refunds(order_id)
    return RefundListResponse(
        refunds=[_refund_response(r) for r in refunds],
        refunded_total=refunded_total(refunds),
        order_total=order.total,
    )
