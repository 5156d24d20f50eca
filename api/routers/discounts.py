"""
Discounts API Endpoints.

Endpoints for managing discount codes and validating a code against a cart
subtotal before checkout.
"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response

from api.dependencies import get_order_service
from api.models import (
    DiscountCreateRequest,
    DiscountListResponse,
    DiscountQuoteResponse,
    DiscountResponse,
    DiscountValidateRequest,
)
from domain.discount import Discount, DiscountType
from domain.money import to_money
from services.order_service import OrderService

router = APIRouter()


def _as_utc(name: str, value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        raise HTTPException(status_code=400, detail=f"{name} must include a timezone offset")
    return value.astimezone(timezone.utc)


def _discount_response(discount: Discount) -> DiscountResponse:
    return DiscountResponse(
        discount_id=discount.discount_id,
        code=discount.code,
        discount_type=discount.discount_type.value,
        value=discount.value,
        min_purchase=discount.min_purchase,
        max_uses=discount.max_uses,
        used_count=discount.used_count,
        starts_at=discount.starts_at,
        expires_at=discount.expires_at,
        is_active=discount.is_active,
        description=discount.description,
    )


@router.get(
    "/discounts",
    response_model=DiscountListResponse,
    summary="List Discount Codes"
)
def list_discounts(service: OrderService = Depends(get_order_service)):
    discounts = service.list_discounts()
    return DiscountListResponse(
        discounts=[_discount_response(d) for d in discounts],
        total_count=len(discounts),
    )


@router.post(
    "/discounts",
    response_model=DiscountResponse,
    status_code=201,
    summary="Create Discount Code",
    description="Create a percentage or fixed-amount discount code. Codes are case-insensitive."
)
def create_discount(request: DiscountCreateRequest, service: OrderService = Depends(get_order_service)):
    try:
        discount_type = DiscountType(request.discount_type)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid discount_type. Must be 'percentage' or 'fixed', got '{request.discount_type}'"
        )

    discount = service.create_discount(
        request.code,
        discount_type,
        request.value,
        min_purchase=request.min_purchase,
        max_uses=request.max_uses,
        starts_at=_as_utc("starts_at", request.starts_at),
        expires_at=_as_utc("expires_at", request.expires_at),
        is_active=request.is_active,
        description=request.description,
    )
    return _discount_response(discount)


@router.delete(
    "/discounts/{discount_id}",
    status_code=204,
    summary="Delete Discount Code"
)
def delete_discount(discount_id: UUID, service: OrderService = Depends(get_order_service)):
    service.delete_discount(discount_id)
    return Response(status_code=204)


@router.post(
    "/discounts/validate",
    response_model=DiscountQuoteResponse,
    summary="Validate Discount Code",
    description="Price a cart subtotal against a code without redeeming it."
)
def validate_discount(request: DiscountValidateRequest, service: OrderService = Depends(get_order_service)):
    """
    Validate a discount code for a subtotal.

    Checks run in a fixed order and the first failure is returned:
    inactive or unknown code, outside its date window, usage limit reached,
    minimum purchase not met.
    """
    quote = service.quote_discount(request.subtotal, request.code)
    subtotal = to_money(request.subtotal)
    return DiscountQuoteResponse(
        discount_id=quote.discount_id,
        code=quote.code,
        subtotal=subtotal,
        discount_amount=quote.discount_amount,
        subtotal_after_discount=subtotal - quote.discount_amount,
    )
