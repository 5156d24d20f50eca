"""
Inventory API Endpoints.

Endpoints for the stock ledger: manual and bulk adjustments, stock levels,
adjustment history and low-stock alerts.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_order_service
from api.models import (
    AdjustmentHistoryResponse,
    BulkAdjustmentItemResponse,
    BulkAdjustmentRequest,
    BulkAdjustmentResponse,
    LowStockItemResponse,
    LowStockListResponse,
    StockAdjustmentRequest,
    StockAdjustmentResponse,
    StockLevelResponse,
)
from domain.stock import AdjustmentReason, StockAdjustment
from services.order_service import OrderService
from services.stock_ledger_service import BulkAdjustmentItem

router = APIRouter()


def _parse_reason(value: str) -> AdjustmentReason:
    try:
        return AdjustmentReason(value)
    except ValueError:
        allowed = ", ".join(r.value for r in AdjustmentReason)
        raise HTTPException(
            status_code=400,
            detail=f"Invalid reason. Must be one of: {allowed}, got '{value}'"
        )


def _adjustment_response(adjustment: StockAdjustment) -> StockAdjustmentResponse:
    return StockAdjustmentResponse(
        adjustment_id=adjustment.adjustment_id,
        product_id=adjustment.product_id,
        quantity_delta=adjustment.quantity_delta,
        reason=adjustment.reason.value,
        note=adjustment.note,
        actor=adjustment.actor,
        previous_quantity=adjustment.previous_quantity,
        new_quantity=adjustment.new_quantity,
        order_id=adjustment.order_id,
        created_at=adjustment.created_at,
    )


@router.post(
    "/inventory/{product_id}/adjustments",
    response_model=StockAdjustmentResponse,
    status_code=201,
    summary="Adjust Stock",
    description="Record a signed stock change for one product. Stock can never go below zero."
)
def adjust_stock(
    product_id: UUID,
    request: StockAdjustmentRequest,
    service: OrderService = Depends(get_order_service),
):
    """
    Record a stock adjustment.

    **Example usage:**
    - Supplier delivery: `{"delta": 20, "reason": "restock"}`
    - Damaged in storage: `{"delta": -2, "reason": "damaged", "note": "Cracked housing"}`
    """
    reason = _parse_reason(request.reason)
    adjustment = service.adjust_stock(product_id, request.delta, reason, request.note, request.actor)
    return _adjustment_response(adjustment)


@router.post(
    "/inventory/adjustments/bulk",
    response_model=BulkAdjustmentResponse,
    summary="Bulk Adjust Stock",
    description="Apply several independent adjustments; each item succeeds or fails on its own."
)
def bulk_adjust_stock(request: BulkAdjustmentRequest, service: OrderService = Depends(get_order_service)):
    items = [
        BulkAdjustmentItem(
            product_id=item.product_id,
            delta=item.delta,
            reason=_parse_reason(item.reason),
            note=item.note,
        )
        for item in request.items
    ]
    results = service.bulk_adjust_stock(items, actor=request.actor)

    responses = [
        BulkAdjustmentItemResponse(
            product_id=result.product_id,
            success=result.success,
            adjustment=_adjustment_response(result.adjustment) if result.adjustment else None,
            error=result.error_code,
            detail=result.error_message,
        )
        for result in results
    ]
    succeeded = sum(1 for r in results if r.success)
    return BulkAdjustmentResponse(results=responses, succeeded=succeeded, failed=len(results) - succeeded)


@router.get(
    "/inventory/{product_id}/stock",
    response_model=StockLevelResponse,
    summary="Get Stock Level",
    description="Current stock for a product, reconciled against its adjustment ledger."
)
def get_stock_level(product_id: UUID, service: OrderService = Depends(get_order_service)):
    audit = service.audit_stock(product_id)
    product = service.ledger.product(product_id)
    return StockLevelResponse(
        product_id=product.product_id,
        name=product.name,
        sku=product.sku,
        stock_quantity=product.stock_quantity,
        ledger_stock=audit.ledger_stock,
        low_stock_threshold=product.low_stock_threshold,
        stock_status=product.stock_status.value,
        is_consistent=audit.is_consistent,
    )


@router.get(
    "/inventory/adjustments",
    response_model=AdjustmentHistoryResponse,
    summary="Adjustment History",
    description="Most recent stock adjustments first, optionally for one product."
)
def get_adjustment_history(
    product_id: Optional[UUID] = Query(None, description="Only adjustments for this product"),
    limit: int = Query(200, ge=1, le=1000, description="Maximum number of adjustments to return"),
    service: OrderService = Depends(get_order_service),
):
    adjustments = service.stock_history(product_id, limit)
    return AdjustmentHistoryResponse(
        adjustments=[_adjustment_response(a) for a in adjustments],
        total_count=len(adjustments),
    )


@router.get(
    "/inventory/low-stock",
    response_model=LowStockListResponse,
    summary="Low Stock Products",
    description="Products at or below their low-stock threshold, lowest stock first."
)
def get_low_stock(service: OrderService = Depends(get_order_service)):
    products = service.low_stock_products()
    return LowStockListResponse(
        items=[
            LowStockItemResponse(
                product_id=p.product_id,
                name=p.name,
                sku=p.sku,
                stock_quantity=p.stock_quantity,
                low_stock_threshold=p.low_stock_threshold,
                stock_status=p.stock_status.value,
            )
            for p in products
        ],
        total_count=len(products),
    )
