"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


# ============================================================================
# Order Models
# ============================================================================

class LineItemRequest(BaseModel):
    """Product and quantity requested at checkout."""
    product_id: UUID
    quantity: int = Field(..., ge=1, description="Units of the product to buy")


class GuestRequest(BaseModel):
    """Contact details for a guest checkout."""
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


class ShippingRequest(BaseModel):
    """Shipping method and address."""
    method: str = Field("standard", description="'standard', 'express' or 'pickup'")
    recipient_name: str = ""
    address_line: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    phone: str = ""


class CreateOrderRequest(BaseModel):
    """Request to create a pending order."""
    line_items: List[LineItemRequest] = Field(..., min_length=1)
    shipping: ShippingRequest
    discount_code: Optional[str] = None
    user_id: Optional[UUID] = None
    guest: Optional[GuestRequest] = None

    class Config:
        json_schema_extra = {
            "example": {
                "line_items": [
                    {"product_id": "123e4567-e89b-12d3-a456-426614174000", "quantity": 2}
                ],
                "shipping": {
                    "method": "standard",
                    "recipient_name": "Juan Dela Cruz",
                    "address_line": "123 Rizal St.",
                    "city": "Quezon City",
                    "province": "Metro Manila",
                    "postal_code": "1100",
                    "phone": "09171234567"
                },
                "discount_code": "SAVE10",
                "user_id": "123e4567-e89b-12d3-a456-426614174009"
            }
        }


class LineItemResponse(BaseModel):
    """Line item with the unit price captured at checkout."""
    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class ShippingResponse(BaseModel):
    method: str
    recipient_name: str
    address_line: str
    city: str
    province: str
    postal_code: str
    phone: str


class OrderResponse(BaseModel):
    """Order with totals and lifecycle timestamps."""
    order_id: UUID
    status: str
    line_items: List[LineItemResponse]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_fee: Decimal
    tax: Decimal
    total: Decimal
    currency: str
    shipping: ShippingResponse
    user_id: Optional[UUID] = None
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    discount_code: Optional[str] = None
    tracking_number: Optional[str] = None
    payment_reference: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    return_eligible: bool = False

    class Config:
        json_schema_extra = {
            "example": {
                "order_id": "123e4567-e89b-12d3-a456-426614174010",
                "status": "paid",
                "line_items": [],
                "subtotal": "1000.00",
                "discount_amount": "100.00",
                "shipping_fee": "150.00",
                "tax": "0.00",
                "total": "1050.00",
                "currency": "PHP",
                "version": 2,
                "created_at": "2025-01-01T12:00:00Z"
            }
        }


class StatusUpdateRequest(BaseModel):
    """Request to move an order to its next status."""
    status: str = Field(..., description="'paid', 'preparing', 'shipped', 'completed' or 'cancelled'")
    tracking_number: Optional[str] = None
    actor: str = "staff"

    class Config:
        json_schema_extra = {
            "example": {
                "status": "shipped",
                "tracking_number": "LBC-0001234567",
                "actor": "staff@motoparts.ph"
            }
        }


class ActorRequest(BaseModel):
    """Who is performing the action (recorded on ledger entries)."""
    actor: str = "system"


# ============================================================================
# Refund Models
# ============================================================================

class RefundRequest(BaseModel):
    """Request to refund part or all of an order."""
    amount: Decimal = Field(..., gt=0)
    reason: str = ""
    actor: str = "staff"

    class Config:
        json_schema_extra = {
            "example": {
                "amount": "600.00",
                "reason": "Wrong part delivered",
                "actor": "staff@motoparts.ph"
            }
        }


class RefundResponse(BaseModel):
    refund_id: UUID
    order_id: UUID
    amount: Decimal
    reason: str
    actor: str
    payment_reference: Optional[str] = None
    created_at: datetime


class RefundListResponse(BaseModel):
    refunds: List[RefundResponse]
    refunded_total: Decimal
    order_total: Decimal


# ============================================================================
# Inventory Models
# ============================================================================

class StockAdjustmentRequest(BaseModel):
    """Manual stock adjustment from the back office."""
    delta: int = Field(..., description="Signed quantity change (non-zero)")
    reason: str = Field(..., description="restock, damaged, returned, correction, shrinkage, transfer, expired, sale or other")
    note: str = ""
    actor: str = "staff"

    class Config:
        json_schema_extra = {
            "example": {
                "delta": 20,
                "reason": "restock",
                "note": "Supplier delivery #4411",
                "actor": "staff@motoparts.ph"
            }
        }


class StockAdjustmentResponse(BaseModel):
    adjustment_id: UUID
    product_id: UUID
    quantity_delta: int
    reason: str
    note: str
    actor: str
    previous_quantity: int
    new_quantity: int
    order_id: Optional[UUID] = None
    created_at: datetime


class AdjustmentHistoryResponse(BaseModel):
    adjustments: List[StockAdjustmentResponse]
    total_count: int


class BulkAdjustmentItemRequest(BaseModel):
    product_id: UUID
    delta: int
    reason: str = "correction"
    note: str = ""


class BulkAdjustmentRequest(BaseModel):
    """Several independent stock adjustments."""
    items: List[BulkAdjustmentItemRequest] = Field(..., min_length=1)
    actor: str = "staff"


class BulkAdjustmentItemResponse(BaseModel):
    product_id: UUID
    success: bool
    adjustment: Optional[StockAdjustmentResponse] = None
    error: Optional[str] = None
    detail: Optional[str] = None


class BulkAdjustmentResponse(BaseModel):
    results: List[BulkAdjustmentItemResponse]
    succeeded: int
    failed: int


class StockLevelResponse(BaseModel):
    """Stock level for one product, derived from its ledger."""
    product_id: UUID
    name: str
    sku: Optional[str] = None
    stock_quantity: int
    ledger_stock: int
    low_stock_threshold: int
    stock_status: str
    is_consistent: bool


class LowStockItemResponse(BaseModel):
    product_id: UUID
    name: str
    sku: Optional[str] = None
    stock_quantity: int
    low_stock_threshold: int
    stock_status: str


class LowStockListResponse(BaseModel):
    items: List[LowStockItemResponse]
    total_count: int


# ============================================================================
# Discount Models
# ============================================================================

class DiscountCreateRequest(BaseModel):
    """Request to create a discount code."""
    code: str = Field(..., min_length=1)
    discount_type: str = Field(..., description="'percentage' or 'fixed'")
    value: Decimal = Field(..., gt=0)
    min_purchase: Optional[Decimal] = Field(None, ge=0)
    max_uses: int = Field(0, ge=0, description="0 means unlimited")
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    description: str = ""

    class Config:
        json_schema_extra = {
            "example": {
                "code": "SAVE10",
                "discount_type": "percentage",
                "value": "10",
                "min_purchase": "500.00",
                "max_uses": 100,
                "expires_at": "2025-12-31T23:59:59Z"
            }
        }


class DiscountResponse(BaseModel):
    discount_id: UUID
    code: str
    discount_type: str
    value: Decimal
    min_purchase: Optional[Decimal] = None
    max_uses: int
    used_count: int
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool
    description: str


class DiscountListResponse(BaseModel):
    discounts: List[DiscountResponse]
    total_count: int


class DiscountValidateRequest(BaseModel):
    """Request to price a subtotal against a code."""
    code: str = Field(..., min_length=1)
    subtotal: Decimal = Field(..., ge=0)


class DiscountQuoteResponse(BaseModel):
    discount_id: UUID
    code: str
    subtotal: Decimal
    discount_amount: Decimal
    subtotal_after_discount: Decimal


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "out_of_stock",
                "detail": "Product 123e4567-e89b-12d3-a456-426614174000 is out of stock. Requested: 3, Available: 1",
                "status_code": 409
            }
        }
